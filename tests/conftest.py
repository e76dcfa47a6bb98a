import numpy as np
import pytest

from artillery.config import GameConfig, TerrainConfig
from artillery.sim.engine import GameEngine
from artillery.terrain.heightfield import HeightField

SMALL_TERRAIN = TerrainConfig(board_size=129, tank_margin=10, tank_pad_radius=4, tank_min_spacing=30.0)


@pytest.fixture
def rng():
    return np.random.default_rng(1234)


@pytest.fixture
def small_terrain():
    return SMALL_TERRAIN


@pytest.fixture
def make_engine():
    def _make(
        num_players: int = 2,
        num_ais: int = 0,
        rounds: int = 3,
        seed: int = 7,
        terrain: TerrainConfig = SMALL_TERRAIN,
    ) -> GameEngine:
        cfg = GameConfig(
            terrain=terrain,
            num_humans=num_players - num_ais,
            num_ais=num_ais,
            num_rounds=rounds,
            seed=seed,
        )
        engine = GameEngine(cfg, rng=np.random.default_rng(seed))
        engine.start_game()
        return engine

    return _make


@pytest.fixture
def flatten():
    """Level the whole board so shots land predictably."""

    def _flatten(engine: GameEngine, level: float = 100.0, bedrock: float = 5.0) -> None:
        engine.board.surface.cells[:] = level
        engine.board.bedrock.cells[:] = bedrock
        engine.board.colors.cells[:] = 0.0
        for p in engine.board.players:
            p.tank.elev = level

    return _flatten


@pytest.fixture
def bowl():
    def _bowl(size: int = 65, depth: float = 50.0, base: float = 100.0) -> HeightField:
        c = (size - 1) / 2.0
        ys, xs = np.mgrid[0:size, 0:size]
        r = np.hypot(xs - c, ys - c) / c
        return HeightField.from_array(base - depth * np.clip(1.0 - r, 0.0, 1.0))

    return _bowl
