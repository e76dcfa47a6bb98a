from .config import GameConfig, TerrainConfig, WeaponStyle
from .sim.engine import ArtilleryError, FireResult, GameEngine, GameStateError
from .terrain.heightfield import HeightField
from .turns import TurnLoop, play_local_game

__all__ = [
    "ArtilleryError",
    "FireResult",
    "GameConfig",
    "GameEngine",
    "GameStateError",
    "HeightField",
    "TerrainConfig",
    "TurnLoop",
    "WeaponStyle",
    "play_local_game",
]
