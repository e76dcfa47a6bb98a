from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import numpy as np

from ..ai.player_ai import PlayerAI
from ..config import FLUID_STYLES, GameConfig, WeaponSpec, WeaponStyle, get_weapon
from ..constants import BLAST_DAMAGE_PER_RADIUS, COMPUTER_COST, HIT_POINTS, KILL_BONUS, NAPALM_DAMAGE_PER_DEPTH, TIME_STEP
from ..terrain.editor import TerrainEditor, fluid_depth_at
from ..terrain.heightfield import HeightField
from .ballistics import compute_trajectory, ground_height, mirv_trajectories, muzzle_parameters
from .board import GameBoard
from .tank import Player, Tank

logger = logging.getLogger(__name__)


class ArtilleryError(Exception):
    """Base class for errors raised by the game engine."""


class GameStateError(ArtilleryError):
    """An operation was called in the wrong engine state."""


class EngineState(str, Enum):
    NOT_STARTED = "not_started"
    ROUND_IN_PROGRESS = "round_in_progress"
    ROUND_ENDED = "round_ended"
    GAME_OVER = "game_over"


@dataclass(frozen=True)
class Detonation:
    position: np.ndarray
    radius: float
    style: WeaponStyle
    top: HeightField
    middle: HeightField
    bottom: HeightField
    top_color: HeightField
    bottom_color: HeightField
    fluid_path: np.ndarray = field(default_factory=lambda: np.zeros((0, 3)))
    fluid_remaining: np.ndarray = field(default_factory=lambda: np.zeros(0))


@dataclass(frozen=True)
class TurnOutcome:
    new_round: bool = False
    game_over: bool = False
    round_winner: str | None = None


@dataclass(frozen=True)
class FireResult:
    player_id: int
    time_step: float
    trajectories: tuple[np.ndarray, ...]
    detonations: tuple[Detonation, ...]
    old: HeightField
    old_color: HeightField
    final: HeightField
    final_color: HeightField
    explosion_radius: float
    weapon_style: WeaponStyle
    new_round: bool
    round_winner: str | None
    game_over: bool
    damage: dict[int, float] = field(default_factory=dict)


class GameEngine:
    """Owns the board and players and runs the turn/round rules."""

    def __init__(self, config: GameConfig | None = None, rng: np.random.Generator | None = None):
        self.config = config or GameConfig()
        self.rng = rng if rng is not None else np.random.default_rng(self.config.seed)
        self.board = GameBoard()
        self.editor: TerrainEditor | None = None
        self.state = EngineState.NOT_STARTED
        self.time_step = TIME_STEP

    # ------------------------------------------------------------------ setup

    def generate_board(self) -> GameBoard:
        """Fresh fractal terrain; keeps players and round counters."""
        tc = self.config.terrain
        size = int(tc.board_size)
        players = self.board.players
        fresh = GameBoard.empty(size)
        fresh.surface.fill_fractal(tc.surface_min, tc.surface_max, self.rng)
        fresh.bedrock.fill_fractal(tc.bedrock_min, tc.bedrock_max, self.rng)
        np.minimum(fresh.bedrock.cells, fresh.surface.cells, out=fresh.bedrock.cells)
        fresh.players = players
        fresh.current_player = self.board.current_player
        fresh.current_round = self.board.current_round
        fresh.total_rounds = self.board.total_rounds
        self._install(fresh)
        logger.info(f"generate_board: {size}x{size}")
        return fresh

    def _install(self, board: GameBoard) -> None:
        self.board = board
        self.editor = TerrainEditor(board.surface, board.bedrock, board.colors)

    def start_game(
        self,
        num_players: int | None = None,
        num_ais: int | None = None,
        rounds: int | None = None,
    ) -> None:
        cfg = self.config
        total = int(num_players) if num_players is not None else cfg.num_players
        ais = int(num_ais) if num_ais is not None else cfg.num_ais
        if total < 1 or not 0 <= ais <= total:
            raise ValueError(f"Invalid player counts: {total} players, {ais} AIs")
        humans = total - ais

        players = []
        for i in range(total):
            is_ai = i >= humans
            if i < len(cfg.player_names):
                name = cfg.player_names[i]
            elif is_ai:
                name = f"Computer {i - humans + 1}"
            else:
                name = f"Player {i + 1}"
            ai = PlayerAI(rng=self.rng) if is_ai else None
            players.append(Player(name=name, credit=cfg.credit, ai=ai))

        self.board = GameBoard()
        self.board.players = players
        self.board.total_rounds = int(rounds) if rounds is not None else cfg.num_rounds
        self.board.current_round = 0
        self.state = EngineState.NOT_STARTED
        logger.info(f"start_game: {humans} humans, {ais} AIs, {self.board.total_rounds} rounds")
        self.start_round()

    def start_round(self) -> None:
        if not self.board.players:
            raise GameStateError("start_round() called before start_game()")
        if self.state == EngineState.GAME_OVER:
            raise GameStateError("game is over")
        self.board.current_round += 1
        self.generate_board()
        self._place_tanks()
        for p in self.board.players:
            p.hit_points = HIT_POINTS
            p.prev_trajectory = []
            p.used_computer = False
            if self.config.reset_credit_each_round:
                p.credit = self.config.credit
            if p.ai is not None:
                p.ai.reset()
        self.board.current_player = 0
        self.state = EngineState.ROUND_IN_PROGRESS
        logger.info(f"start_round: round {self.board.current_round}")

    def _place_tanks(self) -> None:
        tc = self.config.terrain
        size = self.board.board_size
        lo = min(tc.tank_margin, size // 2)
        hi = max(lo, size - 1 - tc.tank_margin)
        placed: list[tuple[int, int]] = []
        for p in self.board.players:
            spot = None
            for _ in range(1000):
                x = int(self.rng.integers(lo, hi + 1))
                y = int(self.rng.integers(lo, hi + 1))
                if all(math.hypot(x - ox, y - oy) >= tc.tank_min_spacing for ox, oy in placed):
                    spot = (x, y)
                    break
            if spot is None:
                logger.warning(f"_place_tanks: no spot {tc.tank_min_spacing} away from others for {p.name}")
                spot = (x, y)
            placed.append(spot)
            elev = self._flatten_pad(spot[0], spot[1], tc.tank_pad_radius)
            center = (size - 1) / 2.0
            azimuth = math.degrees(math.atan2(spot[0] - center, spot[1] - center)) % 360.0
            p.tank = Tank(lon=float(spot[0]), lat=float(spot[1]), elev=elev, azimuth=azimuth)

    def _flatten_pad(self, x: int, y: int, radius: int) -> float:
        surface = self.board.surface
        level = surface.get_pixel(x, y)
        if level is None:
            return 0.0
        win = surface.window(x - radius, y - radius, x + radius, y + radius)
        if win is None:
            return level
        ys = np.arange(win[0].start, win[0].stop) + surface.min_y
        xs = np.arange(win[1].start, win[1].stop) + surface.min_x
        yy, xx = np.meshgrid(ys, xs, indexing="ij")
        pad = np.hypot(xx - x, yy - y) <= radius
        surface.cells[win][pad] = level
        bedrock = self.board.bedrock.cells[win]
        bedrock[pad] = np.minimum(bedrock[pad], level)
        return level

    # ------------------------------------------------------------------ turns

    def _player(self, player_index: int | None) -> Player:
        idx = self.board.current_player if player_index is None else int(player_index)
        if not 0 <= idx < len(self.board.players):
            raise IndexError(f"No player with index {idx!r}")
        return self.board.players[idx]

    @property
    def current_player(self) -> Player:
        return self._player(None)

    def target_for(self, player_index: int) -> int | None:
        """Next live player after `player_index` in turn order."""
        n = len(self.board.players)
        for step in range(1, n):
            j = (player_index + step) % n
            if self.board.players[j].alive:
                return j
        return None

    def _next_live_after(self, idx: int) -> int | None:
        for j in range(idx + 1, len(self.board.players)):
            if self.board.players[j].alive:
                return j
        return None

    def weapon_for(self, player: Player) -> WeaponSpec:
        return get_weapon(player.weapon_id)

    def set_tank_aim(self, azimuth: float, altitude: float, player_index: int | None = None) -> None:
        p = self._player(player_index)
        w = self.weapon_for(p)
        p.tank.azimuth = float(azimuth) % 360.0
        p.tank.altitude = float(min(max(altitude, w.min_altitude), w.max_altitude))

    def set_tank_power(self, power: float, player_index: int | None = None) -> None:
        p = self._player(player_index)
        w = self.weapon_for(p)
        p.tank.velocity = float(min(max(power, 0.0), w.max_power))

    def select_weapon(self, weapon_id: int, size_id: int = 0, player_index: int | None = None) -> None:
        p = self._player(player_index)
        w = get_weapon(weapon_id)
        if not 0 <= size_id < len(w.sizes):
            raise ValueError(f"Unknown size {size_id!r} for weapon {w.name!r}")
        p.weapon_id = int(weapon_id)
        p.weapon_size_id = int(size_id)
        self.set_tank_aim(p.tank.azimuth, p.tank.altitude, player_index)
        self.set_tank_power(p.tank.velocity, player_index)

    def get_elevation(self, x: float, y: float) -> float | None:
        return ground_height(self.board.surface, x, y)

    def predict_trajectory(self, player_index: int | None = None) -> list[np.ndarray]:
        """Flight path for the player's current aim, as shown by the targeting computer."""
        p = self._player(player_index)
        pos, vel = muzzle_parameters(p.tank)
        return list(compute_trajectory(pos, vel, self.time_step, self.board.surface))

    def _charge(self, p: Player, cost: int) -> None:
        if p.credit >= cost:
            p.credit -= cost
        else:
            p.score -= cost - p.credit
            p.credit = 0

    def fire(self, muzzle_pos: np.ndarray | None = None, muzzle_vel: np.ndarray | None = None) -> FireResult:
        if self.state != EngineState.ROUND_IN_PROGRESS or self.editor is None:
            raise GameStateError(f"fire() called in state {self.state.value}")
        board = self.board
        idx = board.current_player
        shooter = board.players[idx]
        weapon = self.weapon_for(shooter)
        size = weapon.sizes[shooter.weapon_size_id]

        self._charge(shooter, size.cost + (COMPUTER_COST if shooter.use_targeting_computer else 0))
        shooter.used_computer = shooter.use_targeting_computer

        if muzzle_pos is None or muzzle_vel is None:
            pos, vel = muzzle_parameters(shooter.tank)
            muzzle_pos = pos if muzzle_pos is None else muzzle_pos
            muzzle_vel = vel if muzzle_vel is None else muzzle_vel
        muzzle_pos = np.asarray(muzzle_pos, dtype=np.float64)
        muzzle_vel = np.asarray(muzzle_vel, dtype=np.float64)

        old = board.surface.copy()
        old_color = board.colors.copy()

        if weapon.style == WeaponStyle.MIRV:
            flights = mirv_trajectories(muzzle_pos, muzzle_vel, self.time_step, board.surface)
            warheads = flights[1:] if len(flights) > 1 else flights
        else:
            flights = [list(compute_trajectory(muzzle_pos, muzzle_vel, self.time_step, board.surface))]
            warheads = flights

        radius = float(size.size)
        ring = weapon.ring_fraction * radius
        reach = radius + ring
        detonations = []
        damage: dict[int, float] = {}
        for flight in warheads:
            impact = flight[-1]
            ground = ground_height(old, impact[0], impact[1])
            if ground is None or impact[2] > ground:
                logger.debug(f"fire: warhead ended off the board or in the air at {impact.tolist()}")
                continue
            detonations.append(self._detonate(impact, radius, ring, weapon, damage, reach))

        hp_before = {i: p.hit_points for i, p in enumerate(board.players)}
        kills = 0
        for j, dmg in damage.items():
            target = board.players[j]
            target.hit_points = max(0.0, target.hit_points - dmg)
            if j == idx:
                shooter.score -= int(round(dmg))
            else:
                shooter.score += int(round(dmg))
                if hp_before[j] > 0.0 and not target.alive:
                    kills += 1
        shooter.score += KILL_BONUS * kills

        for p in board.players:
            elev = board.surface.get_pixel(int(round(p.tank.lon)), int(round(p.tank.lat)))
            if elev is not None:
                p.tank.elev = elev

        shooter.prev_trajectory = [[float(v) for v in pt] for pt in flights[0]]
        if shooter.ai is not None:
            target_idx = self.target_for(idx)
            target_pos = board.players[target_idx].tank.position if target_idx is not None else None
            impact = detonations[0].position if detonations else flights[-1][-1]
            shooter.ai.record_result(muzzle_vel, impact, target_pos)

        outcome = self._advance_turn()
        logger.info(
            f"fire: {shooter.name} {weapon.name}/{size.name} {len(detonations)} detonations, "
            f"damage {({board.players[j].name: round(d, 1) for j, d in damage.items()})}"
        )
        return FireResult(
            player_id=idx,
            time_step=self.time_step,
            trajectories=tuple(np.asarray(f, dtype=np.float64) for f in flights),
            detonations=tuple(detonations),
            old=old,
            old_color=old_color,
            final=board.surface.copy(),
            final_color=board.colors.copy(),
            explosion_radius=radius,
            weapon_style=weapon.style,
            new_round=outcome.new_round,
            round_winner=outcome.round_winner,
            game_over=outcome.game_over,
            damage=damage,
        )

    def _detonate(
        self,
        impact: np.ndarray,
        radius: float,
        ring: float,
        weapon: WeaponSpec,
        damage: dict[int, float],
        reach: float,
    ) -> Detonation:
        assert self.editor is not None
        style = weapon.style
        crater_style = WeaponStyle.GENERATIVE if style == WeaponStyle.GENERATIVE else WeaponStyle.EXPLOSIVE
        layers = self.editor.apply_explosion(impact, radius, crater_style, ring)

        fluid = None
        if style in FLUID_STYLES:
            fluid = self.editor.apply_fluid(impact[0], impact[1], radius, style)

        for j, p in enumerate(self.board.players):
            if not p.alive:
                continue
            dist = float(np.linalg.norm(p.tank.position - impact))
            dmg = 0.0
            if dist < reach:
                dmg = BLAST_DAMAGE_PER_RADIUS * radius * weapon.damage_scale * (1.0 - dist / reach)
            if fluid is not None and style == WeaponStyle.NAPALM:
                dmg += fluid_depth_at(fluid, p.tank.lon, p.tank.lat, reach=1.0) * NAPALM_DAMAGE_PER_DEPTH
            if dmg > 0.0:
                damage[j] = damage.get(j, 0.0) + dmg

        return Detonation(
            position=np.asarray(impact, dtype=np.float64).copy(),
            radius=radius,
            style=style,
            top=layers.top,
            middle=layers.middle,
            bottom=layers.bottom,
            top_color=layers.top_color,
            bottom_color=layers.bottom_color,
            fluid_path=fluid.path if fluid is not None else np.zeros((0, 3)),
            fluid_remaining=fluid.remaining if fluid is not None else np.zeros(0),
        )

    def _advance_turn(self) -> TurnOutcome:
        board = self.board
        alive = board.live_players()
        winner = board.players[alive[0]].name if len(alive) == 1 else None

        if board.total_rounds == 0:
            if len(alive) <= 1:
                self.state = EngineState.GAME_OVER
                logger.info(f"game over, winner {winner}")
                return TurnOutcome(new_round=True, game_over=True, round_winner=winner)
            nxt = self._next_live_after(board.current_player)
            board.current_player = nxt if nxt is not None else alive[0]
            return TurnOutcome()

        nxt = self._next_live_after(board.current_player)
        if len(alive) <= 1 or nxt is None:
            game_over = board.current_round >= board.total_rounds
            self.state = EngineState.GAME_OVER if game_over else EngineState.ROUND_ENDED
            logger.info(f"round {board.current_round} ended, winner {winner}, game_over={game_over}")
            return TurnOutcome(new_round=True, game_over=game_over, round_winner=winner)
        board.current_player = nxt
        return TurnOutcome()

    def forfeit_player(self, player_index: int) -> TurnOutcome:
        """Drop a player from the round (e.g. after a disconnect)."""
        p = self._player(player_index)
        p.hit_points = 0.0
        logger.info(f"forfeit_player: {p.name}")
        if self.state == EngineState.ROUND_IN_PROGRESS and player_index == self.board.current_player:
            return self._advance_turn()
        return TurnOutcome()

    def skip_current_player(self) -> TurnOutcome:
        if self.state != EngineState.ROUND_IN_PROGRESS:
            raise GameStateError(f"skip_current_player() called in state {self.state.value}")
        return self.forfeit_player(self.board.current_player)

    # ---------------------------------------------------------------- snapshot

    def snapshot(self, *, compress: bool = False) -> dict[str, Any]:
        return {
            "model": self.board.to_dict(compress=compress),
            "config": self.config.as_dict(),
            "state": self.state.value,
        }

    def load_board(self, model: dict[str, Any], state: EngineState | str | None = None) -> None:
        """Replace the board with a snapshot, e.g. one received from the leader.

        Nothing changes if the snapshot does not parse.
        """
        board = GameBoard.from_dict(model)
        new_state = EngineState(state) if state is not None else None
        self._install(board)
        for p in self.board.players:
            if p.ai is not None:
                p.ai.rng = self.rng
        if new_state is not None:
            self.state = new_state
        elif self.board.players:
            self.state = EngineState.ROUND_IN_PROGRESS

    @classmethod
    def from_snapshot(cls, snap: dict[str, Any], rng: np.random.Generator | None = None) -> GameEngine:
        engine = cls(GameConfig.from_dict(snap.get("config") or {}), rng=rng)
        engine.load_board(snap["model"], snap.get("state"))
        return engine
