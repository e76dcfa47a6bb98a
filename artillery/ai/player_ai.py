from __future__ import annotations

import logging
import math
from collections import deque
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import numpy as np

from ..sim.ballistics import model_to_view, to_spherical
from .nelder_mead import SimplexOptimizer

if TYPE_CHECKING:
    from ..sim.engine import GameEngine

logger = logging.getLogger(__name__)

WINDOW = 4
REFLECTION = 1.5


@dataclass
class AISample:
    aim: np.ndarray  # model-space muzzle velocity
    impact: np.ndarray  # model-space impact point
    target: np.ndarray | None = None

    def miss_distance(self, target: np.ndarray | None = None) -> float:
        t = target if target is not None else self.target
        if t is None:
            return 0.0
        return float(np.linalg.norm(self.impact - t))

    def to_dict(self) -> dict[str, Any]:
        return {
            "aim": [float(v) for v in self.aim],
            "impact": [float(v) for v in self.impact],
            "target": [float(v) for v in self.target] if self.target is not None else None,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> AISample:
        return cls(
            aim=np.asarray(d["aim"], dtype=np.float64),
            impact=np.asarray(d["impact"], dtype=np.float64),
            target=np.asarray(d["target"], dtype=np.float64) if d.get("target") is not None else None,
        )


class PlayerAI:
    """Aims a computer player's shots from the history of its own impacts.

    With fewer than four shots on record it fires roughly towards the target
    at a random elevation and power. After that it drops the shot that landed
    furthest from the target and reflects it through the mean of the other
    three, working directly on muzzle velocity vectors. The "simplex"
    strategy hands the same history to a Nelder-Mead search instead.
    """

    def __init__(self, rng: np.random.Generator | None = None, strategy: str = "heuristic"):
        if strategy not in ("heuristic", "simplex"):
            raise ValueError(f"Unknown AI strategy: {strategy!r}")
        self.rng = rng if rng is not None else np.random.default_rng()
        self.strategy = strategy
        self.data: list[AISample] = []
        self.last_four: deque[AISample] = deque(maxlen=WINDOW)
        self.optimizer: SimplexOptimizer | None = None

    def reset(self) -> None:
        self.data.clear()
        self.last_four.clear()
        self.optimizer = None

    def fire_parameters(self, engine: GameEngine, player_index: int | None = None) -> tuple[float, float, float]:
        """(azimuth, altitude, power) for the given (default: current) player's next shot."""
        board = engine.board
        idx = board.current_player if player_index is None else int(player_index)
        me = board.players[idx]
        target_idx = engine.target_for(idx)
        target = board.players[target_idx].tank.position if target_idx is not None else None

        if self.strategy == "simplex" and len(self.data) >= 1:
            if self.optimizer is None:
                self.optimizer = SimplexOptimizer(self.data[-1].aim)
            aim = self.optimizer.next_point()
            return self._angles(aim)

        if len(self.last_four) < WINDOW or target is None:
            return self._cold_start(me.tank.position, target)

        samples = list(self.last_four)
        misses = [s.miss_distance(target) for s in samples]
        worst = int(np.argmax(misses))
        furthest = samples.pop(worst)
        avg = np.mean([s.aim for s in samples], axis=0)
        aim = furthest.aim + REFLECTION * (avg - furthest.aim)
        logger.debug(f"PlayerAI: reflecting shot that missed by {misses[worst]:.1f}")
        return self._angles(aim)

    def _cold_start(self, mine: np.ndarray, target: np.ndarray | None) -> tuple[float, float, float]:
        if target is None:
            azimuth = float(self.rng.uniform(0.0, 360.0))
        else:
            azimuth = math.degrees(math.atan2(mine[0] - target[0], mine[1] - target[1])) % 360.0
        altitude = float(self.rng.uniform(30.0, 80.0))
        power = float(self.rng.uniform(30.0, 100.0))
        return azimuth, altitude, power

    @staticmethod
    def _angles(aim: np.ndarray) -> tuple[float, float, float]:
        return to_spherical(model_to_view(aim))

    def record_result(self, aim: np.ndarray, impact: np.ndarray, target: np.ndarray | None = None) -> None:
        sample = AISample(
            aim=np.asarray(aim, dtype=np.float64).copy(),
            impact=np.asarray(impact, dtype=np.float64).copy(),
            target=np.asarray(target, dtype=np.float64).copy() if target is not None else None,
        )
        self.data.append(sample)
        self.last_four.append(sample)
        if self.strategy == "simplex":
            if self.optimizer is None:
                self.optimizer = SimplexOptimizer(sample.aim)
            self.optimizer.add_result(sample.aim, sample.miss_distance())

    def to_dict(self) -> dict[str, Any]:
        return {
            "strategy": self.strategy,
            "data": [s.to_dict() for s in self.data],
            "last_four": [s.to_dict() for s in self.last_four],
            "optimizer": self.optimizer.to_dict() if self.optimizer is not None else None,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any], rng: np.random.Generator | None = None) -> PlayerAI:
        ai = cls(rng=rng, strategy=str(d.get("strategy", "heuristic")))
        ai.data = [AISample.from_dict(s) for s in d.get("data") or []]
        ai.last_four.extend(AISample.from_dict(s) for s in d.get("last_four") or [])
        if d.get("optimizer"):
            ai.optimizer = SimplexOptimizer.from_dict(d["optimizer"])
        return ai
