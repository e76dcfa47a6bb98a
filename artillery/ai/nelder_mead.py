"""Resumable Nelder-Mead simplex search.

The optimizer never evaluates the objective itself: callers ask for
`next_point()`, evaluate it however they like (for the AI, by firing a shot
and measuring the miss distance on the next turn) and report back through
`add_result()`. The whole search state serializes to a dict so it can be
parked between turns.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any

import numpy as np

logger = logging.getLogger(__name__)


class NMState(str, Enum):
    INITIAL = "initial"
    REFLECT = "reflect"
    EXPAND = "expand"
    CONTRACT_OUT = "contract_out"
    CONTRACT_IN = "contract_in"
    SHRINK = "shrink"
    SHRINK2 = "shrink2"


@dataclass(frozen=True)
class NMConfig:
    alpha: float = 1.0  # reflection
    beta: float = 0.5  # contraction
    gamma: float = 2.0  # expansion
    delta: float = 0.5  # shrink


@dataclass
class NMSample:
    parameters: np.ndarray
    value: float

    def as_dict(self) -> dict[str, Any]:
        return {"parameters": [float(v) for v in self.parameters], "value": float(self.value)}

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> NMSample:
        return cls(parameters=np.asarray(d["parameters"], dtype=np.float64), value=float(d["value"]))


class SimplexOptimizer:
    def __init__(self, seed: Sequence[float], cfg: NMConfig | None = None):
        self.seed = np.asarray(seed, dtype=np.float64).copy()
        self.dim = int(self.seed.size)
        self.cfg = cfg or NMConfig()
        self.simplex: list[NMSample] = []
        self.state = NMState.INITIAL
        self.iterations = 0
        self.reflected: NMSample | None = None
        self.shrink_points: list[np.ndarray] = []
        self.shrunk: list[NMSample] = []

    # ------------------------------------------------------------------ queries

    @property
    def best(self) -> NMSample | None:
        return self.simplex[0] if self.simplex else None

    @property
    def worst(self) -> NMSample | None:
        return self.simplex[-1] if self.simplex else None

    def _valid(self) -> bool:
        return all(s.parameters.shape == (self.dim,) for s in self.simplex)

    def centroid(self) -> np.ndarray:
        pts = np.stack([s.parameters for s in self.simplex[:-1]])
        return pts.mean(axis=0)

    def initial_point(self, k: int) -> np.ndarray:
        p = self.seed.copy()
        if k == 0:
            return p
        axis = k - 1
        if p[axis] == 0.0:
            p[axis] = 1.0
        else:
            p[axis] = p[axis] + 0.1 * float(np.linalg.norm(self.seed))
        return p

    def next_point(self) -> np.ndarray:
        """Parameters the caller should evaluate next."""
        if not self._valid():
            logger.warning("SimplexOptimizer: simplex has wrong dimensionality, returning seed")
            return self.seed.copy()
        if self.state == NMState.INITIAL:
            return self.initial_point(len(self.simplex))
        if len(self.simplex) != self.dim + 1:
            logger.warning(f"SimplexOptimizer: {len(self.simplex)} samples for dim {self.dim}, returning seed")
            return self.seed.copy()

        c = self.centroid()
        h = self.simplex[-1].parameters
        a, b, g = self.cfg.alpha, self.cfg.beta, self.cfg.gamma
        if self.state == NMState.REFLECT:
            return c + a * (c - h)
        if self.state in (NMState.EXPAND, NMState.CONTRACT_OUT):
            xr = self.reflected.parameters if self.reflected is not None else c + a * (c - h)
            scale = g if self.state == NMState.EXPAND else b
            return c + scale * (xr - c)
        if self.state == NMState.CONTRACT_IN:
            return c + b * (h - c)
        # shrink / shrink2
        if not self.shrink_points:
            return self.seed.copy()
        return self.shrink_points[0].copy()

    def done(self, max_iterations: int, threshold: float) -> bool:
        """True once the iteration count exceeds `max_iterations` or the simplex spread drops below `threshold`."""
        if self.iterations > max_iterations:
            return True
        if self.state == NMState.INITIAL or len(self.simplex) < 2:
            return False
        spread = float(np.linalg.norm(self.simplex[0].parameters - self.simplex[-1].parameters))
        return spread < threshold

    # ----------------------------------------------------------------- updates

    def _sort(self) -> None:
        self.simplex.sort(key=lambda s: s.value)

    def _accept(self, sample: NMSample) -> None:
        self.simplex[-1] = sample
        self._sort()
        self.iterations += 1
        self.reflected = None
        self.state = NMState.REFLECT

    def _start_shrink(self) -> None:
        best = self.simplex[0].parameters
        d = self.cfg.delta
        # worst first
        self.shrink_points = [best + d * (s.parameters - best) for s in reversed(self.simplex[1:])]
        self.shrunk = []
        self.reflected = None
        self.state = NMState.SHRINK

    def add_result(self, parameters: Sequence[float], value: float) -> None:
        sample = NMSample(parameters=np.asarray(parameters, dtype=np.float64).copy(), value=float(value))
        if sample.parameters.shape != (self.dim,):
            logger.warning(f"SimplexOptimizer: ignoring result with shape {sample.parameters.shape}")
            return

        if self.state == NMState.INITIAL:
            self.simplex.append(sample)
            if len(self.simplex) == self.dim + 1:
                self._sort()
                self.state = NMState.REFLECT
            return

        best, second, worst = self.simplex[0].value, self.simplex[-2].value, self.simplex[-1].value
        r = sample.value

        if self.state == NMState.REFLECT:
            self.reflected = sample
            if best <= r < second:
                self._accept(sample)
            elif r < best:
                self.state = NMState.EXPAND
            elif r < worst:
                self.state = NMState.CONTRACT_OUT
            else:
                self.state = NMState.CONTRACT_IN
        elif self.state == NMState.EXPAND:
            reflected = self.reflected if self.reflected is not None else sample
            self._accept(sample if sample.value < reflected.value else reflected)
        elif self.state == NMState.CONTRACT_OUT:
            reflected_value = self.reflected.value if self.reflected is not None else worst
            if sample.value <= reflected_value:
                self._accept(sample)
            else:
                self._start_shrink()
        elif self.state == NMState.CONTRACT_IN:
            if sample.value < worst:
                self._accept(sample)
            else:
                self._start_shrink()
        else:
            self.shrunk.append(sample)
            if self.shrink_points:
                self.shrink_points.pop(0)
            if self.shrink_points:
                self.state = NMState.SHRINK2
            else:
                self.simplex = [self.simplex[0], *self.shrunk]
                self.shrunk = []
                self._sort()
                self.iterations += 1
                self.state = NMState.REFLECT

    # ------------------------------------------------------------ persistence

    def to_dict(self) -> dict[str, Any]:
        return {
            "seed": [float(v) for v in self.seed],
            "config": {
                "alpha": self.cfg.alpha,
                "beta": self.cfg.beta,
                "gamma": self.cfg.gamma,
                "delta": self.cfg.delta,
            },
            "simplex": [s.as_dict() for s in self.simplex],
            "state": self.state.value,
            "iterations": int(self.iterations),
            "reflected": self.reflected.as_dict() if self.reflected is not None else None,
            "shrink_points": [[float(v) for v in p] for p in self.shrink_points],
            "shrunk": [s.as_dict() for s in self.shrunk],
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> SimplexOptimizer:
        opt = cls(d["seed"], NMConfig(**dict(d.get("config") or {})))
        opt.simplex = [NMSample.from_dict(s) for s in d.get("simplex") or []]
        opt.state = NMState(d.get("state", NMState.INITIAL.value))
        opt.iterations = int(d.get("iterations", 0))
        opt.reflected = NMSample.from_dict(d["reflected"]) if d.get("reflected") else None
        opt.shrink_points = [np.asarray(p, dtype=np.float64) for p in d.get("shrink_points") or []]
        opt.shrunk = [NMSample.from_dict(s) for s in d.get("shrunk") or []]
        return opt
