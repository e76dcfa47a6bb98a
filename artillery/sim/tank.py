from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import numpy as np

from ..constants import HIT_POINTS

if TYPE_CHECKING:
    from ..ai.player_ai import PlayerAI


@dataclass
class Tank:
    lon: float = 0.0  # board x
    lat: float = 0.0  # board y
    elev: float = 0.0  # surface elevation under the tank
    azimuth: float = 0.0  # degrees
    altitude: float = 45.0  # degrees above the horizon
    velocity: float = 50.0  # power, 0..max_power

    @property
    def position(self) -> np.ndarray:
        """Model-space position (lon, lat, elev)."""
        return np.array([self.lon, self.lat, self.elev], dtype=np.float64)

    def to_dict(self) -> dict[str, Any]:
        return {
            "lon": float(self.lon),
            "lat": float(self.lat),
            "elev": float(self.elev),
            "azimuth": float(self.azimuth),
            "altitude": float(self.altitude),
            "velocity": float(self.velocity),
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> Tank:
        return cls(
            lon=float(d.get("lon", 0.0)),
            lat=float(d.get("lat", 0.0)),
            elev=float(d.get("elev", 0.0)),
            azimuth=float(d.get("azimuth", 0.0)),
            altitude=float(d.get("altitude", 45.0)),
            velocity=float(d.get("velocity", 50.0)),
        )


@dataclass
class Player:
    name: str
    tank: Tank = field(default_factory=Tank)
    score: int = 0
    credit: int = 0
    hit_points: float = HIT_POINTS
    weapon_id: int = 0
    weapon_size_id: int = 0
    use_targeting_computer: bool = False
    used_computer: bool = False  # set when the last shot was computer-assisted
    prev_trajectory: list[list[float]] = field(default_factory=list)
    ai: PlayerAI | None = None

    @property
    def alive(self) -> bool:
        return self.hit_points > 0.0

    @property
    def is_ai(self) -> bool:
        return self.ai is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "tank": self.tank.to_dict(),
            "score": int(self.score),
            "credit": int(self.credit),
            "hit_points": float(self.hit_points),
            "weapon_id": int(self.weapon_id),
            "weapon_size_id": int(self.weapon_size_id),
            "use_targeting_computer": bool(self.use_targeting_computer),
            "used_computer": bool(self.used_computer),
            "prev_trajectory": [list(map(float, p)) for p in self.prev_trajectory],
            "ai": self.ai.to_dict() if self.ai is not None else None,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> Player:
        ai = None
        if d.get("ai") is not None:
            from ..ai.player_ai import PlayerAI

            ai = PlayerAI.from_dict(d["ai"])
        return cls(
            name=str(d["name"]),
            tank=Tank.from_dict(d.get("tank") or {}),
            score=int(d.get("score", 0)),
            credit=int(d.get("credit", 0)),
            hit_points=float(d.get("hit_points", HIT_POINTS)),
            weapon_id=int(d.get("weapon_id", 0)),
            weapon_size_id=int(d.get("weapon_size_id", 0)),
            use_targeting_computer=bool(d.get("use_targeting_computer", False)),
            used_computer=bool(d.get("used_computer", False)),
            prev_trajectory=[list(map(float, p)) for p in d.get("prev_trajectory") or []],
            ai=ai,
        )
