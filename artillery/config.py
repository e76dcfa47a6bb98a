from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class WeaponStyle(str, Enum):
    EXPLOSIVE = "explosive"
    GENERATIVE = "generative"
    MUD = "mud"
    NAPALM = "napalm"
    MIRV = "mirv"


FLUID_STYLES = (WeaponStyle.MUD, WeaponStyle.NAPALM)


@dataclass(frozen=True)
class WeaponSize:
    name: str
    size: float  # blast radius in board units
    cost: int


@dataclass(frozen=True)
class WeaponSpec:
    name: str
    style: WeaponStyle
    sizes: tuple[WeaponSize, ...]
    damage_scale: float = 1.0
    min_altitude: float = 0.0
    max_altitude: float = 180.0
    max_power: float = 100.0
    # Torus ring radius as a fraction of blast radius (0 gives a sphere).
    ring_fraction: float = 0.0


WEAPONS: tuple[WeaponSpec, ...] = (
    WeaponSpec(
        name="Standard Blast",
        style=WeaponStyle.EXPLOSIVE,
        sizes=(
            WeaponSize("Baby", 20.0, 0),
            WeaponSize("Small", 40.0, 100),
            WeaponSize("Medium", 75.0, 250),
            WeaponSize("Large", 150.0, 750),
        ),
    ),
    WeaponSpec(
        name="Nuke",
        style=WeaponStyle.EXPLOSIVE,
        sizes=(
            WeaponSize("Small", 300.0, 2000),
            WeaponSize("Large", 500.0, 4000),
        ),
    ),
    WeaponSpec(
        name="Ring",
        style=WeaponStyle.EXPLOSIVE,
        sizes=(WeaponSize("Medium", 60.0, 600),),
        ring_fraction=1.5,
    ),
    WeaponSpec(
        name="Dirt",
        style=WeaponStyle.GENERATIVE,
        sizes=(
            WeaponSize("Small", 40.0, 100),
            WeaponSize("Medium", 75.0, 200),
            WeaponSize("Large", 150.0, 500),
        ),
        damage_scale=0.0,
    ),
    WeaponSpec(
        name="Mud",
        style=WeaponStyle.MUD,
        sizes=(
            WeaponSize("Small", 20.0, 250),
            WeaponSize("Large", 40.0, 500),
        ),
        damage_scale=0.2,
    ),
    WeaponSpec(
        name="Napalm",
        style=WeaponStyle.NAPALM,
        sizes=(
            WeaponSize("Small", 20.0, 300),
            WeaponSize("Large", 40.0, 600),
        ),
        damage_scale=0.5,
    ),
    WeaponSpec(
        name="MIRV",
        style=WeaponStyle.MIRV,
        sizes=(
            WeaponSize("Small", 40.0, 1000),
            WeaponSize("Large", 75.0, 2000),
        ),
    ),
)


def get_weapon(weapon_id: int) -> WeaponSpec:
    if not 0 <= weapon_id < len(WEAPONS):
        raise ValueError(f"Unknown weapon id: {weapon_id!r}")
    return WEAPONS[weapon_id]


@dataclass(frozen=True)
class TerrainConfig:
    board_size: int = 1025  # size-1 must be a power of two
    surface_min: float = 50.0
    surface_max: float = 200.0
    bedrock_min: float = 5.0
    bedrock_max: float = 40.0
    # Tank placement
    tank_margin: int = 50
    tank_pad_radius: int = 25
    tank_min_spacing: float = 100.0


@dataclass(frozen=True)
class GameConfig:
    terrain: TerrainConfig = field(default_factory=TerrainConfig)
    num_humans: int = 1
    num_ais: int = 1
    num_rounds: int = 3  # 0 plays a single elimination round
    credit: int = 5000
    player_names: tuple[str, ...] = ()
    # Reset credit to `credit` at the start of each round instead of carrying it over
    reset_credit_each_round: bool = False
    seed: int | None = None

    @property
    def num_players(self) -> int:
        return self.num_humans + self.num_ais

    def as_dict(self) -> dict[str, Any]:
        d = dataclasses.asdict(self)
        d["player_names"] = list(self.player_names)
        return d

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> GameConfig:
        terrain = TerrainConfig(**dict(d.get("terrain") or {}))
        return cls(
            terrain=terrain,
            num_humans=int(d.get("num_humans", 1)),
            num_ais=int(d.get("num_ais", 1)),
            num_rounds=int(d.get("num_rounds", 3)),
            credit=int(d.get("credit", 5000)),
            player_names=tuple(d.get("player_names") or ()),
            reset_credit_each_round=bool(d.get("reset_credit_each_round", False)),
            seed=d.get("seed"),
        )
