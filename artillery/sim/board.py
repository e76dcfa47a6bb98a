from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from typing import Any

import numpy as np

from ..terrain.heightfield import HeightField
from .tank import Player


def canonical_json_bytes(obj: Any) -> bytes:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def hash_cells(h: Any, cells: np.ndarray) -> None:
    h.update(np.ascontiguousarray(cells, dtype="<f8").tobytes())


@dataclass
class GameBoard:
    board_size: int = 0
    surface: HeightField = field(default_factory=HeightField)
    bedrock: HeightField = field(default_factory=HeightField)
    colors: HeightField = field(default_factory=HeightField)
    players: list[Player] = field(default_factory=list)
    current_player: int = 0
    current_round: int = 0
    total_rounds: int = 0  # 0 = play until one tank is left

    @classmethod
    def empty(cls, board_size: int) -> GameBoard:
        return cls(
            board_size=int(board_size),
            surface=HeightField.empty(board_size, board_size),
            bedrock=HeightField.empty(board_size, board_size),
            colors=HeightField.empty(board_size, board_size),
        )

    def live_players(self) -> list[int]:
        return [i for i, p in enumerate(self.players) if p.alive]

    def checksum(self) -> str:
        """sha256 over the player/round state and the raw terrain arrays."""
        h = hashlib.sha256()
        h.update(
            canonical_json_bytes(
                {
                    "board_size": self.board_size,
                    "current_player": self.current_player,
                    "current_round": self.current_round,
                    "total_rounds": self.total_rounds,
                    "players": [
                        {
                            "name": p.name,
                            "tank": p.tank.to_dict(),
                            "score": int(p.score),
                            "credit": int(p.credit),
                            "hit_points": float(p.hit_points),
                        }
                        for p in self.players
                    ],
                }
            )
        )
        for hf in (self.surface, self.bedrock, self.colors):
            hash_cells(h, hf.cells)
        return h.hexdigest()

    def to_dict(self, *, compress: bool = False) -> dict[str, Any]:
        """Full snapshot. `compress` quantizes the height layers; colors stay raw."""
        return {
            "board_size": int(self.board_size),
            "surface": self.surface.to_dict(compress=compress),
            "bedrock": self.bedrock.to_dict(compress=compress),
            "colors": self.colors.to_dict(),
            "players": [p.to_dict() for p in self.players],
            "current_player": int(self.current_player),
            "current_round": int(self.current_round),
            "total_rounds": int(self.total_rounds),
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> GameBoard:
        return cls(
            board_size=int(d["board_size"]),
            surface=HeightField.from_dict(d["surface"]),
            bedrock=HeightField.from_dict(d["bedrock"]),
            colors=HeightField.from_dict(d["colors"]),
            players=[Player.from_dict(p) for p in d.get("players") or []],
            current_player=int(d.get("current_player", 0)),
            current_round=int(d.get("current_round", 0)),
            total_rounds=int(d.get("total_rounds", 0)),
        )
