# ruff: noqa: E402
from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import numpy as np

from artillery import GameConfig, TerrainConfig, play_local_game


def main() -> None:
    parser = argparse.ArgumentParser(description="Play all-AI artillery games and print the results")
    parser.add_argument("--games", type=int, default=1)
    parser.add_argument("--seed", type=int, default=0)
    parser.add_argument("--players", type=int, default=2)
    parser.add_argument("--rounds", type=int, default=3, help="0 plays a single elimination round")
    parser.add_argument("--size", type=int, default=257, help="Board size, size-1 must be a power of two")
    parser.add_argument("--max-turns", type=int, default=500)
    parser.add_argument("--json", action="store_true", help="Print one JSON line per game")
    parser.add_argument("-v", "--verbose", action="store_true")
    args = parser.parse_args()

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING, format="%(levelname)s %(name)s: %(message)s")

    scale = args.size / 1025.0
    terrain = TerrainConfig(
        board_size=args.size,
        tank_margin=max(2, int(50 * scale)),
        tank_pad_radius=max(1, int(25 * scale)),
        tank_min_spacing=max(2.0, 100.0 * scale),
    )

    wins: dict[str, int] = {}
    for game in range(args.games):
        seed = args.seed + game
        cfg = GameConfig(terrain=terrain, num_humans=0, num_ais=args.players, num_rounds=args.rounds, seed=seed)
        outcome = play_local_game(cfg, rng=np.random.default_rng(seed), max_turns=args.max_turns)
        winner = outcome.winner or "draw"
        wins[winner] = wins.get(winner, 0) + 1
        if args.json:
            print(
                json.dumps(
                    {
                        "seed": seed,
                        "winner": outcome.winner,
                        "scores": outcome.scores,
                        "round_winners": outcome.round_winners,
                        "turns": outcome.turns,
                    }
                )
            )
        else:
            print(f"game {game}: winner={winner} turns={outcome.turns} scores={outcome.scores}")

    print(f"summary: {wins}")


if __name__ == "__main__":
    main()
