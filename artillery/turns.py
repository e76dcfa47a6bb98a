from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field

import numpy as np

from .config import GameConfig
from .sim.engine import EngineState, FireResult, GameEngine, GameStateError

logger = logging.getLogger(__name__)

# (engine, player index) -> (azimuth, altitude, power)
AimProvider = Callable[[GameEngine, int], tuple[float, float, float]]


@dataclass(frozen=True)
class MatchOutcome:
    winner: str | None  # highest score, None on a tie
    scores: dict[str, int]
    round_winners: list[str | None]
    turns: int
    seed: int | None


@dataclass
class TurnLoop:
    """Drives one engine through its turns on a single device (hot-seat or all-AI)."""

    engine: GameEngine
    human_input: AimProvider | None = None
    turns: int = 0
    round_winners: list[str | None] = field(default_factory=list)

    def step(self) -> FireResult | None:
        engine = self.engine
        if engine.state == EngineState.GAME_OVER:
            return None
        if engine.state == EngineState.ROUND_ENDED:
            engine.start_round()
        if engine.state != EngineState.ROUND_IN_PROGRESS:
            raise GameStateError(f"cannot play a turn in state {engine.state.value}")

        idx = engine.board.current_player
        player = engine.board.players[idx]
        if player.ai is not None:
            azimuth, altitude, power = player.ai.fire_parameters(engine, idx)
        elif self.human_input is not None:
            azimuth, altitude, power = self.human_input(engine, idx)
        else:
            raise GameStateError(f"no input for human player {player.name!r}")
        engine.set_tank_aim(azimuth, altitude, idx)
        engine.set_tank_power(power, idx)

        result = engine.fire()
        self.turns += 1
        if result.new_round:
            self.round_winners.append(result.round_winner)
        return result

    def run(self, max_turns: int | None = None) -> MatchOutcome:
        while self.engine.state != EngineState.GAME_OVER:
            if max_turns is not None and self.turns >= max_turns:
                logger.warning(f"TurnLoop: stopping after {self.turns} turns")
                break
            self.step()
        return self.outcome()

    def outcome(self) -> MatchOutcome:
        players = self.engine.board.players
        scores = {p.name: int(p.score) for p in players}
        best = max(scores.values()) if scores else 0
        leaders = [name for name, s in scores.items() if s == best]
        return MatchOutcome(
            winner=leaders[0] if len(leaders) == 1 else None,
            scores=scores,
            round_winners=list(self.round_winners),
            turns=self.turns,
            seed=self.engine.config.seed,
        )


def play_local_game(
    config: GameConfig,
    *,
    rng: np.random.Generator | None = None,
    human_input: AimProvider | None = None,
    max_turns: int | None = None,
) -> MatchOutcome:
    engine = GameEngine(config, rng=rng)
    engine.start_game()
    return TurnLoop(engine, human_input=human_input).run(max_turns=max_turns)
