import math

import numpy as np
import pytest

from artillery.ai.player_ai import REFLECTION, AISample, PlayerAI
from artillery.sim.ballistics import model_to_view, to_spherical


@pytest.fixture
def ai_engine(make_engine):
    # player 0 is human, player 1 is the computer
    return make_engine(num_players=2, num_ais=1)


def feed(ai: PlayerAI, target: np.ndarray, offsets) -> list[np.ndarray]:
    aims = []
    for k, off in enumerate(offsets):
        aim = np.array([10.0 + k, -5.0 * k, 30.0 + k])
        ai.record_result(aim, target + np.array([off, 0.0, 0.0]), target)
        aims.append(aim)
    return aims


class TestColdStart:
    def test_fires_towards_the_target(self, ai_engine):
        ai = ai_engine.board.players[1].ai
        me = ai_engine.board.players[1].tank.position
        them = ai_engine.board.players[0].tank.position

        az, alt, power = ai.fire_parameters(ai_engine, 1)

        expected = math.degrees(math.atan2(me[0] - them[0], me[1] - them[1])) % 360.0
        assert az == pytest.approx(expected)
        assert 30.0 <= alt <= 80.0
        assert 30.0 <= power <= 100.0

    def test_no_target_picks_any_heading(self):
        ai = PlayerAI(rng=np.random.default_rng(0))
        az, alt, _ = ai._cold_start(np.zeros(3), None)
        assert 0.0 <= az < 360.0
        assert 30.0 <= alt <= 80.0


class TestWarmStart:
    def test_reflects_the_worst_shot_through_the_others(self, ai_engine):
        ai = ai_engine.board.players[1].ai
        target = ai_engine.board.players[0].tank.position
        aims = feed(ai, target, [5.0, 40.0, 10.0, 2.0])

        az, alt, power = ai.fire_parameters(ai_engine, 1)

        furthest = aims[1]
        avg = np.mean([aims[0], aims[2], aims[3]], axis=0)
        expected = to_spherical(model_to_view(furthest + REFLECTION * (avg - furthest)))
        assert (az, alt, power) == pytest.approx(expected)

    def test_only_the_last_four_shots_count(self, ai_engine):
        ai = ai_engine.board.players[1].ai
        target = ai_engine.board.players[0].tank.position
        feed(ai, target, [500.0, 1.0, 2.0, 3.0, 4.0])
        assert len(ai.data) == 5
        assert len(ai.last_four) == 4
        assert all(s.miss_distance() < 10.0 for s in ai.last_four)

    def test_reset_forgets_history(self, ai_engine):
        ai = ai_engine.board.players[1].ai
        feed(ai, np.zeros(3), [1.0, 2.0, 3.0, 4.0])
        ai.reset()
        assert ai.data == []
        assert len(ai.last_four) == 0
        assert ai.optimizer is None


class TestSimplexStrategy:
    def test_first_shot_is_a_cold_start(self, ai_engine):
        ai = PlayerAI(rng=np.random.default_rng(1), strategy="simplex")
        ai_engine.board.players[1].ai = ai
        ai.fire_parameters(ai_engine, 1)
        assert ai.optimizer is None

    def test_results_feed_the_optimizer(self):
        ai = PlayerAI(rng=np.random.default_rng(1), strategy="simplex")
        target = np.array([50.0, 50.0, 100.0])
        ai.record_result([10.0, 0.0, 30.0], [60.0, 50.0, 100.0], target)
        assert ai.optimizer is not None
        assert len(ai.optimizer.simplex) == 1
        assert ai.optimizer.simplex[0].value == pytest.approx(10.0)

    def test_rejects_unknown_strategy(self):
        with pytest.raises(ValueError, match="Unknown AI strategy"):
            PlayerAI(strategy="psychic")


class TestPersistence:
    def test_round_trip_keeps_history_and_optimizer(self):
        ai = PlayerAI(rng=np.random.default_rng(2), strategy="simplex")
        target = np.array([1.0, 2.0, 3.0])
        for k in range(3):
            ai.record_result([k + 1.0, 2.0, 3.0], [k, 0.0, 0.0], target)

        back = PlayerAI.from_dict(ai.to_dict(), rng=np.random.default_rng(2))

        assert back.strategy == "simplex"
        assert back.to_dict() == ai.to_dict()
        assert np.array_equal(back.optimizer.next_point(), ai.optimizer.next_point())

    def test_sample_without_target_has_no_miss(self):
        s = AISample(aim=np.zeros(3), impact=np.ones(3))
        assert s.miss_distance() == 0.0
        assert AISample.from_dict(s.to_dict()).target is None
