"""Game engine rules: turn order, rounds, scoring and weapons."""

import json

import numpy as np
import pytest

from artillery.config import WeaponStyle
from artillery.constants import COLOR_DIRT, HIT_POINTS, KILL_BONUS
from artillery.sim.engine import EngineState, GameEngine, GameStateError

OFF_BOARD = ([-50.0, -50.0, 300.0], [-10.0, 0.0, 0.0])


def fire_off_board(engine):
    return engine.fire(*OFF_BOARD)


def drop_on(engine, target_index: int):
    """Fire straight down onto a tank."""
    tank = engine.board.players[target_index].tank
    return engine.fire(tank.position + np.array([0.0, 0.0, 5.0]), [0.0, 0.0, -1.0])


class TestSetup:
    def test_start_game_seats_humans_then_computers(self, make_engine):
        engine = make_engine(num_players=3, num_ais=2)
        names = [p.name for p in engine.board.players]
        assert names == ["Player 1", "Computer 1", "Computer 2"]
        assert [p.is_ai for p in engine.board.players] == [False, True, True]
        assert engine.state == EngineState.ROUND_IN_PROGRESS
        assert engine.board.current_round == 1
        assert engine.board.current_player == 0

    def test_tanks_sit_on_flat_pads(self, make_engine, small_terrain):
        engine = make_engine(num_players=2)
        for p in engine.board.players:
            x, y = int(p.tank.lon), int(p.tank.lat)
            assert engine.get_elevation(x, y) == p.tank.elev
            assert engine.get_elevation(x + small_terrain.tank_pad_radius, y) == p.tank.elev
            assert small_terrain.tank_margin <= x <= 128 - small_terrain.tank_margin

    def test_bedrock_stays_below_surface(self, make_engine):
        engine = make_engine()
        assert np.all(engine.board.bedrock.cells <= engine.board.surface.cells)

    def test_invalid_player_counts(self):
        with pytest.raises(ValueError):
            GameEngine().start_game(num_players=2, num_ais=3)

    def test_same_seed_same_board(self, make_engine):
        assert make_engine(seed=3).board.checksum() == make_engine(seed=3).board.checksum()


class TestControls:
    def test_aim_is_wrapped_and_clamped(self, make_engine):
        engine = make_engine()
        engine.set_tank_aim(370.0, 200.0)
        assert engine.current_player.tank.azimuth == pytest.approx(10.0)
        assert engine.current_player.tank.altitude == 180.0
        engine.set_tank_aim(-30.0, -5.0)
        assert engine.current_player.tank.azimuth == pytest.approx(330.0)
        assert engine.current_player.tank.altitude == 0.0

    def test_power_is_clamped(self, make_engine):
        engine = make_engine()
        engine.set_tank_power(150.0)
        assert engine.current_player.tank.velocity == 100.0
        engine.set_tank_power(-5.0)
        assert engine.current_player.tank.velocity == 0.0

    def test_select_weapon_validates(self, make_engine):
        engine = make_engine()
        with pytest.raises(ValueError, match="Unknown weapon"):
            engine.select_weapon(99)
        with pytest.raises(ValueError, match="Unknown size"):
            engine.select_weapon(0, 9)
        engine.select_weapon(1, 1, player_index=1)
        assert (engine.board.players[1].weapon_id, engine.board.players[1].weapon_size_id) == (1, 1)

    def test_unknown_player_index(self, make_engine):
        with pytest.raises(IndexError):
            make_engine().set_tank_power(10.0, player_index=5)

    def test_prediction_lands_on_the_board(self, make_engine):
        engine = make_engine()
        engine.set_tank_aim(engine.current_player.tank.azimuth, 60.0)
        engine.set_tank_power(20.0)
        path = engine.predict_trajectory()
        last = path[-1]
        ground = engine.get_elevation(last[0], last[1])
        assert ground is None or last[2] == ground


class TestTurnOrder:
    def test_fire_before_start_raises(self):
        with pytest.raises(GameStateError):
            GameEngine().fire()

    def test_dead_players_are_skipped(self, make_engine):
        engine = make_engine(num_players=3, rounds=0)
        for p, hp in zip(engine.board.players, [5.0, 0.0, 3.0]):
            p.hit_points = hp
        fire_off_board(engine)
        assert engine.board.current_player == 2
        fire_off_board(engine)
        assert engine.board.current_player == 0
        assert engine.state == EngineState.ROUND_IN_PROGRESS

    def test_last_tank_standing_ends_elimination_game(self, make_engine):
        engine = make_engine(num_players=2, rounds=0)
        engine.forfeit_player(1)
        assert engine.board.current_player == 0
        result = fire_off_board(engine)
        assert result.new_round and result.game_over
        assert result.round_winner == "Player 1"
        assert engine.state == EngineState.GAME_OVER

    def test_rounds_end_when_everyone_has_fired(self, make_engine):
        engine = make_engine(num_players=2, rounds=2)
        assert not fire_off_board(engine).new_round
        result = fire_off_board(engine)
        assert result.new_round and not result.game_over
        assert result.round_winner is None
        assert engine.state == EngineState.ROUND_ENDED
        with pytest.raises(GameStateError):
            fire_off_board(engine)

        engine.start_round()
        assert engine.board.current_round == 2
        assert all(p.hit_points == HIT_POINTS for p in engine.board.players)
        fire_off_board(engine)
        result = fire_off_board(engine)
        assert result.game_over
        assert engine.state == EngineState.GAME_OVER
        with pytest.raises(GameStateError):
            engine.start_round()

    def test_skip_current_player(self, make_engine):
        engine = make_engine(num_players=3)
        engine.skip_current_player()
        assert engine.board.current_player == 1
        assert not engine.board.players[0].alive
        with pytest.raises(GameStateError):
            GameEngine().skip_current_player()

    def test_forfeit_out_of_turn_keeps_current_player(self, make_engine):
        engine = make_engine(num_players=3)
        outcome = engine.forfeit_player(2)
        assert not outcome.new_round
        assert engine.board.current_player == 0


class TestScoring:
    def test_shortfall_in_credit_comes_out_of_score(self, make_engine):
        engine = make_engine()
        engine.current_player.credit = 100
        engine.select_weapon(0, 3)  # costs 750
        fire_off_board(engine)
        p = engine.board.players[0]
        assert p.credit == 0
        assert p.score == -650

    def test_direct_hit_damages_and_scores(self, make_engine, flatten):
        engine = make_engine()
        flatten(engine)
        result = drop_on(engine, 1)
        victim = engine.board.players[1]

        assert result.damage == {1: pytest.approx(200.0)}
        assert victim.hit_points == pytest.approx(HIT_POINTS - 200.0)
        assert engine.board.players[0].score == 200
        assert victim.tank.elev == pytest.approx(80.0)
        assert engine.board.colors.get_pixel(int(victim.tank.lon), int(victim.tank.lat)) == COLOR_DIRT
        assert result.final.get_pixel(int(victim.tank.lon), int(victim.tank.lat)) == pytest.approx(80.0)
        assert result.old.get_pixel(int(victim.tank.lon), int(victim.tank.lat)) == 100.0

    def test_kill_bonus_and_round_winner(self, make_engine, flatten):
        engine = make_engine()
        flatten(engine)
        engine.board.players[1].hit_points = 50.0
        result = drop_on(engine, 1)
        assert engine.board.players[1].hit_points == 0.0
        assert engine.board.players[0].score == 200 + KILL_BONUS
        assert result.new_round
        assert result.round_winner == "Player 1"

    def test_hitting_yourself_costs_score(self, make_engine, flatten):
        engine = make_engine()
        flatten(engine)
        drop_on(engine, 0)
        assert engine.board.players[0].score == -200

    def test_targeting_computer_costs_extra(self, make_engine):
        engine = make_engine()
        engine.current_player.use_targeting_computer = True
        fire_off_board(engine)
        p = engine.board.players[0]
        assert p.credit == 5000 - 500
        assert p.used_computer


class TestWeapons:
    def test_dirt_raises_terrain_without_damage(self, make_engine, flatten):
        engine = make_engine()
        flatten(engine)
        engine.select_weapon(3, 0)
        result = drop_on(engine, 1)
        assert result.weapon_style == WeaponStyle.GENERATIVE
        assert result.damage == {}
        assert engine.board.players[1].tank.elev == pytest.approx(140.0)

    def test_mud_fills_its_crater(self, make_engine, flatten):
        engine = make_engine()
        flatten(engine)
        engine.select_weapon(4, 0)
        result = drop_on(engine, 1)
        tank = engine.board.players[1].tank
        assert len(result.detonations[0].fluid_path) > 0
        assert engine.get_elevation(tank.lon, tank.lat) > 80.0

    def test_napalm_burns_tanks_in_the_pool(self, make_engine, flatten):
        engine = make_engine()
        flatten(engine)
        engine.select_weapon(5, 0)
        result = drop_on(engine, 1)
        assert result.weapon_style == WeaponStyle.NAPALM
        # blast alone would be 10 * 20 * 0.5
        assert result.damage[1] > 100.0
        tank = engine.board.players[1].tank
        assert engine.get_elevation(tank.lon, tank.lat) == pytest.approx(80.0)

    def test_mirv_splits_into_warheads(self, make_engine, flatten):
        engine = make_engine()
        flatten(engine)
        engine.select_weapon(6, 0)
        result = engine.fire([64.0, 64.0, 110.0], [5.0, 0.0, 30.0])
        assert len(result.trajectories) == 6
        assert len(result.detonations) == 5
        assert result.explosion_radius == 40.0

    def test_computer_player_learns_from_its_shot(self, make_engine):
        engine = make_engine(num_players=2, num_ais=1)
        fire_off_board(engine)
        ai_player = engine.board.players[1]
        az, alt, power = ai_player.ai.fire_parameters(engine)
        engine.set_tank_aim(az, alt)
        engine.set_tank_power(power)
        engine.fire()
        assert len(ai_player.ai.data) == 1
        assert len(ai_player.prev_trajectory) > 1


class TestSnapshot:
    def test_snapshot_survives_json(self, make_engine):
        engine = make_engine(num_players=3, num_ais=1)
        fire_off_board(engine)
        snap = json.loads(json.dumps(engine.snapshot()))
        other = GameEngine.from_snapshot(snap)
        assert other.board.checksum() == engine.board.checksum()
        assert other.state == engine.state
        assert other.config == engine.config
        assert other.board.players[2].is_ai

    def test_compressed_snapshot_is_close(self, make_engine):
        engine = make_engine()
        snap = engine.snapshot(compress=True)
        other = GameEngine.from_snapshot(snap)
        diff = np.abs(other.board.surface.cells - engine.board.surface.cells).max()
        assert diff < 1e-3
        assert np.array_equal(other.board.colors.cells, engine.board.colors.cells)

    def test_load_board_defaults_to_round_in_progress(self, make_engine):
        engine = make_engine()
        fresh = GameEngine()
        fresh.load_board(engine.board.to_dict())
        assert fresh.state == EngineState.ROUND_IN_PROGRESS
        fire_off_board(fresh)
        assert fresh.board.current_player == 1

    def test_bad_state_leaves_the_board_alone(self, make_engine):
        engine = make_engine()
        before = engine.board.checksum()
        other = make_engine(seed=8).board.to_dict()
        with pytest.raises(ValueError):
            engine.load_board(other, "bogus")
        assert engine.board.checksum() == before
        assert engine.state == EngineState.ROUND_IN_PROGRESS
