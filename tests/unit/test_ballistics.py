import math

import numpy as np
import pytest
from hypothesis import given
from hypothesis import strategies as st

from artillery.constants import GRAVITY, MUZZLE_HEIGHT
from artillery.sim.ballistics import (
    apex,
    compute_trajectory,
    from_spherical,
    mirv_trajectories,
    model_to_view,
    muzzle_parameters,
    split_mirv,
    to_spherical,
    view_to_model,
)
from artillery.sim.tank import Tank
from artillery.terrain.heightfield import HeightField


def flat(size: int = 257, level: float = 0.0) -> HeightField:
    return HeightField.from_array(np.full((size, size), level))


class TestSpherical:
    def test_zero_azimuth_points_down_the_view_z_axis(self):
        v = from_spherical(0.0, 0.0, 10.0)
        assert v.tolist() == pytest.approx([0.0, 0.0, -10.0])

    def test_straight_up(self):
        v = from_spherical(123.0, 90.0, 10.0)
        assert v.tolist() == pytest.approx([0.0, 10.0, 0.0], abs=1e-9)

    @given(
        az=st.floats(min_value=0.0, max_value=359.9),
        alt=st.floats(min_value=-80.0, max_value=80.0),
        speed=st.floats(min_value=0.1, max_value=200.0),
    )
    def test_to_spherical_inverts_from_spherical(self, az, alt, speed):
        back = to_spherical(from_spherical(az, alt, speed))
        assert back[1] == pytest.approx(alt, abs=1e-6)
        assert back[2] == pytest.approx(speed, rel=1e-9)
        assert math.cos(math.radians(back[0] - az)) == pytest.approx(1.0, abs=1e-9)

    def test_model_space_swaps_y_and_z(self):
        view = np.array([1.0, 2.0, 3.0])
        assert view_to_model(view).tolist() == [1.0, 3.0, 2.0]
        assert model_to_view(view_to_model(view)).tolist() == [1.0, 2.0, 3.0]

    def test_muzzle_sits_above_the_tank(self):
        tank = Tank(lon=10.0, lat=20.0, elev=5.0, azimuth=90.0, altitude=45.0, velocity=10.0)
        pos, vel = muzzle_parameters(tank)
        assert pos.tolist() == [10.0, 20.0, 5.0 + MUZZLE_HEIGHT]
        # azimuth 90 fires towards -x
        assert vel[0] < 0.0
        assert vel[1] == pytest.approx(0.0, abs=1e-9)
        assert vel[2] > 0.0


class TestTrajectory:
    def test_lands_on_the_surface(self):
        pts = list(compute_trajectory([128.0, 128.0, 10.0], [10.0, 0.0, 10.0], 0.05, flat()))
        assert pts[0].tolist() == [128.0, 128.0, 10.0]
        assert pts[-1][2] == 0.0
        assert all(p[2] > 0.0 for p in pts[1:-1])

    def test_is_restartable(self):
        args = ([128.0, 128.0, 10.0], [7.0, -3.0, 20.0], 0.02, flat())
        a = np.array(list(compute_trajectory(*args)))
        b = np.array(list(compute_trajectory(*args)))
        assert np.array_equal(a, b)

    def test_follows_the_closed_form_arc(self):
        pts = list(compute_trajectory([0.0, 0.0, 0.0], [1.0, 0.0, 20.0], 0.1))
        t = 1.0
        assert pts[10].tolist() == pytest.approx([t, 0.0, 20.0 * t - 0.5 * GRAVITY * t * t])

    def test_leaving_the_board_ends_the_flight(self):
        pts = list(compute_trajectory([250.0, 128.0, 10.0], [50.0, 0.0, 5.0], 0.05, flat()))
        assert pts[-1][0] > 256.0
        assert pts[-1][2] > 0.0

    def test_flight_time_is_bounded(self):
        pts = list(compute_trajectory([0.0, 0.0, 0.0], [0.0, 0.0, 1e6], 1.0, max_time=5.0))
        assert len(pts) == 6

    def test_rejects_non_positive_step(self):
        with pytest.raises(ValueError):
            next(compute_trajectory([0, 0, 0], [0, 0, 1], 0.0))


class TestMirv:
    def test_apex_of_a_vertical_shot(self):
        t, pos, vel = apex([0.0, 0.0, 0.0], [0.0, 0.0, GRAVITY * 2])
        assert t == pytest.approx(2.0)
        assert pos[2] == pytest.approx(2.0 * GRAVITY)
        assert vel[2] == pytest.approx(0.0)

    def test_split_is_deterministic_and_centered(self):
        a = split_mirv([0, 0, 50], [5.0, 0.0, 0.0], count=5, spread=2.0)
        b = split_mirv([0, 0, 50], [5.0, 0.0, 0.0], count=5, spread=2.0)
        assert len(a) == 5
        for (pa, va), (pb, vb) in zip(a, b):
            assert np.array_equal(pa, pb)
            assert np.array_equal(va, vb)
        mean_vel = np.mean([v for _, v in a[1:]], axis=0)
        assert mean_vel.tolist() == pytest.approx([5.0, 0.0, 0.0], abs=1e-9)

    def test_warheads_fly_from_the_apex(self):
        flights = mirv_trajectories([128.0, 128.0, 10.0], [5.0, 5.0, 30.0], 0.05, flat(), count=3)
        assert len(flights) == 4
        _, top, _ = apex([128.0, 128.0, 10.0], [5.0, 5.0, 30.0])
        for flight in flights[1:]:
            assert flight[0].tolist() == pytest.approx(top.tolist())
            assert flight[-1][2] == 0.0

    def test_shell_that_hits_before_the_apex_does_not_split(self):
        surface = flat()
        surface.cells[:, 131:] = 500.0
        flights = mirv_trajectories([128.0, 128.0, 10.0], [20.0, 0.0, 30.0], 0.05, surface)
        assert len(flights) == 1
        assert flights[0][-1][2] == 500.0
