import numpy as np
import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from artillery.constants import MAX_DRAIN_SEGMENT_S, PIPE_WETTING_LOSS
from artillery.terrain.fluid import find_puddles, fluid_schedule, simulate_fluid
from artillery.terrain.heightfield import HeightField


def ramp(size: int = 33) -> HeightField:
    xs = np.arange(size, dtype=float)
    return HeightField.from_array(np.tile(xs, (size, 1)) + 10.0)


def assert_fluid_is_consistent(result, volume):
    z = result.path[:, 2]
    assert np.all(np.diff(result.remaining) <= 1e-9)
    assert np.all(result.remaining >= 0.0)
    assert np.all(result.levels >= z)
    assert np.sum(result.levels - z) <= volume - result.remaining[-1] + 1e-6
    for lake in result.lakes:
        if lake.rim is not None:
            assert lake.level <= lake.rim + 1e-9
    last = result.lakes[-1] if result.lakes else None
    if last is not None and last.rim is None:
        # everything from the bottom of the last lake on is one connected body
        tail = slice(min(last.members), None)
        under = z[tail] < last.level - 1e-9
        assert np.all(result.pooled[tail][under])


class TestSimulateFluid:
    def test_basin_pools_at_the_bottom(self, bowl):
        result = simulate_fluid(bowl(), 32, 32, 250.0)
        assert result.path[0].tolist() == [32.0, 32.0, 50.0]
        assert result.remaining[0] == 250.0
        assert result.pooled[0]
        assert result.levels[0] > 50.0

    def test_ramp_drains_to_the_edge(self):
        result = simulate_fluid(ramp(), 16, 16, 100.0)
        assert result.path[-1][0] == 0.0
        assert list(result.path[:, 2]) == [26.0 - i for i in range(17)]
        assert np.allclose(np.diff(result.remaining), -PIPE_WETTING_LOSS)
        assert not result.pooled.any()

    def test_max_cells_caps_the_walk(self, bowl):
        result = simulate_fluid(bowl(), 32, 32, 1e9, max_cells=10)
        assert len(result.path) == 10

    def test_small_volume_runs_dry(self, bowl):
        result = simulate_fluid(bowl(), 32, 32, 3.0)
        assert len(result.path) < 65 * 65
        assert result.remaining[-1] >= 0.0

    def test_start_off_board_gives_empty_result(self, bowl):
        result = simulate_fluid(bowl(), 100, 100, 10.0)
        assert len(result.path) == 0
        assert len(result.remaining) == 0

    @given(seed=st.integers(min_value=0, max_value=10_000), volume=st.floats(min_value=1.0, max_value=5e4))
    @settings(max_examples=40, deadline=None)
    def test_volume_accounting_invariants(self, seed, volume):
        surface = HeightField.empty(33, 33)
        surface.fill_fractal(50.0, 200.0, np.random.default_rng(seed))
        result = simulate_fluid(surface, 16, 16, volume)
        assert_fluid_is_consistent(result, volume)

    def test_refilled_pipe_joins_the_lake(self):
        # Two basins joined by a channel: the fluid spills out of the first,
        # drains down the channel, then fills the second until it reaches the
        # first rim and floods the channel.
        z = np.full((9, 13), 100.0)
        z[4, 1:3] = 10.0  # first basin
        z[4, 3] = 20.0  # rim
        z[4, 4:6] = [15.0, 12.0]  # channel
        z[4, 6:9] = 5.0  # second basin
        result = simulate_fluid(HeightField.from_array(z), 1, 4, 200.0)

        assert_fluid_is_consistent(result, 200.0)
        [lake] = result.lakes
        assert lake.rim is None
        assert lake.level > 20.0
        channel = [i for i, (x, _, _) in enumerate(result.path) if x in (4.0, 5.0)]
        assert len(channel) == 2
        assert result.pooled[channel].all()
        assert set(channel) <= set(lake.members)

    @pytest.mark.parametrize("seed", [76, 3, 1234])
    def test_fractal_lakes_store_no_more_than_released(self, seed):
        surface = HeightField.empty(33, 33)
        surface.fill_fractal(50.0, 200.0, np.random.default_rng(seed))
        assert_fluid_is_consistent(simulate_fluid(surface, 16, 16, 3000.0), 3000.0)


class TestPuddles:
    def test_profile_splits_into_basins(self):
        z = [5, 4, 3, 4, 5, 6, 2, 3, 7]
        puddles = find_puddles(np.array(z, dtype=float))
        assert [(p.start, p.min_pos, p.end) for p in puddles] == [(0, 2, 5), (0, 6, 8)]
        assert [(p.min_z, p.max_z) for p in puddles] == [(3.0, 6.0), (2.0, 7.0)]

    def test_monotone_descent_has_no_puddles(self):
        assert find_puddles(np.array([5.0, 4.0, 3.0, 1.0])) == []
        assert find_puddles(np.array([1.0])) == []

    @given(st.lists(st.floats(min_value=0, max_value=100), min_size=2, max_size=60))
    def test_puddle_never_rises_above_its_rim(self, z):
        z = np.array(z)
        for p in find_puddles(z):
            assert p.start <= p.min_pos <= p.end
            assert p.max_z == z[p.end]
            assert z[p.start : p.end + 1].min() == p.min_z


class TestSchedule:
    def test_shared_basin_continues_one_fill(self):
        z = np.array([10.0, 2.0, 5.0, 4.0, 8.0])
        remaining = np.array([100.0, 99.0, 90.0, 89.0, 50.0])
        segs = [s for s in fluid_schedule(z, remaining) if s.kind == "puddle"]
        assert len(segs) == 2
        assert segs[0].end_level == 5.0
        assert segs[1].start == 2
        assert segs[1].start_level == 5.0
        assert segs[1].end_level == 8.0

    def test_segments_are_sequential(self):
        z = np.array([9.0, 7.0, 5.0, 6.0, 8.0, 3.0, 1.0])
        remaining = np.array([50.0, 49.0, 48.0, 40.0, 30.0, 29.0, 28.0])
        segs = fluid_schedule(z, remaining)
        assert [s.kind for s in segs] == ["pipe", "puddle", "pipe"]
        for a, b in zip(segs, segs[1:]):
            assert b.t_start == pytest.approx(a.t_start + a.duration)

    def test_large_volumes_fit_the_fill_budget(self):
        z = np.array([10.0, 0.0, 1.0, 2.0, 3.0])
        remaining = np.array([1e7, 9e6, 6e6, 3e6, 0.0])
        segs = fluid_schedule(z, remaining, max_fill_time=20.0)
        fill = sum(s.duration for s in segs if s.kind == "puddle")
        assert fill <= 20.0 + 1e-9
        assert all(s.duration <= MAX_DRAIN_SEGMENT_S for s in segs if s.kind == "pipe")
