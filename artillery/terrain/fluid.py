"""Gravity-driven fluid redistribution for mud and napalm.

The fluid walks the terrain with a priority flood from the impact cell: the
lowest cell on the wet frontier is always visited next. A visit below the
current lake level means the lake spilled and the fluid is draining down a
pipe; a visit at or above it raises the lake. Spilled lakes are kept on a
stack and merge back in when a later lake rises to their rim.
"""

from __future__ import annotations

import heapq
import logging
from dataclasses import dataclass, field

import numpy as np

from ..constants import DRAIN_RATE, FILL_RATE, MAX_DRAIN_SEGMENT_S, MAX_FILL_TIME_S, PIPE_WETTING_LOSS
from .heightfield import HeightField

logger = logging.getLogger(__name__)

_NEIGHBOURS = ((1, 0), (-1, 0), (0, 1), (0, -1))


@dataclass
class Lake:
    min_pos: int  # path index of the basin bottom
    level: float
    area: int = 1
    members: list[int] = field(default_factory=list)
    rim: float | None = None  # set once the lake spills
    outflow: list[int] = field(default_factory=list)  # pipe cells drained after the spill


@dataclass
class FluidResult:
    path: np.ndarray  # float64[n, 3] (x, y, z) in visit order
    remaining: np.ndarray  # float64[n], fluid left after visiting each point
    levels: np.ndarray  # float64[n], final fluid surface at each point (z for pipe cells)
    lakes: list[Lake]

    @property
    def pooled(self) -> np.ndarray:
        """Boolean mask over path points that ended up under standing fluid."""
        return self.levels > self.path[:, 2] if len(self.path) else np.zeros(0, dtype=bool)


@dataclass(frozen=True)
class Puddle:
    start: int  # previous path point at or above the rim
    min_pos: int
    end: int  # rim point
    min_z: float
    max_z: float


@dataclass(frozen=True)
class FluidSegment:
    kind: str  # "pipe" | "puddle"
    start: int
    end: int
    start_level: float
    end_level: float
    t_start: float
    duration: float


def simulate_fluid(
    surface: HeightField,
    start_x: int,
    start_y: int,
    volume: float,
    *,
    max_cells: int | None = None,
    wetting_loss: float = PIPE_WETTING_LOSS,
) -> FluidResult:
    grid = surface.cells
    rows, cols = grid.shape
    sx = int(start_x) - surface.min_x
    sy = int(start_y) - surface.min_y
    if not (0 <= sx < cols and 0 <= sy < rows) or volume <= 0.0:
        return FluidResult(np.zeros((0, 3)), np.zeros(0), np.zeros(0), [])
    max_cells = int(max_cells) if max_cells is not None else rows * cols

    visited = np.zeros(grid.shape, dtype=bool)
    heap: list[tuple[float, int, int, int]] = []
    seq = 0
    heapq.heappush(heap, (float(grid[sy, sx]), seq, sy, sx))
    visited[sy, sx] = True

    path: list[tuple[float, float, float]] = []
    remaining: list[float] = []
    stack: list[Lake] = []
    lake: Lake | None = None
    draining = False
    left = float(volume)
    prev_z = 0.0

    def _raise(target: float) -> bool:
        # Raise the current lake to `target`, merging spilled lakes on the way.
        # A merge also floods the pipe the old lake drained through.
        assert lake is not None
        while stack and stack[-1].rim is not None and target >= stack[-1].rim:
            old = stack[-1]
            pipe_fill = sum(old.rim - path[m][2] for m in old.outflow)
            if not _lift(old.rim, pipe_fill):
                return False
            stack.pop()
            lake.area += old.area + len(old.outflow)
            lake.members = old.members + old.outflow + lake.members
            lake.min_pos = old.min_pos
        return _lift(target)

    def _lift(target: float, extra: float = 0.0) -> bool:
        nonlocal left
        assert lake is not None
        cost = max(target - lake.level, 0.0) * lake.area
        if cost + extra > left:
            lake.level = min(max(lake.level, target), lake.level + left / lake.area)
            left = 0.0
            return False
        left -= cost + extra
        lake.level = max(lake.level, target)
        return True

    while heap and left > 0.0 and len(path) < max_cells:
        zc, _, y, x = heapq.heappop(heap)
        idx = len(path)

        if lake is None and not draining:
            lake = Lake(min_pos=0, level=zc, members=[0])
        elif not draining and lake is not None and zc < lake.level:
            # spill over the rim
            lake.rim = lake.level
            stack.append(lake)
            lake = None
            draining = True

        if draining:
            if idx > 0 and zc >= prev_z:
                # previous point was the bottom of a new basin
                if stack and stack[-1].outflow[-1:] == [idx - 1]:
                    stack[-1].outflow.pop()
                lake = Lake(min_pos=idx - 1, level=prev_z, members=[idx - 1])
                draining = False
            else:
                left = max(0.0, left - wetting_loss)
                if stack:
                    stack[-1].outflow.append(idx)

        if not draining and lake is not None and idx > 0:
            if not _raise(zc):
                # the lake ran dry below this cell; record where it stopped
                path.append((float(x + surface.min_x), float(y + surface.min_y), float(zc)))
                remaining.append(left)
                break
            lake.area += 1
            lake.members.append(idx)

        path.append((float(x + surface.min_x), float(y + surface.min_y), float(zc)))
        remaining.append(left)
        prev_z = zc

        if x == 0 or y == 0 or x == cols - 1 or y == rows - 1:
            logger.debug(f"simulate_fluid: reached board edge at ({x},{y}) with {left:.1f} left")
            break

        for dx, dy in _NEIGHBOURS:
            nx, ny = x + dx, y + dy
            if 0 <= nx < cols and 0 <= ny < rows and not visited[ny, nx]:
                visited[ny, nx] = True
                seq += 1
                heapq.heappush(heap, (float(grid[ny, nx]), seq, ny, nx))

    lakes = list(stack)
    if lake is not None:
        lakes.append(lake)

    path_arr = np.asarray(path, dtype=np.float64).reshape(-1, 3)
    levels = path_arr[:, 2].copy()
    for lk in lakes:
        for m in lk.members:
            if m < len(levels):
                levels[m] = max(levels[m], lk.level)
    logger.debug(f"simulate_fluid: {len(path)} cells visited, {len(lakes)} lakes, {left:.1f} volume left")
    return FluidResult(path=path_arr, remaining=np.asarray(remaining, dtype=np.float64), levels=levels, lakes=lakes)


def find_puddles(path_z: np.ndarray) -> list[Puddle]:
    """Split a path's elevation profile into basins.

    Each puddle runs from a rim point back to the previous point at or above
    the same elevation; its bottom is the lowest point in between. Puddles
    that enclose an earlier one share its bottom.
    """
    z = np.asarray(path_z, dtype=np.float64)
    n = len(z)
    puddles: list[Puddle] = []
    i = 0
    while i < n - 1:
        while i < n - 1 and z[i + 1] < z[i]:
            i += 1
        low = i
        j = i
        while j < n - 1 and z[j + 1] >= z[j]:
            j += 1
        if j == low:
            break
        rim = float(z[j])
        start = 0
        for k in range(low - 1, -1, -1):
            if z[k] >= rim:
                start = k
                break
        min_pos = start + int(np.argmin(z[start : j + 1]))
        puddles.append(Puddle(start=start, min_pos=min_pos, end=j, min_z=float(z[min_pos]), max_z=rim))
        i = j
    return puddles


def fluid_schedule(
    path_z: np.ndarray,
    remaining: np.ndarray,
    *,
    drain_rate: float = DRAIN_RATE,
    fill_rate: float = FILL_RATE,
    max_fill_time: float = MAX_FILL_TIME_S,
) -> list[FluidSegment]:
    """Timing of drain pipes and puddle fills for playback."""
    z = np.asarray(path_z, dtype=np.float64)
    rem = np.asarray(remaining, dtype=np.float64)
    n = len(z)
    if n <= 1:
        return []
    fill_rate = max(fill_rate, float(rem[0]) / max_fill_time)

    segments: list[FluidSegment] = []
    filled_to: dict[int, float] = {}
    prev_end = 0
    t = 0.0

    def _pipe(a: int, b: int) -> None:
        nonlocal t
        used = float(rem[a] - rem[b])
        duration = min(MAX_DRAIN_SEGMENT_S, used / drain_rate)
        segments.append(FluidSegment("pipe", a, b, float(z[a]), float(z[b]), t, duration))
        t += duration

    for puddle in find_puddles(z):
        if prev_end < puddle.min_pos and z[prev_end] > z[puddle.min_pos]:
            _pipe(prev_end, puddle.min_pos)

        rise_from = puddle.min_pos
        start_level = float(z[puddle.min_pos])
        if puddle.min_pos in filled_to:
            # same basin as an earlier puddle, keep filling from where it stopped
            rise_from = max(prev_end, puddle.min_pos)
            start_level = filled_to[puddle.min_pos]
        end_level = min(puddle.max_z, float(z[puddle.end]))
        filled_to[puddle.min_pos] = max(filled_to.get(puddle.min_pos, end_level), end_level)

        volume = float(rem[rise_from] - rem[puddle.end])
        duration = volume / fill_rate
        segments.append(FluidSegment("puddle", rise_from, puddle.end, start_level, end_level, t, duration))
        t += duration
        prev_end = puddle.end

    if prev_end < n - 1:
        _pipe(prev_end, n - 1)
    return segments
