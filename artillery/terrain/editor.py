from __future__ import annotations

import logging
import math
from dataclasses import dataclass

import numpy as np

from ..config import WeaponStyle
from ..constants import COLOR_DIRT, COLOR_SCORCHED, FLUID_VOLUME_SCALE
from .fluid import FluidResult, simulate_fluid
from .heightfield import HeightField

logger = logging.getLogger(__name__)


@dataclass
class CraterLayers:
    """Per-column crater layers over the blast footprint.

    All five fields are cropped to the footprint but keep full-board
    dimensions, so they can be read with board coordinates.
    """

    top: HeightField
    middle: HeightField
    bottom: HeightField
    top_color: HeightField
    bottom_color: HeightField


def torus_footprint(cx: float, cy: float, radius: float, ring_radius: float = 0.0) -> tuple[int, int, int, int]:
    ext = max(0.0, ring_radius) + max(0.0, radius)
    return (
        int(math.floor(cx - ext)),
        int(math.floor(cy - ext)),
        int(math.ceil(cx + ext)),
        int(math.ceil(cy + ext)),
    )


class TerrainEditor:
    """Applies explosions and fluids to a board's surface/bedrock/color fields."""

    def __init__(self, surface: HeightField, bedrock: HeightField, colors: HeightField):
        self.surface = surface
        self.bedrock = bedrock
        self.colors = colors

    def apply_explosion(
        self,
        at: np.ndarray,
        radius: float,
        style: WeaponStyle | str = WeaponStyle.EXPLOSIVE,
        ring_radius: float = 0.0,
    ) -> CraterLayers:
        style = WeaponStyle(style)
        cx, cy, cz = (float(v) for v in at[:3])
        rect = torus_footprint(cx, cy, radius, ring_radius)

        top = HeightField.crop(self.surface, *rect)
        middle = top.copy()
        bottom = top.copy()
        top_color = HeightField.crop(self.colors, *rect)
        bottom_color = top_color.copy()
        layers = CraterLayers(top, middle, bottom, top_color, bottom_color)

        win = self.surface.window(top.min_x, top.min_y, top.max_x, top.max_y)
        if win is None:
            logger.debug(f"apply_explosion: footprint {rect} is off the board")
            return layers

        ys = np.arange(top.min_y, top.max_y + 1, dtype=np.float64)
        xs = np.arange(top.min_x, top.max_x + 1, dtype=np.float64)
        yy, xx = np.meshgrid(ys, xs, indexing="ij")
        horiz = np.hypot(xx - cx, yy - cy)
        b = horiz - ring_radius
        a2 = radius * radius - b * b
        inside = a2 >= 0.0
        vert = np.sqrt(np.where(inside, a2, 0.0))
        exp_top = cz + vert
        exp_bottom = cz - vert

        current = self.surface.cells[win]
        colors = self.colors.cells[win]

        if style == WeaponStyle.GENERATIVE:
            new_surface = self._generative(layers, current, colors, exp_top, exp_bottom, inside)
        else:
            bedrock_win = self.bedrock.window(top.min_x, top.min_y, top.max_x, top.max_y)
            floor = self.bedrock.cells[bedrock_win] if bedrock_win is not None else np.full(current.shape, -np.inf)
            new_surface = self._explosive(layers, current, colors, exp_top, exp_bottom, inside, floor)

        self.surface.cells[win] = new_surface
        logger.debug(
            f"apply_explosion: {style.value} r={radius:.1f} ring={ring_radius:.1f} at "
            f"({cx:.1f},{cy:.1f},{cz:.1f}), {int(inside.sum())} columns"
        )
        return layers

    def _explosive(
        self,
        layers: CraterLayers,
        current: np.ndarray,
        colors: np.ndarray,
        exp_top: np.ndarray,
        exp_bottom: np.ndarray,
        inside: np.ndarray,
        floor: np.ndarray,
    ) -> np.ndarray:
        top = current
        middle = np.where(inside, exp_top, current)
        bottom = np.where(inside, np.minimum(current, exp_bottom), current)
        carved = np.minimum(current, bottom + np.maximum(0.0, top - middle))
        new_surface = np.where(inside, np.minimum(current, np.maximum(floor, carved)), current)

        layers.top.cells[:] = top
        layers.middle.cells[:] = middle
        layers.bottom.cells[:] = bottom

        straddles = inside & (exp_top > current) & (current > exp_bottom)
        colors[straddles] = COLOR_DIRT
        layers.top_color.cells[straddles] = COLOR_DIRT
        layers.bottom_color.cells[inside & (exp_bottom < current)] = COLOR_DIRT
        return new_surface

    def _generative(
        self,
        layers: CraterLayers,
        current: np.ndarray,
        colors: np.ndarray,
        exp_top: np.ndarray,
        exp_bottom: np.ndarray,
        inside: np.ndarray,
    ) -> np.ndarray:
        buried = exp_bottom > current
        covered = exp_top > current
        level = exp_top <= current
        # Comparisons only all fail on NaN heights; keep the 1.1 growth for that case.
        new_surface = np.select(
            [buried, covered, level],
            [current + (exp_top - exp_bottom), exp_top, current],
            default=current * 1.1,
        )
        bottom = np.where(covered & ~buried, exp_top, current)
        new_surface = np.where(inside, new_surface, current)

        layers.top.cells[:] = np.where(inside, exp_top, current)
        layers.middle.cells[:] = np.where(inside, exp_bottom, current)
        layers.bottom.cells[:] = np.where(inside, bottom, current)

        raised = inside & covered
        colors[raised] = COLOR_DIRT
        layers.top_color.cells[raised] = COLOR_DIRT
        layers.bottom_color.cells[inside & covered & (current > exp_bottom)] = COLOR_DIRT
        return new_surface

    def apply_fluid(
        self,
        x: float,
        y: float,
        radius: float,
        style: WeaponStyle | str,
        *,
        max_cells: int | None = None,
    ) -> FluidResult:
        """Release `FLUID_VOLUME_SCALE * radius**3` of fluid at (x, y) and let it settle.

        Mud hardens into the terrain where it pools. Napalm burns the cells it
        pools on and leaves the terrain as it was.
        """
        style = WeaponStyle(style)
        volume = FLUID_VOLUME_SCALE * float(radius) ** 3
        result = simulate_fluid(
            self.surface, int(round(x)), int(round(y)), volume, max_cells=max_cells
        )
        pooled = result.pooled
        for (px, py, _), level, wet in zip(result.path, result.levels, pooled):
            if not wet:
                continue
            if style == WeaponStyle.MUD:
                self.surface.set_pixel(int(px), int(py), float(level))
                self.colors.set_pixel(int(px), int(py), COLOR_DIRT)
            elif style == WeaponStyle.NAPALM:
                self.colors.set_pixel(int(px), int(py), COLOR_SCORCHED)
        logger.debug(
            f"apply_fluid: {style.value} volume={volume:.0f} path={len(result.path)} pooled={int(pooled.sum())}"
        )
        return result


def fluid_depth_at(result: FluidResult, x: float, y: float, reach: float = 0.0) -> float:
    """Deepest fluid among path cells within `reach` of (x, y)."""
    if len(result.path) == 0:
        return 0.0
    dist = np.hypot(result.path[:, 0] - x, result.path[:, 1] - y)
    near = dist <= max(reach, 0.5)
    if not near.any():
        return 0.0
    depth = result.levels[near] - result.path[near, 2]
    return float(max(0.0, depth.max()))
