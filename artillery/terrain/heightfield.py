from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import numpy as np

from .codec import decode_cells, encode_cells

logger = logging.getLogger(__name__)

# (dx, dy) neighbour offsets, scaled by the half step
_DIAMOND = ((-1, -1), (1, -1), (-1, 1), (1, 1))
_SQUARE = ((0, -1), (-1, 0), (0, 1), (1, 0))


def is_power_of_two(n: int) -> bool:
    return n > 0 and (n & (n - 1)) == 0


@dataclass(eq=False)
class HeightField:
    """2-D scalar raster with an addressable sub-rectangle.

    `width`/`height` describe the full logical raster; only cells inside
    [min_x, max_x] x [min_y, max_y] are stored. Reads outside that rectangle
    return None and writes are ignored, so cropped footprints can be edited
    with full-board coordinates.
    """

    width: int = 0
    height: int = 0
    min_x: int = 0
    min_y: int = 0
    max_x: int = -1
    max_y: int = -1
    cells: np.ndarray = field(default_factory=lambda: np.zeros((0, 0), dtype=np.float64))
    noise_level: float = 10.0

    def set_size(self, width: int, height: int) -> None:
        self.width = int(width)
        self.height = int(height)
        self.min_x = 0
        self.min_y = 0
        self.max_x = self.width - 1
        self.max_y = self.height - 1
        self.cells = np.zeros((self.height, self.width), dtype=np.float64)

    @classmethod
    def empty(cls, width: int, height: int) -> HeightField:
        hf = cls()
        hf.set_size(width, height)
        return hf

    @classmethod
    def from_array(cls, values: np.ndarray) -> HeightField:
        values = np.asarray(values, dtype=np.float64)
        hf = cls.empty(int(values.shape[1]), int(values.shape[0]))
        hf.cells[:] = values
        return hf

    @property
    def is_cropped(self) -> bool:
        return not (
            self.min_x == 0 and self.min_y == 0 and self.max_x == self.width - 1 and self.max_y == self.height - 1
        )

    def in_bounds(self, x: int, y: int) -> bool:
        return self.min_x <= x <= self.max_x and self.min_y <= y <= self.max_y

    def get_pixel(self, x: int, y: int) -> float | None:
        x = int(x)
        y = int(y)
        if not self.in_bounds(x, y):
            return None
        return float(self.cells[y - self.min_y, x - self.min_x])

    def set_pixel(self, x: int, y: int, value: float) -> None:
        x = int(x)
        y = int(y)
        if not self.in_bounds(x, y):
            return
        self.cells[y - self.min_y, x - self.min_x] = value

    def as_array(self) -> np.ndarray:
        return self.cells

    def copy(self) -> HeightField:
        return HeightField(
            width=self.width,
            height=self.height,
            min_x=self.min_x,
            min_y=self.min_y,
            max_x=self.max_x,
            max_y=self.max_y,
            cells=self.cells.copy(),
            noise_level=self.noise_level,
        )

    def window(self, min_x: int, min_y: int, max_x: int, max_y: int) -> tuple[slice, slice] | None:
        """Array slices (rows, cols) for the part of a rectangle this field stores."""
        lo_x = max(int(min_x), self.min_x)
        lo_y = max(int(min_y), self.min_y)
        hi_x = min(int(max_x), self.max_x)
        hi_y = min(int(max_y), self.max_y)
        if lo_x > hi_x or lo_y > hi_y:
            return None
        return (
            slice(lo_y - self.min_y, hi_y - self.min_y + 1),
            slice(lo_x - self.min_x, hi_x - self.min_x + 1),
        )

    @classmethod
    def crop(cls, source: HeightField, min_x: int, min_y: int, max_x: int, max_y: int) -> HeightField:
        """Extract a sub-rectangle, keeping the parent's full dimensions."""
        lo_x = max(int(min_x), source.min_x)
        lo_y = max(int(min_y), source.min_y)
        hi_x = min(int(max_x), source.max_x)
        hi_y = min(int(max_y), source.max_y)
        out = cls(width=source.width, height=source.height, noise_level=source.noise_level)
        out.min_x, out.min_y, out.max_x, out.max_y = lo_x, lo_y, hi_x, hi_y
        win = source.window(lo_x, lo_y, hi_x, hi_y)
        if win is None:
            out.max_x, out.max_y = lo_x - 1, lo_y - 1
            out.cells = np.zeros((0, 0), dtype=np.float64)
        else:
            out.cells = source.cells[win].copy()
        return out

    def paste(self, source: HeightField) -> None:
        """Write a (cropped) field back into this one where their rectangles overlap."""
        win = self.window(source.min_x, source.min_y, source.max_x, source.max_y)
        if win is None:
            return
        src = source.window(self.min_x, self.min_y, self.max_x, self.max_y)
        if src is None:
            return
        self.cells[win] = source.cells[src]

    # see: https://en.wikipedia.org/wiki/Diamond-square_algorithm
    def fill_fractal(self, minimum: float, maximum: float, rng: np.random.Generator | None = None) -> None:
        """Fill with diamond-square terrain spanning exactly [minimum, maximum].

        Requires width-1 and height-1 to be powers of two; otherwise this is a
        no-op. Cells that already hold a non-zero value are treated as computed
        and skipped, so a computed value of exactly 0 gets recomputed.
        """
        if not (is_power_of_two(self.width - 1) and is_power_of_two(self.height - 1)) or self.is_cropped:
            logger.warning(f"fill_fractal: invalid dimensions {self.width}x{self.height}, skipping")
            return
        rng = rng if rng is not None else np.random.default_rng()
        w, h = self.width, self.height
        grid = self.cells

        self.noise_level = float(maximum - minimum)
        noise = self.noise_level
        seeds = rng.random(5) * noise - 0.5 * noise
        lo, hi = float(seeds.min()), float(seeds.max())
        if hi > lo:
            seeds = (seeds - lo) * (maximum - minimum) / (hi - lo) + minimum
        else:
            seeds = np.full(5, float(minimum))
        logger.debug(f"fill_fractal: seed values {seeds.tolist()} for range ({minimum},{maximum})")

        grid[0, 0] = seeds[0]
        grid[h - 1, 0] = seeds[1]
        grid[0, w - 1] = seeds[2]
        grid[h - 1, w - 1] = seeds[3]
        grid[h // 2, w // 2] = seeds[4]

        size = w - 1
        while size > 1:
            half = size // 2
            scale = noise * (half / w)

            ys, xs = np.meshgrid(np.arange(half, h, size), np.arange(half, w, size), indexing="ij")
            self._ds_step(grid, ys.ravel(), xs.ravel(), half, _DIAMOND, scale, rng)

            jj, ii = np.meshgrid(np.arange(0, h - size + 1, size), np.arange(0, w - size + 1, size), indexing="ij")
            jj = jj.ravel()
            ii = ii.ravel()
            sq_y = np.concatenate([jj, jj + half, jj + size, jj + half])
            sq_x = np.concatenate([ii + half, ii, ii + half, ii + size])
            flat = np.unique(sq_y * w + sq_x)
            self._ds_step(grid, flat // w, flat % w, half, _SQUARE, scale, rng)

            size //= 2

        min_value = float(grid.min())
        max_value = float(grid.max())
        logger.debug(f"fill_fractal: realized range ({min_value},{max_value}), requested ({minimum},{maximum})")
        if max_value - min_value >= 0.0001:
            normalized = (grid - min_value) / (max_value - min_value)
            grid[:] = np.floor((normalized * (maximum - minimum) + minimum) * 1_000_000 + 0.5) / 1_000_000.0

    def _ds_step(
        self,
        grid: np.ndarray,
        ys: np.ndarray,
        xs: np.ndarray,
        half: int,
        pattern: tuple[tuple[int, int], ...],
        scale: float,
        rng: np.random.Generator,
    ) -> None:
        todo = grid[ys, xs] == 0
        ys = ys[todo]
        xs = xs[todo]
        if ys.size == 0:
            return
        h, w = grid.shape
        total = np.zeros(ys.shape, dtype=np.float64)
        count = np.zeros(ys.shape, dtype=np.int64)
        for dx, dy in pattern:
            ny = ys + dy * half
            nx = xs + dx * half
            ok = (nx >= 0) & (nx < w) & (ny >= 0) & (ny < h)
            vals = grid[np.clip(ny, 0, h - 1), np.clip(nx, 0, w - 1)]
            total += np.where(ok, vals, 0.0)
            count += ok
        avg = total / np.maximum(count, 1)
        grid[ys, xs] = avg + (rng.random(ys.size) * scale - scale / 2.0)

    def to_dict(self, *, compress: bool = False) -> dict[str, Any]:
        return {
            "width": int(self.width),
            "height": int(self.height),
            "rect": [int(self.min_x), int(self.min_y), int(self.max_x), int(self.max_y)],
            "noise_level": float(self.noise_level),
            "cells": encode_cells(self.cells, compress=compress),
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> HeightField:
        min_x, min_y, max_x, max_y = (int(v) for v in d["rect"])
        cells = decode_cells(d["cells"])
        expected = (max(0, max_y - min_y + 1), max(0, max_x - min_x + 1))
        if cells.shape != expected:
            raise ValueError(f"cells have shape {cells.shape}, expected {expected}")
        return cls(
            width=int(d["width"]),
            height=int(d["height"]),
            min_x=min_x,
            min_y=min_y,
            max_x=max_x,
            max_y=max_y,
            cells=cells.copy(),
            noise_level=float(d.get("noise_level", 10.0)),
        )
