"""Serialization of heightfield cells.

Two encodings are supported:

- raw: little-endian float64 bytes, zlib-compressed, lossless.
- rgb: each cell quantized to 24 bits over the field's value range and packed
  as three color bytes (r = low byte, b = high byte), zlib-compressed. Lossy:
  the reconstruction error is at most half a quantization step, well under
  1e-6 of the value range.
"""

from __future__ import annotations

import base64
import zlib
from typing import Any

import numpy as np

QUANT_LEVELS = (1 << 24) - 1


def _b64(data: bytes) -> str:
    return base64.b64encode(zlib.compress(data, level=6)).decode("ascii")


def _unb64(text: str) -> bytes:
    return zlib.decompress(base64.b64decode(text.encode("ascii")))


def values_to_rgb(values: np.ndarray, lo: float, hi: float) -> np.ndarray:
    """Quantize values in [lo, hi] to uint8[..., 3] color triples."""
    span = hi - lo
    if span <= 0.0:
        q = np.zeros(values.shape, dtype=np.uint32)
    else:
        scaled = (np.asarray(values, dtype=np.float64) - lo) / span
        q = np.floor(np.clip(scaled, 0.0, 1.0) * QUANT_LEVELS + 0.5).astype(np.uint32)
    rgb = np.empty(values.shape + (3,), dtype=np.uint8)
    rgb[..., 0] = q & 0xFF
    rgb[..., 1] = (q >> 8) & 0xFF
    rgb[..., 2] = (q >> 16) & 0xFF
    return rgb


def rgb_to_values(rgb: np.ndarray, lo: float, hi: float) -> np.ndarray:
    rgb = np.asarray(rgb, dtype=np.uint32)
    q = rgb[..., 0] | (rgb[..., 1] << 8) | (rgb[..., 2] << 16)
    span = hi - lo
    if span <= 0.0:
        return np.full(q.shape, lo, dtype=np.float64)
    return lo + q.astype(np.float64) * (span / QUANT_LEVELS)


def encode_cells(cells: np.ndarray, *, compress: bool = False) -> dict[str, Any]:
    cells = np.ascontiguousarray(cells, dtype=np.float64)
    shape = [int(s) for s in cells.shape]
    if not compress:
        return {"encoding": "raw", "shape": shape, "data": _b64(cells.astype("<f8").tobytes())}

    if cells.size:
        finite = cells[np.isfinite(cells)]
        lo = float(finite.min()) if finite.size else 0.0
        hi = float(finite.max()) if finite.size else 0.0
    else:
        lo = hi = 0.0
    rgb = values_to_rgb(cells, lo, hi)
    return {"encoding": "rgb", "shape": shape, "lo": lo, "hi": hi, "data": _b64(rgb.tobytes())}


def decode_cells(d: dict[str, Any]) -> np.ndarray:
    shape = tuple(int(s) for s in d["shape"])
    encoding = d.get("encoding", "raw")
    data = _unb64(d["data"])
    if encoding == "raw":
        return np.frombuffer(data, dtype="<f8").astype(np.float64).reshape(shape)
    if encoding == "rgb":
        rgb = np.frombuffer(data, dtype=np.uint8).reshape(shape + (3,))
        return rgb_to_values(rgb, float(d["lo"]), float(d["hi"]))
    raise ValueError(f"Unknown cell encoding: {encoding!r}")
