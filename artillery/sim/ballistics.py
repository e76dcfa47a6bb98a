"""Projectile kinematics.

Two coordinate frames are used. Model space is the board frame
(lon, lat, elev) = (x, y, z) with gravity along -z. View space is the
renderer's y-up frame; aim angles are defined there:

    vx = -v sin(az) cos(alt)
    vy =  v sin(alt)
    vz = -v cos(az) cos(alt)

and model = (vx, vz, vy).
"""

from __future__ import annotations

import math
from collections.abc import Iterator
from typing import TYPE_CHECKING

import numpy as np

from ..constants import GRAVITY, MAX_FLIGHT_TIME_S, MIRV_SPREAD_SPEED, MIRV_WARHEADS, MUZZLE_HEIGHT, TIME_STEP

if TYPE_CHECKING:
    from ..terrain.heightfield import HeightField
    from .tank import Tank


def from_spherical(azimuth: float, altitude: float, velocity: float) -> np.ndarray:
    """View-space velocity from aim angles in degrees."""
    az = math.radians(azimuth)
    alt = math.radians(altitude)
    return np.array(
        [
            -velocity * math.sin(az) * math.cos(alt),
            velocity * math.sin(alt),
            -velocity * math.cos(az) * math.cos(alt),
        ],
        dtype=np.float64,
    )


def to_spherical(view: np.ndarray) -> tuple[float, float, float]:
    """Inverse of from_spherical: (azimuth in [0, 360), altitude, speed)."""
    x, y, z = (float(v) for v in view[:3])
    horiz = math.hypot(x, z)
    speed = math.sqrt(horiz * horiz + y * y)
    azimuth = math.degrees(math.atan2(-x, -z)) % 360.0
    altitude = math.degrees(math.atan2(y, horiz))
    return azimuth, altitude, speed


def view_to_model(view: np.ndarray) -> np.ndarray:
    return np.array([view[0], view[2], view[1]], dtype=np.float64)


def model_to_view(model: np.ndarray) -> np.ndarray:
    return np.array([model[0], model[2], model[1]], dtype=np.float64)


def muzzle_parameters(tank: Tank) -> tuple[np.ndarray, np.ndarray]:
    """Model-space muzzle position and velocity for a tank's current aim."""
    position = tank.position + np.array([0.0, 0.0, MUZZLE_HEIGHT])
    velocity = view_to_model(from_spherical(tank.azimuth, tank.altitude, tank.velocity))
    return position, velocity


def ground_height(surface: HeightField, x: float, y: float) -> float | None:
    return surface.get_pixel(int(round(x)), int(round(y)))


def compute_trajectory(
    muzzle_pos: np.ndarray,
    muzzle_vel: np.ndarray,
    time_step: float = TIME_STEP,
    surface: HeightField | None = None,
    *,
    max_time: float = MAX_FLIGHT_TIME_S,
) -> Iterator[np.ndarray]:
    """Yield model-space positions every `time_step` until impact.

    The flight ends when the projectile is at or below the terrain (the last
    point is snapped onto the surface), when it leaves the board (the last
    point is the first one off the board), or after `max_time` seconds.
    Positions are computed in closed form, so the sequence depends only on
    the arguments.
    """
    if time_step <= 0.0:
        raise ValueError(f"time_step must be positive, got {time_step!r}")
    p0 = np.asarray(muzzle_pos, dtype=np.float64)
    v0 = np.asarray(muzzle_vel, dtype=np.float64)
    accel = np.array([0.0, 0.0, -GRAVITY])

    yield p0.copy()
    steps = int(math.ceil(max_time / time_step))
    for k in range(1, steps + 1):
        t = k * time_step
        pos = p0 + v0 * t + 0.5 * accel * t * t
        if surface is None:
            yield pos
            continue
        ground = ground_height(surface, pos[0], pos[1])
        if ground is None:
            yield pos
            return
        if pos[2] <= ground:
            pos[2] = ground
            yield pos
            return
        yield pos


def apex(muzzle_pos: np.ndarray, muzzle_vel: np.ndarray) -> tuple[float, np.ndarray, np.ndarray]:
    """Time, position and velocity at the top of the arc (t=0 when already falling)."""
    p0 = np.asarray(muzzle_pos, dtype=np.float64)
    v0 = np.asarray(muzzle_vel, dtype=np.float64)
    t = max(0.0, float(v0[2]) / GRAVITY)
    pos = p0 + v0 * t + 0.5 * np.array([0.0, 0.0, -GRAVITY]) * t * t
    vel = v0.copy()
    vel[2] = v0[2] - GRAVITY * t
    return t, pos, vel


def split_mirv(
    apex_pos: np.ndarray,
    apex_vel: np.ndarray,
    count: int = MIRV_WARHEADS,
    spread: float = MIRV_SPREAD_SPEED,
) -> list[tuple[np.ndarray, np.ndarray]]:
    """Warhead (position, velocity) pairs released at the apex.

    The first warhead keeps the carrier's velocity; the rest fan out evenly
    around it in the horizontal plane.
    """
    pos = np.asarray(apex_pos, dtype=np.float64)
    vel = np.asarray(apex_vel, dtype=np.float64)
    out = [(pos.copy(), vel.copy())]
    others = max(0, int(count) - 1)
    for k in range(others):
        theta = 2.0 * math.pi * k / others
        offset = np.array([spread * math.cos(theta), spread * math.sin(theta), 0.0])
        out.append((pos.copy(), vel + offset))
    return out


def mirv_trajectories(
    muzzle_pos: np.ndarray,
    muzzle_vel: np.ndarray,
    time_step: float,
    surface: HeightField,
    count: int = MIRV_WARHEADS,
) -> list[list[np.ndarray]]:
    """Carrier flight up to the apex followed by one flight per warhead.

    If the carrier hits the ground before its apex only the carrier flight is
    returned and it detonates as a single warhead.
    """
    t_apex, apex_pos, apex_vel = apex(muzzle_pos, muzzle_vel)
    carrier = list(compute_trajectory(muzzle_pos, muzzle_vel, time_step, surface, max_time=t_apex))
    ground = ground_height(surface, apex_pos[0], apex_pos[1])
    last = carrier[-1]
    landed = ground_height(surface, last[0], last[1])
    if ground is None or landed is None or last[2] <= landed or apex_pos[2] <= ground:
        return [carrier]
    flights = [carrier]
    for pos, vel in split_mirv(apex_pos, apex_vel, count):
        flights.append(list(compute_trajectory(pos, vel, time_step, surface)))
    return flights
