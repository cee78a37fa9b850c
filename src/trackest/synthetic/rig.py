"""Fabricated camera rigs for synthetic track estimation scenes."""

from __future__ import annotations

import numpy as np

from trackest.calibration.camera import Camera


def build_ring_rig(
    n_cameras: int = 8,
    radius: float = 10.0,
    arc_degrees: float = 360.0,
    height: float = 0.0,
    target: tuple[float, float, float] = (0.0, 0.0, 0.0),
    fx: float = 1000.0,
    cx: float = 500.0,
    cy: float = 500.0,
) -> list[Camera]:
    """Build cameras on a horizontal circular arc, all looking at *target*.

    Cameras are placed at azimuths spread evenly over ``arc_degrees`` around
    the world Z axis through *target*. A full 360-degree ring places the
    cameras at ``i * 360 / n_cameras``; a partial arc includes both ends, so
    two cameras on a 90-degree arc view the target from directions 90 degrees
    apart.

    Args:
        n_cameras: Number of cameras to create.
        radius: Horizontal distance of each camera from *target*.
        arc_degrees: Angular extent of the arc in degrees.
        height: Z offset of the cameras relative to *target*.
        target: World point all optical axes pass through.
        fx: Focal length in pixels (used for both fx and fy).
        cx: Principal point x coordinate in pixels.
        cy: Principal point y coordinate in pixels.

    Returns:
        List of Camera instances in azimuth order.
    """
    target_arr = np.asarray(target, dtype=np.float64)
    if arc_degrees >= 360.0 or n_cameras == 1:
        step = np.radians(arc_degrees) / n_cameras
    else:
        step = np.radians(arc_degrees) / (n_cameras - 1)

    cameras: list[Camera] = []
    for i in range(n_cameras):
        azimuth = i * step
        position = target_arr + np.array(
            [radius * np.cos(azimuth), radius * np.sin(azimuth), height]
        )
        cameras.append(Camera.look_at(position, target_arr, fx=fx, cx=cx, cy=cy))
    return cameras
