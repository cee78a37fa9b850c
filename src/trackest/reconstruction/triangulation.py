"""Multi-view triangulation of a single track and its quality measures.

Implements three interchangeable N-view triangulation strategies (ray
midpoint, SVD/DLT on the stacked projection constraints, and L2 minimization
of pixel reprojection error) plus the ray-angle and reprojection-error
measures used to accept or reject a triangulated point.

All triangulators return a homogeneous 3D point with ``w == 1``, or ``None``
when the configuration is degenerate (parallel rays, coincident centers,
rank-deficient design matrix, non-convergence).
"""

from __future__ import annotations

import enum
import itertools
import logging
from collections.abc import Callable, Sequence

import numpy as np
import scipy.optimize

from trackest.calibration.camera import Camera

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Module-level constants
# ---------------------------------------------------------------------------

# Relative singular/eigen value below which a system is considered degenerate
DEGENERACY_TOLERANCE: float = 1e-10
L2_MAX_FUNCTION_EVALS: int = 100


class TriangulationMethod(enum.Enum):
    """Triangulation strategy used to estimate a track position."""

    MIDPOINT = "midpoint"
    SVD = "svd"
    L2_MINIMIZATION = "l2_minimization"


# ---------------------------------------------------------------------------
# Private helpers
# ---------------------------------------------------------------------------


def _as_pixel_array(pixels: Sequence[np.ndarray] | np.ndarray) -> np.ndarray:
    return np.asarray(pixels, dtype=np.float64).reshape(-1, 2)


def _homogeneous(point: np.ndarray) -> np.ndarray:
    return np.append(np.asarray(point, dtype=np.float64), 1.0)


def to_euclidean(point: np.ndarray) -> np.ndarray:
    """Convert a 3- or 4-vector point to Euclidean coordinates, shape (3,)."""
    point = np.asarray(point, dtype=np.float64)
    if point.shape[0] == 4:
        return point[:3] / point[3]
    return point


def _reprojection_residuals(
    point: np.ndarray,
    projections: list[np.ndarray],
    pixels: np.ndarray,
) -> np.ndarray:
    """Stacked (u, v) residuals of a Euclidean point, shape (2N,)."""
    point_h = _homogeneous(point)
    residuals = np.empty(2 * len(projections))
    for i, P in enumerate(projections):
        x = P @ point_h
        residuals[2 * i : 2 * i + 2] = x[:2] / x[2] - pixels[i]
    return residuals


# ---------------------------------------------------------------------------
# Triangulators
# ---------------------------------------------------------------------------


def triangulate_midpoint(
    cameras: Sequence[Camera], pixels: Sequence[np.ndarray] | np.ndarray
) -> np.ndarray | None:
    """Triangulate the point closest to all viewing rays in least squares.

    Solves: sum_i (I - d_i @ d_i^T) @ p = sum_i (I - d_i @ d_i^T) @ c_i
    where c_i is the camera center and d_i the unit ray through the pixel.
    For two rays this is the midpoint of the common perpendicular.

    Args:
        cameras: Observing cameras, length N >= 2.
        pixels: Observed pixels, shape (N, 2).

    Returns:
        Homogeneous point, shape (4,), or None if all rays are parallel.
    """
    px = _as_pixel_array(pixels)
    A = np.zeros((3, 3))
    b = np.zeros(3)
    eye3 = np.eye(3)
    for camera, pixel in zip(cameras, px, strict=True):
        d = camera.cast_ray(pixel)[0]
        M = eye3 - np.outer(d, d)
        A += M
        b += M @ camera.center

    eigvals = np.linalg.eigvalsh(A)  # ascending
    if eigvals[0] <= DEGENERACY_TOLERANCE * eigvals[-1]:
        return None

    return _homogeneous(np.linalg.solve(A, b))


def triangulate_svd(
    cameras: Sequence[Camera], pixels: Sequence[np.ndarray] | np.ndarray
) -> np.ndarray | None:
    """Triangulate via the null space of the stacked DLT design matrix.

    Each observation contributes the rows ``u * P[2] - P[0]`` and
    ``v * P[2] - P[1]``; rows are normalized to unit length before the SVD
    for better conditioning.

    Args:
        cameras: Observing cameras, length N >= 2.
        pixels: Observed pixels, shape (N, 2).

    Returns:
        Homogeneous point, shape (4,), or None if the design matrix has a
        null space of dimension > 1 or the solution lies at infinity.
    """
    px = _as_pixel_array(pixels)
    rows: list[np.ndarray] = []
    for camera, (u, v) in zip(cameras, px, strict=True):
        P = camera.projection_matrix
        rows.append(u * P[2] - P[0])
        rows.append(v * P[2] - P[1])
    design = np.stack(rows)
    design /= np.linalg.norm(design, axis=1, keepdims=True)

    _, singular_values, vt = np.linalg.svd(design)
    if singular_values[-2] <= DEGENERACY_TOLERANCE * singular_values[0]:
        return None

    X = vt[-1]
    if abs(X[3]) <= DEGENERACY_TOLERANCE * np.linalg.norm(X):
        return None
    return X / X[3]


def triangulate_l2(
    cameras: Sequence[Camera], pixels: Sequence[np.ndarray] | np.ndarray
) -> np.ndarray | None:
    """Triangulate by minimizing summed squared pixel reprojection error.

    Starts from the SVD solution (falling back to the midpoint solution) and
    refines with Levenberg-Marquardt using the analytic projection Jacobian.

    Args:
        cameras: Observing cameras, length N >= 2.
        pixels: Observed pixels, shape (N, 2).

    Returns:
        Homogeneous point, shape (4,), or None if no initial estimate exists
        or the optimizer fails.
    """
    px = _as_pixel_array(pixels)
    initial = triangulate_svd(cameras, px)
    if initial is None:
        initial = triangulate_midpoint(cameras, px)
    if initial is None:
        return None

    projections = [camera.projection_matrix for camera in cameras]

    def jacobian(point: np.ndarray, *_args) -> np.ndarray:
        return np.vstack([camera.project_jacobian(point) for camera in cameras])

    result = scipy.optimize.least_squares(
        _reprojection_residuals,
        to_euclidean(initial),
        jac=jacobian,
        method="lm",
        max_nfev=L2_MAX_FUNCTION_EVALS,
        args=(projections, px),
    )
    if result.status <= 0 or not np.all(np.isfinite(result.x)):
        logger.debug("L2 triangulation did not converge: %s", result.message)
        return None
    return _homogeneous(result.x)


_TRIANGULATORS: dict[
    TriangulationMethod,
    Callable[[Sequence[Camera], np.ndarray], np.ndarray | None],
] = {
    TriangulationMethod.MIDPOINT: triangulate_midpoint,
    TriangulationMethod.SVD: triangulate_svd,
    TriangulationMethod.L2_MINIMIZATION: triangulate_l2,
}


def triangulate(
    method: TriangulationMethod,
    cameras: Sequence[Camera],
    pixels: Sequence[np.ndarray] | np.ndarray,
) -> np.ndarray | None:
    """Triangulate a track with the selected *method*.

    Args:
        method: Triangulation strategy.
        cameras: Observing cameras, one per pixel.
        pixels: Observed pixels, shape (N, 2).

    Returns:
        Homogeneous point, shape (4,), or None if fewer than two observations
        were given or the configuration is degenerate.

    Raises:
        ValueError: If *cameras* and *pixels* differ in length.
    """
    px = _as_pixel_array(pixels)
    if len(cameras) != px.shape[0]:
        raise ValueError(
            f"Got {len(cameras)} cameras but {px.shape[0]} pixel observations"
        )
    if len(cameras) < 2:
        return None

    try:
        point = _TRIANGULATORS[method](cameras, px)
    except np.linalg.LinAlgError as exc:
        logger.debug("%s triangulation failed: %s", method.value, exc)
        return None

    if point is None or not np.all(np.isfinite(point)):
        return None
    return point


# ---------------------------------------------------------------------------
# Quality measures
# ---------------------------------------------------------------------------


def ray_angle_degrees(
    center_a: np.ndarray, center_b: np.ndarray, point: np.ndarray
) -> float:
    """Angle in degrees between the rays from two camera centers to *point*.

    Args:
        center_a: First camera center, shape (3,).
        center_b: Second camera center, shape (3,).
        point: 3D point, Euclidean (3,) or homogeneous (4,).

    Returns:
        Angle in [0, 180] degrees. 0.0 if either center coincides with the
        point.
    """
    X = to_euclidean(point)
    ray_a = X - np.asarray(center_a, dtype=np.float64)
    ray_b = X - np.asarray(center_b, dtype=np.float64)
    norm = float(np.linalg.norm(ray_a) * np.linalg.norm(ray_b))
    if norm == 0.0:
        return 0.0
    cos_angle = float(np.clip(np.dot(ray_a, ray_b) / norm, -1.0, 1.0))
    return float(np.degrees(np.arccos(cos_angle)))


def max_ray_angle_degrees(centers: Sequence[np.ndarray], point: np.ndarray) -> float:
    """Largest pairwise ray angle in degrees over all pairs of *centers*.

    Returns 0.0 when fewer than two centers are given.
    """
    return max(
        (
            ray_angle_degrees(a, b, point)
            for a, b in itertools.combinations(centers, 2)
        ),
        default=0.0,
    )


def reprojection_error(camera: Camera, point: np.ndarray, pixel: np.ndarray) -> float:
    """Pixel distance between the projection of *point* and *pixel*.

    Args:
        camera: Observing camera.
        point: 3D point, Euclidean (3,) or homogeneous (4,).
        pixel: Observed pixel, shape (2,).

    Returns:
        Euclidean pixel error, or ``inf`` if the point is behind the camera.
    """
    projected, depths = camera.project(to_euclidean(point))
    if depths[0] <= 0.0:
        return float("inf")
    return float(np.linalg.norm(projected[0] - np.asarray(pixel, dtype=np.float64)))
