"""Local bundle adjustment of a single track or a single view.

Both routines hold everything but the refined quantity fixed: track
refinement optimizes one 3D point against its estimated observing cameras,
view refinement optimizes one camera pose against the estimated tracks it
observes. Failures are reported through :class:`BundleAdjustmentSummary`
and never raised, so callers can treat refinement as best-effort.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass

import numpy as np
import scipy.optimize
from scipy.spatial.transform import Rotation

from trackest.calibration.camera import Camera
from trackest.reconstruction.scene import Reconstruction, TrackId, ViewId
from trackest.reconstruction.triangulation import to_euclidean

logger = logging.getLogger(__name__)

LOSS_FUNCTIONS: tuple[str, ...] = ("trivial", "huber", "soft_l1", "cauchy")

# scipy.optimize.least_squares name for each supported loss
_SCIPY_LOSS: dict[str, str] = {
    "trivial": "linear",
    "huber": "huber",
    "soft_l1": "soft_l1",
    "cauchy": "cauchy",
}

MIN_VIEW_OBSERVATIONS: int = 3


@dataclass(frozen=True)
class BundleAdjustmentOptions:
    """Solver settings shared by track and view refinement.

    Attributes:
        loss_function: Robust loss applied to pixel residuals. One of
            ``"trivial"``, ``"huber"``, ``"soft_l1"``, ``"cauchy"``.
        robust_loss_width: Residual scale (pixels) at which the robust loss
            starts to down-weight observations.
        max_num_iterations: Maximum residual evaluations of the solver.
        function_tolerance: Relative cost change at which the solver stops.
        parameter_tolerance: Relative parameter change at which the solver
            stops.
        verbose: Log per-call solver details at INFO instead of DEBUG.
    """

    loss_function: str = "huber"
    robust_loss_width: float = 10.0
    max_num_iterations: int = 50
    function_tolerance: float = 1e-6
    parameter_tolerance: float = 1e-8
    verbose: bool = False

    def __post_init__(self) -> None:
        if self.loss_function not in LOSS_FUNCTIONS:
            raise ValueError(
                f"Unknown loss_function {self.loss_function!r}; "
                f"expected one of {LOSS_FUNCTIONS}"
            )
        if self.robust_loss_width <= 0:
            raise ValueError("robust_loss_width must be positive")
        if self.max_num_iterations < 1:
            raise ValueError("max_num_iterations must be >= 1")


@dataclass(frozen=True)
class BundleAdjustmentSummary:
    """Outcome of a local bundle adjustment.

    Attributes:
        success: True if the solver converged and the result was written back.
        initial_cost: Half the summed squared pixel residuals before solving.
        final_cost: Half the summed squared pixel residuals after solving.
            Equal to *initial_cost* when the solve failed or was skipped.
        num_residuals: Number of pixel observations used.
        message: Solver termination message or the reason for skipping.
    """

    success: bool
    initial_cost: float = 0.0
    final_cost: float = 0.0
    num_residuals: int = 0
    message: str = ""


# ---------------------------------------------------------------------------
# Private helpers
# ---------------------------------------------------------------------------


def _squared_cost(residuals: np.ndarray) -> float:
    return 0.5 * float(np.dot(residuals, residuals))


def _point_residuals(
    point: np.ndarray, cameras: list[Camera], pixels: np.ndarray
) -> np.ndarray:
    projected = np.empty_like(pixels)
    for i, camera in enumerate(cameras):
        p_cam = camera.R @ point + camera.t
        projected[i] = camera.K[:2, :2] @ (p_cam[:2] / p_cam[2]) + camera.K[:2, 2]
    return (projected - pixels).ravel()


def _pose_residuals(
    params: np.ndarray, K: np.ndarray, points: np.ndarray, pixels: np.ndarray
) -> np.ndarray:
    R = Rotation.from_rotvec(params[:3]).as_matrix()
    p_cam = points @ R.T + params[3:]
    p_norm = p_cam[:, :2] / p_cam[:, 2:3]
    projected = p_norm @ K[:2, :2].T + K[:2, 2]
    return (projected - pixels).ravel()


def _solve(
    fun: Callable[..., np.ndarray],
    x0: np.ndarray,
    options: BundleAdjustmentOptions,
    jac: Callable[..., np.ndarray] | str = "2-point",
    args: tuple = (),
) -> scipy.optimize.OptimizeResult:
    return scipy.optimize.least_squares(
        fun,
        x0,
        jac=jac,
        method="trf",
        loss=_SCIPY_LOSS[options.loss_function],
        f_scale=options.robust_loss_width,
        max_nfev=options.max_num_iterations,
        ftol=options.function_tolerance,
        xtol=options.parameter_tolerance,
        args=args,
    )


def _log_summary(
    options: BundleAdjustmentOptions, what: str, summary: BundleAdjustmentSummary
) -> None:
    level = logging.INFO if options.verbose else logging.DEBUG
    logger.log(
        level,
        "%s: success=%s cost %.6g -> %.6g over %d residuals (%s)",
        what,
        summary.success,
        summary.initial_cost,
        summary.final_cost,
        summary.num_residuals,
        summary.message,
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def bundle_adjust_track(
    options: BundleAdjustmentOptions,
    track_id: TrackId,
    reconstruction: Reconstruction,
) -> BundleAdjustmentSummary:
    """Refine the position of one estimated track with all cameras held fixed.

    Uses every estimated view observing the track. On success the refined
    point is written back to the track; otherwise the track is unchanged.

    Args:
        options: Solver settings.
        track_id: Track to refine. Must exist in *reconstruction*.
        reconstruction: Store holding the track and its views.

    Returns:
        Summary of the refinement.

    Raises:
        KeyError: If *track_id* is unknown.
    """
    track = reconstruction.track(track_id)
    point, estimated = track.state()
    if not estimated or point is None:
        return BundleAdjustmentSummary(success=False, message="track not estimated")

    cameras: list[Camera] = []
    observed: list[np.ndarray] = []
    for view_id in sorted(track.view_ids):
        view = reconstruction.view(view_id)
        if view.estimated:
            cameras.append(view.camera)
            observed.append(view.feature(track_id))
    if len(cameras) < 2:
        return BundleAdjustmentSummary(
            success=False,
            num_residuals=len(cameras),
            message="fewer than 2 estimated views",
        )

    pixels = np.stack(observed)
    x0 = to_euclidean(point)
    initial_cost = _squared_cost(_point_residuals(x0, cameras, pixels))

    def jacobian(x: np.ndarray, *_args) -> np.ndarray:
        return np.vstack([camera.project_jacobian(x) for camera in cameras])

    result = _solve(_point_residuals, x0, options, jac=jacobian, args=(cameras, pixels))

    refined = result.x
    in_front = all(
        float((camera.R @ refined + camera.t)[2]) > 0.0 for camera in cameras
    )
    success = bool(result.success) and bool(np.all(np.isfinite(refined))) and in_front
    if success:
        final_cost = _squared_cost(_point_residuals(refined, cameras, pixels))
        track.set_estimated_point(refined)
    else:
        final_cost = initial_cost

    summary = BundleAdjustmentSummary(
        success=success,
        initial_cost=initial_cost,
        final_cost=final_cost,
        num_residuals=len(cameras),
        message=str(result.message),
    )
    _log_summary(options, f"Track {track_id} bundle adjustment", summary)
    return summary


def bundle_adjust_view(
    options: BundleAdjustmentOptions,
    view_id: ViewId,
    reconstruction: Reconstruction,
) -> BundleAdjustmentSummary:
    """Refine the pose of one view with all observed track positions held fixed.

    Uses every estimated track observed in the view; intrinsics are not
    changed. On success the view's camera is replaced with the refined pose
    and the view is marked estimated.

    Args:
        options: Solver settings.
        view_id: View to refine. Must exist in *reconstruction*.
        reconstruction: Store holding the view and its tracks.

    Returns:
        Summary of the refinement.

    Raises:
        KeyError: If *view_id* is unknown.
    """
    view = reconstruction.view(view_id)

    points: list[np.ndarray] = []
    observed: list[np.ndarray] = []
    for track_id in view.track_ids():
        point, estimated = reconstruction.track(track_id).state()
        if estimated and point is not None:
            points.append(to_euclidean(point))
            observed.append(view.feature(track_id))
    if len(points) < MIN_VIEW_OBSERVATIONS:
        return BundleAdjustmentSummary(
            success=False,
            num_residuals=len(points),
            message=f"fewer than {MIN_VIEW_OBSERVATIONS} estimated tracks",
        )

    pts = np.stack(points)
    pixels = np.stack(observed)
    camera = view.camera
    x0 = np.concatenate([Rotation.from_matrix(camera.R).as_rotvec(), camera.t])
    initial_cost = _squared_cost(_pose_residuals(x0, camera.K, pts, pixels))

    result = _solve(_pose_residuals, x0, options, args=(camera.K, pts, pixels))

    success = bool(result.success) and bool(np.all(np.isfinite(result.x)))
    if success:
        final_cost = _squared_cost(_pose_residuals(result.x, camera.K, pts, pixels))
        R = Rotation.from_rotvec(result.x[:3]).as_matrix()
        view.camera = camera.with_pose(R, result.x[3:])
        view.estimated = True
    else:
        final_cost = initial_cost

    summary = BundleAdjustmentSummary(
        success=success,
        initial_cost=initial_cost,
        final_cost=final_cost,
        num_residuals=len(points),
        message=str(result.message),
    )
    _log_summary(options, f"View {view_id} bundle adjustment", summary)
    return summary
