"""Per-track accept/reject decision for triangulated tracks.

A track is accepted only if it has at least two estimated observing views,
the selected triangulator returns a point, at least one pair of viewing rays
reaches the minimum triangulation angle, and every observation reprojects
within the maximum pixel error. The position and ``estimated`` flag are
written only once all of these gates pass; optional bundle adjustment runs
after the write and can only improve the accepted point.
"""

from __future__ import annotations

import enum
import logging
import math
from dataclasses import dataclass

import numpy as np

from trackest.engine.config import TrackEstimatorConfig
from trackest.engine.interfaces import ReconstructionStore, TrackRefiner
from trackest.reconstruction.bundle_adjustment import bundle_adjust_track
from trackest.reconstruction.scene import TrackId
from trackest.reconstruction.triangulation import (
    max_ray_angle_degrees,
    reprojection_error,
    triangulate,
)

logger = logging.getLogger(__name__)

MIN_TRIANGULATION_VIEWS: int = 2


class TrackOutcome(enum.Enum):
    """Result of evaluating a single track."""

    ACCEPTED = "accepted"
    INSUFFICIENT_VIEWS = "insufficient_views"
    FAILED_TRIANGULATION = "failed_triangulation"
    BAD_ANGLE = "bad_angle"
    BAD_REPROJECTION = "bad_reprojection"


@dataclass(frozen=True)
class TrackEvaluation:
    """Ephemeral record of one track evaluation.

    Attributes:
        track_id: Evaluated track.
        outcome: Which gate rejected the track, or ACCEPTED.
        num_views: Number of estimated views observing the track.
        max_angle_degrees: Largest pairwise ray angle, when triangulation
            produced a point.
        max_reprojection_error: Largest observation error in pixels, when
            the angle gate passed.
        refined: Whether bundle adjustment succeeded. None if it did not run.
    """

    track_id: TrackId
    outcome: TrackOutcome
    num_views: int = 0
    max_angle_degrees: float | None = None
    max_reprojection_error: float | None = None
    refined: bool | None = None

    @property
    def accepted(self) -> bool:
        return self.outcome is TrackOutcome.ACCEPTED


class TrackEvaluator:
    """Triangulates a single track and applies the acceptance gates.

    Safe to call from several threads at once as long as no two calls share
    a track id.

    Args:
        config: Estimation settings.
        reconstruction: Store holding the tracks and views.
        refiner: Track refinement collaborator used when
            ``config.bundle_adjustment`` is set. Defaults to
            :func:`trackest.reconstruction.bundle_adjust_track`.
    """

    def __init__(
        self,
        config: TrackEstimatorConfig,
        reconstruction: ReconstructionStore,
        refiner: TrackRefiner | None = None,
    ) -> None:
        self._config = config
        self._reconstruction = reconstruction
        self._refiner = refiner if refiner is not None else bundle_adjust_track

    def evaluate(self, track_id: TrackId) -> TrackEvaluation:
        """Estimate the position of *track_id* and accept or reject it.

        Args:
            track_id: Track to estimate.

        Returns:
            Evaluation record. The track is modified only when the outcome
            is ACCEPTED.

        Raises:
            KeyError: If the track or one of its views does not exist.
        """
        config = self._config
        track = self._reconstruction.track(track_id)

        cameras = []
        pixels = []
        for view_id in sorted(track.view_ids):
            view = self._reconstruction.view(view_id)
            if view.estimated:
                cameras.append(view.camera)
                pixels.append(view.feature(track_id))
        num_views = len(cameras)

        if num_views < MIN_TRIANGULATION_VIEWS:
            logger.debug(
                "Track %d: only %d estimated views", track_id, num_views
            )
            return TrackEvaluation(
                track_id, TrackOutcome.INSUFFICIENT_VIEWS, num_views=num_views
            )

        point = triangulate(config.triangulation_method, cameras, pixels)
        if point is None:
            logger.debug(
                "Track %d: %s triangulation is degenerate",
                track_id,
                config.triangulation_method.value,
            )
            return TrackEvaluation(
                track_id, TrackOutcome.FAILED_TRIANGULATION, num_views=num_views
            )

        # One well-separated pair is enough; shallow pairs are tolerated.
        max_angle = max_ray_angle_degrees([c.center for c in cameras], point)
        if max_angle < config.min_triangulation_angle_degrees:
            logger.debug(
                "Track %d: max ray angle %.3f deg < %.3f deg",
                track_id,
                max_angle,
                config.min_triangulation_angle_degrees,
            )
            return TrackEvaluation(
                track_id,
                TrackOutcome.BAD_ANGLE,
                num_views=num_views,
                max_angle_degrees=max_angle,
            )

        max_sq_error = config.max_acceptable_reprojection_error_pixels**2
        errors = [
            reprojection_error(camera, point, pixel)
            for camera, pixel in zip(cameras, pixels, strict=True)
        ]
        max_error = max(errors)
        # A point behind a camera has infinite error and never passes.
        if not math.isfinite(max_error) or max_error**2 > max_sq_error:
            logger.debug(
                "Track %d: reprojection error %.3f px > %.3f px",
                track_id,
                max_error,
                config.max_acceptable_reprojection_error_pixels,
            )
            return TrackEvaluation(
                track_id,
                TrackOutcome.BAD_REPROJECTION,
                num_views=num_views,
                max_angle_degrees=max_angle,
                max_reprojection_error=max_error,
            )

        track.set_estimated_point(point)

        refined: bool | None = None
        if config.bundle_adjustment:
            try:
                summary = self._refiner(
                    config.ba_options, track_id, self._reconstruction
                )
            except (np.linalg.LinAlgError, ValueError) as exc:
                message = f"{type(exc).__name__}: {exc}"
                refined = False
            else:
                message = summary.message
                refined = summary.success
            if not refined:
                logger.debug(
                    "Track %d: bundle adjustment failed (%s); keeping "
                    "triangulated point",
                    track_id,
                    message,
                )

        return TrackEvaluation(
            track_id,
            TrackOutcome.ACCEPTED,
            num_views=num_views,
            max_angle_degrees=max_angle,
            max_reprojection_error=max_error,
            refined=refined,
        )
