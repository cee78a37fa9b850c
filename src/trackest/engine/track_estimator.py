"""Public entry point: estimate unestimated tracks of a reconstruction."""

from __future__ import annotations

import logging
import time
from collections.abc import Iterable
from dataclasses import dataclass, field

from trackest.engine.config import TrackEstimatorConfig
from trackest.engine.evaluator import TrackEvaluator
from trackest.engine.interfaces import ReconstructionStore, TrackRefiner
from trackest.engine.scheduler import ChunkTally, run_chunks
from trackest.reconstruction.scene import TrackId

logger = logging.getLogger(__name__)


@dataclass
class TrackEstimatorSummary:
    """Statistics of one estimation call.

    Attributes:
        input_num_estimated_tracks: Tracks already estimated when the call
            started (over the whole store for :meth:`estimate_all_tracks`,
            over the supplied ids for :meth:`estimate_tracks`).
        num_triangulation_attempts: Tracks evaluated by this call.
        estimated_tracks: Ids newly estimated by this call. Never contains a
            track that was estimated before the call.
        num_failed_triangulations: Rejections for a degenerate triangulation,
            including tracks with fewer than 2 estimated views.
        num_insufficient_views: The part of *num_failed_triangulations* due
            to fewer than 2 estimated views.
        num_bad_angles: Rejections by the triangulation angle gate.
        num_bad_reprojections: Rejections by the reprojection error gate.
        num_refinement_failures: Accepted tracks whose bundle adjustment
            failed; their triangulated point was kept.
        elapsed_seconds: Wall-clock duration of the call.
    """

    input_num_estimated_tracks: int = 0
    num_triangulation_attempts: int = 0
    estimated_tracks: set[TrackId] = field(default_factory=set)
    num_failed_triangulations: int = 0
    num_insufficient_views: int = 0
    num_bad_angles: int = 0
    num_bad_reprojections: int = 0
    num_refinement_failures: int = 0
    elapsed_seconds: float = 0.0

    @classmethod
    def from_tally(
        cls, tally: ChunkTally, input_num_estimated_tracks: int, elapsed: float
    ) -> TrackEstimatorSummary:
        return cls(
            input_num_estimated_tracks=input_num_estimated_tracks,
            num_triangulation_attempts=tally.num_attempts,
            estimated_tracks=set(tally.estimated_tracks),
            num_failed_triangulations=(
                tally.num_failed_triangulations + tally.num_insufficient_views
            ),
            num_insufficient_views=tally.num_insufficient_views,
            num_bad_angles=tally.num_bad_angles,
            num_bad_reprojections=tally.num_bad_reprojections,
            num_refinement_failures=tally.num_refinement_failures,
            elapsed_seconds=elapsed,
        )

    def format(self) -> str:
        """Return a one-line human-readable report."""
        return (
            f"{len(self.estimated_tracks)} of {self.num_triangulation_attempts} "
            f"tracks estimated ({self.input_num_estimated_tracks} already "
            f"estimated); rejected: {self.num_failed_triangulations} failed "
            f"triangulation ({self.num_insufficient_views} with < 2 views), "
            f"{self.num_bad_angles} bad angle, {self.num_bad_reprojections} bad "
            f"reprojection; {self.num_refinement_failures} refinement failures; "
            f"{self.elapsed_seconds:.2f}s"
        )


class TrackEstimator:
    """Estimates the 3D position of tracks from their estimated views.

    Each track is triangulated from all of its estimated views with the
    configured method and accepted only if at least one pair of views has a
    sufficient triangulation angle and every observation reprojects within
    the configured error. Tracks are independent, so they are processed in
    chunks on a thread pool.

    Args:
        config: Estimation settings.
        reconstruction: Store holding tracks and views. Accepted tracks are
            written back to it.
        refiner: Track refinement collaborator used when bundle adjustment
            is enabled. Defaults to
            :func:`trackest.reconstruction.bundle_adjust_track`.

    Example::

        estimator = TrackEstimator(TrackEstimatorConfig(), reconstruction)
        summary = estimator.estimate_all_tracks()
        print(summary.format())
    """

    def __init__(
        self,
        config: TrackEstimatorConfig,
        reconstruction: ReconstructionStore,
        refiner: TrackRefiner | None = None,
    ) -> None:
        self._config = config
        self._reconstruction = reconstruction
        self._evaluator = TrackEvaluator(config, reconstruction, refiner)

    @property
    def config(self) -> TrackEstimatorConfig:
        return self._config

    def estimate_all_tracks(self) -> TrackEstimatorSummary:
        """Attempt to estimate every track that is not yet estimated.

        Returns:
            Summary of this call.
        """
        previously_estimated: set[TrackId] = set()
        candidates: list[TrackId] = []
        for track_id in sorted(self._reconstruction.track_ids()):
            if self._reconstruction.track(track_id).estimated:
                previously_estimated.add(track_id)
            else:
                candidates.append(track_id)
        return self._estimate(candidates, frozenset(previously_estimated))

    def estimate_tracks(self, track_ids: Iterable[TrackId]) -> TrackEstimatorSummary:
        """Attempt to estimate exactly the supplied tracks.

        Already-estimated tracks are re-triangulated as well and overwritten
        if accepted, but never reported as newly estimated.

        Args:
            track_ids: Tracks to estimate. Duplicates are ignored.

        Returns:
            Summary of this call.

        Raises:
            KeyError: If any id does not exist. Raised before any track is
                processed.
        """
        candidates = sorted(set(track_ids))
        # Resolve every id up front so a bad id never leaves partial work.
        tracks = [self._reconstruction.track(track_id) for track_id in candidates]
        previously_estimated = frozenset(t.track_id for t in tracks if t.estimated)
        return self._estimate(candidates, previously_estimated)

    def _estimate(
        self,
        candidates: list[TrackId],
        previously_estimated: frozenset[TrackId],
    ) -> TrackEstimatorSummary:
        start = time.monotonic()
        tally = run_chunks(
            self._evaluator.evaluate,
            candidates,
            num_threads=self._config.num_threads,
            step_size=self._config.multithreaded_step_size,
            previously_estimated=previously_estimated,
        )
        summary = TrackEstimatorSummary.from_tally(
            tally,
            input_num_estimated_tracks=len(previously_estimated),
            elapsed=time.monotonic() - start,
        )

        logger.info("Track estimation: %s", summary.format())
        if summary.num_refinement_failures:
            logger.warning(
                "Bundle adjustment failed for %d accepted tracks",
                summary.num_refinement_failures,
            )
        return summary
