"""Chunked, thread-pooled evaluation of a candidate track list.

The candidate list is split into contiguous chunks of ``step_size`` tracks.
Each chunk is evaluated by one worker, which returns an immutable
:class:`ChunkTally`. Tallies are folded on the calling thread after the
parallel phase, so no shared state is written concurrently. Because the
fold is a plain sum and set union, results do not depend on the number of
threads or on the chunk size.
"""

from __future__ import annotations

import functools
import logging
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field

from trackest.engine.evaluator import TrackEvaluation, TrackOutcome
from trackest.reconstruction.scene import TrackId

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChunkTally:
    """Partial statistics produced by evaluating one chunk of tracks.

    Attributes:
        num_attempts: Tracks evaluated.
        num_insufficient_views: Rejected for fewer than 2 estimated views.
        num_failed_triangulations: Rejected for a degenerate triangulation.
        num_bad_angles: Rejected by the triangulation angle gate.
        num_bad_reprojections: Rejected by the reprojection error gate.
        num_refinement_failures: Accepted tracks whose bundle adjustment
            failed.
        estimated_tracks: Accepted tracks that were not estimated when the
            call started.
    """

    num_attempts: int = 0
    num_insufficient_views: int = 0
    num_failed_triangulations: int = 0
    num_bad_angles: int = 0
    num_bad_reprojections: int = 0
    num_refinement_failures: int = 0
    estimated_tracks: frozenset[TrackId] = field(default_factory=frozenset)

    @classmethod
    def from_evaluations(
        cls,
        evaluations: Sequence[TrackEvaluation],
        previously_estimated: frozenset[TrackId],
    ) -> ChunkTally:
        """Tally a sequence of evaluations.

        Args:
            evaluations: Evaluation records of one chunk.
            previously_estimated: Tracks estimated before the call started;
                excluded from :attr:`estimated_tracks` even if re-accepted.

        Returns:
            Tally for the chunk.
        """
        counts = {outcome: 0 for outcome in TrackOutcome}
        for evaluation in evaluations:
            counts[evaluation.outcome] += 1
        return cls(
            num_attempts=len(evaluations),
            num_insufficient_views=counts[TrackOutcome.INSUFFICIENT_VIEWS],
            num_failed_triangulations=counts[TrackOutcome.FAILED_TRIANGULATION],
            num_bad_angles=counts[TrackOutcome.BAD_ANGLE],
            num_bad_reprojections=counts[TrackOutcome.BAD_REPROJECTION],
            num_refinement_failures=sum(
                1 for e in evaluations if e.accepted and e.refined is False
            ),
            estimated_tracks=frozenset(
                e.track_id
                for e in evaluations
                if e.accepted and e.track_id not in previously_estimated
            ),
        )

    def merge(self, other: ChunkTally) -> ChunkTally:
        """Combine two tallies. Commutative and associative."""
        return ChunkTally(
            num_attempts=self.num_attempts + other.num_attempts,
            num_insufficient_views=(
                self.num_insufficient_views + other.num_insufficient_views
            ),
            num_failed_triangulations=(
                self.num_failed_triangulations + other.num_failed_triangulations
            ),
            num_bad_angles=self.num_bad_angles + other.num_bad_angles,
            num_bad_reprojections=(
                self.num_bad_reprojections + other.num_bad_reprojections
            ),
            num_refinement_failures=(
                self.num_refinement_failures + other.num_refinement_failures
            ),
            estimated_tracks=self.estimated_tracks | other.estimated_tracks,
        )


def chunk_candidates(
    candidates: Sequence[TrackId], step_size: int
) -> list[Sequence[TrackId]]:
    """Split *candidates* into contiguous chunks of at most *step_size*.

    Raises:
        ValueError: If *step_size* is less than 1.
    """
    if step_size < 1:
        raise ValueError(f"step_size must be >= 1, got {step_size}")
    return [
        candidates[start : start + step_size]
        for start in range(0, len(candidates), step_size)
    ]


def evaluate_chunk(
    evaluate: Callable[[TrackId], TrackEvaluation],
    chunk: Sequence[TrackId],
    previously_estimated: frozenset[TrackId],
) -> ChunkTally:
    """Evaluate every track of *chunk* in order and tally the outcomes."""
    evaluations = [evaluate(track_id) for track_id in chunk]
    return ChunkTally.from_evaluations(evaluations, previously_estimated)


def run_chunks(
    evaluate: Callable[[TrackId], TrackEvaluation],
    candidates: Sequence[TrackId],
    *,
    num_threads: int,
    step_size: int,
    previously_estimated: frozenset[TrackId] = frozenset(),
) -> ChunkTally:
    """Evaluate all *candidates* in chunks on up to *num_threads* workers.

    Args:
        evaluate: Per-track evaluation function. Must be safe to call from
            several threads for distinct track ids.
        candidates: Track ids to evaluate. Must not contain duplicates.
        num_threads: Worker count. 1 evaluates on the calling thread.
        step_size: Tracks per chunk.
        previously_estimated: Tracks estimated before the call started.

    Returns:
        Tally folded over all chunks.

    Raises:
        Exception: Any exception raised by *evaluate* is re-raised here.
    """
    chunks = chunk_candidates(candidates, step_size)
    work = functools.partial(
        evaluate_chunk, evaluate, previously_estimated=previously_estimated
    )

    if num_threads <= 1 or len(chunks) <= 1:
        tallies = [work(chunk) for chunk in chunks]
    else:
        n_workers = min(num_threads, len(chunks))
        logger.debug(
            "Evaluating %d tracks in %d chunks on %d threads",
            len(candidates),
            len(chunks),
            n_workers,
        )
        with ThreadPoolExecutor(
            max_workers=n_workers, thread_name_prefix="trackest"
        ) as executor:
            tallies = list(executor.map(work, chunks))

    return functools.reduce(ChunkTally.merge, tallies, ChunkTally())
