"""Unit tests for chunked, thread-pooled track evaluation."""

from __future__ import annotations

import threading

import pytest

from trackest.engine.evaluator import TrackEvaluation, TrackOutcome
from trackest.engine.scheduler import (
    ChunkTally,
    chunk_candidates,
    evaluate_chunk,
    run_chunks,
)

_OUTCOME_CYCLE = [
    TrackOutcome.ACCEPTED,
    TrackOutcome.INSUFFICIENT_VIEWS,
    TrackOutcome.FAILED_TRIANGULATION,
    TrackOutcome.BAD_ANGLE,
    TrackOutcome.BAD_REPROJECTION,
    TrackOutcome.ACCEPTED,
]


def _fake_evaluate(track_id: int) -> TrackEvaluation:
    """Deterministic evaluation depending only on the track id."""
    outcome = _OUTCOME_CYCLE[track_id % len(_OUTCOME_CYCLE)]
    refined = (track_id % 4 != 0) if outcome is TrackOutcome.ACCEPTED else None
    return TrackEvaluation(track_id, outcome, refined=refined)


class TestChunkCandidates:
    """Tests for chunk_candidates."""

    def test_even_split(self) -> None:
        assert chunk_candidates([1, 2, 3, 4], 2) == [[1, 2], [3, 4]]

    def test_remainder_in_last_chunk(self) -> None:
        chunks = chunk_candidates(list(range(7)), 3)
        assert [len(c) for c in chunks] == [3, 3, 1]
        assert [tid for c in chunks for tid in c] == list(range(7))

    def test_empty(self) -> None:
        assert chunk_candidates([], 5) == []

    def test_invalid_step_raises(self) -> None:
        with pytest.raises(ValueError, match="step_size"):
            chunk_candidates([1], 0)


class TestChunkTally:
    """Tests for ChunkTally construction and merging."""

    def test_from_evaluations_counts_outcomes(self) -> None:
        tally = evaluate_chunk(_fake_evaluate, list(range(6)), frozenset())
        assert tally.num_attempts == 6
        assert tally.num_insufficient_views == 1
        assert tally.num_failed_triangulations == 1
        assert tally.num_bad_angles == 1
        assert tally.num_bad_reprojections == 1
        assert tally.estimated_tracks == frozenset({0, 5})
        # Track 0 is accepted with a failed refinement
        assert tally.num_refinement_failures == 1

    def test_previously_estimated_excluded(self) -> None:
        tally = evaluate_chunk(_fake_evaluate, [0, 5], frozenset({0}))
        assert tally.estimated_tracks == frozenset({5})
        assert tally.num_attempts == 2

    def test_merge_is_commutative(self) -> None:
        a = evaluate_chunk(_fake_evaluate, [0, 1, 2], frozenset())
        b = evaluate_chunk(_fake_evaluate, [3, 4, 5, 6], frozenset())
        assert a.merge(b) == b.merge(a)
        assert a.merge(ChunkTally()) == a


class TestRunChunks:
    """Tests for run_chunks."""

    @pytest.mark.parametrize(
        "num_threads, step_size", [(1, 1), (1, 100), (4, 1), (8, 7), (3, 50)]
    )
    def test_results_independent_of_threads_and_chunks(
        self, num_threads: int, step_size: int
    ) -> None:
        candidates = list(range(120))
        expected = evaluate_chunk(_fake_evaluate, candidates, frozenset({5, 11}))

        tally = run_chunks(
            _fake_evaluate,
            candidates,
            num_threads=num_threads,
            step_size=step_size,
            previously_estimated=frozenset({5, 11}),
        )
        assert tally == expected

    def test_every_candidate_evaluated_once(self) -> None:
        seen: list[int] = []
        lock = threading.Lock()

        def evaluate(track_id: int) -> TrackEvaluation:
            with lock:
                seen.append(track_id)
            return _fake_evaluate(track_id)

        run_chunks(evaluate, list(range(50)), num_threads=4, step_size=3)
        assert sorted(seen) == list(range(50))

    def test_uses_worker_threads(self) -> None:
        names: set[str] = set()

        def evaluate(track_id: int) -> TrackEvaluation:
            names.add(threading.current_thread().name)
            return _fake_evaluate(track_id)

        run_chunks(evaluate, list(range(20)), num_threads=2, step_size=5)
        assert all(name.startswith("trackest") for name in names)

    def test_empty_candidates(self) -> None:
        tally = run_chunks(_fake_evaluate, [], num_threads=4, step_size=10)
        assert tally == ChunkTally()

    def test_exceptions_propagate(self) -> None:
        def evaluate(track_id: int) -> TrackEvaluation:
            if track_id == 13:
                raise KeyError(f"Unknown track id {track_id}")
            return _fake_evaluate(track_id)

        with pytest.raises(KeyError, match="13"):
            run_chunks(evaluate, list(range(30)), num_threads=4, step_size=4)
