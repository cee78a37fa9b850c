"""Track estimation engine.

Provides the estimator facade, the per-track evaluator, the chunked
thread-pool scheduler, and the frozen config hierarchy.

Import boundary: engine/ may import from calibration/ and reconstruction/,
but those computation modules must never import from engine/.
"""

from trackest.engine.config import TrackEstimatorConfig, load_config, serialize_config
from trackest.engine.evaluator import TrackEvaluation, TrackEvaluator, TrackOutcome
from trackest.engine.interfaces import ReconstructionStore, TrackRefiner
from trackest.engine.scheduler import ChunkTally, chunk_candidates, run_chunks
from trackest.engine.track_estimator import TrackEstimator, TrackEstimatorSummary

__all__ = [
    "ChunkTally",
    "ReconstructionStore",
    "TrackEstimator",
    "TrackEstimatorConfig",
    "TrackEstimatorSummary",
    "TrackEvaluation",
    "TrackEvaluator",
    "TrackOutcome",
    "TrackRefiner",
    "chunk_candidates",
    "load_config",
    "run_chunks",
    "serialize_config",
]
