"""Source valuation - probing, blending, scoring and candidate selection."""

from .engine import SourceValuationEngine, weights_from_config
from .probe import MetricProbe
from .scoring import (
    BALANCED_WEIGHTS,
    QUALITY_FIRST_WEIGHTS,
    ScoreWeights,
    group_by_provider,
    rank_candidates,
)
from .selection import InitialCandidatePool, order_for_playback, verify_candidates

__all__ = [
    "BALANCED_WEIGHTS",
    "InitialCandidatePool",
    "MetricProbe",
    "QUALITY_FIRST_WEIGHTS",
    "ScoreWeights",
    "SourceValuationEngine",
    "group_by_provider",
    "order_for_playback",
    "rank_candidates",
    "verify_candidates",
    "weights_from_config",
]
