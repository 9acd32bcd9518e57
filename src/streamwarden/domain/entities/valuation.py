"""Domain entities for source valuation.

Pure value objects without framework dependencies or I/O.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import IntEnum

from .candidate import Candidate


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class QualityRank(IntEnum):
    """Resolution ordinal (higher value = better quality)."""

    UNKNOWN = 0
    SD = 1
    P480 = 2
    P720 = 3
    P1080 = 4
    K2 = 5
    K4 = 6

    @property
    def label(self) -> str:
        return _RANK_LABELS[self]


_RANK_LABELS: dict[QualityRank, str] = {
    QualityRank.UNKNOWN: "unknown",
    QualityRank.SD: "SD",
    QualityRank.P480: "480p",
    QualityRank.P720: "720p",
    QualityRank.P1080: "1080p",
    QualityRank.K2: "2K",
    QualityRank.K4: "4K",
}


@dataclass(frozen=True)
class Measurement:
    """Single probe result. Zero means "not measured" for every metric."""

    quality_rank: int = 0
    speed_kbps: float = 0.0
    ping_ms: float = 0.0
    failed: bool = False
    measured_at: datetime = field(default_factory=_utcnow)

    @classmethod
    def failure(cls) -> Measurement:
        return cls(failed=True)


@dataclass(frozen=True)
class Valuation:
    """Durable running average of everything measured for one provider.

    Persisted by ``ValuationStorePort`` and consumed by ranking.
    """

    key: str
    quality_rank: int = 0
    speed_kbps: int = 0
    ping_ms: int = 0
    sample_count: int = 0
    priority_score: float | None = None
    updated_at: datetime = field(default_factory=_utcnow)
    failed_at: datetime | None = None

    @property
    def quality(self) -> str:
        return QualityRank(max(0, min(6, self.quality_rank))).label


@dataclass(frozen=True)
class ScoredCandidate:
    """A candidate with its composite score and the metrics used to rank it."""

    candidate: Candidate
    score: float
    quality_rank: int
    speed_kbps: float
    ping_ms: float | None
    index: int


@dataclass(frozen=True)
class RankedGroup:
    """All candidates of one provider, best first."""

    provider_id: str
    candidates: tuple[Candidate, ...]
    valuation: Valuation | None
    score: float
    has_current: bool
    max_episodes: int
    first_index: int
