"""Composite source scoring, ranking and per-provider grouping.

All functions are pure: they take candidates plus the valuations known for
their providers and return new orderings. Input lists are never mutated.
"""

from __future__ import annotations

import math
from collections.abc import Mapping, Sequence
from dataclasses import dataclass

from streamwarden.domain.entities.candidate import Candidate
from streamwarden.domain.entities.valuation import (
    RankedGroup,
    ScoredCandidate,
    Valuation,
)

# Score per quality ordinal. Unknown, 2K and 4K ranks score 0.
_QUALITY_SCORES: dict[int, float] = {4: 100.0, 3: 85.0, 2: 75.0, 1: 60.0}


@dataclass(frozen=True)
class ScoreWeights:
    """Relative weight of each metric in the composite score."""

    quality: float
    speed: float
    ping: float


# Resolution dominates; speed and latency only break near-ties.
QUALITY_FIRST_WEIGHTS = ScoreWeights(quality=0.8, speed=0.1, ping=0.1)

# Used when choosing a replacement source mid-playback.
BALANCED_WEIGHTS = ScoreWeights(quality=0.5, speed=0.3, ping=0.2)


def quality_score(rank: int) -> float:
    return _QUALITY_SCORES.get(int(rank), 0.0)


def speed_score(speed_kbps: float, max_speed_kbps: float) -> float:
    """``clamp(100 * speed / max_speed, 0, 100)``; 0 without a positive max."""
    if max_speed_kbps <= 0 or speed_kbps <= 0:
        return 0.0
    return max(0.0, min(100.0, speed_kbps / max_speed_kbps * 100.0))


def ping_score(ping_ms: float | None, min_ping: float | None, max_ping: float | None) -> float:
    """Lower latency scores higher, normalised against the observed range.

    Unknown ping scores 0. When every observed ping is identical, each
    known ping scores 100.
    """
    if ping_ms is None or min_ping is None or max_ping is None:
        return 0.0
    if max_ping == min_ping:
        return 100.0
    return max(0.0, min(100.0, (max_ping - ping_ms) / (max_ping - min_ping) * 100.0))


def composite_score(
    quality: float, speed: float, ping: float, weights: ScoreWeights
) -> float:
    score = quality * weights.quality + speed * weights.speed + ping * weights.ping
    return score if math.isfinite(score) else 0.0


def _sort_key(entry: ScoredCandidate) -> tuple:
    ping = entry.ping_ms if entry.ping_ms is not None else math.inf
    return (-entry.score, -entry.quality_rank, -entry.speed_kbps, ping, entry.index)


def score_candidates(
    candidates: Sequence[Candidate],
    valuations: Mapping[str, Valuation],
    weights: ScoreWeights = QUALITY_FIRST_WEIGHTS,
) -> list[ScoredCandidate]:
    """Score every candidate in discovery order.

    Speed and ping are normalised against the maxima/minima observed across
    this candidate set, so scores are only comparable within one call.
    """
    rows: list[tuple[Candidate, int, float, float | None]] = []
    for candidate in candidates:
        valuation = valuations.get(candidate.valuation_key)
        if valuation is None:
            rows.append((candidate, 0, 0.0, None))
            continue
        ping = float(valuation.ping_ms) if valuation.ping_ms > 0 else None
        rows.append(
            (candidate, valuation.quality_rank, float(valuation.speed_kbps), ping)
        )

    speeds = [speed for _, _, speed, _ in rows if speed > 0]
    max_speed = max(speeds) if speeds else 0.0
    pings = [ping for _, _, _, ping in rows if ping is not None]
    min_ping = min(pings) if pings else None
    max_ping = max(pings) if pings else None

    scored: list[ScoredCandidate] = []
    for index, (candidate, rank, speed, ping) in enumerate(rows):
        score = composite_score(
            quality_score(rank),
            speed_score(speed, max_speed),
            ping_score(ping, min_ping, max_ping),
            weights,
        )
        scored.append(
            ScoredCandidate(
                candidate=candidate,
                score=score,
                quality_rank=rank,
                speed_kbps=speed,
                ping_ms=ping,
                index=index,
            )
        )
    return scored


def _has_metrics(entry: ScoredCandidate) -> bool:
    return entry.quality_rank > 0 or entry.speed_kbps > 0 or entry.ping_ms is not None


def rank_scored(scored: Sequence[ScoredCandidate]) -> list[ScoredCandidate]:
    """Apply the tie-break chain.

    score desc, quality desc, speed desc, ping asc (unknown last),
    discovery index asc. Without any measured metric the discovery order is
    returned unchanged.
    """
    if len(scored) <= 1 or not any(_has_metrics(entry) for entry in scored):
        return list(scored)
    return sorted(scored, key=_sort_key)


def rank_candidates(
    candidates: Sequence[Candidate],
    valuations: Mapping[str, Valuation],
    weights: ScoreWeights = QUALITY_FIRST_WEIGHTS,
) -> list[Candidate]:
    """Return a new list, best candidate first. Same multiset as the input."""
    ranked = rank_scored(score_candidates(candidates, valuations, weights))
    return [entry.candidate for entry in ranked]


def group_by_provider(
    candidates: Sequence[Candidate],
    valuations: Mapping[str, Valuation],
    *,
    current_provider_id: str | None = None,
    weights: ScoreWeights = QUALITY_FIRST_WEIGHTS,
) -> list[RankedGroup]:
    """Bucket candidates per provider and order the buckets.

    Groups: has-current first, then max episode count desc, then the best
    member's score desc, then the best member's tie-break chain.
    """
    ranked = rank_scored(score_candidates(candidates, valuations, weights))

    buckets: dict[str, list[ScoredCandidate]] = {}
    for entry in ranked:
        buckets.setdefault(entry.candidate.provider_id, []).append(entry)

    rows: list[tuple[tuple, RankedGroup]] = []
    for provider_id, members in buckets.items():
        best = members[0]
        group = RankedGroup(
            provider_id=provider_id,
            candidates=tuple(m.candidate for m in members),
            valuation=valuations.get(best.candidate.valuation_key),
            score=best.score,
            has_current=(
                current_provider_id is not None and provider_id == current_provider_id
            ),
            max_episodes=max(m.candidate.episode_count for m in members),
            first_index=min(m.index for m in members),
        )
        key = (
            0 if group.has_current else 1,
            -group.max_episodes,
            *_sort_key(best),
        )
        rows.append((key, group))

    rows.sort(key=lambda row: row[0])
    return [group for _, group in rows]
