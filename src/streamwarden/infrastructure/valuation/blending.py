"""Incremental valuation blending and quality/speed label helpers.

All functions are pure (no I/O, no state) and operate on domain
entities from ``streamwarden.domain.entities.valuation``.
"""

from __future__ import annotations

import math
import re
from dataclasses import replace
from datetime import datetime, timezone

from streamwarden.domain.entities.valuation import Measurement, QualityRank, Valuation

# Ping recorded for a provider whose probe failed without any prior latency.
FAILED_PING_FLOOR_MS: int = 10_000

_LABEL_RANKS: dict[str, int] = {
    "4k": 6,
    "2160p": 6,
    "2k": 5,
    "1440p": 5,
    "1080p": 4,
    "1080": 4,
    "720p": 3,
    "720": 3,
    "480p": 2,
    "480": 2,
    "sd": 1,
}

_SPEED_RE = re.compile(r"^([\d.]+)\s*(KB/s|MB/s)$", re.IGNORECASE)


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def quality_rank_from_label(label: str | None) -> int:
    """Map a resolution label ("1080p", "4K", "sd", ...) to its ordinal, 0 if unknown."""
    if not label:
        return 0
    return _LABEL_RANKS.get(label.strip().lower(), 0)


def quality_label_from_rank(rank: float) -> str:
    """Canonical label for a (possibly fractional) rank.

    ``≥6 4K, ≥5 2K, ≥4 1080p, ≥3 720p, ≥2 480p, ≥1 SD``; anything lower
    is ``unknown``.
    """
    if rank >= 6:
        return QualityRank.K4.label
    if rank >= 5:
        return QualityRank.K2.label
    if rank >= 4:
        return QualityRank.P1080.label
    if rank >= 3:
        return QualityRank.P720.label
    if rank >= 2:
        return QualityRank.P480.label
    if rank >= 1:
        return QualityRank.SD.label
    return QualityRank.UNKNOWN.label


def quality_rank_from_width(width: int) -> int:
    """Resolution ordinal from the horizontal pixel count of a variant."""
    if width >= 3840:
        return QualityRank.K4
    if width >= 2560:
        return QualityRank.K2
    if width >= 1920:
        return QualityRank.P1080
    if width >= 1280:
        return QualityRank.P720
    if width >= 854:
        return QualityRank.P480
    if width > 0:
        return QualityRank.SD
    return QualityRank.UNKNOWN


def parse_speed_to_kbps(text: str | None) -> float:
    """Parse "512 KB/s" / "1.5 MB/s" into KB/s. Unparseable input yields 0."""
    if not text:
        return 0.0
    match = _SPEED_RE.match(text.strip())
    if match is None:
        return 0.0
    try:
        value = float(match.group(1))
    except ValueError:
        return 0.0
    if match.group(2).upper() == "MB/S":
        return value * 1024
    return value


def format_speed(kbps: float) -> str:
    """Human-readable speed: MB/s from 1024 KB/s upwards."""
    if kbps <= 0:
        return "unknown"
    if kbps >= 1024:
        return f"{kbps / 1024:.1f} MB/s"
    return f"{kbps:.1f} KB/s"


def _blend_metric(existing: float, measured: float, n: int) -> float:
    if measured <= 0:
        return existing
    if n <= 0:
        return measured
    return (existing * n + measured) / (n + 1)


def blend(
    existing: Valuation | None,
    measurement: Measurement,
    *,
    key: str,
    now: datetime | None = None,
) -> Valuation:
    """Merge one measurement into a provider's running average.

    ``blended = (old * n + new) / (n + 1)`` per metric the measurement
    actually carries (> 0); absent metrics keep their stored value.

    A failed measurement zeroes quality and speed and pushes ping to at
    least ``FAILED_PING_FLOOR_MS`` (doubling any known latency) so the
    provider sinks in ranking without being forgotten.

    ``sample_count`` grows by exactly one either way.
    """
    now = now or datetime.now(timezone.utc)
    base = existing or Valuation(key=key, updated_at=now)
    n = base.sample_count

    if measurement.failed:
        ping = (
            max(2 * base.ping_ms, FAILED_PING_FLOOR_MS)
            if base.ping_ms > 0
            else FAILED_PING_FLOOR_MS
        )
        return replace(
            base,
            quality_rank=0,
            speed_kbps=0,
            ping_ms=ping,
            sample_count=n + 1,
            updated_at=now,
            failed_at=now,
        )

    quality = _blend_metric(base.quality_rank, measurement.quality_rank, n)
    speed = _blend_metric(base.speed_kbps, measurement.speed_kbps, n)
    ping = _blend_metric(base.ping_ms, measurement.ping_ms, n)

    return replace(
        base,
        quality_rank=max(0, round_half_up(quality)),
        speed_kbps=round_half_up(speed),
        ping_ms=round_half_up(ping),
        sample_count=n + 1,
        updated_at=now,
        failed_at=None,
    )


def blend_priority(
    existing: Valuation | None,
    priority_score: float,
    *,
    key: str,
    batch_size: int = 1,
    now: datetime | None = None,
) -> Valuation:
    """Priority-only update: metrics untouched, count grows by ``batch_size``."""
    now = now or datetime.now(timezone.utc)
    base = existing or Valuation(key=key, updated_at=now)
    return replace(
        base,
        priority_score=priority_score,
        sample_count=base.sample_count + max(0, batch_size),
        updated_at=now,
    )
