"""Source valuation engine: probes providers and keeps their reputation current."""

from __future__ import annotations

import asyncio
import math
from collections.abc import Callable, Iterable, Sequence
from datetime import datetime, timedelta, timezone

import structlog

from streamwarden.domain.entities.candidate import Candidate
from streamwarden.domain.entities.errors import PersistenceError
from streamwarden.domain.entities.valuation import Measurement, RankedGroup, Valuation
from streamwarden.domain.ports.metric_probe import MetricProbePort
from streamwarden.domain.ports.valuation_store import ValuationStorePort
from streamwarden.infrastructure.config.schema import ValuationConfig

from .blending import blend, blend_priority
from .scoring import (
    BALANCED_WEIGHTS,
    QUALITY_FIRST_WEIGHTS,
    ScoreWeights,
    group_by_provider,
    rank_candidates,
)

log = structlog.get_logger(__name__)


def weights_from_config(config: ValuationConfig) -> ScoreWeights:
    if config.weight_preset == "balanced":
        return BALANCED_WEIGHTS
    if config.weight_preset == "custom":
        return ScoreWeights(
            quality=config.weight_quality,
            speed=config.weight_speed,
            ping=config.weight_ping,
        )
    return QUALITY_FIRST_WEIGHTS


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SourceValuationEngine:
    """Owns the in-memory valuation cache for one playback session.

    The cache is filled read-through from the store and updated after every
    merge, so ranking never waits for I/O. Probe and store failures are
    logged and absorbed: ranking degrades to whatever is already known.
    """

    def __init__(
        self,
        *,
        store: ValuationStorePort,
        probe: MetricProbePort,
        weights: ScoreWeights = QUALITY_FIRST_WEIGHTS,
        failure_ttl_seconds: int = 3600,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._probe = probe
        self._weights = weights
        self._failure_ttl = timedelta(seconds=failure_ttl_seconds)
        self._clock = clock
        self._cache: dict[str, Valuation] = {}
        self._probed: set[str] = set()
        self._merge_lock = asyncio.Lock()

    @classmethod
    def from_config(
        cls,
        config: ValuationConfig,
        *,
        store: ValuationStorePort,
        probe: MetricProbePort,
    ) -> SourceValuationEngine:
        return cls(
            store=store,
            probe=probe,
            weights=weights_from_config(config),
            failure_ttl_seconds=config.failure_ttl_seconds,
        )

    @property
    def weights(self) -> ScoreWeights:
        return self._weights

    @property
    def valuations(self) -> dict[str, Valuation]:
        return dict(self._cache)

    # -- read path ---------------------------------------------------------

    async def load(self, keys: Iterable[str]) -> dict[str, Valuation]:
        """Fill the cache for ``keys`` not seen yet. Store errors leave it as is."""
        missing = sorted({k.strip() for k in keys if k and k.strip()} - self._cache.keys())
        if missing:
            try:
                found = await self._store.get(missing)
            except PersistenceError as e:
                log.warning("valuation_load_failed", keys=len(missing), error=str(e))
                found = {}
            self._cache.update(found)
            log.debug("valuations_loaded", requested=len(missing), found=len(found))
        return self.valuations

    def rank(self, candidates: Sequence[Candidate]) -> list[Candidate]:
        return rank_candidates(candidates, self._cache, self._weights)

    def group(
        self,
        candidates: Sequence[Candidate],
        current_provider_id: str | None = None,
    ) -> list[RankedGroup]:
        return group_by_provider(
            candidates,
            self._cache,
            current_provider_id=current_provider_id,
            weights=self._weights,
        )

    # -- probing -----------------------------------------------------------

    def _recently_failed(self, key: str, now: datetime) -> bool:
        valuation = self._cache.get(key)
        if valuation is None or valuation.failed_at is None:
            return False
        return now - valuation.failed_at < self._failure_ttl

    def probe_targets(self, candidates: Sequence[Candidate]) -> dict[str, str]:
        """One probe URL per provider not yet probed and not in failure backoff."""
        now = self._clock()
        targets: dict[str, str] = {}
        for candidate in candidates:
            key = candidate.valuation_key
            url = candidate.probe_url
            if not key or url is None or key in targets or key in self._probed:
                continue
            if self._recently_failed(key, now):
                log.debug("probe_skipped_recent_failure", provider=key)
                continue
            targets[key] = url
        return targets

    async def probe(self, candidates: Sequence[Candidate]) -> None:
        """Measure every eligible provider and merge results.

        Targets are split into two halves; probes within a half run
        concurrently, halves run one after the other.
        """
        targets = self.probe_targets(candidates)
        if not targets:
            return
        self._probed.update(targets)

        items = list(targets.items())
        batch_size = math.ceil(len(items) / 2)
        log.info("probe_start", providers=len(items), batch_size=batch_size)

        for start in range(0, len(items), batch_size):
            batch = items[start : start + batch_size]
            results = await asyncio.gather(
                *(self._probe.measure(url) for _, url in batch),
                return_exceptions=True,
            )
            measurements: list[Measurement] = []
            for (key, url), result in zip(batch, results):
                if isinstance(result, Exception):
                    log.warning(
                        "probe_error", provider=key, url=url, error=str(result)
                    )
                    result = Measurement.failure()
                elif isinstance(result, BaseException):
                    raise result
                measurements.append(result)
                await self.record_measurement(key, result)
            log.debug(
                "probe_batch_done",
                providers=len(batch),
                failed=sum(1 for m in measurements if m.failed),
            )

    # -- write path --------------------------------------------------------

    async def _current(self, key: str) -> Valuation | None:
        """Freshest known valuation: store first, cache on store failure."""
        try:
            stored = await self._store.get([key])
        except PersistenceError as e:
            log.warning("valuation_read_failed", key=key, error=str(e))
            return self._cache.get(key)
        return stored.get(key, self._cache.get(key))

    async def _persist(self, valuation: Valuation) -> None:
        self._cache[valuation.key] = valuation
        try:
            await self._store.put(valuation)
        except PersistenceError as e:
            log.warning("valuation_write_failed", key=valuation.key, error=str(e))

    async def record_measurement(self, provider_id: str, measurement: Measurement) -> Valuation:
        """Blend one sample (probe or observed playback) into the provider's valuation."""
        key = provider_id.strip()
        async with self._merge_lock:
            existing = await self._current(key)
            updated = blend(existing, measurement, key=key, now=self._clock())
            await self._persist(updated)
        log.debug(
            "valuation_merged",
            provider=key,
            failed=measurement.failed,
            quality=updated.quality,
            samples=updated.sample_count,
        )
        return updated

    async def record_priority(
        self, provider_id: str, priority_score: float, batch_size: int = 1
    ) -> Valuation:
        key = provider_id.strip()
        async with self._merge_lock:
            existing = await self._current(key)
            updated = blend_priority(
                existing,
                priority_score,
                key=key,
                batch_size=batch_size,
                now=self._clock(),
            )
            await self._persist(updated)
        return updated

    async def penalize_empty_providers(self, provider_ids: Iterable[str]) -> None:
        """Failed sample for providers whose search produced nothing playable."""
        for provider_id in provider_ids:
            key = provider_id.strip()
            if not key or key in self._probed:
                continue
            self._probed.add(key)
            await self.record_measurement(key, Measurement.failure())
