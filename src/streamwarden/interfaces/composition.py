"""Composition root: wires config into adapters, engine and use case."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass

import httpx
import structlog

from streamwarden.application.use_cases.play_title import PlayTitleUseCase
from streamwarden.domain.ports.cache import CachePort
from streamwarden.domain.ports.playback_surface import PlaybackSurfacePort
from streamwarden.domain.ports.scheduler import SchedulerPort
from streamwarden.infrastructure.cache.cache_factory import create_cache
from streamwarden.infrastructure.config.schema import AppConfig
from streamwarden.infrastructure.persistence import (
    CacheProgressStore,
    CacheValuationStore,
)
from streamwarden.infrastructure.playback.controller import (
    ReliabilityController,
    StatusSink,
)
from streamwarden.infrastructure.playback.scheduler import AsyncioScheduler
from streamwarden.infrastructure.search import NdjsonCandidateSource
from streamwarden.infrastructure.valuation import MetricProbe, SourceValuationEngine

log = structlog.get_logger(__name__)


@dataclass
class AppServices:
    """Long-lived resources shared by every session."""

    config: AppConfig
    cache: CachePort
    http_client: httpx.AsyncClient
    valuation_store: CacheValuationStore
    progress_store: CacheProgressStore

    def build_probe(self) -> MetricProbe:
        cfg = self.config.valuation
        return MetricProbe(
            self.http_client,
            timeout=cfg.probe_timeout_seconds,
            attempts=cfg.probe_attempts,
            segment_max_bytes=cfg.segment_max_bytes,
        )

    def build_engine(self) -> SourceValuationEngine:
        """A fresh engine per session; its in-memory cache is session scoped."""
        return SourceValuationEngine.from_config(
            self.config.valuation,
            store=self.valuation_store,
            probe=self.build_probe(),
        )

    def build_play_title(
        self,
        surface: PlaybackSurfacePort,
        *,
        scheduler: SchedulerPort | None = None,
        on_status: StatusSink | None = None,
    ) -> PlayTitleUseCase:
        sched = scheduler or AsyncioScheduler()

        def _controller(session_id: str) -> ReliabilityController:
            return ReliabilityController(
                surface=surface,
                scheduler=sched,
                config=self.config.playback,
                session_id=session_id,
                progress_store=self.progress_store,
                on_status=on_status,
            )

        return PlayTitleUseCase(
            source=NdjsonCandidateSource.from_config(self.http_client, self.config.search),
            engine=self.build_engine(),
            controller_factory=_controller,
            progress_store=self.progress_store,
            initial_candidate_limit=self.config.search.initial_candidate_limit,
            penalize_empty_providers=self.config.valuation.penalize_empty_providers,
        )


@asynccontextmanager
async def open_services(config: AppConfig) -> AsyncIterator[AppServices]:
    """Open cache and HTTP client, close both on exit.

    Order matters: the stores depend on the opened cache.
    """
    cache = create_cache(config.cache)
    await cache.__aenter__()
    log.info("cache_initialized", backend=config.cache.backend)

    http_client = httpx.AsyncClient(
        follow_redirects=config.http_follow_redirects,
        timeout=httpx.Timeout(config.http_timeout_seconds),
        headers={"User-Agent": config.http_user_agent},
    )
    log.info("http_client_initialized", timeout=config.http_timeout_seconds)

    try:
        yield AppServices(
            config=config,
            cache=cache,
            http_client=http_client,
            valuation_store=CacheValuationStore(cache, ttl_days=config.valuation.ttl_days),
            progress_store=CacheProgressStore(cache),
        )
    finally:
        await http_client.aclose()
        await cache.aclose()
        log.info("services_closed")
