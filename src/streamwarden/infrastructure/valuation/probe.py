"""Metric probe: measures resolution, throughput and latency of one stream."""

from __future__ import annotations

import asyncio
import time

import httpx
import structlog

from streamwarden.domain.entities.errors import ManifestParseAnomaly, ProbeFailure
from streamwarden.domain.entities.valuation import Measurement
from streamwarden.infrastructure.playlist.parser import (
    best_variant,
    first_segment_uri,
    is_master_playlist,
    parse_variants,
)

from .blending import quality_rank_from_width

log = structlog.get_logger(__name__)


class MetricProbe:
    """Probes an HLS stream URL.

    Strategy:
    1. HEAD request for latency (GET ``Range: bytes=0-0`` on 405/501).
    2. GET the manifest. For a master playlist the widest variant gives
       the quality rank and its media playlist is fetched next.
    3. Download the first media segment (bounded) and time it for KB/s.

    Steps 1 and 2 share the per-attempt timeout. An attempt that fails or
    yields neither quality nor speed is retried up to ``attempts`` times;
    after that a failed measurement is returned. ``measure`` never raises.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        *,
        timeout: float = 1.0,
        attempts: int = 4,
        segment_timeout: float = 10.0,
        segment_max_bytes: int = 2 * 1024 * 1024,
    ) -> None:
        self._http = http_client
        self._timeout = timeout
        self._attempts = max(1, attempts)
        self._segment_timeout = segment_timeout
        self._segment_max_bytes = segment_max_bytes

    async def measure(self, url: str) -> Measurement:
        for attempt in range(1, self._attempts + 1):
            try:
                measurement = await self._attempt(url)
            except (httpx.HTTPError, ManifestParseAnomaly, ProbeFailure) as exc:
                log.debug(
                    "probe_attempt_failed",
                    url=url,
                    attempt=attempt,
                    error=type(exc).__name__,
                    detail=str(exc),
                )
                continue
            except asyncio.TimeoutError:
                log.debug("probe_attempt_timeout", url=url, attempt=attempt)
                continue
            if measurement.quality_rank > 0 or measurement.speed_kbps > 0:
                return measurement
            log.debug("probe_attempt_empty", url=url, attempt=attempt)

        log.info("probe_failed", url=url, attempts=self._attempts)
        return Measurement.failure()

    async def _attempt(self, url: str) -> Measurement:
        ping_ms, quality_rank, media_url, media_text = await asyncio.wait_for(
            self._metadata(url), timeout=self._timeout
        )
        segment = first_segment_uri(media_text, media_url)
        speed_kbps = await self._segment_speed(segment) if segment else 0.0
        return Measurement(
            quality_rank=quality_rank,
            speed_kbps=speed_kbps,
            ping_ms=ping_ms,
        )

    async def _ping(self, url: str) -> float:
        t0 = time.monotonic()
        resp = await self._http.head(url, timeout=self._timeout, follow_redirects=True)
        if resp.status_code in (405, 501):
            resp = await self._http.get(
                url,
                timeout=self._timeout,
                follow_redirects=True,
                headers={"Range": "bytes=0-0"},
            )
        if resp.status_code >= 400:
            raise ProbeFailure(f"HTTP {resp.status_code} for {url}")
        return (time.monotonic() - t0) * 1000

    async def _get_text(self, url: str) -> tuple[str, str]:
        resp = await self._http.get(url, timeout=self._timeout, follow_redirects=True)
        resp.raise_for_status()
        return resp.text, str(resp.url)

    async def _metadata(self, url: str) -> tuple[float, int, str, str]:
        ping_ms = await self._ping(url)
        text, final_url = await self._get_text(url)

        quality_rank = 0
        if is_master_playlist(text):
            variant = best_variant(parse_variants(text, final_url))
            if variant is None:
                raise ManifestParseAnomaly("master playlist without variants")
            quality_rank = int(quality_rank_from_width(variant.width))
            text, final_url = await self._get_text(variant.uri)

        return ping_ms, quality_rank, final_url, text

    async def _segment_speed(self, segment_url: str) -> float:
        received = 0
        t0 = time.monotonic()
        async with self._http.stream(
            "GET", segment_url, timeout=self._segment_timeout, follow_redirects=True
        ) as resp:
            resp.raise_for_status()
            async for chunk in resp.aiter_bytes():
                received += len(chunk)
                if received >= self._segment_max_bytes:
                    break
        elapsed = time.monotonic() - t0
        if received == 0 or elapsed <= 0:
            return 0.0
        return received / 1024 / elapsed
