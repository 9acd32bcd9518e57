"""Manifest fetching with ad filtering applied once per fetch."""

from __future__ import annotations

import httpx
import structlog

from streamwarden.infrastructure.config.schema import AdFilterConfig

from .ad_filter import filter_manifest

log = structlog.get_logger(__name__)


async def fetch_manifest(
    http_client: httpx.AsyncClient,
    url: str,
    *,
    timeout: float = 10.0,
    headers: dict[str, str] | None = None,
) -> str:
    """GET a manifest as text.

    Raises ``httpx.HTTPStatusError`` on non-2xx responses.
    """
    resp = await http_client.get(
        url,
        headers=headers or {},
        follow_redirects=True,
        timeout=timeout,
    )
    resp.raise_for_status()
    return resp.text


async def fetch_filtered_manifest(
    http_client: httpx.AsyncClient,
    url: str,
    config: AdFilterConfig,
    *,
    timeout: float = 10.0,
    headers: dict[str, str] | None = None,
) -> str:
    """Fetch a manifest and strip ads according to ``config``.

    With filtering disabled the document is returned untouched.
    """
    text = await fetch_manifest(http_client, url, timeout=timeout, headers=headers)
    if not config.enabled:
        return text

    filtered = filter_manifest(
        text,
        config.mode,
        aggressive=config.aggressive,
        ad_hosts=config.ad_hosts,
        min_block_seconds=config.min_block_seconds,
        max_skip_seconds=config.max_skip_seconds,
        max_ad_seconds=config.max_ad_seconds,
    )
    log.debug(
        "manifest_filtered",
        url=url,
        mode=config.mode,
        aggressive=config.aggressive,
        removed_bytes=len(text) - len(filtered),
    )
    return filtered
