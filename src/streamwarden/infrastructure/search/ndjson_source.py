"""Candidate source backed by the upstream NDJSON search stream.

Each line of the response body is either a JSON array of candidate objects
(one provider's answer) or a single object. A trailing ``{"__meta": true,
...}`` line carries fan-out statistics and is skipped.
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from typing import Any

import httpx
import structlog

from streamwarden.domain.entities.candidate import Candidate, TitleQuery
from streamwarden.infrastructure.config.schema import SearchConfig

log = structlog.get_logger(__name__)


def parse_line(line: str) -> list[Candidate]:
    """Candidates carried by one NDJSON line.

    Blank lines, meta lines and entries without a provider yield nothing.
    Raises ``json.JSONDecodeError`` for malformed lines.
    """
    line = line.strip()
    if not line:
        return []
    payload: Any = json.loads(line)
    entries = payload if isinstance(payload, list) else [payload]

    batch: list[Candidate] = []
    for entry in entries:
        if not isinstance(entry, dict) or entry.get("__meta"):
            continue
        candidate = Candidate.from_dict(entry)
        if not candidate.valuation_key:
            continue
        batch.append(candidate)
    return batch


class NdjsonCandidateSource:
    """Streams candidate batches from ``GET {base_url}{stream_path}?q=...``."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        *,
        base_url: str,
        stream_path: str = "/api/search/stream",
        timeout: float = 60.0,
    ) -> None:
        self._http = http_client
        self._url = base_url.rstrip("/") + "/" + stream_path.lstrip("/")
        self._timeout = timeout

    @classmethod
    def from_config(
        cls, http_client: httpx.AsyncClient, config: SearchConfig
    ) -> NdjsonCandidateSource:
        return cls(
            http_client,
            base_url=config.base_url,
            stream_path=config.stream_path,
            timeout=config.timeout_seconds,
        )

    async def stream(self, query: TitleQuery) -> AsyncIterator[list[Candidate]]:
        """Yield one non-empty batch per answering provider.

        Raises ``httpx.HTTPStatusError`` when the search endpoint rejects
        the request; malformed lines are logged and skipped.
        """
        params = {"q": query.title.strip()}
        batches = 0
        async with self._http.stream(
            "GET", self._url, params=params, timeout=self._timeout
        ) as resp:
            resp.raise_for_status()
            async for line in resp.aiter_lines():
                try:
                    batch = parse_line(line)
                except json.JSONDecodeError as e:
                    log.warning("search_line_invalid", error=str(e), line=line[:200])
                    continue
                if not batch:
                    continue
                batches += 1
                yield batch
        log.info("search_stream_done", query=query.title, batches=batches)
