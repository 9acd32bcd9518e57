"""Valuation persistence backed by CachePort (diskcache/redis)."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any

import structlog

from streamwarden.domain.entities.valuation import Valuation
from streamwarden.domain.ports.cache import CachePort
from streamwarden.infrastructure.valuation.blending import (
    parse_speed_to_kbps,
    quality_rank_from_label,
    round_half_up,
)

log = structlog.get_logger(__name__)

# Cache key for the index (list of all stored valuation keys).
_INDEX_KEY: str = "valuation:_index"


def _valuation_key(key: str) -> str:
    return f"valuation:{key}"


def _serialize_valuation(valuation: Valuation) -> str:
    return json.dumps(
        {
            "key": valuation.key,
            "quality_rank": valuation.quality_rank,
            "quality": valuation.quality,
            "speed_kbps": valuation.speed_kbps,
            "ping_ms": valuation.ping_ms,
            "sample_count": valuation.sample_count,
            "priority_score": valuation.priority_score,
            "updated_at": valuation.updated_at.isoformat(),
            "failed_at": valuation.failed_at.isoformat() if valuation.failed_at else None,
        }
    )


def _deserialize_valuation(data: str) -> Valuation:
    d = json.loads(data)
    if "quality_rank" not in d:
        return _deserialize_legacy(d)
    failed_at = d.get("failed_at")
    return Valuation(
        key=d["key"],
        quality_rank=int(d.get("quality_rank", 0)),
        speed_kbps=int(d.get("speed_kbps", 0)),
        ping_ms=int(d.get("ping_ms", 0)),
        sample_count=int(d.get("sample_count", 0)),
        priority_score=d.get("priority_score"),
        updated_at=datetime.fromisoformat(d["updated_at"]),
        failed_at=datetime.fromisoformat(failed_at) if failed_at else None,
    )


def _deserialize_legacy(d: dict[str, Any]) -> Valuation:
    """Label-based record: ``quality: "1080p"``, ``loadSpeed: "1.5 MB/s"``,
    ``pingTime`` in ms and ``updated_at`` as epoch milliseconds.

    Counts as a single sample so the next probe blends instead of replacing.
    """
    updated_at = d.get("updated_at")
    if isinstance(updated_at, (int, float)):
        stamp = datetime.fromtimestamp(updated_at / 1000, tz=timezone.utc)
    elif updated_at:
        stamp = datetime.fromisoformat(updated_at)
    else:
        stamp = datetime.now(timezone.utc)
    return Valuation(
        key=d["key"],
        quality_rank=quality_rank_from_label(d.get("quality")),
        speed_kbps=round_half_up(parse_speed_to_kbps(d.get("loadSpeed"))),
        ping_ms=int(d.get("pingTime") or 0),
        sample_count=int(d.get("sample_count", 1)),
        priority_score=d.get("priority_score"),
        updated_at=stamp,
    )


class CacheValuationStore:
    """Stores provider valuations via CachePort.

    Key schema:
    - ``valuation:{key}`` → JSON Valuation
    - ``valuation:_index`` → JSON list of stored keys

    Backend errors propagate as ``PersistenceError`` from the adapter.
    """

    def __init__(self, cache: CachePort, ttl_days: int = 30) -> None:
        self.cache = cache
        self.ttl = ttl_days * 86_400

    def _decode(self, storage_key: str, data: str) -> Valuation | None:
        try:
            return _deserialize_valuation(data)
        except (json.JSONDecodeError, KeyError, ValueError, TypeError, AttributeError) as e:
            log.error("valuation_deserialize_error", key=storage_key, error=str(e))
            return None

    async def get(self, keys: list[str]) -> dict[str, Valuation]:
        wanted = [k.strip() for k in keys if k and k.strip()]
        if not wanted:
            return {}
        storage_keys = [_valuation_key(k) for k in wanted]
        raw = await self.cache.get_many(storage_keys)

        result: dict[str, Valuation] = {}
        for key, storage_key in zip(wanted, storage_keys):
            data = raw.get(storage_key)
            if data is None:
                continue
            valuation = self._decode(storage_key, data)
            if valuation is not None:
                result[key] = valuation
        return result

    async def put(self, valuation: Valuation) -> None:
        key = valuation.key.strip()
        if not key:
            return
        await self.cache.set(
            _valuation_key(key), _serialize_valuation(valuation), ttl=self.ttl
        )

        index = await self._load_index()
        if key not in index:
            index.append(key)
            await self._save_index(index)

        log.debug(
            "valuation_saved",
            key=key,
            quality=valuation.quality,
            samples=valuation.sample_count,
        )

    async def list_all(self) -> list[Valuation]:
        """All stored valuations, best quality first, then most sampled."""
        index = await self._load_index()
        found = await self.get(index)
        return sorted(
            found.values(),
            key=lambda v: (-v.quality_rank, -v.sample_count, v.key),
        )

    # -- internal helpers --------------------------------------------------

    async def _load_index(self) -> list[str]:
        data = await self.cache.get(_INDEX_KEY)
        if data is None:
            return []
        try:
            index = json.loads(data)
        except (json.JSONDecodeError, TypeError):
            return []
        return [k for k in index if isinstance(k, str)] if isinstance(index, list) else []

    async def _save_index(self, index: list[str]) -> None:
        await self.cache.set(_INDEX_KEY, json.dumps(index), ttl=self.ttl)
