"""Unit tests for CacheValuationStore."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from streamwarden.domain.entities import PersistenceError, Valuation
from streamwarden.infrastructure.persistence.valuation_cache import (
    CacheValuationStore,
    _serialize_valuation,
)

_NOW = datetime(2025, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


def _make_valuation(key: str = "alpha", rank: int = 4, samples: int = 3) -> Valuation:
    return Valuation(
        key=key,
        quality_rank=rank,
        speed_kbps=900,
        ping_ms=120,
        sample_count=samples,
        priority_score=1.5,
        updated_at=_NOW,
    )


class TestSerialization:
    def test_payload_shape(self) -> None:
        d = json.loads(_serialize_valuation(_make_valuation()))
        assert d["key"] == "alpha"
        assert d["quality"] == "1080p"
        assert d["updated_at"] == _NOW.isoformat()
        assert d["failed_at"] is None


class TestGet:
    async def test_returns_valuations(self, mock_cache: AsyncMock) -> None:
        v = _make_valuation()
        mock_cache.get_many = AsyncMock(
            return_value={"valuation:alpha": _serialize_valuation(v)}
        )
        store = CacheValuationStore(cache=mock_cache)

        result = await store.get(["alpha", "beta"])

        assert result == {"alpha": v}
        mock_cache.get_many.assert_awaited_once_with(["valuation:alpha", "valuation:beta"])

    async def test_skips_corrupt_entries(self, mock_cache: AsyncMock) -> None:
        mock_cache.get_many = AsyncMock(return_value={"valuation:alpha": "not-json{{"})
        store = CacheValuationStore(cache=mock_cache)

        assert await store.get(["alpha"]) == {}

    async def test_reads_label_based_records(self, mock_cache: AsyncMock) -> None:
        legacy = {
            "key": "alpha",
            "source": "alpha",
            "id": "42",
            "quality": "1080p",
            "loadSpeed": "1.5 MB/s",
            "pingTime": 180,
            "updated_at": 1748779200000,
        }
        mock_cache.get_many = AsyncMock(return_value={"valuation:alpha": json.dumps(legacy)})
        store = CacheValuationStore(cache=mock_cache)

        result = await store.get(["alpha"])

        v = result["alpha"]
        assert v.quality_rank == 4
        assert v.quality == "1080p"
        assert v.speed_kbps == 1536
        assert v.ping_ms == 180
        assert v.sample_count == 1
        assert v.updated_at == _NOW
        assert v.failed_at is None

    async def test_label_based_record_with_unknown_labels(self, mock_cache: AsyncMock) -> None:
        legacy = {"key": "beta", "quality": "??", "loadSpeed": "fast", "pingTime": 0}
        mock_cache.get_many = AsyncMock(return_value={"valuation:beta": json.dumps(legacy)})
        store = CacheValuationStore(cache=mock_cache)

        v = (await store.get(["beta"]))["beta"]

        assert (v.quality_rank, v.speed_kbps, v.ping_ms) == (0, 0, 0)

    async def test_empty_keys_skip_cache(self, mock_cache: AsyncMock) -> None:
        store = CacheValuationStore(cache=mock_cache)

        assert await store.get(["", "  "]) == {}
        mock_cache.get_many.assert_not_awaited()

    async def test_backend_error_propagates(self, mock_cache: AsyncMock) -> None:
        mock_cache.get_many = AsyncMock(side_effect=PersistenceError("down"))
        store = CacheValuationStore(cache=mock_cache)

        with pytest.raises(PersistenceError):
            await store.get(["alpha"])


class TestPut:
    async def test_writes_value_and_index(self, mock_cache: AsyncMock) -> None:
        store = CacheValuationStore(cache=mock_cache, ttl_days=30)
        v = _make_valuation()

        await store.put(v)

        calls = mock_cache.set.await_args_list
        assert calls[0].args == ("valuation:alpha", _serialize_valuation(v))
        assert calls[0].kwargs == {"ttl": 30 * 86_400}
        assert calls[1].args[0] == "valuation:_index"
        assert json.loads(calls[1].args[1]) == ["alpha"]

    async def test_known_key_does_not_rewrite_index(self, mock_cache: AsyncMock) -> None:
        mock_cache.get = AsyncMock(return_value=json.dumps(["alpha"]))
        store = CacheValuationStore(cache=mock_cache)

        await store.put(_make_valuation())

        assert mock_cache.set.await_count == 1

    async def test_zero_ttl_days_keeps_forever(self, mock_cache: AsyncMock) -> None:
        store = CacheValuationStore(cache=mock_cache, ttl_days=0)

        await store.put(_make_valuation())

        assert mock_cache.set.await_args_list[0].kwargs == {"ttl": 0}


class TestListAll:
    async def test_sorted_by_quality_then_samples(self, mock_cache: AsyncMock) -> None:
        low = _make_valuation("low", rank=2, samples=9)
        top = _make_valuation("top", rank=4, samples=1)
        busy = _make_valuation("busy", rank=4, samples=5)
        mock_cache.get = AsyncMock(return_value=json.dumps(["low", "top", "busy"]))
        mock_cache.get_many = AsyncMock(
            return_value={
                f"valuation:{v.key}": _serialize_valuation(v) for v in (low, top, busy)
            }
        )
        store = CacheValuationStore(cache=mock_cache)

        result = await store.list_all()

        assert [v.key for v in result] == ["busy", "top", "low"]

    async def test_corrupt_index(self, mock_cache: AsyncMock) -> None:
        mock_cache.get = AsyncMock(return_value="{oops")
        store = CacheValuationStore(cache=mock_cache)

        assert await store.list_all() == []
