"""Playback progress checkpoints backed by CachePort."""

from __future__ import annotations

import json
from datetime import datetime, timezone

import structlog

from streamwarden.domain.entities.playback import ProgressRecord
from streamwarden.domain.ports.cache import CachePort

log = structlog.get_logger(__name__)


def _progress_key(session_id: str) -> str:
    return f"progress:{session_id}"


class CacheProgressStore:
    """Key schema: ``progress:{session_id}`` → JSON ProgressRecord."""

    def __init__(self, cache: CachePort, ttl_days: int = 90) -> None:
        self.cache = cache
        self.ttl = ttl_days * 86_400

    async def save_progress(
        self, session_id: str, episode_index: int, time_seconds: float
    ) -> None:
        payload = json.dumps(
            {
                "session_id": session_id,
                "episode_index": episode_index,
                "time_seconds": round(max(0.0, time_seconds), 3),
                "saved_at": datetime.now(timezone.utc).isoformat(),
            }
        )
        await self.cache.set(_progress_key(session_id), payload, ttl=self.ttl)

    async def get_progress(self, session_id: str) -> ProgressRecord | None:
        key = _progress_key(session_id)
        data = await self.cache.get(key)
        if data is None:
            return None
        try:
            d = json.loads(data)
            return ProgressRecord(
                session_id=d["session_id"],
                episode_index=int(d["episode_index"]),
                time_seconds=float(d["time_seconds"]),
                saved_at=datetime.fromisoformat(d["saved_at"]),
            )
        except (json.JSONDecodeError, KeyError, ValueError, TypeError) as e:
            log.error("progress_deserialize_error", key=key, error=str(e))
            return None
