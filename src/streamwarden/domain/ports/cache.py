"""Cache port - durable key/value storage behind the valuation and progress stores."""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class CachePort(Protocol):
    """Async string key/value store with TTL.

    Values are opaque text (the stores write JSON). Implementations:
      - DiskcacheAdapter (SQLite file, no daemon)
      - RedisAdapter (redis.asyncio)

    Adapters are opened with ``async with cache:`` before first use.
    """

    async def get(self, key: str) -> str | None:
        """Return the stored text, or None when missing/expired."""
        ...

    async def get_many(self, keys: list[str]) -> dict[str, str]:
        """Return only the keys that exist."""
        ...

    async def set(self, key: str, value: str, *, ttl: int | None = None) -> None:
        """Store text; ``ttl`` in seconds, None = adapter default, 0 = no expiry."""
        ...

    async def delete(self, key: str) -> bool: ...

    async def exists(self, key: str) -> bool: ...

    async def clear(self) -> None: ...

    async def aclose(self) -> None: ...

    async def __aenter__(self) -> CachePort: ...

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None: ...
