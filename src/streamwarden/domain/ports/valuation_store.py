"""Port for valuation persistence."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from streamwarden.domain.entities.valuation import Valuation


@runtime_checkable
class ValuationStorePort(Protocol):
    """Async interface for reading and writing provider valuations.

    Implementations raise ``PersistenceError`` when the backend is unreachable.
    """

    async def get(self, keys: list[str]) -> dict[str, Valuation]: ...

    async def put(self, valuation: Valuation) -> None: ...

    async def list_all(self) -> list[Valuation]: ...
