"""Port for measuring one stream."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from streamwarden.domain.entities.valuation import Measurement


@runtime_checkable
class MetricProbePort(Protocol):
    async def measure(self, url: str) -> Measurement:
        """Never raises; failures come back as ``Measurement(failed=True)``."""
        ...
