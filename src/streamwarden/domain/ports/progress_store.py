"""Port for playback progress checkpoints."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from streamwarden.domain.entities.playback import ProgressRecord


@runtime_checkable
class ProgressStorePort(Protocol):
    async def save_progress(
        self, session_id: str, episode_index: int, time_seconds: float
    ) -> None: ...

    async def get_progress(self, session_id: str) -> ProgressRecord | None: ...
