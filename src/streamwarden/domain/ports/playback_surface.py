"""Port for the media element the controller drives."""

from __future__ import annotations

from collections.abc import Callable
from typing import Protocol, runtime_checkable

from streamwarden.domain.entities.playback import SurfaceEvent

SurfaceListener = Callable[[SurfaceEvent], None]


@runtime_checkable
class PlaybackSurfacePort(Protocol):
    """Opaque player. The controller only loads, plays, pauses and observes."""

    async def load(self, url: str, start_position: float | None = None) -> None: ...

    async def play(self) -> None: ...

    async def pause(self) -> None: ...

    @property
    def current_time(self) -> float: ...

    @property
    def duration(self) -> float: ...

    @property
    def paused(self) -> bool: ...

    def subscribe(self, listener: SurfaceListener) -> Callable[[], None]:
        """Register ``listener``; returns an unsubscribe callable."""
        ...
