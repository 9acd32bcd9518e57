"""Shared test fixtures for the streamwarden test suite."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any
from unittest.mock import AsyncMock

import pytest

from streamwarden.domain.entities import Candidate, SurfaceEvent, TitleQuery
from streamwarden.infrastructure.config.schema import PlaybackConfig
from streamwarden.infrastructure.playback.scheduler import ManualScheduler

# ---------------------------------------------------------------------------
# Domain entity fixtures
# ---------------------------------------------------------------------------


def _make_candidate(
    provider_id: str = "alpha",
    candidate_id: str = "1",
    *,
    title: str = "The Wandering Earth",
    year: str = "2019",
    episodes: int = 1,
    original_title: str = "",
) -> Candidate:
    """Candidate with ``episodes`` generated stream URLs."""
    return Candidate(
        provider_id=provider_id,
        candidate_id=candidate_id,
        title=title,
        original_title=original_title,
        year=year,
        episodes=tuple(
            f"https://{provider_id}.example/{candidate_id}/ep{i + 1}.m3u8"
            for i in range(episodes)
        ),
    )


@pytest.fixture()
def make_candidate() -> Callable[..., Candidate]:
    return _make_candidate


@pytest.fixture()
def candidate() -> Candidate:
    return _make_candidate()


@pytest.fixture()
def title_query() -> TitleQuery:
    return TitleQuery(title="The Wandering Earth", year="2019", session_id="s-1")


# ---------------------------------------------------------------------------
# Playback fixtures
# ---------------------------------------------------------------------------


class FakeSurface:
    """In-memory PlaybackSurfacePort recording every call."""

    def __init__(self) -> None:
        self.current_time: float = 0.0
        self.duration: float = 0.0
        self.paused: bool = False
        self.loads: list[tuple[str, float | None]] = []
        self.plays = 0
        self.load_error: BaseException | None = None
        self._listeners: list[Callable[[SurfaceEvent], None]] = []

    async def load(self, url: str, start_position: float | None = None) -> None:
        self.loads.append((url, start_position))
        if self.load_error is not None:
            raise self.load_error

    async def play(self) -> None:
        self.plays += 1
        self.paused = False

    async def pause(self) -> None:
        self.paused = True

    def subscribe(self, listener: Callable[[SurfaceEvent], None]) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def fire(self, kind: Any, **kwargs: Any) -> None:
        event = SurfaceEvent(kind=kind, **kwargs)
        for listener in list(self._listeners):
            listener(event)

    @property
    def loaded_urls(self) -> list[str]:
        return [url for url, _ in self.loads]


@pytest.fixture()
def surface() -> FakeSurface:
    return FakeSurface()


@pytest.fixture()
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture()
def playback_config() -> PlaybackConfig:
    return PlaybackConfig()


# ---------------------------------------------------------------------------
# Mock port fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def mock_cache() -> AsyncMock:
    """Mock CachePort."""
    cache = AsyncMock()
    cache.get = AsyncMock(return_value=None)
    cache.get_many = AsyncMock(return_value={})
    cache.set = AsyncMock()
    cache.delete = AsyncMock(return_value=True)
    cache.exists = AsyncMock(return_value=False)
    cache.clear = AsyncMock()
    cache.aclose = AsyncMock()
    return cache


@pytest.fixture()
def mock_progress_store() -> AsyncMock:
    """Mock ProgressStorePort."""
    store = AsyncMock()
    store.save_progress = AsyncMock()
    store.get_progress = AsyncMock(return_value=None)
    return store
