"""Tests for ReliabilityController (watchdog, recovery, failover, progress)."""

from __future__ import annotations

from collections.abc import Callable
from unittest.mock import AsyncMock

import pytest

from streamwarden.domain.entities import (
    Candidate,
    PlaybackState,
    StatusEvent,
    SurfaceEvent,
)
from streamwarden.domain.entities.errors import PlaybackFailure, SourceExhausted
from streamwarden.infrastructure.config.schema import PlaybackConfig
from streamwarden.infrastructure.playback import ManualScheduler, ReliabilityController


class _Harness:
    def __init__(
        self,
        surface,
        scheduler: ManualScheduler,
        config: PlaybackConfig,
        store: AsyncMock | None,
    ) -> None:
        self.surface = surface
        self.scheduler = scheduler
        self.statuses: list[StatusEvent] = []
        self.controller = ReliabilityController(
            surface=surface,
            scheduler=scheduler,
            config=config,
            session_id="s-1",
            progress_store=store,
            on_status=self.statuses.append,
        )

    @property
    def kinds(self) -> list[str]:
        return [s.kind for s in self.statuses]

    async def fire(self, kind: str, **kwargs) -> None:
        self.surface.fire(kind, **kwargs)
        await self.controller.drain()

    async def advance(self, seconds: float, step: float = 1.0) -> None:
        """Advance virtual time in steps, letting spawned tasks run in between."""
        remaining = seconds
        while remaining > 1e-9:
            chunk = min(step, remaining)
            self.scheduler.advance(chunk)
            await self.controller.drain()
            remaining -= chunk


@pytest.fixture()
def harness(surface, scheduler, playback_config, mock_progress_store) -> _Harness:
    return _Harness(surface, scheduler, playback_config, mock_progress_store)


@pytest.fixture()
def pair(make_candidate: Callable[..., Candidate]) -> tuple[Candidate, Candidate]:
    return make_candidate("alpha", "1"), make_candidate("beta", "2")


class TestBegin:
    async def test_loads_first_candidate(self, harness: _Harness, candidate: Candidate) -> None:
        assert await harness.controller.begin(candidate)

        assert harness.controller.state is PlaybackState.LOADING
        assert harness.surface.loads == [(candidate.episodes[0], None)]
        assert harness.surface.plays == 1
        assert harness.surface.listener_count == 1
        assert harness.kinds == ["loading"]

    async def test_only_first_begin_counts(self, harness: _Harness, pair) -> None:
        a, b = pair
        assert await harness.controller.begin(a)
        assert not await harness.controller.begin(b)
        assert harness.surface.loaded_urls == [a.episodes[0]]

    async def test_resume_position(self, harness: _Harness, candidate: Candidate) -> None:
        await harness.controller.begin(candidate, resume_time=120.0)
        assert harness.surface.loads == [(candidate.episodes[0], 120.0)]
        assert harness.controller.session.resume_time == 120.0

    async def test_progress_moves_to_playing(
        self, harness: _Harness, candidate: Candidate, mock_progress_store: AsyncMock
    ) -> None:
        await harness.controller.begin(candidate)
        harness.surface.current_time = 1.0
        await harness.fire("progress")

        assert harness.controller.state is PlaybackState.PLAYING
        mock_progress_store.save_progress.assert_awaited_once_with("s-1", 0, 1.0)

    async def test_progress_save_is_throttled(
        self, harness: _Harness, candidate: Candidate, mock_progress_store: AsyncMock
    ) -> None:
        await harness.controller.begin(candidate)
        for t in (1.0, 2.0, 3.0):
            harness.surface.current_time = t
            await harness.fire("progress")
        assert mock_progress_store.save_progress.await_count == 1

        harness.scheduler.advance(5.0)
        harness.surface.current_time = 8.0
        await harness.fire("progress")
        assert mock_progress_store.save_progress.await_count == 2


class TestLoadTimeout:
    async def test_fails_over_when_nothing_plays(self, harness: _Harness, pair) -> None:
        a, b = pair
        harness.controller.update_candidates([a, b])
        await harness.controller.begin(a)

        await harness.advance(19.0)
        assert harness.surface.loaded_urls == [a.episodes[0]]

        await harness.advance(1.0)

        assert harness.surface.loaded_urls == [a.episodes[0], b.episodes[0]]
        assert harness.controller.session.failed_provider_ids == frozenset({"alpha"})
        assert harness.controller.current is b
        assert "load_timeout" in harness.kinds
        assert "switching_source" in harness.kinds

    async def test_no_timeout_once_playing(self, harness: _Harness, pair) -> None:
        a, b = pair
        harness.controller.update_candidates([a, b])
        await harness.controller.begin(a)
        harness.surface.current_time = 0.5
        await harness.fire("progress")

        harness.surface.paused = True
        await harness.advance(30.0)

        assert harness.surface.loaded_urls == [a.episodes[0]]
        assert harness.controller.state is PlaybackState.PLAYING

    async def test_resumed_source_that_never_plays(self, harness: _Harness, pair) -> None:
        a, b = pair
        harness.controller.update_candidates([a, b])
        harness.surface.current_time = 120.0
        await harness.controller.begin(a, resume_time=120.0)

        await harness.advance(20.0)

        assert harness.controller.current is b
        assert harness.surface.loads == [(a.episodes[0], 120.0), (b.episodes[0], 120.0)]
        assert harness.controller.session.failed_provider_ids == frozenset({"alpha"})

    async def test_resumed_source_that_progresses_keeps_playing(
        self, harness: _Harness, pair
    ) -> None:
        a, b = pair
        harness.controller.update_candidates([a, b])
        harness.surface.current_time = 120.0
        await harness.controller.begin(a, resume_time=120.0)
        harness.surface.current_time = 121.0
        await harness.fire("progress")

        harness.surface.paused = True
        await harness.advance(30.0)

        assert harness.surface.loaded_urls == [a.episodes[0]]
        assert harness.controller.current is a

    async def test_dead_source_after_mid_play_failover(
        self, harness: _Harness, make_candidate: Callable[..., Candidate]
    ) -> None:
        a = make_candidate("alpha", "1")
        b = make_candidate("beta", "2")
        c = make_candidate("gamma", "3")
        harness.controller.update_candidates([a, b, c])
        await harness.controller.begin(a)
        harness.surface.current_time = 50.0
        await harness.fire("progress")

        # alpha stalls at 50s and fails over at t=24; beta and gamma never advance.
        await harness.advance(200.0)

        assert harness.controller.state is PlaybackState.EXHAUSTED
        assert harness.surface.loads[-2:] == [(b.episodes[0], 50.0), (c.episodes[0], 50.0)]
        assert harness.controller.session.failed_provider_ids == frozenset(
            {"alpha", "beta", "gamma"}
        )
        with pytest.raises(SourceExhausted):
            await harness.controller.wait_finished()


class TestWatchdog:
    async def test_stall_triggers_recovery_at_position(
        self, harness: _Harness, candidate: Candidate
    ) -> None:
        await harness.controller.begin(candidate)
        harness.surface.current_time = 5.0
        await harness.fire("progress")

        await harness.advance(7.0)
        assert harness.controller.state is PlaybackState.PLAYING

        await harness.advance(1.0)
        assert harness.controller.state is PlaybackState.BUFFERING
        assert harness.controller.session.stall_recovery_count == 1

        await harness.advance(0.5, step=0.5)
        assert harness.controller.state is PlaybackState.RECOVERING
        assert harness.surface.loads[-1] == (candidate.episodes[0], 5.0)
        assert "recovering" in harness.kinds

        harness.surface.current_time = 6.0
        await harness.fire("progress")
        snapshot = harness.controller.session
        assert snapshot.state is PlaybackState.PLAYING
        assert snapshot.stall_recovery_count == 0
        assert snapshot.recovery_attempt_count == 0

    async def test_repeated_stalls_force_failover(self, harness: _Harness, pair) -> None:
        a, b = pair
        harness.controller.update_candidates([a, b])
        await harness.controller.begin(a)
        harness.surface.current_time = 5.0
        await harness.fire("progress")

        await harness.advance(30.0)

        assert harness.surface.loaded_urls == [
            a.episodes[0],
            a.episodes[0],
            a.episodes[0],
            b.episodes[0],
        ]
        assert harness.surface.loads[-1] == (b.episodes[0], 5.0)
        assert harness.controller.session.failed_provider_ids == frozenset({"alpha"})

    async def test_playing_event_starts_quiet_window(
        self, harness: _Harness, candidate: Candidate
    ) -> None:
        harness.surface.current_time = 120.0
        await harness.controller.begin(candidate, resume_time=120.0)
        await harness.fire("canplay")

        await harness.advance(7.0)
        assert harness.controller.state is PlaybackState.PLAYING

        await harness.advance(1.0)
        assert harness.controller.state is PlaybackState.BUFFERING
        assert harness.controller.session.stall_recovery_count == 1

    async def test_paused_is_not_a_stall(self, harness: _Harness, candidate: Candidate) -> None:
        await harness.controller.begin(candidate)
        harness.surface.current_time = 5.0
        await harness.fire("progress")
        harness.surface.paused = True

        await harness.advance(60.0)

        assert harness.controller.state is PlaybackState.PLAYING
        assert len(harness.surface.loads) == 1


class TestSurfaceEvents:
    async def test_waiting_then_playing_cancels_recovery(
        self, harness: _Harness, candidate: Candidate
    ) -> None:
        await harness.controller.begin(candidate)
        await harness.fire("playing")
        assert harness.controller.state is PlaybackState.PLAYING

        await harness.fire("waiting")
        assert harness.controller.state is PlaybackState.BUFFERING

        await harness.fire("playing")
        assert harness.controller.state is PlaybackState.PLAYING

        await harness.advance(2.0)
        assert len(harness.surface.loads) == 1

    async def test_soft_errors_exhaust_recovery_then_fail_over(
        self, harness: _Harness, pair
    ) -> None:
        a, b = pair
        harness.controller.update_candidates([a, b])
        await harness.controller.begin(a)
        await harness.fire("playing")

        # Backoff: 0.5s, 1.2s, 1.9s
        for delay in (0.5, 1.2, 1.9):
            await harness.fire("error")
            await harness.advance(delay, step=delay)
        assert harness.surface.loaded_urls == [a.episodes[0]] * 4

        await harness.fire("error")

        assert harness.surface.loaded_urls == [a.episodes[0]] * 4 + [b.episodes[0]]
        assert harness.controller.current is b

    async def test_fatal_error_fails_over_immediately(self, harness: _Harness, pair) -> None:
        a, b = pair
        harness.controller.update_candidates([a, b])
        await harness.controller.begin(a)

        await harness.fire("error", fatal=True, detail="network")

        assert harness.surface.loaded_urls == [a.episodes[0], b.episodes[0]]
        assert harness.controller.state is PlaybackState.LOADING

    async def test_events_ignored_after_close(
        self, harness: _Harness, candidate: Candidate
    ) -> None:
        await harness.controller.begin(candidate)
        await harness.controller.close()

        await harness.controller.handle_event(SurfaceEvent(kind="error", fatal=True))

        assert harness.surface.listener_count == 0
        assert len(harness.surface.loads) == 1
        assert harness.controller.state is PlaybackState.CLOSED


class TestFailover:
    async def test_exhausted_ends_session(self, harness: _Harness, candidate: Candidate) -> None:
        await harness.controller.begin(candidate)

        await harness.fire("error", fatal=True)

        assert harness.controller.state is PlaybackState.EXHAUSTED
        assert harness.kinds[-1] == "sources_exhausted"
        assert (
            harness.statuses[-1].message
            == "Current source unavailable. Please choose another source."
        )
        assert harness.surface.listener_count == 0
        with pytest.raises(SourceExhausted):
            await harness.controller.wait_finished()

    async def test_skips_candidates_missing_the_episode(
        self, harness: _Harness, make_candidate: Callable[..., Candidate]
    ) -> None:
        a = make_candidate("alpha", "1", episodes=3)
        short = make_candidate("beta", "2", episodes=1)
        full = make_candidate("gamma", "3", episodes=3)
        harness.controller.update_candidates([a, short, full])
        await harness.controller.begin(a, episode_index=2)

        assert await harness.controller.failover("test")

        assert harness.controller.current is full
        assert harness.surface.loaded_urls[-1] == full.episodes[2]

    async def test_skips_failed_providers(
        self, harness: _Harness, make_candidate: Callable[..., Candidate]
    ) -> None:
        a1 = make_candidate("alpha", "1")
        a2 = make_candidate("alpha", "2")
        b = make_candidate("beta", "3")
        harness.controller.update_candidates([a1, a2, b])
        await harness.controller.begin(a1)

        await harness.controller.failover("test")

        assert harness.controller.current is b

    async def test_generic_load_error_fails_over(
        self, harness: _Harness, pair
    ) -> None:
        a, b = pair
        harness.controller.update_candidates([a, b])
        harness.surface.load_error = RuntimeError("manifest 404")

        await harness.controller.begin(a)

        assert harness.surface.loaded_urls == [a.episodes[0], b.episodes[0]]
        assert harness.controller.state is PlaybackState.EXHAUSTED

    async def test_playback_failure_is_unrecoverable(
        self, harness: _Harness, pair
    ) -> None:
        a, b = pair
        harness.controller.update_candidates([a, b])
        harness.surface.load_error = PlaybackFailure("decoder crashed")

        await harness.controller.begin(a)

        assert harness.controller.state is PlaybackState.CLOSED
        assert harness.surface.loaded_urls == [a.episodes[0]]
        with pytest.raises(PlaybackFailure):
            await harness.controller.wait_finished()

    async def test_switch_source_clears_failed_mark(self, harness: _Harness, pair) -> None:
        a, b = pair
        harness.controller.update_candidates([a, b])
        await harness.controller.begin(a)
        await harness.fire("error", fatal=True)
        assert "alpha" in harness.controller.session.failed_provider_ids

        assert await harness.controller.switch_source(a)

        assert "alpha" not in harness.controller.session.failed_provider_ids
        assert harness.controller.current is a


class TestEpisodesAndClose:
    async def test_autoplay_next_episode(
        self,
        harness: _Harness,
        make_candidate: Callable[..., Candidate],
        mock_progress_store: AsyncMock,
    ) -> None:
        series = make_candidate("alpha", "1", episodes=2)
        await harness.controller.begin(series)

        await harness.fire("ended")

        assert harness.surface.loads[-1] == (series.episodes[1], None)
        assert harness.controller.session.episode_index == 1
        mock_progress_store.save_progress.assert_awaited_with("s-1", 1, 0.0)

        await harness.fire("ended")
        assert harness.controller.state is PlaybackState.CLOSED
        snapshot = await harness.controller.wait_finished()
        assert snapshot.episode_index == 1

    async def test_no_autoplay_closes(
        self,
        surface,
        scheduler: ManualScheduler,
        make_candidate: Callable[..., Candidate],
    ) -> None:
        h = _Harness(surface, scheduler, PlaybackConfig(autoplay_next_episode=False), None)
        await h.controller.begin(make_candidate("alpha", "1", episodes=2))

        await h.fire("ended")

        assert h.controller.state is PlaybackState.CLOSED

    async def test_close_checkpoints_and_detaches(
        self,
        harness: _Harness,
        candidate: Candidate,
        mock_progress_store: AsyncMock,
    ) -> None:
        await harness.controller.begin(candidate)
        harness.surface.current_time = 42.0

        await harness.controller.close()
        await harness.controller.drain()

        mock_progress_store.save_progress.assert_awaited_once_with("s-1", 0, 42.0)
        assert harness.controller.state is PlaybackState.CLOSED
        assert harness.surface.listener_count == 0
        assert harness.scheduler.pending == 0

    async def test_progress_store_errors_are_swallowed(
        self,
        harness: _Harness,
        candidate: Candidate,
        mock_progress_store: AsyncMock,
    ) -> None:
        mock_progress_store.save_progress.side_effect = RuntimeError("disk full")
        await harness.controller.begin(candidate)

        await harness.fire("pause")

        assert harness.controller.state is PlaybackState.LOADING

    async def test_status_sink_errors_do_not_break_playback(
        self,
        surface,
        scheduler: ManualScheduler,
        playback_config: PlaybackConfig,
        candidate: Candidate,
    ) -> None:
        def _broken(_: StatusEvent) -> None:
            raise ValueError("ui gone")

        controller = ReliabilityController(
            surface=surface,
            scheduler=scheduler,
            config=playback_config,
            session_id="s-1",
            on_status=_broken,
        )
        assert await controller.begin(candidate)
        assert controller.state is PlaybackState.LOADING
