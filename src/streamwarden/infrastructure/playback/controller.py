"""Playback reliability controller: stall watchdog, recovery and failover.

Single-threaded asyncio: every mutation of the session happens on the loop
thread. Timer callbacks and surface listeners are synchronous, so they only
spawn tasks; the tasks run the async player calls.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Coroutine, Sequence
from typing import Any

import structlog

from streamwarden.domain.entities.candidate import Candidate
from streamwarden.domain.entities.errors import PlaybackFailure, SourceExhausted
from streamwarden.domain.entities.playback import (
    PlaybackSession,
    PlaybackState,
    SessionSnapshot,
    StatusEvent,
    SurfaceEvent,
)
from streamwarden.domain.ports.playback_surface import PlaybackSurfacePort
from streamwarden.domain.ports.progress_store import ProgressStorePort
from streamwarden.domain.ports.scheduler import SchedulerPort, TimerHandle
from streamwarden.infrastructure.config.schema import PlaybackConfig

log = structlog.get_logger(__name__)

StatusSink = Callable[[StatusEvent], None]

_S = PlaybackState

_ALLOWED: dict[PlaybackState, frozenset[PlaybackState]] = {
    _S.IDLE: frozenset({_S.LOADING, _S.CLOSED}),
    _S.LOADING: frozenset(
        {_S.LOADING, _S.PLAYING, _S.BUFFERING, _S.RECOVERING, _S.FAILED_SWITCH, _S.CLOSED}
    ),
    _S.PLAYING: frozenset(
        {_S.LOADING, _S.BUFFERING, _S.RECOVERING, _S.FAILED_SWITCH, _S.CLOSED}
    ),
    _S.BUFFERING: frozenset(
        {_S.LOADING, _S.PLAYING, _S.RECOVERING, _S.FAILED_SWITCH, _S.CLOSED}
    ),
    _S.RECOVERING: frozenset(
        {
            _S.LOADING,
            _S.PLAYING,
            _S.BUFFERING,
            _S.RECOVERING,
            _S.FAILED_SWITCH,
            _S.CLOSED,
        }
    ),
    _S.FAILED_SWITCH: frozenset({_S.LOADING, _S.EXHAUSTED, _S.CLOSED}),
    _S.EXHAUSTED: frozenset({_S.CLOSED}),
    _S.CLOSED: frozenset(),
}

# States in which a stream is attached and the watchdog is meaningful.
_ACTIVE: frozenset[PlaybackState] = frozenset(
    {_S.LOADING, _S.PLAYING, _S.BUFFERING, _S.RECOVERING}
)


class ReliabilityController:
    """Keeps one playback session alive across provider failures.

    Owns the ``PlaybackSession``; callers only ever see snapshots.
    """

    def __init__(
        self,
        *,
        surface: PlaybackSurfacePort,
        scheduler: SchedulerPort,
        config: PlaybackConfig,
        session_id: str,
        progress_store: ProgressStorePort | None = None,
        on_status: StatusSink | None = None,
    ) -> None:
        self._surface = surface
        self._scheduler = scheduler
        self._config = config
        self._progress_store = progress_store
        self._on_status = on_status
        self._session = PlaybackSession(session_id=session_id)
        self._candidates: list[Candidate] = []
        self._current: Candidate | None = None

        self._recovery_timer: TimerHandle | None = None
        self._load_timer: TimerHandle | None = None
        self._watchdog_timer: TimerHandle | None = None
        self._last_saved_at: float | None = None
        self._unsubscribe: Callable[[], None] | None = None
        self._tasks: set[asyncio.Task[Any]] = set()

        self._finished = asyncio.Event()
        self._error: BaseException | None = None

    # -- read-only views ----------------------------------------------------

    @property
    def state(self) -> PlaybackState:
        return self._session.state

    @property
    def session(self) -> SessionSnapshot:
        return self._session.snapshot()

    @property
    def current(self) -> Candidate | None:
        return self._current

    @property
    def candidates(self) -> list[Candidate]:
        return list(self._candidates)

    # -- state machine -------------------------------------------------------

    def _transition(self, target: PlaybackState, reason: str = "") -> bool:
        source = self._session.state
        if target not in _ALLOWED[source]:
            log.debug(
                "playback_transition_rejected",
                session=self._session.session_id,
                source=source.value,
                target=target.value,
                reason=reason,
            )
            return False
        self._session.state = target
        if source is not target:
            log.info(
                "playback_transition",
                session=self._session.session_id,
                source=source.value,
                target=target.value,
                reason=reason,
            )
        return True

    def _emit(self, kind: str, message: str, **data: Any) -> None:
        if self._on_status is None:
            return
        event = StatusEvent(
            kind=kind,
            message=message,
            provider_id=self._session.current_provider_id,
            data=data,
        )
        try:
            self._on_status(event)
        except Exception:
            log.error("status_sink_error", kind=kind, exc_info=True)

    def _finish(self, error: BaseException | None = None) -> None:
        if self._finished.is_set():
            return
        self._error = error
        self._finished.set()

    # -- task / timer plumbing ----------------------------------------------

    def _spawn(self, coro: Coroutine[Any, Any, Any], name: str) -> None:
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            log.error(
                "playback_task_error",
                task=task.get_name(),
                error=str(exc),
                exc_info=exc,
            )

    async def drain(self) -> None:
        """Wait until every spawned task (including follow-ups) has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _cancel_recovery_timer(self) -> None:
        if self._recovery_timer is not None:
            self._recovery_timer.cancel()
            self._recovery_timer = None

    def _cancel_load_timer(self) -> None:
        if self._load_timer is not None:
            self._load_timer.cancel()
            self._load_timer = None

    def _cancel_watchdog(self) -> None:
        if self._watchdog_timer is not None:
            self._watchdog_timer.cancel()
            self._watchdog_timer = None

    def _cancel_timers(self) -> None:
        self._cancel_recovery_timer()
        self._cancel_load_timer()
        self._cancel_watchdog()

    def _arm_watchdog(self) -> None:
        self._cancel_watchdog()
        self._watchdog_timer = self._scheduler.call_later(
            self._config.watchdog_interval_seconds, self._on_watchdog_tick
        )

    def _on_watchdog_tick(self) -> None:
        self._watchdog_timer = None
        if self._session.state not in _ACTIVE:
            return
        self._check_progress(self._surface.current_time)
        if self._session.state in _ACTIVE and self._watchdog_timer is None:
            self._arm_watchdog()

    def _arm_load_timeout(self) -> None:
        self._cancel_load_timer()
        self._load_timer = self._scheduler.call_later(
            self._config.load_timeout_seconds, self._on_load_timeout
        )

    def _on_load_timeout(self) -> None:
        self._load_timer = None
        if self._session.state not in _ACTIVE:
            return
        # Measured from the load position: a resumed source sits at resume_time.
        started_at = self._session.resume_time
        if self._surface.current_time <= started_at + self._config.progress_epsilon_seconds:
            log.warning(
                "playback_load_timeout",
                provider=self._session.current_provider_id,
                timeout=self._config.load_timeout_seconds,
            )
            self._emit("load_timeout", "Source timed out, switching to another source")
            self._spawn(self.failover("load_timeout"), "failover:load_timeout")

    # -- public operations ----------------------------------------------------

    def update_candidates(self, ranked: Sequence[Candidate]) -> None:
        """Replace the failover order. Takes effect at the next failover."""
        self._candidates = list(ranked)
        log.debug("playback_candidates_updated", count=len(self._candidates))

    async def begin(
        self,
        candidate: Candidate,
        episode_index: int = 0,
        resume_time: float = 0.0,
    ) -> bool:
        """Start the session. Only the first call has any effect."""
        if self._session.state is not _S.IDLE:
            log.debug("playback_begin_ignored", state=self._session.state.value)
            return False
        if self._unsubscribe is None:
            self._unsubscribe = self._surface.subscribe(self._on_surface_event)
        if candidate not in self._candidates:
            self._candidates.insert(0, candidate)
        await self._start(candidate, episode_index, resume_time, reason="initial")
        return True

    async def switch_source(self, candidate: Candidate) -> bool:
        """Viewer-initiated switch; clears the provider's failed mark."""
        if self._session.state in (_S.IDLE, _S.EXHAUSTED, _S.CLOSED):
            return False
        self._session.failed_provider_ids.discard(candidate.valuation_key)
        position = self._position()
        episode = min(self._session.episode_index, max(0, candidate.episode_count - 1))
        await self._start(candidate, episode, position, reason="user_switch")
        return True

    async def failover(self, reason: str = "failure") -> bool:
        """Abandon the current provider and load the next eligible candidate.

        Returns False (and ends the session as exhausted) when none is left.
        """
        if self._session.state not in _ACTIVE:
            return False
        position = self._position()
        self._transition(_S.FAILED_SWITCH, reason)
        self._cancel_timers()

        failed_key = self._session.current_provider_id
        if failed_key:
            self._session.failed_provider_ids.add(failed_key)

        nxt = self._next_candidate()
        if nxt is not None:
            log.info(
                "playback_failover",
                reason=reason,
                failed=failed_key,
                next=nxt.valuation_key,
                episode=self._session.episode_index,
            )
            self._emit(
                "switching_source",
                "Current source unavailable, switching to another source",
                reason=reason,
                next_provider=nxt.valuation_key,
            )
            await self._start(
                nxt, self._session.episode_index, position, reason=f"failover:{reason}"
            )
            return True

        self._transition(_S.EXHAUSTED, reason)
        log.warning(
            "playback_sources_exhausted",
            session=self._session.session_id,
            failed=sorted(self._session.failed_provider_ids),
        )
        self._emit(
            "sources_exhausted",
            "Current source unavailable. Please choose another source.",
        )
        self._detach()
        self._finish(
            SourceExhausted(episode_index=self._session.episode_index)
        )
        return False

    async def handle_event(self, event: SurfaceEvent) -> None:
        state = self._session.state
        if state not in _ACTIVE:
            return

        kind = event.kind
        if kind == "progress":
            self._check_progress(self._surface.current_time)
            self._maybe_save_progress()
        elif kind in ("waiting", "stalled"):
            if state in (_S.LOADING, _S.PLAYING):
                self._transition(_S.BUFFERING, kind)
            self._schedule_recovery(kind)
        elif kind in ("playing", "canplay"):
            if self._session.last_progress_at is None:
                self._session.last_progress_at = self._scheduler.now()
            self._transition(_S.PLAYING, kind)
            self._reset_recovery()
        elif kind == "error":
            if event.fatal:
                await self.failover(f"error:{event.detail or 'fatal'}")
            else:
                self._schedule_recovery("error")
        elif kind == "ended":
            await self._on_ended()
        elif kind in ("pause", "hidden"):
            self._save_progress()

    async def close(self) -> None:
        """Tear down timers and listeners; the last position is checkpointed."""
        if self._session.state is _S.CLOSED:
            return
        if self._session.state in _ACTIVE:
            self._save_progress()
        self._transition(_S.CLOSED, "close")
        self._cancel_timers()
        self._detach()
        self._finish()

    async def wait_finished(self) -> SessionSnapshot:
        """Block until the session ends.

        Raises:
            SourceExhausted: failover ran out of candidates.
            PlaybackFailure: the surface reported an unrecoverable error.
        """
        await self._finished.wait()
        if self._error is not None:
            raise self._error
        return self.session

    # -- internals -------------------------------------------------------------

    def _detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self._cancel_timers()

    def _position(self) -> float:
        current = self._surface.current_time
        if current and current > 0:
            return current
        return max(self._session.last_progress_time, self._session.resume_time, 0.0)

    def _next_candidate(self) -> Candidate | None:
        episode = self._session.episode_index
        current = self._current
        for candidate in self._candidates:
            if not candidate.episodes:
                continue
            if (
                current is not None
                and candidate.provider_id == current.provider_id
                and candidate.candidate_id == current.candidate_id
            ):
                continue
            if candidate.valuation_key in self._session.failed_provider_ids:
                continue
            if candidate.covers_episode(episode):
                return candidate
        return None

    async def _start(
        self,
        candidate: Candidate,
        episode_index: int,
        position: float,
        *,
        reason: str,
    ) -> None:
        if not self._transition(_S.LOADING, reason):
            return
        if not candidate.covers_episode(episode_index):
            episode_index = 0
        session = self._session
        session.current_provider_id = candidate.valuation_key
        session.current_candidate_id = candidate.candidate_id
        session.current_url = candidate.episodes[episode_index] if candidate.episodes else None
        session.episode_index = episode_index
        session.resume_time = max(0.0, position)
        session.recovery_attempt_count = 0
        session.stall_recovery_count = 0
        session.last_progress_at = None
        session.last_progress_time = session.resume_time
        self._current = candidate

        self._cancel_recovery_timer()
        self._arm_load_timeout()
        self._arm_watchdog()
        self._emit("loading", "Loading source", reason=reason, episode=episode_index)

        if session.current_url is None:
            await self.failover("no_episodes")
            return
        try:
            await self._surface.load(
                session.current_url,
                start_position=session.resume_time or None,
            )
            await self._surface.play()
        except PlaybackFailure as e:
            log.error("playback_unrecoverable", error=str(e))
            self._transition(_S.CLOSED, "unrecoverable")
            self._detach()
            self._finish(e)
        except Exception as e:
            log.warning(
                "playback_load_failed",
                provider=candidate.valuation_key,
                error=str(e),
            )
            await self.failover("load_error")

    def _check_progress(self, current_time: float) -> None:
        """Stall watchdog: progress resets counters, silence escalates.

        The first ``max_watchdog_recoveries`` detections (default 2) each
        schedule an in-place recovery. The next detection, about 21s into an
        unresolved stall, fails over instead of retrying a third time. The
        quiet window only starts once the source has progressed or reported
        ``canplay``/``playing``; before that the load timeout applies.
        """
        session = self._session
        now = self._scheduler.now()
        if current_time > session.last_progress_time + self._config.progress_epsilon_seconds:
            session.last_progress_time = current_time
            session.last_progress_at = now
            session.stall_recovery_count = 0
            session.recovery_attempt_count = 0
            if session.state in (_S.LOADING, _S.BUFFERING, _S.RECOVERING):
                self._transition(_S.PLAYING, "progress")
                self._cancel_recovery_timer()
            self._cancel_load_timer()
            return

        if self._surface.paused or session.last_progress_at is None:
            return
        if now - session.last_progress_at <= self._config.stall_timeout_seconds:
            return

        session.last_progress_at = now
        if session.stall_recovery_count >= self._config.max_watchdog_recoveries:
            session.stall_recovery_count = 0
            log.warning(
                "playback_watchdog_failover",
                provider=session.current_provider_id,
                position=current_time,
            )
            self._spawn(self.failover("watchdog"), "failover:watchdog")
            return
        session.stall_recovery_count += 1
        if session.state is _S.PLAYING:
            self._transition(_S.BUFFERING, "watchdog")
        self._schedule_recovery("watchdog")

    def _schedule_recovery(self, reason: str) -> None:
        session = self._session
        if self._recovery_timer is not None:
            return
        attempt = session.recovery_attempt_count
        if attempt >= self._config.max_recovery_attempts:
            log.info(
                "playback_recovery_exhausted",
                provider=session.current_provider_id,
                attempts=attempt,
                reason=reason,
            )
            self._spawn(self.failover(f"recovery_exhausted:{reason}"), "failover:recovery")
            return
        delay = (
            self._config.recovery_base_delay_seconds
            + attempt * self._config.recovery_step_seconds
        )
        log.debug("playback_recovery_scheduled", attempt=attempt, delay=delay, reason=reason)
        self._recovery_timer = self._scheduler.call_later(
            delay, lambda: self._on_recovery_timer(reason)
        )

    def _on_recovery_timer(self, reason: str) -> None:
        self._recovery_timer = None
        if self._session.state not in _ACTIVE:
            return
        self._session.recovery_attempt_count += 1
        self._spawn(self._recover(reason), f"recover:{reason}")

    async def _recover(self, reason: str) -> None:
        session = self._session
        if not self._transition(_S.RECOVERING, reason) or session.current_url is None:
            return
        self._emit(
            "recovering",
            "Reconnecting",
            attempt=session.recovery_attempt_count,
            reason=reason,
        )
        position = self._position()
        try:
            await self._surface.load(session.current_url, start_position=position or None)
            await self._surface.play()
        except PlaybackFailure as e:
            log.error("playback_unrecoverable", error=str(e))
            self._transition(_S.CLOSED, "unrecoverable")
            self._detach()
            self._finish(e)
        except Exception as e:
            log.warning("playback_recovery_failed", reason=reason, error=str(e))
            self._schedule_recovery(reason)

    def _reset_recovery(self) -> None:
        self._session.recovery_attempt_count = 0
        self._cancel_recovery_timer()

    async def _on_ended(self) -> None:
        session = self._session
        current = self._current
        nxt = session.episode_index + 1
        if (
            self._config.autoplay_next_episode
            and current is not None
            and current.covers_episode(nxt)
        ):
            log.info("playback_next_episode", episode=nxt)
            await self._start(current, nxt, 0.0, reason="next_episode")
            self._save_progress()
            return
        await self.close()

    def _maybe_save_progress(self) -> None:
        now = self._scheduler.now()
        if (
            self._last_saved_at is not None
            and now - self._last_saved_at < self._config.progress_save_interval_seconds
        ):
            return
        self._save_progress()

    def _save_progress(self) -> None:
        if self._progress_store is None:
            return
        self._last_saved_at = self._scheduler.now()
        session = self._session
        position = self._position()
        self._spawn(
            self._persist_progress(session.session_id, session.episode_index, position),
            "save_progress",
        )

    async def _persist_progress(
        self, session_id: str, episode_index: int, position: float
    ) -> None:
        assert self._progress_store is not None
        try:
            await self._progress_store.save_progress(session_id, episode_index, position)
        except Exception as e:
            log.warning("progress_save_failed", session=session_id, error=str(e))

    def _on_surface_event(self, event: SurfaceEvent) -> None:
        self._spawn(self.handle_event(event), f"event:{event.kind}")
