"""Domain entities for the playback session and its observable events."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal

SurfaceEventKind = Literal[
    "progress",
    "waiting",
    "stalled",
    "playing",
    "canplay",
    "error",
    "ended",
    "pause",
    "hidden",
]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PlaybackState(Enum):
    IDLE = "idle"
    LOADING = "loading"
    PLAYING = "playing"
    BUFFERING = "buffering"
    RECOVERING = "recovering"
    FAILED_SWITCH = "failed_switch"
    EXHAUSTED = "exhausted"
    CLOSED = "closed"


@dataclass(frozen=True)
class SurfaceEvent:
    """Something the playback surface reported.

    ``fatal`` is only meaningful for ``error`` events.
    """

    kind: SurfaceEventKind
    fatal: bool = False
    detail: str = ""


@dataclass(frozen=True)
class StatusEvent:
    """User-visible status emitted by the controller (e.g. "switching source")."""

    kind: str
    message: str
    provider_id: str | None = None
    data: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ProgressRecord:
    session_id: str
    episode_index: int
    time_seconds: float
    saved_at: datetime = field(default_factory=_utcnow)


@dataclass(frozen=True)
class SessionSnapshot:
    """Read-only view of a PlaybackSession."""

    session_id: str
    state: PlaybackState
    current_provider_id: str | None
    current_candidate_id: str | None
    episode_index: int
    failed_provider_ids: frozenset[str]
    recovery_attempt_count: int
    stall_recovery_count: int
    resume_time: float


@dataclass
class PlaybackSession:
    """Mutable session state. Owned by exactly one ReliabilityController."""

    session_id: str
    state: PlaybackState = PlaybackState.IDLE
    current_provider_id: str | None = None
    current_candidate_id: str | None = None
    current_url: str | None = None
    episode_index: int = 0
    failed_provider_ids: set[str] = field(default_factory=set)
    recovery_attempt_count: int = 0
    stall_recovery_count: int = 0
    last_progress_at: float | None = None
    last_progress_time: float = 0.0
    resume_time: float = 0.0

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            session_id=self.session_id,
            state=self.state,
            current_provider_id=self.current_provider_id,
            current_candidate_id=self.current_candidate_id,
            episode_index=self.episode_index,
            failed_provider_ids=frozenset(self.failed_provider_ids),
            recovery_attempt_count=self.recovery_attempt_count,
            stall_recovery_count=self.stall_recovery_count,
            resume_time=self.resume_time,
        )
