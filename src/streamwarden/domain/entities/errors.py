"""Exception taxonomy for source valuation, manifest handling and playback."""

from __future__ import annotations


class StreamWardenError(Exception):
    """Base error for streamwarden domain/usecases."""


class ProbeFailure(StreamWardenError):
    """A metric probe could not obtain usable metadata for a stream.

    Never crosses the probe boundary: it is folded into a failed Measurement.
    """


class ManifestParseAnomaly(StreamWardenError):
    """Manifest text is not a recognisable playlist document."""


class PersistenceError(StreamWardenError):
    """Valuation or progress store read/write failed."""


class SourceExhausted(StreamWardenError):
    """No eligible candidate remains after failover."""

    def __init__(self, message: str = "no playable source left", *, episode_index: int = 0) -> None:
        super().__init__(message)
        self.episode_index = episode_index


class PlaybackFailure(StreamWardenError):
    """Unrecoverable player error that failover cannot route around."""
