from .candidate import Candidate, CandidateCheck, TitleQuery
from .errors import (
    ManifestParseAnomaly,
    PersistenceError,
    PlaybackFailure,
    ProbeFailure,
    SourceExhausted,
    StreamWardenError,
)
from .playback import (
    PlaybackSession,
    PlaybackState,
    ProgressRecord,
    SessionSnapshot,
    StatusEvent,
    SurfaceEvent,
)
from .valuation import (
    Measurement,
    QualityRank,
    RankedGroup,
    ScoredCandidate,
    Valuation,
)

__all__ = [
    "Candidate",
    "CandidateCheck",
    "ManifestParseAnomaly",
    "Measurement",
    "PersistenceError",
    "PlaybackFailure",
    "PlaybackSession",
    "PlaybackState",
    "ProbeFailure",
    "ProgressRecord",
    "QualityRank",
    "RankedGroup",
    "ScoredCandidate",
    "SessionSnapshot",
    "SourceExhausted",
    "StatusEvent",
    "StreamWardenError",
    "SurfaceEvent",
    "TitleQuery",
    "Valuation",
]
