from .cache import CachePort
from .candidate_source import CandidateSourcePort
from .metric_probe import MetricProbePort
from .playback_surface import PlaybackSurfacePort, SurfaceListener
from .progress_store import ProgressStorePort
from .scheduler import SchedulerPort, TimerHandle
from .valuation_store import ValuationStorePort

__all__ = [
    "CachePort",
    "CandidateSourcePort",
    "MetricProbePort",
    "PlaybackSurfacePort",
    "ProgressStorePort",
    "SchedulerPort",
    "SurfaceListener",
    "TimerHandle",
    "ValuationStorePort",
]
