"""Playback reliability - state machine, watchdog and failover."""

from .controller import ReliabilityController
from .scheduler import AsyncioScheduler, ManualScheduler

__all__ = ["AsyncioScheduler", "ManualScheduler", "ReliabilityController"]
