from __future__ import annotations

from .load import load_config
from .schema import (
    AdFilterConfig,
    AppConfig,
    CacheConfig,
    EnvOverrides,
    PlaybackConfig,
    SearchConfig,
    ValuationConfig,
)

__all__ = [
    "AdFilterConfig",
    "AppConfig",
    "CacheConfig",
    "EnvOverrides",
    "PlaybackConfig",
    "SearchConfig",
    "ValuationConfig",
    "load_config",
]
