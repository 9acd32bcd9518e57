"""Hardcoded default configuration values."""

from __future__ import annotations

from typing import Any

DEFAULT_CONFIG: dict[str, Any] = {
    "app_name": "streamwarden",
    "environment": "dev",
    "http": {
        "timeout_seconds": 15.0,
        "follow_redirects": True,
        "user_agent": "streamwarden/0.1.0",
    },
    "logging": {
        "level": "INFO",
        "format": None,  # Derived from environment in schema.py
    },
    "cache": {
        "dir": "./.cache/streamwarden",
        "backend": "diskcache",
        "ttl_seconds": 3600,
    },
    "valuation": {
        "weight_preset": "quality_first",
        "probe_timeout_seconds": 1.0,
        "probe_attempts": 4,
        "failure_ttl_seconds": 3600,
        "penalize_empty_providers": False,
        "ttl_days": 30,
    },
    "ad_filter": {
        "enabled": True,
        "mode": "smart",
        "aggressive": False,
    },
    "playback": {
        "stall_timeout_seconds": 7.0,
        "max_recovery_attempts": 3,
        "load_timeout_seconds": 20.0,
        "progress_save_interval_seconds": 5.0,
        "autoplay_next_episode": True,
    },
    "search": {
        "base_url": "http://localhost:3000",
        "initial_candidate_limit": 5,
    },
}
