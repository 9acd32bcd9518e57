"""Pydantic configuration models with validation."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal, Optional

from pydantic import (
    AliasChoices,
    AliasPath,
    BaseModel,
    Field,
    field_validator,
    model_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

Environment = Literal["dev", "test", "prod"]
LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR"]
LogFormat = Literal["json", "console"]
WeightPreset = Literal["quality_first", "balanced", "custom"]


def _normalize_path(value: Any) -> Path:
    """
    Normalize a path-like value without causing filesystem side-effects.

    This function MUST NOT create directories or files.
    """
    if isinstance(value, Path):
        return value.expanduser()
    if isinstance(value, str):
        return Path(value).expanduser()
    raise TypeError(f"Expected path-like value, got: {type(value)!r}")


class CacheConfig(BaseSettings):
    """Storage backend for valuations and progress checkpoints."""

    backend: Literal["diskcache", "redis"] = Field(
        default="diskcache",
        description="Cache backend: 'diskcache' (SQLite) or 'redis'",
    )
    directory: Path = Field(
        default=Path("./.cache/streamwarden"),
        alias="dir",
        description="Diskcache SQLite DB path",
    )
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis connection URL (only when backend=redis)",
    )
    ttl_seconds: int = Field(
        default=3600,
        description="Default TTL for cache entries (seconds)",
    )
    max_concurrent: int = Field(
        default=10,
        description="Max parallel cache ops (semaphore limit)",
    )

    model_config = SettingsConfigDict(
        env_prefix="CACHE_",
        case_sensitive=False,
        populate_by_name=True,
    )

    @field_validator("directory", mode="before")
    @classmethod
    def _validate_directory(cls, v: Any) -> Path:
        return _normalize_path(v)


class ValuationConfig(BaseModel):
    """Probing, blending and ranking of provider valuations."""

    weight_preset: WeightPreset = Field(
        default="quality_first",
        description=(
            "Composite score weights: quality_first (0.8/0.1/0.1), "
            "balanced (0.5/0.3/0.2) or custom (weight_* fields)."
        ),
    )
    weight_quality: float = Field(default=0.8, ge=0.0)
    weight_speed: float = Field(default=0.1, ge=0.0)
    weight_ping: float = Field(default=0.1, ge=0.0)

    probe_timeout_seconds: float = Field(
        default=1.0,
        description="Per-attempt timeout for manifest/segment metadata.",
    )
    probe_attempts: int = Field(
        default=4,
        description="Attempts per candidate before recording a failed sample.",
    )
    segment_max_bytes: int = Field(
        default=2 * 1024 * 1024,
        description="Upper bound of bytes read from a segment for speed measurement.",
    )
    failure_ttl_seconds: int = Field(
        default=3600,
        description="Providers that failed more recently than this are not re-probed.",
    )
    penalize_empty_providers: bool = Field(
        default=False,
        description="Record a failed sample for providers that returned no playable candidate.",
    )
    ttl_days: int = Field(
        default=30,
        description="Retention of stored valuations (days). 0 = keep forever.",
    )

    @field_validator("probe_timeout_seconds")
    @classmethod
    def _validate_probe_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("probe_timeout_seconds must be > 0")
        return v

    @field_validator("probe_attempts")
    @classmethod
    def _validate_attempts(cls, v: int) -> int:
        if v < 1:
            raise ValueError("probe_attempts must be >= 1")
        return v


class AdFilterConfig(BaseModel):
    """Manifest ad excision."""

    enabled: bool = Field(default=True)
    mode: Literal["simple", "smart"] = Field(
        default="smart",
        description="simple = host/discontinuity drop; smart = marker-aware.",
    )
    aggressive: bool = Field(
        default=False,
        description="Smart mode only: also skip segments inside marked ad blocks.",
    )
    ad_hosts: list[str] = Field(
        default_factory=lambda: ["adserver.com", "doubleclick.net"],
        description="Substrings identifying ad-server segment URLs.",
    )
    min_block_seconds: float = Field(default=3.0, gt=0)
    max_skip_seconds: float = Field(default=20.0, gt=0)
    max_ad_seconds: float = Field(default=90.0, gt=0)


class PlaybackConfig(BaseModel):
    """Stall watchdog, recovery and failover timing."""

    watchdog_interval_seconds: float = Field(
        default=1.0,
        description="How often the watchdog checks playback progress.",
    )
    stall_timeout_seconds: float = Field(
        default=7.0,
        description="No progress for this long while not paused counts as a stall.",
    )
    progress_epsilon_seconds: float = Field(
        default=0.15,
        description="Minimum playhead advance that counts as progress.",
    )
    max_watchdog_recoveries: int = Field(
        default=2,
        description="Unresolved watchdog recoveries before forcing failover.",
    )
    max_recovery_attempts: int = Field(
        default=3,
        description="Recovery tries per stall episode.",
    )
    recovery_base_delay_seconds: float = Field(default=0.5)
    recovery_step_seconds: float = Field(default=0.7)
    load_timeout_seconds: float = Field(
        default=20.0,
        description="Fail over when nothing played within this window (10 on TV).",
    )
    progress_save_interval_seconds: float = Field(default=5.0)
    autoplay_next_episode: bool = Field(default=True)


class SearchConfig(BaseModel):
    """Upstream NDJSON search stream."""

    base_url: str = Field(default="http://localhost:3000")
    stream_path: str = Field(default="/api/search/stream")
    timeout_seconds: float = Field(default=60.0)
    initial_candidate_limit: int = Field(
        default=5,
        description="Distinct providers sampled before playback starts.",
    )


class AppConfig(BaseModel):
    """
    Canonical application configuration (validated, final).

    Note:
    - YAML is expected to be sectioned (http/logging/cache/valuation/...).
    - Environment variables are handled by EnvOverrides(BaseSettings) to allow strict
      precedence control (defaults < YAML < ENV < CLI) in load.py.
    """

    app_name: str = Field(default="streamwarden", description="Application name.")
    environment: Environment = Field(
        default="dev",
        description="Runtime environment (affects defaults like log format).",
    )

    # HTTP (YAML section: http.*)
    http_timeout_seconds: float = Field(
        default=15.0,
        validation_alias=AliasChoices(
            "http_timeout_seconds",
            AliasPath("http", "timeout_seconds"),
        ),
        description="Default timeout for outgoing HTTP requests.",
    )
    http_follow_redirects: bool = Field(
        default=True,
        validation_alias=AliasChoices(
            "http_follow_redirects",
            AliasPath("http", "follow_redirects"),
        ),
    )
    http_user_agent: str = Field(
        default="streamwarden/0.1.0",
        validation_alias=AliasChoices(
            "http_user_agent",
            AliasPath("http", "user_agent"),
        ),
        description="User-Agent for outgoing HTTP requests.",
    )

    # Logging (YAML section: logging.*)
    log_level: LogLevel = Field(
        default="INFO",
        validation_alias=AliasChoices(
            "log_level",
            AliasPath("logging", "level"),
        ),
    )
    log_format: Optional[LogFormat] = Field(
        default=None,
        validation_alias=AliasChoices(
            "log_format",
            AliasPath("logging", "format"),
        ),
        description=(
            "Log renderer format (console/json). If unset, derived from environment."
        ),
    )

    cache: CacheConfig = Field(default_factory=CacheConfig)
    valuation: ValuationConfig = Field(default_factory=ValuationConfig)
    ad_filter: AdFilterConfig = Field(default_factory=AdFilterConfig)
    playback: PlaybackConfig = Field(default_factory=PlaybackConfig)
    search: SearchConfig = Field(default_factory=SearchConfig)

    @field_validator("http_timeout_seconds")
    @classmethod
    def _validate_http_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("http_timeout_seconds must be > 0")
        return v

    @model_validator(mode="after")
    def _derive_defaults(self) -> "AppConfig":
        # Default log format: console in dev/test, json in prod.
        if self.log_format is None:
            self.log_format = "json" if self.environment == "prod" else "console"
        return self

    def to_sectioned_dict(self) -> dict[str, Any]:
        """
        Dump configuration in the sectioned shape used by config.yaml/docs.
        """
        return {
            "app_name": self.app_name,
            "environment": self.environment,
            "http": {
                "timeout_seconds": self.http_timeout_seconds,
                "follow_redirects": self.http_follow_redirects,
                "user_agent": self.http_user_agent,
            },
            "logging": {"level": self.log_level, "format": self.log_format},
            "cache": {
                "backend": self.cache.backend,
                "dir": str(self.cache.directory),
                "redis_url": self.cache.redis_url,
                "ttl_seconds": self.cache.ttl_seconds,
            },
            "valuation": self.valuation.model_dump(),
            "ad_filter": self.ad_filter.model_dump(),
            "playback": self.playback.model_dump(),
            "search": self.search.model_dump(),
        }


class EnvOverrides(BaseSettings):
    """
    Environment-variable overrides (all optional).

    Intended usage:
    - load.py creates EnvOverrides() to read STREAMWARDEN_* variables,
      converts to dict of set values, merges into YAML/defaults,
      then validates AppConfig.

    Supported env var examples (flat, explicit):
    - STREAMWARDEN_LOG_LEVEL
    - STREAMWARDEN_CACHE_BACKEND
    - STREAMWARDEN_AD_FILTER_AGGRESSIVE
    - STREAMWARDEN_LOAD_TIMEOUT_SECONDS
    """

    model_config = SettingsConfigDict(
        env_prefix="STREAMWARDEN_",
        case_sensitive=False,
        extra="ignore",
    )

    environment: Optional[Environment] = None

    http_timeout_seconds: Optional[float] = None
    http_user_agent: Optional[str] = None

    log_level: Optional[LogLevel] = None
    log_format: Optional[LogFormat] = None

    cache_backend: Optional[Literal["diskcache", "redis"]] = None
    cache_dir: Optional[str] = None
    redis_url: Optional[str] = None

    weight_preset: Optional[WeightPreset] = None
    probe_timeout_seconds: Optional[float] = None
    failure_ttl_seconds: Optional[int] = None

    ad_filter_enabled: Optional[bool] = None
    ad_filter_mode: Optional[Literal["simple", "smart"]] = None
    ad_filter_aggressive: Optional[bool] = None

    load_timeout_seconds: Optional[float] = None
    autoplay_next_episode: Optional[bool] = None

    search_base_url: Optional[str] = None

    def to_update_dict(self) -> dict[str, Any]:
        """Only the variables that were actually set."""
        return self.model_dump(exclude_none=True)
