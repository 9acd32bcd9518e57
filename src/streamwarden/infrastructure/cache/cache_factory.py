"""Cache factory - builds the storage adapter selected in CacheConfig."""

from __future__ import annotations

import structlog

from streamwarden.domain.ports.cache import CachePort
from streamwarden.infrastructure.config.schema import CacheConfig

from .diskcache_adapter import DiskcacheAdapter
from .redis_adapter import RedisAdapter

log = structlog.get_logger(__name__)

# Redis handles far more parallel commands than SQLite.
_REDIS_MAX_CONCURRENT = 50


def create_cache(config: CacheConfig) -> CachePort:
    """Create (but do not open) the configured adapter.

    Raises:
        ValueError: If ``config.backend`` is unknown.
    """
    if config.backend == "diskcache":
        log.info(
            "cache_factory_create",
            backend=config.backend,
            directory=str(config.directory),
            ttl=config.ttl_seconds,
            max_concurrent=config.max_concurrent,
        )
        return DiskcacheAdapter(
            directory=config.directory,
            ttl_seconds=config.ttl_seconds,
            max_concurrent=config.max_concurrent,
        )
    if config.backend == "redis":
        log.info(
            "cache_factory_create",
            backend=config.backend,
            url=config.redis_url,
            ttl=config.ttl_seconds,
            max_concurrent=_REDIS_MAX_CONCURRENT,
        )
        return RedisAdapter(
            url=config.redis_url,
            ttl_seconds=config.ttl_seconds,
            max_concurrent=_REDIS_MAX_CONCURRENT,
        )
    raise ValueError(
        f"Unknown cache backend: {config.backend!r}. Must be 'diskcache' or 'redis'."
    )
