from .progress_cache import CacheProgressStore
from .valuation_cache import CacheValuationStore

__all__ = ["CacheProgressStore", "CacheValuationStore"]
