"""Playlist handling - manifest parsing, ad excision and fetching."""

from .ad_filter import DEFAULT_AD_HOSTS, FilterMode, filter_manifest
from .parser import (
    Variant,
    best_variant,
    first_segment_uri,
    is_master_playlist,
    parse_variants,
)

__all__ = [
    "DEFAULT_AD_HOSTS",
    "FilterMode",
    "Variant",
    "best_variant",
    "filter_manifest",
    "first_segment_uri",
    "is_master_playlist",
    "parse_variants",
]
