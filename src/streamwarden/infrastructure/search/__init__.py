"""Upstream search adapters."""

from .ndjson_source import NdjsonCandidateSource, parse_line

__all__ = ["NdjsonCandidateSource", "parse_line"]
