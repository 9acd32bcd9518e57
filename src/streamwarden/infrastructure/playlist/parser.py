"""Minimal HLS manifest inspection used by the metric probe.

Only what ranking needs: master vs. media playlist, variant resolutions,
and the first media segment. Relative URIs are resolved against the
manifest URL.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from urllib.parse import urljoin

from streamwarden.domain.entities.errors import ManifestParseAnomaly

_RESOLUTION_RE = re.compile(r"RESOLUTION=(\d+)x(\d+)", re.IGNORECASE)
_BANDWIDTH_RE = re.compile(r"BANDWIDTH=(\d+)", re.IGNORECASE)


@dataclass(frozen=True)
class Variant:
    uri: str
    width: int = 0
    height: int = 0
    bandwidth: int = 0


def _lines(text: str) -> list[str]:
    return [line.strip() for line in text.splitlines() if line.strip()]


def ensure_playlist(text: str) -> list[str]:
    """Return the stripped non-empty lines, or raise if this is not HLS."""
    lines = _lines(text or "")
    if not lines or not lines[0].startswith("#EXTM3U"):
        raise ManifestParseAnomaly("manifest does not start with #EXTM3U")
    return lines


def is_master_playlist(text: str) -> bool:
    return any(line.startswith("#EXT-X-STREAM-INF") for line in ensure_playlist(text))


def parse_variants(text: str, base_url: str = "") -> list[Variant]:
    """Variant streams of a master playlist, in document order."""
    lines = ensure_playlist(text)
    variants: list[Variant] = []
    for i, line in enumerate(lines):
        if not line.startswith("#EXT-X-STREAM-INF"):
            continue
        uri = next(
            (nxt for nxt in lines[i + 1 :] if not nxt.startswith("#")),
            None,
        )
        if uri is None:
            continue
        width = height = bandwidth = 0
        if (m := _RESOLUTION_RE.search(line)) is not None:
            width, height = int(m.group(1)), int(m.group(2))
        if (m := _BANDWIDTH_RE.search(line)) is not None:
            bandwidth = int(m.group(1))
        variants.append(
            Variant(
                uri=urljoin(base_url, uri) if base_url else uri,
                width=width,
                height=height,
                bandwidth=bandwidth,
            )
        )
    return variants


def best_variant(variants: list[Variant]) -> Variant | None:
    """Widest variant; bandwidth breaks ties."""
    if not variants:
        return None
    return max(variants, key=lambda v: (v.width, v.bandwidth))


def first_segment_uri(text: str, base_url: str = "") -> str | None:
    """First media segment URI of a media playlist."""
    lines = ensure_playlist(text)
    for i, line in enumerate(lines):
        if not line.startswith("#EXTINF"):
            continue
        for nxt in lines[i + 1 :]:
            if not nxt.startswith("#"):
                return urljoin(base_url, nxt) if base_url else nxt
    return None
