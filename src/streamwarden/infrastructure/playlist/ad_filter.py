"""HLS ad excision: strips advertisement markers and segments from manifests.

Pure text transformation: no I/O, never raises. Unknown input degrades to
pass-through. Line endings of kept lines are preserved byte-for-byte.

Modes:

``simple``
    Drops every line mentioning a known ad host and every
    ``#EXT-X-DISCONTINUITY`` line.

``smart`` (conservative, default)
    Drops only ad start/end marker lines. Segment URIs are never removed,
    so continuity cannot break.

``smart`` + ``aggressive=True``
    Line-oriented state machine (NORMAL / IN_AD_BLOCK). Segments inside a
    marked block are skipped up to the block's declared duration (min 3s),
    never more than ``max_skip_seconds`` per block or ``max_ad_seconds``
    overall; discontinuities swallowed inside a block are re-emitted when
    the block ends.
"""

from __future__ import annotations

import math
import re
from collections.abc import Sequence
from datetime import datetime
from enum import Enum
from typing import Literal

import structlog

log = structlog.get_logger(__name__)

FilterMode = Literal["simple", "smart"]

DEFAULT_AD_HOSTS: tuple[str, ...] = ("adserver.com", "doubleclick.net")

# Per-block skip budget when the marker does not declare a duration.
MIN_BLOCK_SECONDS: float = 3.0
MAX_SKIP_SECONDS: float = 20.0
MAX_AD_SECONDS: float = 90.0

_AD_START_PREFIXES: tuple[str, ...] = (
    "#EXT-X-CUE-OUT",
    "#EXT-X-CUE-OUT-CONT",
    "#EXT-X-SCTE35-OUT",
    "#EXT-X-PLACEMENT-OPPORTUNITY",
    "#EXT-OATCLS-SCTE35",
    "#EXT-X-GOOGLE-CUE-OUT",
    "#EXT-X-MEDIA-TAILOR-AD",
    "#EXT-X-MEDIA-TAILOR-SIGNAL",
    "#EXT-X-FREEWHEEL-AD",
    "#EXT-X-TV-TIMELINE",
    "#EXT-X-TIMELINE-OFFSET",
    "#EXT-X-AD",
    "#EXT-X-COMCAST-AD",
)

_AD_END_PREFIXES: tuple[str, ...] = (
    "#EXT-X-CUE-IN",
    "#EXT-X-SCTE35-IN",
    "#EXT-X-GOOGLE-CUE-IN",
)

_ALWAYS_KEEP_PREFIXES: tuple[str, ...] = (
    "#EXTM3U",
    "#EXT-X-VERSION",
    "#EXT-X-TARGETDURATION",
    "#EXT-X-MEDIA-SEQUENCE",
    "#EXT-X-PROGRAM-DATE-TIME",
    "#EXT-X-KEY",
)

_AD_DATERANGE_RE = re.compile(
    r'CLASS="com\.apple\.hls\.interstitial"|SCTE35-OUT|X-(?:ASSET|AD)-',
    re.IGNORECASE,
)
_DURATION_RE = re.compile(r"DURATION=([0-9.]+)", re.IGNORECASE)
_START_DATE_RE = re.compile(r'START-DATE="?([^",]+)"?', re.IGNORECASE)
_END_DATE_RE = re.compile(r'END-DATE="?([^",]+)"?', re.IGNORECASE)
_EXTINF_RE = re.compile(r"#EXTINF:([\d.]+)")


class _State(Enum):
    NORMAL = "normal"
    IN_AD_BLOCK = "in_ad_block"


def is_ad_daterange(line: str) -> bool:
    return line.startswith("#EXT-X-DATERANGE") and bool(_AD_DATERANGE_RE.search(line))


def is_ad_start(line: str) -> bool:
    return line.startswith(_AD_START_PREFIXES) or is_ad_daterange(line)


def is_ad_end(line: str) -> bool:
    return line.startswith(_AD_END_PREFIXES)


def is_ad_url(line: str, ad_hosts: Sequence[str] = DEFAULT_AD_HOSTS) -> bool:
    if not line or line.startswith("#"):
        return False
    lowered = line.lower()
    return any(host.lower() in lowered for host in ad_hosts)


def _parse_date(value: str) -> datetime | None:
    try:
        return datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None


def daterange_duration(line: str) -> float | None:
    """Declared ad duration of a date-range tag, in seconds.

    ``DURATION`` wins; otherwise ``END-DATE - START-DATE``.
    """
    if (m := _DURATION_RE.search(line)) is not None:
        try:
            value = float(m.group(1))
        except ValueError:
            value = 0.0
        return value if math.isfinite(value) and value > 0 else None

    start_m = _START_DATE_RE.search(line)
    end_m = _END_DATE_RE.search(line)
    if start_m is None or end_m is None:
        return None
    start = _parse_date(start_m.group(1))
    end = _parse_date(end_m.group(1))
    if start is None or end is None:
        return None
    try:
        seconds = (end - start).total_seconds()
    except TypeError:
        # naive vs. aware
        return None
    return seconds if seconds > 0 else None


def _extinf_duration(line: str) -> float:
    m = _EXTINF_RE.match(line)
    if m is None:
        return 0.0
    try:
        return float(m.group(1))
    except ValueError:
        return 0.0


def _newline_of(text: str) -> str:
    return "\r\n" if "\r\n" in text else "\n"


def filter_simple(text: str, ad_hosts: Sequence[str] = DEFAULT_AD_HOSTS) -> str:
    out: list[str] = []
    for raw in text.splitlines(keepends=True):
        line = raw.strip()
        if any(host in line for host in ad_hosts):
            continue
        if line.startswith("#EXT-X-DISCONTINUITY"):
            continue
        out.append(raw)
    return "".join(out)


def filter_conservative(text: str) -> str:
    out: list[str] = []
    for raw in text.splitlines(keepends=True):
        line = raw.strip()
        if is_ad_start(line) or is_ad_end(line):
            continue
        out.append(raw)
    return "".join(out)


class _AggressiveFilter:
    """Single-pass state machine over manifest lines.

    The segment whose duration reaches the block limit is treated as content
    and emitted with its own ``#EXTINF`` line rather than a zero-length
    placeholder. A marker without a declared duration gets the 3s minimum, so
    ``#EXT-X-CUE-OUT`` / ``#EXTINF:4,`` / ``ad1.ts`` / ``#EXT-X-CUE-IN`` keeps
    ``ad1.ts`` and only loses its markers. Ad-host URIs are checked on that
    resume path too, so a second pass removes nothing more.

    Only one instance per document; not reusable.
    """

    def __init__(
        self,
        text: str,
        *,
        ad_hosts: Sequence[str],
        min_block_seconds: float,
        max_skip_seconds: float,
        max_ad_seconds: float,
    ) -> None:
        self._raw_lines = text.splitlines(keepends=True)
        self._stripped = [raw.strip() for raw in self._raw_lines]
        self._newline = _newline_of(text)
        self._ad_hosts = ad_hosts
        self._min_block = min_block_seconds
        self._max_skip = max_skip_seconds
        self._max_ad = max_ad_seconds

        self.out: list[str] = []
        self._state = _State.NORMAL
        self._pending_discontinuities = 0
        self._skipped = 0.0
        self._block_limit = min_block_seconds
        self._resume_after_segment = False
        self._expecting_segment = False
        self._held_extinf: str | None = None
        self._last_output_was_extinf = False
        self._last_extinf_index: int | None = None
        self.removed_segments = 0

    # -- lookahead --------------------------------------------------------

    def _next_non_empty(self, i: int) -> str:
        for line in self._stripped[i + 1 :]:
            if line:
                return line
        return ""

    def _next_segment(self, i: int) -> str:
        for line in self._stripped[i + 1 :]:
            if line and not line.startswith("#"):
                return line
        return ""

    # -- transitions ------------------------------------------------------

    def _enter_block(self, line: str) -> None:
        self._state = _State.IN_AD_BLOCK
        self._skipped = 0.0
        self._resume_after_segment = False
        declared = daterange_duration(line) if line.startswith("#EXT-X-DATERANGE") else None
        if declared is not None:
            self._block_limit = max(self._min_block, float(round(declared)))
        else:
            self._block_limit = self._min_block

    def _leave_block(self) -> None:
        self._state = _State.NORMAL
        self._skipped = 0.0
        self._resume_after_segment = False
        self._block_limit = self._min_block
        while self._pending_discontinuities > 0:
            self.out.append(f"#EXT-X-DISCONTINUITY{self._newline}")
            self._pending_discontinuities -= 1
        self._expecting_segment = False
        self._held_extinf = None

    def _emit(self, raw: str, line: str) -> None:
        self.out.append(raw)
        if line.startswith("#EXTINF:"):
            self._last_extinf_index = len(self.out) - 1
            self._last_output_was_extinf = True
            self._expecting_segment = True
        else:
            self._last_output_was_extinf = False
            if line and not line.startswith("#"):
                self._last_extinf_index = None
                self._expecting_segment = False

    # -- main loop --------------------------------------------------------

    def run(self) -> str:
        for i, raw in enumerate(self._raw_lines):
            line = self._stripped[i]

            if is_ad_start(line):
                self._enter_block(line)
                continue
            if is_ad_end(line):
                self._leave_block()
                continue

            if self._state is _State.IN_AD_BLOCK:
                self._in_block(i, raw, line)
                continue

            if self._drop_soft_ad_url(i, line):
                continue

            self._emit(raw, line)

        return "".join(self.out)

    def _in_block(self, i: int, raw: str, line: str) -> None:
        if line.startswith(_ALWAYS_KEEP_PREFIXES):
            self.out.append(raw)
            self._last_output_was_extinf = False
            self._last_extinf_index = None
            return

        if line.startswith("#EXTINF:"):
            self._expecting_segment = True
            self._held_extinf = raw
            projected = self._skipped + _extinf_duration(line)
            if projected > self._max_skip:
                # Too long to be an ad: this segment is content again.
                self._leave_block()
                self._emit(raw, line)
                return
            self._skipped = projected
            if self._skipped >= self._max_ad:
                self._leave_block()
                self._emit(raw, line)
                return
            if self._skipped >= self._block_limit:
                self._resume_after_segment = True
            return

        if line.startswith("#EXT-X-DISCONTINUITY"):
            self._pending_discontinuities += 1
            return

        if self._resume_after_segment and line and not line.startswith("#"):
            if self._expecting_segment:
                held = self._held_extinf
                self._leave_block()
                if held is not None:
                    self._emit(held, held.strip())
                if not self._drop_soft_ad_url(i, line):
                    self._emit(raw, line)
            return

        if line and not line.startswith("#"):
            self.removed_segments += 1
            self._expecting_segment = False

    def _drop_soft_ad_url(self, i: int, line: str) -> bool:
        """Drop an ad-host segment (and its #EXTINF) sitting next to ad context."""
        if not (is_ad_url(line, self._ad_hosts) and self._last_output_was_extinf):
            return False
        nxt = self._next_non_empty(i)
        likely_ad = (
            is_ad_start(nxt)
            or is_ad_end(nxt)
            or nxt.startswith("#EXT-X-DISCONTINUITY")
            or is_ad_url(self._next_segment(i), self._ad_hosts)
        )
        if not likely_ad:
            return False
        if self._last_extinf_index is not None:
            del self.out[self._last_extinf_index]
            self._last_extinf_index = None
        self._last_output_was_extinf = False
        self.removed_segments += 1
        return True


def filter_aggressive(
    text: str,
    *,
    ad_hosts: Sequence[str] = DEFAULT_AD_HOSTS,
    min_block_seconds: float = MIN_BLOCK_SECONDS,
    max_skip_seconds: float = MAX_SKIP_SECONDS,
    max_ad_seconds: float = MAX_AD_SECONDS,
) -> str:
    machine = _AggressiveFilter(
        text,
        ad_hosts=ad_hosts,
        min_block_seconds=min_block_seconds,
        max_skip_seconds=max_skip_seconds,
        max_ad_seconds=max_ad_seconds,
    )
    result = machine.run()
    if machine.removed_segments:
        log.debug("ad_segments_removed", count=machine.removed_segments)
    return result


def filter_manifest(
    text: str,
    mode: FilterMode = "smart",
    *,
    aggressive: bool = False,
    ad_hosts: Sequence[str] = DEFAULT_AD_HOSTS,
    min_block_seconds: float = MIN_BLOCK_SECONDS,
    max_skip_seconds: float = MAX_SKIP_SECONDS,
    max_ad_seconds: float = MAX_AD_SECONDS,
) -> str:
    """Remove advertisement content from an HLS manifest.

    Never raises: an unknown mode or malformed document passes through
    unchanged (conservative filtering of unknown tags is a no-op).
    """
    if not text:
        return ""
    if mode == "simple":
        return filter_simple(text, ad_hosts)
    if mode != "smart":
        log.warning("ad_filter_unknown_mode", mode=mode)
        return text
    if aggressive:
        return filter_aggressive(
            text,
            ad_hosts=ad_hosts,
            min_block_seconds=min_block_seconds,
            max_skip_seconds=max_skip_seconds,
            max_ad_seconds=max_ad_seconds,
        )
    return filter_conservative(text)
