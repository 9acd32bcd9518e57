"""Tests for HLS manifest ad excision."""

from __future__ import annotations

import pytest

from streamwarden.infrastructure.playlist.ad_filter import (
    daterange_duration,
    filter_manifest,
    is_ad_daterange,
    is_ad_end,
    is_ad_start,
    is_ad_url,
)

_CUE_MANIFEST = (
    "#EXTM3U\n"
    "#EXT-X-TARGETDURATION:10\n"
    "#EXTINF:10.0,\n"
    "c1.ts\n"
    "#EXT-X-CUE-OUT:DURATION=15\n"
    "#EXTINF:5.0,\n"
    "a1.ts\n"
    "#EXT-X-CUE-IN\n"
    "#EXTINF:10.0,\n"
    "c2.ts\n"
)

_DATERANGE_MANIFEST = (
    "#EXTM3U\n"
    "#EXT-X-VERSION:3\n"
    "#EXT-X-TARGETDURATION:10\n"
    "#EXTINF:10.0,\n"
    "c1.ts\n"
    '#EXT-X-DATERANGE:ID="ad1",CLASS="com.apple.hls.interstitial",'
    'START-DATE="2024-01-01T00:00:00Z",DURATION=6\n'
    "#EXT-X-DISCONTINUITY\n"
    "#EXTINF:2.0,\n"
    "a1.ts\n"
    "#EXTINF:2.0,\n"
    "a2.ts\n"
    "#EXTINF:2.0,\n"
    "a3.ts\n"
    "#EXTINF:2.0,\n"
    "a4.ts\n"
    "#EXT-X-DISCONTINUITY\n"
    "#EXTINF:10.0,\n"
    "c2.ts\n"
    "#EXT-X-ENDLIST\n"
)

_HOST_MANIFEST = (
    "#EXTM3U\n"
    "#EXTINF:10.0,\n"
    "c1.ts\n"
    "#EXT-X-DISCONTINUITY\n"
    "#EXTINF:5.0,\n"
    "https://adserver.com/x.ts\n"
    "#EXT-X-DISCONTINUITY\n"
    "#EXTINF:10.0,\n"
    "c2.ts\n"
)


class TestMarkers:
    def test_ad_start(self) -> None:
        assert is_ad_start("#EXT-X-CUE-OUT:30")
        assert is_ad_start("#EXT-X-CUE-OUT-CONT:10/30")
        assert is_ad_start("#EXT-OATCLS-SCTE35:/DAlAAA=")
        assert is_ad_start('#EXT-X-DATERANGE:ID="x",SCTE35-OUT=0xFC')
        assert not is_ad_start("#EXTINF:10.0,")

    def test_ad_end(self) -> None:
        assert is_ad_end("#EXT-X-CUE-IN")
        assert is_ad_end("#EXT-X-SCTE35-IN")
        assert not is_ad_end("#EXT-X-CUE-OUT")

    def test_plain_daterange_is_not_ad(self) -> None:
        line = '#EXT-X-DATERANGE:ID="chapter-2",START-DATE="2024-01-01T00:00:00Z"'
        assert not is_ad_daterange(line)
        assert not is_ad_start(line)

    def test_ad_url(self) -> None:
        assert is_ad_url("https://ADSERVER.com/seg.ts")
        assert not is_ad_url("#EXTINF:5, adserver.com")
        assert not is_ad_url("https://cdn.example/seg.ts")
        assert is_ad_url("https://ads.example/seg.ts", ["ads.example"])


class TestDaterangeDuration:
    def test_duration_attribute(self) -> None:
        assert daterange_duration('#EXT-X-DATERANGE:ID="a",DURATION=15.5') == 15.5

    def test_end_minus_start(self) -> None:
        line = (
            '#EXT-X-DATERANGE:ID="a",START-DATE="2024-01-01T00:00:00Z",'
            'END-DATE="2024-01-01T00:00:30Z"'
        )
        assert daterange_duration(line) == 30

    def test_missing(self) -> None:
        assert daterange_duration('#EXT-X-DATERANGE:ID="a"') is None


class TestSimpleMode:
    def test_drops_ad_hosts_and_discontinuities(self) -> None:
        result = filter_manifest(_HOST_MANIFEST, "simple")
        assert result == (
            "#EXTM3U\n"
            "#EXTINF:10.0,\n"
            "c1.ts\n"
            "#EXTINF:5.0,\n"
            "#EXTINF:10.0,\n"
            "c2.ts\n"
        )

    def test_custom_hosts(self) -> None:
        text = "#EXTM3U\n#EXTINF:5,\nhttps://ads.example/1.ts\n"
        assert "ads.example" not in filter_manifest(text, "simple", ad_hosts=["ads.example"])

    def test_idempotent(self) -> None:
        once = filter_manifest(_HOST_MANIFEST, "simple")
        assert filter_manifest(once, "simple") == once


class TestConservativeMode:
    def test_drops_markers_only(self) -> None:
        result = filter_manifest(_CUE_MANIFEST)
        assert result == (
            "#EXTM3U\n"
            "#EXT-X-TARGETDURATION:10\n"
            "#EXTINF:10.0,\n"
            "c1.ts\n"
            "#EXTINF:5.0,\n"
            "a1.ts\n"
            "#EXTINF:10.0,\n"
            "c2.ts\n"
        )

    def test_never_drops_segments(self) -> None:
        result = filter_manifest(_DATERANGE_MANIFEST, "smart")
        for seg in ("c1.ts", "a1.ts", "a2.ts", "a3.ts", "a4.ts", "c2.ts"):
            assert seg in result
        assert "#EXT-X-DATERANGE" not in result
        assert result.count("#EXT-X-DISCONTINUITY") == 2

    def test_idempotent(self) -> None:
        once = filter_manifest(_DATERANGE_MANIFEST)
        assert filter_manifest(once) == once

    def test_preserves_crlf(self) -> None:
        text = _CUE_MANIFEST.replace("\n", "\r\n")
        result = filter_manifest(text)
        assert "#EXT-X-CUE" not in result
        assert result.count("\r\n") == result.count("\n")
        assert result.endswith("c2.ts\r\n")

    def test_keeps_missing_trailing_newline(self) -> None:
        text = "#EXTM3U\n#EXT-X-CUE-IN\n#EXTINF:4,\nlast.ts"
        assert filter_manifest(text) == "#EXTM3U\n#EXTINF:4,\nlast.ts"


class TestAggressiveMode:
    def test_skips_declared_block_and_restores_discontinuity(self) -> None:
        result = filter_manifest(_DATERANGE_MANIFEST, "smart", aggressive=True)
        assert result == (
            "#EXTM3U\n"
            "#EXT-X-VERSION:3\n"
            "#EXT-X-TARGETDURATION:10\n"
            "#EXTINF:10.0,\n"
            "c1.ts\n"
            "#EXT-X-DISCONTINUITY\n"
            "#EXTINF:2.0,\n"
            "a3.ts\n"
            "#EXTINF:2.0,\n"
            "a4.ts\n"
            "#EXT-X-DISCONTINUITY\n"
            "#EXTINF:10.0,\n"
            "c2.ts\n"
            "#EXT-X-ENDLIST\n"
        )

    def test_long_segment_ends_block(self) -> None:
        text = "#EXTM3U\n#EXT-X-CUE-OUT:30\n#EXTINF:25.0,\nmovie.ts\n"
        assert filter_manifest(text, aggressive=True) == "#EXTM3U\n#EXTINF:25.0,\nmovie.ts\n"

    def test_min_block_without_declared_duration(self) -> None:
        text = (
            "#EXTM3U\n"
            "#EXT-X-CUE-OUT\n"
            "#EXTINF:2.0,\n"
            "a1.ts\n"
            "#EXTINF:2.0,\n"
            "a2.ts\n"
            "#EXT-X-CUE-IN\n"
            "#EXTINF:6.0,\n"
            "c1.ts\n"
        )
        result = filter_manifest(text, aggressive=True)
        assert "a1.ts" not in result
        assert "#EXTINF:2.0,\na2.ts\n" in result
        assert result.endswith("#EXTINF:6.0,\nc1.ts\n")

    def test_structural_tags_kept_inside_block(self) -> None:
        text = (
            "#EXTM3U\n"
            "#EXT-X-CUE-OUT\n"
            '#EXT-X-KEY:METHOD=AES-128,URI="k.bin"\n'
            "#EXTINF:1.0,\n"
            "a1.ts\n"
            "#EXT-X-CUE-IN\n"
        )
        result = filter_manifest(text, aggressive=True)
        assert '#EXT-X-KEY:METHOD=AES-128,URI="k.bin"\n' in result
        assert "a1.ts" not in result

    def test_drops_ad_host_segment_near_ad_context(self) -> None:
        result = filter_manifest(_HOST_MANIFEST, aggressive=True)
        assert "adserver.com" not in result
        assert "#EXTINF:5.0," not in result
        assert "c1.ts" in result and "c2.ts" in result

    def test_keeps_isolated_ad_host_segment(self) -> None:
        text = (
            "#EXTM3U\n"
            "#EXTINF:5.0,\n"
            "https://adserver.com/x.ts\n"
            "#EXTINF:10.0,\n"
            "c2.ts\n"
        )
        assert filter_manifest(text, aggressive=True) == text

    def test_flushed_discontinuity_uses_document_newline(self) -> None:
        text = _DATERANGE_MANIFEST.replace("\n", "\r\n")
        result = filter_manifest(text, aggressive=True)
        assert "\n" not in result.replace("\r\n", "")
        assert "a1.ts" not in result

    def test_ad_host_checked_when_block_limit_reached(self) -> None:
        text = (
            "#EXT-X-CUE-OUT\n"
            "#EXTINF:4,\n"
            "https://adserver.com/x.ts\n"
            "#EXT-X-DISCONTINUITY\n"
            "#EXTINF:4,\n"
            "c.ts"
        )
        result = filter_manifest(text, aggressive=True)
        assert result == "#EXT-X-DISCONTINUITY\n#EXTINF:4,\nc.ts"

    @pytest.mark.parametrize(
        "text",
        [
            _CUE_MANIFEST,
            _DATERANGE_MANIFEST,
            _HOST_MANIFEST,
            "#EXT-X-CUE-OUT\n#EXTINF:4,\nhttps://adserver.com/x.ts\n"
            "#EXT-X-DISCONTINUITY\n#EXTINF:4,\nc.ts",
        ],
        ids=["cue", "daterange", "host", "host-after-block-limit"],
    )
    def test_idempotent(self, text: str) -> None:
        once = filter_manifest(text, aggressive=True)
        assert filter_manifest(once, aggressive=True) == once


class TestCueOutWithoutDuration:
    """A 4s segment after a bare CUE-OUT reaches the 3s default block limit."""

    TEXT = "#EXT-X-CUE-OUT\n#EXTINF:4,\nad1.ts\n#EXT-X-CUE-IN\n#EXTINF:4,\nreal1.ts"
    EXPECTED = "#EXTINF:4,\nad1.ts\n#EXTINF:4,\nreal1.ts"

    def test_conservative_strips_markers_only(self) -> None:
        assert filter_manifest(self.TEXT) == self.EXPECTED

    def test_aggressive_keeps_segment_with_original_duration(self) -> None:
        assert filter_manifest(self.TEXT, aggressive=True) == self.EXPECTED

    def test_aggressive_drops_it_when_block_is_declared_longer(self) -> None:
        marker = '#EXT-X-DATERANGE:ID="ad",CLASS="com.apple.hls.interstitial",DURATION=8'
        text = self.TEXT.replace("#EXT-X-CUE-OUT", marker, 1)
        assert filter_manifest(text, aggressive=True) == "#EXTINF:4,\nreal1.ts"


class TestPassThrough:
    def test_empty(self) -> None:
        assert filter_manifest("") == ""

    def test_unknown_mode(self) -> None:
        assert filter_manifest(_CUE_MANIFEST, "bogus") == _CUE_MANIFEST  # type: ignore[arg-type]

    @pytest.mark.parametrize("mode", ["simple", "smart"])
    def test_non_hls_text_does_not_raise(self, mode: str) -> None:
        assert filter_manifest("<html>not a playlist</html>", mode) == "<html>not a playlist</html>"  # type: ignore[arg-type]
