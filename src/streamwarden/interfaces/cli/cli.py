from __future__ import annotations

import argparse
import asyncio
import json
import sys
from collections.abc import Iterable, Sequence
from pathlib import Path
from typing import Any, TextIO

import structlog

from streamwarden.domain.entities import Candidate, TitleQuery
from streamwarden.infrastructure.config import AppConfig, load_config
from streamwarden.infrastructure.logging.setup import configure_logging
from streamwarden.infrastructure.playlist.ad_filter import filter_manifest
from streamwarden.infrastructure.playlist.manifest import fetch_filtered_manifest
from streamwarden.infrastructure.valuation.blending import format_speed
from streamwarden.infrastructure.valuation.selection import order_for_playback
from streamwarden.interfaces.composition import AppServices, open_services

log = structlog.get_logger(__name__)


def _add_config_flags(parser: argparse.ArgumentParser) -> None:
    # Config wiring flags (no business logic)
    parser.add_argument(
        "--config",
        default=None,
        help="Path to YAML config file.",
    )
    parser.add_argument(
        "--dotenv",
        default=None,
        help="Path to .env file.",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Override log level (default ERROR for CLI runs).",
    )
    parser.add_argument(
        "--log-format",
        default=None,
        choices=["json", "console"],
        help="Override log format.",
    )
    parser.add_argument(
        "--cache-dir",
        default=None,
        help="Override diskcache directory.",
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="streamwarden")
    _add_config_flags(parser)
    sub = parser.add_subparsers(dest="command", required=True)

    p_filter = sub.add_parser("filter", help="Strip ads from an HLS manifest.")
    p_filter.add_argument(
        "source",
        nargs="?",
        default="-",
        help="Manifest file, http(s) URL, or '-' for stdin.",
    )
    p_filter.add_argument("--mode", choices=["simple", "smart"], default=None)
    p_filter.add_argument(
        "--aggressive",
        action="store_true",
        default=None,
        help="Smart mode: also skip segments inside marked ad blocks.",
    )

    p_probe = sub.add_parser("probe", help="Measure quality, speed and ping of streams.")
    p_probe.add_argument("urls", nargs="+")

    p_rank = sub.add_parser("rank", help="Probe and rank candidates from a JSON file.")
    p_rank.add_argument("candidates", help="JSON file: list of candidate objects.")
    p_rank.add_argument("--title", default="")
    p_rank.add_argument("--year", default="")
    p_rank.add_argument("--episode", type=int, default=0)
    p_rank.add_argument("--current-provider", default=None)
    p_rank.add_argument(
        "--no-probe",
        action="store_true",
        help="Rank using stored valuations only.",
    )

    sub.add_parser("valuations", help="List stored provider valuations.")
    return parser


def _parse_args(argv: Iterable[str] | None) -> argparse.Namespace:
    return _build_parser().parse_args(list(argv) if argv is not None else None)


def _load(args: argparse.Namespace) -> AppConfig:
    cli_overrides: dict[str, Any] = {"log_level": args.log_level or "ERROR"}
    if args.log_format:
        cli_overrides["log_format"] = args.log_format
    if args.cache_dir:
        cli_overrides["cache_dir"] = args.cache_dir
    if getattr(args, "mode", None):
        cli_overrides["ad_filter_mode"] = args.mode
    if getattr(args, "aggressive", None):
        cli_overrides["ad_filter_aggressive"] = True

    return load_config(
        config_path=Path(args.config) if args.config else None,
        dotenv_path=Path(args.dotenv) if args.dotenv else None,
        cli_overrides=cli_overrides,
    )


def _read_candidates(path: Path) -> list[Candidate]:
    payload = json.loads(path.read_text(encoding="utf-8"))
    if isinstance(payload, dict):
        payload = [payload]
    if not isinstance(payload, list):
        raise ValueError(f"Expected a JSON list of candidates, got: {type(payload)!r}")
    return [Candidate.from_dict(item) for item in payload if isinstance(item, dict)]


async def _cmd_filter(config: AppConfig, args: argparse.Namespace, out: TextIO) -> int:
    source: str = args.source
    if source.startswith(("http://", "https://")):
        async with open_services(config) as services:
            text = await fetch_filtered_manifest(
                services.http_client,
                source,
                config.ad_filter,
                timeout=config.http_timeout_seconds,
            )
        out.write(text)
        return 0

    raw = sys.stdin.read() if source == "-" else Path(source).read_text(encoding="utf-8")
    ad = config.ad_filter
    if ad.enabled:
        raw = filter_manifest(
            raw,
            ad.mode,
            aggressive=ad.aggressive,
            ad_hosts=ad.ad_hosts,
            min_block_seconds=ad.min_block_seconds,
            max_skip_seconds=ad.max_skip_seconds,
            max_ad_seconds=ad.max_ad_seconds,
        )
    out.write(raw)
    return 0


async def _cmd_probe(services: AppServices, urls: Sequence[str], out: TextIO) -> int:
    probe = services.build_probe()
    results = await asyncio.gather(*(probe.measure(url) for url in urls))
    for url, m in zip(urls, results):
        row = {
            "url": url,
            "failed": m.failed,
            "quality_rank": m.quality_rank,
            "speed": format_speed(m.speed_kbps),
            "ping_ms": round(m.ping_ms),
        }
        out.write(json.dumps(row, ensure_ascii=False) + "\n")
    return 0 if any(not m.failed for m in results) else 1


async def _cmd_rank(services: AppServices, args: argparse.Namespace, out: TextIO) -> int:
    candidates = _read_candidates(Path(args.candidates))
    query = TitleQuery(title=args.title, year=args.year, episode_index=args.episode)
    engine = services.build_engine()
    await engine.load(c.valuation_key for c in candidates)
    if not args.no_probe:
        await engine.probe(candidates)

    checks = order_for_playback(engine.rank(candidates), query)
    groups = engine.group(candidates, current_provider_id=args.current_provider)
    valuations = engine.valuations

    report = {
        "ranking": [
            {
                "provider_id": chk.candidate.provider_id,
                "candidate_id": chk.candidate.candidate_id,
                "title": chk.candidate.title,
                "episodes": chk.candidate.episode_count,
                "quality": (
                    valuations[chk.candidate.valuation_key].quality
                    if chk.candidate.valuation_key in valuations
                    else "unknown"
                ),
                "penalties": list(chk.reasons),
            }
            for chk in checks
        ],
        "groups": [
            {
                "provider_id": g.provider_id,
                "score": round(g.score, 2),
                "has_current": g.has_current,
                "max_episodes": g.max_episodes,
                "candidates": [c.candidate_id for c in g.candidates],
            }
            for g in groups
        ],
    }
    out.write(json.dumps(report, ensure_ascii=False, indent=2) + "\n")
    return 0


async def _cmd_valuations(services: AppServices, out: TextIO) -> int:
    for v in await services.valuation_store.list_all():
        row = {
            "key": v.key,
            "quality": v.quality,
            "speed": format_speed(v.speed_kbps),
            "ping_ms": v.ping_ms,
            "sample_count": v.sample_count,
            "priority_score": v.priority_score,
            "updated_at": v.updated_at.isoformat(),
        }
        out.write(json.dumps(row, ensure_ascii=False) + "\n")
    return 0


async def run(config: AppConfig, args: argparse.Namespace, out: TextIO) -> int:
    if args.command == "filter":
        return await _cmd_filter(config, args, out)
    async with open_services(config) as services:
        if args.command == "probe":
            return await _cmd_probe(services, args.urls, out)
        if args.command == "rank":
            return await _cmd_rank(services, args, out)
        return await _cmd_valuations(services, out)


def start(argv: Iterable[str] | None = None) -> int:
    """Process entrypoint. Loads config exactly once, then dispatches."""
    if argv is None:
        argv = sys.argv[1:]

    args = _parse_args(argv)
    config = _load(args)
    configure_logging(config)
    log.debug("cli_command", command=args.command)

    return asyncio.run(run(config, args, sys.stdout))


if __name__ == "__main__":
    raise SystemExit(start())
