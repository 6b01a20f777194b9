"""Command-line replay of player notifications through the full pipeline.

Reads a JSON-lines script of player notifications, drives them through the
monitor against an in-memory catalog, and prints every presentation event as a
JSON line followed by the error analytics summary.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import replace
from pathlib import Path
from typing import Any, TextIO

from . import __version__
from .errors import ClassifiedError
from .events import event_payload
from .logging_utils import setup_logging
from .monitor import PlaybackMonitor
from .paths import analytics_export_path, log_dir, settings_path
from .runtime_config import RuntimeConfig, resolve_log_level
from .services.catalog import CatalogSong, InMemoryCatalog
from .services.track_source import ScriptedTrackSource, load_script
from .settings_store import load_settings_with_notice
from .version import build_help_epilog

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_BAD_INPUT = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="startune",
        description="Replay player notifications through StarTune's track pipeline.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=build_help_epilog(),
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}"
    )
    parser.add_argument("--verbose", action="store_true", help="Enable verbose output")
    parser.add_argument(
        "--quiet", action="store_true", help="Only show warnings and errors"
    )
    parser.add_argument("--log-file", help="Write logs to a file path")
    parser.add_argument("--settings", help="Settings JSON path (default: per-user)")
    parser.add_argument(
        "--debounce-ms",
        type=int,
        help="Quiet period before resolving a track (clamped to 0-5000 ms).",
    )
    parser.add_argument(
        "--catalog",
        help="JSON list of songs ({id, title, artist_name, album_title}).",
    )
    parser.add_argument(
        "--favorite-current",
        action="store_true",
        help="Toggle the favorite state of the song playing at the end of replay.",
    )
    parser.add_argument(
        "--export-analytics",
        action="store_true",
        help="Also write the error analytics summary to the per-user data directory.",
    )
    parser.add_argument(
        "script",
        help="JSON-lines player notifications, or '-' for stdin.",
    )
    return parser


def main() -> int:
    parser = build_parser()
    args = parser.parse_args()
    try:
        settings_file = Path(args.settings) if args.settings else settings_path()
        settings, notice = load_settings_with_notice(settings_file)
        level = resolve_log_level(
            verbose=args.verbose, quiet=args.quiet, default=settings.log_level
        )
        setup_logging(
            log_dir=log_dir(),
            level=level,
            log_file=Path(args.log_file) if args.log_file else None,
        )
        logger.info("Starting startune replay")
        if notice:
            print(notice, file=sys.stderr)
        if args.debounce_ms is not None:
            settings = replace(settings, debounce_ms=args.debounce_ms)
        config = settings.runtime_config()
        try:
            catalog = InMemoryCatalog(_load_catalog(Path(args.catalog)) if args.catalog else [])
            source = _load_source(args.script)
        except (OSError, ValueError) as exc:
            logger.warning("Rejected replay input: %s", exc)
            print(f"Invalid input: {exc}", file=sys.stderr)
            return EXIT_BAD_INPUT
        return asyncio.run(
            replay(
                source,
                catalog,
                config,
                favorite_current=args.favorite_current,
                export_path=analytics_export_path() if args.export_analytics else None,
                out=sys.stdout,
            )
        )
    except Exception as exc:  # pragma: no cover - top-level safety net
        logger.exception("Unhandled error: %s", exc)
        print("Unexpected error. Re-run with --verbose for details.", file=sys.stderr)
        return EXIT_FAILURE


async def replay(
    source: ScriptedTrackSource,
    catalog: InMemoryCatalog,
    config: RuntimeConfig,
    *,
    favorite_current: bool = False,
    export_path: Path | None = None,
    out: TextIO,
) -> int:
    """Run `source` to completion and write events plus analytics to `out`."""
    monitor = PlaybackMonitor(catalog=catalog, favorites_api=catalog, config=config)
    monitor.start(source)
    try:
        await monitor.wait_idle()
        if favorite_current:
            try:
                await monitor.favorite_current()
            except ClassifiedError as exc:
                logger.warning("Favorite request failed: %s", exc.error_type)
    finally:
        await monitor.shutdown()
    for event in monitor.channel.drain():
        print(json.dumps(event_payload(event), sort_keys=True), file=out)
    summary = monitor.analytics.export_json()
    print(summary, file=out)
    if export_path is not None:
        export_path.write_text(summary + "\n", encoding="utf-8")
        logger.info("Wrote analytics summary to %s", export_path)
    return EXIT_OK


def _load_source(script: str) -> ScriptedTrackSource:
    if script == "-":
        return load_script(sys.stdin.readlines())
    with Path(script).open(encoding="utf-8") as handle:
        return load_script(handle.readlines())


def _load_catalog(path: Path) -> list[CatalogSong]:
    data: Any = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(data, list):
        raise ValueError("catalog must be a JSON list")
    songs: list[CatalogSong] = []
    for index, entry in enumerate(data):
        if not isinstance(entry, dict):
            raise ValueError(f"catalog entry {index} is not an object")
        try:
            songs.append(
                CatalogSong(
                    id=str(entry["id"]),
                    title=str(entry["title"]),
                    artist_name=str(entry["artist_name"]),
                    album_title=entry.get("album_title")
                    if isinstance(entry.get("album_title"), str)
                    else None,
                )
            )
        except KeyError as exc:
            raise ValueError(f"catalog entry {index} is missing {exc}") from exc
    return songs


if __name__ == "__main__":
    raise SystemExit(main())
