"""
Legato storage - command line entry point

Inspect the persisted state of the player.

Run with: python -m legato [-v] [--cache-dir DIR] [--config FILE] COMMAND
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any

from legato import __version__
from legato.config import StorageConfig, get_storage_config, load_storage_config
from legato.core.backend import FileBackend
from legato.core.codecs import StorageFormat
from legato.core.m3u import parse_m3u
from legato.library.scanner import rescan_library
from legato.storage import Storage


def setup_logging(verbose: bool = False) -> None:
    """Configure logging for the application."""
    level = logging.DEBUG if verbose else logging.INFO

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stderr,
    )

    # Reduce noise from third-party libraries
    logging.getLogger("asyncio").setLevel(logging.WARNING)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="legato",
        description="Legato - inspect the persisted state of the music player",
    )

    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose (debug) logging",
    )

    parser.add_argument(
        "--cache-dir",
        type=Path,
        default=None,
        help="Application storage directory (default: <cache root>/Legato)",
    )

    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to a storage.toml file",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("tables", help="List stored tables")

    show = commands.add_parser("show", help="Print a stored table as JSON")
    show.add_argument("table", help="Table name, e.g. settings")
    show.add_argument(
        "--format",
        choices=[f.value for f in StorageFormat],
        default=None,
        help="Storage format (default: the first format the table exists in)",
    )

    playlist = commands.add_parser("playlist", help="Parse an M3U file and print it as JSON")
    playlist.add_argument("path", type=Path)

    snapshot = commands.add_parser("snapshot", help="Print a sanitized snapshot")
    snapshot.add_argument("kind", choices=["library", "queue"])

    scan = commands.add_parser("scan", help="Scan music folders into the library snapshot")
    scan.add_argument("roots", nargs="+", type=Path)

    return parser.parse_args(argv)


def _print_json(value: Any) -> None:
    print(json.dumps(value, indent=2, ensure_ascii=False, default=str))


async def list_tables(directory: Path) -> int:
    found = False
    for fmt in StorageFormat:
        backend = FileBackend(directory, fmt)
        for name in await backend.list_tables():
            found = True
            print(f"{name}\t{fmt.value}\t{backend.path_for(name)}")
    if not found:
        logging.getLogger(__name__).info("No tables in %s", directory)
    return 0


async def show_table(directory: Path, table: str, fmt: str | None) -> int:
    formats = [StorageFormat(fmt)] if fmt else list(StorageFormat)
    for candidate in formats:
        backend = FileBackend(directory, candidate)
        if not await backend.exists(table):
            continue
        value = await backend.load(table)
        if candidate is StorageFormat.M3U:
            value = parse_m3u(value).to_dict()
        _print_json(value)
        return 0

    logging.getLogger(__name__).error("Table %s not found in %s", table, directory)
    return 1


async def show_playlist(path: Path) -> int:
    content = await asyncio.to_thread(path.read_text, encoding="utf-8", errors="replace")
    _print_json(parse_m3u(content).to_dict())
    return 0


async def show_snapshot(storage: Storage, kind: str) -> int:
    cache = storage.library if kind == "library" else storage.queue
    snapshot = await cache.load()
    _print_json(snapshot.to_dict())
    return 0


async def scan_roots(storage: Storage, roots: list[Path]) -> int:
    result = await rescan_library(storage.library, roots)
    for issue in result.issues:
        print(f"{issue.path}: {issue.message}", file=sys.stderr)
    print(f"{len(result.tracks)} tracks ({result.reused} unchanged), {len(result.issues)} issues")
    return 0


async def run(args: argparse.Namespace, config: StorageConfig) -> int:
    """Run one command."""
    directory = args.cache_dir if args.cache_dir is not None else config.storage_dir

    if args.command == "tables":
        return await list_tables(directory)
    if args.command == "show":
        return await show_table(directory, args.table, args.format)
    if args.command == "playlist":
        return await show_playlist(args.path)

    async with Storage(config, directory=directory) as storage:
        if args.command == "snapshot":
            return await show_snapshot(storage, args.kind)
        return await scan_roots(storage, args.roots)


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the application."""
    args = parse_args(argv)
    setup_logging(verbose=args.verbose)

    logger = logging.getLogger(__name__)

    try:
        config = load_storage_config(args.config) if args.config else get_storage_config()
        return asyncio.run(run(args, config))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130
    except Exception as e:
        logger.exception("Fatal error: %s", e)
        return 1


if __name__ == "__main__":
    sys.exit(main())
