"""
Command line entry point.

Subcommands:
- geocode: geocode an address file, results to stdout or --output
- load: load dataset CSV files into the lookup store
- update-check: compare catalog metadata with the loaded datasets
  (--download fetches and loads whatever is outdated)
"""

import argparse
import asyncio
import sys
from pathlib import Path
from typing import List, Optional

from abr_core.database import close_db_pool, get_db_pool
from abr_core.errors import GeocoderError
from abr_core.lookup_store import AsyncpgLookupStore

from .catalog import CkanCatalogClient
from .config import Settings
from .formatters import FORMATTERS
from .logging_utils import configure_logging, get_logger
from .runner import check_updates, geocode_file, load_datasets, update_datasets

logger = get_logger(__name__)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_UPDATES_AVAILABLE = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="abr-geocoder",
        description="Geocode Japanese addresses against the Address Base Registry",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  abr-geocoder load --dataset-dir ./datasets
  abr-geocoder geocode addresses.txt --format jsonl -o results.jsonl
  abr-geocoder update-check --download
""",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    geocode = subparsers.add_parser("geocode", help="Geocode an address file")
    geocode.add_argument("input", type=Path, help="Input file, one address per line")
    geocode.add_argument("--output", "-o", type=Path, help="Output file (default: stdout)")
    geocode.add_argument("--format", "-f", choices=sorted(FORMATTERS), help="Output format")
    geocode.add_argument("--encoding", help="Input encoding (default: auto-detect)")

    load = subparsers.add_parser("load", help="Load dataset files into the lookup store")
    load.add_argument("--dataset-dir", type=Path, help="Directory of mt_*.csv files")

    update = subparsers.add_parser("update-check", help="Check the catalog for newer datasets")
    update.add_argument("--download", action="store_true", help="Download and load outdated datasets")

    return parser


async def _geocode(args: argparse.Namespace, settings: Settings) -> int:
    pool = await get_db_pool(settings)
    store = AsyncpgLookupStore(pool, limit=settings.LOOKUP_CANDIDATE_LIMIT)

    if args.output:
        with open(args.output, "w", encoding="utf-8", newline="") as output:
            await geocode_file(settings, store, args.input, output, args.format, args.encoding)
    else:
        await geocode_file(settings, store, args.input, sys.stdout, args.format, args.encoding)
    return EXIT_OK


async def _load(args: argparse.Namespace, settings: Settings) -> int:
    pool = await get_db_pool(settings)
    counts = await load_datasets(settings, pool, args.dataset_dir)
    for level, count in counts.items():
        print(f"{level}\t{count}")
    return EXIT_OK if counts else EXIT_ERROR


async def _update_check(args: argparse.Namespace, settings: Settings) -> int:
    pool = await get_db_pool(settings)
    async with CkanCatalogClient(
        settings.CKAN_BASE_URL,
        timeout=settings.HTTP_TIMEOUT_SECONDS,
        max_retries=settings.HTTP_MAX_RETRIES,
    ) as client:
        if args.download:
            updated = await update_datasets(settings, pool, client)
            for resource in updated:
                print(f"updated\t{resource.name}")
            return EXIT_OK

        outdated = await check_updates(settings, pool, client)

    for resource in outdated:
        print(f"outdated\t{resource.name}\t{resource.last_modified}")
    return EXIT_UPDATES_AVAILABLE if outdated else EXIT_OK


COMMANDS = {
    "geocode": _geocode,
    "load": _load,
    "update-check": _update_check,
}


async def run(args: argparse.Namespace, settings: Settings) -> int:
    try:
        return await COMMANDS[args.command](args, settings)
    except GeocoderError as e:
        logger.error(f"{args.command} failed: {e}")
        return EXIT_ERROR
    finally:
        await close_db_pool()


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = Settings()
    configure_logging(settings.LOG_LEVEL, settings.LOG_FORMAT)
    return asyncio.run(run(args, settings))


__all__ = ["build_parser", "run", "main"]
