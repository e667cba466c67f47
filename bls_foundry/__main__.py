"""CLI entry point for ingesting statistical archives.

Usage:
    python -m bls_foundry list
    python -m bls_foundry ingest cpi --identity analyst@example.com --output ./out/cpi
    python -m bls_foundry ingest eci --archive-root ./mirror --output ./out/eci
    python -m bls_foundry nipa --frequency Q --output ./out/nipa
    python -m bls_foundry fred UNRATE PAYEMS --output ./out/fred --lagged

Global flags (``--verbose``, ``--json-logs``, ``--log-file``, ``--env-file``)
go before the subcommand.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import List, Optional

from bls_foundry.lib.catalog import DEFAULT_CATALOG, Catalog
from bls_foundry.lib.config_loader import Settings, load_catalog
from bls_foundry.lib.env import load_env_file
from bls_foundry.lib.errors import FoundryError
from bls_foundry.lib.fred import get_fred
from bls_foundry.lib.io import SUPPORTED_FORMATS, write_frame, write_result
from bls_foundry.lib.merge import ingest
from bls_foundry.lib.nipa import BEA_LOCATION, ingest_nipa
from bls_foundry.lib.observability import setup_logging
from bls_foundry.lib.pce import pce_inflation
from bls_foundry.lib.transport import LocalTransport, Transport

logger = logging.getLogger("bls_foundry")


def _is_remote(location: str) -> bool:
    return location.lower().startswith(("http://", "https://"))


def _local_transport(location: str) -> Optional[Transport]:
    """A ``LocalTransport`` for mirrors on disk, ``None`` for URLs."""
    return None if _is_remote(location) else LocalTransport()


def _load_catalog(path: Optional[str]) -> Catalog:
    return load_catalog(path) if path else DEFAULT_CATALOG


def list_command(args: argparse.Namespace, settings: Settings) -> int:
    """Print the catalog."""
    catalog = _load_catalog(args.catalog)
    width = max(max(len(spec.source_id) for spec in catalog), 10)

    print(f"  {'Source':<{width}}  {'Folder':<8}  {'Frequency':<10}  Description")
    print(f"  {'-' * width}  {'-' * 8}  {'-' * 10}  {'-' * 40}")
    for spec in catalog:
        print(
            f"  {spec.source_id:<{width}}  {spec.folder:<8}  "
            f"{spec.frequency.value:<10}  {spec.description[:60]}"
        )
    return 0


def ingest_command(args: argparse.Namespace, settings: Settings) -> int:
    archive_root = args.archive_root or settings.archive_root
    transport = _local_transport(archive_root)

    identity = args.identity or settings.identity_token
    if transport is None and not identity:
        raise FoundryError(
            "An identity token is required for remote archives",
            suggestion="Pass --identity or set BLS_FOUNDRY_IDENTITY",
        )

    result = ingest(
        args.source,
        identity or "",
        transport=transport,
        archive_root=archive_root,
        catalog=_load_catalog(args.catalog),
        max_workers=args.workers or settings.max_workers,
        timeout=settings.timeout,
    )
    write_result(result, args.output, format=args.format)

    diagnostics = result.diagnostics
    print(f"Ingested {result.source.source_id}: {result.row_count} rows")
    print(f"  Output:                {args.output}")
    print(f"  Skipped tables:        {diagnostics.skipped_count}")
    for name in diagnostics.skipped_table_names:
        print(f"    - {name}")
    print(f"  Unparseable values:    {diagnostics.value_parse_failures}")
    print(f"  Unparseable dates:     {diagnostics.date_parse_failures}")
    if args.verbose:
        print(json.dumps(diagnostics.to_dict(), indent=2, default=str))
    return 0


def nipa_command(args: argparse.Namespace, settings: Settings) -> int:
    frame = ingest_nipa(
        args.frequency,
        location=args.location,
        transport=_local_transport(args.location),
        identity_token=settings.identity_token,
        timeout=settings.timeout,
    )
    if args.pce:
        frame = pce_inflation(frame)
    write_frame(frame, args.output, format=args.format, source_id="nipa")
    print(f"Wrote {len(frame)} NIPA rows to {args.output}")
    return 0


def fred_command(args: argparse.Namespace, settings: Settings) -> int:
    names = args.names.split(",") if args.names else None
    frame = get_fred(
        *args.series,
        names=names,
        keep_all=not args.inner,
        lagged=args.lagged,
        identity_token=settings.identity_token,
        timeout=settings.timeout,
    )
    write_frame(frame, args.output, format=args.format, source_id="fred")
    print(f"Wrote {len(frame)} FRED rows to {args.output}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="bls-foundry",
        description="Ingest and merge statistical flat-file archives",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # List supported sources
    bls-foundry list

    # Ingest CPI current data
    bls-foundry ingest cpi --identity analyst@example.com --output ./out/cpi

    # Ingest from a local mirror with four concurrent lookup fetches
    bls-foundry ingest jolts --archive-root ./mirror --workers 4 --output ./out/jt

    # Monthly NIPA data with PCE growth measures
    bls-foundry nipa --frequency M --pce --output ./out/pce
        """,
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Output logs in JSON format (for log aggregation systems)",
    )
    parser.add_argument(
        "--log-file",
        help="Write logs to a file in addition to console",
    )
    parser.add_argument(
        "--env-file",
        help="Load environment variables from this .env file",
    )

    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")
    subparsers.required = True

    list_parser = subparsers.add_parser("list", help="List supported sources")
    list_parser.add_argument("--catalog", help="YAML file with extra sources")
    list_parser.set_defaults(handler=list_command)

    ingest_parser = subparsers.add_parser(
        "ingest", help="Fetch, merge and write one archive"
    )
    ingest_parser.add_argument("source", help="Source id (see 'list')")
    ingest_parser.add_argument(
        "--identity",
        help="User-Agent identity, e.g. an e-mail address (env: BLS_FOUNDRY_IDENTITY)",
    )
    ingest_parser.add_argument("--output", required=True, help="Output directory")
    ingest_parser.add_argument(
        "--format", choices=SUPPORTED_FORMATS, default="parquet"
    )
    ingest_parser.add_argument("--catalog", help="YAML file with extra sources")
    ingest_parser.add_argument(
        "--archive-root",
        help="Archive root URL or local mirror directory "
        "(env: BLS_FOUNDRY_ARCHIVE_ROOT)",
    )
    ingest_parser.add_argument(
        "--workers",
        type=int,
        help="Concurrent lookup-table fetches (env: BLS_FOUNDRY_MAX_WORKERS)",
    )
    ingest_parser.set_defaults(handler=ingest_command)

    nipa_parser = subparsers.add_parser("nipa", help="Fetch BEA NIPA data")
    nipa_parser.add_argument(
        "--frequency", choices=("Q", "M", "A"), default="Q", type=str.upper
    )
    nipa_parser.add_argument("--location", default=BEA_LOCATION)
    nipa_parser.add_argument(
        "--pce",
        action="store_true",
        help="Compute PCE price growth measures from the NIPA data",
    )
    nipa_parser.add_argument("--output", required=True, help="Output directory")
    nipa_parser.add_argument("--format", choices=SUPPORTED_FORMATS, default="parquet")
    nipa_parser.set_defaults(handler=nipa_command)

    fred_parser = subparsers.add_parser("fred", help="Fetch and join FRED series")
    fred_parser.add_argument("series", nargs="+", help="FRED series ids")
    fred_parser.add_argument("--names", help="Comma-separated column names")
    fred_parser.add_argument(
        "--inner", action="store_true", help="Keep only dates present in all series"
    )
    fred_parser.add_argument(
        "--lagged",
        action="store_true",
        help="Convert every series to its one-period change",
    )
    fred_parser.add_argument("--output", required=True, help="Output directory")
    fred_parser.add_argument("--format", choices=SUPPORTED_FORMATS, default="parquet")
    fred_parser.set_defaults(handler=fred_command)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_logging(
        verbose=args.verbose,
        json_format=args.json_logs,
        log_file=args.log_file,
    )
    if args.env_file:
        load_env_file(args.env_file)

    try:
        settings = Settings.from_env()
        return args.handler(args, settings)

    except KeyboardInterrupt:
        print("\nInterrupted by user")
        return 130

    except FoundryError as e:
        logger.error("%s failed: %s", args.command, e.message)
        print(f"\nError: {e}", file=sys.stderr)
        return 1

    except ValueError as e:
        logger.error("%s failed: %s", args.command, e)
        print(f"\nError: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
