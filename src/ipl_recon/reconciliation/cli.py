#!/usr/bin/env python3
"""Command-line interface for bank statement reconciliation.

This CLI imports bank statement exports, runs auto-verification for a
period and prints aggregate statistics.

Usage:
    python -m ipl_recon.reconciliation.cli import statement.csv --year 2024 --month 3
    python -m ipl_recon.reconciliation.cli auto-verify --year 2024 --month 3
    python -m ipl_recon.reconciliation.cli stats
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Optional

from ..config import ReconSettings
from ..database import DatabaseManager, get_database_url
from .errors import PersistenceError, ReconciliationError, StatementValidationError
from .models import UploadOptions
from .parser import decode_statement
from .report import ReportGenerator, stats_to_text
from .service import ReconciliationService

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_INPUT_ERROR = 1
EXIT_FAILURE = 2


def _write_output(output: str, output_file: Optional[str]) -> None:
    if output_file:
        Path(output_file).write_text(output, encoding="utf-8")
        logger.info(f"Report written to {output_file}")
    else:
        print(output)


async def _run(args: argparse.Namespace) -> int:
    manager = DatabaseManager(args.database_url or get_database_url())
    await manager.initialize()
    service = ReconciliationService(manager.unit_of_work, ReconSettings.from_env())

    try:
        if args.command == "import":
            content = decode_statement(Path(args.file).read_bytes())
            options = UploadOptions(
                year=args.year,
                month=args.month,
                delete_existing=args.delete_existing,
                file_name=Path(args.file).name,
            )
            summary = await service.upload_statement(content, options)
            report = ReportGenerator(summary)
            output = report.to_json() if args.format == "json" else report.to_summary_text()
            _write_output(output, args.output)

        elif args.command == "auto-verify":
            summary = await service.auto_verify_period(args.year, args.month)
            _write_output(json.dumps(summary.model_dump(), indent=2), None)

        elif args.command == "stats":
            _write_output(stats_to_text(await service.get_stats()), None)

        return EXIT_OK

    except StatementValidationError as exc:
        logger.error(str(exc))
        for error in exc.errors:
            logger.error(f"  {error}")
        return EXIT_INPUT_ERROR
    except PersistenceError as exc:
        logger.error(f"Database failure: {exc}")
        return EXIT_FAILURE
    except ReconciliationError as exc:
        logger.error(f"Reconciliation failed: {exc}")
        return EXIT_FAILURE
    finally:
        await manager.shutdown()


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI.

    Returns:
        Configured ArgumentParser.
    """
    parser = argparse.ArgumentParser(
        prog="ipl-recon",
        description="Bank statement reconciliation for residential IPL dues.",
    )
    parser.add_argument(
        "--database-url",
        help="Database URL (default: DATABASE_URL or local SQLite)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    import_parser = subparsers.add_parser("import", help="Import a bank statement CSV")
    import_parser.add_argument("file", help="Path to the statement export")
    import_parser.add_argument("--year", "-y", type=int, help="Year for dates without one")
    import_parser.add_argument("--month", "-m", type=int, help="Force every transaction into this month")
    import_parser.add_argument(
        "--delete-existing",
        action="store_true",
        help="Delete unverified mutations of the period before importing (needs --year and --month)",
    )
    import_parser.add_argument(
        "--format", "-f",
        choices=["text", "json"],
        default="text",
        help="Output format (default: text)",
    )
    import_parser.add_argument("--output", "-o", help="Output file path (default: stdout)")

    verify_parser = subparsers.add_parser("auto-verify", help="Auto-verify the open mutations of a month")
    verify_parser.add_argument("--year", "-y", type=int, required=True)
    verify_parser.add_argument("--month", "-m", type=int, required=True)

    subparsers.add_parser("stats", help="Print aggregate mutation statistics")

    return parser


def _validate_args(args: argparse.Namespace) -> Optional[str]:
    month = getattr(args, "month", None)
    if month is not None and not 1 <= month <= 12:
        return f"Invalid month: {month}"
    year = getattr(args, "year", None)
    if year is not None and not 1900 <= year <= 9999:
        return f"Invalid year: {year}"
    if args.command == "import":
        if not Path(args.file).is_file():
            return f"File not found: {args.file}"
        if args.delete_existing and not (args.year and args.month):
            return "--delete-existing requires --year and --month"
    return None


def main(args: Optional[list] = None) -> int:
    """Main entry point for the CLI.

    Args:
        args: Optional list of command-line arguments (for testing).

    Returns:
        Exit code: 0 on success, 1 on input errors, 2 on failure.
    """
    parser = create_parser()
    parsed_args = parser.parse_args(args)

    if not parsed_args.command:
        parser.print_help()
        return EXIT_INPUT_ERROR

    problem = _validate_args(parsed_args)
    if problem:
        logger.error(problem)
        return EXIT_INPUT_ERROR

    return asyncio.run(_run(parsed_args))


if __name__ == "__main__":
    sys.exit(main())
