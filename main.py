"""
CLI entry point for the Brand Visibility Rollup Engine.

Usage:
    python main.py report --brand-id <id>                  Build a report from the warehouse, print JSON
    python main.py report-csv --input-dir <dir> --brand-id <id>
                                                           Build a report from CSV exports
    python main.py report-csv ... --export-dir <dir>       Also write each payload table as CSV

Common options: --start / --end (ISO dates), --collector (repeatable),
--competitor.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys

from config.settings import get_settings

logging.basicConfig(
    level=getattr(logging, get_settings().log_level.upper(), logging.INFO),
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("brand_visibility")


def _scope(args: argparse.Namespace):
    from rollup.engine import parse_scope_dates
    from rollup.models import ReportScope

    dates = parse_scope_dates(args.start, args.end)
    return ReportScope(
        brand_id=args.brand_id,
        start=dates["start"],
        end=dates["end"],
        collector_filter=tuple(args.collector or ()),
        competitor_filter=args.competitor,
    )


def _print(payload, indent: int) -> None:
    print(json.dumps(payload.as_dict(), indent=indent, ensure_ascii=False))


def cmd_report(args: argparse.Namespace) -> None:
    from data_pipeline.database import close_pool
    from rollup.engine import generate_report

    try:
        payload = generate_report(_scope(args))
    finally:
        close_pool()
    logger.info("Report built for %s (has_data=%s)", payload.brand_name, payload.has_data)
    _print(payload, args.indent)


def cmd_report_csv(args: argparse.Namespace) -> None:
    from datetime import datetime, timezone

    from rollup.engine import build_report
    from rollup.frames import export_tables, read_report_inputs

    inputs = read_report_inputs(args.input_dir, args.brand_id, brand_name=args.brand_name)
    payload = build_report(inputs, _scope(args), datetime.now(timezone.utc))
    if args.export_dir:
        for path in export_tables(payload, args.export_dir):
            logger.info("Wrote %s", path)
    _print(payload, args.indent)


def _add_scope_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--brand-id", type=str, required=True)
    parser.add_argument("--start", type=str, default=None, help="ISO start date (default: lookback window)")
    parser.add_argument("--end", type=str, default=None, help="ISO end date (default: now)")
    parser.add_argument("--collector", action="append", default=None, help="Restrict to a collector type")
    parser.add_argument("--competitor", type=str, default=None, help="Restrict to one competitor")
    parser.add_argument("--indent", type=int, default=2)


def main() -> None:
    from rollup.errors import FetchFailedError, InvalidScopeError

    parser = argparse.ArgumentParser(
        description="Brand Visibility Rollup Engine",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    # report
    p_rep = sub.add_parser("report", help="Build a report from the warehouse")
    _add_scope_args(p_rep)

    # report-csv
    p_csv = sub.add_parser("report-csv", help="Build a report from CSV exports")
    _add_scope_args(p_csv)
    p_csv.add_argument("--input-dir", type=str, required=True, help="Directory holding measurements.csv etc.")
    p_csv.add_argument("--brand-name", type=str, default=None)
    p_csv.add_argument("--export-dir", type=str, default=None, help="Write payload tables as CSV here")

    args = parser.parse_args()

    commands = {
        "report": cmd_report,
        "report-csv": cmd_report_csv,
    }

    try:
        commands[args.command](args)
    except InvalidScopeError as exc:
        logger.error("Invalid scope: %s", exc.reason)
        sys.exit(2)
    except FetchFailedError as exc:
        logger.error("Could not fetch %s: %s", exc.collection, exc.cause)
        sys.exit(1)


if __name__ == "__main__":
    main()
