#!/usr/bin/env python3
"""CLI for the CTFS Mastercard statement parser."""

from __future__ import annotations

import argparse
import sys
from datetime import date
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from ctfs_statement_parser import CtfsStatementParser, StatementError
from logging_setup import configure_logging
from statement_config import RunnerOptions, load_config
from statement_output import render_csv, render_json, write_csv, write_json
from statement_runner import StatementRunner
from transaction_filter import ParserOptions


def _iso_date(raw: str) -> date:
    try:
        return date.fromisoformat(raw)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid date {raw!r}, expected YYYY-MM-DD")


def _decimal(raw: str) -> Decimal:
    try:
        return Decimal(raw)
    except InvalidOperation:
        raise argparse.ArgumentTypeError(f"invalid decimal {raw!r}")


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Parse CTFS Mastercard statements (PDF or extracted text) and reconcile purchases."
    )
    parser.add_argument("paths", nargs="*", type=Path, help="Statement files or folders")
    parser.add_argument("--config", type=Path, help="JSON config file")
    parser.add_argument("-o", "--output", type=Path, help="Output file path (default: stdout)")
    parser.add_argument("--format", choices=("json", "csv"), help="Output format")
    parser.add_argument("--pretty", action="store_true", help="Pretty-print JSON")
    parser.add_argument("--tolerance", type=_decimal, help="Allowed declared/computed difference")
    parser.add_argument(
        "--exclude",
        action="append",
        default=[],
        metavar="PATTERN",
        help="Description regex excluded from the purchases total (repeatable)",
    )
    parser.add_argument("--start-date", type=_iso_date, help="Only statements dated on/after (YYYY-MM-DD)")
    parser.add_argument("--end-date", type=_iso_date, help="Only statements dated before (YYYY-MM-DD)")
    parser.add_argument("--write-text", action="store_true", help="Write extracted PDF text beside each PDF")
    parser.add_argument(
        "--fail-on-mismatch",
        action="store_true",
        help="Exit with status 2 when any statement does not reconcile",
    )
    parser.add_argument("--log-level", help="Logging level (default: INFO)")
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    args = build_arg_parser().parse_args(argv)
    configure_logging(args.log_level)

    try:
        cfg = load_config(args.config)

        parser_updates = {}
        if args.tolerance is not None:
            parser_updates["difference_tolerance"] = args.tolerance
        if args.exclude:
            parser_updates["exclusion_patterns"] = [*cfg.parser.exclusion_patterns, *args.exclude]
        parser_options = ParserOptions.model_validate({**cfg.parser.model_dump(), **parser_updates})

        runner_updates = {"write_extracted_text": args.write_text or cfg.runner.write_extracted_text}
        if args.paths:
            runner_updates["input_paths"] = args.paths
        if args.start_date is not None:
            runner_updates["start_date"] = args.start_date
        if args.end_date is not None:
            runner_updates["end_date"] = args.end_date
        if args.format is not None:
            runner_updates["output_format"] = args.format
        if args.output is not None:
            runner_updates["output_path"] = args.output
        runner_options = RunnerOptions.model_validate({**cfg.runner.model_dump(), **runner_updates})

        if not runner_options.input_paths:
            print("ERROR: no statement files or folders given", file=sys.stderr)
            return 1
        missing = [p for p in runner_options.input_paths if not p.exists()]
        if missing:
            print(f"ERROR: path does not exist: {missing[0]}", file=sys.stderr)
            return 1

        runner = StatementRunner(CtfsStatementParser(parser_options), runner_options)
        results = runner.run()
    except ValidationError as exc:
        print(f"ERROR: invalid option: {exc}", file=sys.stderr)
        return 1
    except StatementError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1

    output_path = runner_options.output_path
    if runner_options.output_format == "csv":
        if output_path:
            write_csv(results, output_path)
        else:
            sys.stdout.write(render_csv(results))
    elif output_path:
        write_json(results, output_path)
    else:
        sys.stdout.write(render_json(results, pretty=args.pretty) + "\n")

    if args.fail_on_mismatch and any(not r.is_match for r in results):
        return 2
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
