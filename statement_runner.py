"""Batch processing of statement files: collect, extract, parse, report."""

from __future__ import annotations

import re
from datetime import date
from pathlib import Path
from typing import Iterable, List, Optional

from ctfs_statement_parser import CtfsStatementParser, ParseResult
from logging_setup import get_logger
from pdf_text import load_statement_text
from statement_config import RunnerOptions
from statement_output import money_to_json

logger = get_logger("ctfs_statement.runner")

STATEMENT_SUFFIXES = {".pdf", ".txt"}
FILE_DATE_PREFIX_RE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})")


def file_date_prefix(path: Path) -> Optional[date]:
    m = FILE_DATE_PREFIX_RE.match(path.name)
    if not m:
        return None
    try:
        return date(int(m.group(1)), int(m.group(2)), int(m.group(3)))
    except ValueError:
        return None


def in_date_range(path: Path, start_date: Optional[date], end_date: Optional[date]) -> bool:
    if start_date is None and end_date is None:
        return True
    stamp = file_date_prefix(path)
    if stamp is None:
        return False
    if start_date is not None and stamp < start_date:
        return False
    if end_date is not None and stamp >= end_date:
        return False
    return True


def collect_statement_files(
    paths: Iterable[Path],
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
) -> List[Path]:
    found: List[Path] = []
    for path in paths:
        if path.is_dir():
            found.extend(
                sorted(p for p in path.iterdir() if p.is_file() and p.suffix.lower() in STATEMENT_SUFFIXES)
            )
        else:
            found.append(path)
    # Extracted-text companions of PDFs are debug output, not separate statements.
    pdf_stems = {(p.parent, p.stem) for p in found if p.suffix.lower() == ".pdf"}
    selected = [
        p
        for p in found
        if not (p.suffix.lower() == ".txt" and (p.parent, p.stem) in pdf_stems)
        and in_date_range(p, start_date, end_date)
    ]
    return selected


class StatementRunner:
    def __init__(self, parser: CtfsStatementParser, options: Optional[RunnerOptions] = None):
        self.parser = parser
        self.options = options or RunnerOptions()

    def run(self, paths: Optional[Iterable[Path]] = None) -> List[ParseResult]:
        inputs = list(paths) if paths is not None else list(self.options.input_paths)
        files = collect_statement_files(inputs, self.options.start_date, self.options.end_date)
        if self.options.start_date is None and self.options.end_date is None:
            logger.debug("No date range configured; processing every statement file")
        logger.info("Found %d statement file(s)", len(files))
        return [self.process_file(path) for path in files]

    def process_file(self, path: Path) -> ParseResult:
        text = load_statement_text(path)
        if self.options.write_extracted_text and path.suffix.lower() == ".pdf":
            self._write_extracted_text(path, text)

        result = self.parser.parse(text, path.name)
        log_result(result)
        return result

    def _write_extracted_text(self, path: Path, text: str) -> None:
        target = path.with_suffix(".txt")
        try:
            target.write_text(text, encoding="utf-8")
        except OSError as exc:
            logger.warning("Failed to write extracted text to %s: %s", target, exc)
            return
        logger.debug("Wrote extracted text to %s", target)


def log_result(result: ParseResult) -> None:
    logger.info("Processed file: %s", result.file_name)
    logger.info("Declared purchases: %s", money_to_json(result.declared_purchases_total))
    logger.info("Computed purchases: %s", money_to_json(result.computed_purchases_total))
    logger.info("Transaction count: %d", len(result.transactions))
    if result.excluded_count:
        logger.debug("Excluded %d transaction(s) from purchases total", result.excluded_count)
    if result.is_match:
        return
    logger.warning(
        "Declared: %s | Computed: %s | Difference: %s",
        money_to_json(result.declared_purchases_total),
        money_to_json(result.computed_purchases_total),
        money_to_json(result.difference),
    )
    logger.warning("Investigate %s and update parser logic if necessary", result.file_name)
    for tx in result.transactions:
        logger.info(
            "  %s %-40s %10s %s",
            tx.transaction_date.isoformat(),
            tx.description,
            money_to_json(tx.amount),
            tx.inclusion_status.value,
        )
