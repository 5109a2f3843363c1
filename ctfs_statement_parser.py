#!/usr/bin/env python3
"""Parse CTFS (Triangle) Mastercard statement text into reconciled transactions.

The input is the plain text of one statement, one physical line per row as it
came out of PDF extraction. Transaction entries start with two "Mon DD" dates
and may wrap over several lines before their amount shows up. Nothing in the
statement body is fatal: text that looks like a transaction but cannot be
matched is kept as a ParseWarning, and the sum of included purchases is
checked against the "Purchases" total printed by the issuer.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, replace
from datetime import date
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import List, NamedTuple, Optional, Sequence, Tuple

from logging_setup import get_logger
from transaction_filter import ParserOptions, PatternTransactionFilter, TransactionFilter

logger = get_logger("ctfs_statement.parser")


ZERO = Decimal("0.00")
MONTHS = {
    "JAN": 1,
    "FEB": 2,
    "MAR": 3,
    "APR": 4,
    "MAY": 5,
    "JUN": 6,
    "JUL": 7,
    "AUG": 8,
    "SEP": 9,
    "OCT": 10,
    "NOV": 11,
    "DEC": 12,
}


# "Oct 15 Oct 15 CANADIAN TIRE #123 KELOWNA BC 75.00"
# "Nov 01 Nov 02 CIBC BANK PMT/PAIEMENT BCIC (3,463.00)"
TRANSACTION_LINE_RE = re.compile(
    r"^(?P<date1>[A-Za-z]{3}\s+\d{1,2})\s+(?P<date2>[A-Za-z]{3}\s+\d{1,2})\s+(?P<desc>.+?)\s+"
    r"(?P<amount>\(?[-+]?\$?\d{1,3}(?:,\d{3})*(?:\.\d{2})?\)?)$"
)
TRANSACTION_START_RE = re.compile(r"^[A-Za-z]{3}\s+\d{1,2}\s+[A-Za-z]{3}\s+\d{1,2}\b")
# "59.36", "$122.08", "1,234.56"; a bare "36" is not an amount line.
AMOUNT_ONLY_RE = re.compile(r"^\(?[-+]?\$?\d+(?:[,.]\d*)+\)?$")
STATEMENT_DATE_LABEL_RE = re.compile(r"Statement\s+date:?", re.IGNORECASE)
STATEMENT_DATE_RE = re.compile(
    r"Statement\s+date:?\s*(?P<month>[A-Za-z]+)\s+(?P<day>\d{1,2}),\s*(?P<year>\d{4})",
    re.IGNORECASE,
)
PURCHASES_TOTAL_RE = re.compile(
    r"\bPurchases\s+(?P<amount>[-+]?\$?\d{1,3}(?:,\d{3})*(?:\.\d+)?)",
    re.IGNORECASE,
)
DETAILS_SECTION_RE = re.compile(r"^Details\s+of\s+your\s+.*?\bstore\s+purchases\b", re.IGNORECASE)
WHITESPACE_RE = re.compile(r"\s+")


class StatementError(RuntimeError):
    pass


class InclusionStatus(Enum):
    UNDETERMINED = "Undetermined"
    INCLUDE = "Include"
    EXCLUDE = "Exclude"


@dataclass(frozen=True)
class Transaction:
    statement_date: date
    transaction_date: date
    posted_date: date
    description: str
    amount: Decimal
    raw_text: str
    start_line_number: int = 0
    inclusion_status: InclusionStatus = InclusionStatus.UNDETERMINED


@dataclass(frozen=True)
class ParseWarning:
    line_number: int
    message: str
    raw_text: str


@dataclass(frozen=True)
class ParseResult:
    file_name: str
    statement_date: date = date.min
    transactions: Tuple[Transaction, ...] = ()
    declared_purchases_total: Decimal = ZERO
    computed_purchases_total: Decimal = ZERO
    difference: Decimal = ZERO
    is_match: bool = False
    warnings: Tuple[ParseWarning, ...] = ()
    excluded_count: int = 0


@dataclass(frozen=True)
class StatementHeader:
    statement_date: date = date.min
    declared_purchases_total: Decimal = ZERO


class Reconciliation(NamedTuple):
    computed_purchases_total: Decimal
    difference: Decimal
    is_match: bool
    excluded_count: int


def normalize_whitespace(value: str) -> str:
    return WHITESPACE_RE.sub(" ", value).strip()


def is_start_of_transaction(line: str) -> bool:
    return bool(line.strip()) and TRANSACTION_START_RE.match(line.strip()) is not None


def is_amount_only(line: str) -> bool:
    return AMOUNT_ONLY_RE.match(line.strip()) is not None


def is_details_section_start(line: str) -> bool:
    return DETAILS_SECTION_RE.match(line.strip()) is not None


def looks_like_bare_integer(amount_token: str) -> bool:
    return not any(ch in amount_token for ch in ".,$")


def lookup_month(name: str) -> Optional[int]:
    return MONTHS.get(name.strip()[:3].upper())


def parse_amount(token: str) -> Optional[Decimal]:
    raw = token.strip().replace(",", "").replace("$", "")
    negative = raw.startswith("(") and raw.endswith(")")
    if negative:
        raw = raw[1:-1]
    try:
        amount = Decimal(raw)
    except InvalidOperation:
        return None
    if not amount.is_finite():
        return None
    return -amount if negative else amount


def parse_statement_date(line: str) -> Optional[date]:
    m = STATEMENT_DATE_RE.search(line)
    if m:
        month = lookup_month(m.group("month"))
        if month is not None:
            parsed = _build_date(int(m.group("year")), month, int(m.group("day")))
            if parsed is not None:
                return parsed
    logger.warning("Failed to parse statement date from line: %r", line)
    return None


def extract_header(lines: Sequence[str]) -> StatementHeader:
    """Find the statement date and declared purchases total, stopping once both are known."""

    statement_date: Optional[date] = None
    declared: Optional[Decimal] = None

    for line in lines:
        m_total = PURCHASES_TOTAL_RE.search(line)
        if m_total:
            amount = parse_amount(m_total.group("amount"))
            if amount is not None:
                declared = amount

        if STATEMENT_DATE_LABEL_RE.search(line):
            parsed = parse_statement_date(line)
            if parsed is not None:
                statement_date = parsed

        if statement_date is not None and declared is not None:
            break

    return StatementHeader(
        statement_date=statement_date or date.min,
        declared_purchases_total=declared if declared is not None else ZERO,
    )


def _build_date(year: int, month: int, day: int) -> Optional[date]:
    if year < date.min.year:
        return None
    try:
        return date(year, month, day)
    except ValueError:
        return None


def _previous_year(value: date) -> date:
    try:
        return value.replace(year=value.year - 1)
    except ValueError:
        # Feb 29 has no counterpart in the previous year.
        return value.replace(year=value.year - 1, day=28)


def resolve_month_day(token: str, statement_date: date) -> Optional[date]:
    """Resolve a "Mon DD" token against the statement year.

    Months after the statement month belong to the previous year, so a
    "Dec 31" line on a January statement lands in December of the prior year.
    """

    parts = token.split()
    if len(parts) != 2 or not parts[1].isdigit():
        return None
    month = lookup_month(parts[0])
    if month is None:
        return None
    day = int(parts[1])

    resolved = _build_date(statement_date.year, month, day)
    if resolved is None:
        resolved = _build_date(statement_date.year - 1, month, day)
    if resolved is None:
        return None

    if resolved.month > statement_date.month and resolved.year > date.min.year:
        resolved = _previous_year(resolved)
    return resolved


def parse_transaction_line(combined: str, statement_date: date) -> Optional[Transaction]:
    norm = normalize_whitespace(combined)
    m = TRANSACTION_LINE_RE.match(norm)
    if not m:
        return None

    transaction_date = resolve_month_day(m.group("date1"), statement_date)
    if transaction_date is None:
        return None
    posted_date = resolve_month_day(m.group("date2"), statement_date)
    if posted_date is None:
        return None
    amount = parse_amount(m.group("amount"))
    if amount is None:
        return None

    return Transaction(
        statement_date=statement_date,
        transaction_date=transaction_date,
        posted_date=posted_date,
        description=normalize_whitespace(m.group("desc")),
        amount=amount,
        raw_text=norm,
    )


def _ends_entry(line: str) -> bool:
    return is_start_of_transaction(line) or is_details_section_start(line)


def _continues_description(lines: Sequence[str], index: int) -> bool:
    if index >= len(lines):
        return False
    following = lines[index].strip()
    return not _ends_entry(following) and not is_amount_only(following)


def combine_lines(lines: Sequence[str], start: int) -> Tuple[str, int]:
    """Absorb wrapped lines from ``start`` until one complete transaction is assembled.

    Returns the whitespace-normalized text and the index of the last line used.
    """

    combined = lines[start].strip()
    j = start

    while True:
        m = TRANSACTION_LINE_RE.match(normalize_whitespace(combined))
        if m:
            # A trailing "36" or "5731" may be a phone or store number that
            # wrapped, with the real amount still to come.
            if looks_like_bare_integer(m.group("amount")) and _continues_description(lines, j + 1):
                j += 1
                combined += " " + lines[j].strip()
                continue
            break

        if j + 1 >= len(lines):
            break

        next_line = lines[j + 1].strip()
        if _ends_entry(next_line):
            break

        j += 1
        combined += " " + next_line
        if is_amount_only(next_line):
            break

    return normalize_whitespace(combined), j


def reconcile(
    transactions: Sequence[Transaction],
    declared_total: Decimal,
    tolerance: Decimal,
) -> Reconciliation:
    computed = sum(
        (tx.amount for tx in transactions if tx.inclusion_status is InclusionStatus.INCLUDE),
        ZERO,
    )
    difference = declared_total - computed
    excluded = sum(
        1 for tx in transactions if tx.amount > 0 and tx.inclusion_status is InclusionStatus.EXCLUDE
    )
    return Reconciliation(
        computed_purchases_total=computed,
        difference=difference,
        is_match=abs(difference) < tolerance,
        excluded_count=excluded,
    )


def split_lines(text: str) -> List[str]:
    return [line for line in text.split("\n") if line]


class CtfsStatementParser:
    """Turn one statement's text into a reconciled ``ParseResult``."""

    def __init__(
        self,
        options: Optional[ParserOptions] = None,
        transaction_filter: Optional[TransactionFilter] = None,
    ):
        self.options = options or ParserOptions()
        self.transaction_filter = transaction_filter or PatternTransactionFilter.from_options(self.options)

    @property
    def tolerance(self) -> Decimal:
        return self.options.difference_tolerance

    def parse(self, text: str, file_name: str = "") -> ParseResult:
        if text is None:
            raise TypeError("statement text must be a string, not None")
        if not text.strip():
            return ParseResult(file_name=file_name)

        lines = split_lines(text)
        header = extract_header(lines)
        parsed, warnings = self._scan_transactions(lines, header.statement_date)
        transactions = tuple(replace(tx, inclusion_status=self._inclusion_status(tx)) for tx in parsed)
        summary = reconcile(transactions, header.declared_purchases_total, self.tolerance)

        return ParseResult(
            file_name=file_name,
            statement_date=header.statement_date,
            transactions=transactions,
            declared_purchases_total=header.declared_purchases_total,
            computed_purchases_total=summary.computed_purchases_total,
            difference=summary.difference,
            is_match=summary.is_match,
            warnings=tuple(warnings),
            excluded_count=summary.excluded_count,
        )

    def _inclusion_status(self, tx: Transaction) -> InclusionStatus:
        # Payments and credits are never purchases.
        if tx.amount <= 0:
            return InclusionStatus.EXCLUDE
        if self.transaction_filter.should_exclude_from_purchases_total(tx):
            return InclusionStatus.EXCLUDE
        return InclusionStatus.INCLUDE

    def _scan_transactions(
        self, lines: Sequence[str], statement_date: date
    ) -> Tuple[List[Transaction], List[ParseWarning]]:
        transactions: List[Transaction] = []
        warnings: List[ParseWarning] = []

        i = 0
        while i < len(lines):
            line = lines[i].strip()
            # Everything after this marker itemizes purchases already listed.
            if is_details_section_start(line):
                break
            if not is_start_of_transaction(line):
                i += 1
                continue

            start_line_number = i + 1
            combined, last_index = combine_lines(lines, i)
            tx = parse_transaction_line(combined, statement_date)
            if tx is None:
                warnings.append(
                    ParseWarning(
                        line_number=start_line_number,
                        message="Unmatched transaction text",
                        raw_text=combined,
                    )
                )
                logger.warning("Unmatched transaction text at line %d: %r", start_line_number, combined)
            else:
                transactions.append(replace(tx, start_line_number=start_line_number))
            i = last_index + 1

        return transactions, warnings


def parse_statement_text(
    text: str,
    file_name: str = "",
    options: Optional[ParserOptions] = None,
) -> ParseResult:
    return CtfsStatementParser(options).parse(text, file_name)
