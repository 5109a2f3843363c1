"""Inclusion filtering for the purchases total.

A statement's declared "Purchases" figure leaves out fees and interest even
though they appear as ordinary positive line items. ``PatternTransactionFilter``
decides which of those items to drop, based on case-insensitive regular
expressions matched against the transaction description.
"""

from __future__ import annotations

import re
from decimal import Decimal
from typing import List, Pattern, Protocol, Sequence, Tuple

from pydantic import BaseModel, ConfigDict, field_validator

from logging_setup import get_logger

logger = get_logger("ctfs_statement.filter")


class ParserOptions(BaseModel):
    """Engine configuration: reconciliation tolerance and exclusion patterns."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    difference_tolerance: Decimal = Decimal("0.01")
    exclusion_patterns: Tuple[str, ...] = ()

    @field_validator("difference_tolerance")
    @classmethod
    def _non_negative(cls, v: Decimal) -> Decimal:
        if v < 0:
            raise ValueError("difference_tolerance must be >= 0")
        return v


class FilterableTransaction(Protocol):
    description: str
    amount: Decimal


class TransactionFilter(Protocol):
    def should_exclude_from_purchases_total(self, transaction: FilterableTransaction) -> bool: ...


def compile_patterns(patterns: Sequence[str]) -> List[Pattern[str]]:
    compiled: List[Pattern[str]] = []
    for pattern in patterns:
        try:
            compiled.append(re.compile(pattern, re.IGNORECASE))
        except re.error as exc:
            logger.warning("Invalid exclusion pattern %r skipped: %s", pattern, exc)
    return compiled


class PatternTransactionFilter:
    """Exclude positive transactions whose description matches any configured pattern."""

    def __init__(self, patterns: Sequence[str] = ()):
        self.patterns = compile_patterns(patterns)
        if self.patterns:
            logger.info("Loaded %d exclusion pattern(s)", len(self.patterns))
        else:
            logger.debug("No exclusion patterns configured")

    @classmethod
    def from_options(cls, options: ParserOptions) -> "PatternTransactionFilter":
        return cls(options.exclusion_patterns)

    def should_exclude_from_purchases_total(self, transaction: FilterableTransaction) -> bool:
        if transaction.amount <= 0:
            return False
        for pattern in self.patterns:
            if pattern.search(transaction.description):
                logger.debug(
                    "Excluded from purchases total: %s %s", transaction.description, transaction.amount
                )
                return True
        return False
