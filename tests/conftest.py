from __future__ import annotations

from pathlib import Path

import pytest

from ctfs_statement_parser import CtfsStatementParser
from transaction_filter import ParserOptions

DATA_DIR = Path(__file__).resolve().parent / "data"
STATEMENT_FIXTURE = DATA_DIR / "2025-10-21_triangle_mastercard.txt"


@pytest.fixture
def statement_path() -> Path:
    return STATEMENT_FIXTURE


@pytest.fixture
def statement_text() -> str:
    return STATEMENT_FIXTURE.read_text(encoding="utf-8")


@pytest.fixture
def interest_options() -> ParserOptions:
    return ParserOptions(exclusion_patterns=["INTEREST CHARGES", "ANNUAL FEE"])


@pytest.fixture
def parser(interest_options: ParserOptions) -> CtfsStatementParser:
    return CtfsStatementParser(interest_options)
