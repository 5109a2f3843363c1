from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest

from ctfs_statement_parser import (
    ZERO,
    InclusionStatus,
    extract_header,
    lookup_month,
    parse_amount,
    parse_statement_date,
    parse_transaction_line,
    resolve_month_day,
)

OCT_21 = date(2025, 10, 21)


@pytest.mark.parametrize(
    "token,expected",
    [
        ("75.00", Decimal("75.00")),
        ("$122.08", Decimal("122.08")),
        ("1,234.56", Decimal("1234.56")),
        ("(3,463.00)", Decimal("-3463.00")),
        ("($45.20)", Decimal("-45.20")),
        ("-5.00", Decimal("-5.00")),
        ("36", Decimal("36")),
    ],
)
def test_parse_amount(token, expected):
    assert parse_amount(token) == expected


@pytest.mark.parametrize("token", ["", "abc", "1.2.3", "NaN"])
def test_parse_amount_rejects_garbage(token):
    assert parse_amount(token) is None


def test_lookup_month_uses_first_three_letters():
    assert lookup_month("oct") == 10
    assert lookup_month("September") == 9
    assert lookup_month("Foo") is None


def test_resolve_month_day_same_year():
    assert resolve_month_day("Oct 15", OCT_21) == date(2025, 10, 15)
    assert resolve_month_day("Sep 3", OCT_21) == date(2025, 9, 3)


def test_resolve_month_day_rolls_later_months_back():
    assert resolve_month_day("Dec 31", date(2026, 1, 10)) == date(2025, 12, 31)
    assert resolve_month_day("Nov 30", OCT_21) == date(2024, 11, 30)


def test_resolve_month_day_invalid_in_statement_year_tries_previous_year():
    assert resolve_month_day("Feb 29", date(2025, 3, 5)) == date(2024, 2, 29)


def test_resolve_month_day_leap_day_rolled_back_lands_on_feb_28():
    assert resolve_month_day("Feb 29", date(2025, 1, 10)) == date(2023, 2, 28)


@pytest.mark.parametrize("token", ["Xyz 15", "Oct", "Oct 32", "Oct ab"])
def test_resolve_month_day_failures(token):
    assert resolve_month_day(token, OCT_21) is None


def test_parse_transaction_line_builds_undetermined_transaction():
    tx = parse_transaction_line("Oct 15  Oct 16 CANADIAN TIRE #123 KELOWNA BC  $1,075.00", OCT_21)

    assert tx is not None
    assert tx.statement_date == OCT_21
    assert tx.transaction_date == date(2025, 10, 15)
    assert tx.posted_date == date(2025, 10, 16)
    assert tx.description == "CANADIAN TIRE #123 KELOWNA BC"
    assert tx.amount == Decimal("1075.00")
    assert tx.raw_text == "Oct 15 Oct 16 CANADIAN TIRE #123 KELOWNA BC $1,075.00"
    assert tx.inclusion_status is InclusionStatus.UNDETERMINED


def test_parse_transaction_line_negative_parenthesized():
    tx = parse_transaction_line("Nov 01 Nov 02 CIBC BANK PMT/PAIEMENT BCIC (3,463.00)", date(2025, 11, 21))

    assert tx is not None
    assert tx.amount == Decimal("-3463.00")


@pytest.mark.parametrize(
    "combined",
    [
        "Oct 15 Oct 15 STORE",
        "Oct 15 STORE 10.00",
        "Xyz 15 Oct 15 STORE 10.00",
        "Oct 15 Qqq 15 STORE 10.00",
        "Oct 15 Oct 15 STORE 10.5",
    ],
)
def test_parse_transaction_line_failures(combined):
    assert parse_transaction_line(combined, OCT_21) is None


def test_header_finds_date_and_total():
    header = extract_header(["Statement date: October 21, 2025", "Purchases $1,260.89"])

    assert header.statement_date == OCT_21
    assert header.declared_purchases_total == Decimal("1260.89")


def test_header_accepts_abbreviated_month_and_missing_colon():
    header = extract_header(["STATEMENT DATE Oct 1, 2025", "purchases 5.00"])

    assert header.statement_date == date(2025, 10, 1)
    assert header.declared_purchases_total == Decimal("5.00")


def test_header_total_is_overwritten_until_both_found():
    lines = [
        "Purchases 10.00",
        "Purchases 20.00",
        "Statement date: October 21, 2025",
        "Purchases 30.00",
    ]

    assert extract_header(lines).declared_purchases_total == Decimal("20.00")


def test_header_missing_values_default(caplog):
    header = extract_header(["Statement date: Octember 41, 2025", "nothing else"])

    assert header.statement_date == date.min
    assert header.declared_purchases_total == ZERO
    assert "Failed to parse statement date" in caplog.text


@pytest.mark.parametrize(
    "line,expected",
    [
        ("Statement date: OCTOBER 21, 2025", date(2025, 10, 21)),
        ("Statement date: Sept 5, 2025", date(2025, 9, 5)),
        ("Statement date: february 29, 2024", date(2024, 2, 29)),
    ],
)
def test_statement_date_month_names_resolved_by_prefix(line, expected):
    assert parse_statement_date(line) == expected


def test_statement_date_rejects_impossible_day():
    assert parse_statement_date("Statement date: February 29, 2025") is None
