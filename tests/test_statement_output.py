from __future__ import annotations

import csv
import io
import json
from datetime import date
from decimal import Decimal

from ctfs_statement_parser import ParseResult
from statement_output import (
    CSV_COLUMNS,
    date_to_json,
    money_to_json,
    render_csv,
    render_json,
    result_to_dict,
    write_csv,
    write_json,
)

TEXT = (
    "Statement date: October 21, 2025\n"
    "Purchases 100.00\n"
    "Oct 15 Oct 15 STORE A 75.00\n"
    "Oct 16 Oct 16 STORE B, \"THE BEST\" 25.00\n"
    "Oct 17 Oct 17 NO AMOUNT\n"
)


def test_money_to_json_rounds_half_up():
    assert money_to_json(Decimal("1")) == "1.00"
    assert money_to_json(Decimal("2.345")) == "2.35"
    assert money_to_json(Decimal("-3463")) == "-3463.00"


def test_date_to_json_hides_unset_date():
    assert date_to_json(date.min) is None
    assert date_to_json(date(2025, 10, 21)) == "2025-10-21"


def test_result_to_dict(parser):
    out = result_to_dict(parser.parse(TEXT, "a.txt"))

    assert out["file_name"] == "a.txt"
    assert out["statement_date"] == "2025-10-21"
    assert out["summary"] == {
        "declared_purchases_total": "100.00",
        "computed_purchases_total": "100.00",
        "difference": "0.00",
        "is_match": True,
        "excluded_count": 0,
        "transaction_count": 2,
    }
    assert out["transactions"][0] == {
        "statement_date": "2025-10-21",
        "transaction_date": "2025-10-15",
        "posted_date": "2025-10-15",
        "description": "STORE A",
        "amount": "75.00",
        "inclusion_status": "Include",
        "start_line_number": 3,
        "raw_text": "Oct 15 Oct 15 STORE A 75.00",
    }
    assert out["warnings"] == [
        {"line_number": 5, "message": "Unmatched transaction text", "raw_text": "Oct 17 Oct 17 NO AMOUNT"}
    ]


def test_empty_result_to_dict():
    out = result_to_dict(ParseResult(file_name="empty.txt"))

    assert out["statement_date"] is None
    assert out["summary"]["is_match"] is False
    assert out["transactions"] == []


def test_render_json_is_a_list(parser):
    payload = json.loads(render_json([parser.parse(TEXT, "a.txt"), ParseResult(file_name="b.txt")]))

    assert [r["file_name"] for r in payload] == ["a.txt", "b.txt"]


def test_render_json_pretty(parser):
    assert render_json([parser.parse(TEXT, "a.txt")], pretty=True).startswith("[\n  {")


def test_render_csv(parser):
    rendered = render_csv([parser.parse(TEXT, "a.txt")])
    rows = list(csv.DictReader(io.StringIO(rendered)))

    assert rendered.splitlines()[0] == ",".join(CSV_COLUMNS)
    assert len(rows) == 2
    assert rows[1]["description"] == 'STORE B, "THE BEST"'
    assert rows[1]["amount"] == "25.00"
    assert rows[1]["file_name"] == "a.txt"
    assert rows[1]["start_line_number"] == "4"


def test_render_csv_without_statement_date():
    result = ParseResult(file_name="x.txt")

    assert render_csv([result]) == ",".join(CSV_COLUMNS) + "\n"


def test_write_files(parser, tmp_path):
    result = parser.parse(TEXT, "a.txt")
    json_path = tmp_path / "out.json"
    csv_path = tmp_path / "out.csv"

    write_json([result], json_path)
    write_csv([result], csv_path)

    assert json.loads(json_path.read_text(encoding="utf-8"))[0]["summary"]["is_match"] is True
    assert csv_path.read_text(encoding="utf-8").count("\n") == 3
