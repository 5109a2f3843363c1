"""JSON and CSV rendering of parse results."""

from __future__ import annotations

import csv
import io
import json
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from pathlib import Path
from typing import Optional, Sequence

from ctfs_statement_parser import ParseResult, Transaction

MONEY_Q = Decimal("0.01")
CSV_COLUMNS = [
    "statement_date",
    "transaction_date",
    "posted_date",
    "description",
    "amount",
    "inclusion_status",
    "file_name",
    "start_line_number",
]


def money_to_json(amount: Decimal) -> str:
    return format(amount.quantize(MONEY_Q, rounding=ROUND_HALF_UP), "f")


def date_to_json(value: date) -> Optional[str]:
    # date.min marks a statement date that was never found.
    return None if value == date.min else value.isoformat()


def transaction_to_dict(tx: Transaction) -> dict:
    return {
        "statement_date": date_to_json(tx.statement_date),
        "transaction_date": tx.transaction_date.isoformat(),
        "posted_date": tx.posted_date.isoformat(),
        "description": tx.description,
        "amount": money_to_json(tx.amount),
        "inclusion_status": tx.inclusion_status.value,
        "start_line_number": tx.start_line_number,
        "raw_text": tx.raw_text,
    }


def result_to_dict(result: ParseResult) -> dict:
    return {
        "file_name": result.file_name,
        "statement_date": date_to_json(result.statement_date),
        "summary": {
            "declared_purchases_total": money_to_json(result.declared_purchases_total),
            "computed_purchases_total": money_to_json(result.computed_purchases_total),
            "difference": money_to_json(result.difference),
            "is_match": result.is_match,
            "excluded_count": result.excluded_count,
            "transaction_count": len(result.transactions),
        },
        "transactions": [transaction_to_dict(tx) for tx in result.transactions],
        "warnings": [
            {"line_number": w.line_number, "message": w.message, "raw_text": w.raw_text}
            for w in result.warnings
        ],
    }


def render_json(results: Sequence[ParseResult], pretty: bool = False) -> str:
    payload = [result_to_dict(r) for r in results]
    return json.dumps(payload, ensure_ascii=False, indent=2 if pretty else None)


def render_csv(results: Sequence[ParseResult]) -> str:
    buf = io.StringIO()
    writer = csv.DictWriter(buf, fieldnames=CSV_COLUMNS, lineterminator="\n")
    writer.writeheader()
    for result in results:
        for tx in result.transactions:
            row = transaction_to_dict(tx)
            writer.writerow(
                {
                    "statement_date": row["statement_date"] or "",
                    "transaction_date": row["transaction_date"],
                    "posted_date": row["posted_date"],
                    "description": row["description"],
                    "amount": row["amount"],
                    "inclusion_status": row["inclusion_status"],
                    "file_name": result.file_name,
                    "start_line_number": row["start_line_number"],
                }
            )
    return buf.getvalue()


def write_json(results: Sequence[ParseResult], path: Path, pretty: bool = True) -> None:
    path.write_text(render_json(results, pretty=pretty) + "\n", encoding="utf-8")


def write_csv(results: Sequence[ParseResult], path: Path) -> None:
    path.write_text(render_csv(results), encoding="utf-8", newline="")
