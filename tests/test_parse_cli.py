from __future__ import annotations

import csv
import json

import pytest

import parse_cli


@pytest.fixture(autouse=True)
def no_logging_setup(monkeypatch):
    monkeypatch.setattr(parse_cli, "configure_logging", lambda level=None: None)


def test_json_to_stdout(statement_path, capsys):
    code = parse_cli.main([str(statement_path), "--exclude", "INTEREST CHARGES", "--fail-on-mismatch"])
    out = json.loads(capsys.readouterr().out)

    assert code == 0
    assert out[0]["summary"]["is_match"] is True
    assert out[0]["summary"]["transaction_count"] == 11


def test_fail_on_mismatch_exit_code(statement_path, capsys):
    assert parse_cli.main([str(statement_path), "--fail-on-mismatch"]) == 2
    assert parse_cli.main([str(statement_path)]) == 0


def test_tolerance_flag(statement_path, capsys):
    assert parse_cli.main([str(statement_path), "--tolerance", "15", "--fail-on-mismatch"]) == 0


def test_csv_to_file(statement_path, tmp_path, capsys):
    out_path = tmp_path / "out.csv"

    code = parse_cli.main([str(statement_path), "--format", "csv", "-o", str(out_path)])

    assert code == 0
    assert capsys.readouterr().out == ""
    with out_path.open(encoding="utf-8", newline="") as fh:
        rows = list(csv.DictReader(fh))
    assert len(rows) == 11
    assert rows[0]["statement_date"] == "2025-10-21"


def test_config_supplies_patterns_and_format(statement_path, tmp_path, capsys):
    config = tmp_path / "config.json"
    config.write_text(
        json.dumps({"parser": {"exclusion_patterns": ["INTEREST"]}, "runner": {"input_paths": [str(statement_path)]}}),
        encoding="utf-8",
    )

    code = parse_cli.main(["--config", str(config), "--pretty", "--fail-on-mismatch"])

    assert code == 0
    assert capsys.readouterr().out.startswith("[\n  {")


def test_no_paths(capsys):
    assert parse_cli.main([]) == 1
    assert "ERROR: no statement files" in capsys.readouterr().err


def test_missing_path(tmp_path, capsys):
    assert parse_cli.main([str(tmp_path / "missing.pdf")]) == 1
    assert "ERROR: path does not exist" in capsys.readouterr().err


def test_bad_config(tmp_path, capsys):
    config = tmp_path / "config.json"
    config.write_text("{", encoding="utf-8")

    assert parse_cli.main(["--config", str(config), str(tmp_path)]) == 1
    assert "ERROR: Config file" in capsys.readouterr().err


def test_inverted_date_range(statement_path, capsys):
    code = parse_cli.main([str(statement_path), "--start-date", "2025-11-01", "--end-date", "2025-10-01"])

    assert code == 1
    assert "ERROR: invalid option" in capsys.readouterr().err


def test_date_range_filters_files(statement_path, capsys):
    code = parse_cli.main([str(statement_path.parent), "--start-date", "2025-11-01"])

    assert code == 0
    assert json.loads(capsys.readouterr().out) == []


def test_invalid_date_argument(capsys):
    with pytest.raises(SystemExit) as exc:
        parse_cli.main(["x", "--start-date", "21/10/2025"])
    assert exc.value.code == 2


def test_json_to_file_is_indented(statement_path, tmp_path, capsys):
    out_path = tmp_path / "out.json"

    code = parse_cli.main([str(statement_path), "-o", str(out_path)])

    assert code == 0
    assert capsys.readouterr().out == ""
    written = out_path.read_text(encoding="utf-8")
    assert written.startswith("[\n  {")
    assert written.endswith("}\n]\n")
    assert json.loads(written)[0]["file_name"] == statement_path.name
