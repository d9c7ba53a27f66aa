"""
Tests for the offline notification-log CLI.
"""

import json

import pytest

import audit
import ledger_cli


@pytest.fixture
def log_file(seeded, tmp_path):
    a = seeded.create_donation("D", "Bread", quantity=5)
    seeded.create_donation("D", "Soup", quantity=2)
    seeded.claim_donation("R", a)
    path = tmp_path / "notifications.jsonl"
    audit.export_jsonl(seeded.notifications(), str(path))
    return str(path)


def test_verify(log_file, capsys):
    assert ledger_cli.main(["--log", log_file, "verify"]) == 0
    assert capsys.readouterr().out.startswith("OK: 5 notifications")


def test_count_and_latest(log_file, capsys):
    assert ledger_cli.main(["--log", log_file, "count"]) == 0
    assert capsys.readouterr().out.strip() == "2"

    ledger_cli.main(["--log", log_file, "latest", "--limit", "1"])
    lines = capsys.readouterr().out.strip().splitlines()
    assert len(lines) == 1
    assert lines[0].startswith("2 | available")


def test_show_and_indexes(log_file, capsys):
    ledger_cli.main(["--log", log_file, "show", "--id", "1"])
    shown = json.loads(capsys.readouterr().out)
    assert shown["status"] == "claimed"
    assert shown["recipient"] == "R"

    ledger_cli.main(["--log", log_file, "recipient", "--identity", "R"])
    assert "recipient=R" in capsys.readouterr().out

    ledger_cli.main(["--log", log_file, "donor", "--identity", "D"])
    assert len(capsys.readouterr().out.strip().splitlines()) == 2


def test_missing_donation(log_file, capsys):
    assert ledger_cli.main(["--log", log_file, "show", "--id", "9"]) == 1
    assert "DonationNotFound" in capsys.readouterr().err


def test_tampered_log(log_file, capsys):
    with open(log_file, encoding="utf-8") as f:
        lines = f.readlines()
    entry = json.loads(lines[2])
    entry["payload"]["quantity"] = 50
    lines[2] = json.dumps(entry) + "\n"
    with open(log_file, "w", encoding="utf-8") as f:
        f.writelines(lines)

    assert ledger_cli.main(["--log", log_file, "verify"]) == 1
    assert "ChainIntegrityError" in capsys.readouterr().err


def test_missing_file(tmp_path, capsys):
    assert ledger_cli.main(["--log", str(tmp_path / "nope.jsonl"), "count"]) == 2
