"""Tests for the JSON-lines admin audit log."""

import json

import pytest

from audit_log import AuditLog


@pytest.fixture
def audit_log(tmp_path):
    log = AuditLog(str(tmp_path / "logs" / "admin.jsonl"))
    yield log
    log.close()


def test_append_writes_one_json_line(audit_log):
    audit_log.append("coin_accepted", "Accepted coin: 5", {"coinValue": 5, "balance": 5})

    lines = audit_log.path.read_text(encoding="utf-8").splitlines()
    assert len(lines) == 1
    entry = json.loads(lines[0])
    assert entry["type"] == "coin_accepted"
    assert entry["message"] == "Accepted coin: 5"
    assert entry["context"] == {"coinValue": 5, "balance": 5}
    assert "ts" in entry


def test_tail_returns_latest_first(audit_log):
    for value in (1, 5, 10):
        audit_log.append("coin_accepted", f"Accepted coin: {value}", {"coinValue": value})

    entries = audit_log.tail(2)

    assert [e["context"]["coinValue"] for e in entries] == [10, 5]


def test_unserializable_context_does_not_raise(audit_log):
    audit_log.append("coin_parser_warning", "odd", {"obj": object()})

    assert audit_log.tail() == []


def test_tail_of_missing_file_is_empty(tmp_path):
    log = AuditLog(str(tmp_path / "admin.jsonl"))
    log.close()

    assert log.tail() == []
