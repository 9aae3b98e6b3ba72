"""
Tests for the ewaste-verify polling CLI. HTTP is replaced by a mock session.
"""
import json
from unittest.mock import MagicMock

import requests

from ewaste_ledger import verify_cli

PENDING = {"submission_id": "abc123", "records": [], "unavailable": "NotYetAnchored",
           "message": "pending"}
VERIFIED = {"submission_id": "abc123", "unavailable": None, "message": None,
            "records": [{"transaction_hash": "0x" + "ab" * 32,
                         "timestamp_epoch_sec": 1700000000, "status": "Pending"}]}


def response(body):
    resp = MagicMock()
    resp.json.return_value = dict(body)
    return resp


def test_backoff_doubles_between_attempts():
    session = MagicMock()
    session.get.return_value = response(PENDING)
    delays = []

    result = verify_cli.poll_submission(session, "http://api", "abc123", attempts=4,
                                        initial_delay=1.0, sleep=delays.append)

    assert delays == [1.0, 2.0, 4.0]
    assert result["unavailable"] == "NotYetAnchored"
    assert result["attempts"] == 4
    session.get.assert_called_with("http://api/submissions/abc123/verification", timeout=15)


def test_backoff_is_capped():
    session = MagicMock()
    session.get.return_value = response(PENDING)
    delays = []
    verify_cli.poll_submission(session, "http://api", "abc123", attempts=5,
                               initial_delay=4.0, max_delay=10.0, sleep=delays.append)
    assert delays == [4.0, 8.0, 10.0, 10.0]


def test_stops_once_verified():
    session = MagicMock()
    session.get.side_effect = [response(PENDING), response(VERIFIED)]
    delays = []
    result = verify_cli.poll_submission(session, "http://api", "abc123", attempts=5,
                                        sleep=delays.append)
    assert result["attempts"] == 2
    assert delays == [1.0]
    assert len(result["records"]) == 1


def test_transport_errors_count_as_attempts():
    session = MagicMock()
    session.get.side_effect = requests.exceptions.ConnectionError("refused")
    result = verify_cli.poll_submission(session, "http://api", "abc123", attempts=2,
                                        sleep=lambda _: None)
    assert result["unavailable"] == "ApiUnreachable"
    assert result["attempts"] == 2


def test_build_session_sets_role():
    assert verify_cli.build_session("vendor").headers["X-Role"] == "vendor"


def test_main_exit_code_and_report(monkeypatch, tmp_path, capsys):
    outcomes = {"abc123": {**VERIFIED, "attempts": 1},
                "def456": {**PENDING, "submission_id": "def456", "attempts": 3}}
    monkeypatch.setattr(verify_cli, "poll_submission",
                        lambda session, base, sid, **kw: outcomes[sid])
    out = tmp_path / "report.json"

    assert verify_cli.main(["abc123", "def456", "--output", str(out)]) == 1
    assert "1/2 verified" in capsys.readouterr().out
    report = json.loads(out.read_text())
    assert [r["submission_id"] for r in report["results"]] == ["abc123", "def456"]

    assert verify_cli.main(["abc123"]) == 0
