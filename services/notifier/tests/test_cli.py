from __future__ import annotations

import json
from pathlib import Path

import pytest
from notifier.cli import main

pytestmark = pytest.mark.unit


@pytest.fixture
def environment(monkeypatch: pytest.MonkeyPatch, database_path: Path) -> Path:
    monkeypatch.setenv("NOTIFIER_DB_PATH", str(database_path))
    monkeypatch.setenv("MARKETING_EMAIL_DRY_RUN", "true")
    monkeypatch.setenv("MARKETING_EMAIL_BATCH_PAUSE_SECONDS", "0")
    return database_path


def test_run_prints_summary_and_exits_zero(environment, capsys) -> None:
    exit_code = main(["run"])

    summary = json.loads(capsys.readouterr().out)
    assert exit_code == 0
    assert summary["source"] == "cli"
    assert summary["skipped"] is True


def test_run_delivers_pending_jobs(environment, add_job, add_contact, database, capsys) -> None:
    add_job("jobs")
    add_contact()
    database.close()

    exit_code = main(["run", "--limit", "10"])

    summary = json.loads(capsys.readouterr().out)
    assert exit_code == 0
    assert summary["contacts_succeeded"] == 1
    assert summary["jobs_included"] == 1


def test_run_exits_non_zero_when_contacts_are_missing(
    environment, add_job, database, capsys
) -> None:
    add_job("jobs")
    database.close()

    exit_code = main(["run"])

    summary = json.loads(capsys.readouterr().out)
    assert exit_code == 1
    assert summary["reason"] == "No marketing contacts available"


def test_healthcheck_reports_pending_counts(environment, capsys) -> None:
    exit_code = main(["healthcheck"])

    output = capsys.readouterr().out
    assert exit_code == 0
    assert "healthcheck passed" in output
    assert "'total': 0" in output


def test_invalid_configuration_exits_with_error(
    environment, monkeypatch: pytest.MonkeyPatch, capsys
) -> None:
    monkeypatch.setenv("MARKETING_DIGEST_SIZE", "0")

    exit_code = main(["run"])

    assert exit_code == 1
    assert "digest_size" in capsys.readouterr().out
