from __future__ import annotations

from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any

import pytest
from notifier.config import Settings
from notifier.repositories.database import Database

JOB_DEFAULTS: dict[str, dict[str, Any]] = {
    "jobs": {
        "title": "Backend Engineer",
        "company": "Acme",
        "location": "Bengaluru",
        "createdAt": "2026-02-01T09:00:00+00:00",
    },
    "aijobs": {
        "title": "ML Engineer",
        "company": "Deep Labs",
        "location": "Pune",
        "created_at": "2026-02-01T09:00:00+00:00",
    },
}
CONTACT_DEFAULTS: dict[str, Any] = {
    "full_name": "Ada Lovelace",
    "email": "ada@example.com",
    "created_at": "2026-02-01T09:00:00+00:00",
}


def insert_row(database: Database, table: str, values: dict[str, Any]) -> int:
    columns = ", ".join(values)
    placeholders = ", ".join("?" for _ in values)
    with database.lock, database.connection:
        cursor = database.connection.execute(
            f"INSERT INTO {table} ({columns}) VALUES ({placeholders})",
            list(values.values()),
        )
    return int(cursor.lastrowid)


@pytest.fixture
def database_path(tmp_path: Path) -> Path:
    return tmp_path / "notifier.sqlite3"


@pytest.fixture
def database(database_path: Path) -> Iterator[Database]:
    db = Database(database_path)
    db.connect()
    yield db
    db.close()


@pytest.fixture
def add_job(database: Database) -> Callable[..., int]:
    def _add(table: str = "jobs", **values: Any) -> int:
        return insert_row(database, table, {**JOB_DEFAULTS[table], **values})

    return _add


@pytest.fixture
def add_contact(database: Database) -> Callable[..., int]:
    def _add(**values: Any) -> int:
        return insert_row(database, "marketing_contacts", {**CONTACT_DEFAULTS, **values})

    return _add


@pytest.fixture
def make_settings(database_path: Path) -> Callable[..., Settings]:
    def _make(**overrides: Any) -> Settings:
        values: dict[str, Any] = {
            "database_path": database_path,
            "dry_run": True,
            "batch_pause_seconds": 0,
            "retry_backoff_seconds": [0.0],
        }
        values.update(overrides)
        return Settings(**values)

    return _make
