from __future__ import annotations

import json
import logging
import sqlite3
import threading
from pathlib import Path

LOGGER = logging.getLogger("jobboard.notifier.database")

SCHEMA = """
CREATE TABLE IF NOT EXISTS jobs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    title TEXT NOT NULL,
    company TEXT,
    location TEXT,
    isRemote INTEGER,
    locationType TEXT,
    type TEXT,
    experienceLevel TEXT,
    applyUrl TEXT,
    createdAt TEXT NOT NULL,
    notify_sent INTEGER NOT NULL DEFAULT 0,
    notify_sent_at TEXT
);

CREATE TABLE IF NOT EXISTS aijobs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    title TEXT NOT NULL,
    company TEXT,
    location TEXT,
    remote TEXT,
    job_type TEXT,
    experience TEXT,
    job_url TEXT,
    posted_date TEXT,
    created_at TEXT,
    notify_sent INTEGER NOT NULL DEFAULT 0,
    notify_sent_at TEXT
);

CREATE TABLE IF NOT EXISTS marketing_contacts (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    full_name TEXT,
    email TEXT,
    mobile_no TEXT,
    branch TEXT,
    experience TEXT,
    telegram_chat_id TEXT,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS digest_logs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    status TEXT NOT NULL,
    channel TEXT NOT NULL,
    recipient TEXT NOT NULL,
    contact_id INTEGER,
    batch_id TEXT NOT NULL,
    job_ids_json TEXT NOT NULL DEFAULT '[]',
    attempt INTEGER NOT NULL DEFAULT 0,
    dry_run INTEGER NOT NULL DEFAULT 0,
    error_message TEXT,
    logged_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_digest_logs_logged_at ON digest_logs (logged_at);
CREATE INDEX IF NOT EXISTS idx_marketing_contacts_mobile ON marketing_contacts (mobile_no);
"""

NOTIFY_COLUMNS = {
    "notify_sent": "INTEGER NOT NULL DEFAULT 0",
    "notify_sent_at": "TEXT",
}
JOB_TABLES = ("jobs", "aijobs")


class Database:
    """Shared sqlite handle for the job, contact and digest log repositories."""

    def __init__(self, database_path: str | Path) -> None:
        self.database_path = Path(database_path)
        self._connection: sqlite3.Connection | None = None
        self.lock = threading.RLock()

    @property
    def connection(self) -> sqlite3.Connection:
        if self._connection is None:
            raise RuntimeError("Database connection is not initialized")
        return self._connection

    def connect(self) -> None:
        with self.lock:
            if self._connection is not None:
                return
            self.database_path.parent.mkdir(parents=True, exist_ok=True)
            self._connection = sqlite3.connect(self.database_path, check_same_thread=False)
            self._connection.row_factory = sqlite3.Row
            self._connection.executescript(SCHEMA)
            for table in JOB_TABLES:
                self._ensure_notify_columns(table)
            self._connection.commit()

    def table_columns(self, table: str) -> set[str]:
        with self.lock:
            rows = self.connection.execute(f"PRAGMA table_info({table})").fetchall()
        return {row["name"] for row in rows}

    def _ensure_notify_columns(self, table: str) -> None:
        existing = self.table_columns(table)
        for column_name, definition in NOTIFY_COLUMNS.items():
            if column_name in existing:
                continue
            LOGGER.info(
                json.dumps({"event": "column_added", "table": table, "column": column_name})
            )
            self.connection.execute(f"ALTER TABLE {table} ADD COLUMN {column_name} {definition}")

    def close(self) -> None:
        with self.lock:
            if self._connection is None:
                return
            self._connection.close()
            self._connection = None
