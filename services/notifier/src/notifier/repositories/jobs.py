from __future__ import annotations

import json
import logging
import sqlite3
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime

from common.utils import now_utc_iso, parse_iso_datetime

from notifier.models import JOB_SOURCES, Job, JobSource, PendingJobCounts
from notifier.repositories.database import Database

LOGGER = logging.getLogger("jobboard.notifier.jobs")

REMOTE_TRUE = {"remote", "yes", "true", "1"}
REMOTE_FALSE = {"no", "false", "0", "on-site", "onsite"}

SOURCE_TABLES: dict[JobSource, str] = {"primary": "jobs", "secondary": "aijobs"}
SOURCE_LINK_PATHS: dict[JobSource, str] = {"primary": "jobs", "secondary": "aijobs"}
EARLIEST = datetime.min.replace(tzinfo=UTC)

# Logical field -> physical column candidates, in order of preference.
COLUMN_CANDIDATES: dict[JobSource, dict[str, tuple[str, ...]]] = {
    "primary": {
        "title": ("title",),
        "company": ("company", "company_name", "companyName"),
        "location": ("location",),
        "is_remote": ("isRemote", "is_remote", "remote"),
        "location_type": ("locationType", "location_type"),
        "job_type": ("type", "jobType", "job_type"),
        "experience": ("experienceLevel", "experience_level", "experience"),
        "apply_url": ("applyUrl", "apply_url", "job_url", "url"),
        "created_at": ("createdAt", "created_at"),
        "posted_at": ("postedAt", "posted_date"),
    },
    "secondary": {
        "title": ("title",),
        "company": ("company", "company_name"),
        "location": ("location",),
        "is_remote": ("remote", "is_remote", "isRemote"),
        "location_type": ("job_type", "location_type"),
        "job_type": ("job_type", "type"),
        "experience": ("experience", "experience_level", "experienceLevel"),
        "apply_url": ("job_url", "apply_url", "applyUrl", "url"),
        "created_at": ("created_at", "createdAt"),
        "posted_at": ("posted_date", "postedAt"),
    },
}

DEFAULT_COLUMNS: dict[JobSource, dict[str, str | None]] = {
    "primary": {
        "title": "title",
        "company": "company",
        "location": "location",
        "is_remote": "isRemote",
        "location_type": "locationType",
        "job_type": "type",
        "experience": "experienceLevel",
        "apply_url": "applyUrl",
        "created_at": "createdAt",
        "posted_at": None,
    },
    "secondary": {
        "title": "title",
        "company": "company",
        "location": "location",
        "is_remote": "remote",
        "location_type": "job_type",
        "job_type": "job_type",
        "experience": "experience",
        "apply_url": "job_url",
        "created_at": "created_at",
        "posted_at": "posted_date",
    },
}


@dataclass(frozen=True)
class ColumnMap:
    table: str
    columns: Mapping[str, str | None]

    def select(self, field: str) -> str:
        column = self.columns.get(field)
        return f'"{column}"' if column else "NULL"

    def created_expression(self) -> str:
        created = self.columns.get("created_at")
        posted = self.columns.get("posted_at")
        if created and posted:
            return f'COALESCE("{created}", "{posted}")'
        if created:
            return f'"{created}"'
        if posted:
            return f'"{posted}"'
        return "NULL"


def resolve_column_map(
    table: str,
    existing_columns: set[str],
    candidates: Mapping[str, Sequence[str]],
) -> ColumnMap:
    """Pick the first existing physical column for every logical field."""
    lowered = {column.lower(): column for column in existing_columns}
    resolved: dict[str, str | None] = {}
    for field, options in candidates.items():
        resolved[field] = next(
            (lowered[option.lower()] for option in options if option.lower() in lowered),
            None,
        )
    return ColumnMap(table=table, columns=resolved)


def normalize_remote(value: object) -> bool | None:
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    normalized = str(value).strip().lower()
    if normalized in REMOTE_TRUE:
        return True
    if normalized in REMOTE_FALSE:
        return False
    return None


def build_default_apply_url(site_url: str, source: JobSource, job_id: int) -> str:
    return f"{site_url}/{SOURCE_LINK_PATHS[source]}/{job_id}"


class JobsRepository:
    def __init__(
        self,
        database: Database,
        *,
        site_url: str,
        primary_job_type: str | None = None,
    ) -> None:
        self.database = database
        self.site_url = site_url.rstrip("/")
        self.primary_job_type = primary_job_type
        self._column_maps: dict[JobSource, ColumnMap] | None = None

    def column_maps(self) -> dict[JobSource, ColumnMap]:
        if self._column_maps is None:
            self._column_maps = self._introspect_columns()
        return self._column_maps

    def _introspect_columns(self) -> dict[JobSource, ColumnMap]:
        maps: dict[JobSource, ColumnMap] = {}
        for source in JOB_SOURCES:
            table = SOURCE_TABLES[source]
            try:
                existing = self.database.table_columns(table)
                if not existing:
                    raise LookupError(f"table {table} has no columns")
                maps[source] = resolve_column_map(table, existing, COLUMN_CANDIDATES[source])
            except (sqlite3.Error, LookupError) as exc:
                LOGGER.warning(
                    json.dumps(
                        {
                            "event": "column_introspection_failed",
                            "table": table,
                            "error": str(exc),
                        }
                    )
                )
                maps[source] = ColumnMap(table=table, columns=DEFAULT_COLUMNS[source])
        return maps

    def _source_query(
        self,
        source: JobSource,
        *,
        created_after: datetime | None,
        select_rows: bool,
    ) -> tuple[str, list[object]]:
        column_map = self.column_maps()[source]
        created = column_map.created_expression()
        # julianday() accepts both separators and UTC offsets; naive values read as UTC.
        created_at = f"julianday({created})"
        clauses = ["notify_sent = 0"]
        params: list[object] = []
        if source == "primary" and self.primary_job_type and column_map.columns.get("job_type"):
            clauses.append(f"{column_map.select('job_type')} = ?")
            params.append(self.primary_job_type)
        if created_after is not None:
            clauses.append(f"{created_at} >= julianday(?)")
            params.append(created_after.isoformat())
        where = " AND ".join(clauses)
        if not select_rows:
            return f"SELECT COUNT(*) AS total FROM {column_map.table} WHERE {where}", params
        query = f"""
            SELECT
                id,
                {column_map.select('title')} AS title,
                {column_map.select('company')} AS company_name,
                {column_map.select('location')} AS location,
                {column_map.select('is_remote')} AS is_remote,
                {column_map.select('location_type')} AS location_type,
                {column_map.select('job_type')} AS job_type,
                {column_map.select('experience')} AS experience,
                {column_map.select('apply_url')} AS apply_url,
                {created} AS created_at,
                notify_sent,
                notify_sent_at
            FROM {column_map.table}
            WHERE {where}
            ORDER BY {created_at} IS NULL, {created_at} ASC, id ASC
            LIMIT ?
        """
        return query, params

    def fetch_pending_jobs(self, limit: int, created_after: datetime | None = None) -> list[Job]:
        """Return not-yet-notified jobs from both tables, oldest first."""
        if limit <= 0:
            return []
        jobs: list[Job] = []
        with self.database.lock:
            for source in JOB_SOURCES:
                query, params = self._source_query(
                    source, created_after=created_after, select_rows=True
                )
                rows = self.database.connection.execute(query, [*params, limit]).fetchall()
                jobs.extend(self._to_job(source, row) for row in rows)
        jobs.sort(key=pending_sort_key)
        return jobs[:limit]

    def count_pending_jobs(self, created_after: datetime | None = None) -> PendingJobCounts:
        totals: dict[JobSource, int] = {}
        with self.database.lock:
            for source in JOB_SOURCES:
                query, params = self._source_query(
                    source, created_after=created_after, select_rows=False
                )
                row = self.database.connection.execute(query, params).fetchone()
                totals[source] = int(row["total"]) if row else 0
        return PendingJobCounts(
            jobs=totals["primary"],
            ai_jobs=totals["secondary"],
            total=totals["primary"] + totals["secondary"],
        )

    def mark_jobs_notified(self, job_ids_by_source: Mapping[str, Sequence[int]]) -> dict[str, int]:
        """Flag exactly the given ids as notified; already-notified ids are left untouched."""
        updated: dict[str, int] = {source: 0 for source in JOB_SOURCES}
        pending = {
            source: sorted({int(job_id) for job_id in job_ids_by_source.get(source, [])})
            for source in JOB_SOURCES
        }
        unknown = set(job_ids_by_source) - set(JOB_SOURCES)
        if unknown:
            raise ValueError(f"Unknown job source(s): {', '.join(sorted(unknown))}")
        if not any(pending.values()):
            return updated

        sent_at = now_utc_iso()
        with self.database.lock, self.database.connection:
            for source, ids in pending.items():
                if not ids:
                    continue
                placeholders = ", ".join("?" for _ in ids)
                cursor = self.database.connection.execute(
                    f"""
                    UPDATE {SOURCE_TABLES[source]}
                    SET notify_sent = 1,
                        notify_sent_at = ?
                    WHERE notify_sent = 0
                      AND id IN ({placeholders})
                    """,
                    [sent_at, *ids],
                )
                updated[source] = cursor.rowcount
        LOGGER.info(json.dumps({"event": "jobs_marked_notified", "updated": updated}))
        return updated

    def _to_job(self, source: JobSource, row: sqlite3.Row) -> Job:
        job_id = int(row["id"])
        apply_url = (row["apply_url"] or "").strip() or build_default_apply_url(
            self.site_url, source, job_id
        )
        return Job(
            source=source,
            id=job_id,
            title=(row["title"] or "").strip() or "Open role",
            company_name=_clean(row["company_name"]),
            location=_clean(row["location"]),
            location_type=_clean(row["location_type"]),
            is_remote=normalize_remote(row["is_remote"]),
            experience=_clean(row["experience"]),
            job_type=_clean(row["job_type"]),
            apply_url=apply_url,
            created_at=parse_iso_datetime(row["created_at"]),
            notify_sent=bool(row["notify_sent"]),
            notify_sent_at=parse_iso_datetime(row["notify_sent_at"]),
        )


def pending_sort_key(job: Job) -> tuple[bool, datetime, str, int]:
    # Jobs without a creation time sort last.
    created = job.created_at
    return (created is None, created or EARLIEST, job.source, job.id)


def _clean(value: object) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None
