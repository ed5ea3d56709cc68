from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

JobSource = Literal["primary", "secondary"]
JOB_SOURCES: tuple[JobSource, ...] = ("primary", "secondary")
ChannelName = Literal["email", "telegram"]
JobKey = tuple[JobSource, int]


class Job(BaseModel):
    source: JobSource
    id: int
    title: str
    company_name: str | None = None
    location: str | None = None
    location_type: str | None = None
    is_remote: bool | None = None
    experience: str | None = None
    job_type: str | None = None
    apply_url: str | None = None
    created_at: datetime | None = None
    notify_sent: bool = False
    notify_sent_at: datetime | None = None

    @property
    def key(self) -> JobKey:
        return (self.source, self.id)


class Contact(BaseModel):
    id: int
    full_name: str
    email: str
    mobile_no: str | None = None
    branch: str | None = None
    experience: str | None = None
    telegram_chat_id: str | None = None
    created_at: datetime | None = None


class EmailContent(BaseModel):
    subject: str
    html: str
    text: str


class DeliveryOutcome(BaseModel):
    ok: bool
    channel: ChannelName
    contact_id: int
    contact: str
    attempts: int
    batch_id: str
    job_keys: list[JobKey] = Field(default_factory=list)
    error: str | None = None


class ChannelSummary(BaseModel):
    attempted: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    reason: str | None = None
    successes: list[DeliveryOutcome] = Field(default_factory=list)
    failures: list[DeliveryOutcome] = Field(default_factory=list)

    def record(self, outcome: DeliveryOutcome) -> None:
        self.attempted += 1
        if outcome.ok:
            self.succeeded += 1
            self.successes.append(outcome)
        else:
            self.failed += 1
            self.failures.append(outcome)


class RunError(BaseModel):
    stage: str
    message: str
    contact: str | None = None


class AlertReport(BaseModel):
    pending_jobs: int
    failure_rate: float
    backlog_exceeded: bool
    failure_rate_exceeded: bool


class RunSummary(BaseModel):
    ok: bool = False
    skipped: bool = False
    reason: str | None = None
    source: str
    batch_id: str | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None
    jobs_queried: int = 0
    jobs_included: int = 0
    contacts_total: int = 0
    contacts_attempted: int = 0
    contacts_succeeded: int = 0
    contacts_failed: int = 0
    channels: dict[str, ChannelSummary] = Field(default_factory=dict)
    jobs_marked_notified: dict[str, list[int]] = Field(default_factory=dict)
    errors: list[RunError] = Field(default_factory=list)
    alerts: AlertReport | None = None


class DigestLogEntry(BaseModel):
    status: Literal["SUCCESS", "FAILED"]
    channel: ChannelName
    recipient: str
    contact_id: int | None = None
    batch_id: str
    job_ids: list[str] = Field(default_factory=list)
    attempt: int = 0
    dry_run: bool = False
    error: str | None = None
    logged_at: datetime | None = None


class FailureRate(BaseModel):
    failure_rate: float
    total: int
    failed: int


class PendingJobCounts(BaseModel):
    jobs: int
    ai_jobs: int
    total: int


class HealthReport(BaseModel):
    last_run_at: datetime | None = None
    last_batch_id: str | None = None
    running: bool = False
    pending_jobs_count: int
    failure_rate_24h: float
    runs_24h: int
    failures_24h: int
