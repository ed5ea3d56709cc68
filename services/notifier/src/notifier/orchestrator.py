from __future__ import annotations

import asyncio
import json
import logging
import secrets
from collections.abc import Mapping, Sequence
from datetime import datetime
from typing import Protocol

from common.utils import now_utc
from fastapi.concurrency import run_in_threadpool

from notifier.config import Settings
from notifier.models import (
    JOB_SOURCES,
    AlertReport,
    ChannelSummary,
    Contact,
    DeliveryOutcome,
    HealthReport,
    Job,
    RunError,
    RunSummary,
)
from notifier.repositories.contacts import ContactsRepository
from notifier.repositories.digest_log import DigestLogRepository
from notifier.repositories.jobs import JobsRepository, pending_sort_key
from notifier.segmentation import build_jobs_by_contact

LOGGER = logging.getLogger("jobboard.notifier.orchestrator")

FAILURE_RATE_WINDOW_HOURS = 24


class DigestChannel(Protocol):
    name: str

    async def send_digest(
        self,
        contacts: Sequence[Contact],
        jobs: Sequence[Job],
        jobs_by_contact: Mapping[int, list[Job]] | None = None,
        *,
        batch_id: str,
    ) -> ChannelSummary: ...


def generate_batch_id() -> str:
    return f"mkt-{int(now_utc().timestamp() * 1000)}-{secrets.token_hex(4)}"


class DigestOrchestrator:
    """Runs one digest cycle: pending jobs in, deliveries out, notified jobs flagged."""

    def __init__(
        self,
        *,
        settings: Settings,
        jobs: JobsRepository,
        contacts: ContactsRepository,
        digest_log: DigestLogRepository,
        email_channel: DigestChannel,
        telegram_channel: DigestChannel,
    ) -> None:
        self.settings = settings
        self.jobs = jobs
        self.contacts = contacts
        self.digest_log = digest_log
        self.channels: list[DigestChannel] = [email_channel, telegram_channel]
        self.running = False
        self.last_summary: RunSummary | None = None

    @property
    def last_run_at(self) -> datetime | None:
        return self.last_summary.finished_at if self.last_summary else None

    @property
    def last_batch_id(self) -> str | None:
        return self.last_summary.batch_id if self.last_summary else None

    async def run(
        self, source: str = "manual", *, force: bool = False, limit: int | None = None
    ) -> RunSummary:
        if not self.settings.enabled:
            return RunSummary(
                ok=False,
                skipped=True,
                reason="Marketing notifications disabled via configuration",
                source=source,
            )
        if self.running and not force:
            return RunSummary(
                ok=False,
                skipped=True,
                reason="A marketing notification run is already in progress",
                source=source,
            )

        self.running = True
        summary = RunSummary(source=source, batch_id=generate_batch_id(), started_at=now_utc())
        LOGGER.info(
            json.dumps(
                {
                    "event": "run_started",
                    "source": source,
                    "batch_id": summary.batch_id,
                    "force": force,
                }
            )
        )
        try:
            await self._execute(summary, force=force, limit=limit)
        except Exception as exc:
            LOGGER.exception(
                json.dumps({"event": "run_failed", "batch_id": summary.batch_id, "error": str(exc)})
            )
            summary.errors.append(RunError(stage="orchestrator", message=str(exc)))
            summary.ok = False
        finally:
            summary.finished_at = now_utc()
            self.last_summary = summary
            self.running = False
            LOGGER.info(
                json.dumps(
                    {
                        "event": "run_finished",
                        "batch_id": summary.batch_id,
                        "ok": summary.ok,
                        "skipped": summary.skipped,
                        "jobs_included": summary.jobs_included,
                        "contacts_succeeded": summary.contacts_succeeded,
                        "contacts_failed": summary.contacts_failed,
                    }
                )
            )
        return summary

    async def _execute(self, summary: RunSummary, *, force: bool, limit: int | None) -> None:
        fetch_limit = limit if limit and limit > 0 else self.settings.job_fetch_limit
        created_after = self.settings.created_after(now_utc())
        pending = await run_in_threadpool(self.jobs.fetch_pending_jobs, fetch_limit, created_after)
        summary.jobs_queried = len(pending)

        if not pending and not force:
            summary.ok = True
            summary.skipped = True
            summary.reason = "No pending jobs found"
            return

        digest = sorted(pending, key=pending_sort_key)[: self.settings.digest_size]
        summary.jobs_included = len(digest)

        contacts = await run_in_threadpool(
            self.contacts.fetch_contacts, self.settings.contact_fetch_limit
        )
        summary.contacts_total = len(contacts)
        if not contacts:
            summary.ok = False
            summary.reason = "No marketing contacts available"
            summary.errors.append(RunError(stage="contacts", message="No marketing contacts found"))
            return

        jobs_by_contact = build_jobs_by_contact(contacts, digest)
        summary.contacts_attempted = len(contacts)

        results = await asyncio.gather(
            *(
                channel.send_digest(contacts, digest, jobs_by_contact, batch_id=summary.batch_id)
                for channel in self.channels
            ),
            return_exceptions=True,
        )

        successes: list[DeliveryOutcome] = []
        for channel, result in zip(self.channels, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                LOGGER.error(
                    json.dumps(
                        {
                            "event": "channel_failed",
                            "channel": channel.name,
                            "batch_id": summary.batch_id,
                            "error": str(result),
                        }
                    )
                )
                summary.channels[channel.name] = ChannelSummary(reason=str(result))
                summary.errors.append(RunError(stage=channel.name, message=str(result)))
                continue
            summary.channels[channel.name] = result
            successes.extend(result.successes)
            summary.errors.extend(
                RunError(
                    stage=channel.name,
                    message=failure.error or "Unknown error",
                    contact=failure.contact,
                )
                for failure in result.failures
            )

        succeeded_ids = {outcome.contact_id for outcome in successes}
        summary.contacts_succeeded = len(succeeded_ids)
        summary.contacts_failed = summary.contacts_attempted - summary.contacts_succeeded

        notified = notified_job_ids(successes)
        if successes and any(notified.values()):
            await run_in_threadpool(self.jobs.mark_jobs_notified, notified)
            summary.jobs_marked_notified = notified

        summary.ok = summary.contacts_failed == 0
        summary.alerts = await self.evaluate_alerts()

    async def evaluate_alerts(self) -> AlertReport | None:
        """Warn when the backlog or the rolling failure rate crosses its threshold."""
        thresholds = self.settings.alert
        try:
            counts = await run_in_threadpool(
                self.jobs.count_pending_jobs, self.settings.created_after(now_utc())
            )
            failure_rate = await run_in_threadpool(
                self.digest_log.get_failure_rate, FAILURE_RATE_WINDOW_HOURS
            )
        except Exception as exc:
            LOGGER.exception(json.dumps({"event": "alert_evaluation_failed", "error": str(exc)}))
            return None

        report = AlertReport(
            pending_jobs=counts.total,
            failure_rate=round(failure_rate.failure_rate, 2),
            backlog_exceeded=counts.total > thresholds.backlog_threshold,
            failure_rate_exceeded=failure_rate.failure_rate > thresholds.failure_rate_threshold,
        )
        if report.backlog_exceeded:
            LOGGER.warning(
                json.dumps(
                    {
                        "event": "backlog_alert",
                        "pending_jobs": report.pending_jobs,
                        "threshold": thresholds.backlog_threshold,
                    }
                )
            )
        if report.failure_rate_exceeded:
            LOGGER.warning(
                json.dumps(
                    {
                        "event": "failure_rate_alert",
                        "failure_rate": report.failure_rate,
                        "threshold": thresholds.failure_rate_threshold,
                    }
                )
            )
        return report

    async def health_report(self) -> HealthReport:
        counts = await run_in_threadpool(
            self.jobs.count_pending_jobs, self.settings.created_after(now_utc())
        )
        failure_rate = await run_in_threadpool(
            self.digest_log.get_failure_rate, FAILURE_RATE_WINDOW_HOURS
        )
        return HealthReport(
            last_run_at=self.last_run_at,
            last_batch_id=self.last_batch_id,
            running=self.running,
            pending_jobs_count=counts.total,
            failure_rate_24h=round(failure_rate.failure_rate, 2),
            runs_24h=failure_rate.total,
            failures_24h=failure_rate.failed,
        )


def notified_job_ids(successes: Sequence[DeliveryOutcome]) -> dict[str, list[int]]:
    """Union per source of every job included in a successful delivery."""
    collected: dict[str, set[int]] = {source: set() for source in JOB_SOURCES}
    for outcome in successes:
        if not outcome.ok:
            continue
        for source, job_id in outcome.job_keys:
            collected[source].add(job_id)
    return {source: sorted(ids) for source, ids in collected.items() if ids}
