from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
from collections.abc import Mapping, Sequence
from typing import Any

from common.utils import chunked
from fastapi.concurrency import run_in_threadpool

from notifier.models import ChannelName, ChannelSummary, Contact, DeliveryOutcome, Job
from notifier.pool import run_bounded
from notifier.repositories.digest_log import DigestLogRepository

LOGGER = logging.getLogger("jobboard.notifier.channels")

NO_JOBS_ERROR = "no jobs available for contact"


class DeliveryChannel:
    """Batching, bounded concurrency and retry shared by every channel.

    Subclasses provide ``recipient`` (address written to outcomes and the
    digest log), ``render`` (message payload for one contact) and
    ``deliver`` (one provider call).
    """

    name: ChannelName
    batch_label: str

    def __init__(
        self,
        *,
        digest_log: DigestLogRepository,
        batch_size: int,
        batch_pause_seconds: float,
        concurrency: int,
        max_retries: int,
        retry_backoff_seconds: Sequence[float],
        dry_run: bool,
    ) -> None:
        self.digest_log = digest_log
        self.batch_size = max(1, batch_size)
        self.batch_pause_seconds = batch_pause_seconds
        self.concurrency = max(1, concurrency)
        self.max_retries = max(0, max_retries)
        self.retry_backoff_seconds = list(retry_backoff_seconds)
        self.dry_run = dry_run

    def recipient(self, contact: Contact) -> str:
        raise NotImplementedError

    def render(self, contact: Contact, jobs: list[Job]) -> Any:
        raise NotImplementedError

    async def deliver(self, contact: Contact, payload: Any) -> None:
        raise NotImplementedError

    def backoff_for(self, attempt: int) -> float:
        if not self.retry_backoff_seconds:
            return 0.0
        return self.retry_backoff_seconds[min(attempt, len(self.retry_backoff_seconds) - 1)]

    async def send_batches(
        self,
        contacts: Sequence[Contact],
        jobs: Sequence[Job],
        jobs_by_contact: Mapping[int, list[Job]] | None,
        batch_id: str,
        summary: ChannelSummary,
    ) -> ChannelSummary:
        batches = list(chunked(contacts, self.batch_size))
        for index, batch in enumerate(batches, start=1):
            label = f"{batch_id}-{self.batch_label}{index}"

            async def handle(contact: Contact, label: str = label) -> DeliveryOutcome:
                return await self.send_with_retry(
                    contact, resolve_jobs(contact, jobs, jobs_by_contact), label
                )

            outcomes = await run_bounded(batch, handle, self.concurrency)
            for outcome in outcomes:
                summary.record(outcome)

            if index < len(batches) and self.batch_pause_seconds > 0:
                await asyncio.sleep(self.batch_pause_seconds)

        LOGGER.info(
            json.dumps(
                {
                    "event": "channel_complete",
                    "channel": self.name,
                    "batch_id": batch_id,
                    "attempted": summary.attempted,
                    "succeeded": summary.succeeded,
                    "failed": summary.failed,
                    "skipped": summary.skipped,
                }
            )
        )
        return summary

    async def send_with_retry(
        self, contact: Contact, jobs: list[Job], batch_id: str
    ) -> DeliveryOutcome:
        recipient = self.recipient(contact)
        job_keys = [job.key for job in jobs]
        if not jobs:
            return DeliveryOutcome(
                ok=False,
                channel=self.name,
                contact_id=contact.id,
                contact=recipient,
                attempts=0,
                batch_id=batch_id,
                job_keys=[],
                error=NO_JOBS_ERROR,
            )

        payload = self.render(contact, jobs)
        job_refs = [f"{source}:{job_id}" for source, job_id in job_keys]
        attempt = 0
        while True:
            try:
                if not self.dry_run:
                    await self.deliver(contact, payload)
            except Exception as exc:
                error = str(exc) or exc.__class__.__name__
                await self._record_attempt(
                    ok=False,
                    contact=contact,
                    recipient=recipient,
                    batch_id=batch_id,
                    job_refs=job_refs,
                    attempt=attempt,
                    error=error,
                )
                if attempt >= self.max_retries:
                    return DeliveryOutcome(
                        ok=False,
                        channel=self.name,
                        contact_id=contact.id,
                        contact=recipient,
                        attempts=attempt + 1,
                        batch_id=batch_id,
                        job_keys=job_keys,
                        error=error,
                    )
                await asyncio.sleep(self.backoff_for(attempt))
                attempt += 1
                continue

            await self._record_attempt(
                ok=True,
                contact=contact,
                recipient=recipient,
                batch_id=batch_id,
                job_refs=job_refs,
                attempt=attempt,
                error=None,
            )
            return DeliveryOutcome(
                ok=True,
                channel=self.name,
                contact_id=contact.id,
                contact=recipient,
                attempts=attempt + 1,
                batch_id=batch_id,
                job_keys=job_keys,
            )

    async def _record_attempt(
        self,
        *,
        ok: bool,
        contact: Contact,
        recipient: str,
        batch_id: str,
        job_refs: list[str],
        attempt: int,
        error: str | None,
    ) -> None:
        LOGGER.log(
            logging.INFO if ok else logging.WARNING,
            json.dumps(
                {
                    "event": "delivery_attempt",
                    "channel": self.name,
                    "status": "SUCCESS" if ok else "FAILED",
                    "contact_id": contact.id,
                    "batch_id": batch_id,
                    "attempt": attempt,
                    "dry_run": self.dry_run,
                    "error": error,
                }
            ),
        )
        # The provider call already happened; a log write failure must not change the outcome.
        try:
            if ok:
                await run_in_threadpool(
                    self.digest_log.log_success,
                    channel=self.name,
                    recipient=recipient,
                    contact_id=contact.id,
                    batch_id=batch_id,
                    job_ids=job_refs,
                    attempt=attempt,
                    dry_run=self.dry_run,
                )
            else:
                await run_in_threadpool(
                    self.digest_log.log_failure,
                    channel=self.name,
                    recipient=recipient,
                    contact_id=contact.id,
                    batch_id=batch_id,
                    job_ids=job_refs,
                    attempt=attempt,
                    error=error or "unknown error",
                    dry_run=self.dry_run,
                )
        except sqlite3.Error:
            LOGGER.exception(
                json.dumps(
                    {"event": "digest_log_write_failed", "channel": self.name, "batch_id": batch_id}
                )
            )


def resolve_jobs(
    contact: Contact,
    jobs: Sequence[Job],
    jobs_by_contact: Mapping[int, list[Job]] | None,
) -> list[Job]:
    if jobs_by_contact is not None and contact.id in jobs_by_contact:
        return list(jobs_by_contact[contact.id])
    return list(jobs)
