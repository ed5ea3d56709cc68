from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from typing import Protocol

from notifier.models import RunSummary

LOGGER = logging.getLogger("jobboard.notifier.scheduler")


class Runnable(Protocol):
    async def run(
        self, source: str = "manual", *, force: bool = False, limit: int | None = None
    ) -> RunSummary: ...


class DigestScheduler:
    def __init__(self, orchestrator: Runnable, *, interval_seconds: float, enabled: bool) -> None:
        self.orchestrator = orchestrator
        self.interval_seconds = interval_seconds
        self.enabled = enabled
        self.task: asyncio.Task | None = None

    @property
    def started(self) -> bool:
        return self.task is not None and not self.task.done()

    def start(self) -> bool:
        if self.started:
            return True
        if not self.enabled or self.interval_seconds <= 0:
            LOGGER.info(
                json.dumps(
                    {
                        "event": "scheduler_disabled",
                        "enabled": self.enabled,
                        "interval_seconds": self.interval_seconds,
                    }
                )
            )
            return False
        self.task = asyncio.create_task(self.loop())
        LOGGER.info(
            json.dumps({"event": "scheduler_started", "interval_seconds": self.interval_seconds})
        )
        return True

    async def stop(self) -> None:
        if self.task is None:
            return
        self.task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self.task
        self.task = None

    async def loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            await self.tick()

    async def tick(self) -> RunSummary | None:
        try:
            summary = await self.orchestrator.run(source="cron")
        except Exception as exc:
            LOGGER.exception(json.dumps({"event": "scheduled_run_failed", "error": str(exc)}))
            return None
        LOGGER.info(
            json.dumps(
                {
                    "event": "scheduled_run_complete",
                    "batch_id": summary.batch_id,
                    "ok": summary.ok,
                    "skipped": summary.skipped,
                }
            )
        )
        return summary
