from __future__ import annotations

from dataclasses import dataclass

import httpx
from fastapi.concurrency import run_in_threadpool

from notifier.channels.email import EmailChannel, SmtpTransport
from notifier.channels.telegram import TelegramChannel
from notifier.config import Settings
from notifier.orchestrator import DigestOrchestrator
from notifier.repositories.contacts import ContactsRepository
from notifier.repositories.database import Database
from notifier.repositories.digest_log import DigestLogRepository
from notifier.repositories.jobs import JobsRepository
from notifier.scheduler import DigestScheduler
from notifier.telegram_api import TelegramBotClient
from notifier.webhook import TelegramWebhookMatcher


@dataclass
class AppContext:
    """Every long-lived collaborator, built once per process."""

    settings: Settings
    database: Database
    jobs: JobsRepository
    contacts: ContactsRepository
    digest_log: DigestLogRepository
    telegram_client: TelegramBotClient
    email_channel: EmailChannel
    telegram_channel: TelegramChannel
    orchestrator: DigestOrchestrator
    scheduler: DigestScheduler
    webhook: TelegramWebhookMatcher

    async def start(self, *, start_scheduler: bool = True) -> None:
        await run_in_threadpool(self.database.connect)
        if start_scheduler:
            self.scheduler.start()

    async def close(self) -> None:
        await self.scheduler.stop()
        await self.telegram_client.aclose()
        await run_in_threadpool(self.database.close)


def build_context(
    settings: Settings,
    *,
    http_client: httpx.AsyncClient | None = None,
    smtp_transport: SmtpTransport | None = None,
) -> AppContext:
    database = Database(settings.database_path)
    jobs = JobsRepository(
        database,
        site_url=settings.site_url,
        primary_job_type=settings.primary_job_type,
    )
    contacts = ContactsRepository(database)
    digest_log = DigestLogRepository(database)
    telegram_client = TelegramBotClient(
        bot_token=settings.telegram.bot_token,
        api_base_url=settings.telegram.api_base_url,
        timeout_seconds=settings.telegram.timeout_seconds,
        disable_link_preview=settings.telegram.disable_link_preview,
        client=http_client,
    )
    email_channel = EmailChannel(settings, digest_log, transport=smtp_transport)
    telegram_channel = TelegramChannel(settings.telegram, digest_log, telegram_client)
    orchestrator = DigestOrchestrator(
        settings=settings,
        jobs=jobs,
        contacts=contacts,
        digest_log=digest_log,
        email_channel=email_channel,
        telegram_channel=telegram_channel,
    )
    scheduler = DigestScheduler(
        orchestrator,
        interval_seconds=settings.schedule_interval_seconds,
        enabled=settings.enabled,
    )
    webhook = TelegramWebhookMatcher(
        contacts,
        telegram_client,
        country_code=settings.telegram.default_country_code,
    )
    return AppContext(
        settings=settings,
        database=database,
        jobs=jobs,
        contacts=contacts,
        digest_log=digest_log,
        telegram_client=telegram_client,
        email_channel=email_channel,
        telegram_channel=telegram_channel,
        orchestrator=orchestrator,
        scheduler=scheduler,
        webhook=webhook,
    )
