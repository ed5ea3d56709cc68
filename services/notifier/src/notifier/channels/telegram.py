from __future__ import annotations

from collections.abc import Mapping, Sequence

from notifier.channels.base import DeliveryChannel
from notifier.config import TelegramSettings
from notifier.errors import ConfigurationError
from notifier.models import ChannelSummary, Contact, Job
from notifier.repositories.digest_log import DigestLogRepository
from notifier.telegram_api import TelegramBotClient
from notifier.templates import build_telegram_message


class TelegramChannel(DeliveryChannel):
    name = "telegram"
    batch_label = "tg"

    def __init__(
        self,
        settings: TelegramSettings,
        digest_log: DigestLogRepository,
        client: TelegramBotClient,
    ) -> None:
        super().__init__(
            digest_log=digest_log,
            batch_size=settings.batch_size,
            batch_pause_seconds=settings.batch_pause_seconds,
            concurrency=settings.concurrency,
            max_retries=settings.max_retries,
            retry_backoff_seconds=settings.retry_backoff_seconds,
            dry_run=settings.dry_run,
        )
        self.enabled = settings.enabled
        self.client = client

    def recipient(self, contact: Contact) -> str:
        return contact.telegram_chat_id or ""

    def render(self, contact: Contact, jobs: list[Job]) -> str:
        return build_telegram_message(contact, jobs)

    async def deliver(self, contact: Contact, payload: str) -> None:
        await self.client.send_message(self.recipient(contact), payload)

    async def send_digest(
        self,
        contacts: Sequence[Contact],
        jobs: Sequence[Job],
        jobs_by_contact: Mapping[int, list[Job]] | None = None,
        *,
        batch_id: str,
    ) -> ChannelSummary:
        """Send to every contact with a linked chat; the rest are skipped, not failed."""
        summary = ChannelSummary()
        if not self.enabled:
            summary.reason = "Telegram notifications are disabled"
            return summary
        if not contacts:
            summary.reason = "No contacts provided"
            return summary

        eligible = [contact for contact in contacts if contact.telegram_chat_id]
        summary.skipped = len(contacts) - len(eligible)
        if not eligible:
            summary.reason = "No contacts have a linked Telegram chat id"
            return summary

        if not self.dry_run and not self.client.configured:
            raise ConfigurationError(
                "Telegram bot token is required when Telegram notifications are enabled"
            )
        return await self.send_batches(eligible, jobs, jobs_by_contact, batch_id, summary)
