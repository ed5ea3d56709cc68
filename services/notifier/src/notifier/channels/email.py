from __future__ import annotations

import smtplib
import ssl
from collections.abc import Mapping, Sequence
from email.message import EmailMessage
from email.utils import formataddr, make_msgid

from fastapi.concurrency import run_in_threadpool

from notifier.channels.base import DeliveryChannel
from notifier.config import Settings, SmtpSettings
from notifier.errors import ConfigurationError
from notifier.models import ChannelSummary, Contact, EmailContent, Job
from notifier.repositories.digest_log import DigestLogRepository
from notifier.templates import build_email_template


class SmtpTransport:
    def __init__(self, settings: SmtpSettings) -> None:
        if not settings.host:
            raise ConfigurationError("SMTP host is not configured for the email channel")
        self.settings = settings

    def send(self, message: EmailMessage) -> None:
        settings = self.settings
        if settings.secure:
            server: smtplib.SMTP = smtplib.SMTP_SSL(
                settings.host,
                settings.port,
                timeout=settings.timeout_seconds,
                context=ssl.create_default_context(),
            )
        else:
            server = smtplib.SMTP(settings.host, settings.port, timeout=settings.timeout_seconds)
        with server:
            if not settings.secure and settings.require_tls:
                server.starttls(context=ssl.create_default_context())
            if settings.user and settings.password:
                server.login(settings.user, settings.password)
            server.send_message(message)


class EmailChannel(DeliveryChannel):
    name = "email"
    batch_label = "b"

    def __init__(
        self,
        settings: Settings,
        digest_log: DigestLogRepository,
        transport: SmtpTransport | None = None,
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
        self.smtp_settings = settings.smtp
        self.sender_name = settings.mail_from_name
        self.sender_address = settings.mail_from_address or settings.smtp.user or ""
        if not self.dry_run and transport is None and not settings.smtp.host:
            raise ConfigurationError("SMTP host is not configured for the email channel")
        self._transport = transport

    @property
    def transport(self) -> SmtpTransport:
        if self._transport is None:
            self._transport = SmtpTransport(self.smtp_settings)
        return self._transport

    def recipient(self, contact: Contact) -> str:
        return contact.email

    def render(self, contact: Contact, jobs: list[Job]) -> EmailContent:
        return build_email_template(contact, jobs, self.sender_name)

    def build_message(self, contact: Contact, content: EmailContent) -> EmailMessage:
        message = EmailMessage()
        message["Subject"] = content.subject
        message["From"] = formataddr((self.sender_name, self.sender_address))
        message["To"] = contact.email
        domain = self.sender_address.rpartition("@")[2] or None
        message["Message-ID"] = make_msgid(domain=domain)
        message.set_content(content.text)
        message.add_alternative(content.html, subtype="html")
        return message

    async def deliver(self, contact: Contact, payload: EmailContent) -> None:
        message = self.build_message(contact, payload)
        await run_in_threadpool(self.transport.send, message)

    async def send_digest(
        self,
        contacts: Sequence[Contact],
        jobs: Sequence[Job],
        jobs_by_contact: Mapping[int, list[Job]] | None = None,
        *,
        batch_id: str,
    ) -> ChannelSummary:
        summary = ChannelSummary()
        if not contacts:
            summary.reason = "No contacts provided"
            return summary
        return await self.send_batches(contacts, jobs, jobs_by_contact, batch_id, summary)
