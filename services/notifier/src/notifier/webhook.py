from __future__ import annotations

import json
import logging
from typing import Any, Literal

from common.utils import digits_only, normalize_whitespace
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from notifier.errors import TelegramApiError
from notifier.models import Contact
from notifier.repositories.contacts import MIN_MOBILE_DIGITS, ContactsRepository
from notifier.telegram_api import TelegramBotClient

LOGGER = logging.getLogger("jobboard.notifier.webhook")

START_MESSAGE = "Please send your mobile number for job alerts"
LINKED_MESSAGE = (
    "Thanks! Your Telegram chat is now linked. You will receive future job alerts here."
)
NOT_FOUND_MESSAGE = (
    "We couldn't match this chat to a subscriber. "
    "Please reply with your registered name or mobile number."
)
LINK_ERROR_MESSAGE = "An error occurred while linking your account. Please try again later."

MatchType = Literal["mobile", "name"]


class TelegramUser(BaseModel):
    id: int | None = None
    is_bot: bool | None = None
    first_name: str | None = None
    last_name: str | None = None
    username: str | None = None


class TelegramChat(BaseModel):
    id: int | None = None
    type: str | None = None


class TelegramSharedContact(BaseModel):
    phone_number: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    user_id: int | None = None


class TelegramMessage(BaseModel):
    message_id: int | None = None
    text: str | None = None
    date: int | None = None
    from_user: TelegramUser | None = Field(default=None, alias="from")
    chat: TelegramChat | None = None
    contact: TelegramSharedContact | None = None

    model_config = ConfigDict(populate_by_name=True)


class TelegramUpdate(BaseModel):
    update_id: int | None = None
    message: TelegramMessage | None = None
    edited_message: TelegramMessage | None = None


class WebhookResult(BaseModel):
    update_id: int | None = None
    matched: bool = False
    match_type: MatchType | None = None
    contact_id: int | None = None
    chat_id: int | None = None
    error: str | None = None


def is_start_command(text: str | None) -> bool:
    if not text:
        return False
    trimmed = text.strip().lower()
    return trimmed == "/start" or trimmed.startswith("/start@")


def extract_mobile(message: TelegramMessage) -> str | None:
    if message.contact and message.contact.phone_number:
        return message.contact.phone_number
    digits = digits_only(message.text)
    if len(digits) >= MIN_MOBILE_DIGITS:
        return digits
    return None


def extract_name_candidates(message: TelegramMessage) -> list[str]:
    candidates: list[str] = []
    people = [
        (message.from_user.first_name, message.from_user.last_name) if message.from_user else None,
        (message.contact.first_name, message.contact.last_name) if message.contact else None,
    ]
    for person in people:
        if person is None:
            continue
        first = normalize_whitespace(person[0])
        last = normalize_whitespace(person[1])
        for candidate in (f"{first} {last}" if first and last else "", first):
            if candidate and candidate not in candidates:
                candidates.append(candidate)
    return candidates


def unpack_updates(body: Any) -> list[Any]:
    if isinstance(body, list):
        return body
    if isinstance(body, dict):
        result = body.get("result")
        if isinstance(result, list):
            return result
        return [body]
    return []


class TelegramWebhookMatcher:
    """Links inbound Telegram chats to marketing contacts."""

    def __init__(
        self,
        contacts: ContactsRepository,
        client: TelegramBotClient,
        *,
        country_code: str = "91",
    ) -> None:
        self.contacts = contacts
        self.client = client
        self.country_code = country_code

    async def process_updates(self, body: Any) -> list[WebhookResult]:
        results: list[WebhookResult] = []
        for raw in unpack_updates(body):
            update_id = raw.get("update_id") if isinstance(raw, dict) else None
            try:
                update = TelegramUpdate.model_validate(raw)
            except ValidationError as exc:
                LOGGER.warning(
                    json.dumps(
                        {
                            "event": "webhook_update_invalid",
                            "update_id": update_id,
                            "error": str(exc),
                        }
                    )
                )
                results.append(WebhookResult(update_id=update_id, error="invalid update payload"))
                continue
            try:
                results.append(await self.process_update(update))
            except Exception as exc:
                LOGGER.exception(
                    json.dumps(
                        {
                            "event": "webhook_update_failed",
                            "update_id": update_id,
                            "error": str(exc),
                        }
                    )
                )
                results.append(WebhookResult(update_id=update_id, error=str(exc)))
        return results

    async def process_update(self, update: TelegramUpdate) -> WebhookResult:
        message = update.message or update.edited_message
        if message is None or message.chat is None or message.chat.id is None:
            LOGGER.info(json.dumps({"event": "webhook_no_chat", "update_id": update.update_id}))
            return WebhookResult(update_id=update.update_id)

        chat_id = message.chat.id
        if is_start_command(message.text):
            LOGGER.info(json.dumps({"event": "webhook_start", "chat_id": chat_id}))
            await self.send_ack(chat_id, START_MESSAGE)
            return WebhookResult(update_id=update.update_id, chat_id=chat_id)

        match = await self.match_contact(message)
        if match is None:
            LOGGER.info(json.dumps({"event": "webhook_unmatched", "chat_id": chat_id}))
            await self.send_ack(chat_id, NOT_FOUND_MESSAGE)
            return WebhookResult(update_id=update.update_id, chat_id=chat_id)

        contact, match_type = match
        try:
            await run_in_threadpool(self.contacts.link_telegram_chat, contact.id, str(chat_id))
        except Exception as exc:
            LOGGER.exception(
                json.dumps(
                    {
                        "event": "webhook_link_failed",
                        "chat_id": chat_id,
                        "contact_id": contact.id,
                        "error": str(exc),
                    }
                )
            )
            await self.send_ack(chat_id, LINK_ERROR_MESSAGE)
            return WebhookResult(
                update_id=update.update_id,
                match_type=match_type,
                contact_id=contact.id,
                chat_id=chat_id,
                error=str(exc),
            )

        await self.send_ack(chat_id, LINKED_MESSAGE)
        return WebhookResult(
            update_id=update.update_id,
            matched=True,
            match_type=match_type,
            contact_id=contact.id,
            chat_id=chat_id,
        )

    async def match_contact(self, message: TelegramMessage) -> tuple[Contact, MatchType] | None:
        mobile = extract_mobile(message)
        if mobile:
            contact = await run_in_threadpool(
                self.contacts.find_by_mobile, mobile, country_code=self.country_code
            )
            LOGGER.info(
                json.dumps(
                    {
                        "event": "webhook_mobile_lookup",
                        "mobile_prefix": f"{digits_only(mobile)[:4]}****",
                        "matched": contact is not None,
                    }
                )
            )
            if contact is not None:
                return contact, "mobile"

        for candidate in extract_name_candidates(message):
            found = await run_in_threadpool(self.contacts.find_by_name, candidate)
            if found is not None:
                contact, strategy = found
                LOGGER.info(
                    json.dumps(
                        {
                            "event": "webhook_name_match",
                            "contact_id": contact.id,
                            "strategy": strategy,
                        }
                    )
                )
                return contact, "name"
        return None

    async def send_ack(self, chat_id: int, text: str) -> bool:
        if not self.client.configured:
            LOGGER.info(json.dumps({"event": "webhook_ack_skipped", "chat_id": chat_id}))
            return False
        try:
            await self.client.send_message(chat_id, text)
        except TelegramApiError as exc:
            LOGGER.warning(
                json.dumps({"event": "webhook_ack_failed", "chat_id": chat_id, "error": str(exc)})
            )
            return False
        return True
