from __future__ import annotations

import json
import logging
import re
import sqlite3

from common.utils import digits_only, normalize_whitespace, parse_iso_datetime

from notifier.errors import ChatLinkError
from notifier.models import Contact
from notifier.repositories.database import Database

LOGGER = logging.getLogger("jobboard.notifier.contacts")

EMAIL_PATTERN = re.compile(r"^[a-z0-9._%+\-]+@[a-z0-9.\-]+\.[a-z]{2,}$")
CONTACT_COLUMNS = (
    "id, full_name, email, mobile_no, branch, experience, telegram_chat_id, created_at"
)
# Strips the punctuation people typically type into phone numbers.
NORMALIZED_MOBILE_SQL = (
    "REPLACE(REPLACE(REPLACE(REPLACE(REPLACE(REPLACE(REPLACE(mobile_no, ' ', ''), '-', ''), "
    "'+', ''), '(', ''), ')', ''), '.', ''), '/', '')"
)
MIN_MOBILE_DIGITS = 7
NATIONAL_MOBILE_DIGITS = 10


def normalize_email(raw: object) -> str | None:
    if raw is None:
        return None
    email = str(raw).strip().lower()
    if not EMAIL_PATTERN.match(email):
        return None
    return email


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class ContactsRepository:
    def __init__(self, database: Database) -> None:
        self.database = database

    def fetch_contacts(self, limit: int | None = None) -> list[Contact]:
        """Load unique, deliverable contacts, most recently created first.

        Rows with an invalid email or blank name are dropped. When an address
        appears more than once the newest row wins. ``limit`` is applied to
        the deduplicated list.
        """
        with self.database.lock:
            rows = self.database.connection.execute(
                f"""
                SELECT {CONTACT_COLUMNS}
                FROM marketing_contacts
                ORDER BY created_at DESC, id DESC
                """
            ).fetchall()

        contacts: list[Contact] = []
        seen: set[str] = set()
        dropped = 0
        for row in rows:
            contact = self._to_contact(row)
            if contact is None:
                dropped += 1
                continue
            if contact.email in seen:
                continue
            seen.add(contact.email)
            contacts.append(contact)
            if limit is not None and len(contacts) >= limit:
                break

        if dropped:
            LOGGER.info(json.dumps({"event": "contacts_dropped", "invalid_rows": dropped}))
        return contacts

    def get_contact(self, contact_id: int) -> Contact | None:
        with self.database.lock:
            row = self.database.connection.execute(
                f"SELECT {CONTACT_COLUMNS} FROM marketing_contacts WHERE id = ?",
                (contact_id,),
            ).fetchone()
        if row is None:
            return None
        return self._to_contact(row, strict=False)

    def find_by_mobile(self, digits: str, *, country_code: str = "91") -> Contact | None:
        """Match a typed or shared phone number against stored mobile numbers.

        Tries the stored value verbatim, then the stored value stripped of
        punctuation, then (for a full national number prefixed with
        ``country_code``) the number with and without that prefix.
        """
        number = digits_only(digits)
        if len(number) < MIN_MOBILE_DIGITS:
            return None

        strategies: list[tuple[str, tuple[object, ...]]] = [
            ("mobile_no = ?", (number,)),
            (f"{NORMALIZED_MOBILE_SQL} = ?", (number,)),
        ]
        if (
            country_code
            and number.startswith(country_code)
            and len(number) == len(country_code) + NATIONAL_MOBILE_DIGITS
        ):
            national = number[len(country_code):]
            strategies.append(
                (
                    f"(mobile_no IN (?, ?) OR {NORMALIZED_MOBILE_SQL} = ?)",
                    (number, national, national),
                )
            )

        with self.database.lock:
            for clause, params in strategies:
                row = self.database.connection.execute(
                    f"""
                    SELECT {CONTACT_COLUMNS} FROM marketing_contacts
                    WHERE mobile_no IS NOT NULL
                      AND {clause}
                    ORDER BY created_at ASC, id ASC
                    LIMIT 1
                    """,
                    params,
                ).fetchone()
                if row is not None:
                    return self._to_contact(row, strict=False)
        return None

    def find_by_name(self, name: str) -> tuple[Contact, str] | None:
        """Match a display name, returning the contact and the strategy that hit.

        Strategies run in order: exact, first name only, reversed order,
        then substring. The oldest matching contact wins.
        """
        normalized = normalize_whitespace(name).lower()
        if not normalized:
            return None
        parts = normalized.split(" ")
        first = parts[0]
        reversed_name = " ".join(reversed(parts)) if len(parts) > 1 else None

        strategies: list[tuple[str, str, tuple[object, ...]]] = [
            ("exact", "LOWER(TRIM(full_name)) = ?", (normalized,)),
            (
                "first_name",
                "(LOWER(TRIM(full_name)) = ? OR LOWER(TRIM(full_name)) LIKE ? ESCAPE '\\')",
                (first, f"{_escape_like(first)} %"),
            ),
        ]
        if reversed_name:
            strategies.append(("reversed", "LOWER(TRIM(full_name)) = ?", (reversed_name,)))
        strategies.append(
            (
                "partial",
                "LOWER(full_name) LIKE ? ESCAPE '\\'",
                (f"%{_escape_like(normalized)}%",),
            )
        )

        with self.database.lock:
            for strategy, clause, params in strategies:
                row = self.database.connection.execute(
                    f"""
                    SELECT {CONTACT_COLUMNS} FROM marketing_contacts
                    WHERE {clause}
                    ORDER BY created_at ASC, id ASC
                    LIMIT 1
                    """,
                    params,
                ).fetchone()
                if row is not None:
                    return self._to_contact(row, strict=False), strategy
        return None

    def link_telegram_chat(self, contact_id: int, chat_id: str) -> Contact:
        """Store ``chat_id`` on the contact and verify the write in one transaction."""
        chat_id = str(chat_id)
        with self.database.lock:
            connection = self.database.connection
            try:
                with connection:
                    before = connection.execute(
                        "SELECT id FROM marketing_contacts WHERE id = ?",
                        (contact_id,),
                    ).fetchone()
                    if before is None:
                        raise ChatLinkError(f"Contact {contact_id} not found")
                    connection.execute(
                        "UPDATE marketing_contacts SET telegram_chat_id = ? WHERE id = ?",
                        (chat_id, contact_id),
                    )
                    after = connection.execute(
                        f"SELECT {CONTACT_COLUMNS} FROM marketing_contacts WHERE id = ?",
                        (contact_id,),
                    ).fetchone()
                    if after is None or str(after["telegram_chat_id"] or "") != chat_id:
                        raise ChatLinkError(
                            f"Telegram chat id was not persisted for contact {contact_id}"
                        )
            except sqlite3.Error as exc:
                raise ChatLinkError(str(exc)) from exc

        LOGGER.info(
            json.dumps(
                {"event": "telegram_chat_linked", "contact_id": contact_id, "chat_id": chat_id}
            )
        )
        return self._to_contact(after, strict=False)

    def _to_contact(self, row: sqlite3.Row, *, strict: bool = True) -> Contact | None:
        full_name = normalize_whitespace(row["full_name"])
        email = normalize_email(row["email"])
        if strict and (not full_name or email is None):
            return None
        return Contact(
            id=int(row["id"]),
            full_name=full_name,
            email=email or str(row["email"] or "").strip().lower(),
            mobile_no=(row["mobile_no"] or None),
            branch=normalize_whitespace(row["branch"]) or None,
            experience=normalize_whitespace(row["experience"]) or None,
            telegram_chat_id=str(row["telegram_chat_id"]) if row["telegram_chat_id"] else None,
            created_at=parse_iso_datetime(row["created_at"]),
        )
