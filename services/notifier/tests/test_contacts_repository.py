from __future__ import annotations

import pytest
from notifier.errors import ChatLinkError
from notifier.repositories.contacts import ContactsRepository, normalize_email
from notifier.repositories.database import Database

pytestmark = pytest.mark.unit


@pytest.fixture
def repository(database: Database) -> ContactsRepository:
    return ContactsRepository(database)


def test_fetch_contacts_dedupes_by_normalized_email_keeping_newest(
    add_contact, repository
) -> None:
    add_contact(full_name="Old Ada", email="Ada@Example.com", created_at="2026-01-01T00:00:00")
    newest_id = add_contact(
        full_name="New Ada", email="  ada@example.com ", created_at="2026-02-01T00:00:00"
    )
    add_contact(full_name="Grace Hopper", email="grace@example.com", created_at="2026-01-15")

    contacts = repository.fetch_contacts()

    assert [contact.email for contact in contacts] == ["ada@example.com", "grace@example.com"]
    assert contacts[0].id == newest_id
    assert contacts[0].full_name == "New Ada"


def test_fetch_contacts_drops_invalid_rows(add_contact, repository) -> None:
    add_contact(email="not-an-email")
    add_contact(full_name="   ", email="blank@example.com")
    add_contact(full_name=None, email="null@example.com")
    add_contact(email=None)
    valid_id = add_contact(full_name="Linus  Torvalds", email="linus@example.com")

    contacts = repository.fetch_contacts()

    assert [contact.id for contact in contacts] == [valid_id]
    assert contacts[0].full_name == "Linus Torvalds"


def test_fetch_contacts_applies_limit_after_dedup(add_contact, repository) -> None:
    add_contact(email="one@example.com", created_at="2026-02-03T00:00:00")
    add_contact(email="ONE@example.com", created_at="2026-02-02T00:00:00")
    add_contact(email="two@example.com", created_at="2026-02-01T00:00:00")

    contacts = repository.fetch_contacts(limit=2)

    assert [contact.email for contact in contacts] == ["one@example.com", "two@example.com"]


def test_fetch_contacts_returns_empty_list_for_empty_table(repository) -> None:
    assert repository.fetch_contacts() == []


def test_get_contact_returns_none_for_unknown_id(add_contact, repository) -> None:
    contact_id = add_contact(mobile_no="98481 51735", branch="CSE", experience="2 years")

    contact = repository.get_contact(contact_id)

    assert contact is not None
    assert contact.branch == "CSE"
    assert contact.experience == "2 years"
    assert repository.get_contact(contact_id + 100) is None


def test_find_by_mobile_matches_formatted_stored_numbers(add_contact, repository) -> None:
    contact_id = add_contact(mobile_no="+91 98481-51735")

    contact = repository.find_by_mobile("+91 (984) 815 1735")

    assert contact is not None
    assert contact.id == contact_id


def test_find_by_mobile_strips_country_code_for_national_numbers(add_contact, repository) -> None:
    contact_id = add_contact(mobile_no="9848151735")

    contact = repository.find_by_mobile("919848151735")

    assert contact is not None
    assert contact.id == contact_id


def test_find_by_mobile_prefers_oldest_contact(add_contact, repository) -> None:
    add_contact(email="new@example.com", mobile_no="9848151735", created_at="2026-02-01")
    oldest_id = add_contact(
        email="old@example.com", mobile_no="9848151735", created_at="2026-01-01"
    )

    contact = repository.find_by_mobile("9848151735")

    assert contact is not None
    assert contact.id == oldest_id


def test_find_by_mobile_ignores_short_or_unknown_numbers(add_contact, repository) -> None:
    add_contact(mobile_no="9848151735")

    assert repository.find_by_mobile("98481") is None
    assert repository.find_by_mobile("7000000000") is None


@pytest.mark.parametrize(
    ("query", "strategy"),
    [
        ("Ada Lovelace", "exact"),
        ("  ada   LOVELACE ", "exact"),
        ("Ada", "first_name"),
        ("Lovelace Ada", "reversed"),
        ("love", "partial"),
    ],
)
def test_find_by_name_strategies(add_contact, repository, query: str, strategy: str) -> None:
    contact_id = add_contact(full_name="Ada Lovelace")

    found = repository.find_by_name(query)

    assert found is not None
    contact, used = found
    assert contact.id == contact_id
    assert used == strategy


def test_find_by_name_prefers_oldest_and_escapes_wildcards(add_contact, repository) -> None:
    add_contact(full_name="Ada Byron", email="new@example.com", created_at="2026-02-01")
    oldest_id = add_contact(full_name="Ada King", email="old@example.com", created_at="2026-01-01")

    found = repository.find_by_name("Ada")

    assert found is not None
    assert found[0].id == oldest_id
    assert repository.find_by_name("%") is None
    assert repository.find_by_name("   ") is None


def test_link_telegram_chat_persists_and_returns_contact(add_contact, repository) -> None:
    contact_id = add_contact()

    contact = repository.link_telegram_chat(contact_id, "555001")

    assert contact.telegram_chat_id == "555001"
    stored = repository.get_contact(contact_id)
    assert stored is not None
    assert stored.telegram_chat_id == "555001"


def test_link_telegram_chat_raises_for_unknown_contact(repository) -> None:
    with pytest.raises(ChatLinkError, match="not found"):
        repository.link_telegram_chat(404, "555001")


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        (" Ada@Example.COM ", "ada@example.com"),
        ("first.last+tag@sub.example.co", "first.last+tag@sub.example.co"),
        ("missing-at.example.com", None),
        ("no-tld@example", None),
        (None, None),
    ],
)
def test_normalize_email(raw: object, expected: str | None) -> None:
    assert normalize_email(raw) == expected
