from __future__ import annotations

from email.message import EmailMessage

import pytest
from fastapi.testclient import TestClient
from notifier.context import build_context
from notifier.main import create_app
from notifier.repositories.contacts import ContactsRepository
from notifier.repositories.jobs import JobsRepository
from pytest_bdd import given, scenario, then, when

pytestmark = pytest.mark.bdd


class RejectingTransport:
    def send(self, message: EmailMessage) -> None:
        raise OSError("550 mailbox unavailable")


@scenario("features/notifier.feature", "Deliver pending jobs and mark them notified")
def test_deliver_pending_jobs_and_mark_them_notified() -> None:
    pass


@scenario("features/notifier.feature", "Jobs stay pending when no contact is reached")
def test_jobs_stay_pending_when_no_contact_is_reached() -> None:
    pass


@scenario("features/notifier.feature", "Link a Telegram chat from a typed mobile number")
def test_link_telegram_chat_from_typed_mobile_number() -> None:
    pass


@pytest.fixture
def context() -> dict[str, object]:
    return {}


@given("two pending jobs and one subscribed contact")
def given_two_jobs_and_a_contact(
    context: dict[str, object], make_settings, database, add_job, add_contact
) -> None:
    context["job_ids"] = [add_job("jobs"), add_job("aijobs")]
    add_contact(full_name="Ada Lovelace", email="ada@example.com")
    context["app"] = create_app(make_settings(), start_scheduler=False)


@given("a pending job and a contact whose email cannot be delivered")
def given_undeliverable_contact(
    context: dict[str, object], make_settings, database, add_job, add_contact
) -> None:
    context["job_ids"] = [add_job("jobs")]
    add_contact(full_name="Grace Hopper", email="grace@example.com")
    context["app"] = create_app(
        make_settings(dry_run=False, max_retries=0),
        context_factory=lambda settings: build_context(
            settings, smtp_transport=RejectingTransport()
        ),
        start_scheduler=False,
    )


@given("a subscribed contact with a mobile number")
def given_contact_with_mobile(
    context: dict[str, object], make_settings, database, add_contact
) -> None:
    context["contact_id"] = add_contact(mobile_no="+91 98481 51735")
    context["app"] = create_app(make_settings(), start_scheduler=False)


@when("the digest trigger endpoint is called", target_fixture="response")
def when_digest_trigger_is_called(context: dict[str, object]):
    with TestClient(context["app"]) as client:
        return client.post("/marketing/trigger", json={})


@when("the contact sends their mobile number to the bot", target_fixture="response")
def when_contact_sends_mobile(context: dict[str, object]):
    update = {
        "update_id": 100,
        "message": {"message_id": 5, "chat": {"id": 424242}, "text": "+91 98481 51735"},
    }
    with TestClient(context["app"]) as client:
        return client.post("/telegram/webhook", json=update)


@then("the digest run reports one reached contact")
def then_one_contact_reached(response) -> None:
    body = response.json()
    assert response.status_code == 200
    assert body["ok"] is True
    assert body["contacts_succeeded"] == 1
    assert body["contacts_failed"] == 0


@then("both jobs are marked as notified")
def then_both_jobs_marked(context: dict[str, object], database) -> None:
    repository = JobsRepository(database, site_url="https://jobs.example.com")
    counts = repository.count_pending_jobs()
    assert len(context["job_ids"]) == 2
    assert counts.jobs == 0
    assert counts.ai_jobs == 0


@then("the digest run reports one failed contact")
def then_one_contact_failed(response) -> None:
    body = response.json()
    assert response.status_code == 200
    assert body["ok"] is False
    assert body["contacts_failed"] == 1
    assert body["errors"][0]["message"] == "550 mailbox unavailable"
    assert body["jobs_marked_notified"] == {}


@then("the job is still pending")
def then_job_still_pending(database) -> None:
    repository = JobsRepository(database, site_url="https://jobs.example.com")
    assert repository.count_pending_jobs().total == 1


@then("the webhook reports a mobile match")
def then_webhook_reports_mobile_match(response, context: dict[str, object]) -> None:
    (result,) = response.json()["processed"]
    assert result["matched"] is True
    assert result["match_type"] == "mobile"
    assert result["contact_id"] == context["contact_id"]


@then("the contact has the chat id stored")
def then_chat_id_stored(context: dict[str, object], database) -> None:
    contact = ContactsRepository(database).get_contact(context["contact_id"])
    assert contact is not None
    assert contact.telegram_chat_id == "424242"
