from __future__ import annotations

from datetime import UTC, datetime

import pytest
from notifier.models import Contact, Job
from notifier.templates import (
    TELEGRAM_FOOTER,
    build_email_template,
    build_subject,
    build_telegram_message,
    first_name,
    format_posted_date,
    resolve_remote_label,
)

pytestmark = pytest.mark.unit


def make_job(job_id: int = 1, **overrides: object) -> Job:
    values: dict[str, object] = {
        "source": "primary",
        "id": job_id,
        "title": "Backend Engineer",
        "company_name": "Acme",
        "location": "Bengaluru",
        "apply_url": f"https://jobs.example.com/jobs/{job_id}",
        "created_at": datetime(2026, 2, 1, 9, tzinfo=UTC),
    }
    values.update(overrides)
    return Job(**values)


@pytest.fixture
def contact() -> Contact:
    return Contact(
        id=1,
        full_name="Ada Lovelace",
        email="ada@example.com",
        branch="CSE",
        experience="2 years",
    )


def test_subject_mentions_lead_role_and_remaining_count() -> None:
    assert build_subject([make_job()]) == "New role for you: Backend Engineer at Acme"
    assert (
        build_subject([make_job(1), make_job(2)])
        == "New roles for you: Backend Engineer at Acme + 1 more role"
    )
    assert build_subject([make_job(i) for i in range(1, 4)]).endswith("+ 2 more roles")
    assert build_subject([make_job(company_name=None)]) == "New role for you: Backend Engineer"
    assert build_subject([]) == "Your latest job digest"


def test_email_template_lists_jobs_in_order(contact: Contact) -> None:
    jobs = [make_job(1, title="First role"), make_job(2, title="Second role")]

    content = build_email_template(contact, jobs, "MyCareerBuild")

    assert content.text.index("1. First role at Acme") < content.text.index("2. Second role")
    assert "Dear Ada Lovelace," in content.text
    assert "Based on your profile (CSE, 2 years)" in content.text
    assert "top 2 opportunities" in content.text
    assert "Apply: https://jobs.example.com/jobs/1" in content.text
    assert "MyCareerBuild Team" in content.html
    assert content.html.index("First role") < content.html.index("Second role")


def test_email_template_escapes_untrusted_values(contact: Contact) -> None:
    hostile = contact.model_copy(update={"full_name": "<script>alert(1)</script>"})
    job = make_job(
        title="Dev & Ops <Lead>",
        company_name='Acme "Labs"',
        apply_url='https://jobs.example.com/?a=1&b="2"',
    )

    content = build_email_template(hostile, [job], "MyCareerBuild")

    assert "<script>" not in content.html
    assert "&lt;script&gt;" in content.html
    assert "Dev &amp; Ops &lt;Lead&gt;" in content.html
    assert "Acme &quot;Labs&quot;" in content.html
    assert 'href="https://jobs.example.com/?a=1&amp;b=&quot;2&quot;"' in content.html


def test_email_template_handles_single_job_wording(contact: Contact) -> None:
    content = build_email_template(contact, [make_job()], "MyCareerBuild")

    assert "here is the opportunity we recommend" in content.text


def test_telegram_message_for_single_job() -> None:
    contact = Contact(id=1, full_name="Ada Lovelace", email="ada@example.com")

    message = build_telegram_message(contact, [make_job()])

    assert message == "\n".join(
        [
            "Hi Ada, here is a new role we think you'll like:",
            "1. Backend Engineer @ Acme (Bengaluru)",
            "   https://jobs.example.com/jobs/1",
            TELEGRAM_FOOTER,
        ]
    )


def test_telegram_message_for_several_jobs_has_no_blank_lines() -> None:
    contact = Contact(id=1, full_name="Ada Lovelace", email="ada@example.com")
    jobs = [
        make_job(1),
        make_job(2, title="ML Engineer", company_name=None, location=None, location_type="Remote"),
        make_job(3, title="SRE", location=None, apply_url=None),
    ]

    lines = build_telegram_message(contact, jobs).split("\n")

    assert lines[0] == "Hi Ada, here are 3 roles we think you'll like:"
    assert "2. ML Engineer (Remote)" in lines
    assert "3. SRE @ Acme" in lines
    assert all(line.strip() for line in lines)
    assert lines[-1] == TELEGRAM_FOOTER


def test_telegram_message_without_jobs() -> None:
    contact = Contact(id=1, full_name="", email="ada@example.com")

    assert build_telegram_message(contact, []) == (
        "Hi there, we could not find suitable roles for you today. We'll keep looking!"
    )


@pytest.mark.parametrize(
    ("overrides", "expected"),
    [
        ({"is_remote": True}, "Remote"),
        ({"is_remote": False}, "On-site"),
        ({"location_type": "Hybrid"}, "Hybrid"),
        ({}, "Hybrid / Flexible"),
    ],
)
def test_resolve_remote_label(overrides: dict[str, object], expected: str) -> None:
    assert resolve_remote_label(make_job(**overrides)) == expected


def test_format_posted_date_and_first_name() -> None:
    assert format_posted_date(datetime(2026, 2, 5, tzinfo=UTC)) == "05 Feb 2026"
    assert format_posted_date(None) == "Recently posted"
    assert first_name("  Grace   Hopper ") == "Grace"
    assert first_name(None) == "there"
