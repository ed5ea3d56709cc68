from __future__ import annotations

from datetime import datetime
from html import escape

from common.utils import normalize_whitespace

from notifier.models import Contact, EmailContent, Job

DEFAULT_GREETING_NAME = "there"
TELEGRAM_FOOTER = "Tap a link to learn more. Reply STOP to opt out."


def first_name(full_name: str | None) -> str:
    parts = normalize_whitespace(full_name).split(" ")
    return parts[0] or DEFAULT_GREETING_NAME


def resolve_remote_label(job: Job) -> str:
    if job.is_remote is True:
        return "Remote"
    if job.is_remote is False:
        return "On-site"
    if job.location_type:
        return job.location_type
    return "Hybrid / Flexible"


def format_posted_date(value: datetime | None) -> str:
    if value is None:
        return "Recently posted"
    return value.strftime("%d %b %Y")


def profile_label(contact: Contact) -> str:
    parts = [part for part in (contact.branch, contact.experience) if part]
    return f" ({', '.join(parts)})" if parts else ""


def build_subject(jobs: list[Job]) -> str:
    if not jobs:
        return "Your latest job digest"
    lead = jobs[0]
    headline = f"{lead.title} at {lead.company_name}" if lead.company_name else lead.title
    remaining = len(jobs) - 1
    if remaining == 0:
        return f"New role for you: {headline}"
    suffix = "role" if remaining == 1 else "roles"
    return f"New roles for you: {headline} + {remaining} more {suffix}"


def _job_meta(job: Job) -> list[str]:
    return [part for part in (job.company_name, job.location, resolve_remote_label(job)) if part]


def _job_html(job: Job) -> str:
    meta = " &bull; ".join(escape(part) for part in _job_meta(job))
    link = ""
    if job.apply_url:
        link = (
            f'<a href="{escape(job.apply_url, quote=True)}" '
            'style="display: inline-block; padding: 10px 16px; background-color: #1d4ed8; '
            'color: #ffffff; text-decoration: none; border-radius: 4px; font-size: 14px;" '
            'target="_blank" rel="noopener noreferrer">View &amp; Apply</a>'
        )
    return (
        "<tr>"
        '<td style="padding: 16px 24px; border-bottom: 1px solid #e6e9ed;">'
        f'<h3 style="margin: 0 0 8px; font-size: 18px; color: #1a1f36;">{escape(job.title)}</h3>'
        f'<p style="margin: 0 0 4px; font-size: 14px; color: #4f566b;">{meta}</p>'
        '<p style="margin: 0 0 12px; font-size: 14px; color: #6b7280;">'
        f"Posted: {escape(format_posted_date(job.created_at))}</p>"
        f"{link}"
        "</td>"
        "</tr>"
    )


def _job_text(index: int, job: Job) -> str:
    heading = f"{index}. {job.title}"
    if job.company_name:
        heading = f"{heading} at {job.company_name}"
    lines = [heading]
    location_parts = [part for part in (job.location, resolve_remote_label(job)) if part]
    lines.append(f"   Location: {' | '.join(location_parts)}")
    lines.append(f"   Posted: {format_posted_date(job.created_at)}")
    if job.apply_url:
        lines.append(f"   Apply: {job.apply_url}")
    return "\n".join(lines)


def build_email_template(contact: Contact, jobs: list[Job], sender_name: str) -> EmailContent:
    """Render the digest email for one contact.

    Jobs are rendered in the order given. Every contact or employer supplied
    value is HTML escaped before it lands in the markup.
    """
    label = profile_label(contact)
    count = len(jobs)
    intro = (
        f"Based on your profile{label}, here "
        f"{'is the opportunity' if count == 1 else f'are the top {count} opportunities'}"
        " we recommend for you:"
    )
    closing = (
        "Need more options or wish to tailor your alerts further? "
        "Reply to this email and we will be glad to assist."
    )
    unsubscribe = (
        "You are receiving this email because you subscribed to job updates. "
        'To unsubscribe, reply with "Unsubscribe" from this address.'
    )

    items_html = "".join(_job_html(job) for job in jobs)
    html = (
        '<table role="presentation" width="100%" cellspacing="0" cellpadding="0" '
        "style=\"font-family: 'Segoe UI', Arial, sans-serif; background-color: #f5f7fa; "
        'padding: 32px 0;">'
        '<tr><td align="center">'
        '<table role="presentation" width="640" cellspacing="0" cellpadding="0" '
        'style="background-color: #ffffff; border-radius: 8px; overflow: hidden;">'
        '<tr><td style="padding: 32px 40px; border-bottom: 1px solid #e6e9ed;">'
        f'<p style="margin: 0 0 12px; font-size: 16px; color: #1a1f36;">'
        f"Dear {escape(contact.full_name)},</p>"
        f'<p style="margin: 0; font-size: 16px; color: #1a1f36;">{escape(intro)}</p>'
        "</td></tr>"
        '<tr><td><table role="presentation" width="100%" cellspacing="0" cellpadding="0">'
        f"{items_html}</table></td></tr>"
        '<tr><td style="padding: 24px 40px; border-top: 1px solid #e6e9ed;">'
        f'<p style="margin: 0 0 8px; font-size: 14px; color: #4f566b;">{escape(closing)}</p>'
        f'<p style="margin: 0; font-size: 14px; color: #4f566b;">'
        f"Warm regards,<br/>{escape(sender_name)} Team</p>"
        "</td></tr>"
        '<tr><td style="padding: 16px 40px; background-color: #f8fafc; font-size: 12px; '
        f'color: #6b7280;">{escape(unsubscribe)}</td></tr>'
        "</table>"
        "</td></tr>"
        "</table>"
    )

    text_parts = [f"Dear {contact.full_name},", "", intro, ""]
    for index, job in enumerate(jobs, start=1):
        text_parts.extend([_job_text(index, job), ""])
    text_parts.extend(
        [closing, "", "Warm regards,", f"{sender_name} Team", "", "---", unsubscribe]
    )

    return EmailContent(subject=build_subject(jobs), html=html, text="\n".join(text_parts))


def build_telegram_message(contact: Contact, jobs: list[Job]) -> str:
    name = first_name(contact.full_name)
    if not jobs:
        return f"Hi {name}, we could not find suitable roles for you today. We'll keep looking!"

    if len(jobs) == 1:
        header = f"Hi {name}, here is a new role we think you'll like:"
    else:
        header = f"Hi {name}, here are {len(jobs)} roles we think you'll like:"

    lines = [header]
    for index, job in enumerate(jobs, start=1):
        entry = f"{index}. {job.title}"
        if job.company_name:
            entry += f" @ {job.company_name}"
        location = job.location or job.location_type
        if location:
            entry += f" ({location})"
        lines.append(entry)
        if job.apply_url:
            lines.append(f"   {job.apply_url}")
    lines.append(TELEGRAM_FOOTER)
    return "\n".join(lines)
