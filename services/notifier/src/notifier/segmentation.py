from __future__ import annotations

import json
import logging
import math
import re
from dataclasses import dataclass

from notifier.models import Contact, Job

LOGGER = logging.getLogger("jobboard.notifier.segmentation")

NUMBER_PATTERN = re.compile(r"\d+(?:\.\d+)?")
OPEN_ENDED_PATTERN = re.compile(r"\+|above|more than|\bupwards\b|\bminimum\b")
UPPER_BOUND_PATTERN = re.compile(r"upto|up to|less than|\bmax\b|maximum")
FRESHER_WORDS = ("fresher", "entry")
BRANCH_SPLIT_PATTERN = re.compile(r"[,/&\s]+")

# Contact branch abbreviation -> phrases that signal it in a job posting.
BRANCH_ALIASES: dict[str, tuple[str, ...]] = {
    "cse": ("computer science", "cs", "cse", "computer", "software"),
    "cs": ("computer science", "cse", "cs", "computer", "software"),
    "it": ("information technology", "it", "information", "technology"),
    "ece": ("electronics", "electronics communication", "ece", "electronic"),
    "eee": ("electrical", "electrical engineering", "eee", "electrical and electronics"),
    "me": ("mechanical", "mechanical engineering", "me"),
    "ce": ("civil", "civil engineering", "ce"),
    "mca": ("master of computer applications", "mca", "computer applications"),
    "bca": ("bachelor of computer applications", "bca", "computer applications"),
    "btech": ("bachelor of technology", "btech", "b.tech", "engineering"),
    "mtech": ("master of technology", "mtech", "m.tech"),
}


@dataclass(frozen=True)
class ExperienceRange:
    min: float
    max: float

    def overlaps(self, other: ExperienceRange) -> bool:
        return self.min <= other.max and other.min <= self.max

    @property
    def is_fresher(self) -> bool:
        return self.min <= 0 and self.max <= 1


FRESHER_RANGE = ExperienceRange(0, 1)


def parse_experience_range(raw: str | float | None) -> ExperienceRange | None:
    """Interpret a free-text experience requirement as a year range.

    >>> parse_experience_range("3-5 years")
    ExperienceRange(min=3.0, max=5.0)
    >>> parse_experience_range("6+ years")
    ExperienceRange(min=6.0, max=inf)
    """
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, int | float):
        if raw == 0:
            return FRESHER_RANGE
        return ExperienceRange(float(raw), float(raw))

    lowered = raw.strip().lower()
    if not lowered:
        return None
    if any(word in lowered for word in FRESHER_WORDS):
        return FRESHER_RANGE

    numbers = [float(match) for match in NUMBER_PATTERN.findall(lowered)]
    if not numbers:
        return None

    if len(numbers) >= 2:
        low, high = sorted(numbers[:2])
        if low == 0 and high <= 1:
            return FRESHER_RANGE
        return ExperienceRange(low, high)

    single = numbers[0]
    if single == 0:
        return FRESHER_RANGE
    if OPEN_ENDED_PATTERN.search(lowered):
        return ExperienceRange(single, math.inf)
    if UPPER_BOUND_PATTERN.search(lowered):
        return ExperienceRange(0, single)
    return ExperienceRange(single, single)


def job_matches(contact_range: ExperienceRange, job: Job) -> bool:
    job_range = parse_experience_range(job.experience)
    # Jobs that do not state a parseable requirement stay in every digest.
    if job_range is None:
        return True
    return contact_range.overlaps(job_range)


def normalize_branch_tokens(branch: str | None) -> list[str]:
    """Split a free-text branch ("CSE / IT") into lowercase tokens."""
    if not branch:
        return []
    return [part for part in BRANCH_SPLIT_PATTERN.split(branch.strip().lower()) if part]


def job_haystacks(job: Job) -> list[str]:
    values = (job.job_type, job.location_type, job.title, job.experience, job.company_name)
    return [value.strip().lower() for value in values if value and value.strip()]


def _mentions(haystack: str, needle: str) -> bool:
    # Anchored at a word start so "it" does not match inside "site".
    return re.search(rf"\b{re.escape(needle)}", haystack) is not None


def matches_branch_token(job: Job, token: str) -> bool:
    if not token:
        return False
    haystacks = job_haystacks(job)
    if any(_mentions(value, token) for value in haystacks):
        return True
    if any(len(value) > 3 and value in token for value in haystacks):
        return True
    return any(
        _mentions(value, alias) for alias in BRANCH_ALIASES.get(token, ()) for value in haystacks
    )


def is_fresher_job(job: Job) -> bool:
    if job.experience:
        lowered = job.experience.strip().lower()
        if any(word in lowered for word in FRESHER_WORDS):
            return True
        job_range = parse_experience_range(lowered)
        if job_range is not None and job_range.is_fresher:
            return True
    return any(word in value for value in job_haystacks(job) for word in FRESHER_WORDS)


def apply_filters(
    jobs: list[Job],
    branch_tokens: list[str],
    experience_range: ExperienceRange | None,
) -> list[Job]:
    working = list(jobs)
    if branch_tokens:
        working = [
            job
            for job in working
            if any(matches_branch_token(job, token) for token in branch_tokens)
        ]
    if experience_range is not None:
        working = [job for job in working if job_matches(experience_range, job)]
    return working


def selection_strategies(
    contact: Contact, jobs: list[Job]
) -> list[tuple[str, list[Job], list[str], ExperienceRange | None]]:
    """Candidate pools and filters, strictest first."""
    branch_tokens = normalize_branch_tokens(contact.branch)
    contact_range = parse_experience_range(contact.experience)
    strategies: list[tuple[str, list[Job], list[str], ExperienceRange | None]] = []

    fresher_jobs = [job for job in jobs if is_fresher_job(job)]
    if contact_range is not None and contact_range.is_fresher and fresher_jobs:
        strategies.append(("fresher+branch+experience", fresher_jobs, branch_tokens, contact_range))
        strategies.append(("fresher+branch", fresher_jobs, branch_tokens, None))
        strategies.append(("fresher+experience", fresher_jobs, [], contact_range))

    strategies.append(("branch+experience", jobs, branch_tokens, contact_range))
    if branch_tokens:
        strategies.append(("branch", jobs, branch_tokens, None))
    if contact_range is not None:
        strategies.append(("experience", jobs, [], contact_range))
    return strategies


def select_jobs_for_contact(contact: Contact, jobs: list[Job]) -> list[Job]:
    """Return the first non-empty selection; a profile with no branch or range gets every job."""
    for name, pool, branch_tokens, experience_range in selection_strategies(contact, jobs):
        selected = apply_filters(pool, branch_tokens, experience_range)
        if selected:
            LOGGER.debug(
                json.dumps(
                    {
                        "event": "contact_jobs_selected",
                        "contact_id": contact.id,
                        "strategy": name,
                        "jobs": len(selected),
                    }
                )
            )
            return selected
    return []


def build_jobs_by_contact(contacts: list[Contact], jobs: list[Job]) -> dict[int, list[Job]]:
    return {contact.id: select_jobs_for_contact(contact, jobs) for contact in contacts}
