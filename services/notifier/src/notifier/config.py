from __future__ import annotations

import os
import tempfile
from collections.abc import Mapping
from datetime import datetime, timedelta
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

DEFAULT_DB_PATH = Path(tempfile.gettempdir()) / "jobboard" / "notifier.sqlite3"
DEFAULT_EMAIL_BACKOFFS = (5.0, 15.0, 30.0)
DEFAULT_TELEGRAM_BACKOFFS = (2.0, 5.0, 10.0)
MAX_BACKOFF_STEPS = 3

TRUE_VALUES = {"true", "1", "yes", "y", "on"}
FALSE_VALUES = {"false", "0", "no", "n", "off"}


class SmtpSettings(BaseModel):
    host: str | None = None
    port: int = Field(default=587, ge=1, le=65535)
    secure: bool = False
    require_tls: bool = True
    user: str | None = None
    password: str | None = None
    timeout_seconds: float = Field(default=30.0, gt=0)


class TelegramSettings(BaseModel):
    enabled: bool = False
    dry_run: bool = False
    bot_token: str | None = None
    api_base_url: str = "https://api.telegram.org"
    batch_size: int = Field(default=50, ge=1)
    batch_pause_seconds: float = Field(default=2.0, ge=0)
    concurrency: int = Field(default=5, ge=1)
    max_retries: int = Field(default=3, ge=0)
    retry_backoff_seconds: list[float] = Field(
        default_factory=lambda: list(DEFAULT_TELEGRAM_BACKOFFS)
    )
    timeout_seconds: float = Field(default=20.0, gt=0)
    disable_link_preview: bool = True
    default_country_code: str = "91"

    @field_validator("api_base_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @field_validator("retry_backoff_seconds")
    @classmethod
    def _validate_backoffs(cls, value: list[float]) -> list[float]:
        if any(step < 0 for step in value):
            raise ValueError("retry backoff steps must be non-negative")
        return value


class AlertSettings(BaseModel):
    failure_rate_threshold: float = Field(default=10.0, ge=0)
    backlog_threshold: int = Field(default=500, ge=0)


class Settings(BaseModel):
    enabled: bool = True
    database_path: Path = Field(default=DEFAULT_DB_PATH)
    site_url: str = "https://mycareerbuild.com"
    schedule_interval_seconds: float = Field(default=3 * 24 * 3600, ge=0)
    job_fetch_limit: int = Field(default=100, ge=1)
    jobs_created_since_hours: float | None = Field(default=None, gt=0)
    primary_job_type: str | None = None
    digest_size: int = Field(default=5, ge=1)
    batch_size: int = Field(default=50, ge=1)
    concurrency: int = Field(default=5, ge=1)
    contact_fetch_limit: int | None = Field(default=None, ge=1)
    batch_pause_seconds: float = Field(default=10.0, ge=0)
    max_retries: int = Field(default=0, ge=0)
    retry_backoff_seconds: list[float] = Field(default_factory=lambda: list(DEFAULT_EMAIL_BACKOFFS))
    dry_run: bool = False
    smtp: SmtpSettings = Field(default_factory=SmtpSettings)
    mail_from_name: str = "MyCareerBuild"
    mail_from_address: str | None = None
    health_token: str | None = None
    admin_token: str | None = None
    webhook_secret: str | None = None
    alert: AlertSettings = Field(default_factory=AlertSettings)
    telegram: TelegramSettings = Field(default_factory=TelegramSettings)

    @field_validator("site_url")
    @classmethod
    def _strip_site_url(cls, value: str) -> str:
        return value.rstrip("/")

    @field_validator("retry_backoff_seconds")
    @classmethod
    def _validate_backoffs(cls, value: list[float]) -> list[float]:
        if any(step < 0 for step in value):
            raise ValueError("retry backoff steps must be non-negative")
        return value

    @model_validator(mode="after")
    def _fetch_limit_covers_digest(self) -> Settings:
        if self.job_fetch_limit < self.digest_size:
            self.job_fetch_limit = self.digest_size
        return self

    def created_after(self, now: datetime) -> datetime | None:
        if self.jobs_created_since_hours is None:
            return None
        return now - timedelta(hours=self.jobs_created_since_hours)


def _env_value(environ: Mapping[str, str], *keys: str) -> str:
    for key in keys:
        value = environ.get(key, "").strip()
        if value:
            return value
    return ""


def parse_bool(raw: str, fallback: bool) -> bool:
    normalized = raw.strip().lower()
    if normalized in TRUE_VALUES:
        return True
    if normalized in FALSE_VALUES:
        return False
    return fallback


def parse_backoffs(raw: str, defaults: tuple[float, ...]) -> list[float]:
    """Parse a comma separated list of seconds, keeping at most three steps.

    Entries that are not positive numbers fall back to the default step at the
    same position (or the last default when the list is longer).
    """
    if not raw:
        return list(defaults)
    steps: list[float] = []
    for index, part in enumerate(item.strip() for item in raw.split(",") if item.strip()):
        try:
            value = float(part)
        except ValueError:
            value = -1.0
        if value <= 0:
            value = defaults[min(index, len(defaults) - 1)]
        steps.append(value)
    return steps[:MAX_BACKOFF_STEPS] or list(defaults)


def _optional(value: str) -> str | None:
    return value or None


def load_settings(environ: Mapping[str, str] | None = None) -> Settings:
    source = os.environ if environ is None else environ

    smtp_port_raw = _env_value(source, "MARKETING_SMTP_PORT", "EMAIL_PORT") or "587"
    smtp_secure_raw = _env_value(source, "MARKETING_SMTP_SECURE")
    smtp_tls_raw = _env_value(source, "MARKETING_SMTP_REQUIRE_TLS")
    since_hours_raw = _env_value(source, "MARKETING_JOBS_CREATED_SINCE_HOURS")
    contact_limit_raw = _env_value(source, "MARKETING_CONTACTS_FETCH_LIMIT")
    email_max_retries_raw = _env_value(source, "MARKETING_EMAIL_MAX_RETRIES")

    email_backoffs = parse_backoffs(
        _env_value(source, "MARKETING_EMAIL_RETRY_BACKOFF_SECONDS"), DEFAULT_EMAIL_BACKOFFS
    )
    telegram_backoffs = parse_backoffs(
        _env_value(source, "MARKETING_TELEGRAM_RETRY_BACKOFF_SECONDS"), DEFAULT_TELEGRAM_BACKOFFS
    )
    batch_size = _env_value(source, "MARKETING_EMAIL_BATCH_SIZE") or "50"
    concurrency = _env_value(source, "MARKETING_EMAIL_CONCURRENCY") or "5"
    telegram_retries_raw = _env_value(source, "MARKETING_TELEGRAM_MAX_RETRIES")

    payload = {
        "enabled": parse_bool(_env_value(source, "MARKETING_EMAIL_ENABLED"), True),
        "database_path": Path(_env_value(source, "NOTIFIER_DB_PATH") or DEFAULT_DB_PATH),
        "site_url": _env_value(source, "MARKETING_SITE_URL") or "https://mycareerbuild.com",
        "schedule_interval_seconds": float(
            _env_value(source, "MARKETING_SCHEDULE_INTERVAL_SECONDS") or 3 * 24 * 3600
        ),
        "job_fetch_limit": int(_env_value(source, "MARKETING_JOBS_FETCH_LIMIT") or "100"),
        "jobs_created_since_hours": float(since_hours_raw) if since_hours_raw else None,
        "primary_job_type": _optional(_env_value(source, "MARKETING_PRIMARY_JOB_TYPE")),
        "digest_size": int(_env_value(source, "MARKETING_DIGEST_SIZE") or "5"),
        "batch_size": int(batch_size),
        "concurrency": int(concurrency),
        "contact_fetch_limit": int(contact_limit_raw) if contact_limit_raw else None,
        "batch_pause_seconds": float(
            _env_value(source, "MARKETING_EMAIL_BATCH_PAUSE_SECONDS") or "10"
        ),
        "max_retries": int(email_max_retries_raw) if email_max_retries_raw else 0,
        "retry_backoff_seconds": email_backoffs,
        "dry_run": parse_bool(_env_value(source, "MARKETING_EMAIL_DRY_RUN"), False),
        "smtp": {
            "host": _optional(_env_value(source, "MARKETING_SMTP_HOST", "EMAIL_HOST")),
            "port": int(smtp_port_raw),
            "secure": parse_bool(smtp_secure_raw, smtp_port_raw == "465"),
            "require_tls": parse_bool(smtp_tls_raw, smtp_port_raw == "587"),
            "user": _optional(_env_value(source, "MARKETING_SMTP_USER", "EMAIL_USER")),
            "password": _optional(_env_value(source, "MARKETING_SMTP_PASS", "EMAIL_PASS")),
            "timeout_seconds": float(_env_value(source, "MARKETING_SMTP_TIMEOUT_SECONDS") or "30"),
        },
        "mail_from_name": _env_value(source, "MARKETING_FROM_NAME", "FROM_NAME") or "MyCareerBuild",
        "mail_from_address": _optional(
            _env_value(source, "MARKETING_FROM_EMAIL", "FROM_EMAIL", "EMAIL_FROM", "EMAIL_USER")
        ),
        "health_token": _optional(_env_value(source, "MARKETING_HEALTH_TOKEN")),
        "admin_token": _optional(_env_value(source, "MARKETING_ADMIN_TOKEN", "ADMIN_KEY")),
        "webhook_secret": _optional(_env_value(source, "TELEGRAM_WEBHOOK_SECRET")),
        "alert": {
            "failure_rate_threshold": float(
                _env_value(source, "MARKETING_ALERT_FAILURE_RATE") or "10"
            ),
            "backlog_threshold": int(
                _env_value(source, "MARKETING_ALERT_BACKLOG_THRESHOLD") or "500"
            ),
        },
        "telegram": {
            "enabled": parse_bool(_env_value(source, "MARKETING_TELEGRAM_ENABLED"), False),
            "dry_run": parse_bool(_env_value(source, "MARKETING_TELEGRAM_DRY_RUN"), False),
            "bot_token": _optional(
                _env_value(source, "MARKETING_TELEGRAM_BOT_TOKEN", "TELEGRAM_BOT_TOKEN")
            ),
            "api_base_url": _env_value(source, "MARKETING_TELEGRAM_API_BASE")
            or "https://api.telegram.org",
            "batch_size": int(_env_value(source, "MARKETING_TELEGRAM_BATCH_SIZE") or batch_size),
            "batch_pause_seconds": float(
                _env_value(source, "MARKETING_TELEGRAM_BATCH_PAUSE_SECONDS") or "2"
            ),
            "concurrency": int(_env_value(source, "MARKETING_TELEGRAM_CONCURRENCY") or concurrency),
            "max_retries": (
                int(telegram_retries_raw) if telegram_retries_raw else len(telegram_backoffs)
            ),
            "retry_backoff_seconds": telegram_backoffs,
            "timeout_seconds": float(
                _env_value(source, "MARKETING_TELEGRAM_TIMEOUT_SECONDS") or "20"
            ),
            "disable_link_preview": parse_bool(
                _env_value(source, "MARKETING_TELEGRAM_DISABLE_LINK_PREVIEW"), True
            ),
            "default_country_code": _env_value(source, "MARKETING_TELEGRAM_COUNTRY_CODE") or "91",
        },
    }
    try:
        return Settings(**payload)
    except ValidationError as exc:
        raise ValueError(str(exc)) from exc


def mask_secret(value: str | None, visible_prefix: int = 3, visible_suffix: int = 2) -> str:
    if not value:
        return ""
    if len(value) <= visible_prefix + visible_suffix:
        return "*" * len(value)
    hidden = "*" * (len(value) - visible_prefix - visible_suffix)
    return f"{value[:visible_prefix]}{hidden}{value[-visible_suffix:]}"
