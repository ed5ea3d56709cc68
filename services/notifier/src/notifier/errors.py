from __future__ import annotations


class NotifierError(RuntimeError):
    """Base class for errors raised by the notification service."""


class ConfigurationError(NotifierError):
    """A channel or collaborator is missing configuration it cannot run without."""


class TelegramApiError(NotifierError):
    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ChatLinkError(NotifierError):
    """Storing a Telegram chat id on a contact could not be verified."""
