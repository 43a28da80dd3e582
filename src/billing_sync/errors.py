"""Exception taxonomy shared by the sync jobs."""
from __future__ import annotations

from typing import Any, Optional


class BillingSyncError(Exception):
    """Base class for every error raised by this package."""


class AuthenticationError(BillingSyncError):
    """The cron trigger did not present the shared secret."""


class ValidationError(BillingSyncError):
    """A single entity cannot be processed; the batch continues."""


class ExternalApiError(BillingSyncError):
    """The accounting platform answered with a non-2xx status or was unreachable."""

    def __init__(self, status: int, message: str, details: Any = None) -> None:
        super().__init__(message)
        self.status = status
        self.message = message
        self.details = details


class LexofficeApiError(ExternalApiError):
    pass


class PersistenceError(BillingSyncError):
    """A local storage write failed."""

    def __init__(self, message: str, cause: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.cause = cause


class NotificationError(BillingSyncError):
    """Queueing a notification for one recipient failed."""
