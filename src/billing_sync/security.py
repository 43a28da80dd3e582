"""Shared-secret authentication for the scheduler endpoints."""
from __future__ import annotations

import secrets

from fastapi import Depends, Header, HTTPException, status

from .config import Settings, get_settings
from .errors import AuthenticationError

BEARER_PREFIX = "Bearer "


def verify_cron_secret(authorization: str | None, expected: str | None) -> None:
    """Raise :class:`AuthenticationError` unless the header carries ``expected``.

    A deployment without a configured secret rejects every call.
    """

    if not expected:
        raise AuthenticationError("Cron secret is not configured")
    if not authorization or not authorization.startswith(BEARER_PREFIX):
        raise AuthenticationError("Missing bearer token")
    provided = authorization[len(BEARER_PREFIX):].strip()
    if not secrets.compare_digest(provided.encode("utf-8"), expected.encode("utf-8")):
        raise AuthenticationError("Invalid bearer token")


def require_cron_secret(
    authorization: str | None = Header(default=None),
    settings: Settings = Depends(get_settings),
) -> None:
    expected = settings.cron_secret.get_secret_value() if settings.cron_secret else None
    try:
        verify_cron_secret(authorization, expected)
    except AuthenticationError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized") from exc
