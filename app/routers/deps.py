"""Shared router dependencies and error translation."""

import secrets

from fastapi import Header, HTTPException

from app.core.config import settings
from app.core.errors import (
    ContractNotAccepted,
    InvalidStatusTransition,
    NotificationFailed,
    OnboardingError,
    PractitionerNotFound,
    ProvisioningConflict,
    TokenInvalid,
    WeakPassword,
)

_STATUS_CODES: dict[type[OnboardingError], int] = {
    TokenInvalid: 400,
    WeakPassword: 400,
    ContractNotAccepted: 400,
    PractitionerNotFound: 404,
    ProvisioningConflict: 409,
    InvalidStatusTransition: 409,
    NotificationFailed: 502,
}


def http_error(exc: OnboardingError) -> HTTPException:
    """Convert a service error into an ``HTTPException`` (500 if unmapped)."""
    status_code = _STATUS_CODES.get(type(exc), 500)
    return HTTPException(
        status_code=status_code,
        detail={"error": exc.kind, "message": exc.message},
    )


def require_admin_key(x_admin_key: str | None = Header(default=None)) -> None:
    if not settings.ADMIN_API_KEY:
        raise HTTPException(status_code=503, detail="Admin API is not configured")
    if not x_admin_key or not secrets.compare_digest(x_admin_key, settings.ADMIN_API_KEY):
        raise HTTPException(status_code=401, detail="Invalid admin key")
