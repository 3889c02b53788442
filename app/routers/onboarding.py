"""Practitioner onboarding endpoints.

GET  /{token} -- read-only link check, used to render the onboarding form.
POST /{token} -- submit password + profile and run provisioning.

Both are authenticated by the token alone.  The POST response body is the
structured provisioning result; ``failed`` results use 424 so clients can
tell "nothing was provisioned" from a degraded success.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from starlette.responses import JSONResponse

from app.core.errors import OnboardingError
from app.models.enums import SagaOutcome, TokenState
from app.models.onboarding import CompleteOnboardingRequest, OnboardingPreview, ProfileFields
from app.routers.deps import http_error
from app.services.factory import get_onboarding_service
from app.services.onboarding import OnboardingService

router = APIRouter()

_PEEK_ERRORS: dict[TokenState, tuple[int, str]] = {
    TokenState.not_found: (404, "Invalid onboarding link"),
    TokenState.expired: (400, "This onboarding link has expired. Please contact us for a new link."),
    TokenState.already_used: (400, "Onboarding has already been completed"),
    TokenState.needs_attention: (
        409,
        "We could not finish setting up your account. Our team has been notified; "
        "please contact us to complete onboarding.",
    ),
}


@router.get("/{token}", response_model=OnboardingPreview)
def get_onboarding(
    token: str,
    service: OnboardingService = Depends(get_onboarding_service),
) -> OnboardingPreview:
    preview = service.peek_onboarding(token)
    if preview.state != TokenState.valid:
        status_code, message = _PEEK_ERRORS[preview.state]
        raise HTTPException(
            status_code=status_code,
            detail={"error": preview.state.value, "message": message},
        )
    return preview


@router.post("/{token}")
def complete_onboarding(
    token: str,
    body: CompleteOnboardingRequest,
    service: OnboardingService = Depends(get_onboarding_service),
) -> Any:
    profile = ProfileFields(**body.model_dump(exclude={"password"}))
    try:
        result = service.complete_onboarding(token, body.password, profile)
    except OnboardingError as exc:
        raise http_error(exc) from exc

    payload = result.model_dump(mode="json")
    if result.outcome == SagaOutcome.failed:
        return JSONResponse(status_code=424, content=payload)
    return payload
