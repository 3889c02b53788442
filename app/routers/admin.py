"""Practice-admin endpoints.

All routes require the ``X-Admin-Key`` header.

POST /practitioners/{id}/resend-onboarding -- new onboarding link + email
POST /practitioners/{id}/reprovision       -- re-run provisioning without a token
POST /practitioners/{id}/status            -- validated manual status change
"""

from __future__ import annotations

from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends
from starlette.responses import JSONResponse

from app.core.errors import OnboardingError
from app.models.enums import SagaOutcome
from app.models.onboarding import OnboardingResend, ReprovisionRequest, StatusOverrideRequest
from app.models.practitioner import Practitioner
from app.routers.deps import http_error, require_admin_key
from app.services.factory import get_practice_admin
from app.services.onboarding import PracticeAdmin

router = APIRouter(dependencies=[Depends(require_admin_key)])


@router.post(
    "/practitioners/{practitioner_id}/resend-onboarding",
    response_model=OnboardingResend,
)
def resend_onboarding(
    practitioner_id: UUID,
    admin: PracticeAdmin = Depends(get_practice_admin),
) -> OnboardingResend:
    try:
        return admin.resend_onboarding(practitioner_id)
    except OnboardingError as exc:
        raise http_error(exc) from exc


@router.post("/practitioners/{practitioner_id}/reprovision")
def reprovision(
    practitioner_id: UUID,
    body: ReprovisionRequest | None = None,
    admin: PracticeAdmin = Depends(get_practice_admin),
) -> Any:
    password = body.password if body else None
    try:
        result = admin.reprovision(practitioner_id, password)
    except OnboardingError as exc:
        raise http_error(exc) from exc

    payload = result.model_dump(mode="json")
    if result.outcome == SagaOutcome.failed:
        return JSONResponse(status_code=424, content=payload)
    return payload


@router.post("/practitioners/{practitioner_id}/status", response_model=Practitioner)
def override_status(
    practitioner_id: UUID,
    body: StatusOverrideRequest,
    admin: PracticeAdmin = Depends(get_practice_admin),
) -> Practitioner:
    try:
        return admin.override_status(practitioner_id, body.status, body.expected_status)
    except OnboardingError as exc:
        raise http_error(exc) from exc
