"""Request and result models for onboarding and provisioning."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field

from app.models.enums import PractitionerStatus, SagaOutcome, TokenState
from app.models.practitioner import PractitionerPublic


class ProfileFields(BaseModel):
    """Optional profile details supplied on the onboarding form."""
    display_name: str | None = None
    bio: str | None = None
    phone: str | None = None
    contract_accepted: bool = False


class CompleteOnboardingRequest(ProfileFields):
    """POST body for ``/onboarding/{token}``."""
    password: str


# ---------------------------------------------------------------------------
# Step results
# ---------------------------------------------------------------------------

class IdentityResult(BaseModel):
    external_id: str
    corporate_address: str
    license_assigned: bool = False
    created: bool = False


class PmsMatch(BaseModel):
    record_id: str
    sub_role_id: str | None = None
    matched_by: str = "email"


class SendResult(BaseModel):
    success: bool
    message_id: str | None = None
    error: str | None = None


# ---------------------------------------------------------------------------
# Saga result
# ---------------------------------------------------------------------------

class SagaError(BaseModel):
    kind: str
    message: str


class SagaResult(BaseModel):
    """Structured outcome of a provisioning run.

    Every optional capability is reported individually so callers can show
    exactly what needs manual follow-up.
    """
    practitioner_id: UUID
    outcome: SagaOutcome
    status: PractitionerStatus
    account_created: bool = False
    external_identity_id: str | None = None
    corporate_email: str | None = None
    license_assigned: bool = False
    pms_record_id: str | None = None
    pms_sub_role_id: str | None = None
    notes_enabled: bool = False
    email_sent: bool = False
    degraded: list[str] = Field(default_factory=list)
    error: SagaError | None = None

    @property
    def succeeded(self) -> bool:
        return self.outcome != SagaOutcome.failed


# ---------------------------------------------------------------------------
# Other onboarding surface results
# ---------------------------------------------------------------------------

class OnboardingPreview(BaseModel):
    """Read-only view of an onboarding token for its owner."""
    state: TokenState
    practitioner: PractitionerPublic | None = None
    expires_at: datetime | None = None


class OfferAcceptance(BaseModel):
    practitioner_id: UUID
    status: PractitionerStatus
    onboarding_expires_at: datetime
    email_sent: bool = False


class OnboardingResend(BaseModel):
    practitioner_id: UUID
    email: str
    expires_at: datetime


class StatusOverrideRequest(BaseModel):
    status: PractitionerStatus
    expected_status: PractitionerStatus | None = None


class ReprovisionRequest(BaseModel):
    password: str | None = None
