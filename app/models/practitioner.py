"""Pydantic models for the ``practitioners`` table.

A practitioner row is created when an application is accepted and is only
ever status-transitioned, never deleted.  The foreign references
(``external_identity_id``, ``pms_record_id`` ...) double as the record of
which provisioning steps have already completed.
"""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict

from app.models.enums import PractitionerStatus


class Practitioner(BaseModel):
    """Full practitioner record returned from the database."""
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    first_name: str
    last_name: str
    email: str
    phone: str | None = None
    display_name: str | None = None
    bio: str | None = None
    status: PractitionerStatus

    external_identity_id: str | None = None
    corporate_email: str | None = None
    license_assigned: bool = False
    pms_record_id: str | None = None
    pms_sub_role_id: str | None = None
    notes_enabled: bool = False

    contract_accepted_at: datetime | None = None
    onboarding_completed_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    @property
    def identity_provisioned(self) -> bool:
        return bool(self.external_identity_id)

    @property
    def pms_matched(self) -> bool:
        return bool(self.pms_record_id)


class PractitionerPublic(BaseModel):
    """Fields shown to the token owner on the onboarding page."""
    first_name: str
    last_name: str
    email: str
    phone: str | None = None
    display_name: str | None = None
    bio: str | None = None
