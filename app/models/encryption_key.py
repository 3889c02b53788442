"""Pydantic models for the ``practitioner_encryption_keys`` table."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class EncryptionKeyRecord(BaseModel):
    """A wrapped clinical-notes DEK.  The plaintext DEK is never stored."""
    model_config = ConfigDict(from_attributes=True)

    practitioner_id: UUID
    external_identity_id: str
    key_name: str
    key_version: str
    wrapped_dek: str  # base64
    is_active: bool = True
    created_at: datetime | None = None
    deactivated_at: datetime | None = None


class KeyHandle(BaseModel):
    """Reference to an asymmetric key held in the vault."""
    kid: str
    name: str
    version: str


class NotesKeyResult(BaseModel):
    key_name: str
    key_version: str
    enabled: bool = True
