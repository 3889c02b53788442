"""Pydantic models for the ``onboarding_tokens`` table.

Only the SHA-256 hash of a token is stored; the raw value exists in
``IssuedToken`` long enough to be put into a link.
"""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict

from app.models.enums import TokenPurpose, TokenState


class Token(BaseModel):
    """Token record returned from the database."""
    model_config = ConfigDict(from_attributes=True)

    token_hash: str
    purpose: TokenPurpose
    practitioner_id: UUID
    issued_at: datetime
    expires_at: datetime
    consumed_at: datetime | None = None


class IssuedToken(BaseModel):
    """A freshly issued token, including its raw value."""
    raw_value: str
    purpose: TokenPurpose
    practitioner_id: UUID
    issued_at: datetime
    expires_at: datetime


class TokenPeek(BaseModel):
    """Result of a read-only token check."""
    state: TokenState
    token: Token | None = None

    @property
    def is_valid(self) -> bool:
        return self.state == TokenState.valid
