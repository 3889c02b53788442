"""Single-use, purpose-scoped, expiring tokens.

Tokens are the only thing linking an unauthenticated request (an emailed
link) to a practitioner.  Only the SHA-256 hash is stored.

Two read paths exist on purpose:

* ``peek`` is a plain read.  It may tell the owner *why* a link no longer
  works (expired vs. already used) and never changes anything, so reloading
  the onboarding page does not burn the link.
* ``validate_and_consume`` is one conditional ``UPDATE``.  It is the single
  serialization point between concurrent requests holding the same token and
  reports every failure as the same ``TokenInvalid``.
"""

from __future__ import annotations

import hashlib
import logging
import secrets
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from uuid import UUID

from supabase import Client

from app.core.constants import TOKEN_BYTES
from app.core.errors import TokenInvalid
from app.db.supabase import get_supabase
from app.models.enums import TokenPurpose, TokenState
from app.models.token import IssuedToken, Token, TokenPeek

logger = logging.getLogger(__name__)

TOKENS_TABLE = "onboarding_tokens"


def generate_token() -> str:
    """Generate a URL-safe token with 256 bits of entropy."""
    return secrets.token_urlsafe(TOKEN_BYTES)


def hash_token(raw_value: str) -> str:
    """Hash a token using SHA256."""
    return hashlib.sha256(raw_value.encode()).hexdigest()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenStore:
    """Token persistence backed by the ``onboarding_tokens`` table."""

    def __init__(
        self,
        client: Client | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._client = client
        self._clock = clock

    @property
    def client(self) -> Client:
        if self._client is None:
            self._client = get_supabase()
        return self._client

    def issue(
        self,
        practitioner_id: UUID,
        purpose: TokenPurpose,
        ttl: timedelta,
    ) -> IssuedToken:
        """Create a token, overwriting any earlier one of the same purpose.

        The earlier raw value stops matching anything as soon as its hash is
        replaced, consumed or not.
        """
        raw_value = generate_token()
        issued_at = self._clock()
        expires_at = issued_at + ttl

        self.client.table(TOKENS_TABLE).upsert(
            {
                "practitioner_id": str(practitioner_id),
                "purpose": purpose.value,
                "token_hash": hash_token(raw_value),
                "issued_at": issued_at.isoformat(),
                "expires_at": expires_at.isoformat(),
                "consumed_at": None,
            },
            on_conflict="practitioner_id,purpose",
        ).execute()

        logger.info(
            "token_issued",
            extra={
                "practitioner_id": str(practitioner_id),
                "purpose": purpose.value,
                "expires_at": expires_at.isoformat(),
            },
        )
        return IssuedToken(
            raw_value=raw_value,
            purpose=purpose,
            practitioner_id=practitioner_id,
            issued_at=issued_at,
            expires_at=expires_at,
        )

    def peek(self, raw_value: str, purpose: TokenPurpose) -> TokenPeek:
        """Report the token's state without consuming it."""
        if not raw_value:
            return TokenPeek(state=TokenState.not_found)

        result = (
            self.client.table(TOKENS_TABLE)
            .select("*")
            .eq("token_hash", hash_token(raw_value))
            .eq("purpose", purpose.value)
            .limit(1)
            .execute()
        )
        if not result.data:
            return TokenPeek(state=TokenState.not_found)

        token = Token(**result.data[0])
        if token.consumed_at is not None:
            state = TokenState.already_used
        elif self._clock() >= token.expires_at:
            state = TokenState.expired
        else:
            state = TokenState.valid
        return TokenPeek(state=state, token=token)

    def validate_and_consume(self, raw_value: str, purpose: TokenPurpose) -> Token:
        """Atomically mark the token consumed and return it.

        Raises ``TokenInvalid`` when no row matched: unknown, wrong purpose,
        expired, or already consumed (possibly by a concurrent request).
        """
        if not raw_value:
            raise TokenInvalid()

        now = self._clock().isoformat()
        result = (
            self.client.table(TOKENS_TABLE)
            .update({"consumed_at": now})
            .eq("token_hash", hash_token(raw_value))
            .eq("purpose", purpose.value)
            .is_("consumed_at", "null")
            .gt("expires_at", now)
            .execute()
        )
        if not result.data:
            logger.warning("token_rejected", extra={"purpose": purpose.value})
            raise TokenInvalid()

        token = Token(**result.data[0])
        logger.info(
            "token_consumed",
            extra={
                "practitioner_id": str(token.practitioner_id),
                "purpose": purpose.value,
            },
        )
        return token
