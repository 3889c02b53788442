"""Onboarding surface: token-authenticated practitioner actions and admin actions.

Public operations (authenticated only by an emailed token):

* ``peek_onboarding``     -- read-only state of an onboarding link
* ``accept_offer``        -- offer token -> ``offer_accepted`` + onboarding link
* ``complete_onboarding`` -- onboarding token + password -> provisioning saga

Practice-admin operations live on ``PracticeAdmin``.
"""

from __future__ import annotations

import logging
import re
from datetime import timedelta
from uuid import UUID

from app.core.constants import PASSWORD_MIN_LENGTH, PASSWORD_RULES
from app.core.errors import (
    ContractNotAccepted,
    NotificationFailed,
    PractitionerNotFound,
    ProvisioningConflict,
    WeakPassword,
)
from app.models.enums import PractitionerStatus, TokenPurpose, TokenState
from app.models.onboarding import (
    OfferAcceptance,
    OnboardingPreview,
    OnboardingResend,
    ProfileFields,
    SagaResult,
)
from app.models.practitioner import Practitioner, PractitionerPublic
from app.services.lifecycle import validate_transition
from app.services.notifications import NotificationDispatcher
from app.services.practitioners import PractitionerRepository
from app.services.saga import ProvisioningSaga
from app.services.tokens import TokenStore

logger = logging.getLogger(__name__)

_COMPILED_RULES = [(re.compile(pattern), message) for pattern, message in PASSWORD_RULES]


def validate_password(password: str) -> None:
    """Raise ``WeakPassword`` unless the password meets the policy."""
    if not password or len(password) < PASSWORD_MIN_LENGTH:
        raise WeakPassword(
            f"Password must be at least {PASSWORD_MIN_LENGTH} characters long"
        )
    for pattern, message in _COMPILED_RULES:
        if not pattern.search(password):
            raise WeakPassword(message)


class OnboardingService:
    """Token-authenticated onboarding operations."""

    def __init__(
        self,
        tokens: TokenStore,
        repository: PractitionerRepository,
        saga: ProvisioningSaga,
        notifier: NotificationDispatcher,
        onboarding_ttl: timedelta = timedelta(days=7),
    ) -> None:
        self.tokens = tokens
        self.repository = repository
        self.saga = saga
        self.notifier = notifier
        self.onboarding_ttl = onboarding_ttl

    def peek_onboarding(self, raw_token: str) -> OnboardingPreview:
        """Read-only link check for the onboarding form.

        A used link whose practitioner never reached ``onboarded`` (the run
        failed or is stuck) reports ``needs_attention`` rather than
        ``already_used``.
        """
        peek = self.tokens.peek(raw_token, TokenPurpose.onboarding)
        if peek.state == TokenState.already_used and peek.token is not None:
            practitioner = self.repository.get(peek.token.practitioner_id)
            if practitioner is not None and practitioner.status != PractitionerStatus.onboarded:
                return OnboardingPreview(state=TokenState.needs_attention)
        if not peek.is_valid:
            return OnboardingPreview(state=peek.state)

        practitioner = self.repository.get(peek.token.practitioner_id)
        if practitioner is None:
            return OnboardingPreview(state=TokenState.not_found)
        if practitioner.status == PractitionerStatus.onboarded:
            return OnboardingPreview(state=TokenState.already_used)

        return OnboardingPreview(
            state=TokenState.valid,
            practitioner=PractitionerPublic(**practitioner.model_dump()),
            expires_at=peek.token.expires_at,
        )

    def accept_offer(self, raw_token: str) -> OfferAcceptance:
        """Accept an offer and send the onboarding invitation.

        The invitation email is best-effort; an admin can resend it.
        """
        token = self.tokens.validate_and_consume(raw_token, TokenPurpose.offer_acceptance)
        practitioner = self.repository.transition_status(
            token.practitioner_id,
            PractitionerStatus.offer_sent,
            PractitionerStatus.offer_accepted,
        )
        if practitioner is None:
            raise ProvisioningConflict("Offer is no longer open for acceptance")

        issued = self.tokens.issue(
            practitioner.id, TokenPurpose.onboarding, self.onboarding_ttl
        )
        sent = self.notifier.send_onboarding_invitation(practitioner, issued)
        logger.info(
            "offer_accepted",
            extra={
                "practitioner_id": str(practitioner.id),
                "email_sent": sent.success,
            },
        )
        return OfferAcceptance(
            practitioner_id=practitioner.id,
            status=practitioner.status,
            onboarding_expires_at=issued.expires_at,
            email_sent=sent.success,
        )

    def complete_onboarding(
        self,
        raw_token: str,
        password: str,
        profile: ProfileFields | None = None,
    ) -> SagaResult:
        """Consume the onboarding token and run the provisioning saga.

        Password and contract checks run before the token is touched, so a
        rejected form leaves the link usable.
        """
        validate_password(password)
        profile = profile or ProfileFields()
        if not profile.contract_accepted:
            raise ContractNotAccepted()

        token = self.tokens.validate_and_consume(raw_token, TokenPurpose.onboarding)
        return self.saga.run(token.practitioner_id, password, profile, token=token)


class PracticeAdmin:
    """Operations performed by practice staff."""

    def __init__(
        self,
        tokens: TokenStore,
        repository: PractitionerRepository,
        saga: ProvisioningSaga,
        notifier: NotificationDispatcher,
        onboarding_ttl: timedelta = timedelta(days=7),
    ) -> None:
        self.tokens = tokens
        self.repository = repository
        self.saga = saga
        self.notifier = notifier
        self.onboarding_ttl = onboarding_ttl

    def _require(self, practitioner_id: UUID) -> Practitioner:
        practitioner = self.repository.get(practitioner_id)
        if practitioner is None:
            raise PractitionerNotFound(f"Practitioner {practitioner_id} not found")
        return practitioner

    def resend_onboarding(self, practitioner_id: UUID) -> OnboardingResend:
        """Issue a fresh onboarding link, invalidating the previous one."""
        practitioner = self._require(practitioner_id)
        if practitioner.status != PractitionerStatus.offer_accepted:
            raise ProvisioningConflict(
                "Onboarding can only be resent for practitioners who accepted "
                f"their offer (current status: '{practitioner.status.value}')"
            )

        issued = self.tokens.issue(
            practitioner.id, TokenPurpose.onboarding, self.onboarding_ttl
        )
        sent = self.notifier.send_onboarding_invitation(practitioner, issued)
        if not sent.success:
            raise NotificationFailed(
                f"Failed to send onboarding email: {sent.error or 'unknown error'}"
            )

        logger.info(
            "onboarding_resent",
            extra={"practitioner_id": str(practitioner.id)},
        )
        return OnboardingResend(
            practitioner_id=practitioner.id,
            email=practitioner.email,
            expires_at=issued.expires_at,
        )

    def reprovision(
        self, practitioner_id: UUID, password: str | None = None
    ) -> SagaResult:
        """Re-run the saga without a token to finish or repair provisioning."""
        if password:
            validate_password(password)
        return self.saga.run(practitioner_id, password)

    def override_status(
        self,
        practitioner_id: UUID,
        status: PractitionerStatus,
        expected_status: PractitionerStatus | None = None,
    ) -> Practitioner:
        practitioner = self._require(practitioner_id)
        current = practitioner.status
        if expected_status is not None and expected_status != current:
            raise ProvisioningConflict(
                f"Expected status '{expected_status.value}' but found '{current.value}'"
            )
        validate_transition(current, status, by_admin=True)

        updated = self.repository.transition_status(practitioner.id, current, status)
        if updated is None:
            raise ProvisioningConflict("Practitioner status changed concurrently")
        return updated

