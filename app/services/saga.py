"""Provisioning saga: turn an accepted offer into an active practitioner.

Executes, in order:

1. re-check the consumed token against the practitioner (token runs only)
2. corporate identity (Graph)            -- fatal
3. PMS record match (Halaxy)             -- fatal
4. write 2+3 with ``status = onboarded`` -- fatal
5. clinical-notes key (Key Vault)        -- degrades ``notes_enabled``
6. outcome email (Resend)                -- degrades ``email_sent``

Any degraded or failed run also alerts the practice admin, after the welcome
email so that a mail failure is part of the alert.

There is no distributed transaction and no saga log.  Each external success
is written to the practitioner row straight away, and each step first checks
that row, so running the saga again after a crash or a fatal failure turns
completed steps into no-ops.  A fatal failure moves the practitioner back to
``offer_accepted`` but keeps whatever was already recorded.
"""

from __future__ import annotations

import logging
import secrets
import time
from collections.abc import Callable
from uuid import UUID

from app.core.constants import (
    CAPABILITY_EMAIL,
    CAPABILITY_LICENSE,
    CAPABILITY_NOTES,
    CAPABILITY_PMS_SUB_ROLE,
    CAPABILITY_PASSWORD_RESET,
)
from app.core.errors import (
    OnboardingError,
    PractitionerNotFound,
    ProvisioningConflict,
    ProvisioningPersistenceFailed,
    TokenInvalid,
)
from app.models.enums import PractitionerStatus, SagaOutcome, TokenPurpose
from app.models.onboarding import (
    IdentityResult,
    PmsMatch,
    ProfileFields,
    SagaError,
    SagaResult,
)
from app.models.practitioner import Practitioner
from app.models.token import Token
from app.services.identity import IdentityProvisioner
from app.services.key_vault import EncryptionKeyProvisioner
from app.services.notifications import NotificationDispatcher
from app.services.pms import PmsMatcher
from app.services.practitioners import PractitionerRepository

logger = logging.getLogger(__name__)

S = PractitionerStatus

# Statuses an internal (token-less) retry may start from
RESUMABLE_STATUSES: frozenset[PractitionerStatus] = frozenset(
    {S.offer_accepted, S.onboarding_in_progress, S.onboarded}
)


def generate_temporary_password() -> str:
    """Password for identities created without the practitioner present.

    Always contains upper, lower and digit characters.
    """
    return f"Bloom{secrets.token_urlsafe(9)}!{secrets.randbelow(90) + 10}"


class ProvisioningSaga:
    """Sequence the provisioning steps and classify their failures."""

    def __init__(
        self,
        repository: PractitionerRepository,
        identity: IdentityProvisioner,
        pms: PmsMatcher,
        keys: EncryptionKeyProvisioner,
        notifier: NotificationDispatcher,
        password_factory: Callable[[], str] = generate_temporary_password,
    ) -> None:
        self.repository = repository
        self.identity = identity
        self.pms = pms
        self.keys = keys
        self.notifier = notifier
        self.password_factory = password_factory

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def run(
        self,
        practitioner_id: UUID,
        password: str | None = None,
        profile: ProfileFields | None = None,
        *,
        token: Token | None = None,
    ) -> SagaResult:
        """Run all steps for one practitioner.

        With ``token`` (the public onboarding path) the practitioner must be
        ``offer_accepted``.  Without it (an internal retry) any of
        ``RESUMABLE_STATUSES`` is accepted and an already ``onboarded``
        practitioner keeps that status while missing optional steps are
        retried.

        Raises ``PractitionerNotFound``, ``TokenInvalid`` or
        ``ProvisioningConflict`` before anything is changed; every later
        failure is reported in the returned ``SagaResult``.
        """
        start_time = time.time()
        practitioner = self.repository.get(practitioner_id)
        if practitioner is None:
            raise PractitionerNotFound(f"Practitioner {practitioner_id} not found")

        if token is not None:
            self._check_token(token, practitioner)
            allowed: frozenset[PractitionerStatus] = frozenset({S.offer_accepted})
        else:
            allowed = RESUMABLE_STATUSES
        if practitioner.status not in allowed:
            raise ProvisioningConflict(
                f"Cannot onboard a practitioner in status '{practitioner.status.value}'"
            )

        if practitioner.status == S.offer_accepted:
            moved = self.repository.transition_status(
                practitioner.id, S.offer_accepted, S.onboarding_in_progress
            )
            if moved is None:
                raise ProvisioningConflict(
                    "Practitioner status changed while starting onboarding"
                )
            practitioner = moved

        logger.info(
            "saga_start",
            extra={
                "event": "saga_start",
                "practitioner_id": str(practitioner.id),
                "trigger": "token" if token is not None else "retry",
            },
        )

        identity: IdentityResult | None = None
        match: PmsMatch | None = None
        temporary_password = False
        try:
            identity, temporary_password = self._identity_step(
                practitioner, password, profile
            )
            match = self._pms_step(practitioner)
            if practitioner.status == S.onboarding_in_progress:
                practitioner = self._timed(
                    "finalize",
                    lambda: self.repository.complete_provisioning(
                        practitioner.id, identity, match, profile
                    ),
                )
        except OnboardingError as exc:
            return self._fail(
                practitioner, exc, identity, match, start_time, temporary_password
            )

        notes_enabled = self._notes_step(practitioner, identity.external_id)

        result = SagaResult(
            practitioner_id=practitioner.id,
            outcome=SagaOutcome.succeeded,
            status=practitioner.status,
            account_created=identity.created,
            external_identity_id=identity.external_id,
            corporate_email=identity.corporate_address,
            license_assigned=identity.license_assigned,
            pms_record_id=match.record_id,
            pms_sub_role_id=match.sub_role_id,
            notes_enabled=notes_enabled,
        )
        if temporary_password:
            result.degraded.append(CAPABILITY_PASSWORD_RESET)
        if self.identity.licensing_enabled and not identity.license_assigned:
            result.degraded.append(CAPABILITY_LICENSE)
        if not match.sub_role_id:
            result.degraded.append(CAPABILITY_PMS_SUB_ROLE)
        if not notes_enabled:
            result.degraded.append(CAPABILITY_NOTES)
        if result.degraded:
            result.outcome = SagaOutcome.degraded

        result.email_sent = self._notify_step(practitioner, result)
        if not result.email_sent:
            result.degraded.append(CAPABILITY_EMAIL)
            result.outcome = SagaOutcome.degraded
        if result.outcome != SagaOutcome.succeeded:
            self._alert_step(practitioner, result)

        logger.info(
            "saga_complete",
            extra={
                "event": "saga_complete",
                "practitioner_id": str(practitioner.id),
                "outcome": result.outcome.value,
                "degraded": result.degraded,
                "duration_seconds": round(time.time() - start_time, 2),
            },
        )
        return result

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    @staticmethod
    def _check_token(token: Token, practitioner: Practitioner) -> None:
        if (
            token.purpose != TokenPurpose.onboarding
            or token.practitioner_id != practitioner.id
        ):
            logger.warning(
                "saga_token_mismatch",
                extra={
                    "practitioner_id": str(practitioner.id),
                    "token_practitioner_id": str(token.practitioner_id),
                    "purpose": token.purpose.value,
                },
            )
            raise TokenInvalid()

    def _identity_step(
        self,
        practitioner: Practitioner,
        password: str | None,
        profile: ProfileFields | None,
    ) -> tuple[IdentityResult, bool]:
        """Return the identity and whether it got a generated password."""
        if practitioner.identity_provisioned:
            return IdentityResult(
                external_id=practitioner.external_identity_id,
                corporate_address=practitioner.corporate_email or "",
                license_assigned=practitioner.license_assigned,
                created=False,
            ), False

        temporary = not password
        if temporary:
            logger.warning(
                "saga_temporary_password",
                extra={"practitioner_id": str(practitioner.id)},
            )
            password = self.password_factory()

        display_name = profile.display_name if profile else None
        identity = self._timed(
            "identity",
            lambda: self.identity.ensure_identity(practitioner, password, display_name),
        )
        self.repository.record_identity(practitioner.id, identity)
        return identity, temporary

    def _pms_step(self, practitioner: Practitioner) -> PmsMatch:
        if practitioner.pms_matched:
            return PmsMatch(
                record_id=practitioner.pms_record_id,
                sub_role_id=practitioner.pms_sub_role_id,
                matched_by="existing",
            )
        match = self._timed("pms", lambda: self.pms.find_existing_record(practitioner))
        self.repository.record_pms_match(practitioner.id, match)
        return match

    def _notes_step(self, practitioner: Practitioner, external_id: str) -> bool:
        try:
            if self.repository.has_active_key(practitioner.id):
                if not practitioner.notes_enabled:
                    self.repository.set_notes_enabled(practitioner.id, True)
                return True
            notes = self._timed(
                "notes_key",
                lambda: self.keys.ensure_notes_key(practitioner, external_id),
            )
            if notes.enabled:
                return True
        except Exception as exc:
            self._log_degraded(practitioner, "notes_key", exc)

        try:
            self.repository.set_notes_enabled(practitioner.id, False)
        except ProvisioningPersistenceFailed:
            # Logged by the repository; notes_enabled defaults to false
            pass
        return False

    def _notify_step(self, practitioner: Practitioner, result: SagaResult) -> bool:
        try:
            return self.notifier.send_outcome_email(practitioner, result)
        except Exception as exc:
            self._log_degraded(practitioner, "notification", exc)
            return False

    def _alert_step(self, practitioner: Practitioner, result: SagaResult) -> None:
        try:
            self.notifier.send_admin_alert(practitioner, result)
        except Exception as exc:
            self._log_degraded(practitioner, "admin_alert", exc)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _log_degraded(practitioner: Practitioner, step: str, exc: Exception) -> None:
        logger.error(
            "saga_step_degraded",
            extra={
                "event": "saga_step_degraded",
                "practitioner_id": str(practitioner.id),
                "step": step,
                "error_type": getattr(exc, "kind", type(exc).__name__),
                "error_message": str(exc),
            },
        )

    def _timed(self, step: str, func):
        step_start = time.time()
        value = func()
        logger.info(
            "step_complete",
            extra={
                "event": "step_complete",
                "step": step,
                "duration_ms": int((time.time() - step_start) * 1000),
            },
        )
        return value

    def _fail(
        self,
        practitioner: Practitioner,
        exc: OnboardingError,
        identity: IdentityResult | None,
        match: PmsMatch | None,
        start_time: float,
        temporary_password: bool = False,
    ) -> SagaResult:
        """Roll status back to ``offer_accepted`` and report what was kept."""
        status = practitioner.status
        if status == S.onboarding_in_progress:
            try:
                reverted = self.repository.transition_status(
                    practitioner.id, S.onboarding_in_progress, S.offer_accepted
                )
                if reverted is not None:
                    status = reverted.status
            except ProvisioningPersistenceFailed:
                logger.error(
                    "saga_rollback_failed",
                    extra={"practitioner_id": str(practitioner.id)},
                )

        logger.error(
            "saga_failed",
            extra={
                "event": "saga_failed",
                "practitioner_id": str(practitioner.id),
                "error_type": exc.kind,
                "error_message": exc.message,
                "status": status.value,
                "duration_seconds": round(time.time() - start_time, 2),
            },
        )

        result = SagaResult(
            practitioner_id=practitioner.id,
            outcome=SagaOutcome.failed,
            status=status,
            account_created=identity.created if identity else False,
            external_identity_id=identity.external_id if identity else None,
            corporate_email=identity.corporate_address if identity else None,
            license_assigned=identity.license_assigned if identity else False,
            pms_record_id=match.record_id if match else None,
            pms_sub_role_id=match.sub_role_id if match else None,
            notes_enabled=practitioner.notes_enabled,
            error=SagaError(kind=exc.kind, message=exc.message),
        )
        if temporary_password:
            result.degraded.append(CAPABILITY_PASSWORD_RESET)
        self._alert_step(practitioner, result)
        return result
