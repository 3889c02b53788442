"""Error taxonomy for onboarding and provisioning.

Every error carries a stable ``kind``, surfaced in saga results and HTTP
bodies.  Whether a failure blocks the transition to ``onboarded`` is decided
by the saga step that raised it, not by the error.
"""

from __future__ import annotations


class OnboardingError(Exception):
    """Base class for all onboarding errors."""

    kind: str = "OnboardingError"

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.kind)
        self.message = message or self.kind


# ---------------------------------------------------------------------------
# Local validation / token boundary
# ---------------------------------------------------------------------------

class TokenInvalid(OnboardingError):
    """Token not found, wrong purpose, expired or already consumed.

    The causes are deliberately not distinguished.
    """
    kind = "TokenInvalid"

    def __init__(self, message: str = "Invalid or expired token") -> None:
        super().__init__(message)


class WeakPassword(OnboardingError):
    kind = "WeakPassword"


class ContractNotAccepted(OnboardingError):
    kind = "ContractNotAccepted"

    def __init__(
        self,
        message: str = "You must accept the Practitioner Agreement to continue",
    ) -> None:
        super().__init__(message)


class PractitionerNotFound(OnboardingError):
    kind = "PractitionerNotFound"


class InvalidStatusTransition(OnboardingError):
    kind = "InvalidStatusTransition"


class ProvisioningConflict(OnboardingError):
    """The practitioner is not in a status the operation can start from."""
    kind = "ProvisioningConflict"


# ---------------------------------------------------------------------------
# Saga steps
# ---------------------------------------------------------------------------

class IdentityProvisioningFailed(OnboardingError):
    kind = "IdentityProvisioningFailed"


class PmsRecordNotFound(OnboardingError):
    """No PMS record exists; an admin must register the practitioner first."""
    kind = "PmsRecordNotFound"


class PmsLookupTransientError(OnboardingError):
    """The PMS could not be reached; re-running the saga is safe."""
    kind = "PmsLookupTransientError"


class ProvisioningPersistenceFailed(OnboardingError):
    kind = "ProvisioningPersistenceFailed"


class KeyProvisioningFailed(OnboardingError):
    kind = "KeyProvisioningFailed"


class NotificationFailed(OnboardingError):
    kind = "NotificationFailed"
