"""Enum types mirroring the PostgreSQL enums in supabase/migrations."""

from enum import Enum


class PractitionerStatus(str, Enum):
    """Lifecycle status of an applicant / practitioner."""
    applied = "applied"
    reviewed = "reviewed"
    denied = "denied"
    waitlisted = "waitlisted"
    interview_scheduled = "interview_scheduled"
    accepted = "accepted"
    offer_sent = "offer_sent"
    offer_accepted = "offer_accepted"
    onboarding_in_progress = "onboarding_in_progress"
    onboarded = "onboarded"


class TokenPurpose(str, Enum):
    """What a single-use token authorizes."""
    onboarding = "onboarding"
    interview_scheduling = "interview_scheduling"
    offer_acceptance = "offer_acceptance"


class TokenState(str, Enum):
    """Read-only token state reported to the token's owner."""
    valid = "valid"
    not_found = "not_found"
    expired = "expired"
    already_used = "already_used"
    # Link used but provisioning did not finish
    needs_attention = "needs_attention"


class SagaOutcome(str, Enum):
    """Overall result of a provisioning run."""
    succeeded = "succeeded"
    degraded = "degraded"
    failed = "failed"


class EmailTemplate(str, Enum):
    """Transactional email templates."""
    onboarding_invitation = "onboarding_invitation"
    welcome = "welcome"
    admin_attention = "admin_attention"
