"""Practitioner lifecycle state machine.

    applied -> reviewed -> {denied | waitlisted | interview_scheduled}
    interview_scheduled -> {denied | waitlisted | accepted}
    waitlisted -> {accepted | interview_scheduled}
    accepted -> offer_sent -> offer_accepted -> onboarding_in_progress -> onboarded

``denied`` and ``onboarded`` are terminal.  The provisioning saga is the only
writer of the last two edges (plus the rollback edge
``onboarding_in_progress -> offer_accepted`` after a fatal step).
"""

from __future__ import annotations

from app.core.errors import InvalidStatusTransition
from app.models.enums import PractitionerStatus

S = PractitionerStatus

TRANSITIONS: dict[PractitionerStatus, frozenset[PractitionerStatus]] = {
    S.applied: frozenset({S.reviewed}),
    S.reviewed: frozenset({S.denied, S.waitlisted, S.interview_scheduled}),
    S.interview_scheduled: frozenset(
        {S.denied, S.waitlisted, S.accepted, S.interview_scheduled}
    ),
    S.waitlisted: frozenset({S.accepted, S.interview_scheduled, S.waitlisted}),
    S.accepted: frozenset({S.offer_sent}),
    S.offer_sent: frozenset({S.offer_accepted}),
    S.offer_accepted: frozenset({S.onboarding_in_progress}),
    S.onboarding_in_progress: frozenset({S.onboarded, S.offer_accepted}),
    S.denied: frozenset(),
    S.onboarded: frozenset(),
}

TERMINAL_STATUSES: frozenset[PractitionerStatus] = frozenset({S.denied, S.onboarded})

# Edges only the provisioning saga may take
SAGA_TRANSITIONS: frozenset[tuple[PractitionerStatus, PractitionerStatus]] = frozenset({
    (S.offer_accepted, S.onboarding_in_progress),
    (S.onboarding_in_progress, S.onboarded),
    (S.onboarding_in_progress, S.offer_accepted),
})


def can_transition(current: PractitionerStatus, new: PractitionerStatus) -> bool:
    return new in TRANSITIONS[current]


def validate_transition(
    current: PractitionerStatus,
    new: PractitionerStatus,
    *,
    by_admin: bool = False,
) -> None:
    """Raise ``InvalidStatusTransition`` unless ``current -> new`` is allowed.

    Admin overrides may not take the saga's own edges.
    """
    if not can_transition(current, new):
        raise InvalidStatusTransition(
            f"Cannot move practitioner from '{current.value}' to '{new.value}'"
        )
    if by_admin and (current, new) in SAGA_TRANSITIONS:
        raise InvalidStatusTransition(
            f"'{current.value}' -> '{new.value}' is performed by onboarding only"
        )
