"""
laurel.engine.transitions — Activity State Machine
====================================================

Explicit transition tables for the two state fields of a RewardActivity.
Services consult these tables instead of writing inline conditionals, so the
full set of legal moves is readable in one place.

Status (forward only)::

    pending ─► in_progress ─► earned ─► redeemed
       └──────────────────────►┘

Verification::

    pending ─► approved            (staff)
    pending ─► rejected            (staff)
    rejected ─► pending            (user resubmission)

A progress update may *request* verification.  It lands on ``pending`` only
from ``pending`` itself; a resolved decision (approved / rejected) is kept.
"""

from __future__ import annotations

from laurel.database.models import RewardStatus, VerificationStatus

__all__ = [
    "PROGRESS_VERIFICATION_REQUEST",
    "RESOLVED_VERIFICATION",
    "STATUS_TRANSITIONS",
    "VERIFICATION_TRANSITIONS",
    "can_transition",
    "can_verify",
    "next_status_for_progress",
    "verification_after_progress",
]


STATUS_TRANSITIONS: dict[RewardStatus, frozenset[RewardStatus]] = {
    RewardStatus.PENDING: frozenset({RewardStatus.IN_PROGRESS, RewardStatus.EARNED}),
    RewardStatus.IN_PROGRESS: frozenset({RewardStatus.EARNED}),
    RewardStatus.EARNED: frozenset({RewardStatus.REDEEMED}),
    RewardStatus.REDEEMED: frozenset(),
}

VERIFICATION_TRANSITIONS: dict[VerificationStatus, frozenset[VerificationStatus]] = {
    VerificationStatus.PENDING: frozenset(
        {VerificationStatus.APPROVED, VerificationStatus.REJECTED}
    ),
    VerificationStatus.APPROVED: frozenset(),
    VerificationStatus.REJECTED: frozenset({VerificationStatus.PENDING}),
}

# What a progress update that needs verification does to the current state.
PROGRESS_VERIFICATION_REQUEST: dict[VerificationStatus, VerificationStatus] = {
    VerificationStatus.PENDING: VerificationStatus.PENDING,
    VerificationStatus.APPROVED: VerificationStatus.APPROVED,
    VerificationStatus.REJECTED: VerificationStatus.REJECTED,
}

RESOLVED_VERIFICATION: frozenset[VerificationStatus] = frozenset(
    {VerificationStatus.APPROVED, VerificationStatus.REJECTED}
)


def can_transition(current: str, target: str) -> bool:
    """True if the status table allows ``current → target``."""
    return RewardStatus(target) in STATUS_TRANSITIONS[RewardStatus(current)]


def can_verify(current: str, target: str) -> bool:
    """True if the verification table allows ``current → target``."""
    return VerificationStatus(target) in VERIFICATION_TRANSITIONS[VerificationStatus(current)]


def next_status_for_progress(
    current: str, progress_value: float, progress_target: float
) -> RewardStatus:
    """Status an activity should hold after its progress reached *progress_value*.

    * target reached → ``earned`` (unless already ``redeemed``)
    * otherwise ``pending`` is promoted to ``in_progress``
    * anything else is left as-is; status never moves backwards
    """
    status = RewardStatus(current)
    if progress_value >= progress_target:
        if can_transition(status, RewardStatus.EARNED):
            return RewardStatus.EARNED
        return status
    if can_transition(status, RewardStatus.IN_PROGRESS):
        return RewardStatus.IN_PROGRESS
    return status


def verification_after_progress(current: str | None) -> VerificationStatus:
    """Verification status after a progress update that requires review."""
    if current is None:
        return VerificationStatus.PENDING
    return PROGRESS_VERIFICATION_REQUEST[VerificationStatus(current)]
