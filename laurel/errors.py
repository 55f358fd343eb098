"""
laurel.errors — Exception Taxonomy
===================================

Primary paths (progress, claim, verification) raise these so an outer API
layer can map them to responses.  Side-effect paths never raise; they log.
"""

from __future__ import annotations


class LaurelError(Exception):
    """Base class for every error raised by the reward engine."""


class NotFoundError(LaurelError):
    """A reward template, task or activity does not exist (or is not
    visible to the caller's tenant)."""


class VerificationPendingError(LaurelError):
    """A claim was blocked because staff have not approved the activity.

    The message depends on *verification_status*: a rejected activity must
    be resubmitted before it can be reviewed again.
    """

    MESSAGES = {
        "pending": "Reward is awaiting staff approval before it can be claimed",
        "rejected": "Reward was rejected by staff; resubmit it for review before claiming",
    }

    def __init__(
        self,
        message: str | None = None,
        *,
        activity_id: int | None = None,
        verification_status: str | None = None,
    ) -> None:
        if message is None:
            message = self.MESSAGES.get(verification_status, self.MESSAGES["pending"])
        super().__init__(message)
        self.activity_id = activity_id
        self.verification_status = verification_status


class VerificationStateError(LaurelError):
    """A review action was requested from a state that does not allow it."""


class TransientError(LaurelError):
    """A concurrent writer changed the row between read and compare-and-set.

    Safe to retry the whole operation.
    """


class InvalidProgressError(LaurelError, ValueError):
    """A progress amount would decrease ``progress_value``."""
