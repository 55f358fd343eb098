"""
laurel.services.verification_service — Verification Gate
==========================================================

Staff review of activities whose task needs manual approval.

* approve — pays what the tracker held back: points (once, guarded by
  ``points_credited``), linked badges and the ``reward.earned`` notice
* reject — records the reason; the user may :func:`resubmit_task`
* resubmit — ``rejected → pending``, the only backwards verification edge

Moves are validated against ``VERIFICATION_TRANSITIONS`` and applied with a
compare-and-set on ``verification_status``.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session, selectinload

from laurel.database.engine import compare_and_set
from laurel.database.models import (
    HistoryAction,
    RewardActivity,
    RewardStatus,
    RewardTemplate,
    VerificationStatus,
)
from laurel.engine.transitions import can_verify
from laurel.errors import NotFoundError, TransientError, VerificationStateError
from laurel.services.notifications import TASK_REJECTED, TASK_RESUBMITTED
from laurel.services.points_service import credit_activity_points
from laurel.services.progress_service import add_history, earned_effects, lock_activity
from laurel.services.template_service import Page, paginate

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from laurel.services.hooks import RewardHooks

logger = logging.getLogger(__name__)

RECENT_WINDOW = timedelta(days=7)

_ACTIONS = {
    "approve": VerificationStatus.APPROVED,
    "reject": VerificationStatus.REJECTED,
}


@dataclass(frozen=True, slots=True)
class VerificationStats:
    pending: int
    approved: int
    rejected: int
    recent_approved: int
    recent_rejected: int

    @property
    def total(self) -> int:
        return self.pending + self.approved + self.rejected

    def to_dict(self) -> dict:
        return {
            "pending": self.pending,
            "approved": self.approved,
            "rejected": self.rejected,
            "total": self.total,
            "recent": {"approved": self.recent_approved, "rejected": self.recent_rejected},
        }


def _load_for_review(
    session: Session, activity_id: int, tenant_id: str | None
) -> RewardActivity:
    activity = lock_activity(session, activity_id)
    if activity is None or (
        tenant_id is not None and activity.tenant_id not in (None, tenant_id)
    ):
        raise NotFoundError(f"Activity {activity_id} not found")
    if not activity.verification_required:
        raise VerificationStateError(f"Activity {activity_id} does not require verification")
    return activity


def _move_verification(
    session: Session, activity: RewardActivity, target: VerificationStatus, **extra
) -> None:
    current = activity.verification_status
    if not can_verify(current, target):
        raise VerificationStateError(
            f"Cannot move verification of activity {activity.id} from {current} to {target}"
        )
    if not compare_and_set(
        session, RewardActivity, activity.id,
        "verification_status", current, target.value, **extra,
    ):
        raise TransientError(f"Activity {activity.id} was reviewed concurrently")


def _run(engine: Engine, hooks: RewardHooks | None, effects: list[Callable]) -> None:
    if not effects:
        return
    if hooks is None:
        from laurel.services.hooks import default_hooks

        hooks = default_hooks(engine)
    for effect in effects:
        effect(hooks)


def _task_title(reward: RewardTemplate, task_id: str) -> str:
    task = reward.get_task(task_id) if task_id else None
    return task.title if task is not None else reward.name


# ---------------------------------------------------------------------------
# Review actions
# ---------------------------------------------------------------------------
def verify_task(
    engine: Engine,
    activity_id: int,
    *,
    action: str,
    staff_id: str,
    reason: str | None = None,
    tenant_id: str | None = None,
    hooks: RewardHooks | None = None,
) -> RewardActivity:
    """Approve or reject a pending verification.

    Raises
    ------
    ValueError
        *action* is not ``"approve"`` or ``"reject"``.
    NotFoundError
        Unknown activity, or outside *tenant_id*.
    VerificationStateError
        The activity is not awaiting review.
    """
    if action not in _ACTIONS:
        raise ValueError(f"Unknown verification action {action!r}")
    target = _ACTIONS[action]
    effects: list[Callable] = []

    with Session(engine, expire_on_commit=False) as session:
        activity = _load_for_review(session, activity_id, tenant_id)
        now = datetime.now(UTC)
        _move_verification(
            session, activity, target,
            verified_by=staff_id,
            verified_at=now,
            rejection_reason=reason if target is VerificationStatus.REJECTED else None,
        )
        reward = activity.reward
        task = reward.get_task(activity.task_id) if activity.task_id else None
        user_id = activity.user_id

        if target is VerificationStatus.APPROVED:
            add_history(session, activity, HistoryAction.VERIFIED, note=f"Approved by {staff_id}")
            if activity.status in (RewardStatus.EARNED, RewardStatus.REDEEMED):
                credit_activity_points(session, activity)
                effects.extend(
                    earned_effects(session, activity, reward, task, activity.tenant_id)
                )
        else:
            add_history(session, activity, HistoryAction.REJECTED, note=reason)
            data = {
                "rewardId": reward.id,
                "taskTitle": _task_title(reward, activity.task_id),
                "rejectionReason": reason,
            }
            effects.append(lambda hooks: hooks.notify(user_id, TASK_REJECTED, data))

        session.commit()
        session.refresh(activity)

    logger.info(
        "Activity %d %s by %s%s",
        activity_id, target.value, staff_id, f" ({reason})" if reason else "",
    )
    _run(engine, hooks, effects)
    return activity


def resubmit_task(
    engine: Engine,
    activity_id: int,
    user_id: str,
    *,
    tenant_id: str | None = None,
    note: str | None = None,
    hooks: RewardHooks | None = None,
) -> RewardActivity:
    """Send a rejected activity back to the review queue."""
    with Session(engine, expire_on_commit=False) as session:
        activity = _load_for_review(session, activity_id, tenant_id)
        if activity.user_id != user_id:
            raise NotFoundError(f"Activity {activity_id} not found")
        _move_verification(
            session, activity, VerificationStatus.PENDING,
            verified_by=None, verified_at=None, rejection_reason=None,
        )
        add_history(session, activity, HistoryAction.RESUBMITTED, note=note)
        data = {
            "rewardId": activity.reward_id,
            "taskTitle": _task_title(activity.reward, activity.task_id),
        }
        session.commit()
        session.refresh(activity)

    logger.info("Activity %d resubmitted by %s", activity_id, user_id)
    _run(engine, hooks, [lambda hooks: hooks.notify(user_id, TASK_RESUBMITTED, data)])
    return activity


# ---------------------------------------------------------------------------
# Queue & stats
# ---------------------------------------------------------------------------
def get_pending_verifications(
    engine: Engine,
    *,
    tenant_id: str | None = None,
    status: str = VerificationStatus.PENDING.value,
    user_id: str | None = None,
    reward_id: int | None = None,
    page: int = 1,
    limit: int = 20,
) -> Page[RewardActivity]:
    """Activities needing review (or reviewed, per *status*), oldest first."""
    stmt = (
        select(RewardActivity)
        .where(
            RewardActivity.verification_required.is_(True),
            RewardActivity.verification_status == status,
        )
        .options(selectinload(RewardActivity.reward), selectinload(RewardActivity.history))
        .order_by(RewardActivity.earned_at, RewardActivity.id)
    )
    if tenant_id is not None:
        stmt = stmt.where(
            or_(RewardActivity.tenant_id == tenant_id, RewardActivity.tenant_id.is_(None))
        )
    if user_id is not None:
        stmt = stmt.where(RewardActivity.user_id == user_id)
    if reward_id is not None:
        stmt = stmt.where(RewardActivity.reward_id == reward_id)
    with Session(engine) as session:
        return paginate(session, stmt, page=page, limit=limit)


def get_verification_stats(
    engine: Engine, tenant_id: str | None = None, now: datetime | None = None
) -> VerificationStats:
    now = now or datetime.now(UTC)
    base = [RewardActivity.verification_required.is_(True)]
    if tenant_id is not None:
        base.append(
            or_(RewardActivity.tenant_id == tenant_id, RewardActivity.tenant_id.is_(None))
        )

    with Session(engine) as session:
        counts = dict(
            session.execute(
                select(RewardActivity.verification_status, func.count())
                .where(*base)
                .group_by(RewardActivity.verification_status)
            ).all()
        )
        recent = dict(
            session.execute(
                select(RewardActivity.verification_status, func.count())
                .where(*base, RewardActivity.verified_at >= now - RECENT_WINDOW)
                .group_by(RewardActivity.verification_status)
            ).all()
        )

    return VerificationStats(
        pending=counts.get(VerificationStatus.PENDING.value, 0),
        approved=counts.get(VerificationStatus.APPROVED.value, 0),
        rejected=counts.get(VerificationStatus.REJECTED.value, 0),
        recent_approved=recent.get(VerificationStatus.APPROVED.value, 0),
        recent_rejected=recent.get(VerificationStatus.REJECTED.value, 0),
    )
