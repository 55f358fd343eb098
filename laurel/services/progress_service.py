"""
laurel.services.progress_service — Task Progress Tracker
=========================================================

The per-(user, reward, task) state machine.  One call to
:func:`record_task_progress` is one transaction:

1. Resolve the reward template and target task
2. Find-or-create the activity (``INSERT ... ON CONFLICT DO NOTHING``)
3. Lock it, increment ``progress_value`` in SQL, journal the step
4. Move status through the transition table (compare-and-set)
5. On the first transition into ``earned`` with verification satisfied,
   credit points exactly once

Notifications and badge awards are collected while the transaction runs and
handed to the dispatcher only after commit.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import case, func, or_, select
from sqlalchemy.orm import Session, selectinload

from laurel.database.engine import compare_and_set, insert_or_ignore
from laurel.database.models import (
    ActivityHistory,
    HistoryAction,
    RewardActivity,
    RewardStatus,
    RewardTask,
    RewardTemplate,
)
from laurel.engine.transitions import next_status_for_progress, verification_after_progress
from laurel.errors import InvalidProgressError, NotFoundError, TransientError
from laurel.services.notifications import REWARD_EARNED, TASK_COMPLETED
from laurel.services.points_service import credit_activity_points

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from laurel.services.hooks import RewardHooks

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ProgressResult:
    """Outcome of one :func:`record_task_progress` call."""

    activity: RewardActivity
    previous_status: str
    just_earned: bool
    points_granted: int


@dataclass(frozen=True, slots=True)
class RewardSummary:
    total_rewards: int
    earned_rewards: int
    redeemed_rewards: int
    pending_rewards: int
    total_points: int

    def to_dict(self) -> dict:
        return {
            "totalRewards": self.total_rewards,
            "earnedRewards": self.earned_rewards,
            "redeemedRewards": self.redeemed_rewards,
            "pendingRewards": self.pending_rewards,
            "totalPoints": self.total_points,
        }


# ---------------------------------------------------------------------------
# Resolution helpers
# ---------------------------------------------------------------------------
def _visible_to(reward: RewardTemplate, tenant_id: str | None) -> bool:
    return tenant_id is None or reward.tenant_id is None or reward.tenant_id == tenant_id


def resolve_task(
    reward: RewardTemplate, task_id: str | None, *, strict: bool = False
) -> RewardTask | None:
    """Pick the task a progress call targets.

    An explicit *task_id* must exist on the template.  Without one, the
    first task is used; on a multi-task template that guess is logged, or
    refused when *strict* is set.
    """
    if task_id:
        task = reward.get_task(task_id)
        if task is None:
            raise NotFoundError(f"Task {task_id} not found on reward {reward.id}")
        return task

    if len(reward.tasks) > 1:
        if strict:
            raise NotFoundError(
                f"Reward {reward.id} has {len(reward.tasks)} tasks; a task id is required"
            )
        logger.warning(
            "No task id for multi-task reward %d; falling back to first task %s",
            reward.id, reward.first_task.id,
        )
    return reward.first_task


def progress_target_for(reward: RewardTemplate, task: RewardTask | None) -> float:
    for candidate in (task, reward.first_task):
        if candidate is not None and candidate.target_value is not None:
            return candidate.target_value
    return 1 if reward.points else 0


def _points_for(reward: RewardTemplate, task: RewardTask | None, previous: int) -> int:
    if task is not None and task.points is not None:
        return task.points
    if reward.points is not None:
        return reward.points
    return previous


def lock_activity(session: Session, activity_id: int) -> RewardActivity | None:
    """Re-read an activity under a row lock (no-op lock on SQLite)."""
    return session.scalars(
        select(RewardActivity)
        .where(RewardActivity.id == activity_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).one_or_none()


def move_status(
    session: Session, activity: RewardActivity, expected: str, target: str
) -> None:
    """Compare-and-set ``activity.status`` from *expected* to *target*."""
    if not compare_and_set(session, RewardActivity, activity.id, "status", expected, target):
        raise TransientError(
            f"Activity {activity.id} changed concurrently (expected status {expected})"
        )


def add_history(
    session: Session,
    activity: RewardActivity,
    action: HistoryAction,
    *,
    value: float | None = None,
    note: str | None = None,
) -> None:
    session.add(
        ActivityHistory(activity_id=activity.id, action=action.value, value=value, note=note)
    )


# ---------------------------------------------------------------------------
# Core: record_task_progress
# ---------------------------------------------------------------------------
def record_task_progress(
    engine: Engine,
    *,
    reward_id: int,
    user_id: str,
    task_id: str | None = None,
    amount: float = 1,
    context: dict[str, Any] | None = None,
    tenant_id: str | None = None,
    hooks: RewardHooks | None = None,
    strict_task_selection: bool = False,
) -> ProgressResult:
    """Advance *user_id*'s progress on one reward task by *amount*.

    Raises
    ------
    NotFoundError
        Unknown reward / task, or a reward outside *tenant_id*.
    InvalidProgressError
        *amount* is negative.
    TransientError
        A concurrent writer moved the status between lock and update.
    """
    if amount < 0:
        raise InvalidProgressError(f"Progress amount must be >= 0, got {amount}")
    context = dict(context or {})
    effects: list[Callable[[RewardHooks], None]] = []

    with Session(engine, expire_on_commit=False) as session:
        reward = session.get(RewardTemplate, reward_id)
        if reward is None or not _visible_to(reward, tenant_id):
            raise NotFoundError(f"Reward {reward_id} not found")

        task = resolve_task(reward, task_id, strict=strict_task_selection)
        target = progress_target_for(reward, task)
        key_task_id = task.id if task is not None else ""

        created = insert_or_ignore(
            session,
            RewardActivity,
            {
                "user_id": user_id,
                "reward_id": reward.id,
                "task_id": key_task_id,
                "tenant_id": tenant_id or reward.tenant_id,
                "status": RewardStatus.PENDING.value,
                "progress_value": 0,
                "progress_target": target,
            },
            ("user_id", "reward_id", "task_id"),
        )
        activity = session.scalars(
            select(RewardActivity)
            .where(
                RewardActivity.user_id == user_id,
                RewardActivity.reward_id == reward.id,
                RewardActivity.task_id == key_task_id,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        ).one()
        if created:
            logger.debug("Created activity %d for %s on reward %d", activity.id, user_id, reward.id)

        previous_status = activity.status

        # Increment in SQL so concurrent calls cannot lose an update
        activity.progress_value = RewardActivity.progress_value + amount
        activity.progress_target = target
        session.flush()
        session.refresh(activity)
        add_history(
            session, activity, HistoryAction.PROGRESS,
            value=amount, note=context.get("note"),
        )

        requires_verification = bool(
            (task is not None and task.requires_verification)
            or context.get("requiresVerification")
        )
        new_status = next_status_for_progress(
            previous_status, activity.progress_value, activity.progress_target
        )
        if new_status != previous_status:
            move_status(session, activity, previous_status, new_status.value)

        reached = activity.progress_value >= activity.progress_target
        if reached and activity.status != RewardStatus.REDEEMED:
            if activity.earned_at is None:
                activity.earned_at = datetime.now(UTC)
            activity.points_awarded = _points_for(reward, task, activity.points_awarded)
            if requires_verification:
                activity.verification_required = True
                activity.verification_status = verification_after_progress(
                    activity.verification_status
                ).value

        if context:
            activity.metadata_ = {**(activity.metadata_ or {}), **context}

        just_earned = (
            activity.status == RewardStatus.EARNED
            and previous_status != RewardStatus.EARNED
        )
        points_granted = 0
        if just_earned:
            logger.info(
                "Activity %d earned: user=%s reward=%d task=%s points=%d verification=%s",
                activity.id, user_id, reward.id, key_task_id or "-",
                activity.points_awarded,
                activity.verification_status if activity.verification_required else "n/a",
            )
            task_title = task.title if task is not None else reward.name
            effects.append(_completed_effect(
                user_id, reward, key_task_id, task_title, requires_verification
            ))
            if activity.verification_satisfied:
                if credit_activity_points(session, activity):
                    points_granted = activity.points_awarded
                effects.extend(
                    earned_effects(session, activity, reward, task, activity.tenant_id)
                )

        session.commit()

    if effects:
        hooks = hooks or _default_hooks(engine)
        for effect in effects:
            effect(hooks)

    return ProgressResult(
        activity=activity,
        previous_status=previous_status,
        just_earned=just_earned,
        points_granted=points_granted,
    )


def _default_hooks(engine: Engine) -> RewardHooks:
    from laurel.services.hooks import default_hooks

    return default_hooks(engine)


def _completed_effect(
    user_id: str,
    reward: RewardTemplate,
    task_id: str,
    task_title: str,
    requires_verification: bool,
) -> Callable[[RewardHooks], None]:
    data = {
        "rewardId": reward.id,
        "rewardName": reward.name,
        "taskId": task_id or None,
        "taskTitle": task_title,
        "requiresVerification": requires_verification,
    }
    return lambda hooks: hooks.notify(user_id, TASK_COMPLETED, data)


def earned_effects(
    session: Session,
    activity: RewardActivity,
    reward: RewardTemplate,
    task: RewardTask | None,
    tenant_id: str | None,
) -> list[Callable[[RewardHooks], None]]:
    """Claim the badge and ``reward.earned`` guards for a verified completion.

    Shared by the tracker and the verification approval path; each guard
    is a compare-and-set so only one of them queues the side effect.
    """
    effects: list[Callable[[RewardHooks], None]] = []
    user_id = activity.user_id
    reward_badge = reward.badge_id
    reward_name = reward.name
    task_badge = task.badge_id if task is not None else None
    task_title = task.title if task is not None else None

    if compare_and_set(session, RewardActivity, activity.id, "badges_awarded", False, True):
        effects.append(lambda hooks: hooks.badges.on_completion(
            user_id, tenant_id,
            task_badge_id=task_badge,
            task_title=task_title,
            reward_badge_id=reward_badge,
            reward_name=reward_name,
        ))

    if compare_and_set(
        session, RewardActivity, activity.id, "reward_earned_notified", False, True
    ):
        data = {
            "rewardId": reward.id,
            "rewardName": reward_name,
            "points": activity.points_awarded,
            "badgeId": reward_badge or task_badge,
        }
        effects.append(lambda hooks: hooks.notify(user_id, REWARD_EARNED, data))

    return effects


# ---------------------------------------------------------------------------
# Read side
# ---------------------------------------------------------------------------
def get_user_summary(
    engine: Engine, user_id: str, tenant_id: str | None = None
) -> RewardSummary:
    """Counts per status plus the points paid out, over the same activities.

    ``pending_rewards`` covers both ``pending`` and ``in_progress``.
    ``total_points`` sums ``points_awarded`` of credited activities only, so
    a completion still awaiting staff approval does not count yet.  The
    result is scoped like the counts (tenant plus global activities) and
    never touches the ledger.
    """
    credited_points = case(
        (RewardActivity.points_credited.is_(True), RewardActivity.points_awarded),
        else_=0,
    )
    stmt = (
        select(RewardActivity.status, func.count(), func.coalesce(func.sum(credited_points), 0))
        .where(RewardActivity.user_id == user_id)
        .group_by(RewardActivity.status)
    )
    if tenant_id is not None:
        stmt = stmt.where(
            or_(RewardActivity.tenant_id == tenant_id, RewardActivity.tenant_id.is_(None))
        )
    with Session(engine) as session:
        rows = session.execute(stmt).all()

    counts = {status: count for status, count, _ in rows}
    return RewardSummary(
        total_rewards=sum(counts.values()),
        earned_rewards=counts.get(RewardStatus.EARNED.value, 0),
        redeemed_rewards=counts.get(RewardStatus.REDEEMED.value, 0),
        pending_rewards=(
            counts.get(RewardStatus.PENDING.value, 0)
            + counts.get(RewardStatus.IN_PROGRESS.value, 0)
        ),
        total_points=int(sum(points for _, _, points in rows)),
    )


def get_user_activities(
    engine: Engine,
    user_id: str,
    tenant_id: str | None = None,
    *,
    status: str | None = None,
) -> list[RewardActivity]:
    """A user's activities, most recently touched first, with reward and
    history loaded."""
    stmt = (
        select(RewardActivity)
        .where(RewardActivity.user_id == user_id)
        .options(selectinload(RewardActivity.reward), selectinload(RewardActivity.history))
        .order_by(RewardActivity.updated_at.desc(), RewardActivity.id.desc())
    )
    if tenant_id is not None:
        stmt = stmt.where(RewardActivity.tenant_id == tenant_id)
    if status is not None:
        stmt = stmt.where(RewardActivity.status == status)
    with Session(engine) as session:
        return list(session.scalars(stmt).all())
