"""
laurel.services.points_service — Points Ledger & Tier Standing
===============================================================

Atomic per-user point accumulation, tier recomputation, the self-healing
tier read, and the user's badge set.

Grants never read-then-write the total: the increment is a single
``UPDATE ... SET total_points = CASE ... END`` so concurrent grants for the
same user cannot lose an update, and the CASE clamps the result at zero.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from sqlalchemy import case, func, select, update
from sqlalchemy.orm import Session

from laurel.database.engine import compare_and_set, insert_or_ignore
from laurel.database.models import (
    RewardActivity,
    RewardStatus,
    UserBadge,
    UserRewards,
    VerificationStatus,
)
from laurel.engine.tiers import Tier, TierInfo, get_tier_info

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Session-level helpers (run inside a caller's transaction)
# ---------------------------------------------------------------------------
def ensure_rewards_state(session: Session, user_id: str) -> None:
    """Lazily create the zeroed rewards row for *user_id*."""
    insert_or_ignore(
        session,
        UserRewards,
        {
            "user_id": user_id,
            "total_points": 0,
            "current_tier": Tier.BRONZE.value,
            "tier_points": 0,
        },
        ("user_id",),
    )


def _load_state(session: Session, user_id: str) -> UserRewards:
    return session.scalars(
        select(UserRewards)
        .where(UserRewards.user_id == user_id)
        .execution_options(populate_existing=True)
    ).one()


def _apply_tier(state: UserRewards) -> TierInfo:
    info = get_tier_info(state.total_points)
    state.current_tier = info.current_tier.value
    state.tier_points = info.tier_points
    return info


def apply_points_delta(session: Session, user_id: str, delta: int) -> UserRewards:
    """Add *delta* to the user's total inside the caller's transaction.

    The total is clamped at zero and the tier recomputed from the new
    value.  Returns the refreshed :class:`UserRewards` row.
    """
    ensure_rewards_state(session, user_id)
    new_total = UserRewards.total_points + delta
    session.execute(
        update(UserRewards)
        .where(UserRewards.user_id == user_id)
        .values(
            total_points=case((new_total < 0, 0), else_=new_total),
            last_points_update=datetime.now(UTC),
        )
        .execution_options(synchronize_session=False)
    )
    state = _load_state(session, user_id)
    _apply_tier(state)
    session.flush()
    logger.info(
        "Points %+d for %s → total %d (%s)",
        delta, user_id, state.total_points, state.current_tier,
    )
    return state


def credit_activity_points(session: Session, activity: RewardActivity) -> bool:
    """Grant ``activity.points_awarded`` to its user exactly once.

    The ``points_credited`` flag flips false → true with a compare-and-set
    in the same transaction as the ledger update, so the progress tracker
    and the verification approval path can never both pay.

    Returns ``True`` if this call granted the points.
    """
    if not activity.points_awarded or activity.points_awarded <= 0:
        return False
    if not compare_and_set(session, RewardActivity, activity.id, "points_credited", False, True):
        logger.debug("Points for activity %d already credited", activity.id)
        return False
    apply_points_delta(session, activity.user_id, activity.points_awarded)
    return True


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def update_user_points(engine: Engine, user_id: str, points_delta: int) -> UserRewards:
    """Apply *points_delta* to *user_id* in its own transaction."""
    with Session(engine, expire_on_commit=False) as session:
        state = apply_points_delta(session, user_id, points_delta)
        session.commit()
        session.expunge(state)
        return state


def get_user_rewards_state(engine: Engine, user_id: str) -> UserRewards | None:
    with Session(engine) as session:
        state = session.get(UserRewards, user_id)
        if state is not None:
            session.expunge(state)
        return state


def get_user_tier_info(engine: Engine, user_id: str) -> TierInfo:
    """Return the user's tier standing, healing a stale ledger on the way.

    Points can reach a user through more than one path.  If the stored
    total is zero but the user's earned / redeemed activities carry
    verified points, the ledger is resynced from that aggregate and the
    summed activities are marked as credited.
    """
    with Session(engine) as session:
        state = session.get(UserRewards, user_id)
        total_points = state.total_points if state else 0

        if not total_points:
            eligible = (
                RewardActivity.user_id == user_id,
                RewardActivity.status.in_(
                    (RewardStatus.EARNED.value, RewardStatus.REDEEMED.value)
                ),
                RewardActivity.points_awarded > 0,
                (RewardActivity.verification_required.is_(False))
                | (RewardActivity.verification_status == VerificationStatus.APPROVED.value),
            )
            aggregated = session.scalar(
                select(func.coalesce(func.sum(RewardActivity.points_awarded), 0)).where(*eligible)
            ) or 0

            if aggregated > total_points:
                ensure_rewards_state(session, user_id)
                # Only overwrite a total that is still zero.
                result = session.execute(
                    update(UserRewards)
                    .where(UserRewards.user_id == user_id, UserRewards.total_points == 0)
                    .values(total_points=aggregated, last_points_update=datetime.now(UTC))
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 1:
                    session.execute(
                        update(RewardActivity)
                        .where(*eligible)
                        .values(points_credited=True)
                        .execution_options(synchronize_session=False)
                    )
                    logger.warning(
                        "Resynced stale points for %s: 0 → %d", user_id, aggregated
                    )
                state = _load_state(session, user_id)
                _apply_tier(state)
                total_points = state.total_points
                session.commit()

        return get_tier_info(total_points)


def award_badge(
    engine: Engine, user_id: str, badge_id: str, reason: str | None = None
) -> bool:
    """Add *badge_id* to the user's badge set.  ``True`` if newly added."""
    with Session(engine) as session:
        added = insert_or_ignore(
            session,
            UserBadge,
            {"user_id": user_id, "badge_id": str(badge_id), "reason": reason},
            ("user_id", "badge_id"),
        )
        session.commit()
    if added:
        logger.info("Badge %s awarded to %s", badge_id, user_id)
    return added


def get_user_badges(engine: Engine, user_id: str) -> list[str]:
    with Session(engine) as session:
        return list(
            session.scalars(
                select(UserBadge.badge_id)
                .where(UserBadge.user_id == user_id)
                .order_by(UserBadge.awarded_at.desc(), UserBadge.badge_id)
            ).all()
        )
