"""
laurel.services.analytics_service — Leaderboard & Reward Analytics
===================================================================

Read-only aggregates over the ledger and the activity table:

* :func:`get_points_leaderboard` — users ranked by lifetime points (ledger)
  or by points earned since the start of the month / year (activities).
* :func:`get_points_distribution` — points paid per template category.
* :func:`get_task_completion_stats` — status counts per category plus the
  templates with the most completions.
* :func:`get_reward_claims_analytics` — claims per month and the most
  claimed templates.

Analytics are scoped to a tenant plus global activities, like the user
summary.  The leaderboard is scoped to users with activity in the tenant.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from sqlalchemy import case, extract, func, or_, select
from sqlalchemy.orm import Session

from laurel.database.models import (
    RewardActivity,
    RewardStatus,
    RewardTemplate,
    UserRewards,
    VerificationStatus,
)
from laurel.engine.tiers import Tier

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)

PERIODS = ("all", "month", "year")
TOP_N = 10

# Statuses whose points_awarded count as earned
_EARNED = (RewardStatus.EARNED.value, RewardStatus.REDEEMED.value)


@dataclass(frozen=True, slots=True)
class LeaderboardEntry:
    rank: int
    user_id: str
    points: int
    tier: str

    def to_dict(self) -> dict:
        return {
            "rank": self.rank,
            "userId": self.user_id,
            "points": self.points,
            "tier": self.tier,
        }


# ---------------------------------------------------------------------------
# Shared filters
# ---------------------------------------------------------------------------
def period_start(period: str, now: datetime | None = None) -> datetime | None:
    """First instant of the current month / year, or ``None`` for ``"all"``."""
    if period not in PERIODS:
        raise ValueError(f"Unknown leaderboard period {period!r}; expected one of {PERIODS}")
    now = now or datetime.now(UTC)
    if period == "month":
        return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    if period == "year":
        return now.replace(month=1, day=1, hour=0, minute=0, second=0, microsecond=0)
    return None


def _tenant_or_global(tenant_id: str | None) -> list:
    if tenant_id is None:
        return []
    return [or_(RewardActivity.tenant_id == tenant_id, RewardActivity.tenant_id.is_(None))]


def _window(column, start: datetime | None, end: datetime | None) -> list:
    clauses = []
    if start is not None:
        clauses.append(column >= start)
    if end is not None:
        clauses.append(column <= end)
    return clauses


def _verified():
    return or_(
        RewardActivity.verification_required.is_(False),
        RewardActivity.verification_status == VerificationStatus.APPROVED.value,
    )


def _month_key(year, month) -> str:
    return f"{int(year):04d}-{int(month):02d}"


# ---------------------------------------------------------------------------
# Leaderboard
# ---------------------------------------------------------------------------
def get_points_leaderboard(
    engine: Engine,
    *,
    tenant_id: str | None = None,
    limit: int = 100,
    period: str = "all",
    now: datetime | None = None,
) -> list[LeaderboardEntry]:
    """Top *limit* users by points.

    ``period="all"`` ranks by the ledger total.  ``"month"`` / ``"year"``
    rank by ``points_awarded`` of verified earned or redeemed activities
    whose ``earned_at`` falls in the current period.  Ties break on user id.
    """
    start = period_start(period, now)
    limit = max(limit, 1)

    with Session(engine) as session:
        if start is None:
            stmt = select(UserRewards.user_id, UserRewards.total_points, UserRewards.current_tier)
            if tenant_id is not None:
                members = select(RewardActivity.user_id).where(
                    RewardActivity.tenant_id == tenant_id
                )
                stmt = stmt.where(UserRewards.user_id.in_(members))
            stmt = stmt.order_by(UserRewards.total_points.desc(), UserRewards.user_id)
        else:
            points = func.sum(RewardActivity.points_awarded).label("points")
            stmt = (
                select(RewardActivity.user_id, points, UserRewards.current_tier)
                .outerjoin(UserRewards, UserRewards.user_id == RewardActivity.user_id)
                .where(
                    RewardActivity.status.in_(_EARNED),
                    RewardActivity.points_awarded > 0,
                    RewardActivity.earned_at >= start,
                    _verified(),
                )
                .group_by(RewardActivity.user_id, UserRewards.current_tier)
                .order_by(points.desc(), RewardActivity.user_id)
            )
            if tenant_id is not None:
                stmt = stmt.where(RewardActivity.tenant_id == tenant_id)
        rows = session.execute(stmt.limit(limit)).all()

    return [
        LeaderboardEntry(
            rank=rank,
            user_id=user_id,
            points=int(points or 0),
            tier=tier or Tier.BRONZE.value,
        )
        for rank, (user_id, points, tier) in enumerate(rows, start=1)
    ]


# ---------------------------------------------------------------------------
# Analytics
# ---------------------------------------------------------------------------
def get_points_distribution(
    engine: Engine,
    *,
    tenant_id: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
) -> dict:
    """Points of verified earned / redeemed activities per template category.

    The date window applies to the activity's ``created_at``.
    """
    where = [
        RewardActivity.status.in_(_EARNED),
        RewardActivity.points_awarded > 0,
        _verified(),
        *_tenant_or_global(tenant_id),
        *_window(RewardActivity.created_at, start, end),
    ]
    total_points = func.sum(RewardActivity.points_awarded)
    with Session(engine) as session:
        by_category = session.execute(
            select(
                RewardTemplate.category,
                total_points.label("total_points"),
                func.count(),
                func.avg(RewardActivity.points_awarded),
            )
            .select_from(RewardActivity)
            .join(RewardTemplate, RewardTemplate.id == RewardActivity.reward_id)
            .where(*where)
            .group_by(RewardTemplate.category)
            .order_by(total_points.desc(), RewardTemplate.category)
        ).all()
        points, activities, average = session.execute(
            select(total_points, func.count(), func.avg(RewardActivity.points_awarded))
            .where(*where)
        ).one()

    return {
        "by_category": [
            {
                "category": category or "uncategorized",
                "total_points": int(cat_points or 0),
                "count": count,
                "avg_points": round(float(avg or 0)),
            }
            for category, cat_points, count, avg in by_category
        ],
        "total": {
            "total_points": int(points or 0),
            "total_activities": activities,
            "avg_points_per_activity": float(average or 0),
        },
    }


def get_task_completion_stats(
    engine: Engine,
    *,
    tenant_id: str | None = None,
    category: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
) -> dict:
    """Activity counts per category and status, plus the top templates by
    completions."""
    where = [
        *_tenant_or_global(tenant_id),
        *_window(RewardActivity.created_at, start, end),
    ]
    if category is not None:
        where.append(RewardTemplate.category == category)

    def _count_status(status: RewardStatus):
        return func.sum(case((RewardActivity.status == status.value, 1), else_=0))

    completed = _count_status(RewardStatus.EARNED)
    with Session(engine) as session:
        grouped = session.execute(
            select(RewardTemplate.category, RewardActivity.status, func.count())
            .select_from(RewardActivity)
            .join(RewardTemplate, RewardTemplate.id == RewardActivity.reward_id)
            .where(*where)
            .group_by(RewardTemplate.category, RewardActivity.status)
            .order_by(RewardTemplate.category, RewardActivity.status)
        ).all()
        top = session.execute(
            select(
                RewardTemplate.id,
                RewardTemplate.name,
                completed.label("completed"),
                _count_status(RewardStatus.IN_PROGRESS),
                _count_status(RewardStatus.PENDING),
            )
            .select_from(RewardActivity)
            .join(RewardTemplate, RewardTemplate.id == RewardActivity.reward_id)
            .where(*where)
            .group_by(RewardTemplate.id, RewardTemplate.name)
            .order_by(completed.desc(), RewardTemplate.id)
            .limit(TOP_N)
        ).all()

    by_category: dict[str, dict[str, int]] = {}
    for cat, status, count in grouped:
        counts = by_category.setdefault(
            cat or "uncategorized", {s.value: 0 for s in RewardStatus}
        )
        counts[status] = count

    return {
        "by_category": by_category,
        "top_tasks": [
            {
                "reward_id": reward_id,
                "name": name,
                "completed": int(done or 0),
                "in_progress": int(running or 0),
                "pending": int(waiting or 0),
            }
            for reward_id, name, done, running, waiting in top
        ],
    }


def get_reward_claims_analytics(
    engine: Engine,
    *,
    tenant_id: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
) -> dict:
    """Redeemed activities per month, the most claimed templates and the
    total.  The date window applies to ``redeemed_at``."""
    where = [
        RewardActivity.status == RewardStatus.REDEEMED.value,
        *_tenant_or_global(tenant_id),
        *_window(RewardActivity.redeemed_at, start, end),
    ]
    year = extract("year", RewardActivity.redeemed_at)
    month = extract("month", RewardActivity.redeemed_at)
    claims = func.count()
    with Session(engine) as session:
        over_time = session.execute(
            select(year, month, func.count())
            .where(*where, RewardActivity.redeemed_at.is_not(None))
            .group_by(year, month)
            .order_by(year, month)
        ).all()
        popular = session.execute(
            select(RewardTemplate.name, RewardTemplate.reward_type, claims.label("claims"))
            .select_from(RewardActivity)
            .join(RewardTemplate, RewardTemplate.id == RewardActivity.reward_id)
            .where(*where)
            .group_by(RewardTemplate.id, RewardTemplate.name, RewardTemplate.reward_type)
            .order_by(claims.desc(), RewardTemplate.name)
            .limit(TOP_N)
        ).all()
        total = session.scalar(select(func.count()).select_from(RewardActivity).where(*where))

    return {
        "claims_over_time": [
            {"month": _month_key(y, m), "count": count} for y, m, count in over_time
        ],
        "popular_rewards": [
            {"name": name, "type": reward_type, "count": count}
            for name, reward_type, count in popular
        ],
        "total_claims": total or 0,
    }
