"""
tests/test_analytics_service.py — Leaderboard & Reward Analytics
=================================================================
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy import delete, update
from sqlalchemy.orm import Session

from laurel.database.models import RewardActivity, UserRewards
from laurel.services.analytics_service import (
    get_points_distribution,
    get_points_leaderboard,
    get_reward_claims_analytics,
    get_task_completion_stats,
    period_start,
)
from laurel.services.points_service import update_user_points
from laurel.services.progress_service import record_task_progress
from laurel.services.redemption_service import claim_reward


@pytest.fixture
def catalogue(make_reward):
    """Four global templates: two plain, one reviewed, one long-running."""
    return {
        "attend": make_reward("Attend", category="events", points=100),
        "donate": make_reward("Donate", category="giving", points=40),
        "mentor": make_reward("Mentor", category="events", points=60, tasks=[{
            "title": "Session", "target_value": 1,
            "metadata_": {"requiresVerification": True},
        }]),
        "open": make_reward("Open", category="events", tasks=[{"title": "A", "target_value": 5}]),
    }


@pytest.fixture
def activity(engine, hooks, catalogue):
    """``activity()`` records the standard progress mix across three users."""

    def _track(name: str, user_id: str):
        return record_task_progress(
            engine, reward_id=catalogue[name].id, user_id=user_id, hooks=hooks
        ).activity

    def _run():
        return {
            "u1-attend": _track("attend", "u-1"),
            "u1-donate": _track("donate", "u-1"),
            "u2-attend": _track("attend", "u-2"),
            "u3-mentor": _track("mentor", "u-3"),
            "u3-open": _track("open", "u-3"),
        }

    return _run


def _backdate(engine, activity_id: int, when: datetime) -> None:
    with Session(engine) as session:
        session.execute(
            update(RewardActivity)
            .where(RewardActivity.id == activity_id)
            .values(earned_at=when)
        )
        session.commit()


# ---------------------------------------------------------------------------
# Period boundaries
# ---------------------------------------------------------------------------
class TestPeriodStart:
    def test_all_has_no_start(self):
        assert period_start("all") is None

    def test_month_and_year(self):
        now = datetime(2026, 10, 18, 15, 30, tzinfo=UTC)
        assert period_start("month", now) == datetime(2026, 10, 1, tzinfo=UTC)
        assert period_start("year", now) == datetime(2026, 1, 1, tzinfo=UTC)

    def test_unknown_period(self):
        with pytest.raises(ValueError):
            period_start("week")


# ---------------------------------------------------------------------------
# Leaderboard
# ---------------------------------------------------------------------------
class TestLeaderboard:
    def test_ranks_by_ledger_total(self, engine, activity):
        activity()
        update_user_points(engine, "u-4", 600)

        board = get_points_leaderboard(engine)

        assert [(e.rank, e.user_id, e.points, e.tier) for e in board] == [
            (1, "u-4", 600, "silver"),
            (2, "u-1", 140, "bronze"),
            (3, "u-2", 100, "bronze"),
        ]
        assert board[0].to_dict() == {
            "rank": 1, "userId": "u-4", "points": 600, "tier": "silver",
        }

    def test_limit(self, engine, activity):
        activity()
        assert [e.user_id for e in get_points_leaderboard(engine, limit=1)] == ["u-1"]

    def test_period_sums_recent_verified_points(self, engine, activity):
        tracked = activity()
        now = datetime.now(UTC)
        _backdate(engine, tracked["u2-attend"].id, now - timedelta(days=400))

        board = get_points_leaderboard(engine, period="year", now=now)

        # u-2 earned last year; u-3's completion still awaits review
        assert [(e.user_id, e.points) for e in board] == [("u-1", 140)]

    def test_period_user_without_ledger_row_is_bronze(self, engine, hooks, make_reward):
        reward = make_reward(points=20)
        record_task_progress(engine, reward_id=reward.id, user_id="u-9", hooks=hooks)
        with Session(engine) as session:
            session.execute(delete(UserRewards))
            session.commit()

        [entry] = get_points_leaderboard(engine, period="month")
        assert entry.tier == "bronze"
        assert entry.points == 20

    def test_tenant_scope(self, engine, hooks, activity, make_reward):
        activity()
        acme = make_reward("Acme", tenant_id="acme", points=30)
        record_task_progress(engine, reward_id=acme.id, user_id="u-5", tenant_id="acme",
                             hooks=hooks)

        board = get_points_leaderboard(engine, tenant_id="acme")
        assert [(e.user_id, e.points) for e in board] == [("u-5", 30)]

    def test_empty(self, engine):
        assert get_points_leaderboard(engine) == []
        assert get_points_leaderboard(engine, period="month") == []


# ---------------------------------------------------------------------------
# Points distribution
# ---------------------------------------------------------------------------
class TestPointsDistribution:
    def test_by_category_and_total(self, engine, activity):
        activity()

        dist = get_points_distribution(engine)

        assert dist["by_category"] == [
            {"category": "events", "total_points": 200, "count": 2, "avg_points": 100},
            {"category": "giving", "total_points": 40, "count": 1, "avg_points": 40},
        ]
        assert dist["total"] == {
            "total_points": 240,
            "total_activities": 3,
            "avg_points_per_activity": 80.0,
        }

    def test_tenant_sees_global_but_not_other_tenants(self, engine, hooks, activity, make_reward):
        activity()
        acme = make_reward("Acme", tenant_id="acme", category="events", points=30)
        record_task_progress(engine, reward_id=acme.id, user_id="u-5", tenant_id="acme",
                             hooks=hooks)

        assert get_points_distribution(engine, tenant_id="acme")["total"]["total_points"] == 270
        assert get_points_distribution(engine, tenant_id="globex")["total"]["total_points"] == 240

    def test_date_window(self, engine, activity):
        activity()
        future = datetime.now(UTC) + timedelta(days=1)
        dist = get_points_distribution(engine, start=future)
        assert dist["by_category"] == []
        assert dist["total"]["total_points"] == 0


# ---------------------------------------------------------------------------
# Task completion
# ---------------------------------------------------------------------------
class TestTaskCompletion:
    def test_status_counts_per_category(self, engine, activity):
        activity()

        stats = get_task_completion_stats(engine)

        assert stats["by_category"]["events"] == {
            "pending": 0, "in_progress": 1, "earned": 3, "redeemed": 0,
        }
        assert stats["by_category"]["giving"]["earned"] == 1

    def test_top_tasks_ordered_by_completions(self, engine, activity, catalogue):
        activity()

        top = get_task_completion_stats(engine)["top_tasks"]

        assert [t["name"] for t in top] == ["Attend", "Donate", "Mentor", "Open"]
        assert top[0] == {
            "reward_id": catalogue["attend"].id,
            "name": "Attend",
            "completed": 2,
            "in_progress": 0,
            "pending": 0,
        }
        assert top[-1]["in_progress"] == 1

    def test_category_filter(self, engine, activity):
        activity()
        stats = get_task_completion_stats(engine, category="giving")
        assert list(stats["by_category"]) == ["giving"]
        assert [t["name"] for t in stats["top_tasks"]] == ["Donate"]


# ---------------------------------------------------------------------------
# Claims
# ---------------------------------------------------------------------------
class TestClaimsAnalytics:
    def test_claims_per_month_and_popular(self, engine, hooks, activity, catalogue):
        activity()
        claim_reward(engine, catalogue["attend"].id, "u-1", hooks=hooks)
        claim_reward(engine, catalogue["donate"].id, "u-1", hooks=hooks)
        claim_reward(engine, catalogue["attend"].id, "u-2", hooks=hooks)

        claims = get_reward_claims_analytics(engine)

        assert claims["total_claims"] == 3
        assert claims["popular_rewards"] == [
            {"name": "Attend", "type": "points", "count": 2},
            {"name": "Donate", "type": "points", "count": 1},
        ]
        assert claims["claims_over_time"] == [
            {"month": datetime.now(UTC).strftime("%Y-%m"), "count": 3},
        ]

    def test_no_claims(self, engine, activity):
        activity()
        assert get_reward_claims_analytics(engine) == {
            "claims_over_time": [],
            "popular_rewards": [],
            "total_claims": 0,
        }
