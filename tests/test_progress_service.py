"""
tests/test_progress_service.py — Task Progress Tracker
=======================================================

Service-level tests for progress_service.record_task_progress(): lazy
activity creation, monotonic progress, the earned transition, exactly-once
point crediting and post-commit side effects.

Uses an in-memory SQLite database via the shared conftest fixtures.
"""

from __future__ import annotations

import logging

import pytest
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from laurel.database.models import ActivityHistory, RewardActivity
from laurel.errors import InvalidProgressError, NotFoundError
from laurel.services.points_service import get_user_rewards_state
from laurel.services.progress_service import (
    get_user_activities,
    get_user_summary,
    record_task_progress,
)
from laurel.services.redemption_service import claim_reward


def _total_points(engine, user_id: str) -> int:
    state = get_user_rewards_state(engine, user_id)
    return state.total_points if state else 0


def _activity_count(engine) -> int:
    with Session(engine) as session:
        return session.scalar(select(func.count()).select_from(RewardActivity))


class TestRecordTaskProgress:
    def test_first_call_creates_activity_in_progress(self, engine, hooks, make_reward):
        reward = make_reward(points=50, tasks=[{"title": "Attend", "target_value": 3}])

        result = record_task_progress(
            engine, reward_id=reward.id, user_id="u-1", hooks=hooks
        )

        assert result.previous_status == "pending"
        assert result.activity.status == "in_progress"
        assert result.activity.progress_value == 1
        assert result.activity.progress_target == 3
        assert result.activity.task_id == reward.tasks[0].id
        assert not result.just_earned

    def test_three_steps_earn_exactly_once(self, engine, hooks, make_reward, notifier):
        reward = make_reward(points=50, tasks=[{"title": "Attend", "target_value": 3}])

        results = [
            record_task_progress(engine, reward_id=reward.id, user_id="u-1", hooks=hooks)
            for _ in range(3)
        ]

        final = results[-1].activity
        assert final.status == "earned"
        assert final.points_awarded == 50
        assert final.earned_at is not None
        assert [r.just_earned for r in results] == [False, False, True]
        assert _total_points(engine, "u-1") == 50

        # Further progress after earning never pays again
        again = record_task_progress(engine, reward_id=reward.id, user_id="u-1", hooks=hooks)
        assert again.activity.status == "earned"
        assert again.activity.progress_value == 4
        assert not again.just_earned
        assert again.points_granted == 0
        assert _total_points(engine, "u-1") == 50

    def test_one_activity_per_key(self, engine, hooks, make_reward):
        reward = make_reward(tasks=[{"title": "Attend", "target_value": 10}])
        for _ in range(4):
            record_task_progress(engine, reward_id=reward.id, user_id="u-1", hooks=hooks)
        record_task_progress(engine, reward_id=reward.id, user_id="u-2", hooks=hooks)
        assert _activity_count(engine) == 2

    def test_progress_is_sum_of_amounts(self, engine, hooks, make_reward):
        reward = make_reward(tasks=[{"title": "Give", "metric": "amount", "target_value": 1000}])
        for amount in (5, 12.5, 0, 7.5):
            result = record_task_progress(
                engine, reward_id=reward.id, user_id="u-1", amount=amount, hooks=hooks
            )
        assert result.activity.progress_value == 25

    def test_single_large_amount_earns_immediately(self, engine, hooks, make_reward):
        reward = make_reward(
            points=80,
            tasks=[{"title": "Donate", "action_type": "donation", "metric": "amount",
                    "target_value": 100}],
        )
        result = record_task_progress(
            engine, reward_id=reward.id, user_id="u-1", amount=120, hooks=hooks
        )
        assert result.previous_status == "pending"
        assert result.activity.status == "earned"
        assert result.just_earned
        assert result.points_granted == 80

    def test_task_points_override_reward_points(self, engine, hooks, make_reward):
        reward = make_reward(points=100, tasks=[{"title": "A", "target_value": 1, "points": 30}])
        result = record_task_progress(engine, reward_id=reward.id, user_id="u-1", hooks=hooks)
        assert result.activity.points_awarded == 30
        assert _total_points(engine, "u-1") == 30

    def test_history_is_appended(self, engine, hooks, make_reward):
        reward = make_reward(tasks=[{"title": "A", "target_value": 5}])
        record_task_progress(
            engine, reward_id=reward.id, user_id="u-1", amount=2,
            context={"note": "first"}, hooks=hooks,
        )
        record_task_progress(
            engine, reward_id=reward.id, user_id="u-1", amount=1,
            context={"note": "second"}, hooks=hooks,
        )
        with Session(engine) as session:
            rows = session.scalars(select(ActivityHistory).order_by(ActivityHistory.id)).all()
            assert [(r.action, r.value, r.note) for r in rows] == [
                ("progress", 2, "first"),
                ("progress", 1, "second"),
            ]

    def test_context_is_merged_into_metadata(self, engine, hooks, make_reward):
        reward = make_reward(tasks=[{"title": "A", "target_value": 5}])
        record_task_progress(
            engine, reward_id=reward.id, user_id="u-1",
            context={"eventId": "e-1"}, hooks=hooks,
        )
        result = record_task_progress(
            engine, reward_id=reward.id, user_id="u-1",
            context={"postId": "p-9"}, hooks=hooks,
        )
        assert result.activity.metadata_ == {"eventId": "e-1", "postId": "p-9"}

    def test_unknown_reward_raises(self, engine, hooks):
        with pytest.raises(NotFoundError):
            record_task_progress(engine, reward_id=9999, user_id="u-1", hooks=hooks)

    def test_unknown_task_raises(self, engine, hooks, make_reward):
        reward = make_reward()
        with pytest.raises(NotFoundError):
            record_task_progress(
                engine, reward_id=reward.id, task_id="nope", user_id="u-1", hooks=hooks
            )

    def test_other_tenant_reward_is_not_found(self, engine, hooks, make_reward):
        reward = make_reward(tenant_id="acme")
        with pytest.raises(NotFoundError):
            record_task_progress(
                engine, reward_id=reward.id, user_id="u-1", tenant_id="globex", hooks=hooks
            )

    def test_negative_amount_rejected(self, engine, hooks, make_reward):
        reward = make_reward()
        with pytest.raises(InvalidProgressError):
            record_task_progress(
                engine, reward_id=reward.id, user_id="u-1", amount=-1, hooks=hooks
            )
        assert _activity_count(engine) == 0

    def test_progress_after_claim_stays_redeemed(self, engine, hooks, make_reward, notifier):
        reward = make_reward(points=50)
        record_task_progress(engine, reward_id=reward.id, user_id="u-1", hooks=hooks)
        claim_reward(engine, reward.id, "u-1", hooks=hooks)
        notifier.reset_mock()

        result = record_task_progress(engine, reward_id=reward.id, user_id="u-1", hooks=hooks)

        assert result.previous_status == "redeemed"
        assert result.activity.status == "redeemed"
        assert result.activity.progress_value == 2
        assert not result.just_earned
        assert result.points_granted == 0
        assert _total_points(engine, "u-1") == 50
        notifier.send.assert_not_called()


class TestTaskSelection:
    def _two_task_reward(self, make_reward):
        return make_reward(
            tasks=[
                {"title": "First", "target_value": 2},
                {"title": "Second", "target_value": 5},
            ]
        )

    def test_omitted_task_falls_back_to_first_with_warning(
        self, engine, hooks, make_reward, caplog
    ):
        reward = self._two_task_reward(make_reward)
        with caplog.at_level(logging.WARNING, logger="laurel.services.progress_service"):
            result = record_task_progress(
                engine, reward_id=reward.id, user_id="u-1", hooks=hooks
            )
        assert result.activity.task_id == reward.tasks[0].id
        assert result.activity.progress_target == 2
        assert "falling back to first task" in caplog.text

    def test_strict_selection_requires_task_id(self, engine, hooks, make_reward):
        reward = self._two_task_reward(make_reward)
        with pytest.raises(NotFoundError):
            record_task_progress(
                engine, reward_id=reward.id, user_id="u-1", hooks=hooks,
                strict_task_selection=True,
            )

    def test_tasks_are_tracked_independently(self, engine, hooks, make_reward):
        reward = self._two_task_reward(make_reward)
        second = reward.tasks[1]
        result = record_task_progress(
            engine, reward_id=reward.id, task_id=second.id, user_id="u-1", hooks=hooks
        )
        assert result.activity.task_id == second.id
        assert result.activity.progress_target == 5
        assert _activity_count(engine) == 1

    def test_template_without_tasks_uses_reward_points(self, engine, hooks, make_reward):
        reward = make_reward(points=20, tasks=[])
        result = record_task_progress(engine, reward_id=reward.id, user_id="u-1", hooks=hooks)
        assert result.activity.task_id == ""
        assert result.activity.progress_target == 1
        assert result.activity.status == "earned"
        assert result.points_granted == 20


class TestSideEffects:
    def test_verified_completion_notifies_and_awards(
        self, engine, hooks, make_reward, notifier, badge_evaluator, sent_events
    ):
        reward = make_reward(
            points=40,
            badge_id={"id": "reward-badge"},
            tasks=[{"title": "Attend", "target_value": 1, "badge_id": "task-badge"}],
        )
        record_task_progress(engine, reward_id=reward.id, user_id="u-1", hooks=hooks)

        assert sent_events() == ["task.completed", "reward.earned"]
        awarded = [c.args[1] for c in badge_evaluator.award_badge_directly.call_args_list]
        assert awarded == ["task-badge", "reward-badge"]
        badge_evaluator.check_and_award_eligible_badges.assert_called_once_with("u-1", None)

    def test_no_side_effects_before_earning(self, engine, hooks, make_reward, notifier):
        reward = make_reward(tasks=[{"title": "A", "target_value": 3}])
        record_task_progress(engine, reward_id=reward.id, user_id="u-1", hooks=hooks)
        notifier.send.assert_not_called()

    def test_failing_notifier_does_not_fail_progress(
        self, engine, hooks, make_reward, notifier
    ):
        notifier.send.side_effect = RuntimeError("smtp down")
        reward = make_reward(points=10)
        result = record_task_progress(engine, reward_id=reward.id, user_id="u-1", hooks=hooks)
        assert result.just_earned
        assert _total_points(engine, "u-1") == 10

    def test_failing_badge_evaluator_does_not_fail_progress(
        self, engine, hooks, make_reward, badge_evaluator, sent_events
    ):
        badge_evaluator.award_badge_directly.side_effect = RuntimeError("evaluator down")
        reward = make_reward(points=10, badge_id="b-1")
        result = record_task_progress(engine, reward_id=reward.id, user_id="u-1", hooks=hooks)
        assert result.activity.status == "earned"
        assert "reward.earned" in sent_events()

    def test_verification_required_holds_points(
        self, engine, hooks, make_reward, sent_events, badge_evaluator
    ):
        reward = make_reward(
            points=60,
            tasks=[{"title": "Mentor", "target_value": 1,
                    "metadata_": {"requiresVerification": True}}],
        )
        result = record_task_progress(engine, reward_id=reward.id, user_id="u-1", hooks=hooks)

        assert result.activity.status == "earned"
        assert result.activity.verification_required
        assert result.activity.verification_status == "pending"
        assert result.points_granted == 0
        assert _total_points(engine, "u-1") == 0
        assert sent_events() == ["task.completed"]
        badge_evaluator.award_badge_directly.assert_not_called()

    def test_context_can_request_verification(self, engine, hooks, make_reward):
        reward = make_reward(points=10)
        result = record_task_progress(
            engine, reward_id=reward.id, user_id="u-1",
            context={"requiresVerification": True}, hooks=hooks,
        )
        assert result.activity.verification_required
        assert _total_points(engine, "u-1") == 0


class TestReadSide:
    def test_summary_counts(self, engine, hooks, make_reward):
        done = make_reward("Done", points=25)
        open_ = make_reward("Open", tasks=[{"title": "A", "target_value": 5}])
        record_task_progress(engine, reward_id=done.id, user_id="u-1", hooks=hooks)
        record_task_progress(engine, reward_id=open_.id, user_id="u-1", hooks=hooks)

        summary = get_user_summary(engine, "u-1")
        assert summary.to_dict() == {
            "totalRewards": 2,
            "earnedRewards": 1,
            "redeemedRewards": 0,
            "pendingRewards": 1,
            "totalPoints": 25,
        }

    def test_summary_for_unknown_user_is_empty(self, engine):
        summary = get_user_summary(engine, "nobody")
        assert summary.total_rewards == 0
        assert summary.total_points == 0

    def test_summary_points_follow_tenant_scope(self, engine, hooks, make_reward):
        acme = make_reward("Acme", tenant_id="acme", points=40)
        globex = make_reward("Globex", tenant_id="globex", points=70)
        record_task_progress(engine, reward_id=acme.id, user_id="u-1", tenant_id="acme",
                             hooks=hooks)
        record_task_progress(engine, reward_id=globex.id, user_id="u-1", tenant_id="globex",
                             hooks=hooks)

        assert get_user_summary(engine, "u-1", "acme").total_points == 40
        assert get_user_summary(engine, "u-1", "globex").total_points == 70
        assert get_user_summary(engine, "u-1").total_points == 110

    def test_summary_ignores_points_awaiting_approval(self, engine, hooks, make_reward):
        reward = make_reward(points=30, tasks=[{
            "title": "Mentor", "target_value": 1, "metadata_": {"requiresVerification": True},
        }])
        record_task_progress(engine, reward_id=reward.id, user_id="u-1", hooks=hooks)

        summary = get_user_summary(engine, "u-1")
        assert summary.earned_rewards == 1
        assert summary.total_points == 0
        assert get_user_rewards_state(engine, "u-1") is None

    def test_activities_filtered_by_tenant(self, engine, hooks, make_reward):
        acme = make_reward("Acme", tenant_id="acme", tasks=[{"title": "A", "target_value": 5}])
        other = make_reward("Other", tenant_id="globex", tasks=[{"title": "B", "target_value": 5}])
        record_task_progress(engine, reward_id=acme.id, user_id="u-1", tenant_id="acme",
                             hooks=hooks)
        record_task_progress(engine, reward_id=other.id, user_id="u-1", tenant_id="globex",
                             hooks=hooks)

        activities = get_user_activities(engine, "u-1", "acme")
        assert [a.reward.name for a in activities] == ["Acme"]
        assert [h.action for h in activities[0].history] == ["progress"]
        assert len(get_user_activities(engine, "u-1")) == 2
