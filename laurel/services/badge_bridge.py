"""
laurel.services.badge_bridge — Badge Awarding Bridge
=====================================================

Delegates badge awarding to an external :class:`BadgeEvaluator`.  The
bridge only decides *which* calls to make; every call goes through the
dispatcher, so a failing evaluator never blocks or fails the reward
transaction that triggered it.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from laurel.services.dispatch import Dispatcher

logger = logging.getLogger(__name__)


class BadgeEvaluator(Protocol):
    def award_badge_directly(
        self, user_id: str, badge_id: str, tenant_id: str | None, reason: str
    ) -> bool:
        ...

    def check_and_award_eligible_badges(self, user_id: str, tenant_id: str | None) -> None:
        ...


class DirectBadgeEvaluator:
    """Evaluator that records direct awards in the local ``user_badges`` set.

    Criteria-based badges need an external evaluator; this one has no
    criteria and only logs the re-evaluation request.
    """

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    def award_badge_directly(
        self, user_id: str, badge_id: str, tenant_id: str | None, reason: str
    ) -> bool:
        from laurel.services.points_service import award_badge

        return award_badge(self._engine, user_id, badge_id, reason=reason)

    def check_and_award_eligible_badges(self, user_id: str, tenant_id: str | None) -> None:
        logger.debug(
            "No criteria evaluator configured; skipping eligibility check for %s", user_id
        )


class BadgeBridge:
    """Turns reward milestones into badge evaluator calls."""

    def __init__(self, evaluator: BadgeEvaluator, dispatcher: Dispatcher) -> None:
        self.evaluator = evaluator
        self.dispatcher = dispatcher

    def _award(self, user_id: str, badge_id: str, tenant_id: str | None, reason: str) -> None:
        logger.info("Awarding badge %s to %s (%s)", badge_id, user_id, reason)
        self.dispatcher.submit(
            f"badge:{badge_id}",
            self.evaluator.award_badge_directly,
            user_id,
            badge_id,
            tenant_id,
            reason,
        )

    def on_completion(
        self,
        user_id: str,
        tenant_id: str | None,
        *,
        task_badge_id: str | None = None,
        task_title: str | None = None,
        reward_badge_id: str | None = None,
        reward_name: str | None = None,
    ) -> None:
        """Award linked badges for a verified completion, then re-check all
        criteria-based badges (new points may satisfy unrelated ones)."""
        if task_badge_id:
            self._award(
                user_id, task_badge_id, tenant_id,
                f"Awarded for completing task: {task_title or 'Task'}",
            )
        if reward_badge_id:
            self._award(
                user_id, reward_badge_id, tenant_id,
                f"Awarded for completing reward: {reward_name or 'Reward'}",
            )
        self.dispatcher.submit(
            "badges:eligible",
            self.evaluator.check_and_award_eligible_badges,
            user_id,
            tenant_id,
        )

    def on_claim(
        self,
        user_id: str,
        tenant_id: str | None,
        *,
        reward_badge_id: str | None,
        reward_name: str | None = None,
    ) -> None:
        if not reward_badge_id:
            logger.debug("Claimed reward %r has no badge to award", reward_name)
            return
        self._award(
            user_id, reward_badge_id, tenant_id,
            f"Awarded for claiming reward: {reward_name or 'Reward'}",
        )
