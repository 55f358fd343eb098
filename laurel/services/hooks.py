"""
laurel.services.hooks — Side-Effect Wiring
===========================================

:class:`RewardHooks` bundles the outbound collaborators (notifier, badge
bridge, dispatcher) that the transactional services hand work to after
commit.  Services accept ``hooks=None`` and fall back to
:func:`default_hooks`.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from laurel.services.badge_bridge import BadgeBridge, BadgeEvaluator, DirectBadgeEvaluator
from laurel.services.dispatch import Dispatcher, InlineDispatcher, SideEffectDispatcher
from laurel.services.notifications import LogNotifier, Notifier

if TYPE_CHECKING:
    from sqlalchemy import Engine


@dataclass
class RewardHooks:
    notifier: Notifier
    badges: BadgeBridge
    dispatcher: Dispatcher

    def notify(self, user_id: str, event: str, data: dict[str, Any]) -> None:
        """Queue a single-recipient notification."""
        self.dispatcher.submit(
            f"notify:{event}",
            self.notifier.send,
            recipients=[user_id],
            event=event,
            data=data,
        )


def build_hooks(
    *,
    notifier: Notifier,
    badge_evaluator: BadgeEvaluator,
    dispatcher: Dispatcher,
) -> RewardHooks:
    return RewardHooks(
        notifier=notifier,
        badges=BadgeBridge(badge_evaluator, dispatcher),
        dispatcher=dispatcher,
    )


def default_hooks(engine: Engine) -> RewardHooks:
    """Log-only notifier, local badge set, inline dispatch."""
    return build_hooks(
        notifier=LogNotifier(),
        badge_evaluator=DirectBadgeEvaluator(engine),
        dispatcher=InlineDispatcher(),
    )


def threaded_hooks(engine: Engine, max_workers: int = 4) -> RewardHooks:
    """Like :func:`default_hooks` but side effects run on a thread pool."""
    return build_hooks(
        notifier=LogNotifier(),
        badge_evaluator=DirectBadgeEvaluator(engine),
        dispatcher=SideEffectDispatcher(max_workers=max_workers),
    )
