"""
laurel.services.notifications — Notifier Boundary & Message Templates
======================================================================

The reward engine talks to notification delivery through the
:class:`Notifier` protocol only.  Delivery transport (email, push, in-app
inbox) lives elsewhere; :class:`LogNotifier` is the built-in implementation
that renders the message and writes it to the log.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Protocol

logger = logging.getLogger(__name__)

# Event names emitted by the reward engine
TASK_COMPLETED = "task.completed"
TASK_REJECTED = "task.rejected"
TASK_RESUBMITTED = "task.resubmitted"
REWARD_EARNED = "reward.earned"
REWARD_CLAIMED = "reward.claimed"


@dataclass(frozen=True, slots=True)
class Notification:
    """A rendered notification for one recipient."""

    recipient: str
    event: str
    category: str
    type: str
    title: str
    message: str
    action_url: str | None = None
    data: dict = field(default_factory=dict)
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))


@dataclass(frozen=True, slots=True)
class NotificationTemplate:
    category: str
    type: str
    title: Callable[[dict], str]
    message: Callable[[dict], str]
    action_url: str | None = None


def _reward_earned_message(data: dict) -> str:
    badge = data.get("badgeName") or data.get("badgeId")
    prize = f"badge {badge}" if badge else "a new reward"
    return f"You earned {data.get('points', 0)} pts and {prize}."


def _task_rejected_message(data: dict) -> str:
    reason = data.get("rejectionReason")
    tail = f"Reason: {reason}" if reason else "Please review and resubmit."
    return f'Your task "{data.get("taskTitle", "task")}" was rejected. {tail}'


NOTIFICATION_TEMPLATES: dict[str, NotificationTemplate] = {
    TASK_COMPLETED: NotificationTemplate(
        category="reward",
        type="success",
        action_url="/rewards",
        title=lambda d: "Task marked complete",
        message=lambda d: (
            f"Your submission for {d.get('taskTitle', 'a task')} is complete."
            + (" Pending verification." if d.get("requiresVerification") else "")
        ),
    ),
    TASK_REJECTED: NotificationTemplate(
        category="reward",
        type="error",
        action_url="/rewards",
        title=lambda d: "Task verification rejected",
        message=_task_rejected_message,
    ),
    TASK_RESUBMITTED: NotificationTemplate(
        category="reward",
        type="info",
        action_url="/rewards",
        title=lambda d: "Task resubmitted",
        message=lambda d: (
            f'Your task "{d.get("taskTitle", "task")}" has been resubmitted '
            "and is pending verification again."
        ),
    ),
    REWARD_EARNED: NotificationTemplate(
        category="reward",
        type="success",
        action_url="/rewards",
        title=lambda d: "Reward unlocked",
        message=_reward_earned_message,
    ),
    REWARD_CLAIMED: NotificationTemplate(
        category="reward",
        type="success",
        action_url="/rewards",
        title=lambda d: "Reward claimed",
        message=lambda d: (
            f"Enjoy your reward: {d.get('title', 'Reward')}. "
            "Check your email for details."
        ),
    ),
}


def build_notifications(
    recipients: list[str], event: str, data: dict | None = None
) -> list[Notification]:
    """Render *event* for every recipient.

    Raises
    ------
    KeyError
        If *event* has no template.
    """
    data = data or {}
    template = NOTIFICATION_TEMPLATES[event]
    return [
        Notification(
            recipient=recipient,
            event=event,
            category=template.category,
            type=template.type,
            title=template.title(data),
            message=template.message(data),
            action_url=template.action_url,
            data=dict(data),
        )
        for recipient in recipients
    ]


class Notifier(Protocol):
    def send(self, *, recipients: list[str], event: str, data: dict[str, Any]) -> list[Notification]:
        ...


class LogNotifier:
    """Renders notifications and writes them to the log."""

    def send(self, *, recipients: list[str], event: str, data: dict[str, Any]) -> list[Notification]:
        notifications = build_notifications(recipients, event, data)
        for note in notifications:
            logger.info("Notify %s [%s] %s — %s", note.recipient, note.event, note.title, note.message)
        return notifications
