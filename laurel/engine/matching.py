"""
laurel.engine.matching — Domain Event → Task Matching
======================================================

Handler-registry of simple heuristics deciding whether an automated task
should advance for a domain event.  Each trigger kind maps to a pure
predicate over the task; no DB I/O happens here.

Heuristics are deliberately plain: an action type, an explicit metadata
flag (``trackCommunityPosts`` …) or a keyword in the task title.
"""

from __future__ import annotations

import enum
from collections.abc import Callable
from typing import Protocol

from laurel.database.models import ActionType, TaskMetric

__all__ = [
    "TRIGGER_ACTION_TYPES",
    "TRIGGER_MATCHERS",
    "TaskLike",
    "TriggerKind",
    "matching_tasks",
    "progress_amount",
    "task_matches",
]


class TriggerKind(enum.StrEnum):
    """Domain events that feed reward progress."""
    COMMUNITY_POST = "community_post"
    EVENT_RSVP = "event_rsvp"
    DONATION = "donation"
    JOB_POST = "job_post"
    MENTORSHIP_SESSION = "mentorship_session"
    COMMUNITY_JOIN = "community_join"
    PROFILE_COMPLETION = "profile_completion"


class TaskLike(Protocol):
    title: str
    action_type: str
    metric: str
    is_automated: bool
    metadata_: dict


# Action types a template must carry at least one of to be considered.
TRIGGER_ACTION_TYPES: dict[TriggerKind, tuple[str, ...]] = {
    TriggerKind.COMMUNITY_POST: (ActionType.ENGAGEMENT, ActionType.CUSTOM),
    TriggerKind.EVENT_RSVP: (ActionType.EVENT,),
    TriggerKind.DONATION: (ActionType.DONATION,),
    TriggerKind.JOB_POST: (ActionType.JOB,),
    TriggerKind.MENTORSHIP_SESSION: (ActionType.MENTORSHIP,),
    TriggerKind.COMMUNITY_JOIN: (ActionType.ENGAGEMENT, ActionType.CUSTOM),
    TriggerKind.PROFILE_COMPLETION: (ActionType.ENGAGEMENT, ActionType.CUSTOM),
}


def _flag(task: TaskLike, key: str) -> bool:
    return (task.metadata_ or {}).get(key) is True


def _title_has(task: TaskLike, *words: str) -> bool:
    title = (task.title or "").lower()
    return any(word in title for word in words)


# ---------------------------------------------------------------------------
# Matchers — pure functions (task) → bool
# ---------------------------------------------------------------------------
def _match_community_post(task: TaskLike) -> bool:
    return task.action_type == ActionType.ENGAGEMENT and (
        _flag(task, "trackCommunityPosts") or _title_has(task, "post", "community")
    )


def _match_community_join(task: TaskLike) -> bool:
    return task.action_type in TRIGGER_ACTION_TYPES[TriggerKind.COMMUNITY_JOIN] and (
        _flag(task, "trackCommunityJoin") or _title_has(task, "join", "community")
    )


def _match_profile_completion(task: TaskLike) -> bool:
    return task.action_type in TRIGGER_ACTION_TYPES[TriggerKind.PROFILE_COMPLETION] and (
        _flag(task, "trackProfileCompletion") or _title_has(task, "profile", "complete")
    )


def _action_type_matcher(action_type: ActionType) -> Callable[[TaskLike], bool]:
    def _match(task: TaskLike) -> bool:
        return task.action_type == action_type
    return _match


TRIGGER_MATCHERS: dict[TriggerKind, Callable[[TaskLike], bool]] = {
    TriggerKind.COMMUNITY_POST: _match_community_post,
    TriggerKind.EVENT_RSVP: _action_type_matcher(ActionType.EVENT),
    TriggerKind.DONATION: _action_type_matcher(ActionType.DONATION),
    TriggerKind.JOB_POST: _action_type_matcher(ActionType.JOB),
    TriggerKind.MENTORSHIP_SESSION: _action_type_matcher(ActionType.MENTORSHIP),
    TriggerKind.COMMUNITY_JOIN: _match_community_join,
    TriggerKind.PROFILE_COMPLETION: _match_profile_completion,
}


def task_matches(kind: TriggerKind, task: TaskLike) -> bool:
    """True if *task* is automated and its heuristic accepts *kind*."""
    if not task.is_automated:
        return False
    return TRIGGER_MATCHERS[kind](task)


def matching_tasks(kind: TriggerKind, tasks: list) -> list:
    return [task for task in tasks if task_matches(kind, task)]


def progress_amount(task: TaskLike, event_amount: float | None = None) -> float:
    """Progress one event contributes to *task*.

    Amount-metric tasks advance by the event's amount (e.g. a donation
    total); everything else counts one.
    """
    if task.metric == TaskMetric.AMOUNT and event_amount is not None:
        return event_amount
    return 1
