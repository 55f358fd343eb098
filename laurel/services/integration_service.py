"""
laurel.services.integration_service — Integration Triggers
===========================================================

Adapters called by other features (community posts, event RSVPs,
donations, job posts, mentorship sessions, community joins, profile
completion).  Each adapter finds the active templates whose automated
tasks match the event and records progress once per matching task.

A trigger never raises: reward tracking must not fail the user's primary
action.  Every failure is logged and the adapter moves on to the next task.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from laurel.engine.matching import (
    TRIGGER_ACTION_TYPES,
    TriggerKind,
    matching_tasks,
    progress_amount,
)
from laurel.services.progress_service import ProgressResult, record_task_progress
from laurel.services.template_service import list_active_templates

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from laurel.services.hooks import RewardHooks

logger = logging.getLogger(__name__)

PROFILE_COMPLETE = 100


def track_event(
    engine: Engine,
    kind: TriggerKind,
    user_id: str,
    *,
    tenant_id: str | None = None,
    amount: float | None = None,
    context: dict[str, Any] | None = None,
    hooks: RewardHooks | None = None,
    enforce_schedule: bool = True,
) -> list[ProgressResult]:
    """Feed one domain event into every matching reward task.

    Returns the progress results of the tasks that were updated.
    """
    try:
        templates = list_active_templates(
            engine,
            action_types=[str(t) for t in TRIGGER_ACTION_TYPES[kind]],
            tenant_id=tenant_id,
            enforce_schedule=enforce_schedule,
        )
    except Exception:
        logger.exception("Could not load reward templates for %s (user %s)", kind, user_id)
        return []

    results: list[ProgressResult] = []
    for reward in templates:
        for task in matching_tasks(kind, reward.tasks):
            task_context = {
                **(context or {}),
                "trigger": kind.value,
                "requiresVerification": task.requires_verification,
            }
            try:
                result = record_task_progress(
                    engine,
                    reward_id=reward.id,
                    task_id=task.id,
                    user_id=user_id,
                    amount=progress_amount(task, amount),
                    context=task_context,
                    tenant_id=tenant_id,
                    hooks=hooks,
                )
            except Exception:
                logger.exception(
                    "Reward tracking failed for %s: user=%s reward=%d task=%s",
                    kind, user_id, reward.id, task.id,
                )
                continue
            results.append(result)

    if results:
        logger.info(
            "%s by %s advanced %d task(s)%s",
            kind, user_id, len(results),
            f", {sum(r.just_earned for r in results)} earned"
            if any(r.just_earned for r in results) else "",
        )
    return results


# ---------------------------------------------------------------------------
# One adapter per domain event
# ---------------------------------------------------------------------------
def track_community_post(
    engine: Engine, user_id: str, community_id: str, post_id: str,
    tenant_id: str | None = None, **kwargs: Any,
) -> list[ProgressResult]:
    return track_event(
        engine, TriggerKind.COMMUNITY_POST, user_id, tenant_id=tenant_id,
        context={"communityId": community_id, "postId": post_id, "note": "Community post"},
        **kwargs,
    )


def track_event_rsvp(
    engine: Engine, user_id: str, event_id: str,
    tenant_id: str | None = None, **kwargs: Any,
) -> list[ProgressResult]:
    return track_event(
        engine, TriggerKind.EVENT_RSVP, user_id, tenant_id=tenant_id,
        context={"eventId": event_id, "note": "Event RSVP"},
        **kwargs,
    )


def track_donation(
    engine: Engine, user_id: str, donation_id: str, amount: float,
    tenant_id: str | None = None, **kwargs: Any,
) -> list[ProgressResult]:
    """Amount-metric tasks advance by *amount*; count tasks by one."""
    return track_event(
        engine, TriggerKind.DONATION, user_id, tenant_id=tenant_id, amount=amount,
        context={"donationId": donation_id, "amount": amount, "note": f"Donation of {amount}"},
        **kwargs,
    )


def track_job_post(
    engine: Engine, user_id: str, job_id: str,
    tenant_id: str | None = None, **kwargs: Any,
) -> list[ProgressResult]:
    return track_event(
        engine, TriggerKind.JOB_POST, user_id, tenant_id=tenant_id,
        context={"jobId": job_id, "note": "Job posted"},
        **kwargs,
    )


def track_mentorship_session(
    engine: Engine, user_id: str, session_id: str, mentorship_id: str | None = None,
    tenant_id: str | None = None, **kwargs: Any,
) -> list[ProgressResult]:
    return track_event(
        engine, TriggerKind.MENTORSHIP_SESSION, user_id, tenant_id=tenant_id,
        context={
            "sessionId": session_id,
            "mentorshipId": mentorship_id,
            "note": "Mentorship session completed",
        },
        **kwargs,
    )


def track_community_join(
    engine: Engine, user_id: str, community_id: str,
    tenant_id: str | None = None, **kwargs: Any,
) -> list[ProgressResult]:
    return track_event(
        engine, TriggerKind.COMMUNITY_JOIN, user_id, tenant_id=tenant_id,
        context={"communityId": community_id, "note": "Joined community"},
        **kwargs,
    )


def track_profile_completion(
    engine: Engine, user_id: str, completion_percentage: float,
    tenant_id: str | None = None, **kwargs: Any,
) -> list[ProgressResult]:
    """Only a profile reaching 100% counts."""
    if completion_percentage < PROFILE_COMPLETE:
        logger.debug("Profile of %s at %s%%, not tracked", user_id, completion_percentage)
        return []
    return track_event(
        engine, TriggerKind.PROFILE_COMPLETION, user_id, tenant_id=tenant_id,
        context={"completionPercentage": completion_percentage, "note": "Profile completed"},
        **kwargs,
    )
