"""
laurel.services.redemption_service — Claim Handler
===================================================

Moves an earned activity to ``redeemed`` and issues an opaque voucher code.
Redemption is at reward granularity: any earned task activity under the
reward can be claimed.  A claim on an activity still awaiting staff review
fails with :class:`~laurel.errors.VerificationPendingError` and leaves the
activity untouched.
"""

from __future__ import annotations

import logging
import string
import time
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from sqlalchemy import select
from sqlalchemy.orm import Session

from laurel.database.models import (
    HistoryAction,
    RewardActivity,
    RewardStatus,
    RewardTemplate,
    RewardType,
    VerificationStatus,
)
from laurel.errors import NotFoundError, VerificationPendingError
from laurel.services.notifications import REWARD_CLAIMED
from laurel.services.progress_service import add_history, move_status

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from laurel.services.hooks import RewardHooks

logger = logging.getLogger(__name__)

_BASE36 = string.digits + string.ascii_lowercase


def to_base36(number: int) -> str:
    if number < 0:
        raise ValueError("base36 encoding needs a non-negative integer")
    if number == 0:
        return "0"
    digits = []
    while number:
        number, rem = divmod(number, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def generate_voucher_code(prefix: str = "RV", now_ms: int | None = None) -> str:
    """``RV-<base36 millisecond timestamp>``, uppercased."""
    if now_ms is None:
        now_ms = time.time_ns() // 1_000_000
    return f"{prefix}-{to_base36(now_ms)}".upper()


def claim_reward(
    engine: Engine,
    reward_id: int,
    user_id: str,
    *,
    voucher_code: str | None = None,
    note: str | None = None,
    issuer_id: str | None = None,
    hooks: RewardHooks | None = None,
    voucher_prefix: str = "RV",
) -> RewardActivity:
    """Redeem the user's earned activity for *reward_id*.

    Raises
    ------
    NotFoundError
        No earned activity exists for (reward, user).
    VerificationPendingError
        The earned activities all await staff approval.
    TransientError
        A concurrent claim moved the activity first.
    """
    with Session(engine, expire_on_commit=False) as session:
        earned = session.scalars(
            select(RewardActivity)
            .where(
                RewardActivity.reward_id == reward_id,
                RewardActivity.user_id == user_id,
                RewardActivity.status == RewardStatus.EARNED.value,
            )
            .order_by(RewardActivity.earned_at, RewardActivity.id)
            .with_for_update()
        ).all()
        if not earned:
            raise NotFoundError("Reward not ready for redemption")

        claimable = [a for a in earned if a.verification_satisfied]
        if not claimable:
            # A pending review outranks a rejection when both exist
            blocked = next(
                (a for a in earned if a.verification_status == VerificationStatus.PENDING),
                earned[0],
            )
            logger.info(
                "Claim blocked for %s on reward %d: verification %s",
                user_id, reward_id, blocked.verification_status,
            )
            raise VerificationPendingError(
                activity_id=blocked.id,
                verification_status=blocked.verification_status,
            )

        activity = claimable[0]
        reward = session.get(RewardTemplate, reward_id)

        move_status(session, activity, RewardStatus.EARNED.value, RewardStatus.REDEEMED.value)
        activity.redeemed_at = datetime.now(UTC)
        activity.voucher_code = (
            voucher_code or activity.voucher_code or generate_voucher_code(voucher_prefix)
        )
        voucher = reward.voucher_template or {}
        if voucher.get("value") is not None:
            activity.voucher_value = voucher["value"]
        if voucher.get("currency"):
            activity.voucher_currency = voucher["currency"]
        if issuer_id:
            activity.issued_by = issuer_id
        add_history(session, activity, HistoryAction.REDEEMED, note=note)

        reward_name = reward.name
        badge_id = reward.badge_id
        is_badge_reward = reward.reward_type == RewardType.BADGE
        tenant_id = activity.tenant_id
        session.commit()

    logger.info(
        "Reward %d redeemed by %s (activity %d, voucher %s)",
        reward_id, user_id, activity.id, activity.voucher_code,
    )

    if hooks is None:
        from laurel.services.hooks import default_hooks

        hooks = default_hooks(engine)
    if is_badge_reward or badge_id:
        hooks.badges.on_claim(
            user_id, tenant_id, reward_badge_id=badge_id, reward_name=reward_name
        )
    hooks.notify(
        user_id,
        REWARD_CLAIMED,
        {
            "rewardId": reward_id,
            "title": reward_name,
            "voucherCode": activity.voucher_code,
        },
    )
    return activity
