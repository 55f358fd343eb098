"""
laurel.engine.tiers — Tier Calculator
======================================

Pure mapping from lifetime points to a tier band.  No DB I/O.

Tier thresholds::

    bronze    0 –  499
    silver  500 – 1499
    gold   1500 – 4999
    platinum 5000+
"""

from __future__ import annotations

import enum
from dataclasses import dataclass

__all__ = [
    "TIER_THRESHOLDS",
    "Tier",
    "TierInfo",
    "calculate_tier",
    "get_tier_info",
    "tier_display_name",
]


class Tier(enum.StrEnum):
    BRONZE = "bronze"
    SILVER = "silver"
    GOLD = "gold"
    PLATINUM = "platinum"


# Tier → inclusive floor.  Ordered lowest first.
TIER_THRESHOLDS: dict[Tier, int] = {
    Tier.BRONZE: 0,
    Tier.SILVER: 500,
    Tier.GOLD: 1500,
    Tier.PLATINUM: 5000,
}

_ORDER: list[Tier] = list(TIER_THRESHOLDS)


@dataclass(frozen=True, slots=True)
class TierInfo:
    """Tier standing for a points total.

    ``tier_points`` is the offset from the current tier's floor and
    ``progress_percentage`` is how far through the current band the total
    sits (always within 0–100; 100 at platinum).
    """

    total_points: int
    current_tier: Tier
    tier_points: int
    next_tier: Tier | None
    points_to_next_tier: int
    progress_percentage: float

    def to_dict(self) -> dict:
        return {
            "totalPoints": self.total_points,
            "currentTier": self.current_tier.value,
            "tierPoints": self.tier_points,
            "nextTier": self.next_tier.value if self.next_tier else None,
            "pointsToNextTier": self.points_to_next_tier,
            "progressPercentage": self.progress_percentage,
        }


def calculate_tier(total_points: int) -> Tier:
    """Return the tier whose band contains *total_points*."""
    current = Tier.BRONZE
    for tier in _ORDER:
        if total_points >= TIER_THRESHOLDS[tier]:
            current = tier
    return current


def get_tier_info(total_points: int) -> TierInfo:
    """Return the full :class:`TierInfo` for *total_points*.

    Negative totals are treated as zero; the ledger never stores them.
    """
    total_points = max(0, int(total_points))
    current = calculate_tier(total_points)
    floor = TIER_THRESHOLDS[current]
    tier_points = total_points - floor

    idx = _ORDER.index(current)
    if idx == len(_ORDER) - 1:
        return TierInfo(
            total_points=total_points,
            current_tier=current,
            tier_points=tier_points,
            next_tier=None,
            points_to_next_tier=0,
            progress_percentage=100.0,
        )

    next_tier = _ORDER[idx + 1]
    band = TIER_THRESHOLDS[next_tier] - floor
    progress = tier_points / band * 100
    return TierInfo(
        total_points=total_points,
        current_tier=current,
        tier_points=tier_points,
        next_tier=next_tier,
        points_to_next_tier=TIER_THRESHOLDS[next_tier] - total_points,
        progress_percentage=min(100.0, max(0.0, progress)),
    )


def tier_display_name(tier: Tier | str) -> str:
    return str(tier).capitalize()
