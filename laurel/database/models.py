"""
laurel.database.models — SQLAlchemy 2.0 Data Models
=====================================================

Tables:
- reward_templates        — Achievable rewards, optionally split into tasks
- reward_tasks            — Sub-goals of a reward template
- reward_activities       — Per-user progress record per (user, reward, task)
- reward_activity_history — Append-only progress / redemption / review journal
- user_rewards            — Per-user points ledger and tier standing
- user_badges             — Badges held by a user
"""

from __future__ import annotations

import enum
import uuid
from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

# JSONB on PostgreSQL, plain JSON everywhere else (SQLite in tests / dev).
JSONDocument = JSON().with_variant(JSONB(), "postgresql")


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all Laurel ORM models."""


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class RewardType(enum.StrEnum):
    """What a reward hands out when claimed."""
    BADGE = "badge"
    VOUCHER = "voucher"
    POINTS = "points"
    PERK = "perk"


class ActionType(enum.StrEnum):
    """Domain action a task counts."""
    EVENT = "event"
    DONATION = "donation"
    MENTORSHIP = "mentorship"
    JOB = "job"
    REFERRAL = "referral"
    ENGAGEMENT = "engagement"
    CUSTOM = "custom"


class TaskMetric(enum.StrEnum):
    """How progress toward a task target is measured."""
    COUNT = "count"
    AMOUNT = "amount"
    DURATION = "duration"


class RewardStatus(enum.StrEnum):
    """Lifecycle of a RewardActivity. Only ever moves forward."""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    EARNED = "earned"
    REDEEMED = "redeemed"


class VerificationStatus(enum.StrEnum):
    """Staff review state of an activity that needs manual approval."""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class HistoryAction(enum.StrEnum):
    """Kinds of entries in reward_activity_history."""
    PROGRESS = "progress"
    REDEEMED = "redeemed"
    VERIFIED = "verified"
    REJECTED = "rejected"
    RESUBMITTED = "resubmitted"


def _new_task_id() -> str:
    return uuid.uuid4().hex


# ---------------------------------------------------------------------------
# RewardTemplate — an achievable reward definition
# ---------------------------------------------------------------------------
class RewardTemplate(Base):
    __tablename__ = "reward_templates"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str | None] = mapped_column(String(64), default=None)  # NULL = global
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, default=None)
    category: Mapped[str] = mapped_column(String(50), default="general")
    reward_type: Mapped[str] = mapped_column(String(20), default=RewardType.POINTS.value)
    points: Mapped[int] = mapped_column(Integer, default=0)
    badge_id: Mapped[str | None] = mapped_column(String(64), default=None)
    # {"partner", "value", "currency", "terms", "expires_in_days"}
    voucher_template: Mapped[dict | None] = mapped_column(JSONDocument, default=None)
    tags: Mapped[list] = mapped_column(JSONDocument, default=list)
    is_featured: Mapped[bool] = mapped_column(Boolean, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    starts_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    ends_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    metadata_: Mapped[dict] = mapped_column("metadata", JSONDocument, default=dict)
    created_by: Mapped[str | None] = mapped_column(String(64), default=None)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    tasks: Mapped[list[RewardTask]] = relationship(
        back_populates="reward",
        cascade="all, delete-orphan",
        order_by="RewardTask.position",
    )
    activities: Mapped[list[RewardActivity]] = relationship(
        back_populates="reward",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        CheckConstraint("points >= 0", name="ck_reward_templates_points"),
        Index("ix_reward_templates_tenant_active", "tenant_id", "is_active"),
        Index("ix_reward_templates_category_type", "category", "reward_type", "is_active"),
    )

    @property
    def first_task(self) -> RewardTask | None:
        return self.tasks[0] if self.tasks else None

    def get_task(self, task_id: str) -> RewardTask | None:
        for task in self.tasks:
            if task.id == str(task_id):
                return task
        return None

    def __repr__(self) -> str:
        return f"<RewardTemplate id={self.id} name={self.name!r} active={self.is_active}>"


# ---------------------------------------------------------------------------
# RewardTask — a sub-goal within a reward template
# ---------------------------------------------------------------------------
class RewardTask(Base):
    __tablename__ = "reward_tasks"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_task_id)
    reward_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("reward_templates.id", ondelete="CASCADE"), nullable=False
    )
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, default=None)
    action_type: Mapped[str] = mapped_column(String(20), default=ActionType.CUSTOM.value)
    metric: Mapped[str] = mapped_column(String(20), default=TaskMetric.COUNT.value)
    target_value: Mapped[float] = mapped_column(Float, default=1)
    points: Mapped[int | None] = mapped_column(Integer, default=None)  # None → reward points
    badge_id: Mapped[str | None] = mapped_column(String(64), default=None)
    is_automated: Mapped[bool] = mapped_column(Boolean, default=True)
    metadata_: Mapped[dict] = mapped_column("metadata", JSONDocument, default=dict)
    position: Mapped[int] = mapped_column(Integer, default=0)

    reward: Mapped[RewardTemplate] = relationship(back_populates="tasks")

    __table_args__ = (
        CheckConstraint("target_value >= 0", name="ck_reward_tasks_target"),
        Index("ix_reward_tasks_reward", "reward_id", "position"),
    )

    @property
    def requires_verification(self) -> bool:
        return (self.metadata_ or {}).get("requiresVerification") is True

    def __repr__(self) -> str:
        return f"<RewardTask id={self.id} title={self.title!r} type={self.action_type!r}>"


# ---------------------------------------------------------------------------
# RewardActivity — per-user progress record
# ---------------------------------------------------------------------------
class RewardActivity(Base):
    """Progress of one user against one reward task.

    Exactly one row exists per (user_id, reward_id, task_id).  ``task_id`` is
    the empty string for templates without tasks so the unique constraint
    holds (NULLs are distinct in unique indexes).
    """
    __tablename__ = "reward_activities"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    reward_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("reward_templates.id", ondelete="CASCADE"), nullable=False
    )
    task_id: Mapped[str] = mapped_column(String(32), nullable=False, default="")
    tenant_id: Mapped[str | None] = mapped_column(String(64), default=None)
    status: Mapped[str] = mapped_column(String(20), default=RewardStatus.PENDING.value)
    progress_value: Mapped[float] = mapped_column(Float, default=0)
    progress_target: Mapped[float] = mapped_column(Float, default=1)
    points_awarded: Mapped[int] = mapped_column(Integer, default=0)

    voucher_code: Mapped[str | None] = mapped_column(String(64), default=None)
    voucher_value: Mapped[float | None] = mapped_column(Float, default=None)
    voucher_currency: Mapped[str | None] = mapped_column(String(8), default=None)
    earned_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    redeemed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    issued_by: Mapped[str | None] = mapped_column(String(64), default=None)

    verification_required: Mapped[bool] = mapped_column(Boolean, default=False)
    verification_status: Mapped[str] = mapped_column(
        String(20), default=VerificationStatus.PENDING.value
    )
    verified_by: Mapped[str | None] = mapped_column(String(64), default=None)
    verified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    rejection_reason: Mapped[str | None] = mapped_column(Text, default=None)

    # Exactly-once guards shared by the tracker and the approval path
    points_credited: Mapped[bool] = mapped_column(Boolean, default=False)
    badges_awarded: Mapped[bool] = mapped_column(Boolean, default=False)
    reward_earned_notified: Mapped[bool] = mapped_column(Boolean, default=False)

    metadata_: Mapped[dict] = mapped_column("metadata", JSONDocument, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    reward: Mapped[RewardTemplate] = relationship(back_populates="activities")
    history: Mapped[list[ActivityHistory]] = relationship(
        back_populates="activity",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="ActivityHistory.id",
    )

    __table_args__ = (
        UniqueConstraint("user_id", "reward_id", "task_id", name="uq_reward_activities_key"),
        CheckConstraint("progress_value >= 0", name="ck_reward_activities_progress"),
        Index("ix_reward_activities_user_status", "user_id", "status"),
        Index("ix_reward_activities_tenant_status", "tenant_id", "status"),
        Index("ix_reward_activities_reward_status", "reward_id", "status"),
        Index(
            "ix_reward_activities_verification",
            "verification_status",
            "verification_required",
        ),
    )

    @property
    def verification_satisfied(self) -> bool:
        return (
            not self.verification_required
            or self.verification_status == VerificationStatus.APPROVED
        )

    def __repr__(self) -> str:
        return (
            f"<RewardActivity id={self.id} user={self.user_id!r} "
            f"reward={self.reward_id} task={self.task_id!r} status={self.status}>"
        )


# ---------------------------------------------------------------------------
# ActivityHistory — append-only journal per activity
# ---------------------------------------------------------------------------
class ActivityHistory(Base):
    __tablename__ = "reward_activity_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    activity_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("reward_activities.id", ondelete="CASCADE"), nullable=False
    )
    action: Mapped[str] = mapped_column(String(20), nullable=False)
    value: Mapped[float | None] = mapped_column(Float, default=None)
    note: Mapped[str | None] = mapped_column(Text, default=None)
    at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    activity: Mapped[RewardActivity] = relationship(back_populates="history")

    __table_args__ = (
        Index("ix_activity_history_activity", "activity_id", "id"),
    )

    def __repr__(self) -> str:
        return f"<ActivityHistory activity={self.activity_id} action={self.action}>"


# ---------------------------------------------------------------------------
# UserRewards — points ledger and tier standing
# ---------------------------------------------------------------------------
class UserRewards(Base):
    __tablename__ = "user_rewards"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    total_points: Mapped[int] = mapped_column(Integer, default=0)
    current_tier: Mapped[str] = mapped_column(String(20), default="bronze")
    tier_points: Mapped[int] = mapped_column(Integer, default=0)
    last_points_update: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )

    __table_args__ = (
        CheckConstraint("total_points >= 0", name="ck_user_rewards_total_points"),
        Index("ix_user_rewards_total_points", "total_points"),
    )

    def __repr__(self) -> str:
        return (
            f"<UserRewards user={self.user_id!r} points={self.total_points} "
            f"tier={self.current_tier}>"
        )


# ---------------------------------------------------------------------------
# UserBadge — badges held by a user
# ---------------------------------------------------------------------------
class UserBadge(Base):
    __tablename__ = "user_badges"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    badge_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    reason: Mapped[str | None] = mapped_column(Text, default=None)
    awarded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    def __repr__(self) -> str:
        return f"<UserBadge user={self.user_id!r} badge={self.badge_id!r}>"
