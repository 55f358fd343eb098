"""Create reward templates, tasks, activities, history, ledger and badges

Revision ID: 3c9e1f7a2b40
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "3c9e1f7a2b40"
down_revision = None
branch_labels = None
depends_on = None

JSONDocument = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def upgrade() -> None:
    op.create_table(
        "reward_templates",
        sa.Column("id", sa.Integer(), autoincrement=True, primary_key=True),
        sa.Column("tenant_id", sa.String(64), nullable=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("category", sa.String(50), nullable=True),
        sa.Column("reward_type", sa.String(20), nullable=True),
        sa.Column("points", sa.Integer(), nullable=True),
        sa.Column("badge_id", sa.String(64), nullable=True),
        sa.Column("voucher_template", JSONDocument, nullable=True),
        sa.Column("tags", JSONDocument, nullable=True),
        sa.Column("is_featured", sa.Boolean(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=True),
        sa.Column("starts_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("ends_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("metadata", JSONDocument, nullable=True),
        sa.Column("created_by", sa.String(64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint("points >= 0", name="ck_reward_templates_points"),
    )
    op.create_index(
        "ix_reward_templates_tenant_active", "reward_templates", ["tenant_id", "is_active"]
    )
    op.create_index(
        "ix_reward_templates_category_type",
        "reward_templates",
        ["category", "reward_type", "is_active"],
    )

    op.create_table(
        "reward_tasks",
        sa.Column("id", sa.String(32), primary_key=True),
        sa.Column(
            "reward_id",
            sa.Integer(),
            sa.ForeignKey("reward_templates.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("action_type", sa.String(20), nullable=True),
        sa.Column("metric", sa.String(20), nullable=True),
        sa.Column("target_value", sa.Float(), nullable=True),
        sa.Column("points", sa.Integer(), nullable=True),
        sa.Column("badge_id", sa.String(64), nullable=True),
        sa.Column("is_automated", sa.Boolean(), nullable=True),
        sa.Column("metadata", JSONDocument, nullable=True),
        sa.Column("position", sa.Integer(), nullable=True),
        sa.CheckConstraint("target_value >= 0", name="ck_reward_tasks_target"),
    )
    op.create_index("ix_reward_tasks_reward", "reward_tasks", ["reward_id", "position"])

    op.create_table(
        "reward_activities",
        sa.Column("id", sa.Integer(), autoincrement=True, primary_key=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column(
            "reward_id",
            sa.Integer(),
            sa.ForeignKey("reward_templates.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("task_id", sa.String(32), nullable=False),
        sa.Column("tenant_id", sa.String(64), nullable=True),
        sa.Column("status", sa.String(20), nullable=True),
        sa.Column("progress_value", sa.Float(), nullable=True),
        sa.Column("progress_target", sa.Float(), nullable=True),
        sa.Column("points_awarded", sa.Integer(), nullable=True),
        sa.Column("voucher_code", sa.String(64), nullable=True),
        sa.Column("voucher_value", sa.Float(), nullable=True),
        sa.Column("voucher_currency", sa.String(8), nullable=True),
        sa.Column("earned_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("redeemed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("issued_by", sa.String(64), nullable=True),
        sa.Column("verification_required", sa.Boolean(), nullable=True),
        sa.Column("verification_status", sa.String(20), nullable=True),
        sa.Column("verified_by", sa.String(64), nullable=True),
        sa.Column("verified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("points_credited", sa.Boolean(), nullable=True),
        sa.Column("badges_awarded", sa.Boolean(), nullable=True),
        sa.Column("reward_earned_notified", sa.Boolean(), nullable=True),
        sa.Column("metadata", JSONDocument, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("user_id", "reward_id", "task_id", name="uq_reward_activities_key"),
        sa.CheckConstraint("progress_value >= 0", name="ck_reward_activities_progress"),
    )
    op.create_index(
        "ix_reward_activities_user_status", "reward_activities", ["user_id", "status"]
    )
    op.create_index(
        "ix_reward_activities_tenant_status", "reward_activities", ["tenant_id", "status"]
    )
    op.create_index(
        "ix_reward_activities_reward_status", "reward_activities", ["reward_id", "status"]
    )
    op.create_index(
        "ix_reward_activities_verification",
        "reward_activities",
        ["verification_status", "verification_required"],
    )

    op.create_table(
        "reward_activity_history",
        sa.Column("id", sa.Integer(), autoincrement=True, primary_key=True),
        sa.Column(
            "activity_id",
            sa.Integer(),
            sa.ForeignKey("reward_activities.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("action", sa.String(20), nullable=False),
        sa.Column("value", sa.Float(), nullable=True),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column("at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index(
        "ix_activity_history_activity", "reward_activity_history", ["activity_id", "id"]
    )

    op.create_table(
        "user_rewards",
        sa.Column("user_id", sa.String(64), primary_key=True),
        sa.Column("total_points", sa.Integer(), nullable=True),
        sa.Column("current_tier", sa.String(20), nullable=True),
        sa.Column("tier_points", sa.Integer(), nullable=True),
        sa.Column("last_points_update", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("total_points >= 0", name="ck_user_rewards_total_points"),
    )
    op.create_index("ix_user_rewards_total_points", "user_rewards", ["total_points"])

    op.create_table(
        "user_badges",
        sa.Column("user_id", sa.String(64), primary_key=True),
        sa.Column("badge_id", sa.String(64), primary_key=True),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("awarded_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )


def downgrade() -> None:
    op.drop_table("user_badges")
    op.drop_index("ix_user_rewards_total_points", table_name="user_rewards")
    op.drop_table("user_rewards")
    op.drop_index("ix_activity_history_activity", table_name="reward_activity_history")
    op.drop_table("reward_activity_history")
    op.drop_index("ix_reward_activities_verification", table_name="reward_activities")
    op.drop_index("ix_reward_activities_reward_status", table_name="reward_activities")
    op.drop_index("ix_reward_activities_tenant_status", table_name="reward_activities")
    op.drop_index("ix_reward_activities_user_status", table_name="reward_activities")
    op.drop_table("reward_activities")
    op.drop_index("ix_reward_tasks_reward", table_name="reward_tasks")
    op.drop_table("reward_tasks")
    op.drop_index("ix_reward_templates_category_type", table_name="reward_templates")
    op.drop_index("ix_reward_templates_tenant_active", table_name="reward_templates")
    op.drop_table("reward_templates")
