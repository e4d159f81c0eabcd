"""Create reward catalog, achievement ledger, badges and profiles.

Revision ID: 0001_create_reward_ledger
Revises:
Create Date: 2026-10-18

"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision: str = "0001_create_reward_ledger"
down_revision: str | None = None
branch_labels = None
depends_on = None

JSONType = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "badges",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("category", sa.String(50), server_default="achievement", nullable=False),
        sa.Column("icon", sa.String(50), nullable=True),
        sa.Column("criteria_type", sa.String(32), nullable=False),
        sa.Column("criteria_value", sa.Float(), server_default="0", nullable=False),
        sa.Column("criteria_description", sa.Text(), server_default="", nullable=False),
        sa.Column("points", sa.Integer(), server_default="0", nullable=False),
        sa.Column("is_rare", sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column("max_recipients", sa.Integer(), nullable=True),
        sa.Column("current_recipients", sa.Integer(), server_default="0", nullable=False),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("name", name="uq_badges_name"),
        sa.CheckConstraint(
            "max_recipients IS NULL OR current_recipients <= max_recipients",
            name="ck_badges_recipient_cap",
        ),
        sa.CheckConstraint("current_recipients >= 0", name="ck_badges_recipients_non_negative"),
    )

    op.create_table(
        "rewards",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("category", sa.String(100), server_default="general", nullable=False),
        sa.Column("reward_type", sa.String(32), nullable=False),
        sa.Column("points", sa.Integer(), server_default="0", nullable=False),
        sa.Column("voucher_template", JSONType, nullable=True),
        sa.Column(
            "badge_id",
            sa.Uuid(),
            sa.ForeignKey("badges.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("tags", JSONType, nullable=True),
        sa.Column("eligibility", JSONType, nullable=True),
        sa.Column("tenant_id", sa.Uuid(), nullable=True),
        sa.Column("created_by", sa.Uuid(), nullable=True),
        sa.Column("starts_at", sa.DateTime(), nullable=True),
        sa.Column("ends_at", sa.DateTime(), nullable=True),
        sa.Column("is_featured", sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true(), nullable=False),
        sa.Column("metadata", JSONType, nullable=True),
        *_timestamps(),
        sa.CheckConstraint("points >= 0", name="ck_rewards_points_non_negative"),
    )
    op.create_index("ix_rewards_category", "rewards", ["category"], if_not_exists=True)
    op.create_index("ix_rewards_tenant_id", "rewards", ["tenant_id"], if_not_exists=True)
    op.create_index(
        "ix_rewards_tenant_active", "rewards", ["tenant_id", "is_active"], if_not_exists=True
    )
    op.create_index(
        "ix_rewards_category_type_active",
        "rewards",
        ["category", "reward_type", "is_active"],
        if_not_exists=True,
    )

    op.create_table(
        "reward_tasks",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "reward_id",
            sa.Uuid(),
            sa.ForeignKey("rewards.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("action_type", sa.String(32), nullable=False),
        sa.Column("metric", sa.String(32), nullable=False),
        sa.Column("target_value", sa.Float(), server_default="1", nullable=False),
        sa.Column("points", sa.Integer(), server_default="0", nullable=False),
        sa.Column(
            "badge_id",
            sa.Uuid(),
            sa.ForeignKey("badges.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("is_automated", sa.Boolean(), server_default=sa.true(), nullable=False),
        sa.Column(
            "requires_verification", sa.Boolean(), server_default=sa.false(), nullable=False
        ),
        sa.Column("display_order", sa.Integer(), server_default="0", nullable=False),
        sa.Column("metadata", JSONType, nullable=True),
        *_timestamps(),
        sa.CheckConstraint("target_value >= 0", name="ck_reward_tasks_target_non_negative"),
        sa.CheckConstraint("points >= 0", name="ck_reward_tasks_points_non_negative"),
    )
    op.create_index("ix_reward_tasks_reward_id", "reward_tasks", ["reward_id"], if_not_exists=True)
    op.create_index(
        "ix_reward_tasks_action_type",
        "reward_tasks",
        ["action_type", "is_automated"],
        if_not_exists=True,
    )

    op.create_table(
        "reward_activities",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column(
            "reward_id",
            sa.Uuid(),
            sa.ForeignKey("rewards.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column(
            "task_id",
            sa.Uuid(),
            sa.ForeignKey("reward_tasks.id", ondelete="RESTRICT"),
            nullable=True,
        ),
        sa.Column("status", sa.String(32), nullable=False),
        sa.Column("progress_value", sa.Float(), server_default="0", nullable=False),
        sa.Column("progress_target", sa.Float(), server_default="1", nullable=False),
        sa.Column("points_awarded", sa.Integer(), server_default="0", nullable=False),
        sa.Column(
            "points_added_to_user", sa.Boolean(), server_default=sa.false(), nullable=False
        ),
        sa.Column("voucher_code", sa.String(64), nullable=True),
        sa.Column("voucher_value", sa.Float(), nullable=True),
        sa.Column("voucher_currency", sa.String(3), nullable=True),
        sa.Column("earned_at", sa.DateTime(), nullable=True),
        sa.Column("redeemed_at", sa.DateTime(), nullable=True),
        sa.Column("issued_by", sa.Uuid(), nullable=True),
        sa.Column("tenant_id", sa.Uuid(), nullable=True),
        sa.Column("metadata", JSONType, nullable=True),
        sa.Column(
            "verification_required", sa.Boolean(), server_default=sa.false(), nullable=False
        ),
        sa.Column("verification_status", sa.String(32), nullable=True),
        sa.Column("verified_by", sa.Uuid(), nullable=True),
        sa.Column("verified_at", sa.DateTime(), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("history", JSONType, nullable=True),
        *_timestamps(),
        sa.UniqueConstraint(
            "user_id", "reward_id", "task_id", name="uq_reward_activity_user_task"
        ),
        sa.CheckConstraint(
            "points_awarded >= 0", name="ck_reward_activities_points_non_negative"
        ),
    )
    # NULL task_id never collides in the composite constraint above
    op.create_index(
        "uq_reward_activity_user_direct",
        "reward_activities",
        ["user_id", "reward_id"],
        unique=True,
        postgresql_where=sa.text("task_id IS NULL"),
        sqlite_where=sa.text("task_id IS NULL"),
    )
    op.create_index(
        "ix_reward_activities_user_status",
        "reward_activities",
        ["user_id", "status"],
        if_not_exists=True,
    )
    op.create_index(
        "ix_reward_activities_tenant_status",
        "reward_activities",
        ["tenant_id", "status"],
        if_not_exists=True,
    )
    op.create_index(
        "ix_reward_activities_reward_status",
        "reward_activities",
        ["reward_id", "status"],
        if_not_exists=True,
    )
    op.create_index(
        "ix_reward_activities_verification",
        "reward_activities",
        ["verification_required", "verification_status"],
        if_not_exists=True,
    )
    op.create_index(
        "ix_reward_activities_earned_at",
        "reward_activities",
        ["earned_at"],
        if_not_exists=True,
    )

    op.create_table(
        "user_badges",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column(
            "badge_id",
            sa.Uuid(),
            sa.ForeignKey("badges.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("awarded_at", sa.DateTime(), nullable=False),
        sa.Column("awarded_by", sa.Uuid(), nullable=True),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("metadata", JSONType, nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("user_id", "badge_id", name="uq_user_badge"),
    )
    op.create_index("ix_user_badges_user_id", "user_badges", ["user_id"], if_not_exists=True)
    op.create_index("ix_user_badges_badge_id", "user_badges", ["badge_id"], if_not_exists=True)

    op.create_table(
        "reward_profiles",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("tenant_id", sa.Uuid(), nullable=True),
        sa.Column("display_name", sa.String(255), nullable=True),
        sa.Column("email", sa.String(320), nullable=True),
        sa.Column("role", sa.String(50), nullable=True),
        sa.Column("department", sa.String(255), nullable=True),
        sa.Column("total_points", sa.Integer(), server_default="0", nullable=False),
        sa.Column("badge_ids", JSONType, nullable=True),
        sa.Column("last_points_update", sa.DateTime(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("user_id", name="uq_reward_profiles_user_id"),
        sa.CheckConstraint("total_points >= 0", name="ck_reward_profiles_points_non_negative"),
    )
    op.create_index(
        "ix_reward_profiles_tenant_points",
        "reward_profiles",
        ["tenant_id", "total_points"],
        if_not_exists=True,
    )
    op.create_index(
        "ix_reward_profiles_department",
        "reward_profiles",
        ["department"],
        if_not_exists=True,
    )


def downgrade() -> None:
    op.drop_table("reward_profiles")
    op.drop_table("user_badges")
    op.drop_table("reward_activities")
    op.drop_table("reward_tasks")
    op.drop_table("rewards")
    op.drop_table("badges")
