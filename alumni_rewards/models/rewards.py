"""Reward catalog and the per-user achievement ledger."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import (
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
    Uuid,
    false,
    text,
    true,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from alumni_rewards.core.database import JSONType
from alumni_rewards.models.base import BaseModel, enum_column
from alumni_rewards.models.enums import (
    ActionType,
    ActivityStatus,
    MetricKind,
    RewardType,
    VerificationStatus,
)


class Reward(BaseModel):
    """Administrator-defined achievement, optionally split into ordered tasks."""

    __tablename__ = "rewards"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    category: Mapped[str] = mapped_column(
        String(100), default="general", server_default="general", index=True
    )
    reward_type: Mapped[RewardType] = mapped_column(
        enum_column(RewardType), default=RewardType.POINTS, nullable=False
    )
    points: Mapped[int] = mapped_column(Integer, default=0, server_default="0")
    voucher_template: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    # partner, value, currency, terms, expires_in_days
    badge_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("badges.id", ondelete="SET NULL"), nullable=True
    )
    tags: Mapped[list] = mapped_column(JSONType, default=list)
    eligibility: Mapped[dict] = mapped_column(JSONType, default=dict)
    # roles, departments, graduation_years, programs; an empty list is unrestricted
    tenant_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True, index=True)
    created_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    starts_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    ends_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    is_featured: Mapped[bool] = mapped_column(Boolean, default=False, server_default=false())
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, server_default=true())
    meta: Mapped[dict] = mapped_column("metadata", JSONType, default=dict)

    tasks: Mapped[list[RewardTask]] = relationship(
        back_populates="reward",
        order_by="RewardTask.display_order",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    __table_args__ = (
        CheckConstraint("points >= 0", name="ck_rewards_points_non_negative"),
        Index("ix_rewards_tenant_active", "tenant_id", "is_active"),
        Index("ix_rewards_category_type_active", "category", "reward_type", "is_active"),
    )

    def window_contains(self, moment: datetime) -> bool:
        if self.starts_at and self.starts_at > moment:
            return False
        if self.ends_at and self.ends_at < moment:
            return False
        return True


class RewardTask(BaseModel):
    """One measurable sub-goal of a reward."""

    __tablename__ = "reward_tasks"

    reward_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("rewards.id", ondelete="CASCADE"), nullable=False, index=True
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    action_type: Mapped[ActionType] = mapped_column(
        enum_column(ActionType), default=ActionType.CUSTOM, nullable=False
    )
    metric: Mapped[MetricKind] = mapped_column(
        enum_column(MetricKind), default=MetricKind.COUNT, nullable=False
    )
    target_value: Mapped[float] = mapped_column(Float, default=1, server_default="1")
    points: Mapped[int] = mapped_column(Integer, default=0, server_default="0")
    badge_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("badges.id", ondelete="SET NULL"), nullable=True
    )
    is_automated: Mapped[bool] = mapped_column(Boolean, default=True, server_default=true())
    requires_verification: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default=false()
    )
    display_order: Mapped[int] = mapped_column(Integer, default=0, server_default="0")
    meta: Mapped[dict] = mapped_column("metadata", JSONType, default=dict)

    reward: Mapped[Reward] = relationship(back_populates="tasks")

    __table_args__ = (
        CheckConstraint("target_value >= 0", name="ck_reward_tasks_target_non_negative"),
        CheckConstraint("points >= 0", name="ck_reward_tasks_points_non_negative"),
        Index("ix_reward_tasks_action_type", "action_type", "is_automated"),
    )


class RewardActivity(BaseModel):
    """A user's progress on one (reward, task) pair; never deleted."""

    __tablename__ = "reward_activities"

    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    reward_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("rewards.id", ondelete="RESTRICT"), nullable=False
    )
    task_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("reward_tasks.id", ondelete="RESTRICT"), nullable=True
    )
    status: Mapped[ActivityStatus] = mapped_column(
        enum_column(ActivityStatus), default=ActivityStatus.PENDING, nullable=False
    )
    progress_value: Mapped[float] = mapped_column(Float, default=0, server_default="0")
    progress_target: Mapped[float] = mapped_column(Float, default=1, server_default="1")
    points_awarded: Mapped[int] = mapped_column(Integer, default=0, server_default="0")
    points_added_to_user: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default=false()
    )
    voucher_code: Mapped[str | None] = mapped_column(String(64), nullable=True)
    voucher_value: Mapped[float | None] = mapped_column(Float, nullable=True)
    voucher_currency: Mapped[str | None] = mapped_column(String(3), nullable=True)
    earned_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    redeemed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    issued_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    tenant_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    meta: Mapped[dict] = mapped_column("metadata", JSONType, default=dict)

    # Verification sub-record
    verification_required: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default=false()
    )
    verification_status: Mapped[VerificationStatus | None] = mapped_column(
        enum_column(VerificationStatus), nullable=True
    )
    verified_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    verified_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    history: Mapped[list] = mapped_column(JSONType, default=list)
    # append-only [{action, value, note, at}]

    __table_args__ = (
        UniqueConstraint("user_id", "reward_id", "task_id", name="uq_reward_activity_user_task"),
        Index(
            "uq_reward_activity_user_direct",
            "user_id",
            "reward_id",
            unique=True,
            postgresql_where=text("task_id IS NULL"),
            sqlite_where=text("task_id IS NULL"),
        ),
        CheckConstraint("points_awarded >= 0", name="ck_reward_activities_points_non_negative"),
        Index("ix_reward_activities_user_status", "user_id", "status"),
        Index("ix_reward_activities_tenant_status", "tenant_id", "status"),
        Index("ix_reward_activities_reward_status", "reward_id", "status"),
        Index(
            "ix_reward_activities_verification",
            "verification_required",
            "verification_status",
        ),
        Index("ix_reward_activities_earned_at", "earned_at"),
    )

    def append_history(
        self,
        action: str,
        at: datetime,
        value: float | None = None,
        note: str | None = None,
    ) -> None:
        # Reassign so the JSON column is flagged dirty
        entry = {"action": action, "value": value, "note": note, "at": at.isoformat()}
        self.history = [*(self.history or []), entry]

    @property
    def verification(self) -> dict | None:
        if not self.verification_required:
            return None
        return {
            "required": True,
            "status": self.verification_status.value if self.verification_status else None,
            "verified_by": self.verified_by,
            "verified_at": self.verified_at,
            "rejection_reason": self.rejection_reason,
        }
