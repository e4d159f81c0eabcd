"""Per-user running points total — the accumulator behind tiers and leaderboards."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import CheckConstraint, DateTime, Index, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from alumni_rewards.core.database import JSONType
from alumni_rewards.models.base import BaseModel


class RewardProfile(BaseModel):
    """Running total plus an identity snapshot used for leaderboard filters.

    Tier is derived from total_points on read and never stored.
    """

    __tablename__ = "reward_profiles"

    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, unique=True)
    tenant_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    display_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    role: Mapped[str | None] = mapped_column(String(50), nullable=True)
    department: Mapped[str | None] = mapped_column(String(255), nullable=True)
    total_points: Mapped[int] = mapped_column(Integer, default=0, server_default="0")
    badge_ids: Mapped[list] = mapped_column(JSONType, default=list)
    last_points_update: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    __table_args__ = (
        CheckConstraint("total_points >= 0", name="ck_reward_profiles_points_non_negative"),
        Index("ix_reward_profiles_tenant_points", "tenant_id", "total_points"),
        Index("ix_reward_profiles_department", "department"),
    )
