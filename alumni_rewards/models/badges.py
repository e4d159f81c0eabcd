"""Badge definitions (with optional scarcity) and who holds them."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    false,
    true,
)
from sqlalchemy.orm import Mapped, mapped_column

from alumni_rewards.core.database import JSONType
from alumni_rewards.models.base import BaseModel, TimestampedModel, enum_column, utcnow
from alumni_rewards.models.enums import BadgeCriteriaType


class Badge(BaseModel):
    """Badge definition. current_recipients only moves through the registry's claim."""

    __tablename__ = "badges"

    name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    category: Mapped[str] = mapped_column(String(50), default="achievement", server_default="achievement")
    # mentorship, donation, event, job, engagement, achievement, special
    icon: Mapped[str | None] = mapped_column(String(50), nullable=True)
    criteria_type: Mapped[BadgeCriteriaType] = mapped_column(
        enum_column(BadgeCriteriaType), default=BadgeCriteriaType.MANUAL, nullable=False
    )
    criteria_value: Mapped[float] = mapped_column(Float, default=0, server_default="0")
    criteria_description: Mapped[str] = mapped_column(Text, default="", server_default="")
    points: Mapped[int] = mapped_column(Integer, default=0, server_default="0")
    is_rare: Mapped[bool] = mapped_column(Boolean, default=False, server_default=false())
    max_recipients: Mapped[int | None] = mapped_column(Integer, nullable=True)
    current_recipients: Mapped[int] = mapped_column(Integer, default=0, server_default="0")
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, server_default=true())

    __table_args__ = (
        CheckConstraint(
            "max_recipients IS NULL OR current_recipients <= max_recipients",
            name="ck_badges_recipient_cap",
        ),
        CheckConstraint("current_recipients >= 0", name="ck_badges_recipients_non_negative"),
    )

    @property
    def is_available(self) -> bool:
        if not self.is_active:
            return False
        if self.max_recipients is not None and self.current_recipients >= self.max_recipients:
            return False
        return True

    @property
    def rarity_percentage(self) -> float | None:
        if not self.max_recipients:
            return None
        return self.current_recipients / self.max_recipients * 100


class UserBadge(TimestampedModel):
    """Record of a badge held by a user; at most one per (user, badge)."""

    __tablename__ = "user_badges"

    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    badge_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("badges.id", ondelete="CASCADE"), nullable=False, index=True
    )
    awarded_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    awarded_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    meta: Mapped[dict] = mapped_column("metadata", JSONType, default=dict)

    __table_args__ = (
        UniqueConstraint("user_id", "badge_id", name="uq_user_badge"),
    )
