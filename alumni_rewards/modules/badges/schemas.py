"""Badge registry — Pydantic v2 schemas."""

import uuid
from datetime import datetime

from pydantic import BaseModel, Field, model_validator

from alumni_rewards.models.enums import BadgeCriteriaType


class BadgeCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: str | None = None
    category: str = Field(
        default="achievement",
        pattern="^(mentorship|donation|event|job|engagement|achievement|special)$",
    )
    icon: str | None = Field(default=None, max_length=50)
    criteria_type: BadgeCriteriaType = BadgeCriteriaType.MANUAL
    criteria_value: float = Field(default=0, ge=0)
    criteria_description: str = ""
    points: int = Field(default=0, ge=0)
    is_rare: bool = False
    max_recipients: int | None = Field(default=None, ge=1)
    is_active: bool = True

    @model_validator(mode="after")
    def _rare_badges_have_caps(self) -> "BadgeCreate":
        if self.max_recipients is not None:
            self.is_rare = True
        return self


class BadgeResponse(BaseModel):
    id: uuid.UUID
    name: str
    description: str | None = None
    category: str
    icon: str | None = None
    criteria_type: BadgeCriteriaType
    criteria_value: float
    criteria_description: str
    points: int
    is_rare: bool
    max_recipients: int | None = None
    current_recipients: int
    is_active: bool
    is_available: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class UserBadgeResponse(BaseModel):
    id: uuid.UUID
    user_id: uuid.UUID
    badge_id: uuid.UUID
    awarded_at: datetime
    awarded_by: uuid.UUID | None = None
    reason: str | None = None

    model_config = {"from_attributes": True}


class BadgeClaimRequest(BaseModel):
    user_id: uuid.UUID
    reason: str | None = Field(default=None, max_length=1000)


class BadgeClaimResponse(BaseModel):
    badge_id: uuid.UUID
    user_id: uuid.UUID
    awarded: bool
    current_recipients: int
    max_recipients: int | None = None
