"""Reward catalog — Pydantic v2 schemas."""

import uuid
from datetime import datetime

from pydantic import BaseModel, Field, model_validator

from alumni_rewards.models.enums import ActionType, MetricKind, RewardType


class EligibilityRules(BaseModel):
    """Allow-lists; an empty list places no restriction."""

    roles: list[str] = Field(default_factory=list)
    departments: list[str] = Field(default_factory=list)
    graduation_years: list[int] = Field(default_factory=list)
    programs: list[str] = Field(default_factory=list)


class VoucherTemplate(BaseModel):
    partner: str | None = None
    value: float | None = Field(default=None, ge=0)
    currency: str = Field(default="USD", min_length=3, max_length=3)
    terms: str | None = None
    expires_in_days: int | None = Field(default=None, ge=1)


class TaskCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: str | None = None
    action_type: ActionType = ActionType.CUSTOM
    metric: MetricKind = MetricKind.COUNT
    target_value: float = Field(default=1, ge=0)
    points: int = Field(default=0, ge=0)
    badge_id: uuid.UUID | None = None
    is_automated: bool = True
    requires_verification: bool = False
    display_order: int | None = None
    metadata: dict = Field(default_factory=dict)


class RewardCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: str | None = None
    category: str = Field(default="general", max_length=100)
    reward_type: RewardType = RewardType.POINTS
    points: int = Field(default=0, ge=0)
    voucher_template: VoucherTemplate | None = None
    badge_id: uuid.UUID | None = None
    tags: list[str] = Field(default_factory=list)
    eligibility: EligibilityRules = Field(default_factory=EligibilityRules)
    starts_at: datetime | None = None
    ends_at: datetime | None = None
    is_featured: bool = False
    is_active: bool = True
    is_global: bool = False
    metadata: dict = Field(default_factory=dict)
    tasks: list[TaskCreate] = Field(default_factory=list)

    @model_validator(mode="after")
    def _window_is_ordered(self) -> "RewardCreate":
        if self.starts_at and self.ends_at and self.ends_at <= self.starts_at:
            raise ValueError("ends_at must be after starts_at")
        return self


class RewardUpdate(BaseModel):
    """Partial update. tasks, when given, replaces the whole ordered task list."""

    name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None
    category: str | None = Field(default=None, max_length=100)
    reward_type: RewardType | None = None
    points: int | None = Field(default=None, ge=0)
    voucher_template: VoucherTemplate | None = None
    badge_id: uuid.UUID | None = None
    tags: list[str] | None = None
    eligibility: EligibilityRules | None = None
    starts_at: datetime | None = None
    ends_at: datetime | None = None
    is_featured: bool | None = None
    is_active: bool | None = None
    metadata: dict | None = None
    tasks: list[TaskCreate] | None = None


class TaskResponse(BaseModel):
    id: uuid.UUID
    reward_id: uuid.UUID
    title: str
    description: str | None = None
    action_type: ActionType
    metric: MetricKind
    target_value: float
    points: int
    badge_id: uuid.UUID | None = None
    is_automated: bool
    requires_verification: bool
    display_order: int
    metadata: dict = Field(default_factory=dict, validation_alias="meta")

    model_config = {"from_attributes": True}


class RewardResponse(BaseModel):
    id: uuid.UUID
    name: str
    description: str | None = None
    category: str
    reward_type: RewardType
    points: int
    voucher_template: dict | None = None
    badge_id: uuid.UUID | None = None
    tags: list[str] = Field(default_factory=list)
    eligibility: dict = Field(default_factory=dict)
    tenant_id: uuid.UUID | None = None
    created_by: uuid.UUID | None = None
    starts_at: datetime | None = None
    ends_at: datetime | None = None
    is_featured: bool
    is_active: bool
    metadata: dict = Field(default_factory=dict, validation_alias="meta")
    tasks: list[TaskResponse] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}
