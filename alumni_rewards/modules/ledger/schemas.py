"""Achievement ledger — Pydantic v2 schemas."""

import uuid
from datetime import datetime

from pydantic import AliasChoices, BaseModel, Field

from alumni_rewards.models.enums import ActionType, ActivityStatus, Tier


class HistoryEntry(BaseModel):
    action: str
    value: float | None = None
    note: str | None = None
    at: datetime


class VerificationRecord(BaseModel):
    required: bool
    status: str | None = None
    verified_by: uuid.UUID | None = None
    verified_at: datetime | None = None
    rejection_reason: str | None = None


class ActivityResponse(BaseModel):
    id: uuid.UUID
    user_id: uuid.UUID
    reward_id: uuid.UUID
    task_id: uuid.UUID | None = None
    status: ActivityStatus
    progress_value: float
    progress_target: float
    points_awarded: int
    points_added_to_user: bool
    voucher_code: str | None = None
    voucher_value: float | None = None
    voucher_currency: str | None = None
    earned_at: datetime | None = None
    redeemed_at: datetime | None = None
    issued_by: uuid.UUID | None = None
    tenant_id: uuid.UUID | None = None
    verification: VerificationRecord | None = None
    history: list[HistoryEntry] = Field(default_factory=list)
    metadata: dict = Field(
        default_factory=dict, validation_alias=AliasChoices("meta", "metadata")
    )
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class EvaluateActionRequest(BaseModel):
    action_type: ActionType
    user_id: uuid.UUID | None = None  # staff may evaluate on behalf of a user
    background: bool = False


class EvaluateActionResponse(BaseModel):
    user_id: uuid.UUID
    action_type: ActionType
    queued: bool = False
    activities: list[ActivityResponse] = Field(default_factory=list)


class ManualIssueRequest(BaseModel):
    user_id: uuid.UUID
    task_id: uuid.UUID | None = None
    note: str | None = Field(default=None, max_length=1000)


class ManualProgressRequest(BaseModel):
    user_id: uuid.UUID
    task_id: uuid.UUID
    value: float = Field(..., ge=0)
    note: str | None = Field(default=None, max_length=1000)


class RedeemRequest(BaseModel):
    voucher_code: str | None = Field(default=None, max_length=64)
    note: str | None = Field(default=None, max_length=1000)
    user_id: uuid.UUID | None = None  # staff redeeming for a user


class HistoryActivity(BaseModel):
    id: uuid.UUID
    reward_id: uuid.UUID
    reward_name: str
    category: str
    task_id: uuid.UUID | None = None
    status: ActivityStatus
    progress_value: float
    progress_target: float
    points_awarded: int
    earned_at: datetime | None = None
    redeemed_at: datetime | None = None
    updated_at: datetime


class TimelineEntry(BaseModel):
    month: str  # YYYY-MM
    points: int
    count: int


class CategoryBreakdown(BaseModel):
    category: str
    total_points: int
    count: int


class ActivityHistoryResponse(BaseModel):
    user_id: uuid.UUID
    activities: list[HistoryActivity]
    timeline: list[TimelineEntry]
    categories: list[CategoryBreakdown]


class UserSummaryResponse(BaseModel):
    user_id: uuid.UUID
    total_points: int
    tier: Tier
    badge_count: int
    by_status: dict[str, int]
    pending_verifications: int
