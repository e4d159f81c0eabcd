"""Verification gate — Pydantic v2 schemas."""

import uuid

from pydantic import BaseModel, Field

from alumni_rewards.models.enums import VerificationAction, VerificationStatus
from alumni_rewards.modules.ledger.schemas import ActivityResponse


class VerificationFilters(BaseModel):
    status: VerificationStatus | None = VerificationStatus.PENDING
    reward_id: uuid.UUID | None = None
    user_id: uuid.UUID | None = None
    search: str | None = Field(default=None, max_length=200)
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=20, ge=1, le=100)


class ResolveRequest(BaseModel):
    action: VerificationAction
    reason: str | None = Field(default=None, max_length=1000)


class ResubmitRequest(BaseModel):
    note: str | None = Field(default=None, max_length=1000)


class VerificationItem(ActivityResponse):
    reward_name: str | None = None
    user_name: str | None = None
    user_email: str | None = None


class VerificationPage(BaseModel):
    items: list[VerificationItem]
    page: int
    limit: int
    total: int
    pages: int


class VerificationStats(BaseModel):
    pending: int = 0
    approved: int = 0
    rejected: int = 0
    total: int = 0
    approved_last_7_days: int = 0
    rejected_last_7_days: int = 0
