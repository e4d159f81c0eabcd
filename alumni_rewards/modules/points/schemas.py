"""Points & tier — Pydantic v2 schemas."""

import uuid

from pydantic import BaseModel

from alumni_rewards.models.enums import Tier


class TierInfo(BaseModel):
    tier: Tier
    tier_points: int
    next_tier: Tier | None = None
    points_to_next_tier: int = 0
    progress_percentage: float = 100.0


class PointsTotals(BaseModel):
    user_id: uuid.UUID
    total_points: int
    tier: Tier
    tier_info: TierInfo
