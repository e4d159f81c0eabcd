"""SQLAlchemy models package — import all models so Base.metadata is populated."""

from alumni_rewards.models.base import BaseModel, ModelMixin, TimestampedModel
from alumni_rewards.models.badges import Badge, UserBadge
from alumni_rewards.models.enums import (
    ActionType,
    ActivityStatus,
    BadgeCriteriaType,
    LeaderboardPeriod,
    MetricKind,
    RewardType,
    Tier,
    VerificationAction,
    VerificationStatus,
)
from alumni_rewards.models.profiles import RewardProfile
from alumni_rewards.models.rewards import Reward, RewardActivity, RewardTask

__all__ = [
    "ActionType",
    "ActivityStatus",
    "Badge",
    "BadgeCriteriaType",
    "BaseModel",
    "LeaderboardPeriod",
    "MetricKind",
    "ModelMixin",
    "Reward",
    "RewardActivity",
    "RewardProfile",
    "RewardTask",
    "RewardType",
    "Tier",
    "TimestampedModel",
    "UserBadge",
    "VerificationAction",
    "VerificationStatus",
]
