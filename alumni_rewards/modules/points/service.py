"""Points & Tier Accumulator.

total_points only grows, through a single atomic UPDATE. Tier is a pure
function of total_points and is recomputed on every read.
"""

from __future__ import annotations

import uuid

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from alumni_rewards.core.config import settings
from alumni_rewards.models.badges import UserBadge
from alumni_rewards.models.base import utcnow
from alumni_rewards.models.enums import Tier
from alumni_rewards.models.profiles import RewardProfile
from alumni_rewards.modules.points.schemas import PointsTotals, TierInfo
from alumni_rewards.schemas.auth import MemberContext

logger = structlog.get_logger()


def tier_bands() -> list[tuple[Tier, int]]:
    """(tier, minimum points) in ascending order."""
    return [
        (Tier.BRONZE, 0),
        (Tier.SILVER, settings.TIER_SILVER_MIN),
        (Tier.GOLD, settings.TIER_GOLD_MIN),
        (Tier.PLATINUM, settings.TIER_PLATINUM_MIN),
    ]


def calculate_tier(points: int) -> Tier:
    current = Tier.BRONZE
    for tier, minimum in tier_bands():
        if points >= minimum:
            current = tier
    return current


def get_tier_info(points: int) -> TierInfo:
    bands = tier_bands()
    tier = calculate_tier(points)
    index = [t for t, _ in bands].index(tier)
    tier_min = bands[index][1]

    if index == len(bands) - 1:
        return TierInfo(tier=tier, tier_points=tier_min)

    next_tier, next_min = bands[index + 1]
    span = next_min - tier_min
    progress = (points - tier_min) / span * 100 if span else 100.0
    return TierInfo(
        tier=tier,
        tier_points=tier_min,
        next_tier=next_tier,
        points_to_next_tier=next_min - points,
        progress_percentage=round(progress, 1),
    )


class PointsAccumulator:
    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def get_profile(self, user_id: uuid.UUID) -> RewardProfile | None:
        result = await self.db.execute(
            select(RewardProfile).where(RewardProfile.user_id == user_id)
        )
        return result.scalar_one_or_none()

    async def ensure_profile(
        self,
        user_id: uuid.UUID,
        tenant_id: uuid.UUID | None = None,
        member: MemberContext | None = None,
    ) -> RewardProfile:
        """Fetch or create the user's profile; refresh the identity snapshot."""
        profile = await self.get_profile(user_id)
        if profile is None:
            try:
                async with self.db.begin_nested():
                    profile = RewardProfile(user_id=user_id, tenant_id=tenant_id, badge_ids=[])
                    self.db.add(profile)
                    await self.db.flush()
            except IntegrityError:
                # Created concurrently
                profile = await self.get_profile(user_id)
                if profile is None:
                    raise

        if profile.tenant_id is None and tenant_id is not None:
            profile.tenant_id = tenant_id
        if member is not None:
            profile.display_name = member.display_name or profile.display_name
            profile.email = member.email or profile.email
            profile.role = member.role or profile.role
            profile.department = member.department or profile.department
            if member.tenant_id is not None:
                profile.tenant_id = member.tenant_id
        return profile

    async def add_points(
        self, user_id: uuid.UUID, delta: int, tenant_id: uuid.UUID | None = None
    ) -> int:
        """Atomically add delta (>= 0) and return the new total."""
        if delta < 0:
            raise ValueError("Points delta must be non-negative")

        profile = await self.ensure_profile(user_id, tenant_id)
        if delta == 0:
            return profile.total_points

        await self.db.execute(
            update(RewardProfile)
            .where(RewardProfile.user_id == user_id)
            .values(
                total_points=RewardProfile.total_points + delta,
                last_points_update=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        await self.db.refresh(profile)
        logger.info(
            "points_added",
            user_id=str(user_id),
            delta=delta,
            total_points=profile.total_points,
        )
        return profile.total_points

    async def get_totals(self, user_id: uuid.UUID) -> PointsTotals:
        profile = await self.get_profile(user_id)
        total = profile.total_points if profile else 0
        info = get_tier_info(total)
        return PointsTotals(user_id=user_id, total_points=total, tier=info.tier, tier_info=info)

    async def sync_badge_ids(self, user_id: uuid.UUID, tenant_id: uuid.UUID | None = None) -> list[str]:
        """Rebuild the public badge list from user_badges."""
        profile = await self.ensure_profile(user_id, tenant_id)
        result = await self.db.execute(
            select(UserBadge.badge_id)
            .where(UserBadge.user_id == user_id)
            .order_by(UserBadge.awarded_at.asc())
        )
        profile.badge_ids = [str(badge_id) for badge_id in result.scalars().all()]
        return profile.badge_ids
