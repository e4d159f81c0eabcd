"""Leaderboard Service — read-only rankings over the accumulator and the ledger.

Lifetime and windowed rankings are deliberately different views: the
windowed one sums points_awarded of activities earned inside the window.
Ties always break on user_id so pages are stable.
"""

from __future__ import annotations

import uuid
from datetime import datetime

import structlog
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from alumni_rewards.core.config import settings
from alumni_rewards.middleware.tenant import tenant_filter, tenant_scope
from alumni_rewards.models.base import utcnow
from alumni_rewards.models.enums import COMPLETED_STATUSES, LeaderboardPeriod
from alumni_rewards.models.profiles import RewardProfile
from alumni_rewards.models.rewards import RewardActivity
from alumni_rewards.modules.leaderboard.schemas import (
    DepartmentEntry,
    DepartmentLeaderboard,
    LeaderboardEntry,
    PointsLeaderboard,
)
from alumni_rewards.modules.points.service import calculate_tier
from alumni_rewards.schemas.auth import STAFF_ROLES

logger = structlog.get_logger()

UNKNOWN_DEPARTMENT = "Unknown"


def _members_only(stmt):
    """Rank alumni and students only; staff and admins never appear."""
    return stmt.where(
        or_(RewardProfile.role.is_(None), func.lower(RewardProfile.role).not_in(sorted(STAFF_ROLES)))
    )


def window_start(period: LeaderboardPeriod, now: datetime) -> datetime | None:
    if period == LeaderboardPeriod.MONTH:
        return datetime(now.year, now.month, 1)
    if period == LeaderboardPeriod.YEAR:
        return datetime(now.year, 1, 1)
    return None


class LeaderboardService:
    def __init__(self, db: AsyncSession, tenant_id: uuid.UUID | None = None) -> None:
        self.db = db
        self.tenant_id = tenant_id

    async def points_leaderboard(
        self,
        department: str | None = None,
        period: LeaderboardPeriod = LeaderboardPeriod.ALL,
        limit: int | None = None,
        now: datetime | None = None,
    ) -> PointsLeaderboard:
        period = LeaderboardPeriod(period)
        limit = limit or settings.LEADERBOARD_DEFAULT_LIMIT
        since = window_start(period, now or utcnow())

        if since is None:
            points_col = RewardProfile.total_points
            stmt = select(RewardProfile, points_col)
        else:
            earned = select(
                RewardActivity.user_id.label("user_id"),
                func.sum(RewardActivity.points_awarded).label("points"),
            ).where(
                RewardActivity.status.in_(COMPLETED_STATUSES),
                RewardActivity.points_awarded > 0,
                RewardActivity.earned_at >= since,
            )
            earned = tenant_scope(earned, self.tenant_id, RewardActivity)
            windowed = earned.group_by(RewardActivity.user_id).subquery()
            points_col = func.coalesce(windowed.c.points, 0)
            stmt = select(RewardProfile, points_col).outerjoin(
                windowed, windowed.c.user_id == RewardProfile.user_id
            )

        stmt = tenant_filter(stmt, self.tenant_id, RewardProfile)
        stmt = _members_only(stmt)
        if department:
            stmt = stmt.where(RewardProfile.department == department)
        stmt = stmt.order_by(points_col.desc(), RewardProfile.user_id.asc()).limit(limit)

        rows = (await self.db.execute(stmt)).all()
        entries = [
            LeaderboardEntry(
                rank=rank,
                user_id=profile.user_id,
                display_name=profile.display_name,
                department=profile.department,
                points=int(points or 0),
                total_points=profile.total_points,
                tier=calculate_tier(profile.total_points),
            )
            for rank, (profile, points) in enumerate(rows, start=1)
        ]
        return PointsLeaderboard(period=period, department=department, entries=entries)

    async def department_leaderboard(self, department: str | None = None) -> DepartmentLeaderboard:
        dept_col = func.coalesce(RewardProfile.department, UNKNOWN_DEPARTMENT)
        stmt = select(
            dept_col.label("department"),
            func.sum(RewardProfile.total_points).label("total_points"),
            func.count(RewardProfile.id).label("user_count"),
        )
        stmt = tenant_filter(stmt, self.tenant_id, RewardProfile)
        stmt = _members_only(stmt)
        if department:
            stmt = stmt.where(dept_col == department)
        stmt = stmt.group_by(dept_col)

        rows = (await self.db.execute(stmt)).all()
        ordered = sorted(rows, key=lambda r: (-(r.total_points or 0), r.department))
        return DepartmentLeaderboard(
            entries=[
                DepartmentEntry(
                    rank=rank,
                    department=row.department,
                    total_points=int(row.total_points or 0),
                    user_count=row.user_count,
                    average_points=round((row.total_points or 0) / row.user_count, 2)
                    if row.user_count
                    else 0.0,
                )
                for rank, row in enumerate(ordered, start=1)
            ]
        )
