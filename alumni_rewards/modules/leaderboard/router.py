"""Leaderboard — FastAPI router."""

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from alumni_rewards.auth.dependencies import get_actor
from alumni_rewards.core.database import get_db
from alumni_rewards.models.enums import LeaderboardPeriod
from alumni_rewards.modules.leaderboard.schemas import DepartmentLeaderboard, PointsLeaderboard
from alumni_rewards.modules.leaderboard.service import LeaderboardService
from alumni_rewards.schemas.auth import Actor

logger = structlog.get_logger()

router = APIRouter(prefix="/rewards/leaderboard", tags=["leaderboard"])


@router.get("/{kind}", response_model=PointsLeaderboard | DepartmentLeaderboard)
async def get_leaderboard(
    kind: str,
    department: str | None = Query(default=None, max_length=255),
    period: LeaderboardPeriod = Query(default=LeaderboardPeriod.ALL),
    limit: int | None = Query(default=None, ge=1, le=500),
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
) -> PointsLeaderboard | DepartmentLeaderboard:
    svc = LeaderboardService(db, actor.tenant_id)
    if kind == "points":
        return await svc.points_leaderboard(department=department, period=period, limit=limit)
    if kind == "departments":
        return await svc.department_leaderboard(department=department)
    raise HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=f"Unknown leaderboard kind {kind!r}",
    )
