"""Reward catalog — FastAPI router."""

import uuid

import structlog
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from alumni_rewards.auth.dependencies import get_actor, require_staff
from alumni_rewards.core.database import get_db
from alumni_rewards.models.enums import RewardType
from alumni_rewards.modules.catalog.schemas import RewardCreate, RewardResponse, RewardUpdate
from alumni_rewards.modules.catalog.service import RewardCatalog
from alumni_rewards.schemas.auth import Actor

logger = structlog.get_logger()

router = APIRouter(prefix="/rewards", tags=["rewards"])


def _svc(db: AsyncSession, actor: Actor) -> RewardCatalog:
    return RewardCatalog(db, actor.tenant_id)


@router.get("", response_model=list[RewardResponse])
async def list_rewards(
    category: list[str] | None = Query(default=None),
    reward_type: RewardType | None = Query(default=None),
    featured: bool | None = Query(default=None),
    include_inactive: bool = Query(default=False),
    skip: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=200),
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
) -> list[RewardResponse]:
    """Rewards visible to the caller. Members only see what is live right now."""
    rewards = await _svc(db, actor).list_rewards(
        is_active=None if include_inactive and actor.is_staff else True,
        categories=category,
        reward_type=reward_type,
        featured=featured,
        enforce_schedule=not actor.is_staff,
        skip=skip,
        limit=limit,
    )
    return [RewardResponse.model_validate(r) for r in rewards]


@router.post("", response_model=RewardResponse, status_code=status.HTTP_201_CREATED)
async def create_reward(
    body: RewardCreate,
    actor: Actor = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
) -> RewardResponse:
    reward = await _svc(db, actor).create_reward(body, created_by=actor.user_id)
    await db.commit()
    return RewardResponse.model_validate(reward)


@router.get("/{reward_id}", response_model=RewardResponse)
async def get_reward(
    reward_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
) -> RewardResponse:
    return RewardResponse.model_validate(await _svc(db, actor).get_reward(reward_id))


@router.patch("/{reward_id}", response_model=RewardResponse)
async def update_reward(
    reward_id: uuid.UUID,
    body: RewardUpdate,
    actor: Actor = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
) -> RewardResponse:
    """Edit a reward. Breaking edits are a 409 once activities reference it."""
    reward = await _svc(db, actor).update_reward(reward_id, body)
    await db.commit()
    return RewardResponse.model_validate(reward)


@router.delete("/{reward_id}", response_model=RewardResponse)
async def deactivate_reward(
    reward_id: uuid.UUID,
    actor: Actor = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
) -> RewardResponse:
    """Soft-deactivate; rewards are never hard-deleted."""
    reward = await _svc(db, actor).deactivate_reward(reward_id)
    await db.commit()
    return RewardResponse.model_validate(reward)
