"""Badge registry — FastAPI router."""

import uuid

import structlog
from fastapi import APIRouter, BackgroundTasks, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from alumni_rewards.auth.dependencies import get_actor, require_staff
from alumni_rewards.core.database import get_db
from alumni_rewards.modules.badges.schemas import (
    BadgeClaimRequest,
    BadgeClaimResponse,
    BadgeCreate,
    BadgeResponse,
    UserBadgeResponse,
)
from alumni_rewards.modules.badges.service import BadgeRegistry
from alumni_rewards.schemas.auth import Actor
from alumni_rewards.services.notifications import (
    NotificationDispatcher,
    get_notification_dispatcher,
)

logger = structlog.get_logger()

router = APIRouter(prefix="/rewards/badges", tags=["badges"])


@router.get("", response_model=list[BadgeResponse])
async def list_badges(
    available_only: bool = Query(default=False),
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
) -> list[BadgeResponse]:
    badges = await BadgeRegistry(db).list_badges(available_only=available_only)
    return [BadgeResponse.model_validate(b) for b in badges]


@router.post("", response_model=BadgeResponse, status_code=status.HTTP_201_CREATED)
async def create_badge(
    body: BadgeCreate,
    actor: Actor = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
) -> BadgeResponse:
    badge = await BadgeRegistry(db).create_badge(body)
    await db.commit()
    return BadgeResponse.model_validate(badge)


@router.get("/me", response_model=list[UserBadgeResponse])
async def my_badges(
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
) -> list[UserBadgeResponse]:
    held = await BadgeRegistry(db).list_user_badges(actor.user_id)
    return [UserBadgeResponse.model_validate(ub) for ub in held]


@router.get("/users/{user_id}", response_model=list[UserBadgeResponse])
async def user_badges(
    user_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
) -> list[UserBadgeResponse]:
    held = await BadgeRegistry(db).list_user_badges(user_id)
    return [UserBadgeResponse.model_validate(ub) for ub in held]


@router.get("/{badge_id}", response_model=BadgeResponse)
async def get_badge(
    badge_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
) -> BadgeResponse:
    return BadgeResponse.model_validate(await BadgeRegistry(db).get_badge(badge_id))


@router.post("/{badge_id}/claim", response_model=BadgeClaimResponse)
async def claim_badge(
    badge_id: uuid.UUID,
    body: BadgeClaimRequest,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher),
) -> BadgeClaimResponse:
    """Manual staff award. 409 when already held or the cap is reached."""
    registry = BadgeRegistry(db)
    badge = await registry.award(
        badge_id,
        body.user_id,
        awarded_by=actor.user_id,
        reason=body.reason,
        tenant_id=actor.tenant_id,
    )
    await db.commit()
    background_tasks.add_task(registry.outbox.flush, dispatcher)
    return BadgeClaimResponse(
        badge_id=badge.id,
        user_id=body.user_id,
        awarded=True,
        current_recipients=badge.current_recipients,
        max_recipients=badge.max_recipients,
    )
