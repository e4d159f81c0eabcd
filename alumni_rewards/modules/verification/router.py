"""Verification gate — FastAPI router."""

import uuid

import structlog
from fastapi import APIRouter, BackgroundTasks, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from alumni_rewards.auth.dependencies import get_actor, require_staff
from alumni_rewards.core.config import settings
from alumni_rewards.core.database import get_db
from alumni_rewards.models.enums import VerificationStatus
from alumni_rewards.modules.ledger.schemas import ActivityResponse
from alumni_rewards.modules.ledger.service import LedgerService
from alumni_rewards.modules.metrics.client import DomainMetricsClient, get_metrics_client
from alumni_rewards.modules.verification.schemas import (
    ResolveRequest,
    ResubmitRequest,
    VerificationFilters,
    VerificationPage,
    VerificationStats,
)
from alumni_rewards.modules.verification.service import VerificationGate
from alumni_rewards.schemas.auth import Actor
from alumni_rewards.services.notifications import (
    NotificationDispatcher,
    get_notification_dispatcher,
)

logger = structlog.get_logger()

router = APIRouter(prefix="/rewards/verifications", tags=["verifications"])


def _svc(db: AsyncSession, actor: Actor, metrics_client: DomainMetricsClient) -> VerificationGate:
    return VerificationGate(
        db, LedgerService(db, tenant_id=actor.tenant_id, metrics_client=metrics_client)
    )


@router.get("", response_model=VerificationPage)
async def list_verifications(
    status: VerificationStatus | None = Query(default=VerificationStatus.PENDING),
    reward_id: uuid.UUID | None = Query(default=None),
    user_id: uuid.UUID | None = Query(default=None),
    search: str | None = Query(default=None, max_length=200),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=settings.VERIFICATION_PAGE_LIMIT, ge=1, le=100),
    actor: Actor = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
    metrics_client: DomainMetricsClient = Depends(get_metrics_client),
) -> VerificationPage:
    filters = VerificationFilters(
        status=status,
        reward_id=reward_id,
        user_id=user_id,
        search=search,
        page=page,
        limit=limit,
    )
    return await _svc(db, actor, metrics_client).list_pending(filters)


@router.get("/stats", response_model=VerificationStats)
async def verification_stats(
    actor: Actor = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
    metrics_client: DomainMetricsClient = Depends(get_metrics_client),
) -> VerificationStats:
    return await _svc(db, actor, metrics_client).stats()


@router.post("/{activity_id}/resolve", response_model=ActivityResponse)
async def resolve_verification(
    activity_id: uuid.UUID,
    body: ResolveRequest,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
    metrics_client: DomainMetricsClient = Depends(get_metrics_client),
    dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher),
) -> ActivityResponse:
    """Approve or reject. A second resolution of the same record is a 409."""
    gate = _svc(db, actor, metrics_client)
    activity = await gate.resolve(activity_id, body.action, actor.user_id, reason=body.reason)
    await db.commit()
    background_tasks.add_task(gate.ledger.outbox.flush, dispatcher)
    return ActivityResponse.model_validate(activity)


@router.post("/{activity_id}/resubmit", response_model=ActivityResponse)
async def resubmit_verification(
    activity_id: uuid.UUID,
    body: ResubmitRequest,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
    metrics_client: DomainMetricsClient = Depends(get_metrics_client),
    dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher),
) -> ActivityResponse:
    gate = _svc(db, actor, metrics_client)
    activity = await gate.resubmit(activity_id, actor.user_id, note=body.note)
    await db.commit()
    background_tasks.add_task(gate.ledger.outbox.flush, dispatcher)
    return ActivityResponse.model_validate(activity)
