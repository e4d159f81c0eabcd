"""Achievement ledger — FastAPI router."""

import uuid
from datetime import datetime

import structlog
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from alumni_rewards.auth.dependencies import get_actor, require_staff
from alumni_rewards.core.database import get_db
from alumni_rewards.modules.ledger.schemas import (
    ActivityHistoryResponse,
    ActivityResponse,
    EvaluateActionRequest,
    EvaluateActionResponse,
    ManualIssueRequest,
    ManualProgressRequest,
    RedeemRequest,
    UserSummaryResponse,
)
from alumni_rewards.modules.ledger.service import LedgerService
from alumni_rewards.modules.ledger.tasks import evaluate_reward_action
from alumni_rewards.modules.metrics.client import DomainMetricsClient, get_metrics_client
from alumni_rewards.modules.points.schemas import PointsTotals
from alumni_rewards.schemas.auth import Actor
from alumni_rewards.services.identity import IdentityProvider, get_identity_provider
from alumni_rewards.services.notifications import (
    NotificationDispatcher,
    get_notification_dispatcher,
)

logger = structlog.get_logger()

router = APIRouter(prefix="/rewards", tags=["ledger"])


def _svc(
    db: AsyncSession,
    actor: Actor,
    metrics_client: DomainMetricsClient,
    identity: IdentityProvider,
) -> LedgerService:
    return LedgerService(
        db,
        tenant_id=actor.tenant_id,
        metrics_client=metrics_client,
        identity=identity,
    )


def _target_user(actor: Actor, user_id: uuid.UUID | None) -> uuid.UUID:
    if user_id is None or user_id == actor.user_id:
        return actor.user_id
    if not actor.is_staff:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only staff may act on behalf of another user",
        )
    return user_id


@router.post("/actions", response_model=EvaluateActionResponse)
async def evaluate_action(
    body: EvaluateActionRequest,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
    metrics_client: DomainMetricsClient = Depends(get_metrics_client),
    identity: IdentityProvider = Depends(get_identity_provider),
    dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher),
) -> EvaluateActionResponse:
    """Re-evaluate the user's rewards after a domain action."""
    user_id = _target_user(actor, body.user_id)

    if body.background:
        evaluate_reward_action.delay(
            str(user_id),
            body.action_type.value,
            str(actor.tenant_id) if actor.tenant_id else None,
        )
        return EvaluateActionResponse(user_id=user_id, action_type=body.action_type, queued=True)

    svc = _svc(db, actor, metrics_client, identity)
    activities = await svc.evaluate_progress(user_id, body.action_type)
    await db.commit()
    background_tasks.add_task(svc.outbox.flush, dispatcher)
    return EvaluateActionResponse(
        user_id=user_id,
        action_type=body.action_type,
        activities=[ActivityResponse.model_validate(a) for a in activities],
    )


@router.get("/me/totals", response_model=PointsTotals)
async def my_totals(
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
    metrics_client: DomainMetricsClient = Depends(get_metrics_client),
    identity: IdentityProvider = Depends(get_identity_provider),
) -> PointsTotals:
    svc = _svc(db, actor, metrics_client, identity)
    return await svc.points.get_totals(actor.user_id)


@router.get("/me/summary", response_model=UserSummaryResponse)
async def my_summary(
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
    metrics_client: DomainMetricsClient = Depends(get_metrics_client),
    identity: IdentityProvider = Depends(get_identity_provider),
) -> UserSummaryResponse:
    svc = _svc(db, actor, metrics_client, identity)
    return await svc.get_user_summary(actor.user_id)


@router.get("/me/activities", response_model=list[ActivityResponse])
async def my_activities(
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
    metrics_client: DomainMetricsClient = Depends(get_metrics_client),
    identity: IdentityProvider = Depends(get_identity_provider),
) -> list[ActivityResponse]:
    svc = _svc(db, actor, metrics_client, identity)
    activities = await svc.list_user_activities(actor.user_id)
    return [ActivityResponse.model_validate(a) for a in activities]


@router.get("/users/{user_id}/history", response_model=ActivityHistoryResponse)
async def user_history(
    user_id: uuid.UUID,
    start: datetime | None = Query(default=None),
    end: datetime | None = Query(default=None),
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
    metrics_client: DomainMetricsClient = Depends(get_metrics_client),
    identity: IdentityProvider = Depends(get_identity_provider),
) -> ActivityHistoryResponse:
    """Recent activities, monthly timeline and category breakdown for a user."""
    target = _target_user(actor, user_id)
    svc = _svc(db, actor, metrics_client, identity)
    return await svc.get_user_activity_history(target, start=start, end=end)


@router.post("/{reward_id}/redeem", response_model=ActivityResponse)
async def redeem_reward(
    reward_id: uuid.UUID,
    body: RedeemRequest,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
    metrics_client: DomainMetricsClient = Depends(get_metrics_client),
    identity: IdentityProvider = Depends(get_identity_provider),
    dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher),
) -> ActivityResponse:
    user_id = _target_user(actor, body.user_id)
    svc = _svc(db, actor, metrics_client, identity)
    activity = await svc.redeem(
        reward_id,
        user_id,
        voucher_code=body.voucher_code if actor.is_staff else None,
        note=body.note,
        issuer_id=actor.user_id if actor.is_staff else None,
    )
    await db.commit()
    background_tasks.add_task(svc.outbox.flush, dispatcher)
    return ActivityResponse.model_validate(activity)


@router.post(
    "/{reward_id}/issue",
    response_model=ActivityResponse,
    status_code=status.HTTP_201_CREATED,
)
async def issue_reward(
    reward_id: uuid.UUID,
    body: ManualIssueRequest,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
    metrics_client: DomainMetricsClient = Depends(get_metrics_client),
    identity: IdentityProvider = Depends(get_identity_provider),
    dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher),
) -> ActivityResponse:
    """Staff completion of a manual task or a task-less reward."""
    svc = _svc(db, actor, metrics_client, identity)
    activity = await svc.issue_manually(
        reward_id, body.user_id, actor.user_id, task_id=body.task_id, note=body.note
    )
    await db.commit()
    background_tasks.add_task(svc.outbox.flush, dispatcher)
    return ActivityResponse.model_validate(activity)


@router.post("/{reward_id}/progress", response_model=ActivityResponse)
async def record_progress(
    reward_id: uuid.UUID,
    body: ManualProgressRequest,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
    metrics_client: DomainMetricsClient = Depends(get_metrics_client),
    identity: IdentityProvider = Depends(get_identity_provider),
    dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher),
) -> ActivityResponse:
    svc = _svc(db, actor, metrics_client, identity)
    activity = await svc.record_manual_progress(
        reward_id, body.task_id, body.user_id, body.value, actor.user_id, note=body.note
    )
    await db.commit()
    background_tasks.add_task(svc.outbox.flush, dispatcher)
    return ActivityResponse.model_validate(activity)
