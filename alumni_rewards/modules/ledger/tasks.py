"""Celery tasks: fire-and-forget evaluation and the hourly expiry sweep."""

from __future__ import annotations

import asyncio
import uuid

import structlog
from celery import shared_task
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from alumni_rewards.core.errors import TransientError
from alumni_rewards.modules.metrics.client import DomainMetricsClient
from alumni_rewards.services.identity import IdentityProvider
from alumni_rewards.services.notifications import NotificationDispatcher

logger = structlog.get_logger()


async def run_evaluation(
    user_id: str,
    action_type: str,
    tenant_id: str | None = None,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    metrics_client: DomainMetricsClient | None = None,
    identity: IdentityProvider | None = None,
    dispatcher: NotificationDispatcher | None = None,
) -> list[str]:
    """Evaluate one domain action in its own transaction, then notify."""
    from alumni_rewards.core.database import async_session_factory
    from alumni_rewards.modules.ledger.service import LedgerService
    from alumni_rewards.services.identity import HttpIdentityProvider
    from alumni_rewards.services.notifications import WebhookNotificationDispatcher

    factory = session_factory or async_session_factory
    async with factory() as db:
        svc = LedgerService(
            db,
            tenant_id=uuid.UUID(tenant_id) if tenant_id else None,
            metrics_client=metrics_client,
            identity=identity or HttpIdentityProvider(),
        )
        activities = await svc.evaluate_progress(uuid.UUID(user_id), action_type)
        await db.commit()
        await svc.outbox.flush(dispatcher or WebhookNotificationDispatcher())
        return [str(a.id) for a in activities]


async def run_expiry_sweep(
    session_factory: async_sessionmaker[AsyncSession] | None = None,
) -> int:
    from alumni_rewards.core.database import async_session_factory
    from alumni_rewards.modules.ledger.service import LedgerService

    factory = session_factory or async_session_factory
    async with factory() as db:
        svc = LedgerService(db)
        count = await svc.expire_stale()
        await db.commit()
        return count


@shared_task(name="tasks.evaluate_reward_action", bind=True, max_retries=5)
def evaluate_reward_action(
    self, user_id: str, action_type: str, tenant_id: str | None = None
) -> dict:  # type: ignore[misc]
    """Re-evaluate a user's rewards after a domain event. Safe to retry."""
    try:
        activity_ids = asyncio.run(run_evaluation(user_id, action_type, tenant_id))
    except TransientError as exc:
        logger.warning(
            "evaluate_reward_action_retry",
            user_id=user_id,
            action_type=action_type,
            attempt=self.request.retries,
            error=exc.message,
        )
        raise self.retry(exc=exc, countdown=10 * 2**self.request.retries) from exc

    logger.info(
        "evaluate_reward_action_done",
        user_id=user_id,
        action_type=action_type,
        updated=len(activity_ids),
    )
    return {"user_id": user_id, "action_type": action_type, "activities": activity_ids}


@shared_task(name="tasks.expire_reward_activities")
def expire_reward_activities() -> dict:
    """Hourly: expire open activities whose reward window has closed."""
    count = asyncio.run(run_expiry_sweep())
    logger.info("expire_reward_activities_done", expired=count)
    return {"expired": count}
