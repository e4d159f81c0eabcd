"""Best-effort notification dispatch, strictly downstream of the commit."""

from __future__ import annotations

import hashlib
import hmac
import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol

import httpx
import structlog

from alumni_rewards.core.config import settings
from alumni_rewards.models.base import utcnow

logger = structlog.get_logger()

BADGE_AWARDED = "badge.awarded"
REWARD_EARNED = "reward.earned"
TASK_REJECTED = "task.rejected"
TASK_RESUBMITTED = "task.resubmitted"
VERIFICATION_RESOLVED = "verification.resolved"


@dataclass
class Notification:
    event: str
    user_id: uuid.UUID
    payload: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utcnow)

    def to_json(self) -> dict[str, Any]:
        return {
            "event": self.event,
            "user_id": str(self.user_id),
            "payload": self.payload,
            "created_at": self.created_at.isoformat(),
        }


class NotificationDispatcher(Protocol):
    async def dispatch(self, notification: Notification) -> None: ...


class NotificationOutbox:
    """Collects notifications during a unit of work.

    flush() is called only after the transaction committed; a failed
    dispatch is logged and never propagates back into the ledger.
    """

    def __init__(self) -> None:
        self._pending: list[Notification] = []

    def add(self, event: str, user_id: uuid.UUID, **payload: Any) -> None:
        self._pending.append(Notification(event=event, user_id=user_id, payload=payload))

    @property
    def pending(self) -> list[Notification]:
        return list(self._pending)

    def clear(self) -> None:
        self._pending.clear()

    async def flush(self, dispatcher: NotificationDispatcher) -> int:
        pending, self._pending = self._pending, []
        sent = 0
        for notification in pending:
            try:
                await dispatcher.dispatch(notification)
                sent += 1
            except Exception as exc:
                logger.warning(
                    "notification_dispatch_failed",
                    notification_event=notification.event,
                    user_id=str(notification.user_id),
                    error=str(exc)[:200],
                )
        return sent


class WebhookNotificationDispatcher:
    """POSTs signed JSON to NOTIFICATIONS_WEBHOOK_URL; logs only when unset."""

    def __init__(self, url: str | None = None, secret: str | None = None) -> None:
        self.url = url if url is not None else settings.NOTIFICATIONS_WEBHOOK_URL
        self.secret = secret if secret is not None else settings.SERVICE_API_KEY

    @staticmethod
    def _sign_payload(secret: str, body: bytes) -> str:
        return "sha256=" + hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()

    async def dispatch(self, notification: Notification) -> None:
        if not self.url:
            logger.info(
                "notification_logged",
                notification_event=notification.event,
                user_id=str(notification.user_id),
            )
            return

        body = json.dumps(notification.to_json(), default=str).encode()
        async with httpx.AsyncClient(timeout=settings.COLLABORATOR_TIMEOUT_SECONDS) as client:
            resp = await client.post(
                self.url,
                content=body,
                headers={
                    "Content-Type": "application/json",
                    "X-Rewards-Signature": self._sign_payload(self.secret, body),
                    "X-Rewards-Event": notification.event,
                },
            )
        resp.raise_for_status()
        logger.info(
            "notification_dispatched",
            notification_event=notification.event,
            user_id=str(notification.user_id),
        )


def get_notification_dispatcher() -> NotificationDispatcher:
    return WebhookNotificationDispatcher()
