"""Sentry set-up shared by the rewards API and the Celery worker."""

import structlog
import sentry_sdk
from sentry_sdk.integrations.celery import CeleryIntegration
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.httpx import HttpxIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

from alumni_rewards.core.errors import LedgerError, TransientError

logger = structlog.get_logger()

_REDACTED_HEADERS = frozenset(
    {"authorization", "cookie", "x-api-key", "x-user-id", "x-rewards-signature"}
)


def _before_send(event: dict, hint: dict) -> dict | None:
    """Drop expected ledger outcomes and redact gateway identity headers.

    NotFound, Conflict and CapacityExceeded are answers, not faults; only
    TransientError among the ledger errors is worth an alert.
    """
    exc_info = hint.get("exc_info")
    if exc_info:
        exc = exc_info[1]
        if isinstance(exc, LedgerError) and not isinstance(exc, TransientError):
            return None

    headers = event.get("request", {}).get("headers", {})
    for name in list(headers):
        if name.lower() in _REDACTED_HEADERS:
            headers[name] = "[REDACTED]"
    return event


def init_sentry(
    dsn: str | None,
    environment: str = "development",
    release: str | None = None,
    component: str = "api",
) -> bool:
    """Initialise Sentry for one process. Returns False when no DSN is set."""
    if not dsn:
        logger.info("sentry_disabled", component=component)
        return False

    sample_rate = 0.1 if environment == "production" else 1.0
    sentry_sdk.init(
        dsn=dsn,
        environment=environment,
        release=release,
        traces_sample_rate=sample_rate,
        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            SqlalchemyIntegration(),
            CeleryIntegration(monitor_beat_tasks=True),
            HttpxIntegration(),
        ],
        send_default_pii=False,
        before_send=_before_send,
    )
    sentry_sdk.set_tag("service", "alumni-rewards")
    sentry_sdk.set_tag("component", component)
    logger.info(
        "sentry_initialized",
        component=component,
        environment=environment,
        traces_sample_rate=sample_rate,
    )
    return True
