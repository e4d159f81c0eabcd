"""Multi-tenant middleware and query helpers.

The middleware initializes request.state.tenant_id. The actual value is set
by the get_actor dependency from the gateway headers. tenant_scope() keeps
queries inside the caller's tenant while still showing global rows.
"""

import uuid

from sqlalchemy import or_
from sqlalchemy.sql import Select
from starlette.types import ASGIApp, Receive, Scope, Send


class TenantMiddleware:
    """Pure ASGI middleware that initializes tenant state on each request."""

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] == "http":
            scope.setdefault("state", {})
            scope["state"].setdefault("tenant_id", None)
            scope["state"].setdefault("user_id", None)
        await self.app(scope, receive, send)


def tenant_scope(stmt: Select, tenant_id: uuid.UUID | None, model: type) -> Select:
    """Restrict stmt to rows of tenant_id plus global (tenant-less) rows.

    Usage:
        stmt = select(Reward)
        stmt = tenant_scope(stmt, actor.tenant_id, Reward)
    """
    if tenant_id is None or not hasattr(model, "tenant_id"):
        return stmt
    column = model.tenant_id  # type: ignore[attr-defined]
    return stmt.where(or_(column == tenant_id, column.is_(None)))


def tenant_filter(stmt: Select, tenant_id: uuid.UUID | None, model: type) -> Select:
    """Restrict stmt to rows of exactly tenant_id (no global rows)."""
    if tenant_id is None or not hasattr(model, "tenant_id"):
        return stmt
    return stmt.where(model.tenant_id == tenant_id)  # type: ignore[attr-defined]
