"""FastAPI auth dependencies: get_actor, require_staff.

Authentication happens upstream. The gateway forwards the verified caller as
X-User-Id / X-Tenant-Id / X-User-Role (and optionally X-User-Department).
"""

import uuid

import sentry_sdk
import structlog
from fastapi import Depends, Header, HTTPException, Request, status

from alumni_rewards.schemas.auth import Actor

logger = structlog.get_logger()


def _parse_uuid(value: str, header: str) -> uuid.UUID:
    try:
        return uuid.UUID(value)
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Malformed {header} header",
        ) from e


async def get_actor(
    request: Request,
    x_user_id: str | None = Header(default=None),
    x_tenant_id: str | None = Header(default=None),
    x_user_role: str | None = Header(default=None),
    x_user_department: str | None = Header(default=None),
) -> Actor:
    """Resolve the calling user from gateway headers."""
    if not x_user_id:
        logger.warning("missing_actor_header", path=request.url.path)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-Id header",
        )

    actor = Actor(
        user_id=_parse_uuid(x_user_id, "X-User-Id"),
        tenant_id=_parse_uuid(x_tenant_id, "X-Tenant-Id") if x_tenant_id else None,
        role=(x_user_role or "alumni").lower(),
        department=x_user_department,
    )

    sentry_sdk.set_user({"id": str(actor.user_id)})
    if actor.tenant_id:
        sentry_sdk.set_tag("tenant_id", str(actor.tenant_id))

    request.state.tenant_id = actor.tenant_id
    request.state.user_id = actor.user_id
    return actor


async def require_staff(actor: Actor = Depends(get_actor)) -> Actor:
    """Allow only staff and admin callers."""
    if not actor.is_staff:
        logger.warning("staff_role_required", user_id=str(actor.user_id), role=actor.role)
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Staff role required",
        )
    return actor
