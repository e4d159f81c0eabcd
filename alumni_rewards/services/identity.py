"""Identity / tenant context collaborator."""

from __future__ import annotations

import uuid
from typing import Protocol

import httpx
import structlog

from alumni_rewards.core.config import settings
from alumni_rewards.schemas.auth import MemberContext

logger = structlog.get_logger()


class IdentityProvider(Protocol):
    async def get_member(self, user_id: uuid.UUID) -> MemberContext | None: ...


class HttpIdentityProvider:
    """Looks members up on the identity service. Unknown users resolve to None."""

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
    ) -> None:
        self.base_url = (base_url or settings.IDENTITY_SERVICE_URL).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.SERVICE_API_KEY
        self.timeout = timeout or settings.COLLABORATOR_TIMEOUT_SECONDS

    async def get_member(self, user_id: uuid.UUID) -> MemberContext | None:
        url = f"{self.base_url}/v1/members/{user_id}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.get(url, headers={"X-API-Key": self.api_key})
        except httpx.HTTPError as exc:
            logger.warning("identity_lookup_failed", user_id=str(user_id), error=str(exc))
            return None

        if resp.status_code == 404:
            return None
        if resp.status_code >= 300:
            logger.warning(
                "identity_lookup_failed",
                user_id=str(user_id),
                status_code=resp.status_code,
            )
            return None
        return MemberContext.model_validate({**resp.json(), "user_id": user_id})


def get_identity_provider() -> IdentityProvider:
    """FastAPI dependency; tests override it with an in-memory fake."""
    return HttpIdentityProvider()
