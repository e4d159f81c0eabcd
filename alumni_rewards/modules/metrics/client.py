"""HTTP client for the domain metrics collaborator."""

from __future__ import annotations

import math
import uuid
from typing import Protocol

import httpx
import structlog

from alumni_rewards.core.config import settings
from alumni_rewards.core.errors import MetricSourceError

logger = structlog.get_logger()


class DomainMetricsClient(Protocol):
    """Answers "what is this user's current value for metric <key>"."""

    async def get_value(
        self, key: str, user_id: uuid.UUID, tenant_id: uuid.UUID | None
    ) -> float: ...


class HttpDomainMetricsClient:
    """GET {METRICS_SERVICE_URL}/v1/metrics/{key}?user_id=&tenant_id= -> {"value": n}."""

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = (base_url or settings.METRICS_SERVICE_URL).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.SERVICE_API_KEY
        self.timeout = timeout or settings.COLLABORATOR_TIMEOUT_SECONDS
        self.transport = transport

    async def get_value(
        self, key: str, user_id: uuid.UUID, tenant_id: uuid.UUID | None
    ) -> float:
        params = {"user_id": str(user_id)}
        if tenant_id:
            params["tenant_id"] = str(tenant_id)

        try:
            async with httpx.AsyncClient(
                base_url=self.base_url, timeout=self.timeout, transport=self.transport
            ) as client:
                resp = await client.get(
                    f"/v1/metrics/{key}",
                    params=params,
                    headers={"X-API-Key": self.api_key},
                )
                resp.raise_for_status()
                data = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("metric_fetch_failed", metric_key=key, user_id=str(user_id), error=str(exc))
            raise MetricSourceError(f"Metric {key} unavailable", metric_key=key) from exc

        try:
            value = float(data["value"])
        except (KeyError, TypeError, ValueError) as exc:
            raise MetricSourceError(f"Metric {key} returned no numeric value", metric_key=key) from exc
        if not math.isfinite(value):
            raise MetricSourceError(f"Metric {key} returned a non-finite value", metric_key=key)
        return value


def get_metrics_client() -> DomainMetricsClient:
    """FastAPI dependency; tests override it with an in-memory fake."""
    return HttpDomainMetricsClient()
