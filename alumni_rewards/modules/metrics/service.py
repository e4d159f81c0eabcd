"""Metric Source Adapter — dispatches a metric request to its variant."""

from __future__ import annotations

import math
import uuid

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from alumni_rewards.core.errors import MetricSourceError, TransientError
from alumni_rewards.models.enums import ActionType
from alumni_rewards.modules.metrics.client import DomainMetricsClient
from alumni_rewards.modules.metrics.variants import VARIANTS, MetricDescriptor, MetricVariant

logger = structlog.get_logger()


class MetricSourceAdapter:
    def __init__(
        self,
        client: DomainMetricsClient,
        db: AsyncSession | None = None,
        variants: dict[ActionType, type[MetricVariant]] | None = None,
    ) -> None:
        registry = variants or VARIANTS
        self._variants = {kind: cls(client, db) for kind, cls in registry.items()}

    async def get_metric(
        self,
        user_id: uuid.UUID,
        action_type: ActionType | str,
        descriptor: MetricDescriptor,
        tenant_id: uuid.UUID | None,
    ) -> float:
        """Current value for descriptor. Every failure surfaces as MetricSourceError."""
        try:
            variant = self._variants[ActionType(action_type)]
        except (KeyError, ValueError) as exc:
            raise MetricSourceError(
                f"No metric variant for action type {action_type!r}",
                action_type=str(action_type),
            ) from exc

        try:
            raw = await variant.compute(user_id, descriptor, tenant_id)
        except (MetricSourceError, TransientError):
            raise
        except Exception as exc:
            logger.warning(
                "metric_variant_failed",
                action_type=variant.action_type.value,
                user_id=str(user_id),
                error=str(exc),
            )
            raise MetricSourceError(
                f"Metric lookup failed for {variant.action_type.value}",
                action_type=variant.action_type.value,
            ) from exc

        try:
            value = float(raw)
        except (TypeError, ValueError) as exc:
            raise MetricSourceError("Metric value is not numeric", value=repr(raw)) from exc
        if not math.isfinite(value) or value < 0:
            raise MetricSourceError("Metric value must be a non-negative number", value=value)
        return value
