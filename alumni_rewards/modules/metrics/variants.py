"""One metric variant per task action type.

Adding an action type means adding a variant class and registering it in
VARIANTS; the ledger never switches on action types itself.
"""

from __future__ import annotations

import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, ClassVar

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from alumni_rewards.core.errors import MetricSourceError
from alumni_rewards.models.badges import Badge
from alumni_rewards.models.enums import (
    COMPLETED_STATUSES,
    ActionType,
    BadgeCriteriaType,
    MetricKind,
)
from alumni_rewards.models.profiles import RewardProfile
from alumni_rewards.models.rewards import RewardActivity, RewardTask
from alumni_rewards.modules.metrics.client import DomainMetricsClient

BADGE_CRITERIA_ACTIONS: dict[BadgeCriteriaType, ActionType] = {
    BadgeCriteriaType.DONATIONS: ActionType.DONATION,
    BadgeCriteriaType.MENTORSHIPS: ActionType.MENTORSHIP,
    BadgeCriteriaType.EVENTS: ActionType.EVENT,
    BadgeCriteriaType.JOBS: ActionType.JOB,
    BadgeCriteriaType.ENGAGEMENT: ActionType.ENGAGEMENT,
}


@dataclass(frozen=True)
class MetricDescriptor:
    action_type: ActionType
    metric: MetricKind = MetricKind.COUNT
    description: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_task(cls, task: RewardTask) -> MetricDescriptor:
        return cls(
            action_type=task.action_type,
            metric=task.metric,
            description=" ".join(filter(None, [task.title, task.description])),
            metadata=dict(task.meta or {}),
        )

    @classmethod
    def from_badge(cls, badge: Badge) -> MetricDescriptor | None:
        """Descriptor for an automatic badge; None for manual badges."""
        action_type = BADGE_CRITERIA_ACTIONS.get(badge.criteria_type)
        if action_type is None:
            return None
        description = badge.criteria_description or ""
        metric = MetricKind.AMOUNT if "amount" in description.lower() else MetricKind.COUNT
        return cls(action_type=action_type, metric=metric, description=description)

    def mentions(self, word: str) -> bool:
        return word in self.description.lower()


class MetricVariant(ABC):
    action_type: ClassVar[ActionType]

    def __init__(self, client: DomainMetricsClient, db: AsyncSession | None = None) -> None:
        self.client = client
        self.db = db

    @abstractmethod
    async def compute(
        self,
        user_id: uuid.UUID,
        descriptor: MetricDescriptor,
        tenant_id: uuid.UUID | None,
    ) -> float:
        """Return the user's current cumulative value for descriptor."""


class DomainMetricVariant(MetricVariant):
    """Variant backed by a key on the domain metrics collaborator."""

    @abstractmethod
    def resolve_key(self, descriptor: MetricDescriptor) -> str: ...

    async def compute(
        self,
        user_id: uuid.UUID,
        descriptor: MetricDescriptor,
        tenant_id: uuid.UUID | None,
    ) -> float:
        key = descriptor.metadata.get("metric_key") or self.resolve_key(descriptor)
        return await self.client.get_value(key, user_id, tenant_id)


class DonationMetric(DomainMetricVariant):
    action_type = ActionType.DONATION

    def resolve_key(self, descriptor: MetricDescriptor) -> str:
        if descriptor.metric == MetricKind.AMOUNT or descriptor.mentions("amount"):
            return "donations.completed_amount"
        return "donations.completed_count"


class EventMetric(DomainMetricVariant):
    action_type = ActionType.EVENT

    def resolve_key(self, descriptor: MetricDescriptor) -> str:
        if descriptor.metric == MetricKind.DURATION:
            return "events.attended_hours"
        return "events.attended"


class MentorshipMetric(DomainMetricVariant):
    action_type = ActionType.MENTORSHIP

    def resolve_key(self, descriptor: MetricDescriptor) -> str:
        if descriptor.mentions("session"):
            return "mentorships.sessions"
        if descriptor.metric == MetricKind.DURATION:
            return "mentorships.hours"
        return "mentorships.completed"


class JobMetric(DomainMetricVariant):
    action_type = ActionType.JOB

    def resolve_key(self, descriptor: MetricDescriptor) -> str:
        return "jobs.active_posts"


class ReferralMetric(DomainMetricVariant):
    action_type = ActionType.REFERRAL

    def resolve_key(self, descriptor: MetricDescriptor) -> str:
        return "referrals.completed"


class CustomMetric(DomainMetricVariant):
    action_type = ActionType.CUSTOM

    def resolve_key(self, descriptor: MetricDescriptor) -> str:
        raise MetricSourceError("Custom task has no metric_key in its metadata")


class EngagementMetric(MetricVariant):
    """Computed from the ledger's own data rather than a domain service."""

    action_type = ActionType.ENGAGEMENT

    async def compute(
        self,
        user_id: uuid.UUID,
        descriptor: MetricDescriptor,
        tenant_id: uuid.UUID | None,
    ) -> float:
        if self.db is None:
            raise MetricSourceError("Engagement metric needs a database session")

        if descriptor.mentions("point"):
            result = await self.db.execute(
                select(RewardProfile.total_points).where(RewardProfile.user_id == user_id)
            )
            return float(result.scalar_one_or_none() or 0)

        stmt = select(func.count(RewardActivity.id)).where(
            RewardActivity.user_id == user_id,
            RewardActivity.status.in_(COMPLETED_STATUSES),
        )
        if tenant_id:
            stmt = stmt.where(RewardActivity.tenant_id == tenant_id)
        result = await self.db.execute(stmt)
        return float(result.scalar_one() or 0)


VARIANTS: dict[ActionType, type[MetricVariant]] = {
    v.action_type: v
    for v in (
        DonationMetric,
        EventMetric,
        MentorshipMetric,
        JobMetric,
        ReferralMetric,
        EngagementMetric,
        CustomMetric,
    )
}
