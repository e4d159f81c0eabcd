"""Badge Registry — scarcity-aware claims.

The recipient counter increment and the user_badges insert form one unit
inside a savepoint: the conditional UPDATE is the compare-and-increment
against the cap, and UNIQUE(user_id, badge_id) rejects a second award.
"""

from __future__ import annotations

import enum
import uuid

import structlog
from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from alumni_rewards.core.errors import (
    CapacityExceededError,
    ConflictError,
    MetricSourceError,
    NotFoundError,
)
from alumni_rewards.models.badges import Badge, UserBadge
from alumni_rewards.models.enums import ActionType, BadgeCriteriaType
from alumni_rewards.modules.badges.schemas import BadgeCreate
from alumni_rewards.modules.metrics.service import MetricSourceAdapter
from alumni_rewards.modules.metrics.variants import BADGE_CRITERIA_ACTIONS, MetricDescriptor
from alumni_rewards.modules.points.service import PointsAccumulator
from alumni_rewards.services.notifications import BADGE_AWARDED, NotificationOutbox

logger = structlog.get_logger()


class ClaimOutcome(str, enum.Enum):
    AWARDED = "awarded"
    ALREADY_HELD = "already_held"
    INACTIVE = "inactive"
    CAPPED = "capped"


class BadgeRegistry:
    def __init__(
        self,
        db: AsyncSession,
        outbox: NotificationOutbox | None = None,
        points: PointsAccumulator | None = None,
    ) -> None:
        self.db = db
        self.outbox = outbox or NotificationOutbox()
        self.points = points or PointsAccumulator(db)

    # ── Definitions ────────────────────────────────────────────────────────────

    async def create_badge(self, body: BadgeCreate) -> Badge:
        existing = await self.db.execute(select(Badge.id).where(Badge.name == body.name))
        if existing.scalar_one_or_none() is not None:
            raise ConflictError(f"Badge {body.name!r} already exists", name=body.name)

        badge = Badge(**body.model_dump(), current_recipients=0)
        self.db.add(badge)
        await self.db.flush()
        logger.info("badge_created", badge_id=str(badge.id), max_recipients=badge.max_recipients)
        return badge

    async def get_badge(self, badge_id: uuid.UUID) -> Badge:
        badge = await self.db.get(Badge, badge_id)
        if badge is None:
            raise NotFoundError("Badge not found", badge_id=str(badge_id))
        return badge

    async def list_badges(self, available_only: bool = False) -> list[Badge]:
        stmt = select(Badge).order_by(Badge.category.asc(), Badge.name.asc())
        if available_only:
            stmt = stmt.where(
                Badge.is_active.is_(True),
                or_(
                    Badge.max_recipients.is_(None),
                    Badge.current_recipients < Badge.max_recipients,
                ),
            )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def list_user_badges(self, user_id: uuid.UUID) -> list[UserBadge]:
        result = await self.db.execute(
            select(UserBadge)
            .where(UserBadge.user_id == user_id)
            .order_by(UserBadge.awarded_at.desc())
        )
        return list(result.scalars().all())

    async def holds(self, user_id: uuid.UUID, badge_id: uuid.UUID) -> bool:
        result = await self.db.execute(
            select(UserBadge.id).where(
                UserBadge.user_id == user_id, UserBadge.badge_id == badge_id
            )
        )
        return result.scalar_one_or_none() is not None

    # ── Claims ─────────────────────────────────────────────────────────────────

    async def _try_claim(
        self,
        badge_id: uuid.UUID,
        user_id: uuid.UUID,
        reason: str | None,
        tenant_id: uuid.UUID | None,
        awarded_by: uuid.UUID | None,
    ) -> ClaimOutcome:
        badge = await self.get_badge(badge_id)
        if await self.holds(user_id, badge_id):
            return ClaimOutcome.ALREADY_HELD
        if not badge.is_active:
            return ClaimOutcome.INACTIVE

        try:
            async with self.db.begin_nested():
                result = await self.db.execute(
                    update(Badge)
                    .where(
                        Badge.id == badge_id,
                        Badge.is_active.is_(True),
                        or_(
                            Badge.max_recipients.is_(None),
                            Badge.current_recipients < Badge.max_recipients,
                        ),
                    )
                    .values(current_recipients=Badge.current_recipients + 1)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 0:
                    outcome = ClaimOutcome.CAPPED
                else:
                    self.db.add(
                        UserBadge(
                            user_id=user_id,
                            badge_id=badge_id,
                            awarded_by=awarded_by,
                            reason=reason,
                            meta={"tenant_id": str(tenant_id)} if tenant_id else {},
                        )
                    )
                    await self.db.flush()
                    outcome = ClaimOutcome.AWARDED
        except IntegrityError:
            # Lost the race on UNIQUE(user_id, badge_id); the increment rolled back with it
            outcome = ClaimOutcome.ALREADY_HELD

        await self.db.refresh(badge)
        if outcome is not ClaimOutcome.AWARDED:
            logger.info(
                "badge_claim_skipped",
                badge_id=str(badge_id),
                user_id=str(user_id),
                outcome=outcome.value,
            )
            return outcome

        await self.points.sync_badge_ids(user_id, tenant_id)
        self.outbox.add(
            BADGE_AWARDED,
            user_id,
            badge_id=str(badge_id),
            badge_name=badge.name,
            reason=reason,
        )
        logger.info(
            "badge_claimed",
            badge_id=str(badge_id),
            user_id=str(user_id),
            current_recipients=badge.current_recipients,
            max_recipients=badge.max_recipients,
        )
        return outcome

    async def claim(
        self,
        badge_id: uuid.UUID,
        user_id: uuid.UUID,
        reason: str | None = None,
        tenant_id: uuid.UUID | None = None,
        awarded_by: uuid.UUID | None = None,
    ) -> bool:
        """Award one slot of badge_id to user_id. False when held, inactive or capped."""
        outcome = await self._try_claim(badge_id, user_id, reason, tenant_id, awarded_by)
        return outcome is ClaimOutcome.AWARDED

    async def award(
        self,
        badge_id: uuid.UUID,
        user_id: uuid.UUID,
        awarded_by: uuid.UUID,
        reason: str | None = None,
        tenant_id: uuid.UUID | None = None,
    ) -> Badge:
        """Manual staff award; refusals surface as errors instead of False."""
        outcome = await self._try_claim(badge_id, user_id, reason, tenant_id, awarded_by)
        if outcome is ClaimOutcome.ALREADY_HELD:
            raise ConflictError("User already holds this badge", badge_id=str(badge_id))
        if outcome is ClaimOutcome.INACTIVE:
            raise ConflictError("Badge is not active", badge_id=str(badge_id))
        if outcome is ClaimOutcome.CAPPED:
            raise CapacityExceededError(
                "Badge has reached its recipient limit", badge_id=str(badge_id)
            )
        return await self.get_badge(badge_id)

    # ── Criteria badges ────────────────────────────────────────────────────────

    async def evaluate_criteria(
        self,
        user_id: uuid.UUID,
        adapter: MetricSourceAdapter,
        tenant_id: uuid.UUID | None = None,
        action_type: ActionType | None = None,
    ) -> list[uuid.UUID]:
        """Claim every automatic badge whose criteria the user now meets.

        A failing metric only skips the badge it belongs to.
        """
        criteria_types = [
            ct
            for ct, at in BADGE_CRITERIA_ACTIONS.items()
            if action_type is None or at == action_type
        ]
        if not criteria_types:
            return []

        held = select(UserBadge.badge_id).where(UserBadge.user_id == user_id)
        result = await self.db.execute(
            select(Badge).where(
                Badge.is_active.is_(True),
                Badge.criteria_type.in_(criteria_types),
                Badge.criteria_type != BadgeCriteriaType.MANUAL,
                Badge.id.not_in(held),
            )
        )

        awarded: list[uuid.UUID] = []
        for badge in result.scalars().all():
            descriptor = MetricDescriptor.from_badge(badge)
            if descriptor is None or not badge.is_available:
                continue
            try:
                value = await adapter.get_metric(
                    user_id, descriptor.action_type, descriptor, tenant_id
                )
            except MetricSourceError as exc:
                logger.warning(
                    "badge_criteria_metric_failed",
                    badge_id=str(badge.id),
                    user_id=str(user_id),
                    error=exc.message,
                )
                continue
            if value < badge.criteria_value:
                continue
            if await self.claim(badge.id, user_id, reason=badge.criteria_description, tenant_id=tenant_id):
                awarded.append(badge.id)
        return awarded
