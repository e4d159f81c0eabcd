"""Verification Gate — staff sign-off before gated points are credited.

verification_status is a state machine of its own, orthogonal to the
activity status: a rejection leaves the activity where it was so the
member can correct and resubmit.
"""

from __future__ import annotations

import math
import uuid
from datetime import datetime, timedelta

import structlog
from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from alumni_rewards.core.errors import ConflictError, NotFoundError, translate_storage_errors
from alumni_rewards.models.base import utcnow
from alumni_rewards.models.enums import OPEN_STATUSES, VerificationAction, VerificationStatus
from alumni_rewards.models.profiles import RewardProfile
from alumni_rewards.models.rewards import Reward, RewardActivity, RewardTask
from alumni_rewards.modules.ledger.schemas import ActivityResponse
from alumni_rewards.modules.ledger.service import LedgerService
from alumni_rewards.modules.verification.schemas import (
    VerificationFilters,
    VerificationItem,
    VerificationPage,
    VerificationStats,
)
from alumni_rewards.services.notifications import (
    TASK_REJECTED,
    TASK_RESUBMITTED,
    VERIFICATION_RESOLVED,
)

logger = structlog.get_logger()

DEFAULT_REJECTION_REASON = "Task rejected by staff"


class VerificationGate:
    def __init__(self, db: AsyncSession, ledger: LedgerService) -> None:
        self.db = db
        self.ledger = ledger
        self.tenant_id = ledger.tenant_id

    def _scoped(self, stmt):
        if self.tenant_id is None:
            return stmt
        return stmt.where(
            or_(RewardActivity.tenant_id == self.tenant_id, RewardActivity.tenant_id.is_(None))
        )

    async def _get_visible(self, activity_id: uuid.UUID) -> RewardActivity:
        activity = await self.ledger.get_activity(activity_id)
        if self.tenant_id is not None and activity.tenant_id not in (None, self.tenant_id):
            raise NotFoundError("Activity not found", activity_id=str(activity_id))
        return activity

    # ── Queue ──────────────────────────────────────────────────────────────────

    async def list_pending(self, filters: VerificationFilters) -> VerificationPage:
        stmt = self._scoped(
            select(
                RewardActivity,
                Reward.name,
                RewardProfile.display_name,
                RewardProfile.email,
            )
            .join(Reward, Reward.id == RewardActivity.reward_id)
            .outerjoin(RewardProfile, RewardProfile.user_id == RewardActivity.user_id)
            .where(RewardActivity.verification_required.is_(True))
        )
        if filters.status is not None:
            stmt = stmt.where(RewardActivity.verification_status == filters.status)
        if filters.reward_id is not None:
            stmt = stmt.where(RewardActivity.reward_id == filters.reward_id)
        if filters.user_id is not None:
            stmt = stmt.where(RewardActivity.user_id == filters.user_id)
        if filters.search:
            pattern = f"%{filters.search.strip()}%"
            stmt = stmt.where(
                or_(
                    Reward.name.ilike(pattern),
                    RewardProfile.display_name.ilike(pattern),
                    RewardProfile.email.ilike(pattern),
                )
            )

        total = (
            await self.db.execute(select(func.count()).select_from(stmt.subquery()))
        ).scalar_one()

        rows = (
            await self.db.execute(
                stmt.order_by(RewardActivity.updated_at.desc(), RewardActivity.id.asc())
                .offset((filters.page - 1) * filters.limit)
                .limit(filters.limit)
            )
        ).all()

        items = [
            VerificationItem(
                **ActivityResponse.model_validate(activity).model_dump(),
                reward_name=reward_name,
                user_name=user_name,
                user_email=user_email,
            )
            for activity, reward_name, user_name, user_email in rows
        ]
        return VerificationPage(
            items=items,
            page=filters.page,
            limit=filters.limit,
            total=total,
            pages=math.ceil(total / filters.limit) if total else 0,
        )

    # ── Transitions ────────────────────────────────────────────────────────────

    async def resolve(
        self,
        activity_id: uuid.UUID,
        action: VerificationAction | str,
        staff_id: uuid.UUID,
        reason: str | None = None,
        now: datetime | None = None,
    ) -> RewardActivity:
        """Approve or reject a pending verification; only the first resolution wins."""
        action = VerificationAction(action)
        moment = now or utcnow()
        activity = await self._get_visible(activity_id)
        if not activity.verification_required:
            raise ConflictError(
                "Activity does not require verification", activity_id=str(activity_id)
            )

        approve = action is VerificationAction.APPROVE
        values: dict = {
            "verification_status": (
                VerificationStatus.APPROVED if approve else VerificationStatus.REJECTED
            ),
            "verified_by": staff_id,
            "verified_at": moment,
        }
        if not approve:
            values["rejection_reason"] = reason or DEFAULT_REJECTION_REASON

        conditions = [
            RewardActivity.id == activity_id,
            RewardActivity.verification_status == VerificationStatus.PENDING,
        ]
        if approve:
            # An expired activity can no longer be earned
            conditions.append(RewardActivity.status.in_(OPEN_STATUSES))

        async with translate_storage_errors():
            result = await self.db.execute(
                update(RewardActivity)
                .where(*conditions)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                await self.db.refresh(activity)
                status = activity.verification_status
                if status == VerificationStatus.PENDING:
                    raise ConflictError(
                        f"Activity is {activity.status.value}; it can no longer be approved",
                        activity_id=str(activity_id),
                        status=activity.status.value,
                    )
                raise ConflictError(
                    "Verification already resolved",
                    activity_id=str(activity_id),
                    verification_status=status.value if status else None,
                )
            await self.db.refresh(activity)

            if approve:
                activity.append_history("verified", moment, note=reason)
                reward = await self.db.get(Reward, activity.reward_id)
                task = await self.db.get(RewardTask, activity.task_id) if activity.task_id else None
                if not await self.ledger.complete_activity(activity, reward, task, moment):
                    raise ConflictError(
                        f"Activity is {activity.status.value}; it can no longer be approved",
                        activity_id=str(activity_id),
                        status=activity.status.value,
                    )
            else:
                activity.append_history("rejected", moment, note=values["rejection_reason"])
                self.ledger.outbox.add(
                    TASK_REJECTED,
                    activity.user_id,
                    activity_id=str(activity.id),
                    reason=values["rejection_reason"],
                )
            await self.db.flush()

        self.ledger.outbox.add(
            VERIFICATION_RESOLVED,
            activity.user_id,
            activity_id=str(activity.id),
            action=action.value,
        )
        logger.info(
            "verification_resolved",
            activity_id=str(activity_id),
            action=action.value,
            staff_id=str(staff_id),
        )
        return activity

    async def resubmit(
        self,
        activity_id: uuid.UUID,
        user_id: uuid.UUID,
        note: str | None = None,
        now: datetime | None = None,
    ) -> RewardActivity:
        """rejected -> pending, so staff review the activity again."""
        moment = now or utcnow()
        activity = await self._get_visible(activity_id)
        if activity.user_id != user_id:
            raise NotFoundError("Activity not found", activity_id=str(activity_id))

        async with translate_storage_errors():
            result = await self.db.execute(
                update(RewardActivity)
                .where(
                    RewardActivity.id == activity_id,
                    RewardActivity.verification_status == VerificationStatus.REJECTED,
                )
                .values(
                    verification_status=VerificationStatus.PENDING,
                    verified_by=None,
                    verified_at=None,
                    rejection_reason=None,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                raise ConflictError(
                    "Only rejected verifications can be resubmitted",
                    activity_id=str(activity_id),
                )
            await self.db.refresh(activity)
            activity.append_history("resubmitted", moment, note=note)
            await self.db.flush()

        self.ledger.outbox.add(TASK_RESUBMITTED, activity.user_id, activity_id=str(activity.id))
        logger.info("verification_resubmitted", activity_id=str(activity_id), user_id=str(user_id))
        return activity

    # ── Stats ──────────────────────────────────────────────────────────────────

    async def stats(self, now: datetime | None = None) -> VerificationStats:
        moment = now or utcnow()
        stmt = self._scoped(
            select(RewardActivity.verification_status, func.count(RewardActivity.id))
            .where(RewardActivity.verification_required.is_(True))
            .group_by(RewardActivity.verification_status)
        )
        stats = VerificationStats()
        for status, count in (await self.db.execute(stmt)).all():
            if status is not None:
                setattr(stats, VerificationStatus(status).value, count)
                stats.total += count

        since = moment - timedelta(days=7)
        recent_stmt = self._scoped(
            select(RewardActivity.verification_status, func.count(RewardActivity.id))
            .where(
                RewardActivity.verification_required.is_(True),
                RewardActivity.verified_at >= since,
            )
            .group_by(RewardActivity.verification_status)
        )
        for status, count in (await self.db.execute(recent_stmt)).all():
            if status == VerificationStatus.APPROVED:
                stats.approved_last_7_days = count
            elif status == VerificationStatus.REJECTED:
                stats.rejected_last_7_days = count
        return stats
