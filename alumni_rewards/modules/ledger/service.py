"""Achievement Ledger — per-user progress records and the crediting state machine.

Concurrency rests entirely on the database:
  * UNIQUE(user_id, reward_id, task_id) makes activity creation an upsert;
  * status changes are conditional UPDATEs checked through rowcount;
  * points_added_to_user is flipped by its own conditional UPDATE, so an
    activity credits the accumulator at most once however often it is
    evaluated or approved.
"""

from __future__ import annotations

import random
import string
import uuid
from collections import defaultdict
from datetime import datetime

import structlog
from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from alumni_rewards.core.config import settings
from alumni_rewards.core.errors import (
    ConflictError,
    LedgerError,
    MetricSourceError,
    NotFoundError,
    translate_storage_errors,
)
from alumni_rewards.models.base import utcnow
from alumni_rewards.models.enums import (
    COMPLETED_STATUSES,
    OPEN_STATUSES,
    ActionType,
    ActivityStatus,
    VerificationStatus,
)
from alumni_rewards.models.rewards import Reward, RewardActivity, RewardTask
from alumni_rewards.modules.badges.service import BadgeRegistry
from alumni_rewards.modules.catalog.service import RewardCatalog, is_eligible
from alumni_rewards.modules.ledger.schemas import (
    ActivityHistoryResponse,
    CategoryBreakdown,
    HistoryActivity,
    TimelineEntry,
    UserSummaryResponse,
)
from alumni_rewards.modules.metrics.client import DomainMetricsClient, HttpDomainMetricsClient
from alumni_rewards.modules.metrics.service import MetricSourceAdapter
from alumni_rewards.modules.metrics.variants import MetricDescriptor
from alumni_rewards.modules.points.service import PointsAccumulator, calculate_tier
from alumni_rewards.schemas.auth import MemberContext
from alumni_rewards.services.identity import IdentityProvider
from alumni_rewards.services.notifications import REWARD_EARNED, NotificationOutbox

logger = structlog.get_logger()

_BASE36 = string.digits + string.ascii_uppercase


def _base36(number: int) -> str:
    digits = []
    while number:
        number, rem = divmod(number, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits)) or "0"


def generate_voucher_code(now: datetime | None = None) -> str:
    """RV-<base36 millisecond timestamp><4 random chars>."""
    moment = now or utcnow()
    stamp = _base36(int(moment.timestamp() * 1000))
    suffix = "".join(random.choices(_BASE36, k=4))
    return f"RV-{stamp}{suffix}"


class LedgerService:
    def __init__(
        self,
        db: AsyncSession,
        tenant_id: uuid.UUID | None = None,
        metrics_client: DomainMetricsClient | None = None,
        identity: IdentityProvider | None = None,
        outbox: NotificationOutbox | None = None,
    ) -> None:
        self.db = db
        self.tenant_id = tenant_id
        self.identity = identity
        self.outbox = outbox or NotificationOutbox()
        self.points = PointsAccumulator(db)
        self.badges = BadgeRegistry(db, self.outbox, self.points)
        self.catalog = RewardCatalog(db, tenant_id)
        self.metrics = MetricSourceAdapter(metrics_client or HttpDomainMetricsClient(), db)

    # ── Lookup / upsert ────────────────────────────────────────────────────────

    async def _member(self, user_id: uuid.UUID) -> MemberContext | None:
        if self.identity is None:
            return None
        return await self.identity.get_member(user_id)

    async def find_activity(
        self, user_id: uuid.UUID, reward_id: uuid.UUID, task_id: uuid.UUID | None
    ) -> RewardActivity | None:
        stmt = select(RewardActivity).where(
            RewardActivity.user_id == user_id,
            RewardActivity.reward_id == reward_id,
        )
        if task_id is None:
            stmt = stmt.where(RewardActivity.task_id.is_(None))
        else:
            stmt = stmt.where(RewardActivity.task_id == task_id)
        result = await self.db.execute(stmt.execution_options(populate_existing=True))
        return result.scalar_one_or_none()

    async def get_activity(self, activity_id: uuid.UUID) -> RewardActivity:
        result = await self.db.execute(
            select(RewardActivity)
            .where(RewardActivity.id == activity_id)
            .execution_options(populate_existing=True)
        )
        activity = result.scalar_one_or_none()
        if activity is None:
            raise NotFoundError("Activity not found", activity_id=str(activity_id))
        return activity

    async def get_or_create_activity(
        self,
        user_id: uuid.UUID,
        reward: Reward,
        task: RewardTask | None,
        tenant_id: uuid.UUID | None,
        now: datetime,
    ) -> RewardActivity:
        """Atomic upsert keyed on (user, reward, task); the unique index decides races."""
        task_id = task.id if task else None
        activity = await self.find_activity(user_id, reward.id, task_id)
        if activity is not None:
            return activity

        try:
            async with self.db.begin_nested():
                activity = RewardActivity(
                    user_id=user_id,
                    reward_id=reward.id,
                    task_id=task_id,
                    status=ActivityStatus.PENDING,
                    progress_value=0,
                    progress_target=task.target_value if task else 1,
                    tenant_id=tenant_id or reward.tenant_id,
                    meta={},
                    history=[],
                )
                activity.append_history("created", now)
                self.db.add(activity)
                await self.db.flush()
        except IntegrityError:
            activity = await self.find_activity(user_id, reward.id, task_id)
            if activity is None:
                raise
            logger.info(
                "activity_upsert_raced",
                user_id=str(user_id),
                reward_id=str(reward.id),
                task_id=str(task_id) if task_id else None,
            )
        return activity

    # ── Evaluation ─────────────────────────────────────────────────────────────

    async def evaluate_progress(
        self,
        user_id: uuid.UUID,
        action_type: ActionType | str,
        tenant_id: uuid.UUID | None = None,
        now: datetime | None = None,
    ) -> list[RewardActivity]:
        """Re-evaluate every matching task for the user after a domain action.

        Each task runs in its own savepoint; a metric failure skips that task
        and leaves the others untouched. Already-completed activities come
        back unchanged.
        """
        action_type = ActionType(action_type)
        tenant_id = tenant_id or self.tenant_id
        moment = now or utcnow()

        member = await self._member(user_id)
        async with translate_storage_errors():
            await self.points.ensure_profile(user_id, tenant_id, member)
            catalog = (
                self.catalog
                if tenant_id == self.catalog.tenant_id
                else RewardCatalog(self.db, tenant_id)
            )
            candidates = await catalog.candidate_tasks(action_type, moment)

        updated: list[RewardActivity] = []
        for reward, task in candidates:
            if not is_eligible(reward, member):
                continue
            try:
                async with translate_storage_errors():
                    activity = await self._evaluate_task(user_id, reward, task, tenant_id, moment)
            except MetricSourceError as exc:
                logger.warning(
                    "task_evaluation_failed",
                    user_id=str(user_id),
                    reward_id=str(reward.id),
                    task_id=str(task.id),
                    error=exc.message,
                )
                continue
            updated.append(activity)

        async with translate_storage_errors():
            await self.badges.evaluate_criteria(user_id, self.metrics, tenant_id, action_type)

        logger.info(
            "progress_evaluated",
            user_id=str(user_id),
            action_type=action_type.value,
            candidates=len(candidates),
            updated=len(updated),
        )
        return updated

    async def _evaluate_task(
        self,
        user_id: uuid.UUID,
        reward: Reward,
        task: RewardTask,
        tenant_id: uuid.UUID | None,
        now: datetime,
    ) -> RewardActivity:
        existing = await self.find_activity(user_id, reward.id, task.id)
        if existing is not None and existing.status not in OPEN_STATUSES:
            return existing

        # Fetch before writing anything so a metric failure has no side effects
        value = await self.metrics.get_metric(
            user_id, task.action_type, MetricDescriptor.from_task(task), tenant_id
        )

        async with self.db.begin_nested():
            activity = existing or await self.get_or_create_activity(
                user_id, reward, task, tenant_id, now
            )
            await self._apply_progress(activity, reward, task, value, now)
        return activity

    async def _apply_progress(
        self,
        activity: RewardActivity,
        reward: Reward,
        task: RewardTask,
        value: float,
        now: datetime,
        note: str | None = None,
    ) -> None:
        if activity.status not in OPEN_STATUSES:
            return

        # Cumulative metrics: progress never moves backwards
        if value > (activity.progress_value or 0):
            activity.progress_value = value
            activity.append_history("progress", now, value=value, note=note)
        if activity.progress_value > 0 and activity.status == ActivityStatus.PENDING:
            activity.status = ActivityStatus.IN_PROGRESS

        if activity.progress_value < activity.progress_target:
            return

        if task.requires_verification and activity.verification_status != VerificationStatus.APPROVED:
            if not activity.verification_required:
                activity.verification_required = True
                activity.verification_status = VerificationStatus.PENDING
                activity.append_history(
                    "verification_requested", now, value=activity.progress_value
                )
                logger.info(
                    "verification_requested",
                    activity_id=str(activity.id),
                    user_id=str(activity.user_id),
                )
            await self.db.flush()
            return

        await self.db.flush()
        await self.complete_activity(activity, reward, task, now)

    # ── Completion / crediting ─────────────────────────────────────────────────

    async def _credit_once(self, activity: RewardActivity, points: int) -> bool:
        result = await self.db.execute(
            update(RewardActivity)
            .where(
                RewardActivity.id == activity.id,
                RewardActivity.points_added_to_user.is_(False),
            )
            .values(points_added_to_user=True)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            return False
        if points > 0:
            await self.points.add_points(activity.user_id, points, activity.tenant_id)
        return True

    async def complete_activity(
        self,
        activity: RewardActivity,
        reward: Reward,
        task: RewardTask | None,
        now: datetime,
        note: str | None = None,
    ) -> bool:
        """Move an open activity to earned and credit its points exactly once.

        Returns False when another caller already completed it.
        """
        points = task.points if task is not None else reward.points
        await self.db.flush()
        result = await self.db.execute(
            update(RewardActivity)
            .where(
                RewardActivity.id == activity.id,
                RewardActivity.status.in_(OPEN_STATUSES),
            )
            .values(status=ActivityStatus.EARNED, earned_at=now, points_awarded=points)
            .execution_options(synchronize_session=False)
        )
        transitioned = result.rowcount == 1
        if not transitioned:
            await self.db.refresh(activity)
            if activity.status != ActivityStatus.EARNED:
                return False

        credited = await self._credit_once(activity, points)
        await self.db.refresh(activity)
        if not transitioned:
            return credited

        activity.append_history("earned", now, value=activity.progress_value, note=note)
        await self.db.flush()
        logger.info(
            "activity_earned",
            activity_id=str(activity.id),
            user_id=str(activity.user_id),
            reward_id=str(reward.id),
            points=points,
        )

        if task is not None and task.badge_id:
            await self._claim_quietly(task.badge_id, activity, reason=task.title)
        if reward.badge_id and await self._reward_completed(activity.user_id, reward):
            await self._claim_quietly(reward.badge_id, activity, reason=reward.name)

        self.outbox.add(
            REWARD_EARNED,
            activity.user_id,
            activity_id=str(activity.id),
            reward_id=str(reward.id),
            reward_name=reward.name,
            points=points,
        )
        return True

    async def _reward_completed(self, user_id: uuid.UUID, reward: Reward) -> bool:
        """True once every task of the reward is earned or redeemed for the user.

        The reward badge marks finishing the whole reward, so earning the
        first of several tasks does not claim it.
        """
        if not reward.tasks:
            return True
        result = await self.db.execute(
            select(func.count(RewardActivity.id)).where(
                RewardActivity.user_id == user_id,
                RewardActivity.reward_id == reward.id,
                RewardActivity.task_id.is_not(None),
                RewardActivity.status.in_(COMPLETED_STATUSES),
            )
        )
        return result.scalar_one() >= len(reward.tasks)

    async def _claim_quietly(
        self, badge_id: uuid.UUID, activity: RewardActivity, reason: str | None
    ) -> None:
        """Badge claims from the evaluation path never fail the completion."""
        try:
            await self.badges.claim(
                badge_id,
                activity.user_id,
                reason=reason,
                tenant_id=activity.tenant_id,
                awarded_by=activity.issued_by,
            )
        except LedgerError as exc:
            logger.warning(
                "linked_badge_claim_failed",
                badge_id=str(badge_id),
                activity_id=str(activity.id),
                error=exc.message,
            )

    # ── Staff paths ────────────────────────────────────────────────────────────

    async def _resolve_target(
        self, reward_id: uuid.UUID, task_id: uuid.UUID | None
    ) -> tuple[Reward, RewardTask | None]:
        reward = await self.catalog.get_reward(reward_id)
        if task_id is None:
            if reward.tasks:
                raise ConflictError("Reward has tasks; a task_id is required", reward_id=str(reward_id))
            return reward, None
        return reward, self.catalog.get_task(reward, task_id)

    async def issue_manually(
        self,
        reward_id: uuid.UUID,
        user_id: uuid.UUID,
        staff_id: uuid.UUID,
        task_id: uuid.UUID | None = None,
        note: str | None = None,
        now: datetime | None = None,
    ) -> RewardActivity:
        """Staff completion of a manual task or a task-less reward.

        For verification-gated tasks the issuing staff member's action is
        the approval.
        """
        moment = now or utcnow()
        reward, task = await self._resolve_target(reward_id, task_id)
        if task is not None and task.is_automated:
            raise ConflictError("Automated tasks are completed by evaluation", task_id=str(task.id))

        async with translate_storage_errors():
            activity = await self.get_or_create_activity(user_id, reward, task, self.tenant_id, moment)
            if activity.status in COMPLETED_STATUSES:
                raise ConflictError("Reward already earned", activity_id=str(activity.id))
            if activity.status == ActivityStatus.EXPIRED:
                raise ConflictError("Activity has expired", activity_id=str(activity.id))

            activity.issued_by = staff_id
            activity.progress_value = max(activity.progress_value or 0, activity.progress_target)
            activity.append_history("issued", moment, value=activity.progress_value, note=note)
            if task is not None and task.requires_verification:
                activity.verification_required = True
                activity.verification_status = VerificationStatus.APPROVED
                activity.verified_by = staff_id
                activity.verified_at = moment
                activity.append_history("verified", moment, note="Issued by staff")

            if not await self.complete_activity(activity, reward, task, moment, note=note):
                raise ConflictError("Reward already earned", activity_id=str(activity.id))

        logger.info(
            "reward_issued_manually",
            activity_id=str(activity.id),
            user_id=str(user_id),
            staff_id=str(staff_id),
        )
        return activity

    async def record_manual_progress(
        self,
        reward_id: uuid.UUID,
        task_id: uuid.UUID,
        user_id: uuid.UUID,
        value: float,
        staff_id: uuid.UUID,
        note: str | None = None,
        now: datetime | None = None,
    ) -> RewardActivity:
        """Staff-reported progress on a manual task, run through the normal gate."""
        if value < 0:
            raise ValueError("Progress value must be non-negative")
        moment = now or utcnow()
        reward, task = await self._resolve_target(reward_id, task_id)
        if task is None:
            raise ConflictError(
                "Progress is recorded against a task; use issue for task-less rewards",
                reward_id=str(reward_id),
            )

        async with translate_storage_errors():
            async with self.db.begin_nested():
                activity = await self.get_or_create_activity(
                    user_id, reward, task, self.tenant_id, moment
                )
                if activity.status not in OPEN_STATUSES:
                    raise ConflictError(
                        f"Activity is {activity.status.value}", activity_id=str(activity.id)
                    )
                activity.issued_by = staff_id
                await self._apply_progress(activity, reward, task, value, moment, note=note)
        return activity

    async def redeem(
        self,
        reward_id: uuid.UUID,
        user_id: uuid.UUID,
        voucher_code: str | None = None,
        note: str | None = None,
        issuer_id: uuid.UUID | None = None,
        now: datetime | None = None,
    ) -> RewardActivity:
        """earned -> redeemed, attaching a voucher code."""
        moment = now or utcnow()
        reward = await self.catalog.get_reward(reward_id)
        result = await self.db.execute(
            select(RewardActivity)
            .where(
                RewardActivity.user_id == user_id,
                RewardActivity.reward_id == reward_id,
                RewardActivity.status == ActivityStatus.EARNED,
            )
            .order_by(RewardActivity.earned_at.asc(), RewardActivity.id.asc())
            .limit(1)
        )
        activity = result.scalar_one_or_none()
        if activity is None:
            raise NotFoundError("No earned reward to redeem", reward_id=str(reward_id))

        template = reward.voucher_template or {}
        code = voucher_code or generate_voucher_code(moment)
        async with translate_storage_errors():
            update_result = await self.db.execute(
                update(RewardActivity)
                .where(
                    RewardActivity.id == activity.id,
                    RewardActivity.status == ActivityStatus.EARNED,
                )
                .values(
                    status=ActivityStatus.REDEEMED,
                    redeemed_at=moment,
                    voucher_code=code,
                    voucher_value=template.get("value"),
                    voucher_currency=template.get("currency"),
                )
                .execution_options(synchronize_session=False)
            )
            if update_result.rowcount == 0:
                raise ConflictError("Reward already redeemed", activity_id=str(activity.id))
            await self.db.refresh(activity)
            activity.append_history("redeemed", moment, note=note)
            if issuer_id is not None and activity.issued_by is None:
                activity.issued_by = issuer_id
            await self.db.flush()

        logger.info(
            "reward_redeemed",
            activity_id=str(activity.id),
            user_id=str(user_id),
            voucher_code=code,
        )
        return activity

    async def expire_stale(
        self, now: datetime | None = None, batch_size: int | None = None
    ) -> int:
        """Mark open activities expired once their reward's window has closed."""
        moment = now or utcnow()
        limit = batch_size or settings.EXPIRY_SWEEP_BATCH_SIZE
        expired = 0

        while True:
            result = await self.db.execute(
                select(RewardActivity.id)
                .join(Reward, Reward.id == RewardActivity.reward_id)
                .where(
                    RewardActivity.status.in_(OPEN_STATUSES),
                    Reward.ends_at.is_not(None),
                    Reward.ends_at < moment,
                )
                .order_by(RewardActivity.id.asc())
                .limit(limit)
            )
            ids = list(result.scalars().all())
            if not ids:
                break

            for activity_id in ids:
                update_result = await self.db.execute(
                    update(RewardActivity)
                    .where(
                        RewardActivity.id == activity_id,
                        RewardActivity.status.in_(OPEN_STATUSES),
                    )
                    .values(status=ActivityStatus.EXPIRED)
                    .execution_options(synchronize_session=False)
                )
                if update_result.rowcount == 0:
                    continue
                activity = await self.get_activity(activity_id)
                activity.append_history("expired", moment, note="Reward window closed")
                expired += 1
            await self.db.flush()
            if len(ids) < limit:
                break

        logger.info("activities_expired", count=expired)
        return expired

    # ── Read side ──────────────────────────────────────────────────────────────

    def _activity_scope(self, stmt, tenant_id: uuid.UUID | None):
        if tenant_id is None:
            return stmt
        return stmt.where(
            or_(RewardActivity.tenant_id == tenant_id, RewardActivity.tenant_id.is_(None))
        )

    async def list_user_activities(
        self, user_id: uuid.UUID, status: ActivityStatus | None = None
    ) -> list[RewardActivity]:
        stmt = self._activity_scope(
            select(RewardActivity).where(RewardActivity.user_id == user_id), self.tenant_id
        )
        if status is not None:
            stmt = stmt.where(RewardActivity.status == status)
        result = await self.db.execute(
            stmt.order_by(RewardActivity.updated_at.desc(), RewardActivity.id.asc())
        )
        return list(result.scalars().all())

    async def get_user_activity_history(
        self,
        user_id: uuid.UUID,
        tenant_id: uuid.UUID | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> ActivityHistoryResponse:
        """Recent activities, a monthly points timeline and a category breakdown."""
        tenant_id = tenant_id or self.tenant_id

        stmt = self._activity_scope(
            select(RewardActivity, Reward.name, Reward.category)
            .join(Reward, Reward.id == RewardActivity.reward_id)
            .where(RewardActivity.user_id == user_id),
            tenant_id,
        )
        if start is not None:
            stmt = stmt.where(RewardActivity.created_at >= start)
        if end is not None:
            stmt = stmt.where(RewardActivity.created_at <= end)
        stmt = stmt.order_by(RewardActivity.updated_at.desc(), RewardActivity.id.asc()).limit(
            settings.ACTIVITY_HISTORY_LIMIT
        )
        rows = (await self.db.execute(stmt)).all()
        activities = [
            HistoryActivity(
                id=activity.id,
                reward_id=activity.reward_id,
                reward_name=name,
                category=category,
                task_id=activity.task_id,
                status=activity.status,
                progress_value=activity.progress_value,
                progress_target=activity.progress_target,
                points_awarded=activity.points_awarded,
                earned_at=activity.earned_at,
                redeemed_at=activity.redeemed_at,
                updated_at=activity.updated_at,
            )
            for activity, name, category in rows
        ]

        earned_stmt = self._activity_scope(
            select(RewardActivity.earned_at, RewardActivity.points_awarded, Reward.category)
            .join(Reward, Reward.id == RewardActivity.reward_id)
            .where(
                RewardActivity.user_id == user_id,
                RewardActivity.status.in_(COMPLETED_STATUSES),
                RewardActivity.earned_at.is_not(None),
            ),
            tenant_id,
        )
        if start is not None:
            earned_stmt = earned_stmt.where(RewardActivity.earned_at >= start)
        if end is not None:
            earned_stmt = earned_stmt.where(RewardActivity.earned_at <= end)

        months: dict[str, list[int]] = defaultdict(lambda: [0, 0])
        categories: dict[str, list[int]] = defaultdict(lambda: [0, 0])
        for earned_at, points, category in (await self.db.execute(earned_stmt)).all():
            month = months[earned_at.strftime("%Y-%m")]
            month[0] += points
            month[1] += 1
            bucket = categories[category]
            bucket[0] += points
            bucket[1] += 1

        return ActivityHistoryResponse(
            user_id=user_id,
            activities=activities,
            timeline=[
                TimelineEntry(month=m, points=p, count=c)
                for m, (p, c) in sorted(months.items())
            ],
            categories=[
                CategoryBreakdown(category=cat, total_points=p, count=c)
                for cat, (p, c) in sorted(categories.items(), key=lambda kv: (-kv[1][0], kv[0]))
            ],
        )

    async def get_user_summary(
        self, user_id: uuid.UUID, tenant_id: uuid.UUID | None = None
    ) -> UserSummaryResponse:
        tenant_id = tenant_id or self.tenant_id
        stmt = self._activity_scope(
            select(RewardActivity.status, func.count(RewardActivity.id))
            .where(RewardActivity.user_id == user_id)
            .group_by(RewardActivity.status),
            tenant_id,
        )
        by_status = {s.value: 0 for s in ActivityStatus}
        for status, count in (await self.db.execute(stmt)).all():
            by_status[ActivityStatus(status).value] = count

        pending_stmt = self._activity_scope(
            select(func.count(RewardActivity.id)).where(
                RewardActivity.user_id == user_id,
                RewardActivity.verification_required.is_(True),
                RewardActivity.verification_status == VerificationStatus.PENDING,
            ),
            tenant_id,
        )
        pending = (await self.db.execute(pending_stmt)).scalar_one()

        profile = await self.points.get_profile(user_id)
        total = profile.total_points if profile else 0
        return UserSummaryResponse(
            user_id=user_id,
            total_points=total,
            tier=calculate_tier(total),
            badge_count=len(profile.badge_ids or []) if profile else 0,
            by_status=by_status,
            pending_verifications=pending,
        )

