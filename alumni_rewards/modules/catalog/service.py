"""Reward Catalog — definitions of rewards and their ordered tasks."""

from __future__ import annotations

import uuid
from datetime import datetime

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from alumni_rewards.core.errors import ConflictError, NotFoundError
from alumni_rewards.middleware.tenant import tenant_scope
from alumni_rewards.models.badges import Badge
from alumni_rewards.models.base import utcnow
from alumni_rewards.models.enums import ActionType, RewardType
from alumni_rewards.models.rewards import Reward, RewardActivity, RewardTask
from alumni_rewards.modules.catalog.schemas import RewardCreate, RewardUpdate, TaskCreate
from alumni_rewards.schemas.auth import MemberContext

logger = structlog.get_logger()

# Task fields whose change would retroactively alter in-flight activities
_BREAKING_TASK_FIELDS = ("action_type", "metric", "target_value", "points", "requires_verification")


def is_eligible(reward: Reward, member: MemberContext | None) -> bool:
    """Check the reward's allow-lists against the member's identity."""
    rules = reward.eligibility or {}
    roles = [r.lower() for r in rules.get("roles") or []]
    departments = rules.get("departments") or []
    years = rules.get("graduation_years") or []
    programs = rules.get("programs") or []

    if not (roles or departments or years or programs):
        return True
    if member is None:
        return False
    if roles and (member.role or "").lower() not in roles:
        return False
    if departments and member.department not in departments:
        return False
    if years and member.graduation_year not in years:
        return False
    if programs and member.program not in programs:
        return False
    return True


def _build_task(data: TaskCreate, position: int) -> RewardTask:
    return RewardTask(
        title=data.title,
        description=data.description,
        action_type=data.action_type,
        metric=data.metric,
        target_value=data.target_value,
        points=data.points,
        badge_id=data.badge_id,
        is_automated=data.is_automated,
        requires_verification=data.requires_verification,
        display_order=data.display_order if data.display_order is not None else position,
        meta=data.metadata,
    )


class RewardCatalog:
    def __init__(self, db: AsyncSession, tenant_id: uuid.UUID | None = None) -> None:
        self.db = db
        self.tenant_id = tenant_id

    async def _require_badges(self, candidates: set[uuid.UUID | None]) -> None:
        badge_ids = {b for b in candidates if b is not None}
        if not badge_ids:
            return
        result = await self.db.execute(select(Badge.id).where(Badge.id.in_(badge_ids)))
        missing = badge_ids - set(result.scalars().all())
        if missing:
            raise NotFoundError("Linked badge not found", badge_ids=sorted(str(b) for b in missing))

    # ── Create / Update ────────────────────────────────────────────────────────

    async def create_reward(self, body: RewardCreate, created_by: uuid.UUID | None = None) -> Reward:
        await self._require_badges({body.badge_id, *(t.badge_id for t in body.tasks)})

        reward = Reward(
            name=body.name,
            description=body.description,
            category=body.category,
            reward_type=body.reward_type,
            points=body.points,
            voucher_template=body.voucher_template.model_dump() if body.voucher_template else None,
            badge_id=body.badge_id,
            tags=body.tags,
            eligibility=body.eligibility.model_dump(),
            tenant_id=None if body.is_global else self.tenant_id,
            created_by=created_by,
            starts_at=body.starts_at,
            ends_at=body.ends_at,
            is_featured=body.is_featured,
            is_active=body.is_active,
            meta=body.metadata,
            tasks=[_build_task(t, i) for i, t in enumerate(body.tasks)],
        )
        self.db.add(reward)
        await self.db.flush()
        logger.info(
            "reward_created",
            reward_id=str(reward.id),
            task_count=len(reward.tasks),
            tenant_id=str(reward.tenant_id) if reward.tenant_id else None,
        )
        return reward

    async def has_activities(self, reward_id: uuid.UUID) -> bool:
        result = await self.db.execute(
            select(RewardActivity.id).where(RewardActivity.reward_id == reward_id).limit(1)
        )
        return result.scalar_one_or_none() is not None

    async def update_reward(self, reward_id: uuid.UUID, body: RewardUpdate) -> Reward:
        """Apply a partial edit. Breaking edits are refused once activities exist."""
        reward = await self.get_reward(reward_id)
        changes = body.model_dump(exclude_unset=True)
        locked = await self.has_activities(reward_id)

        if locked:
            if "reward_type" in changes and changes["reward_type"] != reward.reward_type:
                raise ConflictError("reward_type is fixed once activities exist")
            if "points" in changes and changes["points"] != reward.points:
                raise ConflictError("points are fixed once activities exist")

        new_tasks = body.tasks if "tasks" in changes else None
        if new_tasks is not None:
            await self._require_badges({t.badge_id for t in new_tasks})
            if locked:
                self._apply_locked_task_edits(reward, new_tasks)
            else:
                reward.tasks = [_build_task(t, i) for i, t in enumerate(new_tasks)]

        if "badge_id" in changes:
            await self._require_badges({changes["badge_id"]})

        for field, value in changes.items():
            if field == "tasks":
                continue
            if field == "metadata":
                reward.meta = value or {}
            elif field == "voucher_template":
                reward.voucher_template = value
            elif field == "eligibility":
                reward.eligibility = value or {}
            else:
                setattr(reward, field, value)

        if reward.starts_at and reward.ends_at and reward.ends_at <= reward.starts_at:
            raise ConflictError("ends_at must be after starts_at")

        await self.db.flush()
        logger.info("reward_updated", reward_id=str(reward_id), fields=sorted(changes))
        return reward

    @staticmethod
    def _apply_locked_task_edits(reward: Reward, new_tasks: list[TaskCreate]) -> None:
        current = list(reward.tasks)
        if len(new_tasks) != len(current):
            raise ConflictError("Tasks cannot be added or removed once activities exist")

        for position, (task, data) in enumerate(zip(current, new_tasks)):
            for field in _BREAKING_TASK_FIELDS:
                if getattr(task, field) != getattr(data, field):
                    raise ConflictError(
                        f"Task field {field!r} is fixed once activities exist",
                        task_id=str(task.id),
                    )
            task.title = data.title
            task.description = data.description
            task.badge_id = data.badge_id
            task.is_automated = data.is_automated
            task.display_order = data.display_order if data.display_order is not None else position
            task.meta = data.metadata

    async def deactivate_reward(self, reward_id: uuid.UUID) -> Reward:
        reward = await self.get_reward(reward_id)
        reward.is_active = False
        await self.db.flush()
        logger.info("reward_deactivated", reward_id=str(reward_id))
        return reward

    # ── Read ───────────────────────────────────────────────────────────────────

    async def get_reward(self, reward_id: uuid.UUID) -> Reward:
        stmt = tenant_scope(select(Reward).where(Reward.id == reward_id), self.tenant_id, Reward)
        result = await self.db.execute(stmt)
        reward = result.scalar_one_or_none()
        if reward is None:
            raise NotFoundError("Reward not found", reward_id=str(reward_id))
        return reward

    def get_task(self, reward: Reward, task_id: uuid.UUID) -> RewardTask:
        for task in reward.tasks:
            if task.id == task_id:
                return task
        raise NotFoundError("Task not found", reward_id=str(reward.id), task_id=str(task_id))

    async def list_rewards(
        self,
        is_active: bool | None = True,
        categories: list[str] | None = None,
        reward_type: RewardType | None = None,
        featured: bool | None = None,
        enforce_schedule: bool = False,
        now: datetime | None = None,
        skip: int = 0,
        limit: int = 50,
    ) -> list[Reward]:
        stmt = tenant_scope(select(Reward), self.tenant_id, Reward)
        if is_active is not None:
            stmt = stmt.where(Reward.is_active.is_(is_active))
        if categories:
            stmt = stmt.where(Reward.category.in_(categories))
        if reward_type is not None:
            stmt = stmt.where(Reward.reward_type == reward_type)
        if featured is not None:
            stmt = stmt.where(Reward.is_featured.is_(featured))
        if enforce_schedule:
            moment = now or utcnow()
            stmt = stmt.where(
                (Reward.starts_at.is_(None)) | (Reward.starts_at <= moment),
                (Reward.ends_at.is_(None)) | (Reward.ends_at >= moment),
            )
        stmt = (
            stmt.order_by(Reward.is_featured.desc(), Reward.created_at.desc(), Reward.id.asc())
            .offset(skip)
            .limit(limit)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def candidate_tasks(
        self, action_type: ActionType, now: datetime | None = None
    ) -> list[tuple[Reward, RewardTask]]:
        """Automated tasks of active, in-window rewards matching action_type."""
        moment = now or utcnow()
        stmt = tenant_scope(
            select(Reward)
            .where(
                Reward.is_active.is_(True),
                Reward.id.in_(
                    select(RewardTask.reward_id).where(
                        RewardTask.action_type == action_type,
                        RewardTask.is_automated.is_(True),
                    )
                ),
            )
            .order_by(Reward.created_at.asc(), Reward.id.asc()),
            self.tenant_id,
            Reward,
        )
        result = await self.db.execute(stmt)

        candidates: list[tuple[Reward, RewardTask]] = []
        for reward in result.scalars().all():
            if not reward.window_contains(moment):
                continue
            for task in reward.tasks:
                if task.action_type == action_type and task.is_automated:
                    candidates.append((reward, task))
        return candidates
