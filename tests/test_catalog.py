"""Tests for the reward catalog: definitions, edits, visibility and eligibility."""

import uuid
from datetime import timedelta

import pytest
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from alumni_rewards.core.errors import ConflictError, NotFoundError
from alumni_rewards.models.enums import ActionType, MetricKind, RewardType
from alumni_rewards.models.rewards import Reward
from alumni_rewards.modules.catalog.schemas import (
    EligibilityRules,
    RewardCreate,
    RewardUpdate,
    TaskCreate,
)
from alumni_rewards.modules.catalog.service import RewardCatalog, is_eligible
from alumni_rewards.modules.ledger.service import LedgerService
from alumni_rewards.schemas.auth import MemberContext
from tests.conftest import (
    NOW,
    OTHER_TENANT_ID,
    STAFF_ID,
    TENANT_ID,
    USER_A,
    make_reward,
)


def _reward_body(**overrides) -> RewardCreate:
    data = {
        "name": "Mentor Champion",
        "category": "mentorship",
        "points": 0,
        "tasks": [
            TaskCreate(
                title="Complete 3 mentorships",
                action_type=ActionType.MENTORSHIP,
                target_value=3,
                points=100,
            ),
            TaskCreate(
                title="Log 10 mentoring hours",
                action_type=ActionType.MENTORSHIP,
                metric=MetricKind.DURATION,
                target_value=10,
                points=40,
            ),
        ],
    }
    data.update(overrides)
    return RewardCreate(**data)


class TestRewardDefinitions:
    async def test_create_reward_with_ordered_tasks(self, db: AsyncSession):
        catalog = RewardCatalog(db, TENANT_ID)
        reward = await catalog.create_reward(_reward_body(), created_by=STAFF_ID)

        assert reward.tenant_id == TENANT_ID
        assert reward.created_by == STAFF_ID
        assert [t.title for t in reward.tasks] == [
            "Complete 3 mentorships",
            "Log 10 mentoring hours",
        ]
        assert [t.display_order for t in reward.tasks] == [0, 1]

    async def test_global_reward_has_no_tenant(self, db: AsyncSession):
        reward = await RewardCatalog(db, TENANT_ID).create_reward(_reward_body(is_global=True))
        assert reward.tenant_id is None

    def test_window_must_be_ordered(self):
        with pytest.raises(ValidationError):
            _reward_body(starts_at=NOW, ends_at=NOW - timedelta(days=1))

    async def test_unknown_linked_badge_rejected(self, db: AsyncSession):
        with pytest.raises(NotFoundError):
            await RewardCatalog(db, TENANT_ID).create_reward(_reward_body(badge_id=uuid.uuid4()))

    async def test_other_tenant_cannot_read_reward(self, db: AsyncSession):
        reward = await RewardCatalog(db, TENANT_ID).create_reward(_reward_body())
        with pytest.raises(NotFoundError):
            await RewardCatalog(db, OTHER_TENANT_ID).get_reward(reward.id)

    async def test_global_reward_visible_to_every_tenant(self, db: AsyncSession):
        reward = await RewardCatalog(db, TENANT_ID).create_reward(_reward_body(is_global=True))
        found = await RewardCatalog(db, OTHER_TENANT_ID).get_reward(reward.id)
        assert found.id == reward.id


class TestRewardEdits:
    async def test_free_edit_before_any_activity(self, db: AsyncSession):
        catalog = RewardCatalog(db, TENANT_ID)
        reward = await catalog.create_reward(_reward_body())

        updated = await catalog.update_reward(
            reward.id,
            RewardUpdate(
                points=25,
                tasks=[TaskCreate(title="Complete 5 mentorships", action_type=ActionType.MENTORSHIP, target_value=5)],
            ),
        )
        assert updated.points == 25
        assert len(updated.tasks) == 1
        assert updated.tasks[0].target_value == 5

    async def test_breaking_edit_refused_once_activities_exist(
        self, db: AsyncSession, ledger: LedgerService
    ):
        catalog = RewardCatalog(db, TENANT_ID)
        reward = await catalog.create_reward(_reward_body())
        await ledger.get_or_create_activity(USER_A, reward, reward.tasks[0], TENANT_ID, NOW)

        with pytest.raises(ConflictError):
            await catalog.update_reward(reward.id, RewardUpdate(reward_type=RewardType.VOUCHER))

        tasks = [
            TaskCreate(title=t.title, action_type=t.action_type, metric=t.metric, target_value=t.target_value, points=t.points)
            for t in reward.tasks
        ]
        tasks[0] = tasks[0].model_copy(update={"target_value": 1})
        with pytest.raises(ConflictError):
            await catalog.update_reward(reward.id, RewardUpdate(tasks=tasks))

    async def test_cosmetic_edit_allowed_once_activities_exist(
        self, db: AsyncSession, ledger: LedgerService
    ):
        catalog = RewardCatalog(db, TENANT_ID)
        reward = await catalog.create_reward(_reward_body())
        await ledger.get_or_create_activity(USER_A, reward, reward.tasks[0], TENANT_ID, NOW)

        updated = await catalog.update_reward(
            reward.id, RewardUpdate(name="Mentorship Champion", is_featured=True)
        )
        assert updated.name == "Mentorship Champion"
        assert updated.is_featured is True

    async def test_deactivate_is_soft(self, db: AsyncSession):
        catalog = RewardCatalog(db, TENANT_ID)
        reward = await catalog.create_reward(_reward_body())
        await catalog.deactivate_reward(reward.id)

        assert (await catalog.get_reward(reward.id)).is_active is False
        assert await catalog.list_rewards(is_active=True) == []


class TestCatalogQueries:
    async def test_schedule_hides_future_and_past_rewards(self, db: AsyncSession):
        await make_reward(db, name="Live")
        await make_reward(db, name="Upcoming", starts_at=NOW + timedelta(days=3))
        await make_reward(db, name="Closed", ends_at=NOW - timedelta(days=3))
        catalog = RewardCatalog(db, TENANT_ID)

        visible = await catalog.list_rewards(enforce_schedule=True, now=NOW)
        assert [r.name for r in visible] == ["Live"]
        assert len(await catalog.list_rewards()) == 3

    async def test_candidate_tasks_match_action_and_window(self, db: AsyncSession):
        reward = await _candidate_reward(db)
        await make_reward(db, name="Expired drive", ends_at=NOW - timedelta(days=1))
        candidates = await RewardCatalog(db, TENANT_ID).candidate_tasks(ActionType.EVENT, NOW)

        assert [(r.id, t.title) for r, t in candidates] == [(reward.id, "Attend 2 events")]


async def _candidate_reward(db: AsyncSession) -> Reward:
    catalog = RewardCatalog(db, TENANT_ID)
    return await catalog.create_reward(
        RewardCreate(
            name="Community Regular",
            tasks=[
                TaskCreate(title="Attend 2 events", action_type=ActionType.EVENT, target_value=2),
                TaskCreate(title="Give once", action_type=ActionType.DONATION),
                TaskCreate(
                    title="Host a meetup",
                    action_type=ActionType.EVENT,
                    is_automated=False,
                ),
            ],
        )
    )


class TestEligibility:
    def _reward(self, **rules) -> Reward:
        return Reward(name="Restricted", eligibility=EligibilityRules(**rules).model_dump())

    def test_unrestricted_reward_accepts_anyone(self):
        assert is_eligible(self._reward(), None)

    def test_restricted_reward_requires_known_member(self):
        assert not is_eligible(self._reward(departments=["Engineering"]), None)

    def test_allow_lists_all_apply(self):
        member = MemberContext(
            user_id=USER_A, role="Alumni", department="Engineering", graduation_year=2015
        )
        assert is_eligible(self._reward(roles=["alumni"], departments=["Engineering"]), member)
        assert not is_eligible(self._reward(graduation_years=[2020]), member)
        assert not is_eligible(self._reward(programs=["MBA"]), member)
