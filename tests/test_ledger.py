"""Tests for the achievement ledger: evaluation, crediting, staff paths and history."""

import re
import uuid
from datetime import datetime, timedelta

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from alumni_rewards.core.errors import ConflictError, NotFoundError
from alumni_rewards.models.enums import ActionType, ActivityStatus, RewardType, VerificationStatus
from alumni_rewards.models.rewards import RewardActivity, RewardTask
from alumni_rewards.modules.ledger.service import LedgerService, generate_voucher_code
from alumni_rewards.modules.points.service import PointsAccumulator
from alumni_rewards.services.notifications import BADGE_AWARDED, REWARD_EARNED
from tests.conftest import (
    NOW,
    STAFF_ID,
    USER_A,
    FakeMetricsClient,
    donation_task,
    make_badge,
    make_reward,
)


async def _total(db: AsyncSession, user_id: uuid.UUID = USER_A) -> int:
    return (await PointsAccumulator(db).get_totals(user_id)).total_points


async def _activity_count(db: AsyncSession) -> int:
    return (await db.execute(select(func.count(RewardActivity.id)))).scalar_one()


class TestSuperDonor:
    async def test_points_credited_exactly_once(
        self, db: AsyncSession, ledger: LedgerService, metrics: FakeMetricsClient, super_donor
    ):
        metrics.values["donations.completed_amount"] = 6000
        [activity] = await ledger.evaluate_progress(USER_A, ActionType.DONATION, now=NOW)
        assert activity.status == ActivityStatus.IN_PROGRESS
        assert activity.progress_value == 6000
        assert activity.progress_target == 10000
        assert await _total(db) == 0

        metrics.values["donations.completed_amount"] = 11000
        [activity] = await ledger.evaluate_progress(USER_A, ActionType.DONATION, now=NOW)
        assert activity.status == ActivityStatus.EARNED
        assert activity.points_awarded == 50
        assert activity.points_added_to_user is True
        assert activity.earned_at == NOW
        assert await _total(db) == 50

        [again] = await ledger.evaluate_progress(USER_A, ActionType.DONATION, now=NOW)
        assert again.id == activity.id
        assert again.status == ActivityStatus.EARNED
        assert await _total(db) == 50
        assert await _activity_count(db) == 1

    async def test_history_records_each_step(
        self, ledger: LedgerService, metrics: FakeMetricsClient, super_donor
    ):
        metrics.values["donations.completed_amount"] = 6000
        await ledger.evaluate_progress(USER_A, ActionType.DONATION, now=NOW)
        metrics.values["donations.completed_amount"] = 11000
        [activity] = await ledger.evaluate_progress(USER_A, ActionType.DONATION, now=NOW)

        assert [h["action"] for h in activity.history] == ["created", "progress", "progress", "earned"]
        assert [n.event for n in ledger.outbox.pending] == [REWARD_EARNED]

    async def test_repeated_completion_credits_once(
        self, db: AsyncSession, ledger: LedgerService, metrics: FakeMetricsClient, super_donor
    ):
        metrics.values["donations.completed_amount"] = 10000
        [activity] = await ledger.evaluate_progress(USER_A, ActionType.DONATION, now=NOW)
        task = super_donor.tasks[0]

        assert await ledger.complete_activity(activity, super_donor, task, NOW) is False
        assert await ledger.complete_activity(activity, super_donor, task, NOW) is False
        assert await _total(db) == 50


class TestEvaluation:
    async def test_progress_never_moves_backwards(
        self, ledger: LedgerService, metrics: FakeMetricsClient, super_donor
    ):
        metrics.values["donations.completed_amount"] = 6000
        await ledger.evaluate_progress(USER_A, ActionType.DONATION, now=NOW)
        metrics.values["donations.completed_amount"] = 4000
        [activity] = await ledger.evaluate_progress(USER_A, ActionType.DONATION, now=NOW)

        assert activity.progress_value == 6000
        assert activity.status == ActivityStatus.IN_PROGRESS

    async def test_zero_metric_keeps_activity_pending(
        self, ledger: LedgerService, super_donor
    ):
        [activity] = await ledger.evaluate_progress(USER_A, ActionType.DONATION, now=NOW)
        assert activity.status == ActivityStatus.PENDING
        assert activity.progress_value == 0

    async def test_metric_failure_only_skips_its_task(
        self, db: AsyncSession, ledger: LedgerService, metrics: FakeMetricsClient, super_donor
    ):
        await make_reward(
            db,
            name="Legacy Giving",
            tasks=[donation_task(title="Pledge", meta={"metric_key": "donations.pledged"})],
        )
        metrics.failing.add("donations.pledged")
        metrics.values["donations.completed_amount"] = 12000

        activities = await ledger.evaluate_progress(USER_A, ActionType.DONATION, now=NOW)

        assert [a.reward_id for a in activities] == [super_donor.id]
        assert activities[0].status == ActivityStatus.EARNED
        assert await _activity_count(db) == 1

    async def test_ineligible_member_is_skipped(
        self, db: AsyncSession, ledger: LedgerService, metrics: FakeMetricsClient
    ):
        await make_reward(
            db,
            name="MBA Giving Circle",
            tasks=[donation_task()],
            eligibility={"programs": ["MBA"]},
        )
        metrics.values["donations.completed_amount"] = 20000

        assert await ledger.evaluate_progress(USER_A, ActionType.DONATION, now=NOW) == []
        assert await _activity_count(db) == 0

    async def test_unknown_member_skips_restricted_rewards(
        self, db: AsyncSession, ledger: LedgerService, metrics: FakeMetricsClient
    ):
        await make_reward(
            db,
            name="Engineers Only",
            tasks=[donation_task()],
            eligibility={"departments": ["Engineering"]},
        )
        metrics.values["donations.completed_amount"] = 20000

        assert await ledger.evaluate_progress(uuid.uuid4(), ActionType.DONATION, now=NOW) == []

    async def test_gated_task_waits_for_verification(
        self, db: AsyncSession, ledger: LedgerService, metrics: FakeMetricsClient
    ):
        await make_reward(db, name="Verified Donor", tasks=[donation_task(requires_verification=True)])
        metrics.values["donations.completed_amount"] = 10000

        [activity] = await ledger.evaluate_progress(USER_A, ActionType.DONATION, now=NOW)
        [again] = await ledger.evaluate_progress(USER_A, ActionType.DONATION, now=NOW)

        assert again.id == activity.id
        assert activity.status == ActivityStatus.IN_PROGRESS
        assert activity.verification_required is True
        assert activity.verification_status == VerificationStatus.PENDING
        assert [h["action"] for h in activity.history].count("verification_requested") == 1
        assert await _total(db) == 0

    async def test_linked_badges_claimed_on_completion(
        self, db: AsyncSession, ledger: LedgerService, metrics: FakeMetricsClient
    ):
        task_badge = await make_badge(db, name="Big Giver")
        reward_badge = await make_badge(db, name="Community Champion")
        reward = await make_reward(
            db,
            name="Community Champion",
            badge_id=reward_badge.id,
            tasks=[
                donation_task(target_value=100, points=10, badge_id=task_badge.id),
                RewardTask(
                    title="Attend 2 events",
                    action_type=ActionType.EVENT,
                    target_value=2,
                    points=10,
                    display_order=1,
                ),
            ],
        )
        metrics.values.update({"donations.completed_amount": 150, "events.attended": 1})

        await ledger.evaluate_progress(USER_A, ActionType.DONATION, now=NOW)
        assert await ledger.badges.holds(USER_A, task_badge.id)
        assert not await ledger.badges.holds(USER_A, reward_badge.id)

        metrics.values["events.attended"] = 2
        await ledger.evaluate_progress(USER_A, ActionType.EVENT, now=NOW)
        assert await ledger.badges.holds(USER_A, reward_badge.id)
        assert await _total(db) == 20
        assert reward.badge_id == reward_badge.id
        assert [n.event for n in ledger.outbox.pending].count(BADGE_AWARDED) == 2


class TestStaffPaths:
    async def test_issue_direct_reward(self, db: AsyncSession, ledger: LedgerService):
        reward = await make_reward(db, name="Volunteer of the Year", points=200)

        activity = await ledger.issue_manually(reward.id, USER_A, STAFF_ID, note="Gala", now=NOW)

        assert activity.task_id is None
        assert activity.status == ActivityStatus.EARNED
        assert activity.issued_by == STAFF_ID
        assert activity.points_awarded == 200
        assert await _total(db) == 200

        with pytest.raises(ConflictError):
            await ledger.issue_manually(reward.id, USER_A, STAFF_ID, now=NOW)
        assert await _total(db) == 200

    async def test_issue_refuses_automated_task(self, ledger: LedgerService, super_donor):
        with pytest.raises(ConflictError):
            await ledger.issue_manually(
                super_donor.id, USER_A, STAFF_ID, task_id=super_donor.tasks[0].id
            )

    async def test_issue_requires_task_for_tasked_reward(self, ledger: LedgerService, super_donor):
        with pytest.raises(ConflictError):
            await ledger.issue_manually(super_donor.id, USER_A, STAFF_ID)

    async def test_issue_gated_manual_task_counts_as_approval(
        self, db: AsyncSession, ledger: LedgerService
    ):
        reward = await make_reward(
            db,
            name="Guest Lecture",
            tasks=[
                RewardTask(
                    title="Give a guest lecture",
                    action_type=ActionType.CUSTOM,
                    is_automated=False,
                    requires_verification=True,
                    points=75,
                )
            ],
        )
        activity = await ledger.issue_manually(
            reward.id, USER_A, STAFF_ID, task_id=reward.tasks[0].id, now=NOW
        )

        assert activity.status == ActivityStatus.EARNED
        assert activity.verification_status == VerificationStatus.APPROVED
        assert activity.verified_by == STAFF_ID
        assert await _total(db) == 75

    async def test_manual_progress_runs_through_the_gate(
        self, db: AsyncSession, ledger: LedgerService
    ):
        reward = await make_reward(
            db,
            name="Campus Ambassador",
            tasks=[
                RewardTask(
                    title="Host 3 campus visits",
                    action_type=ActionType.EVENT,
                    is_automated=False,
                    target_value=3,
                    points=30,
                )
            ],
        )
        task_id = reward.tasks[0].id

        activity = await ledger.record_manual_progress(reward.id, task_id, USER_A, 2, STAFF_ID, now=NOW)
        assert activity.status == ActivityStatus.IN_PROGRESS

        activity = await ledger.record_manual_progress(reward.id, task_id, USER_A, 3, STAFF_ID, now=NOW)
        assert activity.status == ActivityStatus.EARNED
        assert await _total(db) == 30

        with pytest.raises(ConflictError):
            await ledger.record_manual_progress(reward.id, task_id, USER_A, 4, STAFF_ID, now=NOW)

    async def test_manual_progress_needs_a_task(self, db: AsyncSession, ledger: LedgerService):
        reward = await make_reward(db, name="Honorary Fellow", points=40)

        with pytest.raises(ConflictError, match="task"):
            await ledger.record_manual_progress(reward.id, None, USER_A, 1, STAFF_ID, now=NOW)
        assert await ledger.find_activity(USER_A, reward.id, None) is None


class TestRedemption:
    async def test_redeem_attaches_voucher(self, db: AsyncSession, ledger: LedgerService):
        reward = await make_reward(
            db,
            name="Campus Store Voucher",
            reward_type=RewardType.VOUCHER,
            points=10,
            voucher_template={"partner": "Campus Store", "value": 25.0, "currency": "USD"},
        )
        await ledger.issue_manually(reward.id, USER_A, STAFF_ID, now=NOW)

        activity = await ledger.redeem(reward.id, USER_A, note="Picked up", now=NOW)

        assert activity.status == ActivityStatus.REDEEMED
        assert activity.redeemed_at == NOW
        assert re.fullmatch(r"RV-[0-9A-Z]{5,}", activity.voucher_code)
        assert activity.voucher_value == 25.0
        assert activity.voucher_currency == "USD"
        assert activity.history[-1]["action"] == "redeemed"

        with pytest.raises(NotFoundError):
            await ledger.redeem(reward.id, USER_A, now=NOW)

    async def test_redeem_without_earned_activity(self, ledger: LedgerService, super_donor):
        with pytest.raises(NotFoundError):
            await ledger.redeem(super_donor.id, USER_A)

    async def test_supplied_voucher_code_is_kept(self, db: AsyncSession, ledger: LedgerService):
        reward = await make_reward(db, name="Partner Perk", reward_type=RewardType.PERK)
        await ledger.issue_manually(reward.id, USER_A, STAFF_ID, now=NOW)

        activity = await ledger.redeem(reward.id, USER_A, voucher_code="PARTNER-42")
        assert activity.voucher_code == "PARTNER-42"

    def test_voucher_code_format(self):
        moment = datetime(2026, 1, 1)
        code = generate_voucher_code(moment)
        assert re.fullmatch(r"RV-[0-9A-Z]+", code)
        # Same millisecond stamp, random four-character suffix
        assert code[:-4] == generate_voucher_code(moment)[:-4]


class TestExpiry:
    async def test_open_activities_expire_after_window(
        self, db: AsyncSession, ledger: LedgerService, metrics: FakeMetricsClient, super_donor
    ):
        drive = await make_reward(
            db,
            name="Spring Drive",
            tasks=[donation_task(title="Spring gift")],
            ends_at=NOW + timedelta(days=1),
        )
        metrics.values["donations.completed_amount"] = 500
        activities = await ledger.evaluate_progress(USER_A, ActionType.DONATION, now=NOW)
        assert len(activities) == 2

        expired = await ledger.expire_stale(now=NOW + timedelta(days=2), batch_size=1)

        assert expired == 1
        drive_activity = await ledger.find_activity(USER_A, drive.id, drive.tasks[0].id)
        assert drive_activity.status == ActivityStatus.EXPIRED
        assert drive_activity.history[-1]["action"] == "expired"
        donor_activity = await ledger.find_activity(USER_A, super_donor.id, super_donor.tasks[0].id)
        assert donor_activity.status == ActivityStatus.IN_PROGRESS

    async def test_earned_activities_never_expire(self, db: AsyncSession, ledger: LedgerService):
        reward = await make_reward(db, name="Gala Host", points=5, ends_at=NOW + timedelta(days=1))
        await ledger.issue_manually(reward.id, USER_A, STAFF_ID, now=NOW)

        assert await ledger.expire_stale(now=NOW + timedelta(days=5)) == 0


class TestReadSide:
    async def test_history_timeline_and_categories(self, db: AsyncSession, ledger: LedgerService):
        gala = await make_reward(db, name="Gala Volunteer", category="events", points=100)
        gift = await make_reward(db, name="Annual Fund", category="giving", points=300)
        await ledger.issue_manually(gala.id, USER_A, STAFF_ID, now=datetime(2026, 1, 10))
        await ledger.issue_manually(gift.id, USER_A, STAFF_ID, now=datetime(2026, 2, 5))

        history = await ledger.get_user_activity_history(USER_A)

        assert len(history.activities) == 2
        assert [(t.month, t.points, t.count) for t in history.timeline] == [
            ("2026-01", 100, 1),
            ("2026-02", 300, 1),
        ]
        assert [(c.category, c.total_points, c.count) for c in history.categories] == [
            ("giving", 300, 1),
            ("events", 100, 1),
        ]

        windowed = await ledger.get_user_activity_history(USER_A, start=datetime(2026, 2, 1))
        assert [t.month for t in windowed.timeline] == ["2026-02"]

    async def test_summary_counts_by_status(
        self, db: AsyncSession, ledger: LedgerService, metrics: FakeMetricsClient, super_donor
    ):
        metrics.values["donations.completed_amount"] = 3000
        await ledger.evaluate_progress(USER_A, ActionType.DONATION, now=NOW)
        reward = await make_reward(db, name="Reunion Host", points=40)
        await ledger.issue_manually(reward.id, USER_A, STAFF_ID, now=NOW)

        summary = await ledger.get_user_summary(USER_A)

        assert summary.total_points == 40
        assert summary.by_status["in_progress"] == 1
        assert summary.by_status["earned"] == 1
        assert summary.by_status["redeemed"] == 0
        assert summary.pending_verifications == 0
