"""Shared test fixtures for the rewards ledger test suite."""

import os

os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("DATABASE_URL_SYNC", "sqlite:///:memory:")

import uuid
from collections.abc import AsyncGenerator
from datetime import datetime

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from alumni_rewards.core.database import Base, get_db
from alumni_rewards.main import app
from alumni_rewards.models.badges import Badge
from alumni_rewards.models.enums import ActionType, BadgeCriteriaType, MetricKind, RewardType
from alumni_rewards.models.rewards import Reward, RewardTask
from alumni_rewards.modules.ledger.service import LedgerService
from alumni_rewards.modules.metrics.client import get_metrics_client
from alumni_rewards.schemas.auth import MemberContext
from alumni_rewards.services.identity import get_identity_provider
from alumni_rewards.services.notifications import Notification, get_notification_dispatcher

# ── Sample identities ─────────────────────────────────────────────────────────

TENANT_ID = uuid.UUID("00000000-0000-00AA-0000-000000000001")
OTHER_TENANT_ID = uuid.UUID("00000000-0000-00AA-0000-000000000002")
USER_A = uuid.UUID("00000000-0000-00AA-0000-00000000000a")
USER_B = uuid.UUID("00000000-0000-00AA-0000-00000000000b")
USER_C = uuid.UUID("00000000-0000-00AA-0000-00000000000c")
STAFF_ID = uuid.UUID("00000000-0000-00AA-0000-0000000000ff")

NOW = datetime(2026, 3, 15, 12, 0, 0)


# ── Collaborator fakes ────────────────────────────────────────────────────────


class FakeMetricsClient:
    """In-memory domain metrics; keys listed in `failing` raise."""

    def __init__(self, values: dict[str, float] | None = None, failing: set[str] | None = None):
        self.values = dict(values or {})
        self.failing = set(failing or ())
        self.calls: list[tuple[str, uuid.UUID, uuid.UUID | None]] = []

    async def get_value(self, key: str, user_id: uuid.UUID, tenant_id: uuid.UUID | None) -> float:
        self.calls.append((key, user_id, tenant_id))
        if key in self.failing:
            raise RuntimeError(f"metrics backend down for {key}")
        return self.values.get(key, 0)


class FakeIdentityProvider:
    def __init__(self, members: dict[uuid.UUID, MemberContext] | None = None):
        self.members = dict(members or {})

    async def get_member(self, user_id: uuid.UUID) -> MemberContext | None:
        return self.members.get(user_id)


class RecordingDispatcher:
    def __init__(self, fail: bool = False):
        self.sent: list[Notification] = []
        self.fail = fail

    async def dispatch(self, notification: Notification) -> None:
        if self.fail:
            raise RuntimeError("webhook unreachable")
        self.sent.append(notification)

    @property
    def events(self) -> list[str]:
        return [n.event for n in self.sent]


# ── Database ──────────────────────────────────────────────────────────────────


@pytest.fixture
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine]:
    """Per-test SQLite file database with working SAVEPOINTs."""
    test_engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'rewards.db'}",
        poolclass=NullPool,
    )

    # pysqlite's own transaction handling breaks SAVEPOINT; emit BEGIN ourselves
    @event.listens_for(test_engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, _record):
        dbapi_connection.isolation_level = None

    @event.listens_for(test_engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncSession]:
    async with session_factory() as session:
        yield session


# ── Collaborators ─────────────────────────────────────────────────────────────


@pytest.fixture
def metrics() -> FakeMetricsClient:
    return FakeMetricsClient()


@pytest.fixture
def identity() -> FakeIdentityProvider:
    return FakeIdentityProvider(
        {
            USER_A: MemberContext(
                user_id=USER_A,
                tenant_id=TENANT_ID,
                role="alumni",
                department="Engineering",
                graduation_year=2015,
                program="BSc Computer Science",
                display_name="Ada Alumna",
                email="ada@example.edu",
            ),
            USER_B: MemberContext(
                user_id=USER_B,
                tenant_id=TENANT_ID,
                role="alumni",
                department="Business",
                graduation_year=2010,
                program="MBA",
                display_name="Bo Graduate",
                email="bo@example.edu",
            ),
        }
    )


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture
def ledger(db: AsyncSession, metrics: FakeMetricsClient, identity: FakeIdentityProvider) -> LedgerService:
    return LedgerService(db, tenant_id=TENANT_ID, metrics_client=metrics, identity=identity)


# ── Sample catalog ────────────────────────────────────────────────────────────


async def make_reward(
    db: AsyncSession,
    name: str = "Super Donor",
    tasks: list[RewardTask] | None = None,
    **fields,
) -> Reward:
    fields.setdefault("tenant_id", TENANT_ID)
    fields.setdefault("reward_type", RewardType.POINTS)
    fields.setdefault("category", "giving")
    fields.setdefault("eligibility", {})
    reward = Reward(name=name, tasks=tasks or [], **fields)
    db.add(reward)
    await db.flush()
    return reward


def donation_task(**fields) -> RewardTask:
    values = {
        "title": "Donate $10,000",
        "action_type": ActionType.DONATION,
        "metric": MetricKind.AMOUNT,
        "target_value": 10000,
        "points": 50,
        "requires_verification": False,
        "display_order": 0,
    }
    values.update(fields)
    return RewardTask(**values)


async def make_badge(db: AsyncSession, name: str = "Founding Member", **fields) -> Badge:
    fields.setdefault("criteria_type", BadgeCriteriaType.MANUAL)
    fields.setdefault("current_recipients", 0)
    badge = Badge(name=name, **fields)
    db.add(badge)
    await db.flush()
    return badge


@pytest.fixture
async def super_donor(db: AsyncSession) -> Reward:
    return await make_reward(db, tasks=[donation_task()])


# ── HTTP client ───────────────────────────────────────────────────────────────


def gateway_headers(
    user_id: uuid.UUID = USER_A,
    role: str = "alumni",
    tenant_id: uuid.UUID | None = TENANT_ID,
) -> dict[str, str]:
    headers = {"X-User-Id": str(user_id), "X-User-Role": role}
    if tenant_id:
        headers["X-Tenant-Id"] = str(tenant_id)
    return headers


@pytest.fixture
async def client(
    db: AsyncSession,
    metrics: FakeMetricsClient,
    identity: FakeIdentityProvider,
    dispatcher: RecordingDispatcher,
) -> AsyncGenerator[AsyncClient]:
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_metrics_client] = lambda: metrics
    app.dependency_overrides[get_identity_provider] = lambda: identity
    app.dependency_overrides[get_notification_dispatcher] = lambda: dispatcher
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
