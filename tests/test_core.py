"""Tests for configuration, error translation, Sentry filtering and caller context."""

import json
import uuid

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError
from starlette.requests import Request

from alumni_rewards.core.config import Settings
from alumni_rewards.core.errors import (
    CapacityExceededError,
    ConflictError,
    NotFoundError,
    TransientError,
    ledger_exception_handler,
    translate_storage_errors,
)
from alumni_rewards.core.sentry import _before_send, init_sentry
from alumni_rewards.schemas.auth import Actor


def _request(headers: dict[str, str] | None = None) -> Request:
    raw = [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()]
    return Request(
        {
            "type": "http",
            "method": "POST",
            "path": "/v1/rewards/actions",
            "root_path": "",
            "query_string": b"",
            "headers": raw,
        }
    )


# ── Settings ────────────────────────────────────────────────────────────────


class TestSettings:
    def test_tier_defaults(self):
        s = Settings(_env_file=None)
        assert (s.TIER_SILVER_MIN, s.TIER_GOLD_MIN, s.TIER_PLATINUM_MIN) == (500, 1500, 5000)

    def test_production_refuses_sqlite(self):
        with pytest.raises(SystemExit):
            Settings(_env_file=None, APP_ENV="production", DATABASE_URL="sqlite+aiosqlite:///x.db")


# ── Storage error translation ───────────────────────────────────────────────


class TestTranslateStorageErrors:
    async def test_operational_error_becomes_transient(self):
        with pytest.raises(TransientError):
            async with translate_storage_errors():
                raise OperationalError("SELECT 1", {}, Exception("connection refused"))

    async def test_integrity_error_passes_through(self):
        with pytest.raises(IntegrityError):
            async with translate_storage_errors():
                raise IntegrityError("INSERT", {}, Exception("duplicate key"))


# ── HTTP envelope ───────────────────────────────────────────────────────────


class TestLedgerExceptionHandler:
    @pytest.mark.parametrize(
        ("exc", "status_code", "code"),
        [
            (NotFoundError("Reward not found"), 404, "not_found"),
            (ConflictError("Already verified"), 409, "conflict"),
            (CapacityExceededError("No slots"), 409, "capacity_exceeded"),
            (TransientError("Storage temporarily unavailable"), 503, "transient_error"),
        ],
    )
    async def test_envelope(self, exc, status_code: int, code: str):
        resp = await ledger_exception_handler(_request({"X-Request-Id": "req-1"}), exc)
        body = json.loads(resp.body)
        assert resp.status_code == status_code
        assert body["error"] == code
        assert body["request_id"] == "req-1"

    async def test_transient_sets_retry_after(self):
        resp = await ledger_exception_handler(_request(), TransientError("down"))
        assert resp.headers["Retry-After"] == "5"

    async def test_detail_carries_context(self):
        resp = await ledger_exception_handler(
            _request(), ConflictError("Badge already held", badge_id="b-1")
        )
        assert json.loads(resp.body)["detail"] == {"badge_id": "b-1"}


# ── Sentry filtering ────────────────────────────────────────────────────────


class TestSentryFilter:
    def test_expected_outcomes_are_dropped(self):
        exc = ConflictError("Already verified")
        assert _before_send({}, {"exc_info": (type(exc), exc, None)}) is None

    def test_transient_errors_are_reported(self):
        exc = TransientError("down")
        event = {"request": {"headers": {}}}
        assert _before_send(event, {"exc_info": (type(exc), exc, None)}) is event

    def test_identity_headers_are_redacted(self):
        event = {
            "request": {
                "headers": {
                    "X-User-Id": str(uuid.uuid4()),
                    "X-Api-Key": "secret",
                    "X-Tenant-Id": "tenant",
                }
            }
        }
        headers = _before_send(event, {})["request"]["headers"]
        assert headers["X-User-Id"] == "[REDACTED]"
        assert headers["X-Api-Key"] == "[REDACTED]"
        assert headers["X-Tenant-Id"] == "tenant"

    def test_init_without_dsn_is_disabled(self):
        assert init_sentry(None) is False
        assert init_sentry("", component="worker") is False


# ── Caller context ──────────────────────────────────────────────────────────


@pytest.mark.parametrize(
    ("role", "is_staff"),
    [("staff", True), ("admin", True), ("alumni", False), ("student", False)],
)
def test_actor_staff_roles(role: str, is_staff: bool) -> None:
    assert Actor(user_id=uuid.uuid4(), role=role).is_staff is is_staff
