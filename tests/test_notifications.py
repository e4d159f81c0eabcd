"""Tests for the notification outbox and webhook dispatcher."""

import hashlib
import hmac
import json
from unittest.mock import patch

import httpx

from alumni_rewards.services.notifications import (
    BADGE_AWARDED,
    REWARD_EARNED,
    Notification,
    NotificationOutbox,
    WebhookNotificationDispatcher,
)
from tests.conftest import USER_A, USER_B, RecordingDispatcher


class TestNotificationOutbox:
    async def test_flush_dispatches_and_empties(self):
        outbox = NotificationOutbox()
        outbox.add(REWARD_EARNED, USER_A, reward_id="r1", points=50)
        outbox.add(BADGE_AWARDED, USER_B, badge_id="b1")
        dispatcher = RecordingDispatcher()

        assert await outbox.flush(dispatcher) == 2
        assert dispatcher.events == [REWARD_EARNED, BADGE_AWARDED]
        assert dispatcher.sent[0].payload == {"reward_id": "r1", "points": 50}
        assert outbox.pending == []

    async def test_dispatch_failure_is_swallowed(self):
        outbox = NotificationOutbox()
        outbox.add(REWARD_EARNED, USER_A)

        assert await outbox.flush(RecordingDispatcher(fail=True)) == 0
        assert outbox.pending == []

    def test_clear_drops_pending(self):
        outbox = NotificationOutbox()
        outbox.add(REWARD_EARNED, USER_A)
        outbox.clear()
        assert outbox.pending == []


class TestWebhookDispatcher:
    async def test_without_url_only_logs(self):
        dispatcher = WebhookNotificationDispatcher(url="", secret="s")
        with patch("alumni_rewards.services.notifications.httpx.AsyncClient") as client_cls:
            await dispatcher.dispatch(Notification(event=REWARD_EARNED, user_id=USER_A))
        client_cls.assert_not_called()

    async def test_posts_signed_payload(self):
        captured: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            captured.append(request)
            return httpx.Response(202)

        transport = httpx.MockTransport(handler)
        real_client = httpx.AsyncClient

        def client_factory(**kwargs):
            return real_client(transport=transport, **kwargs)

        dispatcher = WebhookNotificationDispatcher(url="http://hooks.test/rewards", secret="s3cret")
        notification = Notification(event=BADGE_AWARDED, user_id=USER_A, payload={"badge_id": "b1"})
        with patch("alumni_rewards.services.notifications.httpx.AsyncClient", side_effect=client_factory):
            await dispatcher.dispatch(notification)

        [request] = captured
        body = request.content
        expected = "sha256=" + hmac.new(b"s3cret", body, hashlib.sha256).hexdigest()
        assert request.headers["X-Rewards-Signature"] == expected
        assert request.headers["X-Rewards-Event"] == BADGE_AWARDED
        assert json.loads(body)["user_id"] == str(USER_A)
