"""
Tests for the free-tier daily message quota.

Tests cover:
- 4 messages today: accepted; 5 messages today: rejected
- Yesterday's messages and bot replies do not count
- Messages the broker never accepted do not count
- Premium users are never limited
- Unresolved user is an authorization error
- 429 through the API after five sends
"""

from datetime import datetime, timedelta, timezone

import pytest

from gemini_chat.chatrooms.models import MessageAuthor, ReplyStatus
from gemini_chat.chatrooms.service import ChatroomService
from gemini_chat.error_handlers import ErrorCode, QuotaExceededException, UnauthorizedException
from gemini_chat.rate_limit import DailyMessageQuota, local_midnight
from gemini_chat.users import service as user_service

from tests.fakes import StaticModel, drain

NOW = datetime(2026, 3, 10, 15, 30, tzinfo=timezone.utc)


@pytest.fixture
def today():
    return local_midnight(NOW) + timedelta(minutes=1)


def add_messages(db, room_id, count, sent_at, who=MessageAuthor.USER, reply_status=ReplyStatus.PENDING):
    service = ChatroomService(db)
    for i in range(count):
        service.create_message(
            who=who,
            content=f"message {i}",
            room_id=room_id,
            sent_at=sent_at,
            reply_status=reply_status if who == MessageAuthor.USER else None,
        )


class TestDailyMessageQuota:

    def test_four_messages_allowed(self, db, make_user, make_chatroom, today):
        user = make_user()
        room = make_chatroom(user.id)
        add_messages(db, room.id, 4, today)

        decision = DailyMessageQuota(db, limit=5, clock=lambda: NOW).allow(user)

        assert decision.allowed is True
        assert decision.used == 4

    def test_five_messages_rejected(self, db, make_user, make_chatroom, today):
        user = make_user()
        room = make_chatroom(user.id)
        add_messages(db, room.id, 5, today)

        decision = DailyMessageQuota(db, limit=5, clock=lambda: NOW).allow(user)

        assert decision.allowed is False
        assert decision.reason == "daily_limit_reached"
        assert decision.used == 5

    def test_count_spans_all_chatrooms(self, db, make_user, make_chatroom, today):
        user = make_user()
        add_messages(db, make_chatroom(user.id, "one").id, 3, today)
        add_messages(db, make_chatroom(user.id, "two").id, 2, today)

        assert DailyMessageQuota(db, limit=5, clock=lambda: NOW).allow(user).allowed is False

    def test_yesterday_not_counted(self, db, make_user, make_chatroom):
        user = make_user()
        room = make_chatroom(user.id)
        add_messages(db, room.id, 5, local_midnight(NOW) - timedelta(minutes=1))

        assert DailyMessageQuota(db, limit=5, clock=lambda: NOW).allow(user).allowed is True

    def test_bot_replies_not_counted(self, db, make_user, make_chatroom, today):
        user = make_user()
        room = make_chatroom(user.id)
        add_messages(db, room.id, 4, today)
        add_messages(db, room.id, 4, today, who=MessageAuthor.BOT)

        assert DailyMessageQuota(db, limit=5, clock=lambda: NOW).allow(user).allowed is True

    def test_unqueued_messages_not_counted(self, db, make_user, make_chatroom, today):
        user = make_user()
        room = make_chatroom(user.id)
        add_messages(db, room.id, 5, today, reply_status=ReplyStatus.NOT_QUEUED)

        assert DailyMessageQuota(db, limit=5, clock=lambda: NOW).allow(user).allowed is True

    def test_other_users_messages_not_counted(self, db, make_user, make_chatroom, today):
        user = make_user("+15550000001")
        other = make_user("+15550000002")
        add_messages(db, make_chatroom(other.id).id, 5, today)

        assert DailyMessageQuota(db, limit=5, clock=lambda: NOW).allow(user).allowed is True

    def test_premium_never_limited(self, db, make_user, make_chatroom, today):
        user = make_user(is_premium=True)
        room = make_chatroom(user.id)
        add_messages(db, room.id, 50, today)

        assert DailyMessageQuota(db, limit=5, clock=lambda: NOW).allow(user).allowed is True

    def test_missing_user(self, db):
        with pytest.raises(UnauthorizedException):
            DailyMessageQuota(db, limit=5, clock=lambda: NOW).allow(None)

    def test_enforce_raises(self, db, make_user, make_chatroom, today):
        user = make_user()
        room = make_chatroom(user.id)
        add_messages(db, room.id, 5, today)

        with pytest.raises(QuotaExceededException) as exc_info:
            DailyMessageQuota(db, limit=5, clock=lambda: NOW).enforce(user)

        assert exc_info.value.status_code == 429
        assert exc_info.value.details == {"limit": 5, "used": 5}


class TestQuotaThroughAPI:

    def test_sixth_message_rejected(self, client, login, broker):
        headers = login()
        room_id = client.post("/chatroom", json={"title": "Daily"}, headers=headers).json()["id"]

        for i in range(5):
            response = client.post(f"/chatroom/{room_id}/message", json={"content": f"msg {i}"}, headers=headers)
            assert response.status_code == 202

        response = client.post(f"/chatroom/{room_id}/message", json={"content": "one too many"}, headers=headers)

        assert response.status_code == 429
        assert response.json()["error"]["code"] == ErrorCode.DAILY_QUOTA_EXCEEDED
        assert len(broker.sent) == 5

    def test_rejected_message_not_stored(self, client, login):
        headers = login()
        room_id = client.post("/chatroom", json={"title": "Daily"}, headers=headers).json()["id"]
        for i in range(6):
            client.post(f"/chatroom/{room_id}/message", json={"content": f"msg {i}"}, headers=headers)

        messages = client.get(f"/chatroom/{room_id}", headers=headers).json()["messages"]
        assert [m["content"] for m in messages] == [f"msg {i}" for i in range(5)]

    def test_bot_replies_do_not_use_quota(self, client, login, broker):
        headers = login()
        room_id = client.post("/chatroom", json={"title": "Daily"}, headers=headers).json()["id"]

        for i in range(5):
            response = client.post(f"/chatroom/{room_id}/message", json={"content": f"msg {i}"}, headers=headers)
            assert response.status_code == 202
            drain(broker, StaticModel())

        messages = client.get(f"/chatroom/{room_id}", headers=headers).json()["messages"]
        assert len(messages) == 10

    def test_premium_user_unlimited(self, client, login, db):
        headers = login()
        user_id = client.get("/auth/me", headers=headers).json()["id"]
        user_service.update_user(db, user_id, is_premium=True)

        room_id = client.post("/chatroom", json={"title": "Pro"}, headers=headers).json()["id"]
        for i in range(8):
            response = client.post(f"/chatroom/{room_id}/message", json={"content": f"msg {i}"}, headers=headers)
            assert response.status_code == 202
