"""
Pytest configuration and shared fixtures.

Test settings are exported before any gemini_chat import so the module-level
settings, engine and limiter are built against SQLite and in-memory backends.
"""

import os
import tempfile

_TEST_DB_DIR = tempfile.mkdtemp(prefix="gemini-chat-tests-")

os.environ["ENVIRONMENT"] = "test"
os.environ["LOG_LEVEL"] = "WARNING"
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TEST_DB_DIR, 'test.db')}"
os.environ["REDIS_URL"] = "redis://localhost:6379/15"
os.environ["CELERY_BROKER_URL"] = "memory://"
os.environ["CELERY_RESULT_BACKEND"] = "cache+memory://"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["RATE_LIMIT_STORAGE_URI"] = "memory://"
os.environ["JWT_SECRET"] = "test-jwt-secret"
os.environ["OTP_SECRET"] = "test-otp-secret"
os.environ["EXPOSE_OTP_IN_RESPONSE"] = "true"
os.environ["STRIPE_SECRET_KEY"] = "sk_test_dummy"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_secret"
os.environ["STRIPE_PRO_PRICE_ID"] = "price_test_pro"

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from gemini_chat.main import app  # noqa: E402
from gemini_chat.database import Base, SessionLocal, engine  # noqa: E402
from gemini_chat.redis_client import get_redis  # noqa: E402
from gemini_chat.chatrooms.router import get_message_queue  # noqa: E402
from gemini_chat.chatrooms.queue import MessageQueue  # noqa: E402
from gemini_chat.chatrooms.service import ChatroomService  # noqa: E402
from gemini_chat.users import service as user_service  # noqa: E402

from tests.fakes import FakeBroker, FakeRedis  # noqa: E402


@pytest.fixture
def db_tables():
    """Fresh schema for each test."""
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db(db_tables):
    session = SessionLocal()
    yield session
    session.close()


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def broker():
    return FakeBroker()


@pytest.fixture
def client(db_tables, fake_redis, broker):
    """TestClient wired to the in-memory Redis and broker doubles."""
    app.dependency_overrides[get_redis] = lambda: fake_redis
    app.dependency_overrides[get_message_queue] = lambda: MessageQueue(broker)

    # Not used as a context manager: startup would ping a real Redis
    yield TestClient(app)

    app.dependency_overrides.clear()


@pytest.fixture
def login(client):
    """Log a phone number in through the OTP flow and return auth headers."""

    def _login(phone_no: str = "+15550000001") -> dict:
        response = client.post("/auth/send-otp", json={"phone_no": phone_no})
        assert response.status_code == 200
        code = response.json()["otp"]

        response = client.post("/auth/verify-otp", json={"phone_no": phone_no, "otp": code})
        assert response.status_code == 200
        return {"Authorization": f"Bearer {response.json()['access_token']}"}

    return _login


@pytest.fixture
def make_user(db):
    def _make_user(phone_no: str = "+15550000001", is_premium: bool = False):
        user = user_service.get_or_create_by_phone(db, phone_no)
        if is_premium:
            user = user_service.update_user(db, user.id, is_premium=True)
        return user

    return _make_user


@pytest.fixture
def make_chatroom(db):
    def _make_chatroom(owner_id: int, title: str = "General"):
        return ChatroomService(db).create_chatroom(title, owner_id)

    return _make_chatroom
