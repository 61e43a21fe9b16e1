"""
Tests for the reply worker, the job queue and the Celery tasks.

Tests cover:
- Success and fallback outcomes, each stored as exactly one bot message
- Redelivered jobs are skipped without calling the model
- Concurrent duplicate replies are rejected by the unique constraint
- Stalled replies are settled by the sweep
- process_message / sweep_stalled_replies run through Task.apply()
- MessageJob payloads and job keys
"""

from datetime import datetime, timedelta, timezone

import pytest

from gemini_chat.chatrooms import tasks
from gemini_chat.chatrooms.models import Message, MessageAuthor, ReplyStatus
from gemini_chat.chatrooms.queue import MessageJob, MessageQueue, make_job_key
from gemini_chat.chatrooms.service import ChatroomService
from gemini_chat.chatrooms.worker import FALLBACK_REPLY, JobResult, ReplyOutcome, ReplyWorker
from gemini_chat.database import session_scope, utcnow
from gemini_chat.error_handlers import ErrorCode, ExternalServiceException

from tests.fakes import FailingModel, FakeBroker, StaticModel


@pytest.fixture
def room(make_user, make_chatroom):
    return make_chatroom(make_user().id)


@pytest.fixture
def queued_job(db, room):
    """A user message as the API leaves it: stored, pending, job built."""

    def _queued_job(content="hello", sent_at=None):
        job = MessageJob(chatroom_id=room.id, content=content, enqueued_at=sent_at or utcnow())
        ChatroomService(db).create_message(
            who=MessageAuthor.USER,
            content=content,
            room_id=room.id,
            sent_at=sent_at,
            job_key=job.job_key,
            reply_status=ReplyStatus.PENDING,
        )
        return job

    return _queued_job


def messages_in(db, room_id):
    db.expire_all()
    return ChatroomService(db).list_messages(room_id)


class TestReplyWorker:

    def test_success(self, db, room, queued_job):
        job = queued_job("hello")
        model = StaticModel("hi there")

        result = ReplyWorker(session_scope, model).process(job)

        assert result == JobResult.ANSWERED
        messages = messages_in(db, room.id)
        assert [(m.who, m.content) for m in messages] == [("user", "hello"), ("bot", "hi there")]
        assert messages[0].reply_status == ReplyStatus.ANSWERED
        assert messages[1].job_key == job.job_key

    def test_model_error_stores_fallback(self, db, room, queued_job):
        job = queued_job()

        result = ReplyWorker(session_scope, FailingModel()).process(job)

        assert result == JobResult.FALLBACK
        messages = messages_in(db, room.id)
        assert len(messages) == 2
        assert messages[1].who == MessageAuthor.BOT
        assert messages[1].content == FALLBACK_REPLY
        assert messages[0].reply_status == ReplyStatus.FALLBACK

    @pytest.mark.parametrize("error", [TimeoutError("read timed out"), ValueError("malformed response")])
    def test_any_model_exception_stores_fallback(self, db, room, queued_job, error):
        job = queued_job()

        assert ReplyWorker(session_scope, FailingModel(error)).process(job) == JobResult.FALLBACK
        assert messages_in(db, room.id)[1].content == FALLBACK_REPLY

    def test_redelivered_job_skipped(self, db, room, queued_job):
        job = queued_job()
        model = StaticModel()
        worker = ReplyWorker(session_scope, model)

        assert worker.process(job) == JobResult.ANSWERED
        assert worker.process(job) == JobResult.DUPLICATE

        assert len(model.prompts) == 1
        assert len(messages_in(db, room.id)) == 2

    def test_concurrent_duplicate_rejected(self, db, room, queued_job):
        job = queued_job()
        worker = ReplyWorker(session_scope, StaticModel())

        first = worker.persist(job, ReplyOutcome.success("first"))
        second = worker.persist(job, ReplyOutcome.success("second"))

        assert first is not None
        assert second is None
        bot_messages = [m for m in messages_in(db, room.id) if m.who == MessageAuthor.BOT]
        assert [m.content for m in bot_messages] == ["first"]

    def test_outcome_status(self):
        assert ReplyOutcome.success("hi").reply_status == ReplyStatus.ANSWERED
        assert ReplyOutcome.fallback("boom").reply_status == ReplyStatus.FALLBACK
        assert ReplyOutcome.fallback("boom").content == FALLBACK_REPLY


class TestStalledReplySweep:

    def test_settles_old_pending_messages(self, db, room, queued_job):
        queued_job("lost", sent_at=utcnow() - timedelta(minutes=20))

        settled = ReplyWorker(session_scope, model=None).sweep_stalled(timedelta(minutes=10))

        assert settled == 1
        messages = messages_in(db, room.id)
        assert [(m.who, m.content) for m in messages] == [("user", "lost"), ("bot", FALLBACK_REPLY)]
        assert messages[0].reply_status == ReplyStatus.STALLED

    def test_ignores_recent_and_answered(self, db, room, queued_job):
        queued_job("fresh")
        answered = queued_job("done", sent_at=utcnow() - timedelta(minutes=20))
        ReplyWorker(session_scope, StaticModel()).process(answered)

        assert ReplyWorker(session_scope, model=None).sweep_stalled(timedelta(minutes=10)) == 0

    def test_sweep_is_idempotent(self, db, room, queued_job):
        queued_job("lost", sent_at=utcnow() - timedelta(minutes=20))
        worker = ReplyWorker(session_scope, model=None)

        assert worker.sweep_stalled(timedelta(minutes=10)) == 1
        assert worker.sweep_stalled(timedelta(minutes=10)) == 0

    def test_late_worker_after_sweep_is_duplicate(self, db, room, queued_job):
        job = queued_job("lost", sent_at=utcnow() - timedelta(minutes=20))
        ReplyWorker(session_scope, model=None).sweep_stalled(timedelta(minutes=10))

        model = StaticModel()
        assert ReplyWorker(session_scope, model).process(job) == JobResult.DUPLICATE
        assert model.prompts == []


class TestCeleryTasks:

    def test_process_message_task(self, db, room, queued_job, monkeypatch):
        job = queued_job("hello")
        monkeypatch.setattr(tasks, "get_model_client", lambda: StaticModel("hi there"))

        result = tasks.process_message.apply(kwargs=job.to_payload())

        assert result.get() == JobResult.ANSWERED.value
        assert messages_in(db, room.id)[1].content == "hi there"

    def test_process_message_task_fallback(self, db, room, queued_job, monkeypatch):
        job = queued_job("hello")
        monkeypatch.setattr(tasks, "get_model_client", lambda: FailingModel())

        result = tasks.process_message.apply(kwargs=job.to_payload())

        assert result.successful()
        assert result.get() == JobResult.FALLBACK.value
        assert messages_in(db, room.id)[1].content == FALLBACK_REPLY

    def test_sweep_task(self, db, room, queued_job):
        queued_job("lost", sent_at=utcnow() - timedelta(hours=1))

        result = tasks.sweep_stalled_replies.apply()

        assert result.get() == 1


class TestMessageQueue:

    def test_enqueue_publishes_payload(self):
        broker = FakeBroker()
        job = MessageJob(chatroom_id=7, content="hello")

        MessageQueue(broker, queue_name="replies").enqueue(job)

        assert broker.sent == [{"name": "process_message", "kwargs": job.to_payload(), "queue": "replies"}]

    def test_broker_failure(self):
        broker = FakeBroker()
        broker.fail = True

        with pytest.raises(ExternalServiceException) as exc_info:
            MessageQueue(broker).enqueue(MessageJob(chatroom_id=7, content="hello"))

        assert exc_info.value.status_code == 503
        assert exc_info.value.error_code == ErrorCode.BROKER_ERROR

    def test_payload_round_trip_keeps_key(self):
        job = MessageJob(chatroom_id=7, content="hello", enqueued_at=datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc))
        assert MessageJob.from_payload(job.to_payload()) == job

    def test_job_key_depends_on_time_and_content(self):
        at = datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
        key = make_job_key(7, "hello", at)

        assert key == MessageJob(chatroom_id=7, content="hello", enqueued_at=at).job_key
        assert key != make_job_key(7, "hello", at + timedelta(microseconds=1))
        assert key != make_job_key(7, "hello!", at)
        assert key != make_job_key(8, "hello", at)


def test_bot_message_has_no_reply_status(db, room, queued_job):
    ReplyWorker(session_scope, StaticModel()).process(queued_job())
    bot = db.query(Message).filter(Message.who == MessageAuthor.BOT).one()
    assert bot.reply_status is None
