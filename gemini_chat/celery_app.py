# gemini_chat/celery_app.py

from celery import Celery
from celery.signals import task_prerun, task_postrun, task_failure, worker_process_init, setup_logging as celery_setup_logging

from .config import settings
from .logging_config import get_logger, setup_logging

logger = get_logger(__name__)

celery_app = Celery(
    "gemini_chat",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=[
        "gemini_chat.chatrooms.tasks",
    ]
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,

    task_default_queue=settings.MESSAGE_QUEUE_NAME,

    # At-least-once: ack only after the task body returns, redeliver if the worker dies
    task_acks_late=True,
    task_reject_on_worker_lost=True,

    # Backstop for the Gemini HTTP timeout; the soft limit lands in the fallback path
    task_soft_time_limit=settings.GEMINI_TIMEOUT_SECONDS + 15,
    task_time_limit=settings.GEMINI_TIMEOUT_SECONDS + 30,

    broker_connection_retry_on_startup=True,
    # Publishing must fail fast so the API can answer 503 instead of hanging
    task_publish_retry_policy={"max_retries": 3, "interval_start": 0, "interval_step": 0.5, "interval_max": 1},

    # Replies are stored in Postgres; task results are only for debugging
    task_ignore_result=True,
    result_expires=3600,

    worker_prefetch_multiplier=1,
    worker_max_tasks_per_child=500,

    beat_schedule={
        "sweep-stalled-replies": {
            "task": "sweep_stalled_replies",
            "schedule": float(settings.STALL_SWEEP_INTERVAL_SECONDS),
        },
    },
)


@celery_setup_logging.connect
def configure_worker_logging(**kwargs):
    """Use the app's formatters instead of Celery's own logging setup"""
    setup_logging()


@worker_process_init.connect
def reset_db_pool(**kwargs):
    """Forked children must not reuse the parent's pooled connections"""
    from .database import engine
    engine.dispose(close=False)


@task_prerun.connect
def task_prerun_handler(sender=None, task_id=None, task=None, args=None, kwargs=None, **extra):
    logger.info(f"Task started: {task.name} [ID: {task_id}]")


@task_postrun.connect
def task_postrun_handler(sender=None, task_id=None, task=None, args=None, kwargs=None, retval=None, state=None, **extra):
    logger.info(f"Task completed: {task.name} [ID: {task_id}] State: {state}")


@task_failure.connect
def task_failure_handler(sender=None, task_id=None, exception=None, args=None, kwargs=None, traceback=None, **extra):
    logger.error(f"Task failed: {sender.name} [ID: {task_id}] Error: {exception}")
