# gemini_chat/database.py
import os
from datetime import datetime, timezone
from contextlib import contextmanager
from typing import Generator, Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, declarative_base, Session
from sqlalchemy.pool import NullPool, QueuePool

from .config import settings
from .logging_config import get_logger

logger = get_logger(__name__)

# ============================================================================
# DETECT EXECUTION CONTEXT
# ============================================================================

# Worker containers export CELERY_WORKER=true before starting celery
IS_CELERY_WORKER = os.environ.get('CELERY_WORKER', 'false').lower() == 'true'
IS_SQLITE = settings.DATABASE_URL.startswith("sqlite")

# ============================================================================
# ENGINE CONFIGURATION
# ============================================================================

if IS_SQLITE:
    # Local runs and the test suite
    engine = create_engine(
        settings.DATABASE_URL,
        connect_args={"check_same_thread": False},
        echo=False,
    )
elif IS_CELERY_WORKER:
    # One short-lived connection per task; no pool shared across forks
    engine = create_engine(
        settings.DATABASE_URL,
        poolclass=NullPool,
        pool_pre_ping=True,
        echo=False,
    )
    logger.info(
        "Database engine configured for Celery worker",
        extra={"extra_data": {"pool_type": "NullPool", "pooling": False}}
    )
else:
    engine = create_engine(
        settings.DATABASE_URL,
        poolclass=QueuePool,
        pool_pre_ping=True,
        pool_size=10,
        max_overflow=5,
        pool_timeout=10,
        pool_recycle=3600,
        echo=False,
    )
    logger.info(
        "Database engine configured for API",
        extra={"extra_data": {
            "pool_type": "QueuePool",
            "pool_size": 10,
            "max_overflow": 5,
        }}
    )

if IS_SQLITE:
    @event.listens_for(engine, "connect")
    def _enable_sqlite_foreign_keys(dbapi_conn, connection_record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# BASE MODEL
# ============================================================================

Base = declarative_base()

# Import all models to ensure they're registered with Base
from .users import models as users_models  # noqa: E402,F401
from .chatrooms import models as chatrooms_models  # noqa: E402,F401


def init_models():
    Base.metadata.create_all(bind=engine)


# ============================================================================
# SESSIONS
# ============================================================================

def get_db() -> Generator[Session, None, None]:
    """
    DB session dependency for FastAPI endpoints.

    Usage:
        @router.get("/endpoint")
        def endpoint(db: Session = Depends(get_db)):
            ...
    """
    db = SessionLocal()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


@contextmanager
def session_scope() -> Iterator[Session]:
    """
    Transactional scope for code running outside a request (Celery tasks).
    Commits on success, rolls back on error, always closes.

    Usage:
        with session_scope() as db:
            db.add(record)
    """
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception as e:
        logger.error(
            "Database session error",
            extra={"extra_data": {"error": str(e)}},
            exc_info=True
        )
        db.rollback()
        raise
    finally:
        db.close()


def get_pool_status() -> dict:
    """Connection pool statistics for /health/db-pool"""
    if IS_SQLITE or IS_CELERY_WORKER:
        return {"pool_type": type(engine.pool).__name__, "pooling_enabled": False}

    pool = engine.pool
    return {
        "pool_type": "QueuePool",
        "pooling_enabled": True,
        "pool_size": pool.size(),
        "checked_out": pool.checkedout(),
        "overflow": pool.overflow(),
        "checked_in": pool.checkedin(),
        "status": "healthy" if pool.checkedout() < pool.size() else "warning"
    }
