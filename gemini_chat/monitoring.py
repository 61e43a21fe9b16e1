# gemini_chat/monitoring.py
"""
Timing helpers for slow external calls (Gemini, broker, cache).
"""

import time
from contextlib import contextmanager

from .logging_config import get_logger

logger = get_logger(__name__)

SLOW_OPERATION_MS = 2000


@contextmanager
def track_operation(operation_name: str, **context_data):
    """
    Log duration and outcome of a block

    Usage:
        with track_operation("gemini_generate", chatroom_id=42):
            text = model.generate(content)
    """
    start_time = time.time()

    try:
        yield
    except Exception as e:
        execution_time = (time.time() - start_time) * 1000
        logger.error(
            f"Operation failed: {operation_name}",
            extra={
                "extra_data": {
                    "operation": operation_name,
                    "execution_time_ms": int(execution_time),
                    "status": "failed",
                    "error": str(e),
                    **context_data
                }
            }
        )
        raise

    execution_time = (time.time() - start_time) * 1000
    logger.info(
        f"Operation completed: {operation_name}",
        extra={
            "extra_data": {
                "operation": operation_name,
                "execution_time_ms": int(execution_time),
                "status": "success",
                **context_data
            }
        }
    )

    if execution_time > SLOW_OPERATION_MS:
        logger.warning(
            f"Slow operation detected: {operation_name}",
            extra={
                "extra_data": {
                    "operation": operation_name,
                    "execution_time_ms": int(execution_time),
                    "threshold_exceeded": True,
                    **context_data
                }
            }
        )
