"""
Request orchestration helpers shared by every imagery endpoint.

Each request gets one request id. Every log line emitted while the
operation runs carries it, and every failure surfaces with it.
"""

import time
import traceback
from contextlib import contextmanager

from product_imagery.core.exceptions import ImageryError
from product_imagery.core.logging import LogContext, get_logger

logger = get_logger(__name__)


def elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


@contextmanager
def operation_scope(operation: str, request_id: str):
    """
    Bind ``request_id`` and ``operation`` to the log context and report
    the outcome of the enclosed block.

    Unexpected exceptions are re-raised as ImageryError so the error
    response still names the request and the failing operation.
    """
    start = time.monotonic()
    with LogContext(request_id=request_id, stage=operation):
        logger.info("operation_started", operation=operation)
        try:
            yield
        except ImageryError as e:
            e.request_id = e.request_id or request_id
            e.stage = e.stage or operation
            log = logger.warning if e.code < 500 else logger.error
            log(
                "operation_failed",
                operation=operation,
                duration_ms=elapsed_ms(start),
                error=e.message,
                error_type=type(e).__name__,
                code=e.code
            )
            raise
        except Exception as e:
            logger.error(
                "operation_failed",
                operation=operation,
                duration_ms=elapsed_ms(start),
                error=str(e),
                error_type=type(e).__name__,
                traceback=traceback.format_exc()
            )
            raise ImageryError(
                f"Unexpected error during {operation}: {e}",
                request_id=request_id,
                stage=operation
            ) from e

        logger.info("operation_completed", operation=operation, duration_ms=elapsed_ms(start))
