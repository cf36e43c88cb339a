"""
LoggingExecutionContext: runs a Result-returning job with timing logs.

The CRL refresh job runs inside one so each scheduled run leaves a
start/finish event pair with the elapsed time:

    ctx = LoggingExecutionContext(operation="CrlRefresh")
    result = ctx.execute(lambda: revocation.regenerate_crl(path))

An exception escaping the job becomes a TECHNICAL_ERROR failure, which
keeps the scheduler thread alive.
"""

from __future__ import annotations

import time
from typing import Callable, TypeVar

import structlog

from railway.failure import ErrorCode, FailureDescription
from railway.result import Failure, Result

T = TypeVar("T")
log = structlog.get_logger()


class LoggingExecutionContext:
    def __init__(self, operation: str = "unknown") -> None:
        self._operation = operation

    def execute(self, computation: Callable[[], Result[T]]) -> Result[T]:
        log.info("execution.started", operation=self._operation)
        start = time.monotonic()

        try:
            result = computation()
        except Exception as e:
            log.error(
                "execution.crashed",
                operation=self._operation,
                elapsed_s=round(time.monotonic() - start, 3),
                error=str(e),
            )
            return Failure(FailureDescription(ErrorCode.TECHNICAL_ERROR, f"Execution failed: {e}", e))

        log.info(
            "execution.finished",
            operation=self._operation,
            elapsed_s=round(time.monotonic() - start, 3),
            outcome="success" if result.is_success() else "failure",
        )
        return result
