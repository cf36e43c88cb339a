"""
Railway-oriented error handling for pki-lifecycle.

Services return Result[T]; a failure carries an ErrorCode plus the
path, serial or common name it concerns:

    from railway import ErrorCode, Result

    def require_vendor(vendor: str | None) -> Result[str]:
        if not vendor:
            return Result.failure(ErrorCode.INVALID_NAME, "vendor is required")
        return Result.success(vendor)
"""

from railway.assertions import ResultAssertions
from railway.execution import LoggingExecutionContext
from railway.failure import ErrorCode, FailureDescription
from railway.result import Failure, Result, Success
from railway.result_failures import ResultFailures

__all__ = [
    "ErrorCode",
    "Failure",
    "FailureDescription",
    "LoggingExecutionContext",
    "Result",
    "ResultAssertions",
    "ResultFailures",
    "Success",
]
