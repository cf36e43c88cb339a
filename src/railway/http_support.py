"""
Result → HTTP response for the ASGI front end.

Failures become a JSON ErrorResponse with the status from HttpStatusMapper;
ALREADY_EXISTS and CROSS_SIGN_ERROR are conflicts (409), a missing
confirmation is 428 and backend trouble surfaces as 502/504.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, TypeVar

from fastapi.responses import JSONResponse

from railway.failure import ErrorCode, FailureDescription
from railway.result import Result

T = TypeVar("T")


class HttpStatusMapper:
    _STATUS: dict[ErrorCode, int] = {
        ErrorCode.INVALID_NAME: 400,
        ErrorCode.VALIDATION_ERROR: 400,
        ErrorCode.PASSWORD_MISMATCH: 400,
        ErrorCode.AUTHENTICATION_ERROR: 401,
        ErrorCode.NOT_FOUND: 404,
        ErrorCode.CRL_UNAVAILABLE: 404,
        ErrorCode.ALREADY_EXISTS: 409,
        ErrorCode.CROSS_SIGN_ERROR: 409,
        ErrorCode.CONFIRMATION_REQUIRED: 428,
        ErrorCode.EXTERNAL_SERVICE_ERROR: 502,
        ErrorCode.TIMEOUT_ERROR: 504,
    }

    @classmethod
    def map_error_code(cls, code: ErrorCode) -> int:
        """Anything unlisted is a 500."""
        return cls._STATUS.get(code, 500)

    @classmethod
    def map_failure(cls, failure: FailureDescription) -> int:
        return cls.map_error_code(failure.code)


@dataclass(frozen=True, slots=True)
class ErrorResponse:
    """
    Body of every non-2xx response:

        {"error_code": "ALREADY_EXISTS", "message": "step 'enable-namespace' failed: ...",
         "subject": "jimsnet_abc_ROOT", "step": "enable-namespace", "timestamp": "..."}
    """

    error_code: str
    message: str
    subject: str | None
    step: str | None
    timestamp: str

    @staticmethod
    def from_failure(failure: FailureDescription) -> ErrorResponse:
        return ErrorResponse(
            error_code=failure.code.value,
            message=failure.message,
            subject=failure.subject,
            step=failure.step,
            timestamp=failure.timestamp.isoformat(),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def build_response(result: Result[T], success_status: int = 200) -> tuple[Any, int]:
    """(body, status) for a Result whose success value is already JSON-ready."""
    return result.either(
        on_success=lambda value: (value, success_status),
        on_failure=lambda error: (ErrorResponse.from_failure(error).to_dict(), HttpStatusMapper.map_failure(error)),
    )


def build_fastapi_response(result: Result[T], success_status: int = 200) -> JSONResponse:
    body, status = build_response(result, success_status)
    return JSONResponse(content=body, status_code=status)
