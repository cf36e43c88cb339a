"""
pytest helpers for Result values. Each returns what it unwrapped:

    error = ResultAssertions.assert_failure(ledger.get_record(path, "ff:ff"), ErrorCode.NOT_FOUND)
    assert error.subject == "ff:ff"
"""

from __future__ import annotations

from typing import Any, TypeVar

from railway.failure import ErrorCode, FailureDescription
from railway.result import Result

T = TypeVar("T")


def _describe(result: Result[Any]) -> str:
    if result.is_success():
        return f"Success({result.value()!r})"
    error = result.error()
    return f"Failure({error.code.value} at {error.step or '-'}: {error.message!r})"


class ResultAssertions:
    @staticmethod
    def assert_success(result: Result[T], message: str = "") -> T:
        assert result.is_success(), f"expected Success, got {_describe(result)} {message}".rstrip()
        return result.value()

    @staticmethod
    def assert_failure(
        result: Result[T],
        expected_code: ErrorCode | None = None,
        message: str = "",
    ) -> FailureDescription:
        assert result.is_failure(), f"expected Failure, got {_describe(result)} {message}".rstrip()
        error = result.error()
        if expected_code is not None:
            assert error.code is expected_code, (
                f"expected {expected_code.value}, got {_describe(result)} {message}".rstrip()
            )
        return error

    @staticmethod
    def assert_failure_message_contains(result: Result[T], substring: str) -> FailureDescription:
        """Case-insensitive."""
        error = ResultAssertions.assert_failure(result)
        assert substring.lower() in error.message.lower(), f"{substring!r} not in {error.message!r}"
        return error

    @staticmethod
    def assert_failure_at_step(result: Result[T], step: str) -> FailureDescription:
        error = ResultAssertions.assert_failure(result)
        assert error.step == step, f"expected failure at step {step!r}, got {_describe(result)}"
        return error

    @staticmethod
    def assert_success_value(result: Result[T], expected_value: Any) -> T:
        value = ResultAssertions.assert_success(result)
        assert value == expected_value, f"expected {expected_value!r}, got {value!r}"
        return value
