"""
Result: a value on the success track or a FailureDescription on the failure track.

Backend calls, crypto operations and filesystem writes all hand back a
Result instead of raising. A CA creation protocol is then a chain of
flat_map calls in which the first failing step decides the outcome:

    enable ──ok──▶ tune ──ok──▶ generate ──ok──▶ ... ──▶ Success(CACertificate)
      │              │             │
      └──────────────┴─────────────┴────────────────────▶ Failure(step, code, subject)

Success and Failure support structural pattern matching:

    match ledger.get_record(path, serial):
        case Success(record): ...
        case Failure(err) if err.code is ErrorCode.NOT_FOUND: ...
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Generic, TypeVar

from railway.failure import ErrorCode, FailureDescription

T = TypeVar("T")
U = TypeVar("U")
A = TypeVar("A")
B = TypeVar("B")
R = TypeVar("R")


class Result(Generic[T]):
    """Base of Success and Failure. Never instantiated directly."""

    def is_success(self) -> bool:
        return isinstance(self, Success)

    def is_failure(self) -> bool:
        return isinstance(self, Failure)

    def value(self) -> T:
        """The success value; ValueError on a Failure. Tests and known-good paths only."""
        if isinstance(self, Success):
            return self._value
        raise ValueError(f"Result is a failure: {self.error().message}")

    def error(self) -> FailureDescription:
        if isinstance(self, Failure):
            return self._error
        raise ValueError(f"Result is a success: {self.value()!r}")

    # ─────────────────────── chaining ───────────────────────

    def map(self, mapper: Callable[[T], U]) -> Result[U]:
        if isinstance(self, Success):
            return Success(mapper(self._value))
        return self  # type: ignore[return-value]

    def flat_map(self, mapper: Callable[[T], Result[U]]) -> Result[U]:
        """
        Run the next railway segment on success; pass a failure through untouched.

            backend.enable_namespace(path).flat_map(lambda _: backend.tune(path, ttl))
        """
        if isinstance(self, Success):
            return mapper(self._value)
        return self  # type: ignore[return-value]

    def map_failure(self, mapper: Callable[[FailureDescription], FailureDescription]) -> Result[T]:
        """
        Rewrite the failure description, e.g. to tag the protocol step:

            result.map_failure(lambda err: err.at_step("cross-sign"))
        """
        if isinstance(self, Failure):
            return Failure(mapper(self._error))
        return self

    def ensure(
        self,
        predicate: Callable[[T], bool],
        code: ErrorCode,
        message: str,
    ) -> Result[T]:
        """Turn a success that fails `predicate` into a failure with `code`."""
        return self.flat_map(
            lambda v: Result.success(v) if predicate(v) else Result.failure(code, message)
        )

    def recover_if(self, code: ErrorCode, recovery: Callable[[FailureDescription], T]) -> Result[T]:
        """
        Move a failure with exactly `code` back onto the success track.

            backend.list_certs(path).recover_if(ErrorCode.NOT_FOUND, lambda _: [])
        """
        if isinstance(self, Failure) and self._error.code is code:
            return Success(recovery(self._error))
        return self

    # ─────────────────────── side effects and exits ───────────────────────

    def peek(self, action: Callable[[T], Any]) -> Result[T]:
        if isinstance(self, Success):
            action(self._value)
        return self

    def peek_failure(self, action: Callable[[FailureDescription], Any]) -> Result[T]:
        if isinstance(self, Failure):
            action(self._error)
        return self

    def either(
        self,
        on_success: Callable[[T], R],
        on_failure: Callable[[FailureDescription], R],
    ) -> R:
        if isinstance(self, Success):
            return on_success(self._value)
        return on_failure(self.error())

    def get_or_else(self, default: T) -> T:
        return self._value if isinstance(self, Success) else default

    # ─────────────────────── constructors ───────────────────────

    @staticmethod
    def success(value: T) -> Result[T]:
        return Success(value)

    @staticmethod
    def failure(
        code: ErrorCode,
        message: str,
        exception: BaseException | None = None,
        subject: str | None = None,
    ) -> Result[Any]:
        return Failure(FailureDescription(code=code, message=message, exception=exception, subject=subject))

    @staticmethod
    def failure_from(error: FailureDescription) -> Result[Any]:
        return Failure(error)

    @staticmethod
    def from_computation(
        computation: Callable[[], T],
        code: ErrorCode,
        message: str,
        subject: str | None = None,
    ) -> Result[T]:
        """
        Run code that may raise (a library call, a file write) at an adapter boundary.

            Result.from_computation(
                lambda: x509.load_pem_x509_crl(pem.encode()),
                ErrorCode.VALIDATION_ERROR,
                "Failed to parse CRL",
                subject=path,
            )
        """
        try:
            return Success(computation())
        except Exception as e:
            return Result.failure(code, f"{message}: {e}", e, subject)

    @staticmethod
    def combine(ra: Result[A], rb: Result[B], combiner: Callable[[A, B], R]) -> Result[R]:
        """Both must succeed; the first failure wins."""
        return ra.flat_map(lambda a: rb.map(lambda b: combiner(a, b)))

    @staticmethod
    def all_of(results: list[Result[T]]) -> Result[list[T]]:
        """Collect successes in order; the first failure wins."""
        values: list[T] = []
        for result in results:
            if isinstance(result, Failure):
                return result  # type: ignore[return-value]
            values.append(result.value())
        return Success(values)

    def __bool__(self) -> bool:
        return self.is_success()


@dataclass(frozen=True, slots=True, eq=False)
class Success(Result[T]):
    _value: T

    def __init__(self, value: T) -> None:
        if value is None:
            raise TypeError("Success value must not be None")
        object.__setattr__(self, "_value", value)

    def __eq__(self, other: object) -> bool:
        return isinstance(other, Success) and self._value == other._value

    def __hash__(self) -> int:
        return hash(("Success", self._value))

    def __repr__(self) -> str:
        return f"Success({self._value!r})"


@dataclass(frozen=True, slots=True, eq=False)
class Failure(Result[T]):
    _error: FailureDescription

    def __init__(self, error: FailureDescription) -> None:
        if error is None:
            raise TypeError("Failure error must not be None")
        object.__setattr__(self, "_error", error)

    def __eq__(self, other: object) -> bool:
        """Failures compare by code and message; timestamps and exceptions are ignored."""
        return (
            isinstance(other, Failure)
            and self._error.code is other._error.code
            and self._error.message == other._error.message
        )

    def __hash__(self) -> int:
        return hash(("Failure", self._error.code, self._error.message))

    def __repr__(self) -> str:
        return f"Failure({self._error.code.value}: {self._error.message!r})"


Success.__match_args__ = ("_value",)
Failure.__match_args__ = ("_error",)
