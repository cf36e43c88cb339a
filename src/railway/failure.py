"""
What went wrong, on the failure track.

ErrorCode is the taxonomy callers branch on. FailureDescription carries
the operator-facing message together with the CA path, serial number or
common name it concerns and, for multi-step CA creation, the protocol
step that stopped the run.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import Enum, unique
from typing import Optional


@unique
class ErrorCode(Enum):
    """Failure kinds. The CA lifecycle codes come first, then the adapter codes."""

    INVALID_NAME = "INVALID_NAME"
    """Base, client, vendor or common name cannot form a path."""

    ALREADY_EXISTS = "ALREADY_EXISTS"
    """The resolved backend namespace is mounted already."""

    CROSS_SIGN_ERROR = "CROSS_SIGN_ERROR"
    """Parent CA would not sign the child CSR."""

    NOT_FOUND = "NOT_FOUND"
    CRL_UNAVAILABLE = "CRL_UNAVAILABLE"
    """No CRL served for the namespace. Reported, never fatal."""

    PARTIAL_FAILURE = "PARTIAL_FAILURE"
    PASSWORD_MISMATCH = "PASSWORD_MISMATCH"
    CONFIRMATION_REQUIRED = "CONFIRMATION_REQUIRED"
    """Revocation or cleanup called without confirmed=True."""

    VALIDATION_ERROR = "VALIDATION_ERROR"
    AUTHENTICATION_ERROR = "AUTHENTICATION_ERROR"
    EXTERNAL_SERVICE_ERROR = "EXTERNAL_SERVICE_ERROR"
    """Signing backend answered with an error status or not at all."""

    TIMEOUT_ERROR = "TIMEOUT_ERROR"
    TECHNICAL_ERROR = "TECHNICAL_ERROR"
    """Local crypto or filesystem trouble."""


@dataclass(frozen=True, slots=True)
class FailureDescription:
    """
    >>> err = FailureDescription(ErrorCode.NOT_FOUND, "no such serial", subject="1a:2b")
    >>> str(err)
    'NOT_FOUND [1a:2b]: no such serial'
    """

    code: ErrorCode
    message: str
    exception: Optional[BaseException] = field(default=None, repr=False)
    subject: Optional[str] = None
    step: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    @staticmethod
    def create(
        code: ErrorCode,
        message: str,
        exception: Optional[BaseException] = None,
        subject: Optional[str] = None,
    ) -> FailureDescription:
        return FailureDescription(code=code, message=message, exception=exception, subject=subject)

    def at_step(self, step: str) -> FailureDescription:
        """Copy naming the CA creation step that failed."""
        return replace(self, step=step, message=f"step '{step}' failed: {self.message}")

    def __str__(self) -> str:
        where = f" [{self.subject}]" if self.subject else ""
        return f"{self.code.value}{where}: {self.message}"
