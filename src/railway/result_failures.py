"""
Failure factories for the CA lifecycle.

Each one puts the path, serial or common name into both the message and
FailureDescription.subject:

    return ResultFailures.not_found("Certificate", serial, path)
"""

from __future__ import annotations

from railway.failure import ErrorCode
from railway.result import Result


class ResultFailures:
    @staticmethod
    def invalid_name(field: str, value: str, reason: str) -> Result:
        return Result.failure(ErrorCode.INVALID_NAME, f"Invalid {field} {value!r}: {reason}", subject=value)

    @staticmethod
    def already_exists(path: str, exception: BaseException | None = None) -> Result:
        return Result.failure(
            ErrorCode.ALREADY_EXISTS,
            f"Namespace already exists at path: {path}",
            exception,
            subject=path,
        )

    @staticmethod
    def cross_sign_error(path: str, reason: str, exception: BaseException | None = None) -> Result:
        """The parent refused the CSR, or would refuse it."""
        return Result.failure(
            ErrorCode.CROSS_SIGN_ERROR,
            f"Cross-signing rejected for {path}: {reason}",
            exception,
            subject=path,
        )

    @staticmethod
    def not_found(resource_type: str, identifier: str, where: str | None = None) -> Result:
        location = f" under {where}" if where else ""
        return Result.failure(
            ErrorCode.NOT_FOUND,
            f"{resource_type} not found with identifier: {identifier}{location}",
            subject=identifier,
        )

    @staticmethod
    def crl_unavailable(path: str, reason: str) -> Result:
        return Result.failure(ErrorCode.CRL_UNAVAILABLE, f"CRL unavailable for {path}: {reason}", subject=path)

    @staticmethod
    def password_mismatch(subject: str) -> Result:
        return Result.failure(
            ErrorCode.PASSWORD_MISMATCH,
            f"Passwords do not match for: {subject}",
            subject=subject,
        )

    @staticmethod
    def confirmation_required(operation: str, subject: str) -> Result:
        return Result.failure(
            ErrorCode.CONFIRMATION_REQUIRED,
            f"{operation} is irreversible and requires explicit confirmation: {subject}",
            subject=subject,
        )

    @staticmethod
    def validation_error(message: str, subject: str | None = None) -> Result:
        return Result.failure(ErrorCode.VALIDATION_ERROR, message, subject=subject)
