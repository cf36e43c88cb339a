"""
Revocation & CRL manager: revoke serials, refresh CRLs, sweep expired certificates.

Revocation is irreversible (there is no un-revoke anywhere), so `revoke`
and `cleanup_expired` refuse to run without `confirmed=True`.

  revoke(path, serial)        idempotent; an already revoked serial is a
                              successful no-op with no backend write
  regenerate_crl(path)        CRL_UNAVAILABLE when the backend serves none,
                              which is distinct from a CRL with zero entries
  cleanup_expired(path)       Expired → revoke, Revoked → skipped,
                              Active → untouched; per-serial failures are
                              collected in the report and never stop the loop
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import replace
from datetime import datetime

import structlog
from railway import ErrorCode, FailureDescription, ResultFailures
from railway.result import Failure, Result, Success

from pki_lifecycle.domain.models import (
    CertificateRecord,
    CertificateStatus,
    CleanupReport,
    Clock,
    CRLSnapshot,
    RevocationResult,
    utc_now,
)
from pki_lifecycle.domain.ports import CryptoProvider, SigningBackend
from pki_lifecycle.ledger import CertificateLedger, derive_status

log = structlog.get_logger()


class RevocationManager:
    def __init__(
        self,
        backend: SigningBackend,
        crypto: CryptoProvider,
        ledger: CertificateLedger,
        clock: Clock = utc_now,
    ) -> None:
        self._backend = backend
        self._crypto = crypto
        self._ledger = ledger
        self._clock = clock

    # ─────────────────────── single serial ───────────────────────

    def revoke(self, path: str, serial: str, confirmed: bool = False) -> Result[RevocationResult]:
        """
        Revoke `serial` under `path`, then rotate the CRL (best effort).

        The stored record is re-read first so a second call for the same
        serial returns its original revocation time with already_revoked=True.
        """
        if not confirmed:
            return ResultFailures.confirmation_required("Revocation", f"serial {serial} under {path}")
        return self._revoke(path, serial, rotate=True)

    def _revoke(self, path: str, serial: str, rotate: bool) -> Result[RevocationResult]:
        def apply(revocation_time: int) -> Result[RevocationResult]:
            if revocation_time:
                log.info("revocation.already_revoked", path=path, serial=serial)
                return Result.success(RevocationResult(path, serial, revocation_time, already_revoked=True))
            return (
                self._backend.revoke(path, serial)
                .map(lambda revoked_at: RevocationResult(path, serial, revoked_at))
                .peek(lambda result: log.info("revocation.revoked", path=path, serial=serial, at=result.revocation_time))
                .peek(lambda _: self._rotate(path) if rotate else None)
            )

        return self._backend.read_cert(path, serial).flat_map(lambda stored: apply(stored.revocation_time))

    def _rotate(self, path: str) -> None:
        self._backend.rotate_crl(path).peek_failure(
            lambda err: log.warning("revocation.crl_rotation_failed", path=path, error=err.message)
        )

    # ─────────────────────── CRL ───────────────────────

    def regenerate_crl(self, path: str) -> Result[CRLSnapshot]:
        """
        Rotate and fetch the CRL for `path`.

        A backend without a CRL yields CRL_UNAVAILABLE whose message says how
        many revoked certificates storage holds, so "no CRL support" can be
        told apart from "nothing revoked yet".
        """
        self._rotate(path)
        return (
            self._backend.read_crl(path)
            .flat_map(lambda crl_pem: self._crypto.parse_crl(path, crl_pem))
            .map_failure(lambda err: self._diagnose(path, err) if err.code is ErrorCode.CRL_UNAVAILABLE else err)
            .peek(
                lambda crl: log.info(
                    "revocation.crl_regenerated",
                    path=path,
                    entries=len(crl.entries),
                    next_update=crl.next_update.isoformat() if crl.next_update else None,
                )
            )
            .peek_failure(lambda err: log.warning("revocation.crl_unavailable", path=path, error=err.message))
        )

    def _diagnose(self, path: str, err: FailureDescription) -> FailureDescription:
        revoked = self._ledger.list_records(path).map(lambda records: sum(1 for r in records if r.is_revoked))
        match revoked:
            case Success(0):
                detail = "no revoked certificates in storage"
            case Success(count):
                detail = f"{count} revoked certificate(s) in storage are not covered by a CRL"
            case _:
                detail = "revoked certificate count unavailable"
        return replace(err, message=f"{err.message} ({detail})")

    # ─────────────────────── bulk cleanup ───────────────────────

    def cleanup_expired(
        self,
        path: str,
        confirmed: bool = False,
        now: datetime | None = None,
    ) -> Result[CleanupReport]:
        """Revoke every Expired, not yet Revoked certificate under `path`."""
        if not confirmed:
            return ResultFailures.confirmation_required("Expired certificate cleanup", path)
        at = now or self._clock()
        log.info("revocation.cleanup_started", path=path, now=at.isoformat())
        return (
            self._ledger.iter_records(path)
            .map(lambda records: self._sweep(path, records, at))
            .peek(
                lambda report: log.info(
                    "revocation.cleanup_completed",
                    path=path,
                    revoked=report.revoked,
                    skipped=report.skipped,
                    failed=report.failed,
                )
            )
        )

    def _sweep(self, path: str, records: Iterator[Result[CertificateRecord]], now: datetime) -> CleanupReport:
        revoked = skipped = 0
        failures: list[FailureDescription] = []

        for result in records:
            match result:
                case Failure(err):
                    failures.append(_partial(path, err))
                case Success(record) if derive_status(record, now) is CertificateStatus.REVOKED:
                    skipped += 1
                case Success(record) if derive_status(record, now) is CertificateStatus.EXPIRED:
                    match self._revoke(path, record.serial_number, rotate=False):
                        case Success(outcome) if outcome.already_revoked:
                            skipped += 1
                        case Success(_):
                            revoked += 1
                        case Failure(err):
                            failures.append(_partial(path, replace(err, subject=record.serial_number)))

        if revoked:
            self._rotate(path)
        return CleanupReport(path=path, revoked=revoked, skipped=skipped, failures=tuple(failures))


def _partial(path: str, err: FailureDescription) -> FailureDescription:
    log.warning("revocation.cleanup_item_failed", path=path, serial=err.subject, error=err.message)
    return FailureDescription.create(
        ErrorCode.PARTIAL_FAILURE,
        f"serial {err.subject} under {path}: {err.message}",
        err.exception,
        subject=err.subject,
    )
