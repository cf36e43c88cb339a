"""
Certificate ledger: read-only projections over the backend's certificate store.

The signing backend is the only authority: nothing is cached and every
call re-queries it, so a revocation or expiry is never missed.

Status is derived on read with a fixed precedence:

  revocation_time != 0   → Revoked   (even when also past not_after)
  now > not_after        → Expired
  otherwise              → Active

Search is a case-insensitive substring match on the subject CN, done by
walking every serial (O(n) backend reads per call).
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from dataclasses import replace
from datetime import datetime
from typing import TypeAlias

import structlog
from railway.result import Failure, Result, Success

from pki_lifecycle.domain.models import (
    BackendCertificate,
    CertificateDetails,
    CertificateRecord,
    CertificateStatus,
    Clock,
    utc_now,
)
from pki_lifecycle.domain.ports import CryptoProvider, SigningBackend

KeyLocator: TypeAlias = Callable[[str, str], bool]

log = structlog.get_logger()


def derive_status(record: CertificateRecord, now: datetime) -> CertificateStatus:
    if record.is_revoked:
        return CertificateStatus.REVOKED
    if now > record.not_after:
        return CertificateStatus.EXPIRED
    return CertificateStatus.ACTIVE


class CertificateLedger:
    """
    Query certificates stored under a CA namespace.

    `key_locator(issuer_path, common_name)` answers "is an encrypted key on
    disk for this common name?" and fills CertificateRecord.has_encrypted_key; without one the
    flag stays False.
    """

    def __init__(
        self,
        backend: SigningBackend,
        crypto: CryptoProvider,
        key_locator: KeyLocator | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self._backend = backend
        self._crypto = crypto
        self._key_locator = key_locator
        self._clock = clock

    def list_serials(self, path: str) -> Result[Iterator[str]]:
        """Serials currently stored under `path`; each call re-lists from the backend."""
        return self._backend.list_certs(path).map(lambda serials: (serial for serial in serials))

    def get_record(self, path: str, serial: str) -> Result[CertificateRecord]:
        """NOT_FOUND when the backend does not know `serial`."""
        return self._backend.read_cert(path, serial).flat_map(
            lambda stored: self._crypto.parse_certificate(stored.certificate_pem).map(
                lambda details: self._to_record(path, stored, details)
            )
        )

    def iter_records(self, path: str) -> Result[Iterator[Result[CertificateRecord]]]:
        """Lazily read one record per serial; a failed read is yielded, not raised."""
        return self.list_serials(path).map(
            lambda serials: (self._read_tagged(path, serial) for serial in serials)
        )

    def list_records(self, path: str) -> Result[list[CertificateRecord]]:
        return self.iter_records(path).map(lambda records: list(self._readable(path, records)))

    def search(self, path: str, pattern: str) -> Result[list[CertificateRecord]]:
        needle = pattern.casefold()
        return (
            self.iter_records(path)
            .map(
                lambda records: [
                    record
                    for record in self._readable(path, records)
                    if needle in record.subject_common_name.casefold()
                ]
            )
            .peek(lambda found: log.info("ledger.search_completed", path=path, pattern=pattern, matches=len(found)))
        )

    def status(
        self,
        path: str,
        serial: str,
        now: datetime | None = None,
    ) -> Result[tuple[CertificateRecord, CertificateStatus]]:
        at = now or self._clock()
        return self.get_record(path, serial).map(lambda record: (record, derive_status(record, at)))

    def _read_tagged(self, path: str, serial: str) -> Result[CertificateRecord]:
        return self.get_record(path, serial).map_failure(
            lambda err: err if err.subject == serial else replace(err, subject=serial)
        )

    def _readable(self, path: str, records: Iterator[Result[CertificateRecord]]) -> Iterator[CertificateRecord]:
        """Drop unreadable serials with a warning; one bad record never aborts a scan."""
        for result in records:
            match result:
                case Success(record):
                    yield record
                case Failure(err):
                    log.warning("ledger.record_skipped", path=path, serial=err.subject, error=err.message)

    def _to_record(
        self,
        path: str,
        stored: BackendCertificate,
        details: CertificateDetails,
    ) -> CertificateRecord:
        common_name = details.subject.common_name
        return CertificateRecord(
            serial_number=stored.serial_number,
            subject_common_name=common_name,
            issuer_path=path,
            not_before=details.not_before,
            not_after=details.not_after,
            revocation_time=stored.revocation_time,
            key_usage=details.key_usage,
            has_encrypted_key=bool(self._key_locator and self._key_locator(path, common_name)),
        )
