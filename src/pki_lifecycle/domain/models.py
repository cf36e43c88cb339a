"""
Domain models: immutable data structures for the CA hierarchy and its certificates.

These are pure value objects. They describe CA nodes (Root / Intermediate),
the certificates those nodes issued, exported credentials, CRL snapshots and
the reports produced by revocation runs.

Status of a certificate is deliberately NOT a field: it is always derived
from `revocation_time` and `not_after` at the moment of the query (see
`pki_lifecycle.ledger.derive_status`).

All models are frozen dataclasses (immutable). Private key material is
excluded from repr so it cannot leak through logs or tracebacks.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import TypeAlias

from railway import FailureDescription

Clock: TypeAlias = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(UTC)


class Tier(Enum):
    """CA tier; the value is the suffix used in the backend namespace path."""

    ROOT = "ROOT"
    INTERMEDIATE = "INT"


class CertificateStatus(Enum):
    ACTIVE = "Active"
    EXPIRED = "Expired"
    REVOKED = "Revoked"


@dataclass(frozen=True, slots=True)
class CANaming:
    """
    Explicit naming configuration for one logical CA.

    Threaded through every operation instead of ambient defaults.
    `vendor` is only required for intermediate CAs and user certificates.
    """

    base: str
    client: str
    vendor: str | None = None


@dataclass(frozen=True, slots=True)
class KeySpec:
    key_type: str = "rsa"
    key_bits: int = 4096


@dataclass(frozen=True, slots=True)
class UrlSet:
    """Public AIA/CRL/OCSP endpoints embedded in certificates a node issues."""

    issuing: str
    crl: str
    ocsp: str


@dataclass(frozen=True, slots=True)
class SigningRolePolicy:
    """
    Policy installed on a CA node governing what it may issue.

    `options` holds the remaining backend role switches
    (allow_any_name, enforce_hostnames, ...).
    """

    role_id: str
    max_ttl: str
    key_usage: tuple[str, ...]
    ext_key_usage_oids: tuple[str, ...] = ()
    options: dict[str, bool] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class CANode:
    """One CA instance (Root or Intermediate) in the trust hierarchy."""

    path: str
    tier: Tier
    issuer_name: str
    common_name: str
    max_ttl: str
    parent_path: str | None
    urls: UrlSet
    signing_role: SigningRolePolicy


@dataclass(frozen=True, slots=True)
class CACertificate:
    """Outcome of a successful CA creation protocol."""

    node: CANode
    certificate_pem: str = field(repr=False)
    issuer_id: str | None = None
    artifact_path: Path | None = None


@dataclass(frozen=True, slots=True)
class SubjectFields:
    """Subject attributes of a leaf certificate request. CN is mandatory."""

    common_name: str
    organization: str | None = None
    organizational_unit: str | None = None
    email_address: str | None = None
    country: str | None = None


@dataclass(frozen=True, slots=True)
class BackendCertificate:
    """A certificate as the signing backend stores it: PEM plus revocation time."""

    serial_number: str
    certificate_pem: str = field(repr=False)
    revocation_time: int = 0


@dataclass(frozen=True, slots=True)
class IssuedCertificate:
    """
    Raw issuance output returned once by the backend.

    The backend never returns the private key again; whoever receives this
    object is responsible for persisting it (CredentialExportManager).
    """

    serial_number: str
    certificate_pem: str = field(repr=False)
    private_key_pem: str = field(repr=False)
    expiration: datetime
    issuing_ca_pem: str = field(default="", repr=False)


@dataclass(frozen=True, slots=True)
class CertificateDetails:
    """Fields parsed out of an X.509 certificate by the crypto provider."""

    serial_number: str
    subject: SubjectFields
    issuer_common_name: str
    not_before: datetime
    not_after: datetime
    key_usage: frozenset[str] = frozenset()
    is_ca: bool = False


@dataclass(frozen=True, slots=True)
class CertificateRecord:
    """
    One issued leaf or CA certificate as seen by the ledger.

    `revocation_time` is epoch seconds; 0 means not revoked.
    """

    serial_number: str
    subject_common_name: str
    issuer_path: str
    not_before: datetime
    not_after: datetime
    revocation_time: int = 0
    key_usage: frozenset[str] = frozenset()
    has_encrypted_key: bool = False

    @property
    def is_revoked(self) -> bool:
        return self.revocation_time > 0

    @property
    def revoked_at(self) -> datetime | None:
        if not self.is_revoked:
            return None
        return datetime.fromtimestamp(self.revocation_time, UTC)


@dataclass(frozen=True, slots=True)
class CredentialBundle:
    """
    Files persisted for one leaf certificate, addressed by common name.

    `warning` is set whenever the key ended up on disk unencrypted although
    a password was offered (mismatch or encryption failure).
    """

    common_name: str
    certificate_path: Path
    key_path: Path
    key_encrypted: bool
    warning: str | None = None
    password_mismatch: bool = False


@dataclass(frozen=True, slots=True)
class RevocationEntry:
    serial_number: str
    revocation_time: datetime


@dataclass(frozen=True, slots=True)
class CRLSnapshot:
    """Derived view of one node's revocation list; authoritative state stays in the backend."""

    path: str
    crl_pem: str = field(repr=False)
    entries: tuple[RevocationEntry, ...] = ()
    last_update: datetime | None = None
    next_update: datetime | None = None

    @property
    def is_empty(self) -> bool:
        return not self.entries


@dataclass(frozen=True, slots=True)
class RevocationResult:
    path: str
    serial_number: str
    revocation_time: int
    already_revoked: bool = False


@dataclass(frozen=True, slots=True)
class CleanupReport:
    """Outcome of a bulk expired-certificate revocation run."""

    path: str
    revoked: int = 0
    skipped: int = 0
    failures: tuple[FailureDescription, ...] = ()

    @property
    def failed(self) -> int:
        return len(self.failures)

    @property
    def is_partial_failure(self) -> bool:
        return bool(self.failures)
