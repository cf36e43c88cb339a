"""
Ports: Protocol-based interfaces for infrastructure adapters.

These define WHAT the CA lifecycle core needs (contracts) without
specifying HOW it's done (implementation). Following hexagonal architecture:

  Domain ← Ports (protocols) ← Adapters (implementations)

Each port is a Protocol (structural typing) so adapters satisfy the
contract simply by implementing the methods: no inheritance.

Three collaborators:
  1. SigningBackend  → remote authority holding CA keys (Vault PKI engine)
  2. CryptoProvider  → stateless X.509 / PKCS#12 / key-encryption functions
  3. ArtifactStore   → on-disk layout for CA certs and user credentials

Every method returns Result[T]; adapters never raise into the core.
"""

from __future__ import annotations

from pathlib import Path
from typing import Protocol, runtime_checkable

from railway.result import Result

from pki_lifecycle.domain.models import (
    BackendCertificate,
    CANaming,
    CertificateDetails,
    CRLSnapshot,
    IssuedCertificate,
    KeySpec,
    SigningRolePolicy,
    SubjectFields,
    UrlSet,
)


@runtime_checkable
class SigningBackend(Protocol):
    """
    Port: capability-scoped, path-namespaced CA store.

    Namespace operations are individually atomic at the backend; there is
    no multi-resource transaction. Mutating calls return the path (or
    identifier) they acted on so they compose with flat_map.
    """

    def enable_namespace(self, path: str, engine_type: str = "pki") -> Result[str]:
        """Mount a new PKI namespace. Collision → ALREADY_EXISTS."""
        ...

    def tune(self, path: str, max_ttl: str) -> Result[str]: ...

    def generate_root(
        self,
        path: str,
        common_name: str,
        issuer_name: str,
        key_spec: KeySpec,
        ttl: str,
    ) -> Result[str]:
        """Generate a self-signed root inside the backend; returns the certificate PEM."""
        ...

    def generate_csr(
        self,
        path: str,
        common_name: str,
        issuer_name: str,
        key_spec: KeySpec,
    ) -> Result[str]:
        """Generate a key pair inside the backend and return only its CSR PEM."""
        ...

    def cross_sign(
        self,
        parent_path: str,
        csr_pem: str,
        ttl: str,
        use_csr_values: bool = True,
    ) -> Result[str]:
        """Have the parent sign a child CSR. Policy rejection → CROSS_SIGN_ERROR."""
        ...

    def set_signed(self, path: str, certificate_pem: str) -> Result[str]: ...

    def configure_urls(self, path: str, urls: UrlSet) -> Result[str]: ...

    def list_issuers(self, path: str) -> Result[list[str]]: ...

    def set_default_issuer(self, path: str, issuer_id: str) -> Result[str]: ...

    def update_issuer_urls(self, path: str, issuer_id: str, urls: UrlSet) -> Result[str]: ...

    def create_role(self, path: str, policy: SigningRolePolicy) -> Result[str]: ...

    def read_role_max_ttl(self, path: str, role_id: str) -> Result[int]:
        """Role max TTL in seconds."""
        ...

    def read_ca_certificate(self, path: str) -> Result[str]: ...

    def issue(
        self,
        path: str,
        role_id: str,
        subject: SubjectFields,
        ttl: str,
    ) -> Result[IssuedCertificate]: ...

    def list_certs(self, path: str) -> Result[list[str]]:
        """Serial numbers stored under the namespace (empty when none)."""
        ...

    def read_cert(self, path: str, serial: str) -> Result[BackendCertificate]:
        """Unknown serial → NOT_FOUND."""
        ...

    def revoke(self, path: str, serial: str) -> Result[int]:
        """Revoke a serial; returns the revocation time in epoch seconds."""
        ...

    def rotate_crl(self, path: str) -> Result[str]: ...

    def read_crl(self, path: str) -> Result[str]:
        """Current CRL as PEM. Unsupported, disabled or empty body → CRL_UNAVAILABLE."""
        ...


@runtime_checkable
class CryptoProvider(Protocol):
    """Port: pure cryptographic helpers. No state, no I/O."""

    def parse_subject(self, certificate_pem: str) -> Result[SubjectFields]: ...

    def parse_certificate(self, certificate_pem: str) -> Result[CertificateDetails]: ...

    def encrypt_key(self, key_pem: str, password: str) -> Result[str]:
        """Return the private key re-serialized under password-based encryption."""
        ...

    def pack_pkcs12(
        self,
        certificate_pem: str,
        key_pem: str,
        friendly_name: str,
        bundle_password: str,
        key_password: str | None = None,
    ) -> Result[bytes]: ...

    def parse_crl(self, path: str, crl_pem: str) -> Result[CRLSnapshot]: ...


@runtime_checkable
class ArtifactStore(Protocol):
    """
    Port: persisted artifact layout shared with downstream operators/tools.

      ROOT_CERT/{base}/{base}_{client}_root-ca.crt
      INT_CERTS/{base}/{client}/{base}_{client}_{vendor}_int-ca.crt
      USER_CERTS/{client}/{vendor}/{cn}_cert.pem | _key.pem | _encrypted_key.pem | .p12
    """

    def root_certificate_path(self, naming: CANaming) -> Path: ...

    def intermediate_certificate_path(self, naming: CANaming) -> Path: ...

    def user_directory(self, naming: CANaming) -> Path: ...

    def write_text(self, path: Path, content: str, private: bool = False) -> Result[Path]: ...

    def write_bytes(self, path: Path, content: bytes, private: bool = False) -> Result[Path]: ...

    def read_text(self, path: Path) -> Result[str]: ...

    def exists(self, path: Path) -> bool: ...

    def remove(self, path: Path) -> Result[Path]: ...
