"""
Credential export manager: persist leaf key material and package it as PKCS#12.

The backend returns a leaf private key exactly once, at issuance, so these
files are the only copy. They live under USER_CERTS/{client}/{vendor}/ and
are addressed by common name (spaces → underscores), not by serial:

  {cn}_cert.pem           certificate
  {cn}_key.pem            plaintext private key
  {cn}_encrypted_key.pem  password-encrypted private key (PKCS#8)
  {cn}.p12                PKCS#12 bundle

At most one of the two key files exists at a time: whichever form is
written last removes the other.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import structlog
from railway import ResultFailures
from railway.result import Result

from pki_lifecycle.domain.hierarchy import naming_from_path
from pki_lifecycle.domain.models import CANaming, CredentialBundle
from pki_lifecycle.domain.ports import ArtifactStore, CryptoProvider

log = structlog.get_logger()

_FORBIDDEN_NAME_PARTS = ("/", "\\", "..", "\x00")


@dataclass(frozen=True, slots=True)
class _CredentialPaths:
    certificate: Path
    key: Path
    encrypted_key: Path
    pkcs12: Path


def file_stem(common_name: str) -> str:
    return common_name.strip().replace(" ", "_")


def validate_common_name(common_name: str) -> Result[str]:
    """Common names become file names; anything that could escape the user directory is refused."""
    if not common_name or not common_name.strip():
        return ResultFailures.invalid_name("common name", common_name or "", "must not be empty")
    for part in _FORBIDDEN_NAME_PARTS:
        if part in common_name:
            return ResultFailures.invalid_name("common name", common_name, f"must not contain {part!r}")
    return Result.success(common_name.strip())


class CredentialExportManager:
    """
    Store and export user credentials for one (client, vendor) pair.

    Passwords are only ever passed to the crypto provider; they are never
    written to disk nor bound to log events.
    """

    def __init__(self, artifacts: ArtifactStore, crypto: CryptoProvider, naming: CANaming) -> None:
        self._artifacts = artifacts
        self._crypto = crypto
        self._naming = naming

    @property
    def directory(self) -> Path:
        return self._artifacts.user_directory(self._naming)

    def for_naming(self, naming: CANaming) -> CredentialExportManager:
        return CredentialExportManager(self._artifacts, self._crypto, naming)

    def for_issuer(self, issuer_path: str) -> Result[CredentialExportManager]:
        """Manager for USER_CERTS/{client}/{vendor}/ of the CA at `issuer_path`."""
        return naming_from_path(issuer_path).map(self.for_naming)

    def persist_credential(
        self,
        common_name: str,
        certificate_pem: str,
        key_pem: str,
        password: str | None = None,
        password_confirmation: str | None = None,
    ) -> Result[CredentialBundle]:
        """
        Write the certificate and private key (both mode 0600).

        With a non-empty, confirmed password the key is stored encrypted and
        the plaintext form removed. A mismatched confirmation, or an
        encryption failure, leaves the key in plaintext and sets `warning`;
        neither is a failure of this call.
        """
        return validate_common_name(common_name).flat_map(
            lambda cn: self._write_certificate(cn, certificate_pem).flat_map(
                lambda paths: self._write_key(cn, paths, key_pem, password, password_confirmation)
            )
        )

    def _write_certificate(self, common_name: str, certificate_pem: str) -> Result[_CredentialPaths]:
        paths = self._paths(common_name)
        return self._artifacts.write_text(paths.certificate, certificate_pem, private=True).map(lambda _: paths)

    def _write_key(
        self,
        common_name: str,
        paths: _CredentialPaths,
        key_pem: str,
        password: str | None,
        password_confirmation: str | None,
    ) -> Result[CredentialBundle]:
        if not password:
            return self._store_plaintext(common_name, paths, key_pem, warning=None)

        if password != password_confirmation:
            warning = ResultFailures.password_mismatch(common_name).error().message
            log.warning("credential.password_mismatch", common_name=common_name)
            return self._store_plaintext(common_name, paths, key_pem, warning, password_mismatch=True)

        return self._crypto.encrypt_key(key_pem, password).either(
            lambda encrypted_pem: self._store_encrypted(common_name, paths, encrypted_pem),
            lambda err: self._store_plaintext(
                common_name,
                paths,
                key_pem,
                warning=f"Key encryption failed for {common_name} ({err.message}); private key stored unencrypted",
            ),
        )

    def _store_plaintext(
        self,
        common_name: str,
        paths: _CredentialPaths,
        key_pem: str,
        warning: str | None,
        password_mismatch: bool = False,
    ) -> Result[CredentialBundle]:
        return (
            self._artifacts.write_text(paths.key, key_pem, private=True)
            .flat_map(lambda _: self._artifacts.remove(paths.encrypted_key))
            .map(
                lambda _: CredentialBundle(
                    common_name=common_name,
                    certificate_path=paths.certificate,
                    key_path=paths.key,
                    key_encrypted=False,
                    warning=warning,
                    password_mismatch=password_mismatch,
                )
            )
            .peek(
                lambda bundle: log.info(
                    "credential.persisted",
                    common_name=common_name,
                    encrypted=False,
                    warning=bundle.warning is not None,
                )
            )
        )

    def _store_encrypted(
        self,
        common_name: str,
        paths: _CredentialPaths,
        encrypted_pem: str,
    ) -> Result[CredentialBundle]:
        return (
            self._artifacts.write_text(paths.encrypted_key, encrypted_pem, private=True)
            .flat_map(lambda _: self._artifacts.remove(paths.key))
            .map(
                lambda _: CredentialBundle(
                    common_name=common_name,
                    certificate_path=paths.certificate,
                    key_path=paths.encrypted_key,
                    key_encrypted=True,
                )
            )
            .peek(lambda _: log.info("credential.persisted", common_name=common_name, encrypted=True))
        )

    # ─────────────────────── PKCS#12 ───────────────────────

    def export_pkcs12(
        self,
        common_name: str,
        bundle_password: str,
        bundle_password_confirmation: str,
        key_password: str | None = None,
    ) -> Result[Path]:
        """
        Package certificate + key as `{cn}.p12` (mode 0600).

        The encrypted key is preferred over the plaintext one and then
        needs `key_password`. A bundle password that does not match its
        confirmation is a hard PASSWORD_MISMATCH failure here.
        """
        return validate_common_name(common_name).flat_map(
            lambda cn: self._export(cn, bundle_password, bundle_password_confirmation, key_password)
        )

    def _export(
        self,
        common_name: str,
        bundle_password: str,
        bundle_password_confirmation: str,
        key_password: str | None,
    ) -> Result[Path]:
        if not bundle_password:
            return ResultFailures.validation_error("Bundle password must not be empty", subject=common_name)
        if bundle_password != bundle_password_confirmation:
            return ResultFailures.password_mismatch(common_name)

        paths = self._paths(common_name)
        if not self._artifacts.exists(paths.certificate):
            return ResultFailures.not_found("Certificate", common_name, str(self.directory))

        if self._artifacts.exists(paths.encrypted_key):
            if not key_password:
                return ResultFailures.validation_error(
                    f"Private key for {common_name} is encrypted; a key password is required",
                    subject=common_name,
                )
            key_path, password = paths.encrypted_key, key_password
        elif self._artifacts.exists(paths.key):
            key_path, password = paths.key, None
        else:
            return ResultFailures.not_found("Private key", common_name, str(self.directory))

        return (
            Result.combine(
                self._artifacts.read_text(paths.certificate),
                self._artifacts.read_text(key_path),
                lambda cert_pem, key_pem: (cert_pem, key_pem),
            )
            .flat_map(
                lambda pems: self._crypto.pack_pkcs12(
                    pems[0],
                    pems[1],
                    f"{common_name} Digital Signature",
                    bundle_password,
                    password,
                )
            )
            .flat_map(lambda pfx: self._artifacts.write_bytes(paths.pkcs12, pfx, private=True))
            .peek(lambda written: log.info("credential.pkcs12_exported", common_name=common_name, path=str(written)))
        )

    def has_encrypted_key(self, common_name: str) -> bool:
        return validate_common_name(common_name).either(
            lambda cn: self._artifacts.exists(self._paths(cn).encrypted_key),
            lambda _: False,
        )

    def has_encrypted_key_under(self, issuer_path: str, common_name: str) -> bool:
        """Key locator for the ledger: looks in the user directory of `issuer_path`."""
        return self.for_issuer(issuer_path).either(
            lambda manager: manager.has_encrypted_key(common_name),
            lambda _: False,
        )

    def _paths(self, common_name: str) -> _CredentialPaths:
        stem = file_stem(common_name)
        directory = self.directory
        return _CredentialPaths(
            certificate=directory / f"{stem}_cert.pem",
            key=directory / f"{stem}_key.pem",
            encrypted_key=directory / f"{stem}_encrypted_key.pem",
            pkcs12=directory / f"{stem}.p12",
        )
