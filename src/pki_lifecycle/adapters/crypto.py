"""
Crypto provider adapter: X.509 parsing, key encryption and PKCS#12 packing.

Adapter layer: implements the CryptoProvider port using cryptography (PyCA).
No state and no I/O: PEM text in, domain values (or bytes) out.

Serial numbers are rendered the way the signing backend lists them:
minimal big-endian bytes, lowercase hex, colon separated ("3a:0f:...").
That keeps CRL entries, parsed certificates and backend serial lists
directly comparable.

All exceptions are caught at this adapter boundary via Result.from_computation().
"""

from __future__ import annotations

from typing import cast

import structlog
from cryptography import x509
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.serialization import pkcs12
from cryptography.hazmat.primitives.serialization.pkcs12 import PKCS12PrivateKeyTypes
from cryptography.x509.extensions import ExtensionNotFound
from cryptography.x509.oid import NameOID
from railway import ErrorCode
from railway.result import Result

from pki_lifecycle.domain.models import (
    CertificateDetails,
    CRLSnapshot,
    RevocationEntry,
    SubjectFields,
)

log = structlog.get_logger()


# ─────────────────────── Helpers ───────────────────────


def format_serial(serial_number: int) -> str:
    """Render an integer serial in the backend's colon-separated hex form."""
    length = max(1, (serial_number.bit_length() + 7) // 8)
    return ":".join(f"{byte:02x}" for byte in serial_number.to_bytes(length, "big"))


def _first_attribute(name: x509.Name, oid: x509.ObjectIdentifier) -> str | None:
    attributes = name.get_attributes_for_oid(oid)
    if not attributes:
        return None
    return cast(str, attributes[0].value)


def _subject_fields(name: x509.Name) -> SubjectFields:
    return SubjectFields(
        common_name=_first_attribute(name, NameOID.COMMON_NAME) or "",
        organization=_first_attribute(name, NameOID.ORGANIZATION_NAME),
        organizational_unit=_first_attribute(name, NameOID.ORGANIZATIONAL_UNIT_NAME),
        email_address=_first_attribute(name, NameOID.EMAIL_ADDRESS),
        country=_first_attribute(name, NameOID.COUNTRY_NAME),
    )


def _key_usage_names(cert: x509.Certificate) -> frozenset[str]:
    """Key usage bits named as in backend role policies (DigitalSignature, ...)."""
    try:
        usage = cert.extensions.get_extension_for_class(x509.KeyUsage).value
    except ExtensionNotFound:
        return frozenset()

    flags = {
        "DigitalSignature": usage.digital_signature,
        "NonRepudiation": usage.content_commitment,
        "KeyEncipherment": usage.key_encipherment,
        "DataEncipherment": usage.data_encipherment,
        "KeyAgreement": usage.key_agreement,
        "KeyCertSign": usage.key_cert_sign,
        "CRLSign": usage.crl_sign,
    }
    # encipher_only / decipher_only are only defined when key_agreement is set
    if usage.key_agreement:
        flags["EncipherOnly"] = usage.encipher_only
        flags["DecipherOnly"] = usage.decipher_only
    return frozenset(name for name, enabled in flags.items() if enabled)


def _is_ca(cert: x509.Certificate) -> bool:
    try:
        return bool(cert.extensions.get_extension_for_class(x509.BasicConstraints).value.ca)
    except ExtensionNotFound:
        return False


def _load_private_key(key_pem: str, password: str | None) -> PKCS12PrivateKeyTypes:
    key = serialization.load_pem_private_key(
        key_pem.encode(),
        password=password.encode() if password else None,
    )
    return cast(PKCS12PrivateKeyTypes, key)


# ─────────────────────── Public Provider Class ───────────────────────


class CryptographyProvider:
    """
    Stateless crypto helpers backed by PyCA cryptography.

    Implements the CryptoProvider port.
    """

    def parse_certificate(self, certificate_pem: str) -> Result[CertificateDetails]:
        return Result.from_computation(
            lambda: self._do_parse_certificate(certificate_pem),
            ErrorCode.VALIDATION_ERROR,
            "Failed to parse X.509 certificate",
        )

    def parse_subject(self, certificate_pem: str) -> Result[SubjectFields]:
        return self.parse_certificate(certificate_pem).map(lambda details: details.subject)

    def encrypt_key(self, key_pem: str, password: str) -> Result[str]:
        """
        Re-serialize a plaintext PEM private key as encrypted PKCS#8.

        BestAvailableEncryption currently means AES-256-CBC with a
        scrypt/PBKDF2-derived key.
        """
        return Result.from_computation(
            lambda: self._do_encrypt_key(key_pem, password),
            ErrorCode.TECHNICAL_ERROR,
            "Failed to encrypt private key",
        )

    def pack_pkcs12(
        self,
        certificate_pem: str,
        key_pem: str,
        friendly_name: str,
        bundle_password: str,
        key_password: str | None = None,
    ) -> Result[bytes]:
        """
        Bundle certificate + key into a password-protected PKCS#12 blob.

        A wrong or missing key password surfaces as VALIDATION_ERROR.
        """
        return (
            Result.from_computation(
                lambda: _load_private_key(key_pem, key_password),
                ErrorCode.VALIDATION_ERROR,
                "Could not load private key (wrong or missing key password?)",
            )
            .flat_map(
                lambda key: Result.from_computation(
                    lambda: self._do_pack(certificate_pem, key, friendly_name, bundle_password),
                    ErrorCode.TECHNICAL_ERROR,
                    "Failed to build PKCS#12 bundle",
                )
            )
        )

    def parse_crl(self, path: str, crl_pem: str) -> Result[CRLSnapshot]:
        return Result.from_computation(
            lambda: self._do_parse_crl(path, crl_pem),
            ErrorCode.VALIDATION_ERROR,
            "Failed to parse CRL",
            subject=path,
        )

    # ─────────────────── internals (may raise) ───────────────────

    def _do_parse_certificate(self, certificate_pem: str) -> CertificateDetails:
        cert = x509.load_pem_x509_certificate(certificate_pem.encode())
        issuer_cn = _first_attribute(cert.issuer, NameOID.COMMON_NAME)
        return CertificateDetails(
            serial_number=format_serial(cert.serial_number),
            subject=_subject_fields(cert.subject),
            issuer_common_name=issuer_cn or cert.issuer.rfc4514_string(),
            not_before=cert.not_valid_before_utc,
            not_after=cert.not_valid_after_utc,
            key_usage=_key_usage_names(cert),
            is_ca=_is_ca(cert),
        )

    def _do_encrypt_key(self, key_pem: str, password: str) -> str:
        key = serialization.load_pem_private_key(key_pem.encode(), password=None)
        encrypted = key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.BestAvailableEncryption(password.encode()),
        )
        return encrypted.decode()

    def _do_pack(
        self,
        certificate_pem: str,
        key: PKCS12PrivateKeyTypes,
        friendly_name: str,
        bundle_password: str,
    ) -> bytes:
        cert = x509.load_pem_x509_certificate(certificate_pem.encode())
        return pkcs12.serialize_key_and_certificates(
            name=friendly_name.encode(),
            key=key,
            cert=cert,
            cas=None,
            encryption_algorithm=serialization.BestAvailableEncryption(bundle_password.encode()),
        )

    def _do_parse_crl(self, path: str, crl_pem: str) -> CRLSnapshot:
        crl = x509.load_pem_x509_crl(crl_pem.encode())
        entries = tuple(
            RevocationEntry(
                serial_number=format_serial(revoked.serial_number),
                revocation_time=revoked.revocation_date_utc,
            )
            for revoked in crl
        )
        log.debug("crl.parsed", path=path, entries=len(entries))
        return CRLSnapshot(
            path=path,
            crl_pem=crl_pem,
            entries=entries,
            last_update=crl.last_update_utc,
            next_update=crl.next_update_utc,
        )
