"""
Issuance engine: the multi-step CA creation protocols and leaf issuance.

Domain layer: orchestration only. All I/O goes through the injected ports
and every stage is chained with flat_map, so the first failing step
short-circuits the rest:

  Root CA:
    enable-namespace → tune → generate-root → configure-urls
      → create-role (intermediate-signer) → persist-certificate

  Intermediate CA:
    check-parent → enable-namespace → tune → generate-csr → cross-sign
      → set-signed → configure-urls → set-default-issuer
      → create-role (digital_signing) → persist-certificate

The signing backend has no multi-resource transaction, so nothing is rolled
back. A failure carries FailureDescription.step and the path involved; the
operator resumes or cleans up from there.
"""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import TypeVar

import structlog
from railway import ErrorCode, FailureDescription, ResultFailures
from railway.result import Result

from pki_lifecycle.domain.hierarchy import (
    INTERMEDIATE_SIGNER_ROLE,
    LEAF_MAX_TTL,
    check_child_ttl,
    intermediate_node,
    parse_ttl,
    root_node,
)
from pki_lifecycle.domain.models import (
    CACertificate,
    CANaming,
    CANode,
    CertificateRecord,
    Clock,
    IssuedCertificate,
    KeySpec,
    SubjectFields,
    utc_now,
)
from pki_lifecycle.domain.ports import ArtifactStore, CryptoProvider, SigningBackend

T = TypeVar("T")

log = structlog.get_logger()


def _at_step(step: str, result: Result[T]) -> Result[T]:
    return result.map_failure(lambda err: err.at_step(step))


def _log_failure(event: str, path: str) -> Callable[[FailureDescription], None]:
    def emit(err: FailureDescription) -> None:
        log.error(event, path=path, step=err.step, code=err.code.value, error=err.message)

    return emit


class IssuanceEngine:
    """Creates CA nodes in the signing backend and issues leaf certificates from them."""

    def __init__(
        self,
        backend: SigningBackend,
        crypto: CryptoProvider,
        artifacts: ArtifactStore,
        public_addr: str,
        leaf_max_ttl: str = LEAF_MAX_TTL,
        clock: Clock = utc_now,
    ) -> None:
        self._backend = backend
        self._crypto = crypto
        self._artifacts = artifacts
        self._public_addr = public_addr
        self._leaf_max_ttl = leaf_max_ttl
        self._clock = clock

    # ─────────────────────── Root CA ───────────────────────

    def create_root_ca(self, naming: CANaming, ttl: str, key_spec: KeySpec = KeySpec()) -> Result[CACertificate]:
        """
        Create a self-signed root at {base}_{client}_ROOT.

        Names and the derived child TTL are validated before the first
        backend call; a namespace collision fails with ALREADY_EXISTS.
        """
        return root_node(naming, ttl, self._public_addr).flat_map(
            lambda node: self._provision_root(naming, node, key_spec)
        )

    def _provision_root(self, naming: CANaming, node: CANode, key_spec: KeySpec) -> Result[CACertificate]:
        path = node.path
        backend = self._backend
        log.info("ca.root_creating", path=path, ttl=node.max_ttl, key_type=key_spec.key_type)

        return (
            _at_step("enable-namespace", backend.enable_namespace(path))
            .flat_map(lambda _: _at_step("tune", backend.tune(path, node.max_ttl)))
            .flat_map(
                lambda _: _at_step(
                    "generate-root",
                    backend.generate_root(path, node.common_name, node.issuer_name, key_spec, node.max_ttl),
                )
            )
            .flat_map(
                lambda cert_pem: _at_step("configure-urls", backend.configure_urls(path, node.urls)).map(
                    lambda _: cert_pem
                )
            )
            .flat_map(
                lambda cert_pem: _at_step("create-role", backend.create_role(path, node.signing_role)).map(
                    lambda _: cert_pem
                )
            )
            .flat_map(
                lambda cert_pem: self._persist(node, cert_pem, self._artifacts.root_certificate_path(naming), None)
            )
            .peek(
                lambda ca: log.info(
                    "ca.root_created",
                    path=path,
                    artifact=str(ca.artifact_path),
                    child_max_ttl=node.signing_role.max_ttl,
                )
            )
            .peek_failure(_log_failure("ca.root_failed", path))
        )

    # ─────────────────────── Intermediate CA ───────────────────────

    def create_intermediate_ca(
        self,
        parent_path: str,
        naming: CANaming,
        ttl: str,
        key_spec: KeySpec = KeySpec(),
    ) -> Result[CACertificate]:
        """
        Create {base}_{client}_{vendor}_INT, cross-signed by `parent_path`.

        The parent must exist and be unexpired, and `ttl` must fit within
        both the parent's signing-role cap and its remaining validity;
        otherwise nothing is created. The CSR lives only in memory for the
        duration of this call.
        """
        return intermediate_node(parent_path, naming, ttl, self._public_addr, self._leaf_max_ttl).flat_map(
            lambda node: _at_step("check-parent", self._check_parent(node)).flat_map(
                lambda _: self._provision_intermediate(naming, node, key_spec)
            )
        )

    def _check_parent(self, node: CANode) -> Result[CANode]:
        parent_path = node.parent_path or ""
        cap = self._backend.read_role_max_ttl(parent_path, INTERMEDIATE_SIGNER_ROLE).recover_if(
            ErrorCode.NOT_FOUND, lambda _: 0
        )
        return (
            self._backend.read_ca_certificate(parent_path)
            .map_failure(
                lambda err: ResultFailures.not_found("Parent CA", parent_path).error()
                if err.code is ErrorCode.NOT_FOUND
                else err
            )
            .flat_map(self._crypto.parse_certificate)
            .flat_map(
                lambda parent: cap.flat_map(
                    lambda cap_seconds: check_child_ttl(
                        node.path, node.max_ttl, cap_seconds, parent.not_after, self._clock()
                    )
                )
            )
            .map(lambda _: node)
        )

    def _provision_intermediate(self, naming: CANaming, node: CANode, key_spec: KeySpec) -> Result[CACertificate]:
        path = node.path
        parent_path = node.parent_path or ""
        backend = self._backend
        log.info("ca.intermediate_creating", path=path, parent=parent_path, ttl=node.max_ttl)

        def signed_certificate() -> Result[str]:
            # the CSR is never persisted; it goes out of scope with this frame
            csr = backend.generate_csr(path, node.common_name, node.issuer_name, key_spec)
            return _at_step("generate-csr", csr).flat_map(
                lambda csr_pem: _at_step(
                    "cross-sign", backend.cross_sign(parent_path, csr_pem, node.max_ttl, use_csr_values=True)
                )
            )

        return (
            _at_step("enable-namespace", backend.enable_namespace(path))
            .flat_map(lambda _: _at_step("tune", backend.tune(path, node.max_ttl)))
            .flat_map(lambda _: signed_certificate())
            .flat_map(
                lambda cert_pem: _at_step("set-signed", backend.set_signed(path, cert_pem)).map(lambda _: cert_pem)
            )
            .flat_map(
                lambda cert_pem: _at_step("configure-urls", backend.configure_urls(path, node.urls)).map(
                    lambda _: cert_pem
                )
            )
            .flat_map(
                lambda cert_pem: _at_step("set-default-issuer", self._set_default_issuer(node)).map(
                    lambda issuer_id: (cert_pem, issuer_id)
                )
            )
            .flat_map(
                lambda signed: _at_step("create-role", backend.create_role(path, node.signing_role)).map(
                    lambda _: signed
                )
            )
            .flat_map(
                lambda signed: self._persist(
                    node, signed[0], self._artifacts.intermediate_certificate_path(naming), signed[1]
                )
            )
            .peek(
                lambda ca: log.info(
                    "ca.intermediate_created",
                    path=path,
                    parent=parent_path,
                    issuer_id=ca.issuer_id,
                    artifact=str(ca.artifact_path),
                )
            )
            .peek_failure(_log_failure("ca.intermediate_failed", path))
        )

    def _set_default_issuer(self, node: CANode) -> Result[str]:
        """Issuer ids only exist after set-signed; the first one listed becomes the default."""
        path = node.path
        return (
            self._backend.list_issuers(path)
            .flat_map(
                lambda issuers: Result.success(issuers[0])
                if issuers
                else ResultFailures.not_found("Issuer", path)
            )
            .flat_map(
                lambda issuer_id: self._backend.update_issuer_urls(path, issuer_id, node.urls).flat_map(
                    lambda _: self._backend.set_default_issuer(path, issuer_id)
                )
            )
        )

    def _persist(
        self,
        node: CANode,
        certificate_pem: str,
        artifact_path: Path,
        issuer_id: str | None,
    ) -> Result[CACertificate]:
        return _at_step("persist-certificate", self._artifacts.write_text(artifact_path, certificate_pem)).map(
            lambda written: CACertificate(
                node=node,
                certificate_pem=certificate_pem,
                issuer_id=issuer_id,
                artifact_path=written,
            )
        )

    # ─────────────────────── Leaf certificates ───────────────────────

    def issue_leaf_certificate(
        self,
        issuer_path: str,
        role_id: str,
        subject: SubjectFields,
        ttl: str,
    ) -> Result[tuple[CertificateRecord, IssuedCertificate]]:
        """
        Issue a leaf certificate under `role_id` of the CA at `issuer_path`.

        TTL clamping is the backend's business: serial number and expiration
        are reported exactly as the backend returned them. The private key
        is handed back to the caller and never logged.
        """
        if not subject.common_name.strip():
            return ResultFailures.validation_error("Common name is required", subject=issuer_path)

        return (
            parse_ttl(ttl)
            .flat_map(lambda _: _at_step("issue", self._backend.issue(issuer_path, role_id, subject, ttl)))
            .flat_map(
                lambda issued: self._crypto.parse_certificate(issued.certificate_pem).map(
                    lambda details: (
                        CertificateRecord(
                            serial_number=issued.serial_number,
                            subject_common_name=details.subject.common_name,
                            issuer_path=issuer_path,
                            not_before=details.not_before,
                            not_after=issued.expiration,
                            key_usage=details.key_usage,
                        ),
                        issued,
                    )
                )
            )
            .peek(
                lambda pair: log.info(
                    "certificate.issued",
                    path=issuer_path,
                    role=role_id,
                    serial=pair[0].serial_number,
                    common_name=pair[0].subject_common_name,
                    not_after=pair[0].not_after.isoformat(),
                )
            )
            .peek_failure(_log_failure("certificate.issue_failed", issuer_path))
        )
