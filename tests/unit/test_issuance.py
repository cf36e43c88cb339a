"""
Unit tests for the issuance engine: root/intermediate creation protocols and leaf issuance.

Runs against FakeSigningBackend, which signs with real keys, so the
certificates checked here are genuine X.509 objects.
"""

from __future__ import annotations

from datetime import timedelta

import pytest
from cryptography import x509
from fakes import FakeSigningBackend, MutableClock
from railway import ErrorCode, ResultAssertions

from pki_lifecycle.domain.hierarchy import INTERMEDIATE_SIGNER_ROLE, LEAF_SIGNING_ROLE
from pki_lifecycle.domain.models import CACertificate, CANaming, SubjectFields, Tier
from pki_lifecycle.issuance import IssuanceEngine

ROOT_STEPS = ["enable-namespace", "tune", "generate-root", "configure-urls", "create-role"]
INTERMEDIATE_STEPS = [
    "enable-namespace",
    "tune",
    "generate-csr",
    "set-signed",
    "configure-urls",
    "list-issuers",
    "update-issuer-urls",
    "set-default-issuer",
    "create-role",
]


# ─────────────────────── Root CA ───────────────────────


class TestCreateRootCA:
    def test_creates_root_at_resolved_path(self, root_ca: CACertificate, backend: FakeSigningBackend) -> None:
        """
        GIVEN naming jimsnet/abc and TTL 87600h
        WHEN create_root_ca is called
        THEN the root lives at jimsnet_abc_ROOT and its signer role is capped at 43800h.
        """
        assert root_ca.node.path == "jimsnet_abc_ROOT"
        assert root_ca.node.tier is Tier.ROOT
        mount = backend.mounts["jimsnet_abc_ROOT"]
        assert mount.roles[INTERMEDIATE_SIGNER_ROLE].max_ttl == "43800h"
        assert mount.urls is not None
        assert mount.urls.crl.endswith("/v1/jimsnet_abc_ROOT/crl")

    def test_runs_protocol_steps_in_order(self, root_ca: CACertificate, backend: FakeSigningBackend) -> None:
        assert backend.operations("jimsnet_abc_ROOT") == ROOT_STEPS

    def test_persists_certificate_artifact(self, root_ca: CACertificate) -> None:
        assert root_ca.artifact_path is not None
        assert root_ca.artifact_path.as_posix().endswith("ROOT_CERT/jimsnet/jimsnet_abc_root-ca.crt")
        assert root_ca.artifact_path.read_text() == root_ca.certificate_pem

    def test_certificate_is_self_signed_ca(self, root_ca: CACertificate) -> None:
        cert = x509.load_pem_x509_certificate(root_ca.certificate_pem.encode())
        assert cert.issuer == cert.subject
        assert cert.extensions.get_extension_for_class(x509.BasicConstraints).value.ca

    def test_second_create_fails_with_already_exists(
        self,
        engine: IssuanceEngine,
        naming: CANaming,
        root_ca: CACertificate,
        backend: FakeSigningBackend,
    ) -> None:
        """
        GIVEN an existing root at jimsnet_abc_ROOT
        WHEN create_root_ca is called again with the same naming
        THEN it fails with ALREADY_EXISTS at enable-namespace and nothing else is touched.
        """
        calls_before = len(backend.calls)

        result = engine.create_root_ca(naming, "87600h")

        error = ResultAssertions.assert_failure_at_step(result, "enable-namespace")
        assert error.code is ErrorCode.ALREADY_EXISTS
        assert error.subject == "jimsnet_abc_ROOT"
        assert len(backend.calls) == calls_before + 1

    def test_invalid_name_makes_no_backend_call(self, engine: IssuanceEngine, backend: FakeSigningBackend) -> None:
        result = engine.create_root_ca(CANaming("jims/net", "abc"), "87600h")

        ResultAssertions.assert_failure(result, ErrorCode.INVALID_NAME)
        assert backend.calls == []

    def test_too_short_ttl_makes_no_backend_call(self, engine: IssuanceEngine, backend: FakeSigningBackend) -> None:
        ResultAssertions.assert_failure(engine.create_root_ca(CANaming("a", "b"), "1h"), ErrorCode.VALIDATION_ERROR)
        assert backend.calls == []

    @pytest.mark.parametrize("step", ["tune", "generate-root", "configure-urls", "create-role"])
    def test_failure_reports_the_failing_step(
        self,
        engine: IssuanceEngine,
        naming: CANaming,
        backend: FakeSigningBackend,
        step: str,
    ) -> None:
        """
        GIVEN the backend fails at one protocol step
        WHEN create_root_ca is called
        THEN the failure names that step and no later step runs.
        """
        backend.fail(step)

        result = engine.create_root_ca(naming, "87600h")

        ResultAssertions.assert_failure_at_step(result, step)
        executed = backend.operations("jimsnet_abc_ROOT")
        assert executed == ROOT_STEPS[: ROOT_STEPS.index(step) + 1]


# ─────────────────────── Intermediate CA ───────────────────────


class TestCreateIntermediateCA:
    def test_creates_intermediate_signed_by_root(
        self,
        intermediate_ca: CACertificate,
        root_ca: CACertificate,
        backend: FakeSigningBackend,
    ) -> None:
        """
        GIVEN root jimsnet_abc_ROOT
        WHEN an intermediate for vendor1 is created with 43800h
        THEN it sits at jimsnet_abc_vendor1_INT, is issued by the root and has a default issuer.
        """
        assert intermediate_ca.node.path == "jimsnet_abc_vendor1_INT"
        assert intermediate_ca.node.parent_path == "jimsnet_abc_ROOT"

        cert = x509.load_pem_x509_certificate(intermediate_ca.certificate_pem.encode())
        root = x509.load_pem_x509_certificate(root_ca.certificate_pem.encode())
        assert cert.issuer == root.subject
        cert.verify_directly_issued_by(root)

        mount = backend.mounts["jimsnet_abc_vendor1_INT"]
        assert mount.default_issuer == intermediate_ca.issuer_id
        assert LEAF_SIGNING_ROLE in mount.roles

    def test_runs_protocol_steps_in_order(
        self, intermediate_ca: CACertificate, backend: FakeSigningBackend
    ) -> None:
        assert backend.operations("jimsnet_abc_vendor1_INT") == INTERMEDIATE_STEPS
        parent_ops = backend.operations("jimsnet_abc_ROOT")
        assert parent_ops[-3:] == ["read-role", "read-ca", "cross-sign"]

    def test_persists_certificate_artifact(self, intermediate_ca: CACertificate) -> None:
        assert intermediate_ca.artifact_path is not None
        assert intermediate_ca.artifact_path.as_posix().endswith(
            "INT_CERTS/jimsnet/abc/jimsnet_abc_vendor1_int-ca.crt"
        )

    def test_pending_csr_key_is_consumed(self, intermediate_ca: CACertificate, backend: FakeSigningBackend) -> None:
        assert backend.mounts["jimsnet_abc_vendor1_INT"].pending_key is None

    def test_ttl_above_parent_cap_is_refused_before_creation(
        self,
        engine: IssuanceEngine,
        naming: CANaming,
        root_ca: CACertificate,
        backend: FakeSigningBackend,
    ) -> None:
        """
        GIVEN a root whose intermediate-signer role allows 43800h
        WHEN an intermediate with 50000h is requested
        THEN it fails with CROSS_SIGN_ERROR and no intermediate namespace exists.
        """
        result = engine.create_intermediate_ca(root_ca.node.path, naming, "50000h")

        error = ResultAssertions.assert_failure_at_step(result, "check-parent")
        assert error.code is ErrorCode.CROSS_SIGN_ERROR
        assert "jimsnet_abc_vendor1_INT" not in backend.mounts

    def test_expired_parent_is_refused(
        self,
        engine: IssuanceEngine,
        naming: CANaming,
        root_ca: CACertificate,
        clock: MutableClock,
    ) -> None:
        clock.advance(timedelta(hours=87601))

        result = engine.create_intermediate_ca(root_ca.node.path, naming, "10h")

        error = ResultAssertions.assert_failure(result, ErrorCode.CROSS_SIGN_ERROR)
        assert "expired" in error.message

    def test_missing_parent_is_not_found(self, engine: IssuanceEngine, naming: CANaming) -> None:
        result = engine.create_intermediate_ca("jimsnet_abc_ROOT", naming, "100h")

        error = ResultAssertions.assert_failure_at_step(result, "check-parent")
        assert error.code is ErrorCode.NOT_FOUND
        assert error.subject == "jimsnet_abc_ROOT"

    def test_missing_vendor_is_invalid_name(self, engine: IssuanceEngine, root_ca: CACertificate) -> None:
        result = engine.create_intermediate_ca(root_ca.node.path, CANaming("jimsnet", "abc"), "100h")
        ResultAssertions.assert_failure(result, ErrorCode.INVALID_NAME)

    def test_backend_cross_sign_rejection_is_reported(
        self,
        engine: IssuanceEngine,
        naming: CANaming,
        root_ca: CACertificate,
        backend: FakeSigningBackend,
    ) -> None:
        backend.fail("cross-sign", ErrorCode.CROSS_SIGN_ERROR, "extension policy violated")

        result = engine.create_intermediate_ca(root_ca.node.path, naming, "100h")

        error = ResultAssertions.assert_failure_at_step(result, "cross-sign")
        assert error.code is ErrorCode.CROSS_SIGN_ERROR
        assert "set-signed" not in backend.operations("jimsnet_abc_vendor1_INT")

    def test_no_issuer_listed_fails_at_set_default_issuer(
        self,
        engine: IssuanceEngine,
        naming: CANaming,
        root_ca: CACertificate,
        backend: FakeSigningBackend,
    ) -> None:
        backend.fail("list-issuers", ErrorCode.NOT_FOUND, "no issuers")

        result = engine.create_intermediate_ca(root_ca.node.path, naming, "100h")

        ResultAssertions.assert_failure_at_step(result, "set-default-issuer")

    def test_duplicate_intermediate_fails_with_already_exists(
        self,
        engine: IssuanceEngine,
        naming: CANaming,
        root_ca: CACertificate,
        intermediate_ca: CACertificate,
    ) -> None:
        result = engine.create_intermediate_ca(root_ca.node.path, naming, "100h")

        error = ResultAssertions.assert_failure_at_step(result, "enable-namespace")
        assert error.code is ErrorCode.ALREADY_EXISTS


# ─────────────────────── Leaf certificates ───────────────────────


class TestIssueLeafCertificate:
    def test_issues_leaf_under_intermediate(
        self,
        engine: IssuanceEngine,
        intermediate_ca: CACertificate,
        clock: MutableClock,
    ) -> None:
        """
        GIVEN an intermediate with the digital_signing role
        WHEN a leaf for bob@example.com with 720h is issued
        THEN the record names the intermediate and expires 720h from now.
        """
        subject = SubjectFields(common_name="bob@example.com", organization="Jims Net", country="US")

        record, issued = ResultAssertions.assert_success(
            engine.issue_leaf_certificate(intermediate_ca.node.path, LEAF_SIGNING_ROLE, subject, "720h")
        )

        assert record.issuer_path == "jimsnet_abc_vendor1_INT"
        assert record.subject_common_name == "bob@example.com"
        assert record.serial_number == issued.serial_number
        assert record.not_after - clock() == timedelta(hours=720)
        assert "DigitalSignature" in record.key_usage
        assert "PRIVATE KEY" in issued.private_key_pem

    def test_backend_clamps_ttl_to_role_cap(
        self,
        engine: IssuanceEngine,
        intermediate_ca: CACertificate,
        clock: MutableClock,
    ) -> None:
        record, _ = ResultAssertions.assert_success(
            engine.issue_leaf_certificate(
                intermediate_ca.node.path, LEAF_SIGNING_ROLE, SubjectFields("carol"), "20000h"
            )
        )
        assert record.not_after - clock() == timedelta(hours=8760)

    def test_blank_common_name_is_rejected(
        self, engine: IssuanceEngine, intermediate_ca: CACertificate, backend: FakeSigningBackend
    ) -> None:
        calls_before = len(backend.calls)
        result = engine.issue_leaf_certificate(intermediate_ca.node.path, LEAF_SIGNING_ROLE, SubjectFields("  "), "1h")

        ResultAssertions.assert_failure(result, ErrorCode.VALIDATION_ERROR)
        assert len(backend.calls) == calls_before

    def test_bad_ttl_is_rejected(self, engine: IssuanceEngine, intermediate_ca: CACertificate) -> None:
        result = engine.issue_leaf_certificate(
            intermediate_ca.node.path, LEAF_SIGNING_ROLE, SubjectFields("dave"), "10 days"
        )
        ResultAssertions.assert_failure(result, ErrorCode.VALIDATION_ERROR)

    def test_unknown_role_fails_at_issue(self, engine: IssuanceEngine, intermediate_ca: CACertificate) -> None:
        result = engine.issue_leaf_certificate(intermediate_ca.node.path, "nope", SubjectFields("erin"), "1h")
        ResultAssertions.assert_failure_at_step(result, "issue")
