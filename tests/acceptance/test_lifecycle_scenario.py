"""
Acceptance tests: the full Root → Intermediate → Leaf lifecycle.

Drives the wired services end to end against FakeSigningBackend and the
real crypto and filesystem adapters:

  1. create root jimsnet/abc (87600h)
  2. create intermediate vendor1 (43800h) under it
  3. issue bob@example.com (720h), persist an encrypted key, export PKCS#12
  4. revoke, regenerate the CRL, expire the rest and clean up
"""

from __future__ import annotations

from datetime import timedelta

import pytest
from cryptography import x509
from cryptography.hazmat.primitives.serialization import pkcs12
from fakes import FakeSigningBackend, MutableClock
from railway import ErrorCode, ResultAssertions

from pki_lifecycle.credentials import CredentialExportManager
from pki_lifecycle.domain.hierarchy import LEAF_SIGNING_ROLE
from pki_lifecycle.domain.models import CANaming, CertificateStatus, SubjectFields
from pki_lifecycle.issuance import IssuanceEngine
from pki_lifecycle.ledger import CertificateLedger
from pki_lifecycle.revocation import RevocationManager

pytestmark = pytest.mark.acceptance


class TestLifecycleScenario:
    def test_root_intermediate_leaf(
        self,
        engine: IssuanceEngine,
        ledger: CertificateLedger,
        naming: CANaming,
        clock: MutableClock,
    ) -> None:
        """
        GIVEN an empty backend
        WHEN root jimsnet/abc (87600h), intermediate vendor1 (43800h) and leaf
             bob@example.com (720h) are created in order
        THEN the leaf is issued by the intermediate, the chain verifies and
             the leaf expires exactly 720h from now.
        """
        root = ResultAssertions.assert_success(engine.create_root_ca(CANaming("jimsnet", "abc"), "87600h"))
        intermediate = ResultAssertions.assert_success(
            engine.create_intermediate_ca(root.node.path, naming, "43800h")
        )
        record, issued = ResultAssertions.assert_success(
            engine.issue_leaf_certificate(
                intermediate.node.path, LEAF_SIGNING_ROLE, SubjectFields("bob@example.com"), "720h"
            )
        )

        assert root.node.path == "jimsnet_abc_ROOT"
        assert intermediate.node.path == "jimsnet_abc_vendor1_INT"
        assert record.issuer_path == intermediate.node.path
        assert record.not_after - clock() == timedelta(hours=720)

        root_cert = x509.load_pem_x509_certificate(root.certificate_pem.encode())
        int_cert = x509.load_pem_x509_certificate(intermediate.certificate_pem.encode())
        leaf_cert = x509.load_pem_x509_certificate(issued.certificate_pem.encode())
        int_cert.verify_directly_issued_by(root_cert)
        leaf_cert.verify_directly_issued_by(int_cert)

        _, status = ResultAssertions.assert_success(ledger.status(intermediate.node.path, record.serial_number))
        assert status is CertificateStatus.ACTIVE

    def test_credential_revocation_and_cleanup(
        self,
        engine: IssuanceEngine,
        ledger: CertificateLedger,
        revocation: RevocationManager,
        credentials: CredentialExportManager,
        backend: FakeSigningBackend,
        naming: CANaming,
        clock: MutableClock,
    ) -> None:
        """
        GIVEN a root/intermediate pair and three issued leaves
        WHEN one is revoked, time passes beyond the others' expiry and a
             confirmed cleanup runs
        THEN the CRL lists the revoked serial first, then every serial,
             and a second cleanup has nothing left to revoke.
        """
        root = engine.create_root_ca(CANaming("jimsnet", "abc"), "87600h").value()
        path = engine.create_intermediate_ca(root.node.path, naming, "43800h").value().node.path

        serials = []
        for cn in ("bob@example.com", "Alice", "Carol"):
            record, issued = engine.issue_leaf_certificate(path, LEAF_SIGNING_ROLE, SubjectFields(cn), "720h").value()
            credentials.persist_credential(cn, issued.certificate_pem, issued.private_key_pem, "pw", "pw")
            serials.append(record.serial_number)

        pfx = ResultAssertions.assert_success(credentials.export_pkcs12("Alice", "b", "b", key_password="pw"))
        assert pkcs12.load_pkcs12(pfx.read_bytes(), b"b").key is not None
        assert all(r.has_encrypted_key for r in ledger.list_records(path).value())

        ResultAssertions.assert_success(revocation.revoke(path, serials[0], confirmed=True))
        crl = ResultAssertions.assert_success(revocation.regenerate_crl(path))
        assert [e.serial_number for e in crl.entries] == [serials[0]]

        clock.advance(timedelta(hours=721))
        report = ResultAssertions.assert_success(revocation.cleanup_expired(path, confirmed=True))
        assert (report.revoked, report.skipped, report.failed) == (2, 1, 0)

        crl = ResultAssertions.assert_success(revocation.regenerate_crl(path))
        assert sorted(e.serial_number for e in crl.entries) == sorted(serials)

        again = ResultAssertions.assert_success(revocation.cleanup_expired(path, confirmed=True))
        assert (again.revoked, again.skipped) == (0, 3)

    def test_rerun_of_root_creation_is_refused(self, engine: IssuanceEngine) -> None:
        ResultAssertions.assert_success(engine.create_root_ca(CANaming("jimsnet", "abc"), "87600h"))
        ResultAssertions.assert_failure(
            engine.create_root_ca(CANaming("jimsnet", "abc"), "87600h"), ErrorCode.ALREADY_EXISTS
        )
