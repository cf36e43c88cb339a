"""
Shared test fixtures for the pki-lifecycle test suite.

Services are wired against FakeSigningBackend (real cryptography, in-memory
storage), the production CryptographyProvider and a FilesystemArtifactStore
rooted at pytest's tmp_path. Everything shares one MutableClock.
"""

from __future__ import annotations

from pathlib import Path

import pytest
from fakes import FakeSigningBackend, MutableClock
from railway import ResultAssertions

from pki_lifecycle.adapters.crypto import CryptographyProvider
from pki_lifecycle.adapters.filesystem import FilesystemArtifactStore
from pki_lifecycle.credentials import CredentialExportManager
from pki_lifecycle.domain.models import CACertificate, CANaming
from pki_lifecycle.issuance import IssuanceEngine
from pki_lifecycle.ledger import CertificateLedger
from pki_lifecycle.revocation import RevocationManager

PUBLIC_ADDR = "https://vault.example.test:8200"
ROOT_PATH = "jimsnet_abc_ROOT"
INTERMEDIATE_PATH = "jimsnet_abc_vendor1_INT"


@pytest.fixture()
def clock() -> MutableClock:
    return MutableClock()


@pytest.fixture()
def backend(clock: MutableClock) -> FakeSigningBackend:
    return FakeSigningBackend(clock)


@pytest.fixture()
def crypto() -> CryptographyProvider:
    return CryptographyProvider()


@pytest.fixture()
def artifacts(tmp_path: Path) -> FilesystemArtifactStore:
    return FilesystemArtifactStore(tmp_path)


@pytest.fixture()
def naming() -> CANaming:
    return CANaming(base="jimsnet", client="abc", vendor="vendor1")


@pytest.fixture()
def engine(
    backend: FakeSigningBackend,
    crypto: CryptographyProvider,
    artifacts: FilesystemArtifactStore,
    clock: MutableClock,
) -> IssuanceEngine:
    return IssuanceEngine(backend, crypto, artifacts, public_addr=PUBLIC_ADDR, clock=clock)


@pytest.fixture()
def credentials(
    artifacts: FilesystemArtifactStore,
    crypto: CryptographyProvider,
    naming: CANaming,
) -> CredentialExportManager:
    return CredentialExportManager(artifacts, crypto, naming)


@pytest.fixture()
def ledger(
    backend: FakeSigningBackend,
    crypto: CryptographyProvider,
    credentials: CredentialExportManager,
    clock: MutableClock,
) -> CertificateLedger:
    return CertificateLedger(backend, crypto, key_locator=credentials.has_encrypted_key_under, clock=clock)


@pytest.fixture()
def revocation(
    backend: FakeSigningBackend,
    crypto: CryptographyProvider,
    ledger: CertificateLedger,
    clock: MutableClock,
) -> RevocationManager:
    return RevocationManager(backend, crypto, ledger, clock=clock)


@pytest.fixture()
def root_ca(engine: IssuanceEngine, naming: CANaming) -> CACertificate:
    """A freshly created root at jimsnet_abc_ROOT with an 87600h lifetime."""
    return ResultAssertions.assert_success(engine.create_root_ca(naming, "87600h"))


@pytest.fixture()
def intermediate_ca(engine: IssuanceEngine, naming: CANaming, root_ca: CACertificate) -> CACertificate:
    """jimsnet_abc_vendor1_INT, cross-signed by the root for 43800h."""
    return ResultAssertions.assert_success(engine.create_intermediate_ca(root_ca.node.path, naming, "43800h"))
