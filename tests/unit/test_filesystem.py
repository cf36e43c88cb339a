"""
Unit tests for the filesystem artifact store: layout and file permissions.
"""

from __future__ import annotations

import stat
from pathlib import Path

import pytest
from railway import ErrorCode, ResultAssertions

from pki_lifecycle.adapters.filesystem import FilesystemArtifactStore
from pki_lifecycle.domain.models import CANaming

NAMING = CANaming("jimsnet", "abc", "vendor1")


@pytest.fixture()
def store(tmp_path: Path) -> FilesystemArtifactStore:
    return FilesystemArtifactStore(tmp_path)


class TestLayout:
    def test_root_certificate_path(self, store: FilesystemArtifactStore, tmp_path: Path) -> None:
        assert store.root_certificate_path(NAMING) == tmp_path / "ROOT_CERT/jimsnet/jimsnet_abc_root-ca.crt"

    def test_intermediate_certificate_path(self, store: FilesystemArtifactStore, tmp_path: Path) -> None:
        expected = tmp_path / "INT_CERTS/jimsnet/abc/jimsnet_abc_vendor1_int-ca.crt"
        assert store.intermediate_certificate_path(NAMING) == expected

    def test_user_directory(self, store: FilesystemArtifactStore, tmp_path: Path) -> None:
        assert store.user_directory(NAMING) == tmp_path / "USER_CERTS/abc/vendor1"


class TestReadWrite:
    def test_write_creates_parents(self, store: FilesystemArtifactStore, tmp_path: Path) -> None:
        target = tmp_path / "a/b/c.crt"

        ResultAssertions.assert_success_value(store.write_text(target, "pem"), target)

        assert target.read_text() == "pem"
        assert store.exists(target)

    def test_private_write_is_owner_only(self, store: FilesystemArtifactStore, tmp_path: Path) -> None:
        target = tmp_path / "k.pem"
        target.write_text("old")
        target.chmod(0o644)

        store.write_bytes(target, b"new", private=True)

        assert stat.S_IMODE(target.stat().st_mode) == 0o600
        assert target.read_bytes() == b"new"

    def test_read_missing_is_not_found(self, store: FilesystemArtifactStore, tmp_path: Path) -> None:
        ResultAssertions.assert_failure(store.read_text(tmp_path / "nope"), ErrorCode.NOT_FOUND)

    def test_remove_is_idempotent(self, store: FilesystemArtifactStore, tmp_path: Path) -> None:
        target = tmp_path / "gone.pem"
        target.write_text("x")

        ResultAssertions.assert_success(store.remove(target))
        ResultAssertions.assert_success(store.remove(target))

        assert not target.exists()

    def test_write_into_a_file_path_fails(self, store: FilesystemArtifactStore, tmp_path: Path) -> None:
        (tmp_path / "blocker").write_text("x")
        ResultAssertions.assert_failure(
            store.write_text(tmp_path / "blocker" / "child.pem", "pem"), ErrorCode.TECHNICAL_ERROR
        )
