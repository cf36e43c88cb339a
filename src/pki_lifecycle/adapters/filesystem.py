"""
Filesystem adapter: persisted artifact layout for CA certificates and user credentials.

Adapter layer: implements the ArtifactStore port with pathlib.

Layout (a contract with downstream operators and tools):

  {root}/ROOT_CERT/{base}/{base}_{client}_root-ca.crt
  {root}/INT_CERTS/{base}/{client}/{base}_{client}_{vendor}_int-ca.crt
  {root}/USER_CERTS/{client}/{vendor}/...

Private material (keys, PKCS#12 bundles, user certificates) is written
with mode 0600.
"""

from __future__ import annotations

import os
from pathlib import Path

import structlog
from railway import ErrorCode, ResultFailures
from railway.result import Result

from pki_lifecycle.domain.models import CANaming

log = structlog.get_logger()

ROOT_CERT_DIR = "ROOT_CERT"
INT_CERTS_DIR = "INT_CERTS"
USER_CERTS_DIR = "USER_CERTS"

_PRIVATE_MODE = 0o600


class FilesystemArtifactStore:
    """Implements the ArtifactStore port rooted at a storage directory."""

    def __init__(self, root_dir: Path) -> None:
        self._root = Path(root_dir)

    @property
    def root_dir(self) -> Path:
        return self._root

    def root_certificate_path(self, naming: CANaming) -> Path:
        return self._root / ROOT_CERT_DIR / naming.base / f"{naming.base}_{naming.client}_root-ca.crt"

    def intermediate_certificate_path(self, naming: CANaming) -> Path:
        filename = f"{naming.base}_{naming.client}_{naming.vendor}_int-ca.crt"
        return self._root / INT_CERTS_DIR / naming.base / naming.client / filename

    def user_directory(self, naming: CANaming) -> Path:
        return self._root / USER_CERTS_DIR / naming.client / (naming.vendor or "")

    def write_text(self, path: Path, content: str, private: bool = False) -> Result[Path]:
        return self.write_bytes(path, content.encode(), private)

    def write_bytes(self, path: Path, content: bytes, private: bool = False) -> Result[Path]:
        return Result.from_computation(
            lambda: self._do_write(path, content, private),
            ErrorCode.TECHNICAL_ERROR,
            "Failed to write artifact",
            subject=str(path),
        )

    def read_text(self, path: Path) -> Result[str]:
        if not path.is_file():
            return ResultFailures.not_found("File", str(path))
        return Result.from_computation(
            lambda: path.read_text(),
            ErrorCode.TECHNICAL_ERROR,
            "Failed to read artifact",
            subject=str(path),
        )

    def exists(self, path: Path) -> bool:
        return path.is_file()

    def remove(self, path: Path) -> Result[Path]:
        return Result.from_computation(
            lambda: self._do_remove(path),
            ErrorCode.TECHNICAL_ERROR,
            "Failed to remove artifact",
            subject=str(path),
        )

    def _do_write(self, path: Path, content: bytes, private: bool) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        if private:
            # mode applies at creation; chmod covers a pre-existing file
            fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, _PRIVATE_MODE)
            with os.fdopen(fd, "wb") as handle:
                handle.write(content)
            path.chmod(_PRIVATE_MODE)
        else:
            path.write_bytes(content)
        log.debug("artifact.written", path=str(path), private=private)
        return path

    def _do_remove(self, path: Path) -> Path:
        path.unlink(missing_ok=True)
        log.debug("artifact.removed", path=str(path))
        return path
