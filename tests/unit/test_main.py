"""
Unit tests for the main module: composition root.

Tests verify structlog configuration and the service wiring without
making real HTTP calls.
"""

from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
import structlog
from fakes import FakeSigningBackend, MutableClock
from railway import ErrorCode, ResultAssertions

from pki_lifecycle.adapters.crypto import CryptographyProvider
from pki_lifecycle.adapters.filesystem import FilesystemArtifactStore
from pki_lifecycle.adapters.vault_client import VaultSigningBackend
from pki_lifecycle.config import AppSettings, NamingSettings, SchedulerSettings, StorageSettings, VaultSettings
from pki_lifecycle.domain.models import CANaming
from pki_lifecycle.main import Services, build_services, configure_structlog, crl_refresh_job, main


def _settings(tmp_path: Path, **overrides: object) -> AppSettings:
    return AppSettings(
        _env_file=None,
        vault=VaultSettings(token="t"),
        naming=NamingSettings(base="jimsnet", client="abc"),
        storage=StorageSettings(root_dir=tmp_path),
        **overrides,
    )


@pytest.fixture()
def services(tmp_path: Path) -> tuple[Services, FakeSigningBackend]:
    backend = FakeSigningBackend(MutableClock(datetime.now(UTC).replace(microsecond=0)))
    adapters = (backend, CryptographyProvider(), FilesystemArtifactStore(tmp_path))
    return build_services(_settings(tmp_path), adapters), backend


class TestConfigureStructlog:
    """Verify structlog configuration function."""

    def test_configure_structlog_sets_log_level(self) -> None:
        """
        GIVEN log_level="WARNING"
        WHEN configure_structlog is called
        THEN structlog is configured (no exception raised).
        """
        configure_structlog("WARNING")
        assert structlog.get_logger() is not None

    def test_configure_structlog_invalid_level_falls_back(self) -> None:
        configure_structlog("NONEXISTENT")
        assert structlog.get_logger() is not None


class TestBuildServices:
    def test_default_adapters_are_vault_backed(self, tmp_path: Path) -> None:
        services = build_services(_settings(tmp_path))

        assert isinstance(services.issuance._backend, VaultSigningBackend)
        assert services.naming == CANaming("jimsnet", "abc", "vendor1")
        assert services.credentials.directory == tmp_path / "USER_CERTS" / "abc" / "vendor1"

    def test_crl_refresh_job_targets_configured_intermediate(
        self, services: tuple[Services, FakeSigningBackend]
    ) -> None:
        """
        GIVEN wired services with root and intermediate created
        WHEN the CRL refresh job runs
        THEN it returns the (empty) CRL of jimsnet_abc_vendor1_INT.
        """
        wired, _ = services
        root = wired.issuance.create_root_ca(CANaming("jimsnet", "abc"), "87600h").value()
        wired.issuance.create_intermediate_ca(root.node.path, wired.naming, "43800h").value()

        crl = ResultAssertions.assert_success(crl_refresh_job(wired)())

        assert crl.path == "jimsnet_abc_vendor1_INT"
        assert crl.is_empty

    def test_crl_refresh_job_without_intermediate(self, services: tuple[Services, FakeSigningBackend]) -> None:
        wired, _ = services
        ResultAssertions.assert_failure(crl_refresh_job(wired)(), ErrorCode.NOT_FOUND)


class TestMain:
    def test_exits_on_configuration_error(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("VAULT__TOKEN", raising=False)
        with patch("pki_lifecycle.main.AppSettings", side_effect=ValueError("missing token")):
            with pytest.raises(SystemExit) as exc:
                main()
        assert exc.value.code == 1

    def test_disabled_scheduler_returns_without_wiring(self, tmp_path: Path) -> None:
        settings = _settings(tmp_path, scheduler=SchedulerSettings(enabled=False))
        with (
            patch("pki_lifecycle.main.AppSettings", return_value=settings),
            patch("pki_lifecycle.main.build_services") as build,
        ):
            main()
        build.assert_not_called()

    def test_starts_scheduler(self, tmp_path: Path) -> None:
        scheduler = MagicMock()
        with (
            patch("pki_lifecycle.main.AppSettings", return_value=_settings(tmp_path)),
            patch("pki_lifecycle.main.create_scheduler", return_value=scheduler) as create,
            patch("pki_lifecycle.main.register_shutdown_signals") as register,
        ):
            main()

        create.assert_called_once()
        register.assert_called_once_with(scheduler)
        scheduler.start.assert_called_once()
