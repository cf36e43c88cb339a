"""
Composition root and console entry point.

build_services() turns settings plus a (backend, crypto, store) triple
into the four core services; it is the one place concrete adapters are
chosen. main() loads settings, configures structlog and blocks in the
CRL refresh scheduler.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeAlias

import structlog
from railway.result import Result

from pki_lifecycle import __version__
from pki_lifecycle.adapters.crypto import CryptographyProvider
from pki_lifecycle.adapters.filesystem import FilesystemArtifactStore
from pki_lifecycle.adapters.vault_client import VaultSigningBackend
from pki_lifecycle.config import AppSettings
from pki_lifecycle.credentials import CredentialExportManager
from pki_lifecycle.domain.hierarchy import naming_path
from pki_lifecycle.domain.models import CANaming, CRLSnapshot, Tier
from pki_lifecycle.domain.ports import ArtifactStore, CryptoProvider, SigningBackend
from pki_lifecycle.issuance import IssuanceEngine
from pki_lifecycle.ledger import CertificateLedger
from pki_lifecycle.revocation import RevocationManager
from pki_lifecycle.scheduler import create_scheduler, register_shutdown_signals


def configure_structlog(log_level: str = "INFO") -> None:
    """
    Configure structlog for structured logging.

    Colored, human-readable console output with ISO timestamps; events
    below `log_level` are dropped by the bound logger.
    """
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


_Adapters: TypeAlias = tuple[SigningBackend, CryptoProvider, ArtifactStore]


def _create_adapters(settings: AppSettings) -> _Adapters:
    """Instantiate the Vault backend, the crypto provider and the artifact store."""
    backend = VaultSigningBackend(
        addr=settings.vault.addr,
        token=settings.vault.token.get_secret_value(),
        timeout=settings.http_timeout_seconds,
        namespace=settings.vault.namespace,
        verify_tls=settings.vault.verify_tls,
    )
    crypto = CryptographyProvider()
    artifacts = FilesystemArtifactStore(settings.storage.root_dir)
    return backend, crypto, artifacts


@dataclass(frozen=True, slots=True)
class Services:
    """The wired core, shared by the scheduler and the ASGI front end."""

    settings: AppSettings
    naming: CANaming
    issuance: IssuanceEngine
    ledger: CertificateLedger
    revocation: RevocationManager
    credentials: CredentialExportManager


def build_services(settings: AppSettings, adapters: _Adapters | None = None) -> Services:
    backend, crypto, artifacts = adapters or _create_adapters(settings)
    naming = settings.naming.to_naming()

    credentials = CredentialExportManager(artifacts, crypto, naming)
    ledger = CertificateLedger(backend, crypto, key_locator=credentials.has_encrypted_key_under)
    return Services(
        settings=settings,
        naming=naming,
        issuance=IssuanceEngine(
            backend,
            crypto,
            artifacts,
            public_addr=settings.vault.get_public_addr(),
            leaf_max_ttl=settings.issuance.leaf_max_ttl,
        ),
        ledger=ledger,
        revocation=RevocationManager(backend, crypto, ledger),
        credentials=credentials,
    )


def crl_refresh_job(services: Services) -> Callable[[], Result[CRLSnapshot]]:
    """Zero-argument job regenerating the CRL of the configured intermediate CA."""
    return lambda: naming_path(Tier.INTERMEDIATE, services.naming).flat_map(services.revocation.regenerate_crl)


def main() -> None:
    """Wire dependencies and launch the scheduled CRL refresh."""
    try:
        settings = AppSettings()
    except Exception as e:
        print(f"FATAL: Configuration error: {e}", file=sys.stderr)  # noqa: T201
        sys.exit(1)

    configure_structlog(settings.log_level)
    log = structlog.get_logger()

    log.info(
        "app.starting",
        version=__version__,
        log_level=settings.log_level,
        vault_addr=settings.vault.addr,
        storage=str(settings.storage.root_dir),
        cron=settings.scheduler.cron,
        run_on_startup=settings.run_on_startup,
    )

    if not settings.scheduler.enabled:
        log.info("app.scheduler_disabled")
        return

    services = build_services(settings)
    scheduler = create_scheduler(
        job_fn=crl_refresh_job(services),
        cron=settings.scheduler.cron,
        run_on_startup=settings.run_on_startup,
    )
    register_shutdown_signals(scheduler)

    log.info("app.scheduler_starting", cron=settings.scheduler.cron)

    try:
        scheduler.start()
    except KeyboardInterrupt:
        log.info("app.shutdown", reason="signal received")
    except SystemExit:
        log.info("app.shutdown", reason="signal received")
        raise
    except Exception as e:
        log.error("app.fatal_error", error=str(e))
        sys.exit(1)


if __name__ == "__main__":
    main()
