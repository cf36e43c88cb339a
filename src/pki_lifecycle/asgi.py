"""
FastAPI + Uvicorn ASGI application: the operator front end.

Exposes the core services over HTTP and runs the CRL refresh scheduler in a
background thread. Request bodies are pydantic models: the core receives
data, it never prompts.

  GET  /health, /ready, /info                     probes and metadata
  GET  /naming                                    configured base/client/vendor and paths
  POST /cas/root                                  create a root CA
  POST /cas/intermediate                          create an intermediate CA
  GET  /cas/{path}/certificates                   list records
  POST /cas/{path}/certificates                   issue a leaf + persist its credential for that issuer
  GET  /cas/{path}/certificates/{serial}          record with derived status
  POST /cas/{path}/certificates/{serial}/revoke   revoke (requires confirmed=true)
  GET  /cas/{path}/search?q=...                   case-insensitive CN search
  GET  /cas/{path}/crl                            regenerate and read the CRL
  POST /cas/{path}/cleanup                        revoke expired (requires confirmed=true)
  POST /credentials/{common_name}/pkcs12          export a PKCS#12 bundle (optional issuer_path)

Private keys and passwords are never returned nor logged.

Entry point: uvicorn pki_lifecycle.asgi:app --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

import asyncio
import threading
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

import structlog
from apscheduler.schedulers.blocking import BlockingScheduler
from fastapi import FastAPI, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel, SecretStr
from railway.http_support import build_fastapi_response
from railway.result import Result

from pki_lifecycle import __version__
from pki_lifecycle.config import AppSettings
from pki_lifecycle.credentials import CredentialExportManager
from pki_lifecycle.domain.hierarchy import LEAF_SIGNING_ROLE, naming_path, resolve_path
from pki_lifecycle.domain.models import (
    CACertificate,
    CANaming,
    CertificateRecord,
    CertificateStatus,
    CleanupReport,
    CredentialBundle,
    CRLSnapshot,
    KeySpec,
    RevocationResult,
    SubjectFields,
    Tier,
)
from pki_lifecycle.main import Services, build_services, configure_structlog, crl_refresh_job
from pki_lifecycle.scheduler import create_scheduler

# ─────────────────────── Global State ───────────────────────
# Set during app startup and used by the endpoints and health checks.

_services: Services | None = None
_scheduler: BlockingScheduler | None = None
_scheduler_thread: threading.Thread | None = None
_scheduler_started = False
_error_message: str | None = None
log = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    FastAPI lifespan context manager: runs on startup and shutdown.

    Startup: load settings, wire services, start the scheduler thread.
    Shutdown: stop the scheduler and join its thread.
    """
    global _services, _scheduler, _scheduler_thread, _error_message

    log.info("asgi.startup", event="lifespan_startup")

    try:
        settings = AppSettings()
    except Exception as e:
        _error_message = f"Configuration error: {e}"
        log.error("asgi.startup_error", error=_error_message)
        raise

    configure_structlog(settings.log_level)
    log.info(
        "asgi.startup_config",
        version=__version__,
        log_level=settings.log_level,
        scheduler_enabled=settings.scheduler.enabled,
        cron=settings.scheduler.cron,
    )

    _services = build_services(settings)

    if settings.scheduler.enabled:
        _scheduler = create_scheduler(
            job_fn=crl_refresh_job(_services),
            cron=settings.scheduler.cron,
            run_on_startup=settings.run_on_startup,
        )
        _scheduler_thread = threading.Thread(target=_run_scheduler, args=(_scheduler,), daemon=True)
        _scheduler_thread.start()

    log.info("asgi.startup_complete")

    yield

    log.info("asgi.shutdown", reason="SIGTERM or server stop")
    if _scheduler is not None:
        try:
            _scheduler.shutdown(wait=True)
            log.info("asgi.scheduler_shutdown_complete")
        except Exception as e:
            log.warning("asgi.scheduler_shutdown_error", error=str(e))

    if _scheduler_thread and _scheduler_thread.is_alive():
        _scheduler_thread.join(timeout=5.0)
        if _scheduler_thread.is_alive():
            log.warning("asgi.scheduler_thread_timeout", timeout_seconds=5.0)

    log.info("asgi.shutdown_complete")


def _run_scheduler(scheduler: BlockingScheduler) -> None:
    """Run the blocking scheduler in its background thread."""
    global _scheduler_started, _error_message
    try:
        _scheduler_started = True
        log.info("asgi.scheduler_thread_started")
        scheduler.start()
    except Exception as e:
        _error_message = f"Scheduler error: {e}"
        log.error("asgi.scheduler_error", error=_error_message)


# ─────────────────────── Request models ───────────────────────


class RootCARequest(BaseModel):
    base: str | None = None
    client: str | None = None
    ttl: str | None = None
    key_type: str | None = None
    key_bits: int | None = None


class IntermediateCARequest(BaseModel):
    """`parent_path` defaults to the root of the same (base, client)."""

    parent_path: str | None = None
    base: str | None = None
    client: str | None = None
    vendor: str | None = None
    ttl: str | None = None
    key_type: str | None = None
    key_bits: int | None = None


class IssueCertificateRequest(BaseModel):
    common_name: str
    organization: str | None = None
    organizational_unit: str | None = None
    email_address: str | None = None
    country: str | None = None
    ttl: str | None = None
    role_id: str = LEAF_SIGNING_ROLE
    password: SecretStr | None = None
    password_confirmation: SecretStr | None = None


class ConfirmationRequest(BaseModel):
    confirmed: bool = False


class Pkcs12Request(BaseModel):
    bundle_password: SecretStr
    bundle_password_confirmation: SecretStr
    key_password: SecretStr | None = None
    # CA path whose user directory holds the credential; configured naming when omitted
    issuer_path: str | None = None


# ─────────────────────── Serialization ───────────────────────


def _secret(value: SecretStr | None) -> str | None:
    return value.get_secret_value() if value is not None else None


def _ca_body(ca: CACertificate) -> dict[str, Any]:
    return {
        "path": ca.node.path,
        "tier": ca.node.tier.name,
        "parent_path": ca.node.parent_path,
        "common_name": ca.node.common_name,
        "issuer_name": ca.node.issuer_name,
        "issuer_id": ca.issuer_id,
        "max_ttl": ca.node.max_ttl,
        "signing_role": ca.node.signing_role.role_id,
        "signing_role_max_ttl": ca.node.signing_role.max_ttl,
        "artifact_path": str(ca.artifact_path) if ca.artifact_path else None,
        "certificate": ca.certificate_pem,
    }


def _record_body(record: CertificateRecord, status: CertificateStatus | None = None) -> dict[str, Any]:
    body: dict[str, Any] = {
        "serial_number": record.serial_number,
        "common_name": record.subject_common_name,
        "issuer_path": record.issuer_path,
        "not_before": record.not_before.isoformat(),
        "not_after": record.not_after.isoformat(),
        "revocation_time": record.revocation_time,
        "revoked_at": record.revoked_at.isoformat() if record.revoked_at else None,
        "key_usage": sorted(record.key_usage),
        "has_encrypted_key": record.has_encrypted_key,
    }
    if status is not None:
        body["status"] = status.value
    return body


def _bundle_body(bundle: CredentialBundle) -> dict[str, Any]:
    return {
        "common_name": bundle.common_name,
        "certificate_path": str(bundle.certificate_path),
        "key_path": str(bundle.key_path),
        "key_encrypted": bundle.key_encrypted,
        "password_mismatch": bundle.password_mismatch,
        "warning": bundle.warning,
    }


def _revocation_body(result: RevocationResult) -> dict[str, Any]:
    return {
        "path": result.path,
        "serial_number": result.serial_number,
        "revocation_time": result.revocation_time,
        "already_revoked": result.already_revoked,
    }


def _crl_body(crl: CRLSnapshot) -> dict[str, Any]:
    return {
        "path": crl.path,
        "empty": crl.is_empty,
        "last_update": crl.last_update.isoformat() if crl.last_update else None,
        "next_update": crl.next_update.isoformat() if crl.next_update else None,
        "entries": [
            {"serial_number": e.serial_number, "revocation_time": e.revocation_time.isoformat()}
            for e in crl.entries
        ],
        "crl": crl.crl_pem,
    }


def _cleanup_body(report: CleanupReport) -> dict[str, Any]:
    return {
        "path": report.path,
        "revoked": report.revoked,
        "skipped": report.skipped,
        "failed": report.failed,
        "partial_failure": report.is_partial_failure,
        "failures": [{"serial_number": f.subject, "message": f.message} for f in report.failures],
    }


def _unavailable() -> JSONResponse:
    return JSONResponse(
        status_code=503,
        content={"status": "unavailable", "reason": "Services not initialized"},
    )


# ─────────────────────── FastAPI Application ───────────────────────

app = FastAPI(
    title="pki-lifecycle",
    description="Root → Intermediate → leaf certificate authority lifecycle manager",
    version=__version__,
    lifespan=lifespan,
)


@app.get("/health")
async def health() -> JSONResponse:
    """
    Liveness probe.

    Returns 503 if configuration failed or the scheduler thread crashed.
    """
    if _error_message:
        log.warning("health.check_failed", error=_error_message)
        return JSONResponse(status_code=503, content={"status": "unhealthy", "error": _error_message})

    if _scheduler_thread is not None and not _scheduler_thread.is_alive():
        return JSONResponse(
            status_code=503,
            content={"status": "unhealthy", "reason": "scheduler thread not running"},
        )

    return JSONResponse(status_code=200, content={"status": "healthy"})


@app.get("/ready")
async def ready() -> JSONResponse:
    """Readiness probe: 200 once services are wired."""
    if _error_message:
        return JSONResponse(status_code=503, content={"status": "error", "error": _error_message})
    if _services is None:
        return JSONResponse(status_code=202, content={"status": "starting"})
    return JSONResponse(status_code=200, content={"status": "ready"})


@app.get("/info")
async def info() -> dict[str, Any]:
    return {
        "name": "pki-lifecycle",
        "version": __version__,
        "services_ready": _services is not None,
        "scheduler_running": _scheduler_thread is not None and _scheduler_thread.is_alive(),
        "scheduler_started": _scheduler_started,
        "has_error": _error_message is not None,
    }


@app.get("/naming")
async def naming() -> JSONResponse:
    """The configured naming triple and the backend paths it resolves to."""
    if _services is None:
        return _unavailable()
    current = _services.naming
    return JSONResponse(
        status_code=200,
        content={
            "base": current.base,
            "client": current.client,
            "vendor": current.vendor,
            "root_path": naming_path(Tier.ROOT, current).get_or_else(None),
            "intermediate_path": naming_path(Tier.INTERMEDIATE, current).get_or_else(None),
            "user_directory": str(_services.credentials.directory),
        },
    )


# ─────────────────────── CA creation ───────────────────────


def _key_spec(services: Services, key_type: str | None, key_bits: int | None) -> KeySpec:
    defaults = services.settings.issuance
    return KeySpec(key_type=key_type or defaults.key_type, key_bits=key_bits or defaults.key_bits)


@app.post("/cas/root")
async def create_root(request: RootCARequest) -> JSONResponse:
    if _services is None:
        return _unavailable()
    services = _services
    ca_naming = CANaming(
        base=request.base or services.naming.base,
        client=request.client or services.naming.client,
    )
    ttl = request.ttl or services.settings.issuance.root_ttl
    log.info("api.create_root", base=ca_naming.base, client=ca_naming.client, ttl=ttl)

    result = await asyncio.to_thread(
        services.issuance.create_root_ca,
        ca_naming,
        ttl,
        _key_spec(services, request.key_type, request.key_bits),
    )
    return build_fastapi_response(result.map(_ca_body), success_status=201)


@app.post("/cas/intermediate")
async def create_intermediate(request: IntermediateCARequest) -> JSONResponse:
    if _services is None:
        return _unavailable()
    services = _services
    ca_naming = CANaming(
        base=request.base or services.naming.base,
        client=request.client or services.naming.client,
        vendor=request.vendor or services.naming.vendor,
    )
    ttl = request.ttl or services.settings.issuance.intermediate_ttl
    parent = (
        Result.success(request.parent_path)
        if request.parent_path
        else resolve_path(Tier.ROOT, ca_naming.base, ca_naming.client)
    )
    log.info("api.create_intermediate", vendor=ca_naming.vendor, ttl=ttl, parent=request.parent_path)

    key_spec = _key_spec(services, request.key_type, request.key_bits)
    result = await asyncio.to_thread(
        lambda: parent.flat_map(
            lambda parent_path: services.issuance.create_intermediate_ca(parent_path, ca_naming, ttl, key_spec)
        )
    )
    return build_fastapi_response(result.map(_ca_body), success_status=201)


# ─────────────────────── Certificates ───────────────────────


@app.get("/cas/{path}/certificates")
async def list_certificates(path: str) -> JSONResponse:
    if _services is None:
        return _unavailable()
    result = await asyncio.to_thread(_services.ledger.list_records, path)
    return build_fastapi_response(result.map(lambda records: [_record_body(r) for r in records]))


@app.post("/cas/{path}/certificates")
async def issue_certificate(path: str, request: IssueCertificateRequest) -> JSONResponse:
    """Issue a leaf certificate and persist its key material; the key is not returned."""
    if _services is None:
        return _unavailable()
    services = _services
    subject = SubjectFields(
        common_name=request.common_name,
        organization=request.organization,
        organizational_unit=request.organizational_unit,
        email_address=request.email_address,
        country=request.country,
    )
    ttl = request.ttl or services.settings.issuance.leaf_ttl

    def issue_and_persist(credentials: CredentialExportManager) -> Result[dict[str, Any]]:
        return services.issuance.issue_leaf_certificate(path, request.role_id, subject, ttl).flat_map(
            lambda issued: credentials.persist_credential(
                issued[0].subject_common_name,
                issued[1].certificate_pem,
                issued[1].private_key_pem,
                _secret(request.password),
                _secret(request.password_confirmation),
            ).map(lambda bundle: {"certificate": _record_body(issued[0]), "credential": _bundle_body(bundle)})
        )

    # user directory is resolved from the issuer path before the backend call
    result = await asyncio.to_thread(
        lambda: services.credentials.for_issuer(path).flat_map(issue_and_persist)
    )
    return build_fastapi_response(result, success_status=201)


@app.get("/cas/{path}/certificates/{serial}")
async def certificate_status(path: str, serial: str) -> JSONResponse:
    if _services is None:
        return _unavailable()
    result = await asyncio.to_thread(_services.ledger.status, path, serial)
    return build_fastapi_response(result.map(lambda pair: _record_body(pair[0], pair[1])))


@app.post("/cas/{path}/certificates/{serial}/revoke")
async def revoke_certificate(path: str, serial: str, request: ConfirmationRequest) -> JSONResponse:
    if _services is None:
        return _unavailable()
    result = await asyncio.to_thread(_services.revocation.revoke, path, serial, request.confirmed)
    return build_fastapi_response(result.map(_revocation_body))


@app.get("/cas/{path}/search")
async def search_certificates(path: str, q: str = Query(default="")) -> JSONResponse:
    if _services is None:
        return _unavailable()
    result = await asyncio.to_thread(_services.ledger.search, path, q)
    return build_fastapi_response(result.map(lambda records: [_record_body(r) for r in records]))


# ─────────────────────── Revocation ───────────────────────


@app.get("/cas/{path}/crl")
async def crl(path: str) -> JSONResponse:
    if _services is None:
        return _unavailable()
    result = await asyncio.to_thread(_services.revocation.regenerate_crl, path)
    return build_fastapi_response(result.map(_crl_body))


@app.post("/cas/{path}/cleanup")
async def cleanup(path: str, request: ConfirmationRequest) -> JSONResponse:
    if _services is None:
        return _unavailable()
    result = await asyncio.to_thread(_services.revocation.cleanup_expired, path, request.confirmed)
    return build_fastapi_response(result.map(_cleanup_body))


# ─────────────────────── Credentials ───────────────────────


@app.post("/credentials/{common_name}/pkcs12")
async def export_pkcs12(common_name: str, request: Pkcs12Request) -> JSONResponse:
    if _services is None:
        return _unavailable()
    services = _services

    def export() -> Result[Path]:
        credentials = (
            services.credentials.for_issuer(request.issuer_path)
            if request.issuer_path
            else Result.success(services.credentials)
        )
        return credentials.flat_map(
            lambda manager: manager.export_pkcs12(
                common_name,
                request.bundle_password.get_secret_value(),
                request.bundle_password_confirmation.get_secret_value(),
                _secret(request.key_password),
            )
        )

    result = await asyncio.to_thread(export)
    return build_fastapi_response(
        result.map(lambda written: {"common_name": common_name, "path": str(written)}),
        success_status=201,
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "pki_lifecycle.asgi:app",
        host="0.0.0.0",
        port=8000,
        reload=False,
        log_level="info",
    )
