"""
Vault adapter: the signing backend reached over Vault's HTTP API via httpx.

Adapter layer: implements the SigningBackend port. This is the ONLY
module that knows Vault's URL layout and JSON envelopes ({"data": {...}});
everything it returns is a typed domain value inside a Result.

Endpoint mapping:
  enable-namespace   POST sys/mounts/{path}
  tune               POST sys/mounts/{path}/tune
  generate-root      POST {path}/root/generate/internal
  generate-csr       POST {path}/intermediate/generate/internal
  cross-sign         POST {parent}/root/sign-intermediate
  set-signed         POST {path}/intermediate/set-signed
  configure-urls     POST {path}/config/urls
  list-issuers       GET  {path}/issuers?list=true
  set-default-issuer POST {path}/config/issuers
  update-issuer-urls POST {path}/issuer/{id}
  create-role        POST {path}/roles/{role}
  read-role          GET  {path}/roles/{role}
  read-ca            GET  {path}/cert/ca
  issue              POST {path}/issue/{role}
  list-certs         GET  {path}/certs?list=true
  read-cert          GET  {path}/cert/{serial}
  revoke             POST {path}/revoke
  rotate-crl         GET  {path}/crl/rotate
  read-crl           GET  {path}/crl/pem

Every request carries an explicit timeout. Reads are retried via tenacity
on transient errors (network, timeout); writes are sent once so a lost
response never turns into a duplicate mount or revoke.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any, TypeVar

import httpx
import structlog
from railway import ErrorCode, FailureDescription, ResultFailures
from railway.result import Failure, Result
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from pki_lifecycle.domain.models import (
    BackendCertificate,
    IssuedCertificate,
    KeySpec,
    SigningRolePolicy,
    SubjectFields,
    UrlSet,
)

T = TypeVar("T")

log = structlog.get_logger()

_ALREADY_MOUNTED_MARKERS = ("already in use", "existing mount")


class EmptyResponseError(Exception):
    """Vault answered 200 but with no data (e.g. `cert/{serial}` for an unknown serial)."""


# ─────────────────────── Helpers ───────────────────────


def _status_to_code(status: int) -> ErrorCode:
    if status in (401, 403):
        return ErrorCode.AUTHENTICATION_ERROR
    if status == 404:
        return ErrorCode.NOT_FOUND
    if 400 <= status < 500:
        return ErrorCode.VALIDATION_ERROR
    return ErrorCode.EXTERNAL_SERVICE_ERROR


def _vault_errors(response: httpx.Response) -> str:
    """Vault reports failures as {"errors": [...]}; fall back to the raw body."""
    try:
        errors = response.json().get("errors") or []
    except ValueError:
        return response.text.strip()
    return "; ".join(str(e) for e in errors) or response.text.strip()


def _is_empty_listing(err: FailureDescription) -> bool:
    if not isinstance(err.exception, httpx.HTTPStatusError):
        return False
    try:
        body = err.exception.response.json()
    except ValueError:
        return not err.exception.response.text.strip()
    return isinstance(body, dict) and not body.get("errors")


def _url_payload(urls: UrlSet) -> dict[str, Any]:
    return {
        "issuing_certificates": [urls.issuing],
        "crl_distribution_points": [urls.crl],
        "ocsp_servers": [urls.ocsp],
    }


def _subject_payload(subject: SubjectFields, ttl: str) -> dict[str, Any]:
    payload: dict[str, Any] = {"common_name": subject.common_name, "ttl": ttl}
    optional = {
        "organization": subject.organization,
        "ou": subject.organizational_unit,
        "email_address": subject.email_address,
        "country": subject.country,
    }
    payload.update({key: value for key, value in optional.items() if value})
    return payload


def _require(value: Any, what: str) -> str:
    if not value:
        raise EmptyResponseError(f"no {what} in response")
    return str(value)


# ─────────────────────── Public Backend Class ───────────────────────


class VaultSigningBackend:
    """
    Talk to a Vault PKI secrets engine.

    Implements the SigningBackend port.
    All HTTP errors are captured into Result failures: no exceptions
    leak to the business logic layer.
    """

    def __init__(
        self,
        addr: str,
        token: str,
        timeout: int = 30,
        namespace: str | None = None,
        verify_tls: bool = True,
    ) -> None:
        self._addr = addr.rstrip("/")
        self._token = token
        self._timeout = timeout
        self._namespace = namespace
        self._verify_tls = verify_tls

    # ─────────────────────── namespaces ───────────────────────

    def enable_namespace(self, path: str, engine_type: str = "pki") -> Result[str]:
        def already_mounted(err: FailureDescription) -> FailureDescription:
            if err.code is ErrorCode.VALIDATION_ERROR and any(
                marker in err.message for marker in _ALREADY_MOUNTED_MARKERS
            ):
                return ResultFailures.already_exists(path, err.exception).error()
            return err

        return (
            self._write("enable-namespace", path, f"sys/mounts/{path}", {"type": engine_type}, path)
            .map_failure(already_mounted)
            .peek(lambda _: log.info("vault.namespace_enabled", path=path, engine_type=engine_type))
        )

    def tune(self, path: str, max_ttl: str) -> Result[str]:
        return self._write("tune", path, f"sys/mounts/{path}/tune", {"max_lease_ttl": max_ttl}, path)

    # ─────────────────────── CA material ───────────────────────

    def generate_root(
        self,
        path: str,
        common_name: str,
        issuer_name: str,
        key_spec: KeySpec,
        ttl: str,
    ) -> Result[str]:
        payload = {
            "common_name": common_name,
            "issuer_name": issuer_name,
            "key_type": key_spec.key_type,
            "key_bits": key_spec.key_bits,
            "ttl": ttl,
        }
        return self._call(
            "generate-root",
            path,
            lambda: _require(self._post(f"{path}/root/generate/internal", payload)["data"]["certificate"], "certificate"),
        )

    def generate_csr(
        self,
        path: str,
        common_name: str,
        issuer_name: str,
        key_spec: KeySpec,
    ) -> Result[str]:
        payload = {
            "common_name": common_name,
            "issuer_name": issuer_name,
            "key_type": key_spec.key_type,
            "key_bits": key_spec.key_bits,
        }
        return self._call(
            "generate-csr",
            path,
            lambda: _require(self._post(f"{path}/intermediate/generate/internal", payload)["data"]["csr"], "csr"),
        )

    def cross_sign(
        self,
        parent_path: str,
        csr_pem: str,
        ttl: str,
        use_csr_values: bool = True,
    ) -> Result[str]:
        payload = {
            "csr": csr_pem,
            "format": "pem",
            "ttl": ttl,
            "use_csr_values": use_csr_values,
        }

        def rejected(err: FailureDescription) -> FailureDescription:
            if err.code is ErrorCode.VALIDATION_ERROR:
                return ResultFailures.cross_sign_error(parent_path, err.message, err.exception).error()
            return err

        return self._call(
            "cross-sign",
            parent_path,
            lambda: _require(
                self._post(f"{parent_path}/root/sign-intermediate", payload)["data"]["certificate"],
                "certificate",
            ),
        ).map_failure(rejected)

    def set_signed(self, path: str, certificate_pem: str) -> Result[str]:
        return self._write(
            "set-signed", path, f"{path}/intermediate/set-signed", {"certificate": certificate_pem}, path
        )

    def configure_urls(self, path: str, urls: UrlSet) -> Result[str]:
        payload = {**_url_payload(urls), "enable_templating": True}
        return self._write("configure-urls", path, f"{path}/config/urls", payload, path)

    def list_issuers(self, path: str) -> Result[list[str]]:
        return self._list("list-issuers", path, f"{path}/issuers")

    def set_default_issuer(self, path: str, issuer_id: str) -> Result[str]:
        return self._write("set-default-issuer", path, f"{path}/config/issuers", {"default": issuer_id}, issuer_id)

    def update_issuer_urls(self, path: str, issuer_id: str, urls: UrlSet) -> Result[str]:
        return self._write("update-issuer-urls", path, f"{path}/issuer/{issuer_id}", _url_payload(urls), issuer_id)

    def create_role(self, path: str, policy: SigningRolePolicy) -> Result[str]:
        payload: dict[str, Any] = {
            "max_ttl": policy.max_ttl,
            "key_usage": list(policy.key_usage),
            **policy.options,
        }
        if policy.ext_key_usage_oids:
            payload["ext_key_usage_oids"] = list(policy.ext_key_usage_oids)
        return self._write("create-role", path, f"{path}/roles/{policy.role_id}", payload, policy.role_id)

    def read_role_max_ttl(self, path: str, role_id: str) -> Result[int]:
        return self._call(
            "read-role",
            path,
            lambda: int(self._get_data(f"{path}/roles/{role_id}").get("max_ttl") or 0),
        )

    def read_ca_certificate(self, path: str) -> Result[str]:
        return self._call(
            "read-ca",
            path,
            lambda: _require(self._get_data(f"{path}/cert/ca").get("certificate"), "certificate"),
        )

    # ─────────────────────── leaf certificates ───────────────────────

    def issue(
        self,
        path: str,
        role_id: str,
        subject: SubjectFields,
        ttl: str,
    ) -> Result[IssuedCertificate]:
        def parse(body: dict[str, Any]) -> IssuedCertificate:
            data = body["data"]
            return IssuedCertificate(
                serial_number=str(data["serial_number"]),
                certificate_pem=str(data["certificate"]),
                private_key_pem=str(data["private_key"]),
                expiration=datetime.fromtimestamp(int(data["expiration"]), UTC),
                issuing_ca_pem=str(data.get("issuing_ca") or ""),
            )

        return self._call(
            "issue",
            path,
            lambda: parse(self._post(f"{path}/issue/{role_id}", _subject_payload(subject, ttl))),
        )

    def list_certs(self, path: str) -> Result[list[str]]:
        return self._list("list-certs", path, f"{path}/certs")

    def read_cert(self, path: str, serial: str) -> Result[BackendCertificate]:
        def parse(data: dict[str, Any]) -> BackendCertificate:
            return BackendCertificate(
                serial_number=serial,
                certificate_pem=_require(data.get("certificate"), "certificate"),
                revocation_time=int(data.get("revocation_time") or 0),
            )

        def unknown(err: FailureDescription) -> FailureDescription:
            if err.code is ErrorCode.NOT_FOUND:
                return ResultFailures.not_found("Certificate", serial, path).error()
            return err

        return self._call(
            "read-cert",
            serial,
            lambda: parse(self._get_data(f"{path}/cert/{serial}")),
        ).map_failure(unknown)

    def revoke(self, path: str, serial: str) -> Result[int]:
        def parse(body: dict[str, Any]) -> int:
            if body.get("warnings"):
                log.warning("vault.revoke_warning", path=path, serial=serial, warnings=body["warnings"])
            return int((body.get("data") or {}).get("revocation_time") or 0)

        return self._call(
            "revoke",
            serial,
            lambda: parse(self._post(f"{path}/revoke", {"serial_number": serial})),
        )

    # ─────────────────────── CRL ───────────────────────

    def rotate_crl(self, path: str) -> Result[str]:
        return self._call("rotate-crl", path, lambda: self._get(f"{path}/crl/rotate")).map(lambda _: path)

    def read_crl(self, path: str) -> Result[str]:
        def unavailable(err: FailureDescription) -> FailureDescription:
            if err.code in (ErrorCode.NOT_FOUND, ErrorCode.VALIDATION_ERROR):
                return ResultFailures.crl_unavailable(path, err.message).error()
            return err

        def require_crl(body: str) -> Result[str]:
            if "BEGIN X509 CRL" not in body:
                return ResultFailures.crl_unavailable(path, "backend returned no CRL (disabled or not generated yet)")
            return Result.success(body)

        return (
            self._call("read-crl", path, lambda: self._get(f"{path}/crl/pem").text.strip())
            .map_failure(unavailable)
            .flat_map(require_crl)
        )

    # ─────────────────────── transport ───────────────────────

    def _call(self, operation: str, subject: str, computation: Callable[[], T]) -> Result[T]:
        """Run one backend exchange and classify whatever goes wrong."""
        try:
            return Result.success(computation())
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            return Result.failure(
                _status_to_code(status),
                f"{operation} failed for {subject}: HTTP {status} {_vault_errors(e.response)}",
                e,
                subject,
            )
        except httpx.TimeoutException as e:
            return Result.failure(
                ErrorCode.TIMEOUT_ERROR,
                f"{operation} timed out after {self._timeout}s for {subject}",
                e,
                subject,
            )
        except httpx.HTTPError as e:
            return Result.failure(
                ErrorCode.EXTERNAL_SERVICE_ERROR,
                f"{operation} failed for {subject}: {e}",
                e,
                subject,
            )
        except EmptyResponseError as e:
            return Result.failure(ErrorCode.NOT_FOUND, f"{operation} failed for {subject}: {e}", e, subject)
        except (KeyError, TypeError, ValueError) as e:
            return Result.failure(
                ErrorCode.EXTERNAL_SERVICE_ERROR,
                f"{operation} returned a malformed response for {subject}: {e!r}",
                e,
                subject,
            )

    def _write(
        self,
        operation: str,
        subject: str,
        api_path: str,
        payload: dict[str, Any],
        acted_on: str,
    ) -> Result[str]:
        return self._call(operation, subject, lambda: self._post(api_path, payload)).map(lambda _: acted_on)

    def _list(self, operation: str, path: str, api_path: str) -> Result[list[str]]:
        """
        Vault answers an empty LIST with a bare 404 (`{"errors": []}`), which is
        an empty list. A 404 that carries errors ("no handler for route") means
        the namespace does not exist and stays NOT_FOUND.
        """
        result = self._call(
            operation,
            path,
            lambda: [str(key) for key in self._get_data(api_path, {"list": "true"}).get("keys") or []],
        )
        match result:
            case Failure(err) if err.code is ErrorCode.NOT_FOUND and _is_empty_listing(err):
                return Result.success([])
        return result

    def _headers(self) -> dict[str, str]:
        headers = {"X-Vault-Token": self._token}
        if self._namespace:
            headers["X-Vault-Namespace"] = self._namespace
        return headers

    def _client(self) -> httpx.Client:
        return httpx.Client(
            base_url=f"{self._addr}/v1/",
            headers=self._headers(),
            timeout=self._timeout,
            verify=self._verify_tls,
        )

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, min=0.1, max=10),
        retry=retry_if_exception_type((httpx.TimeoutException, httpx.NetworkError)),
        reraise=True,
    )
    def _get(self, api_path: str, params: dict[str, str] | None = None) -> httpx.Response:
        """HTTP GET with retry: exceptions classified by _call."""
        with self._client() as client:
            response = client.get(api_path, params=params)
            response.raise_for_status()
            return response

    def _get_data(self, api_path: str, params: dict[str, str] | None = None) -> dict[str, Any]:
        data = self._get(api_path, params).json().get("data")
        if data is None:
            raise EmptyResponseError(f"no data returned for {api_path}")
        return dict(data)

    def _post(self, api_path: str, payload: dict[str, Any]) -> dict[str, Any]:
        """HTTP POST without retry; 204 responses yield an empty body."""
        with self._client() as client:
            response = client.post(api_path, json=payload)
            response.raise_for_status()
            log.debug("vault.write", api_path=api_path, status=response.status_code)
            if not response.content:
                return {}
            return dict(response.json())
