"""
Settings for pki-lifecycle, read from the environment and an optional .env file.

AppSettings is the only BaseSettings; the groups below are plain models
filled through env_nested_delimiter="__" (VAULT__TOKEN is vault.token,
ISSUANCE__ROOT_TTL is issuance.root_ttl). Bad TTLs, cron expressions
and name components fail here at startup instead of partway through a
CA creation protocol.
"""

from __future__ import annotations

import re
from pathlib import Path

from pydantic import BaseModel, Field, SecretStr, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from pki_lifecycle.domain.hierarchy import validate_name
from pki_lifecycle.domain.models import CANaming, KeySpec

# .env at the repository root
_ENV_FILE = Path(__file__).parent.parent.parent / ".env"

_TTL_PATTERN = re.compile(r"^[0-9]+[smh]$")


class VaultSettings(BaseModel):
    """
    Signing backend connection.

    `public_addr` is the address embedded in issued certificates
    (AIA / CRL distribution / OCSP URLs); it defaults to `addr`.
    """

    addr: str = Field(default="http://127.0.0.1:8200", description="Vault API address")
    token: SecretStr = Field(description="Vault token with PKI mount/issue/revoke capabilities")
    namespace: str | None = Field(default=None, description="Vault Enterprise namespace header")
    public_addr: str | None = Field(default=None, description="Address used in certificate URLs")
    verify_tls: bool = Field(default=True)

    def get_public_addr(self) -> str:
        return self.public_addr or self.addr


class NamingSettings(BaseModel):
    """Default base/client/vendor triple used by the scheduler and the /naming endpoint."""

    base: str = Field(default="jimsnet")
    client: str = Field(default="client1")
    vendor: str = Field(default="vendor1")

    @field_validator("base", "client", "vendor")
    @classmethod
    def validate_component(cls, value: str, info: ValidationInfo) -> str:
        """Same rule as path resolution: letters, digits, '.' and '-' only."""
        result = validate_name(info.field_name or "name", value.strip())
        if result.is_failure():
            raise ValueError(result.error().message)
        return result.value()

    def to_naming(self) -> CANaming:
        return CANaming(base=self.base, client=self.client, vendor=self.vendor)


class IssuanceSettings(BaseModel):
    """Default TTLs and key parameters for CA and leaf issuance."""

    root_ttl: str = Field(default="87600h")
    intermediate_ttl: str = Field(default="43800h")
    leaf_ttl: str = Field(default="720h")
    leaf_max_ttl: str = Field(default="8760h", description="Cap of the leaf signing role")
    key_type: str = Field(default="rsa")
    key_bits: int = Field(default=4096, ge=256)

    @field_validator("root_ttl", "intermediate_ttl", "leaf_ttl", "leaf_max_ttl")
    @classmethod
    def validate_ttl(cls, value: str) -> str:
        """Reject anything outside the 87600h / 525600m / 31536000s grammar."""
        if not _TTL_PATTERN.match(value.strip()):
            raise ValueError(f"TTL must be in format like 87600h, 525600m, 31536000s; got {value!r}")
        return value.strip()

    def key_spec(self) -> KeySpec:
        return KeySpec(key_type=self.key_type, key_bits=self.key_bits)


class StorageSettings(BaseModel):
    root_dir: Path = Field(default=Path("."), description="Root of ROOT_CERT / INT_CERTS / USER_CERTS")


class SchedulerSettings(BaseModel):
    """When the CRL refresh job runs, e.g. "0 */6 * * *" or "0 2 * * *"."""

    cron: str = Field(
        default="0 */6 * * *",
        description="minute hour day month weekday",
    )
    enabled: bool = Field(default=True)

    @field_validator("cron")
    @classmethod
    def validate_cron(cls, value: str) -> str:
        fields = value.strip().split()
        if len(fields) != 5:
            raise ValueError(f"cron needs 5 fields, got {len(fields)}: {value!r}")
        return value.strip()


class AppSettings(BaseSettings):
    """Environment variables win over .env, which wins over the defaults."""

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE,
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    vault: VaultSettings
    naming: NamingSettings = Field(default_factory=lambda: NamingSettings())
    issuance: IssuanceSettings = Field(default_factory=lambda: IssuanceSettings())
    storage: StorageSettings = Field(default_factory=lambda: StorageSettings())
    scheduler: SchedulerSettings = Field(default_factory=lambda: SchedulerSettings())

    http_timeout_seconds: int = Field(default=30, ge=1)
    run_on_startup: bool = Field(default=False)
    log_level: str = Field(default="INFO")
