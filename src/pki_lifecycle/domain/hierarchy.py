"""
Hierarchy registry: Root → Intermediate → Leaf addressing and policy rules.

Pure functions, no I/O. Everything here is deterministic so the same
logical CA is always addressed by the same backend path:

  Root CA          {base}_{client}_ROOT
  Intermediate CA  {base}_{client}_{vendor}_INT

Name components may not contain the backend path separator ("/") nor the
component joiner ("_"), which keeps path resolution injective: two
distinct (base, client, vendor) triples can never share a path.

TTLs use the backend's duration grammar restricted to seconds, minutes
and hours ("87600h", "525600m", "31536000s").
"""

from __future__ import annotations

import re
from datetime import datetime, timedelta

from railway import ErrorCode, Result, ResultFailures

from pki_lifecycle.domain.models import (
    CANaming,
    CANode,
    SigningRolePolicy,
    Tier,
    UrlSet,
)

INTERMEDIATE_SIGNER_ROLE = "intermediate-signer"
LEAF_SIGNING_ROLE = "digital_signing"
LEAF_MAX_TTL = "8760h"

# serverAuth, clientAuth, codeSigning, emailProtection, MS document signing
LEAF_EXT_KEY_USAGE_OIDS = (
    "1.3.6.1.5.5.7.3.1",
    "1.3.6.1.5.5.7.3.2",
    "1.3.6.1.5.5.7.3.3",
    "1.3.6.1.5.5.7.3.4",
    "1.3.6.1.4.1.311.10.3.12",
)

_NAME_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9.-]*$")
_TTL_PATTERN = re.compile(r"^([0-9]+)([smh])$")
_UNIT_SECONDS = {"s": 1, "m": 60, "h": 3600}


# ─────────────────────── Names and paths ───────────────────────


def validate_name(field: str, value: str | None) -> Result[str]:
    """Reject empty components and anything containing '/', '_' or whitespace."""
    if not value:
        return ResultFailures.invalid_name(field, value or "", "must not be empty")
    if not _NAME_PATTERN.match(value):
        return ResultFailures.invalid_name(
            field,
            value,
            "only letters, digits, '.' and '-' are allowed (no '/', '_' or spaces)",
        )
    return Result.success(value)


def resolve_path(tier: Tier, base: str, client: str, vendor: str | None = None) -> Result[str]:
    """
    Compose the backend namespace path for a CA node.

    Root CAs are scoped by (base, client) only and refuse a vendor;
    intermediates require one.
    """
    if tier is Tier.ROOT and vendor is not None:
        return ResultFailures.invalid_name("vendor", vendor, "root CAs are not vendor-scoped")
    if tier is Tier.INTERMEDIATE and vendor is None:
        return ResultFailures.invalid_name("vendor", "", "intermediate CAs require a vendor")

    components = [("base", base), ("client", client)]
    if vendor is not None:
        components.append(("vendor", vendor))

    return Result.all_of([validate_name(field, value) for field, value in components]).map(
        lambda parts: "_".join([*parts, tier.value])
    )


def naming_path(tier: Tier, naming: CANaming) -> Result[str]:
    vendor = naming.vendor if tier is Tier.INTERMEDIATE else None
    return resolve_path(tier, naming.base, naming.client, vendor)


def naming_from_path(path: str) -> Result[CANaming]:
    """
    Inverse of resolve_path: jimsnet_abc_vendor2_INT → CANaming("jimsnet", "abc", "vendor2").

    Components never contain '_', so the split is exact.
    """
    match path.split("_"):
        case [base, client, Tier.ROOT.value]:
            fields = [("base", base), ("client", client)]
        case [base, client, vendor, Tier.INTERMEDIATE.value]:
            fields = [("base", base), ("client", client), ("vendor", vendor)]
        case _:
            return ResultFailures.invalid_name(
                "CA path",
                path,
                "expected {base}_{client}_ROOT or {base}_{client}_{vendor}_INT",
            )
    return Result.all_of([validate_name(field, value) for field, value in fields]).map(
        lambda parts: CANaming(*parts)
    )


def root_issuer_name(naming: CANaming) -> str:
    return f"{naming.base}-{naming.client}-root"


def root_common_name(naming: CANaming) -> str:
    return f"{naming.base} {naming.client} Root CA"


def intermediate_issuer_name(naming: CANaming) -> str:
    return f"{naming.base}-{naming.client}-{naming.vendor}-intermediate"


def intermediate_common_name(naming: CANaming) -> str:
    return f"{naming.base} {naming.client} {naming.vendor} Intermediate CA"


def build_urls(public_addr: str, path: str) -> UrlSet:
    prefix = f"{public_addr.rstrip('/')}/v1/{path}"
    return UrlSet(issuing=f"{prefix}/ca", crl=f"{prefix}/crl", ocsp=f"{prefix}/ocsp")


# ─────────────────────── TTL rules ───────────────────────


def _split_ttl(ttl: str) -> Result[tuple[int, str]]:
    match = _TTL_PATTERN.match(ttl or "")
    if match is None:
        return ResultFailures.validation_error(
            f"TTL must be in format like 87600h, 525600m, 31536000s; got {ttl!r}",
            subject=ttl,
        )
    return Result.success((int(match.group(1)), match.group(2)))


def parse_ttl(ttl: str) -> Result[timedelta]:
    return _split_ttl(ttl).map(lambda parts: timedelta(seconds=parts[0] * _UNIT_SECONDS[parts[1]]))


def compute_child_ttl(parent_ttl: str) -> Result[str]:
    """
    Default child TTL: integer half of the parent TTL in the same unit.

    Never truncates to zero: "1h" is rejected rather than producing "0h".
    """

    def halve(parts: tuple[int, str]) -> Result[str]:
        value, unit = parts
        half = value // 2
        if half == 0:
            return ResultFailures.validation_error(
                f"Parent TTL {parent_ttl} is too short: child TTL would truncate to 0{unit}",
                subject=parent_ttl,
            )
        return Result.success(f"{half}{unit}")

    return _split_ttl(parent_ttl).flat_map(halve)


def check_child_ttl(
    child_path: str,
    child_ttl: str,
    parent_cap_seconds: int,
    parent_not_after: datetime,
    now: datetime,
) -> Result[timedelta]:
    """
    A child CA may not outlive its parent's signing-role cap nor the
    parent's remaining validity window. A zero cap means "no role cap".
    """
    if parent_not_after <= now:
        return ResultFailures.cross_sign_error(child_path, "parent CA certificate has expired")

    def within_parent(requested: timedelta) -> Result[timedelta]:
        if parent_cap_seconds and requested.total_seconds() > parent_cap_seconds:
            return ResultFailures.cross_sign_error(
                child_path,
                f"requested TTL {child_ttl} exceeds parent signing cap of {parent_cap_seconds}s",
            )
        if requested > parent_not_after - now:
            return ResultFailures.cross_sign_error(
                child_path,
                f"requested TTL {child_ttl} outlives the parent CA (expires {parent_not_after.isoformat()})",
            )
        return Result.success(requested)

    return parse_ttl(child_ttl).flat_map(within_parent)


# ─────────────────────── Signing roles ───────────────────────


def intermediate_signer_policy(max_ttl: str) -> SigningRolePolicy:
    """Role installed on a root for signing intermediate CSRs."""
    return SigningRolePolicy(
        role_id=INTERMEDIATE_SIGNER_ROLE,
        max_ttl=max_ttl,
        key_usage=("DigitalSignature", "KeyCertSign", "CRLSign"),
        options={
            "allow_any_name": True,
            "enforce_hostnames": False,
            "basic_constraints_valid_for_non_ca": True,
            "use_csr_common_name": True,
        },
    )


def leaf_signing_policy(max_ttl: str = LEAF_MAX_TTL) -> SigningRolePolicy:
    """
    Role installed on an intermediate for user certificates.

    Its cap is independent of the CA's own TTL: leaf certificates never
    approach CA validity.
    """
    return SigningRolePolicy(
        role_id=LEAF_SIGNING_ROLE,
        max_ttl=max_ttl,
        key_usage=(
            "DigitalSignature",
            "NonRepudiation",
            "KeyEncipherment",
            "DataEncipherment",
            "KeyAgreement",
        ),
        ext_key_usage_oids=LEAF_EXT_KEY_USAGE_OIDS,
        options={
            "allow_any_name": True,
            "enforce_hostnames": False,
            "server_flag": True,
            "client_flag": True,
            "code_signing_flag": True,
            "document_signing_flag": True,
            "use_csr_common_name": True,
            "no_store": False,
        },
    )


# ─────────────────────── Nodes ───────────────────────


def root_node(naming: CANaming, ttl: str, public_addr: str) -> Result[CANode]:
    """Describe the root node for `naming`; validates names and the child TTL up front."""
    return Result.combine(
        naming_path(Tier.ROOT, naming),
        compute_child_ttl(ttl),
        lambda path, child_ttl: CANode(
            path=path,
            tier=Tier.ROOT,
            issuer_name=root_issuer_name(naming),
            common_name=root_common_name(naming),
            max_ttl=ttl,
            parent_path=None,
            urls=build_urls(public_addr, path),
            signing_role=intermediate_signer_policy(child_ttl),
        ),
    )


def intermediate_node(
    parent_path: str,
    naming: CANaming,
    ttl: str,
    public_addr: str,
    leaf_max_ttl: str = LEAF_MAX_TTL,
) -> Result[CANode]:
    return Result.combine(
        naming_path(Tier.INTERMEDIATE, naming),
        parse_ttl(ttl),
        lambda path, _: CANode(
            path=path,
            tier=Tier.INTERMEDIATE,
            issuer_name=intermediate_issuer_name(naming),
            common_name=intermediate_common_name(naming),
            max_ttl=ttl,
            parent_path=parent_path,
            urls=build_urls(public_addr, path),
            signing_role=leaf_signing_policy(leaf_max_ttl),
        ),
    ).ensure(
        lambda node: node.path != parent_path,
        ErrorCode.INVALID_NAME,
        f"Intermediate path may not equal its parent path: {parent_path}",
    )
