"""Expand and flatten between declarative attributes and the cluster spec.

The declarative host hands us a flat, loosely typed attribute bag where every
nested block is a one-element list (Terraform style):

    name: k8s
    resource_group: rg-k8s
    location: westeurope
    kubernetes_version: "1.9.8"
    linux_profile:
      - admin_username: azureuser
        ssh:
          - key_data: "ssh-rsa AAAA..."
    service_principal:
      - client_id: ...
        client_secret: ...
    master_profile:
      - count: 1
        dns_name_prefix: k8smaster
        vm_size: Standard_D2_v2
    agent_pool_profiles:
      - name: agentpool1
        count: 3
    tags:
      Environment: Production

Expand turns that into ClusterSpec models and raises errors.ValidationError
naming the offending attribute path. Flatten is the inverse and never fails
on a valid model.

Optional integers (OS disk sizes) are present-with-value or absent in the
flat form, never present-with-zero: see optional_int() and put_optional().
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping, Sequence
from typing import Any, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from .errors import ValidationError
from .keyset import OrderedKeySet
from .models import (
    AgentPoolProfile,
    ClusterCredentials,
    ClusterIdentity,
    ClusterSpec,
    LinuxProfile,
    MasterProfile,
    OSType,
    ServicePrincipal,
    master_fqdn,
)
from .security import mask_secret
from .versions import DEFAULT_SUPPORTED_VERSIONS, SupportedVersionTable

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

# Attribute keys
LINUX_PROFILE = "linux_profile"
SERVICE_PRINCIPAL = "service_principal"
MASTER_PROFILE = "master_profile"
AGENT_POOL_PROFILES = "agent_pool_profiles"
TAGS = "tags"
KUBE_CONFIG = "kube_config"
KUBE_CONFIG_RAW = "kube_config_raw"

# Model field name -> attribute key, where they differ
_ATTRIBUTE_NAMES: dict[str, str] = {"ssh_keys": "ssh"}

_INTEGER_PATTERN = re.compile(r"-?[0-9]+")


# =============================================================================
# Helpers
# =============================================================================


def optional_int(value: Any, path: str) -> int | None:
    """Read an optional integer attribute.

    Missing, None, empty string and zero all mean "unset" and return None.

    Raises:
        ValidationError: If the value is present but not an integer.
    """
    if value is None or value == "":
        return None
    number = _to_int(value, path)
    return number or None


def put_optional(attrs: dict[str, Any], key: str, value: int | None) -> None:
    """Write an optional integer attribute, omitting the key when unset."""
    if value:
        attrs[key] = value


def _to_int(value: Any, path: str) -> int:
    # bool is an int subclass; "true" is never a valid count
    if isinstance(value, bool):
        raise ValidationError(f"expected an integer, got {value!r}", field=path)
    if isinstance(value, int):
        return value
    if isinstance(value, str) and _INTEGER_PATTERN.fullmatch(value.strip()):
        return int(value.strip())
    raise ValidationError(f"expected an integer, got {value!r}", field=path)


def _count(block: Mapping[str, Any], path: str, default: int = 1) -> int:
    value = block.get("count")
    if value is None or value == "":
        return default
    return _to_int(value, path)


def _single_block(attrs: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    """Return the one mapping inside a nested block attribute."""
    raw = attrs.get(key) if isinstance(attrs, Mapping) else None
    if raw is None:
        raise ValidationError(f"{key} is required", field=key)
    if isinstance(raw, Mapping):
        return raw
    if isinstance(raw, Sequence) and not isinstance(raw, str):
        if len(raw) != 1:
            raise ValidationError(
                f"expected exactly one {key} block, found {len(raw)}", field=key
            )
        block = raw[0]
        if isinstance(block, Mapping):
            return block
    raise ValidationError(f"{key} must be a block of attributes", field=key)


def _require_str(block: Mapping[str, Any], key: str, path: str) -> str:
    value = block.get(key)
    if value is None or value == "":
        raise ValidationError(f"{key} is required", field=path)
    if not isinstance(value, str):
        raise ValidationError(f"{key} must be a string, got {value!r}", field=path)
    return value


def _optional_str(block: Mapping[str, Any], key: str, path: str) -> str | None:
    value = block.get(key)
    if value is None or value == "":
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{key} must be a string, got {value!r}", field=path)
    return value


def _build(model: type[ModelT], data: dict[str, Any], prefix: str) -> ModelT:
    """Validate a model, translating pydantic errors to attribute paths."""
    try:
        return model.model_validate(data)
    except PydanticValidationError as e:
        errors: list[tuple[str, str]] = []
        for error in e.errors():
            loc = [_ATTRIBUTE_NAMES.get(str(part), str(part)) for part in error["loc"]]
            path = ".".join(part for part in [prefix, *loc] if part)
            errors.append((path, error["msg"]))
        raise ValidationError.from_errors(errors) from e


def _collect(errors: list[tuple[str, str]], e: ValidationError) -> None:
    if e.errors:
        errors.extend(e.errors)
    else:
        errors.append((e.field or "", str(e)))


# =============================================================================
# Linux Profile
# =============================================================================


def expand_linux_profile(attrs: Mapping[str, Any]) -> LinuxProfile:
    """Build the linux profile; duplicate SSH keys collapse to one.

    Raises:
        ValidationError: If the username is empty or no key is present.
    """
    prefix = f"{LINUX_PROFILE}.0"
    block = _single_block(attrs, LINUX_PROFILE)
    admin_username = _require_str(block, "admin_username", f"{prefix}.admin_username")

    raw_keys = block.get("ssh") or []
    if isinstance(raw_keys, Mapping) or isinstance(raw_keys, str):
        raw_keys = [raw_keys]
    elif not isinstance(raw_keys, Sequence):
        raise ValidationError(
            f"ssh must be a list of key blocks, got {raw_keys!r}", field=f"{prefix}.ssh"
        )

    keys: OrderedKeySet[str] = OrderedKeySet()
    for index, entry in enumerate(raw_keys):
        path = f"{prefix}.ssh.{index}.key_data"
        if isinstance(entry, Mapping):
            keys.add(_require_str(entry, "key_data", path))
        elif isinstance(entry, str) and entry:
            keys.add(entry)
        else:
            raise ValidationError(f"invalid SSH key entry {entry!r}", field=path)

    if not keys:
        raise ValidationError("at least one SSH public key is required", field=f"{prefix}.ssh")

    if len(keys) < len(raw_keys):
        logger.debug(
            "Dropped duplicate SSH keys",
            extra={"duplicates": len(raw_keys) - len(keys)},
        )

    return _build(
        LinuxProfile,
        {"admin_username": admin_username, "ssh_keys": keys.as_tuple()},
        prefix,
    )


def flatten_linux_profile(profile: LinuxProfile) -> list[dict[str, Any]]:
    return [
        {
            "admin_username": profile.admin_username,
            "ssh": [{"key_data": key} for key in profile.ssh_keys],
        }
    ]


# =============================================================================
# Service Principal
# =============================================================================


def expand_service_principal(attrs: Mapping[str, Any]) -> ServicePrincipal:
    prefix = f"{SERVICE_PRINCIPAL}.0"
    block = _single_block(attrs, SERVICE_PRINCIPAL)
    return _build(
        ServicePrincipal,
        {
            "client_id": _require_str(block, "client_id", f"{prefix}.client_id"),
            "client_secret": _require_str(block, "client_secret", f"{prefix}.client_secret"),
        },
        prefix,
    )


def flatten_service_principal(
    profile: ServicePrincipal,
    *,
    display_safe: bool = False,
) -> list[dict[str, Any]]:
    """Flatten the service principal.

    Args:
        profile: The credential.
        display_safe: Mask the secret. Use for anything a human or a log sees;
            leave False only for the state store.
    """
    secret = profile.client_secret.get_secret_value()
    return [
        {
            "client_id": profile.client_id,
            "client_secret": mask_secret(secret) if display_safe else secret,
        }
    ]


# =============================================================================
# Master Profile
# =============================================================================


def expand_master_profile(attrs: Mapping[str, Any]) -> MasterProfile:
    """Build the master profile. The read-only fqdn attribute is not read back."""
    prefix = f"{MASTER_PROFILE}.0"
    block = _single_block(attrs, MASTER_PROFILE)

    data: dict[str, Any] = {
        "count": _count(block, f"{prefix}.count"),
        "dns_name_prefix": _require_str(block, "dns_name_prefix", f"{prefix}.dns_name_prefix"),
        "os_disk_size": optional_int(block.get("os_disk_size"), f"{prefix}.os_disk_size"),
    }
    vm_size = _optional_str(block, "vm_size", f"{prefix}.vm_size")
    if vm_size is not None:
        data["vm_size"] = vm_size

    return _build(MasterProfile, data, prefix)


def provisioned_fqdn(state: Mapping[str, Any]) -> str | None:
    """The FQDN recorded in a previously flattened state, if any."""
    try:
        block = _single_block(state, MASTER_PROFILE)
    except ValidationError:
        return None
    value = block.get("fqdn")
    return value if isinstance(value, str) and value else None


def flatten_master_profile(profile: MasterProfile, location: str) -> list[dict[str, Any]]:
    """Flatten the master profile, filling in the FQDN when not yet known."""
    values: dict[str, Any] = {
        "count": profile.count,
        "dns_name_prefix": profile.dns_name_prefix,
        "vm_size": profile.vm_size,
        "fqdn": profile.fqdn or master_fqdn(profile.dns_name_prefix, location),
    }
    put_optional(values, "os_disk_size", profile.os_disk_size)
    return [values]


# =============================================================================
# Agent Pool Profiles
# =============================================================================


def _expand_agent_pool(block: Any, prefix: str) -> AgentPoolProfile:
    if not isinstance(block, Mapping):
        raise ValidationError("agent pool profile must be a block of attributes", field=prefix)

    data: dict[str, Any] = {
        "name": _require_str(block, "name", f"{prefix}.name"),
        "count": _count(block, f"{prefix}.count"),
        "os_disk_size": optional_int(block.get("os_disk_size"), f"{prefix}.os_disk_size"),
        "os_type": _optional_str(block, "os_type", f"{prefix}.os_type") or OSType.LINUX.value,
    }
    vm_size = _optional_str(block, "vm_size", f"{prefix}.vm_size")
    if vm_size is not None:
        data["vm_size"] = vm_size

    return _build(AgentPoolProfile, data, prefix)


def expand_agent_pool_profiles(attrs: Mapping[str, Any]) -> list[AgentPoolProfile]:
    """Build the ordered agent pools.

    Every pool is checked before failing, so one error lists all bad pools.

    Raises:
        ValidationError: If no pool is given, a pool is invalid, or two pools
            share a name.
    """
    raw = attrs.get(AGENT_POOL_PROFILES) if isinstance(attrs, Mapping) else None
    if not raw or isinstance(raw, (str, Mapping)) or not isinstance(raw, Sequence):
        raise ValidationError(
            "at least one agent pool profile is required", field=AGENT_POOL_PROFILES
        )

    profiles: list[AgentPoolProfile] = []
    errors: list[tuple[str, str]] = []
    seen: set[str] = set()

    for index, block in enumerate(raw):
        prefix = f"{AGENT_POOL_PROFILES}.{index}"
        try:
            profile = _expand_agent_pool(block, prefix)
        except ValidationError as e:
            _collect(errors, e)
            continue

        if profile.name in seen:
            errors.append((f"{prefix}.name", f"duplicate agent pool name '{profile.name}'"))
            continue
        seen.add(profile.name)
        profiles.append(profile)

    if errors:
        raise ValidationError.from_errors(errors)

    return profiles


def flatten_agent_pool_profiles(profiles: Sequence[AgentPoolProfile]) -> list[dict[str, Any]]:
    flattened: list[dict[str, Any]] = []
    for profile in profiles:
        values: dict[str, Any] = {
            "name": profile.name,
            "count": profile.count,
            "vm_size": profile.vm_size,
            "os_type": profile.os_type.value,
        }
        put_optional(values, "os_disk_size", profile.os_disk_size)
        flattened.append(values)
    return flattened


# =============================================================================
# Tags
# =============================================================================


def expand_tags(attrs: Mapping[str, Any]) -> dict[str, str]:
    raw = attrs.get(TAGS) if isinstance(attrs, Mapping) else None
    if raw is None:
        return {}
    if not isinstance(raw, Mapping):
        raise ValidationError("tags must be a mapping of strings", field=TAGS)

    tags: dict[str, str] = {}
    for key, value in raw.items():
        if not isinstance(key, str) or not isinstance(value, str):
            raise ValidationError(
                f"tag {key!r} must map a string to a string, got {value!r}",
                field=f"{TAGS}.{key}",
            )
        tags[key] = value
    return tags


def flatten_tags(tags: Mapping[str, str]) -> dict[str, str]:
    return dict(tags)


# =============================================================================
# Credentials
# =============================================================================


def flatten_credentials(
    credentials: ClusterCredentials,
    *,
    display_safe: bool = False,
) -> list[dict[str, Any]]:
    """Flatten derived credentials into one kube_config block.

    Optional credentials (token, client certificate/key) are absent keys
    when not present.
    """
    values: dict[str, Any] = {
        "host": credentials.host,
        "username": credentials.username,
        "cluster_ca_certificate": credentials.cluster_ca_certificate,
    }
    if credentials.password is not None:
        password = credentials.password.get_secret_value()
        values["password"] = mask_secret(password) if display_safe else password
    if credentials.client_certificate is not None:
        values["client_certificate"] = credentials.client_certificate
    if credentials.client_key is not None:
        client_key = credentials.client_key.get_secret_value()
        values["client_key"] = mask_secret(client_key) if display_safe else client_key
    return [values]


# =============================================================================
# Cluster
# =============================================================================


def expand_identity(
    attrs: Mapping[str, Any],
    table: SupportedVersionTable = DEFAULT_SUPPORTED_VERSIONS,
) -> ClusterIdentity:
    """Build the cluster identity; a missing version takes the table default."""
    version = _optional_str(attrs, "kubernetes_version", "kubernetes_version")
    return _build(
        ClusterIdentity,
        {
            "name": _require_str(attrs, "name", "name"),
            "resource_group": _require_str(attrs, "resource_group", "resource_group"),
            "location": _require_str(attrs, "location", "location"),
            "kubernetes_version": version or table.default_version,
            "tags": expand_tags(attrs),
        },
        "",
    )


def expand_cluster(
    attrs: Mapping[str, Any],
    table: SupportedVersionTable = DEFAULT_SUPPORTED_VERSIONS,
) -> ClusterSpec:
    """Build the full cluster specification.

    Each block is expanded independently and all failures are reported
    together.

    Raises:
        ValidationError: Listing every failing attribute path.
    """
    if not isinstance(attrs, Mapping):
        raise ValidationError("cluster attributes must be a mapping")

    errors: list[tuple[str, str]] = []
    parts: dict[str, Any] = {}

    expanders = (
        ("identity", lambda: expand_identity(attrs, table)),
        ("linux_profile", lambda: expand_linux_profile(attrs)),
        ("service_principal", lambda: expand_service_principal(attrs)),
        ("master_profile", lambda: expand_master_profile(attrs)),
        ("agent_pool_profiles", lambda: tuple(expand_agent_pool_profiles(attrs))),
    )
    for name, expand in expanders:
        try:
            parts[name] = expand()
        except ValidationError as e:
            _collect(errors, e)

    if errors:
        raise ValidationError.from_errors(errors)

    return _build(ClusterSpec, parts, "")


def flatten_cluster(
    spec: ClusterSpec,
    credentials: ClusterCredentials | None = None,
    kube_config_raw: str | None = None,
    *,
    display_safe: bool = False,
) -> dict[str, Any]:
    """Flatten the full specification plus derived read-only attributes."""
    identity = spec.identity
    attrs: dict[str, Any] = {
        "name": identity.name,
        "resource_group": identity.resource_group,
        "location": identity.location,
        "kubernetes_version": identity.kubernetes_version,
        LINUX_PROFILE: flatten_linux_profile(spec.linux_profile),
        SERVICE_PRINCIPAL: flatten_service_principal(
            spec.service_principal, display_safe=display_safe
        ),
        MASTER_PROFILE: flatten_master_profile(spec.master_profile, identity.location),
        AGENT_POOL_PROFILES: flatten_agent_pool_profiles(spec.agent_pool_profiles),
        TAGS: flatten_tags(identity.tags),
        KUBE_CONFIG: (
            flatten_credentials(credentials, display_safe=display_safe) if credentials else []
        ),
    }
    if kube_config_raw is not None:
        attrs[KUBE_CONFIG_RAW] = mask_secret(kube_config_raw) if display_safe else kube_config_raw
    return attrs
