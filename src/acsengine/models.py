"""Pydantic models for the structured cluster specification.

These models provide:
1. The typed form of the flat declarative attributes (see mapper.py)
2. Field-level validation (counts, names, OS types)
3. Transformation to ARM template parameters
"""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Any

from pydantic import BaseModel, Field, SecretStr, field_validator, model_validator

from .keyset import OrderedKeySet

DEFAULT_VM_SIZE = "Standard_D2_v2"
VALID_MASTER_COUNTS = (1, 3, 5)
MIN_AGENT_COUNT = 1
MAX_AGENT_COUNT = 100
MAX_OS_DISK_SIZE_GB = 1023

# acs-engine constraints on names that end up in DNS labels and VM names
VALID_DNS_PREFIX_PATTERN = r"^[A-Za-z][A-Za-z0-9-]{1,43}[A-Za-z0-9]$"
VALID_AGENT_POOL_NAME_PATTERN = r"^[a-z][a-z0-9]{0,11}$"

FQDN_SUFFIX = "cloudapp.azure.com"


def master_fqdn(dns_name_prefix: str, location: str) -> str:
    """Externally visible FQDN of the master endpoint."""
    return f"{dns_name_prefix}.{location}.{FQDN_SUFFIX}"


class OSType(str, Enum):
    """Agent pool operating system."""

    LINUX = "Linux"
    WINDOWS = "Windows"


# =============================================================================
# Profiles
# =============================================================================


class LinuxProfile(BaseModel):
    """Admin access to the cluster's Linux machines."""

    model_config = {"extra": "ignore", "frozen": True}

    admin_username: Annotated[str, Field(min_length=1)]
    ssh_keys: tuple[str, ...] = ()

    @field_validator("ssh_keys")
    @classmethod
    def dedupe_keys(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        return OrderedKeySet(v).as_tuple()

    @property
    def key_set(self) -> OrderedKeySet[str]:
        return OrderedKeySet(self.ssh_keys)


class ServicePrincipal(BaseModel):
    """Service principal the cluster uses to manage Azure resources.

    The secret is a SecretStr so it never appears in repr() or logs; call
    get_secret_value() only on the storage channel.
    """

    model_config = {"extra": "ignore", "frozen": True}

    client_id: Annotated[str, Field(min_length=1)]
    client_secret: SecretStr

    @field_validator("client_secret")
    @classmethod
    def validate_secret(cls, v: SecretStr) -> SecretStr:
        if not v.get_secret_value():
            raise ValueError("client_secret cannot be empty")
        return v


class MasterProfile(BaseModel):
    """Control-plane replica set."""

    model_config = {"extra": "ignore", "frozen": True}

    count: int = 1
    dns_name_prefix: Annotated[str, Field(pattern=VALID_DNS_PREFIX_PATTERN)]
    vm_size: Annotated[str, Field(min_length=1)] = DEFAULT_VM_SIZE
    os_disk_size: Annotated[int, Field(ge=1, le=MAX_OS_DISK_SIZE_GB)] | None = None
    # Set by the provisioning flow, never by the user
    fqdn: str | None = None

    @field_validator("count")
    @classmethod
    def validate_count(cls, v: int) -> int:
        if v not in VALID_MASTER_COUNTS:
            raise ValueError(f"count must be one of {VALID_MASTER_COUNTS}")
        return v


class AgentPoolProfile(BaseModel):
    """Named, independently sized group of worker machines."""

    model_config = {"extra": "ignore", "frozen": True}

    name: Annotated[str, Field(pattern=VALID_AGENT_POOL_NAME_PATTERN)]
    count: Annotated[int, Field(ge=MIN_AGENT_COUNT, le=MAX_AGENT_COUNT)] = 1
    vm_size: Annotated[str, Field(min_length=1)] = DEFAULT_VM_SIZE
    os_disk_size: Annotated[int, Field(ge=1, le=MAX_OS_DISK_SIZE_GB)] | None = None
    os_type: OSType = OSType.LINUX


# =============================================================================
# Cluster
# =============================================================================


class ClusterIdentity(BaseModel):
    """Where the cluster lives and which Kubernetes release it runs."""

    model_config = {"extra": "ignore", "frozen": True}

    name: Annotated[str, Field(min_length=1)]
    resource_group: Annotated[str, Field(min_length=1, max_length=90)]
    location: Annotated[str, Field(min_length=1)]
    kubernetes_version: Annotated[str, Field(min_length=1)]
    tags: dict[str, str] = Field(default_factory=dict)


class ClusterSpec(BaseModel):
    """Full structured specification consumed by the template generator."""

    model_config = {"extra": "ignore", "frozen": True}

    identity: ClusterIdentity
    linux_profile: LinuxProfile
    service_principal: ServicePrincipal
    master_profile: MasterProfile
    agent_pool_profiles: tuple[AgentPoolProfile, ...] = Field(min_length=1)

    @model_validator(mode="after")
    def validate_unique_pool_names(self) -> ClusterSpec:
        seen: set[str] = set()
        for pool in self.agent_pool_profiles:
            if pool.name in seen:
                raise ValueError(f"duplicate agent pool name '{pool.name}'")
            seen.add(pool.name)
        return self

    @property
    def fqdn(self) -> str:
        return self.master_profile.fqdn or master_fqdn(
            self.master_profile.dns_name_prefix, self.identity.location
        )

    def to_arm_parameters(self) -> dict[str, Any]:
        """Convert to ARM template parameters."""
        params: dict[str, Any] = {}

        params["location"] = {"value": self.identity.location}
        params["kubernetesVersion"] = {"value": self.identity.kubernetes_version}

        # Master
        params["masterEndpointDNSNamePrefix"] = {"value": self.master_profile.dns_name_prefix}
        params["masterCount"] = {"value": self.master_profile.count}
        params["masterVMSize"] = {"value": self.master_profile.vm_size}
        if self.master_profile.os_disk_size is not None:
            params["masterOSDiskSizeGB"] = {"value": self.master_profile.os_disk_size}

        # Agent pools
        for pool in self.agent_pool_profiles:
            params[f"{pool.name}Count"] = {"value": pool.count}
            params[f"{pool.name}VMSize"] = {"value": pool.vm_size}
            params[f"{pool.name}OSType"] = {"value": pool.os_type.value}
            if pool.os_disk_size is not None:
                params[f"{pool.name}osDiskSizeGB"] = {"value": pool.os_disk_size}

        # Access
        params["linuxAdminUsername"] = {"value": self.linux_profile.admin_username}
        if self.linux_profile.ssh_keys:
            params["sshRSAPublicKey"] = {"value": self.linux_profile.ssh_keys[0]}

        params["servicePrincipalClientId"] = {"value": self.service_principal.client_id}
        params["servicePrincipalClientSecret"] = {
            "value": self.service_principal.client_secret.get_secret_value()
        }

        if self.identity.tags:
            params["tags"] = {"value": dict(self.identity.tags)}

        return params


class ClusterCredentials(BaseModel):
    """Connection parameters derived from a deployed cluster's kube config."""

    model_config = {"extra": "ignore", "frozen": True}

    host: str
    username: str
    cluster_ca_certificate: str
    password: SecretStr | None = None
    client_certificate: str | None = None
    client_key: SecretStr | None = None
