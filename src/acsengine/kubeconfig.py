"""Parse a cluster-admin kube config and derive cluster credentials.

acs-engine writes one kube config per region after a deployment:

    <output_dir>/<dns_prefix>/kubeconfig/kubeconfig.<location>.json

The document is JSON, which YAML parses as-is, so both formats are accepted.
"""

from __future__ import annotations

import base64
import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from .errors import ParseError, ValidationError
from .mapper import flatten_credentials
from .models import ClusterCredentials, master_fqdn

logger = logging.getLogger(__name__)

# Safety limit on documents read from disk
MAX_KUBE_CONFIG_SIZE_BYTES = 1024 * 1024

ADMIN_USER_SUFFIX = "-admin"


# =============================================================================
# Document Models
# =============================================================================


def _scalar_text(value: Any) -> Any:
    """Read null as empty and unquoted numbers as their text."""
    if value is None:
        return ""
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return value


class ClusterEntry(BaseModel):
    model_config = {"extra": "ignore", "populate_by_name": True}

    certificate_authority_data: str = Field("", alias="certificate-authority-data")
    server: str = ""

    @field_validator("certificate_authority_data", "server", mode="before")
    @classmethod
    def coerce_text(cls, v: Any) -> Any:
        return _scalar_text(v)


class NamedCluster(BaseModel):
    model_config = {"extra": "ignore"}

    name: str = ""
    cluster: ClusterEntry = Field(default_factory=ClusterEntry)

    @field_validator("name", mode="before")
    @classmethod
    def coerce_name(cls, v: Any) -> Any:
        return _scalar_text(v)

    @field_validator("cluster", mode="before")
    @classmethod
    def coerce_cluster(cls, v: Any) -> Any:
        return {} if v is None else v


class UserEntry(BaseModel):
    model_config = {"extra": "ignore", "populate_by_name": True}

    client_certificate_data: str = Field("", alias="client-certificate-data")
    client_key_data: str = Field("", alias="client-key-data")
    token: str = ""

    @field_validator("client_certificate_data", "client_key_data", "token", mode="before")
    @classmethod
    def coerce_text(cls, v: Any) -> Any:
        return _scalar_text(v)

    @property
    def has_auth_material(self) -> bool:
        return bool(self.token) or bool(self.client_certificate_data and self.client_key_data)


class NamedUser(BaseModel):
    model_config = {"extra": "ignore"}

    name: str = ""
    user: UserEntry = Field(default_factory=UserEntry)

    @field_validator("name", mode="before")
    @classmethod
    def coerce_name(cls, v: Any) -> Any:
        return _scalar_text(v)

    @field_validator("user", mode="before")
    @classmethod
    def coerce_user(cls, v: Any) -> Any:
        return {} if v is None else v


class ContextEntry(BaseModel):
    model_config = {"extra": "ignore"}

    cluster: str = ""
    user: str = ""
    namespace: str | None = None

    @field_validator("cluster", "user", mode="before")
    @classmethod
    def coerce_text(cls, v: Any) -> Any:
        return _scalar_text(v)


class NamedContext(BaseModel):
    model_config = {"extra": "ignore"}

    name: str = ""
    context: ContextEntry = Field(default_factory=ContextEntry)

    @field_validator("name", mode="before")
    @classmethod
    def coerce_name(cls, v: Any) -> Any:
        return _scalar_text(v)

    @field_validator("context", mode="before")
    @classmethod
    def coerce_context(cls, v: Any) -> Any:
        return {} if v is None else v


class KubeConfig(BaseModel):
    """Parsed kube config document."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    api_version: str = Field("", alias="apiVersion")
    kind: str | None = None
    clusters: list[NamedCluster] = Field(default_factory=list)
    users: list[NamedUser] = Field(default_factory=list)
    contexts: list[NamedContext] = Field(default_factory=list)
    current_context: str | None = Field(None, alias="current-context")
    preferences: dict[str, Any] = Field(default_factory=dict)

    @field_validator("api_version", mode="before")
    @classmethod
    def coerce_api_version(cls, v: Any) -> Any:
        return _scalar_text(v)

    @field_validator("clusters", "users", "contexts", mode="before")
    @classmethod
    def coerce_lists(cls, v: Any) -> Any:
        return [] if v is None else v

    @field_validator("preferences", mode="before")
    @classmethod
    def coerce_preferences(cls, v: Any) -> Any:
        return {} if v is None else v

    def selected_context(self) -> NamedContext | None:
        """The current context, falling back to the first one."""
        if not self.contexts:
            return None
        if self.current_context:
            for context in self.contexts:
                if context.name == self.current_context:
                    return context
        return self.contexts[0]

    def select(self) -> tuple[NamedCluster, NamedUser]:
        """Cluster and user the admin connection uses.

        With a context, the names it references must resolve. Without one,
        the first cluster and user are used.

        Raises:
            ValidationError: If the context references an unknown cluster or user.
        """
        context = self.selected_context()
        if context is None:
            return self.clusters[0], self.users[0]

        cluster = next((c for c in self.clusters if c.name == context.context.cluster), None)
        if cluster is None:
            raise ValidationError(
                f"context '{context.name}' references unknown cluster "
                f"'{context.context.cluster}'",
                field="contexts",
            )
        user = next((u for u in self.users if u.name == context.context.user), None)
        if user is None:
            raise ValidationError(
                f"context '{context.name}' references unknown user '{context.context.user}'",
                field="contexts",
            )
        return cluster, user


# =============================================================================
# Parsing
# =============================================================================


def parse_kube_config(text: str) -> KubeConfig:
    """Parse and check a kube config document.

    Raises:
        ParseError: If the document is empty or not a structured mapping.
        ValidationError: If it has no clusters or users, the user has no auth
            material, or the cluster has no server.
    """
    if not text or not text.strip():
        raise ParseError("Cannot parse empty kube config")

    try:
        raw = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ParseError(f"Failed to parse kube config: {e}") from e

    if not isinstance(raw, dict):
        raise ParseError("Kube config must be a mapping")

    try:
        config = KubeConfig.model_validate(raw)
    except PydanticValidationError as e:
        errors = "; ".join(
            f"{'.'.join(str(x) for x in error['loc'])}: {error['msg']}" for error in e.errors()
        )
        raise ParseError(f"Malformed kube config: {errors}") from e

    if not config.clusters or not config.users:
        raise ValidationError("Kube config contains no valid clusters or users")

    cluster, user = config.select()

    if not user.user.has_auth_material:
        raise ValidationError(
            f"Kube config is missing auth material for user '{user.name}': "
            "requires a token or a client certificate and key",
            field="users",
        )
    if not cluster.cluster.server:
        raise ValidationError(
            f"Kube config has an invalid or missing server for cluster '{cluster.name}'",
            field="clusters",
        )

    return config


# =============================================================================
# Credentials
# =============================================================================


def expected_server_url(dns_prefix: str, location: str) -> str:
    return f"https://{master_fqdn(dns_prefix, location)}"


def expected_admin_username(dns_prefix: str) -> str:
    return f"{dns_prefix}{ADMIN_USER_SUFFIX}"


def _base64(value: str) -> str:
    return base64.b64encode(value.encode("utf-8")).decode("ascii")


def extract_credentials(
    config: KubeConfig,
    *,
    dns_prefix: str | None = None,
    location: str | None = None,
) -> ClusterCredentials:
    """Derive connection credentials from a parsed kube config.

    The document is authoritative. When the deployment's DNS prefix and
    region are known, a mismatch with the derived server URL or admin name is
    logged, not raised.
    """
    cluster, user = config.select()

    credentials = ClusterCredentials(
        host=cluster.cluster.server,
        username=user.name,
        cluster_ca_certificate=_base64(cluster.cluster.certificate_authority_data),
        password=user.user.token or None,
        client_certificate=(
            _base64(user.user.client_certificate_data) if user.user.client_certificate_data else None
        ),
        client_key=_base64(user.user.client_key_data) if user.user.client_key_data else None,
    )

    if dns_prefix and location and not credentials_match(credentials, dns_prefix, location):
        logger.warning(
            "Kube config does not match the deployment's DNS prefix and region",
            extra={
                "host": credentials.host,
                "expected_host": expected_server_url(dns_prefix, location),
                "username": credentials.username,
                "expected_username": expected_admin_username(dns_prefix),
            },
        )

    return credentials


def credentials_match(credentials: ClusterCredentials, dns_prefix: str, location: str) -> bool:
    """True if the credentials point at the expected master with the admin user."""
    return credentials.host == expected_server_url(
        dns_prefix, location
    ) and credentials.username == expected_admin_username(dns_prefix)


def flatten_kube_config(
    text: str,
    *,
    dns_prefix: str | None = None,
    location: str | None = None,
) -> tuple[str, list[dict[str, Any]]]:
    """Parse a kube config and return (raw document, kube_config attribute blocks)."""
    config = parse_kube_config(text)
    credentials = extract_credentials(config, dns_prefix=dns_prefix, location=location)
    return text, flatten_credentials(credentials)


# =============================================================================
# Files
# =============================================================================


def kube_config_path(output_dir: Path, dns_prefix: str, location: str) -> Path:
    return output_dir / dns_prefix / "kubeconfig" / f"kubeconfig.{location}.json"


def load_kube_config(output_dir: Path, dns_prefix: str, location: str) -> str:
    """Read the kube config acs-engine generated for a deployment.

    Raises:
        ParseError: If the file is missing, too large or unreadable.
    """
    path = kube_config_path(output_dir, dns_prefix, location)
    if not path.exists():
        raise ParseError(f"Kube config not found: {path}")

    try:
        size = path.stat().st_size
    except OSError as e:
        raise ParseError(f"Failed to stat kube config {path}: {e}") from e

    if size > MAX_KUBE_CONFIG_SIZE_BYTES:
        raise ParseError(
            f"Kube config exceeds maximum size of {MAX_KUBE_CONFIG_SIZE_BYTES} bytes: {path}"
        )

    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise ParseError(f"Failed to read kube config {path}: {e}") from e

    logger.info("Loaded kube config", extra={"path": str(path)})
    return text
