"""Configuration management with validation.

Everything the provisioning flow needs beyond the declarative attributes
(subscription, output location, supported version table, timeouts) is
passed explicitly through Config; nothing reads process-wide state later.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path

from .errors import ParseError
from .versions import DEFAULT_SUPPORTED_VERSIONS, SupportedVersionTable


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""

    pass


# Configuration constants with documented bounds
DEFAULT_OUTPUT_DIR = "_output"

DEFAULT_DEPLOYMENT_TIMEOUT_SECONDS = 3600
MIN_DEPLOYMENT_TIMEOUT_SECONDS = 60
MAX_DEPLOYMENT_TIMEOUT_SECONDS = 4 * 3600

MAX_DEPLOYMENT_RETRIES = 3
RETRY_BACKOFF_BASE_SECONDS = 5

# Security constraints
MAX_ATTRIBUTE_FILE_SIZE_BYTES = 1024 * 1024  # 1MB max attribute file

VALID_SUBSCRIPTION_ID_PATTERN = r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$"


@dataclass(frozen=True)
class Config:
    """Provisioning configuration loaded from environment variables.

    All fields are validated at construction time. Invalid configurations
    raise ConfigurationError immediately rather than failing mid-deployment.
    """

    subscription_id: str

    # Where generated templates and acs-engine kube configs live
    output_dir: Path = field(default_factory=lambda: Path(DEFAULT_OUTPUT_DIR))
    write_output_files: bool = True

    # Externally maintained table of supported Kubernetes release lines
    supported_versions: SupportedVersionTable = DEFAULT_SUPPORTED_VERSIONS

    deployment_timeout_seconds: int = DEFAULT_DEPLOYMENT_TIMEOUT_SECONDS
    max_deployment_retries: int = MAX_DEPLOYMENT_RETRIES

    # User-assigned managed identity for ARM calls (None = system-assigned)
    managed_identity_client_id: str | None = None

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        errors: list[str] = []

        if not self.subscription_id:
            errors.append("AZURE_SUBSCRIPTION_ID is required")
        elif not re.match(VALID_SUBSCRIPTION_ID_PATTERN, self.subscription_id.lower()):
            errors.append(f"AZURE_SUBSCRIPTION_ID must be a valid GUID: {self.subscription_id}")

        if not (
            MIN_DEPLOYMENT_TIMEOUT_SECONDS
            <= self.deployment_timeout_seconds
            <= MAX_DEPLOYMENT_TIMEOUT_SECONDS
        ):
            errors.append(
                f"DEPLOYMENT_TIMEOUT must be between {MIN_DEPLOYMENT_TIMEOUT_SECONDS} "
                f"and {MAX_DEPLOYMENT_TIMEOUT_SECONDS} seconds"
            )

        if self.max_deployment_retries < 1:
            errors.append("DEPLOYMENT_RETRIES must be at least 1")

        if self.output_dir.exists() and not self.output_dir.is_dir():
            errors.append(f"ACSENGINE_OUTPUT_DIR is not a directory: {self.output_dir}")

        if errors:
            error_msg = "Configuration validation failed:\n  - " + "\n  - ".join(errors)
            raise ConfigurationError(error_msg)

    @classmethod
    def from_env(cls) -> Config:
        """Load configuration from environment variables.

        Environment Variables:
            AZURE_SUBSCRIPTION_ID: Target Azure subscription
            ACSENGINE_OUTPUT_DIR: Directory for generated files (default: _output)
            WRITE_OUTPUT_FILES: If "false", keep templates in memory only (default: true)
            SUPPORTED_VERSIONS_FILE: YAML table of supported Kubernetes release
                lines (default: built-in table)
            DEPLOYMENT_TIMEOUT: Timeout for deployments in seconds (default: 3600)
            DEPLOYMENT_RETRIES: Attempts per deployment (default: 3)
            MANAGED_IDENTITY_CLIENT_ID: Client ID of a user-assigned identity
        """

        def get_int(key: str, default: int) -> int:
            value = os.environ.get(key)
            if value is None:
                return default
            try:
                return int(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be an integer: {value}") from e

        def get_bool(key: str, default: bool) -> bool:
            value = os.environ.get(key, "").lower()
            if not value:
                return default
            return value in ("true", "1", "yes")

        def get_versions(value: str | None) -> SupportedVersionTable:
            if not value:
                return DEFAULT_SUPPORTED_VERSIONS
            try:
                return SupportedVersionTable.from_file(Path(value))
            except ParseError as e:
                raise ConfigurationError(f"SUPPORTED_VERSIONS_FILE is invalid: {e}") from e

        return cls(
            subscription_id=os.environ.get("AZURE_SUBSCRIPTION_ID", ""),
            output_dir=Path(os.environ.get("ACSENGINE_OUTPUT_DIR", DEFAULT_OUTPUT_DIR)),
            write_output_files=get_bool("WRITE_OUTPUT_FILES", True),
            supported_versions=get_versions(os.environ.get("SUPPORTED_VERSIONS_FILE")),
            deployment_timeout_seconds=get_int(
                "DEPLOYMENT_TIMEOUT", DEFAULT_DEPLOYMENT_TIMEOUT_SECONDS
            ),
            max_deployment_retries=get_int("DEPLOYMENT_RETRIES", MAX_DEPLOYMENT_RETRIES),
            managed_identity_client_id=os.environ.get("MANAGED_IDENTITY_CLIENT_ID") or None,
        )
