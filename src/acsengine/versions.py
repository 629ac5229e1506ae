"""Kubernetes version parsing, support table and upgrade policy.

Two independent checks live here:

1. Support: at creation time a requested version must parse and belong to a
   known release line. The release lines are configuration, not code; load
   an updated table with SupportedVersionTable.from_file().
2. Upgrade: a running cluster may only move forward, within the same major
   version, by at most one minor version per transition.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from .errors import ParseError, PolicyViolation, UnsupportedVersionError, UpgradeRule

logger = logging.getLogger(__name__)

VERSION_COMPONENTS = 3
MAX_MINOR_VERSION_STEP = 1


@dataclass(frozen=True, order=True)
class KubernetesVersion:
    """A (major, minor, patch) triple compared lexicographically."""

    major: int
    minor: int
    patch: int

    @classmethod
    def parse(cls, text: str) -> KubernetesVersion:
        """Parse "<major>.<minor>.<patch>".

        Raises:
            ParseError: Wrong component count or a non-numeric component.
        """
        if not isinstance(text, str) or not text:
            raise ParseError(f"Kubernetes version must be a non-empty string: {text!r}")

        parts = text.strip().split(".")
        if len(parts) != VERSION_COMPONENTS:
            raise ParseError(
                f"Kubernetes version '{text}' must have {VERSION_COMPONENTS} "
                "components (<major>.<minor>.<patch>)"
            )

        # ASCII digits only, so components are non-negative
        if not all(part.isascii() and part.isdigit() for part in parts):
            raise ParseError(f"Kubernetes version '{text}' has a non-numeric component")

        major, minor, patch = (int(part) for part in parts)
        return cls(major, minor, patch)

    @property
    def release_line(self) -> str:
        return f"{self.major}.{self.minor}"

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}.{self.patch}"


def _coerce(version: str | KubernetesVersion) -> KubernetesVersion:
    if isinstance(version, KubernetesVersion):
        return version
    return KubernetesVersion.parse(version)


# =============================================================================
# Upgrade Policy
# =============================================================================


def validate_upgrade(
    current: str | KubernetesVersion,
    proposed: str | KubernetesVersion,
) -> KubernetesVersion:
    """Check that moving a running cluster from current to proposed is allowed.

    Args:
        current: Version the cluster runs today.
        proposed: Requested version.

    Returns:
        The parsed proposed version.

    Raises:
        ParseError: If either version is malformed.
        PolicyViolation: If the transition breaks an upgrade rule.
    """
    cur = _coerce(current)
    new = _coerce(proposed)

    if new == cur:
        raise PolicyViolation(
            f"Kubernetes version {new} is already the current version",
            UpgradeRule.NO_OP,
        )
    if new < cur:
        raise PolicyViolation(
            f"Kubernetes version cannot be downgraded from {cur} to {new}",
            UpgradeRule.DOWNGRADE,
        )
    if new.major != cur.major:
        raise PolicyViolation(
            f"Kubernetes major version cannot change ({cur} -> {new})",
            UpgradeRule.MAJOR_JUMP,
        )
    if new.minor - cur.minor > MAX_MINOR_VERSION_STEP:
        raise PolicyViolation(
            f"Kubernetes can only be upgraded one minor version at a time ({cur} -> {new})",
            UpgradeRule.MULTI_MINOR_JUMP,
        )

    return new


def is_upgrade_allowed(
    current: str | KubernetesVersion,
    proposed: str | KubernetesVersion,
) -> bool:
    """Boolean form of validate_upgrade(). Malformed versions still raise ParseError."""
    try:
        validate_upgrade(current, proposed)
    except PolicyViolation:
        return False
    return True


# =============================================================================
# Supported Versions
# =============================================================================


class SupportedVersionTable(BaseModel):
    """Kubernetes release lines accepted when a cluster is created.

    YAML format:

        releaseLines: ["1.8", "1.9", "1.10"]
        defaultVersion: "1.9.11"
    """

    model_config = {"extra": "ignore", "frozen": True, "populate_by_name": True}

    release_lines: tuple[str, ...] = Field(alias="releaseLines", min_length=1)
    default_version: str = Field(alias="defaultVersion")

    @field_validator("release_lines")
    @classmethod
    def validate_release_lines(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        for line in v:
            parts = line.split(".")
            if len(parts) != 2 or not all(part.isdigit() for part in parts):
                raise ValueError(f"release line must be '<major>.<minor>': {line}")
        return v

    @field_validator("default_version")
    @classmethod
    def validate_default_version(cls, v: str) -> str:
        try:
            KubernetesVersion.parse(v)
        except ParseError as e:
            raise ValueError(str(e)) from e
        return v

    def supports(self, version: KubernetesVersion) -> bool:
        lines = {tuple(int(p) for p in line.split(".")) for line in self.release_lines}
        return (version.major, version.minor) in lines

    @classmethod
    def from_file(cls, path: Path) -> SupportedVersionTable:
        """Load a table from YAML.

        Raises:
            ParseError: If the file is unreadable, not YAML, or not a valid table.
        """
        try:
            raw = yaml.safe_load(path.read_text(encoding="utf-8"))
        except OSError as e:
            raise ParseError(f"Failed to read supported versions file {path}: {e}") from e
        except yaml.YAMLError as e:
            raise ParseError(f"Invalid YAML in {path}: {e}") from e

        if not isinstance(raw, dict):
            raise ParseError(f"Supported versions file must contain a YAML mapping: {path}")

        try:
            table = cls.model_validate(raw)
        except PydanticValidationError as e:
            raise ParseError(f"Invalid supported versions table in {path}: {e}") from e

        logger.info(
            "Loaded supported Kubernetes versions",
            extra={"path": str(path), "release_lines": list(table.release_lines)},
        )
        return table


DEFAULT_SUPPORTED_VERSIONS = SupportedVersionTable(
    release_lines=("1.6", "1.7", "1.8", "1.9", "1.10", "1.11"),
    default_version="1.8.13",
)


def validate_kubernetes_version(
    text: str,
    table: SupportedVersionTable = DEFAULT_SUPPORTED_VERSIONS,
) -> KubernetesVersion:
    """Validate a version requested for a new cluster.

    Raises:
        ParseError: If the version is malformed.
        UnsupportedVersionError: If it is well-formed but not a supported release line.
    """
    version = KubernetesVersion.parse(text)
    if not table.supports(version):
        raise UnsupportedVersionError(
            f"Kubernetes version {version} is not supported; "
            f"supported release lines: {', '.join(table.release_lines)}"
        )
    return version


def is_supported_version(
    text: str,
    table: SupportedVersionTable = DEFAULT_SUPPORTED_VERSIONS,
) -> bool:
    """True if the version belongs to a supported release line.

    Raises:
        ParseError: If the version is malformed.
    """
    try:
        validate_kubernetes_version(text, table)
    except UnsupportedVersionError:
        return False
    return True
