"""Error taxonomy for cluster mapping, parsing and version policy.

Every component returns failures to its caller as one of these exceptions.
None of them retry; retries belong to the ARM deployment client.
"""

from __future__ import annotations

from enum import Enum


class ClusterError(Exception):
    """Base class for all cluster provisioning errors."""

    pass


class ValidationError(ClusterError):
    """A required field is missing or logically inconsistent.

    Attributes:
        field: Attribute path of the first offending field (e.g.
            "agent_pool_profiles.1.name"), or None for document-level checks.
        errors: Every (path, message) pair collected for this failure.
    """

    def __init__(
        self,
        message: str,
        field: str | None = None,
        errors: list[tuple[str, str]] | None = None,
    ) -> None:
        self.field = field
        self.errors = errors if errors is not None else ([(field, message)] if field else [])
        super().__init__(f"{field}: {message}" if field else message)

    @classmethod
    def from_errors(cls, errors: list[tuple[str, str]]) -> ValidationError:
        """Aggregate several field-level failures into one error."""
        if len(errors) == 1:
            path, message = errors[0]
            return cls(message, field=path)
        lines = "\n".join(f"  - {path}: {message}" for path, message in errors)
        return cls(
            f"Validation failed:\n{lines}",
            field=errors[0][0] if errors else None,
            errors=list(errors),
        )


class ParseError(ClusterError):
    """An external document or string is malformed. No partial result."""

    pass


class UpgradeRule(str, Enum):
    """The upgrade rule a rejected version transition broke."""

    NO_OP = "no-op"
    DOWNGRADE = "downgrade"
    MAJOR_JUMP = "major-jump"
    MULTI_MINOR_JUMP = "multi-minor-jump"


class PolicyViolation(ClusterError):
    """A Kubernetes version transition is not permitted."""

    def __init__(self, message: str, rule: UpgradeRule) -> None:
        self.rule = rule
        super().__init__(message)


class UnsupportedVersionError(ClusterError):
    """A well-formed Kubernetes version is outside the supported table."""

    pass
