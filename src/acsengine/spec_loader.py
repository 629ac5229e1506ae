"""Attribute and state file loading with validation.

SECURITY: All file reads enforce size limits. State files hold cluster
secrets (service principal secret, admin kube config) and are written with
owner-only permissions.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any

import yaml

from .config import MAX_ATTRIBUTE_FILE_SIZE_BYTES

logger = logging.getLogger(__name__)

STATE_FILE_MODE = 0o600


class SpecLoadError(Exception):
    """Raised when an attribute or state file cannot be loaded."""

    pass


def _read_limited(path: Path) -> str:
    if not path.exists():
        raise SpecLoadError(f"File not found: {path}")

    try:
        file_size = path.stat().st_size
    except OSError as e:
        raise SpecLoadError(f"Failed to stat {path}: {e}") from e

    if file_size > MAX_ATTRIBUTE_FILE_SIZE_BYTES:
        raise SpecLoadError(
            f"File exceeds maximum size of {MAX_ATTRIBUTE_FILE_SIZE_BYTES} bytes: {path}"
        )

    try:
        return path.read_text(encoding="utf-8")
    except OSError as e:
        raise SpecLoadError(f"Failed to read {path}: {e}") from e


def load_attributes(path: Path) -> dict[str, Any]:
    """Load a declarative cluster attribute file (YAML or JSON).

    Supports both the flat format and a Kubernetes-style wrapper with
    apiVersion/kind/spec, in which case the spec section is returned.

    Raises:
        SpecLoadError: If the file is missing, too large, or not a mapping.
    """
    content = _read_limited(path)

    try:
        raw_data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise SpecLoadError(f"Invalid YAML in {path}: {e}") from e

    if not isinstance(raw_data, dict):
        raise SpecLoadError(f"Attribute file must contain a mapping: {path}")

    if "apiVersion" in raw_data and "spec" in raw_data:
        spec_data = raw_data.get("spec", {})
        if not isinstance(spec_data, dict):
            raise SpecLoadError(f"Spec section must be a mapping: {path}")
        raw_data = spec_data

    logger.info("Loaded cluster attributes", extra={"path": str(path)})
    return raw_data


def load_state(path: Path) -> dict[str, Any] | None:
    """Load previously saved cluster state, or None if there is none yet.

    Raises:
        SpecLoadError: If the file exists but is not a JSON object.
    """
    if not path.exists():
        return None

    content = _read_limited(path)
    try:
        state = json.loads(content)
    except json.JSONDecodeError as e:
        raise SpecLoadError(f"Invalid JSON in state file {path}: {e}") from e

    if not isinstance(state, dict):
        raise SpecLoadError(f"State file must contain a JSON object: {path}")
    return state


def save_state(path: Path, state: dict[str, Any]) -> None:
    """Write cluster state as JSON, readable by the owner only."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, STATE_FILE_MODE)
    with os.fdopen(fd, "w", encoding="utf-8") as f:
        json.dump(state, f, indent=2, sort_keys=True)
    logger.info("Saved cluster state", extra={"path": str(path)})


def delete_state(path: Path) -> None:
    if path.exists():
        path.unlink()
        logger.info("Deleted cluster state", extra={"path": str(path)})
