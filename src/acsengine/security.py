"""Credential handling for ARM calls and secret redaction.

Two kinds of credentials pass through this package:

1. The operator's own identity, used to call Azure Resource Manager. This is
   always a Managed Identity (azure-identity), never a secret read from the
   environment.
2. Cluster credentials (the cluster's service principal secret, the admin
   token and client key from the kube config). These are user data: they
   are stored in state but never logged or echoed in full on a display channel.
"""

from __future__ import annotations

import logging
import os

from azure.identity import ManagedIdentityCredential

logger = logging.getLogger(__name__)

# Environment variables that indicate the operator is authenticating with a secret
FORBIDDEN_CREDENTIAL_ENV_VARS: tuple[str, ...] = (
    "AZURE_CLIENT_SECRET",
    "AZURE_CLIENT_CERTIFICATE_PATH",
    "AZURE_CLIENT_CERTIFICATE_PASSWORD",
    "AZURE_USERNAME",
    "AZURE_PASSWORD",
)

MASKED_VALUE = "********"
# Characters of an identifier shown before truncation in logs
VISIBLE_ID_PREFIX_LENGTH = 8


class SecretlessViolationError(Exception):
    """Raised when operator credentials are found in the environment."""

    pass


def enforce_secretless_architecture() -> None:
    """Refuse to run when secret-based Azure credentials are in the environment.

    Raises:
        SecretlessViolationError: If any credential environment variable is set.
    """
    for env_var in FORBIDDEN_CREDENTIAL_ENV_VARS:
        if os.environ.get(env_var):
            logger.critical(
                "Secretless architecture violation",
                extra={
                    "security_event": "credential_detected",
                    "env_var": env_var,
                    "action": "startup_blocked",
                },
            )
            raise SecretlessViolationError(
                f"{env_var} is set. ARM calls must authenticate with a managed identity; "
                "remove credential environment variables and assign an identity instead."
            )


def get_managed_identity_credential(
    client_id: str | None = None,
) -> ManagedIdentityCredential:
    """Get the credential used for ARM calls.

    Args:
        client_id: Optional client ID of a user-assigned managed identity.
                   If None, uses the system-assigned identity.

    Raises:
        SecretlessViolationError: If credential environment variables are set.
    """
    enforce_secretless_architecture()

    if client_id:
        logger.info(
            "Using user-assigned managed identity",
            extra={"client_id": truncate_identifier(client_id)},
        )
        return ManagedIdentityCredential(client_id=client_id)

    logger.info("Using system-assigned managed identity")
    return ManagedIdentityCredential()


def mask_secret(value: str | None) -> str | None:
    """Display-safe rendition of a secret. Empty and missing stay as they are."""
    if not value:
        return value
    return MASKED_VALUE


def truncate_identifier(value: str) -> str:
    """Shorten an identifier (client id, subscription id) for log output."""
    if len(value) > VISIBLE_ID_PREFIX_LENGTH:
        return value[:VISIBLE_ID_PREFIX_LENGTH] + "..."
    return value
