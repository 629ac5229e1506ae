"""Mock managed identity for ARM calls in tests."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

TOKEN_VALIDITY_HOURS = 1


class MockCredentialError(Exception):
    """Stands in for azure-identity's ClientAuthenticationError."""

    pass


@dataclass
class MockAccessToken:
    """Mimics azure.core.credentials.AccessToken."""

    token: str
    expires_on: int


class MockManagedIdentityCredential:
    """ManagedIdentityCredential replacement that hands out fake tokens.

    Records get_token calls so tests can assert the deployer authenticated
    with the identity they configured.
    """

    def __init__(self, client_id: str | None = None) -> None:
        self._client_id = client_id
        self._scopes: list[tuple[str, ...]] = []
        self._should_fail = False
        self._failure_message = "Authentication failed"

    @property
    def client_id(self) -> str | None:
        return self._client_id

    @property
    def get_token_call_count(self) -> int:
        return len(self._scopes)

    def set_failure(self, should_fail: bool, message: str = "Authentication failed") -> None:
        self._should_fail = should_fail
        self._failure_message = message

    def get_token(self, *scopes: str, **_kwargs: Any) -> MockAccessToken:
        """Return a token named after the identity.

        Raises:
            MockCredentialError: If configured to fail.
        """
        self._scopes.append(scopes)
        if self._should_fail:
            raise MockCredentialError(self._failure_message)

        expires_on = datetime.now(UTC) + timedelta(hours=TOKEN_VALIDITY_HOURS)
        identity = self._client_id or "system-assigned"
        return MockAccessToken(
            token=f"mock-token-{len(self._scopes)}-{identity}",
            expires_on=int(expires_on.timestamp()),
        )

    def close(self) -> None:
        pass


def create_mock_credential(client_id: str | None = None) -> MockManagedIdentityCredential:
    return MockManagedIdentityCredential(client_id=client_id)
