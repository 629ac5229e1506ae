"""Patches the Azure SDK entry points used by the cluster deployer."""

from __future__ import annotations

from collections.abc import Generator
from contextlib import contextmanager
from typing import Any
from unittest import mock

from .credential import MockManagedIdentityCredential, create_mock_credential
from .resources import MockDeployment, MockResourceClient, MockResourceState


class MockAzureContext:
    """Context manager for Azure API mocking in reconciler tests.

    Patches:
    - acsengine.security.ManagedIdentityCredential -> MockManagedIdentityCredential
    - acsengine.deployer.ResourceManagementClient -> MockResourceClient

    Usage:
        with MockAzureContext() as ctx:
            reconciler = ClusterReconciler(config)
            await reconciler.create(attrs)

            assert ctx.get_deployment_count() == 1
    """

    def __init__(
        self,
        *,
        client_id: str | None = None,
        fail_auth: bool = False,
        fail_deployments: bool = False,
        transient_failures: int = 0,
    ) -> None:
        """Initialize mock context.

        Args:
            client_id: User-assigned identity client ID to simulate.
            fail_auth: Whether authentication should fail.
            fail_deployments: Whether every deployment should fail.
            transient_failures: Deployments that fail before one succeeds.
        """
        self._client_id = client_id
        self._fail_auth = fail_auth
        self._fail_deployments = fail_deployments
        self._transient_failures = transient_failures

        self._state: MockResourceState | None = None
        self._credential: MockManagedIdentityCredential | None = None
        self._patches: list[Any] = []

    @property
    def state(self) -> MockResourceState:
        """Get the mock resource state.

        Raises:
            RuntimeError: If accessed outside of context.
        """
        if self._state is None:
            raise RuntimeError("MockAzureContext must be used as a context manager")
        return self._state

    @property
    def credential(self) -> MockManagedIdentityCredential:
        """Get the mock credential.

        Raises:
            RuntimeError: If accessed outside of context.
        """
        if self._credential is None:
            raise RuntimeError("MockAzureContext must be used as a context manager")
        return self._credential

    def get_deployment_count(self) -> int:
        return self.state.deployment_count

    def get_deployments(self) -> list[MockDeployment]:
        """Get all deployments in execution order."""
        return self.state.get_deployment_history()

    def __enter__(self) -> MockAzureContext:
        self._state = MockResourceState()
        self._credential = create_mock_credential(client_id=self._client_id)

        if self._fail_auth:
            self._credential.set_failure(True, "Simulated authentication failure")

        self._patches.append(
            mock.patch(
                "acsengine.security.ManagedIdentityCredential",
                return_value=self._credential,
            )
        )

        def create_mock_client(credential: Any, subscription_id: str) -> MockResourceClient:
            return MockResourceClient(
                state=self._state,
                subscription_id=subscription_id,
                fail_deployments=self._fail_deployments,
                transient_failures=self._transient_failures,
            )

        self._patches.append(
            mock.patch(
                "acsengine.deployer.ResourceManagementClient",
                side_effect=create_mock_client,
            )
        )

        for patch in self._patches:
            patch.start()

        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        for patch in reversed(self._patches):
            patch.stop()
        self._patches.clear()


@contextmanager
def mock_azure_context(
    *,
    client_id: str | None = None,
    fail_auth: bool = False,
    fail_deployments: bool = False,
    transient_failures: int = 0,
) -> Generator[MockAzureContext, None, None]:
    """Convenience wrapper around MockAzureContext."""
    ctx = MockAzureContext(
        client_id=client_id,
        fail_auth=fail_auth,
        fail_deployments=fail_deployments,
        transient_failures=transient_failures,
    )
    with ctx:
        yield ctx
