"""In-memory Azure Resource Manager for cluster lifecycle tests.

Usage:
    from azure_mock import MockAzureContext

    with MockAzureContext() as ctx:
        reconciler = ClusterReconciler(config)
        state = await reconciler.create(attrs)

        assert ctx.get_deployment_count() == 1
"""

from .context import MockAzureContext, mock_azure_context
from .credential import MockManagedIdentityCredential, create_mock_credential
from .resources import MockDeployment, MockResourceClient, MockResourceState

__all__ = [
    "MockAzureContext",
    "MockDeployment",
    "MockManagedIdentityCredential",
    "MockResourceClient",
    "MockResourceState",
    "create_mock_credential",
    "mock_azure_context",
]
