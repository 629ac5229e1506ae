"""Azure Resource Manager calls for cluster deployments.

Wraps the azure-mgmt-resource client: resource group creation, Incremental
template deployment, deployment lookup and resource group deletion.

SECURITY: Timeouts are enforced on all long-running operations so a stuck
deployment cannot hang reconciliation indefinitely.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Callable
from typing import Any

from azure.core.exceptions import HttpResponseError, ResourceNotFoundError
from azure.mgmt.resource import ResourceManagementClient
from azure.mgmt.resource.resources.models import (
    Deployment,
    DeploymentMode,
    DeploymentProperties,
    ResourceGroup,
)

from .config import RETRY_BACKOFF_BASE_SECONDS, Config
from .security import get_managed_identity_credential

logger = logging.getLogger(__name__)


class ClusterDeployer:
    """Thin async wrapper over ResourceManagementClient."""

    def __init__(self, config: Config, credential: Any | None = None) -> None:
        """Initialize the deployer.

        Args:
            config: Validated configuration.
            credential: ARM credential; defaults to the managed identity.

        Raises:
            SecretlessViolationError: If credential secrets are in the environment.
        """
        self._config = config
        self._credential = credential or get_managed_identity_credential(
            config.managed_identity_client_id
        )
        self._client = ResourceManagementClient(
            credential=self._credential,
            subscription_id=config.subscription_id,
        )

    async def _run(self, operation: Callable[[], Any]) -> Any:
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, operation)

    async def _execute_with_timeout(
        self,
        begin_operation: Callable[[], Any],
        timeout_seconds: int,
        operation_name: str,
    ) -> Any:
        """Execute an Azure SDK poller operation with timeout.

        Args:
            begin_operation: Callable that returns an LROPoller.
            timeout_seconds: Maximum time to wait for operation completion.
            operation_name: Human-readable name for logging.

        Raises:
            TimeoutError: If the operation exceeds the timeout.
            HttpResponseError: If Azure API returns an error.
        """
        loop = asyncio.get_event_loop()
        poller = await loop.run_in_executor(None, begin_operation)

        try:
            return await asyncio.wait_for(
                loop.run_in_executor(None, poller.result),
                timeout=timeout_seconds,
            )
        except TimeoutError:
            logger.error(
                f"{operation_name} timed out",
                extra={"timeout_seconds": timeout_seconds},
            )
            raise

    async def ensure_resource_group(
        self,
        name: str,
        location: str,
        tags: dict[str, str] | None = None,
    ) -> None:
        """Create or update the resource group holding the cluster."""
        await self._run(
            lambda: self._client.resource_groups.create_or_update(
                name, ResourceGroup(location=location, tags=tags or None)
            )
        )
        logger.info("Resource group ready", extra={"resource_group": name, "location": location})

    async def deploy(
        self,
        resource_group: str,
        deployment_name: str,
        template: dict[str, Any],
        parameters: dict[str, Any],
    ) -> dict[str, Any]:
        """Apply a template with exponential backoff retry.

        Args:
            resource_group: Target resource group.
            deployment_name: ARM deployment name.
            template: ARM template.
            parameters: ARM parameters ({"name": {"value": ...}}).

        Returns:
            Deployment outputs (empty if the template has none).

        Raises:
            HttpResponseError: If all retries fail.
            TimeoutError: If a deployment exceeds the timeout.
        """
        max_attempts = self._config.max_deployment_retries
        last_error: HttpResponseError | None = None

        for attempt in range(1, max_attempts + 1):
            try:
                return await self._deploy_once(
                    resource_group, deployment_name, template, parameters
                )
            except HttpResponseError as e:
                last_error = e

                if attempt < max_attempts:
                    backoff = RETRY_BACKOFF_BASE_SECONDS * (2 ** (attempt - 1))
                    jitter = random.uniform(0, backoff * 0.2)
                    wait_time = backoff + jitter

                    logger.warning(
                        "Deployment failed, retrying",
                        extra={
                            "deployment": deployment_name,
                            "attempt": attempt,
                            "max_attempts": max_attempts,
                            "wait_seconds": wait_time,
                            "error": str(e),
                        },
                    )
                    await asyncio.sleep(wait_time)

        assert last_error is not None, "Retry loop completed without setting last_error"
        raise last_error

    async def _deploy_once(
        self,
        resource_group: str,
        deployment_name: str,
        template: dict[str, Any],
        parameters: dict[str, Any],
    ) -> dict[str, Any]:
        deployment = Deployment(
            properties=DeploymentProperties(
                template=template,
                parameters=parameters,
                mode=DeploymentMode.INCREMENTAL,
            ),
        )

        result = await self._execute_with_timeout(
            lambda: self._client.deployments.begin_create_or_update(
                resource_group, deployment_name, deployment
            ),
            timeout_seconds=self._config.deployment_timeout_seconds,
            operation_name="Cluster deployment",
        )

        properties = getattr(result, "properties", None)
        outputs = getattr(properties, "outputs", None) or {}
        logger.info(
            "Deployment succeeded",
            extra={"resource_group": resource_group, "deployment": deployment_name},
        )
        return outputs

    async def get_deployment(self, resource_group: str, deployment_name: str) -> Any | None:
        """Look up a deployment; None if it does not exist."""
        try:
            return await self._run(
                lambda: self._client.deployments.get(resource_group, deployment_name)
            )
        except ResourceNotFoundError:
            return None

    async def delete_resource_group(self, name: str) -> None:
        """Delete the cluster's resource group and everything in it."""
        try:
            await self._execute_with_timeout(
                lambda: self._client.resource_groups.begin_delete(name),
                timeout_seconds=self._config.deployment_timeout_seconds,
                operation_name="Resource group deletion",
            )
        except ResourceNotFoundError:
            logger.info("Resource group already deleted", extra={"resource_group": name})
            return
        logger.info("Resource group deleted", extra={"resource_group": name})
