"""Cluster lifecycle: create, update (scale, upgrade, rotate), delete.

The declarative host owns state and diffing; this module receives the
previous state and the desired attributes and brings the deployment in line:

1. Expand both attribute bags into ClusterSpec
2. Plan the update and reject in-place changes acs-engine cannot make
3. Check the version transition against the upgrade policy
4. Regenerate the template and redeploy (Incremental mode)
5. Re-derive credentials from the kube config acs-engine produced

Cached credentials never outlive the deployment they came from: every
create and update re-derives them and delete drops them.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from .config import Config
from .deployer import ClusterDeployer
from .errors import ValidationError
from .kubeconfig import (
    extract_credentials,
    kube_config_path,
    load_kube_config,
    parse_kube_config,
)
from .mapper import expand_cluster, flatten_cluster, provisioned_fqdn
from .models import ClusterCredentials, ClusterSpec
from .naming import deployment_name
from .template import TemplateGenerator, generate_template
from .versions import validate_kubernetes_version, validate_upgrade

logger = logging.getLogger(__name__)

REPLACEMENT_REQUIRED_MESSAGE = "cannot be changed in place; the cluster must be replaced"


class ReconcileAction(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True)
class PoolScale:
    """A change in an agent pool's node count."""

    index: int
    name: str
    current: int
    desired: int

    @property
    def direction(self) -> str:
        return "up" if self.desired > self.current else "down"


@dataclass
class UpdatePlan:
    """What an update will change on a running cluster."""

    scale: list[PoolScale] = field(default_factory=list)
    upgrade_from: str | None = None
    upgrade_to: str | None = None
    tags_changed: bool = False
    credentials_rotated: bool = False

    @property
    def upgrade(self) -> bool:
        return self.upgrade_to is not None

    @property
    def has_changes(self) -> bool:
        return bool(self.scale) or self.upgrade or self.tags_changed or self.credentials_rotated


@dataclass
class ReconcileResult:
    """Result of one lifecycle operation."""

    cluster: str
    action: ReconcileAction
    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    end_time: datetime | None = None
    plan: UpdatePlan | None = None
    error: Exception | None = None

    @property
    def duration_seconds(self) -> float:
        if self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()

    @property
    def success(self) -> bool:
        return self.error is None


def _compare(
    errors: list[tuple[str, str]],
    path: str,
    current: Any,
    desired: Any,
) -> None:
    if current != desired:
        errors.append((path, f"{REPLACEMENT_REQUIRED_MESSAGE} ({current!r} -> {desired!r})"))


def plan_update(current: ClusterSpec, desired: ClusterSpec) -> UpdatePlan:
    """Work out how to move a running cluster to the desired specification.

    Only node counts, the Kubernetes version, tags and the service principal
    can change in place.

    Raises:
        ValidationError: If a field that requires replacement changed.
        PolicyViolation: If the version transition is not allowed.
    """
    errors: list[tuple[str, str]] = []

    for attr in ("name", "resource_group", "location"):
        _compare(errors, attr, getattr(current.identity, attr), getattr(desired.identity, attr))

    cur_master, new_master = current.master_profile, desired.master_profile
    for attr in ("count", "dns_name_prefix", "vm_size", "os_disk_size"):
        _compare(
            errors,
            f"master_profile.0.{attr}",
            getattr(cur_master, attr),
            getattr(new_master, attr),
        )

    _compare(
        errors,
        "linux_profile.0.admin_username",
        current.linux_profile.admin_username,
        desired.linux_profile.admin_username,
    )
    if current.linux_profile.key_set != desired.linux_profile.key_set:
        errors.append(("linux_profile.0.ssh", REPLACEMENT_REQUIRED_MESSAGE))

    if len(current.agent_pool_profiles) != len(desired.agent_pool_profiles):
        errors.append(
            (
                "agent_pool_profiles",
                f"agent pools cannot be added or removed in place "
                f"({len(current.agent_pool_profiles)} -> {len(desired.agent_pool_profiles)})",
            )
        )

    plan = UpdatePlan()
    for index, (cur_pool, new_pool) in enumerate(
        zip(current.agent_pool_profiles, desired.agent_pool_profiles)
    ):
        prefix = f"agent_pool_profiles.{index}"
        for attr in ("name", "vm_size", "os_disk_size", "os_type"):
            _compare(errors, f"{prefix}.{attr}", getattr(cur_pool, attr), getattr(new_pool, attr))
        if cur_pool.count != new_pool.count:
            plan.scale.append(
                PoolScale(
                    index=index,
                    name=new_pool.name,
                    current=cur_pool.count,
                    desired=new_pool.count,
                )
            )

    if errors:
        raise ValidationError.from_errors(errors)

    current_version = current.identity.kubernetes_version
    desired_version = desired.identity.kubernetes_version
    if current_version != desired_version:
        validate_upgrade(current_version, desired_version)
        plan.upgrade_from = current_version
        plan.upgrade_to = desired_version

    plan.tags_changed = current.identity.tags != desired.identity.tags
    plan.credentials_rotated = current.service_principal != desired.service_principal

    return plan


class ClusterReconciler:
    """Drives create, update and delete of one acs-engine cluster deployment."""

    def __init__(
        self,
        config: Config,
        generator: TemplateGenerator | None = None,
        deployer: ClusterDeployer | None = None,
    ) -> None:
        """Initialize the reconciler.

        Args:
            config: Validated configuration.
            generator: Template generator; defaults to the built-in ARM generator.
            deployer: ARM client wrapper; created from config when omitted.
        """
        self._config = config
        self._generator = generator
        self._deployer = deployer or ClusterDeployer(config)

    @property
    def config(self) -> Config:
        return self._config

    def deployment_id(self, spec: ClusterSpec) -> str:
        return (
            f"/subscriptions/{self._config.subscription_id}"
            f"/resourceGroups/{spec.identity.resource_group}"
            f"/providers/Microsoft.Resources/deployments/{deployment_name(spec.identity.name)}"
        )

    async def create(self, attrs: Mapping[str, Any]) -> dict[str, Any]:
        """Provision a new cluster.

        Returns:
            Flattened state, including fqdn, kube_config and id.

        Raises:
            ValidationError: If the attributes do not expand.
            ParseError: If the Kubernetes version is malformed.
            UnsupportedVersionError: If the version is not supported.
        """
        result = ReconcileResult(cluster=str(attrs.get("name", "")), action=ReconcileAction.CREATE)
        try:
            spec = expand_cluster(attrs, self._config.supported_versions)
            validate_kubernetes_version(
                spec.identity.kubernetes_version, self._config.supported_versions
            )
            return await self._apply(spec)
        except Exception as e:
            result.error = e
            raise
        finally:
            self._log_result(result)

    async def update(
        self,
        state: Mapping[str, Any],
        desired: Mapping[str, Any],
    ) -> dict[str, Any]:
        """Reconcile a running cluster towards the desired attributes.

        The version policy is checked before any template is generated.

        Returns:
            Flattened state after the update (unchanged state if nothing to do).

        Raises:
            ValidationError: For invalid attributes or changes requiring replacement.
            PolicyViolation: If the version transition is not allowed.
            UnsupportedVersionError: If the target version is not supported.
        """
        result = ReconcileResult(
            cluster=str(desired.get("name", "")), action=ReconcileAction.UPDATE
        )
        try:
            current_spec = expand_cluster(state, self._config.supported_versions)
            desired_spec = expand_cluster(desired, self._config.supported_versions)

            plan = plan_update(current_spec, desired_spec)
            result.plan = plan
            if plan.upgrade:
                validate_kubernetes_version(
                    desired_spec.identity.kubernetes_version, self._config.supported_versions
                )

            if not plan.has_changes:
                logger.info("Cluster is up to date", extra={"cluster": result.cluster})
                return dict(state)

            for scale in plan.scale:
                logger.info(
                    f"Scaling agent pool {scale.direction}",
                    extra={
                        "cluster": result.cluster,
                        "agent_pool": scale.name,
                        "current_count": scale.current,
                        "desired_count": scale.desired,
                    },
                )
            if plan.upgrade:
                logger.info(
                    "Upgrading Kubernetes",
                    extra={
                        "cluster": result.cluster,
                        "from_version": plan.upgrade_from,
                        "to_version": plan.upgrade_to,
                    },
                )
            if plan.credentials_rotated:
                logger.info("Rotating service principal", extra={"cluster": result.cluster})

            # Keep the FQDN the cluster was provisioned with
            desired_spec = desired_spec.model_copy(
                update={
                    "master_profile": desired_spec.master_profile.model_copy(
                        update={"fqdn": provisioned_fqdn(state)}
                    )
                }
            )
            return await self._apply(desired_spec)
        except Exception as e:
            result.error = e
            raise
        finally:
            self._log_result(result)

    async def delete(self, state: Mapping[str, Any]) -> None:
        """Delete the cluster's resource group. Derived credentials go with it."""
        resource_group = state.get("resource_group")
        if not isinstance(resource_group, str) or not resource_group:
            raise ValidationError("resource_group is required", field="resource_group")

        result = ReconcileResult(cluster=str(state.get("name", "")), action=ReconcileAction.DELETE)
        try:
            await self._deployer.delete_resource_group(resource_group)
        except Exception as e:
            result.error = e
            raise
        finally:
            self._log_result(result)

    async def exists(self, state: Mapping[str, Any]) -> bool:
        """True if the cluster's ARM deployment exists."""
        name = state.get("name")
        resource_group = state.get("resource_group")
        if not name or not resource_group:
            return False
        deployment = await self._deployer.get_deployment(resource_group, deployment_name(name))
        return deployment is not None

    async def _apply(self, spec: ClusterSpec) -> dict[str, Any]:
        output_dir = self._config.output_dir if self._config.write_output_files else None
        rendered = generate_template(spec, self._generator, output_dir=output_dir)

        await self._deployer.ensure_resource_group(
            spec.identity.resource_group, spec.identity.location, dict(spec.identity.tags)
        )
        outputs = await self._deployer.deploy(
            spec.identity.resource_group,
            deployment_name(spec.identity.name),
            rendered.template_dict(),
            rendered.parameters_dict()["parameters"],
        )

        fqdn = outputs.get("masterFQDN", {}).get("value") or spec.fqdn
        spec = spec.model_copy(
            update={"master_profile": spec.master_profile.model_copy(update={"fqdn": fqdn})}
        )

        credentials, raw = self._derive_credentials(spec)
        state = flatten_cluster(spec, credentials, raw)
        state["id"] = self.deployment_id(spec)
        return state

    def _derive_credentials(
        self, spec: ClusterSpec
    ) -> tuple[ClusterCredentials | None, str | None]:
        """Read the kube config written for this deployment, if any.

        A missing document means no credentials yet. A document that exists
        but does not parse is an error.
        """
        dns_prefix = spec.master_profile.dns_name_prefix
        location = spec.identity.location
        path = kube_config_path(self._config.output_dir, dns_prefix, location)
        if not path.exists():
            logger.warning(
                "No kube config for cluster, credentials not derived",
                extra={"cluster": spec.identity.name, "path": str(path)},
            )
            return None, None

        raw = load_kube_config(self._config.output_dir, dns_prefix, location)

        config = parse_kube_config(raw)
        credentials = extract_credentials(config, dns_prefix=dns_prefix, location=location)
        return credentials, raw

    def _log_result(self, result: ReconcileResult) -> None:
        """Log the operation result with structured data."""
        result.end_time = datetime.now(UTC)
        extra: dict[str, Any] = {
            "cluster": result.cluster,
            "action": result.action.value,
            "duration_seconds": result.duration_seconds,
        }
        if result.plan is not None:
            extra["scaled_pools"] = [scale.name for scale in result.plan.scale]
            extra["upgrade_to"] = result.plan.upgrade_to
            extra["tags_changed"] = result.plan.tags_changed
            extra["credentials_rotated"] = result.plan.credentials_rotated

        if result.error is not None:
            extra["error"] = str(result.error)
            extra["error_type"] = type(result.error).__name__
            logger.error("Cluster reconciliation failed", extra=extra)
        else:
            logger.info("Cluster reconciliation result", extra=extra)
