"""ARM template generation for a cluster specification.

The real template generator (acs-engine) is an external collaborator behind
the TemplateGenerator protocol. ArmTemplateGenerator is the built-in
implementation used when no external generator is configured; it emits a
template with one parameter definition per parameter so the deployment API
can validate the parameter file against it.

Output layout when files are written (mirrors acs-engine):

    <output_dir>/<dns_prefix>/apimodel.json
    <output_dir>/<dns_prefix>/azuredeploy.json
    <output_dir>/<dns_prefix>/azuredeploy.parameters.json
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

from .mapper import expand_cluster, flatten_cluster
from .models import ClusterSpec
from .naming import storage_account_name
from .versions import DEFAULT_SUPPORTED_VERSIONS, SupportedVersionTable

logger = logging.getLogger(__name__)

ARM_TEMPLATE_SCHEMA = (
    "https://schema.management.azure.com/schemas/2015-01-01/deploymentTemplate.json#"
)
ARM_PARAMETERS_SCHEMA = (
    "https://schema.management.azure.com/schemas/2015-01-01/deploymentParameters.json#"
)
CONTENT_VERSION = "1.0.0.0"

APIMODEL_FILENAME = "apimodel.json"
TEMPLATE_FILENAME = "azuredeploy.json"
PARAMETERS_FILENAME = "azuredeploy.parameters.json"

# Parameters rendered as securestring in the template
SECURE_PARAMETERS = frozenset({"servicePrincipalClientSecret"})

COMPUTE_API_VERSION = "2017-03-30"
STORAGE_API_VERSION = "2017-10-01"


class TemplateGenerator(Protocol):
    """Renders a cluster specification into an ARM template and parameters."""

    def generate(self, spec: ClusterSpec) -> tuple[dict[str, Any], dict[str, Any]]: ...


@dataclass(frozen=True)
class RenderedTemplate:
    """JSON text handed to the deployment API."""

    template: str
    parameters: str
    output_dir: Path | None = None

    def template_dict(self) -> dict[str, Any]:
        return json.loads(self.template)

    def parameters_dict(self) -> dict[str, Any]:
        return json.loads(self.parameters)


def _parameter_type(name: str, value: Any) -> str:
    if name in SECURE_PARAMETERS:
        return "securestring"
    if isinstance(value, bool):
        return "bool"
    if isinstance(value, int):
        return "int"
    if isinstance(value, dict):
        return "object"
    return "string"


class ArmTemplateGenerator:
    """Built-in generator: storage for diagnostics, masters, one scale set per pool."""

    def generate(self, spec: ClusterSpec) -> tuple[dict[str, Any], dict[str, Any]]:
        params = spec.to_arm_parameters()

        template: dict[str, Any] = {
            "$schema": ARM_TEMPLATE_SCHEMA,
            "contentVersion": CONTENT_VERSION,
            "parameters": {
                name: {"type": _parameter_type(name, entry["value"])}
                for name, entry in params.items()
            },
            "variables": {
                "diagnosticsStorageAccountName": storage_account_name(spec.identity.name),
            },
            "resources": [
                self._storage_account(),
                self._masters(spec),
                *(self._agent_pool(pool.name) for pool in spec.agent_pool_profiles),
            ],
            "outputs": {
                "masterFQDN": {"type": "string", "value": spec.fqdn},
            },
        }
        return template, params

    def _storage_account(self) -> dict[str, Any]:
        return {
            "type": "Microsoft.Storage/storageAccounts",
            "apiVersion": STORAGE_API_VERSION,
            "name": "[variables('diagnosticsStorageAccountName')]",
            "location": "[parameters('location')]",
            "sku": {"name": "Standard_LRS"},
            "kind": "Storage",
        }

    def _masters(self, spec: ClusterSpec) -> dict[str, Any]:
        os_profile: dict[str, Any] = {
            "adminUsername": "[parameters('linuxAdminUsername')]",
        }
        if spec.linux_profile.ssh_keys:
            os_profile["linuxConfiguration"] = {
                "disablePasswordAuthentication": True,
                "ssh": {
                    "publicKeys": [
                        {
                            "path": "[concat('/home/', parameters('linuxAdminUsername'), "
                            "'/.ssh/authorized_keys')]",
                            "keyData": "[parameters('sshRSAPublicKey')]",
                        }
                    ]
                },
            }

        storage_profile: dict[str, Any] = {}
        if spec.master_profile.os_disk_size is not None:
            storage_profile["osDisk"] = {
                "createOption": "FromImage",
                "diskSizeGB": "[parameters('masterOSDiskSizeGB')]",
            }

        return {
            "type": "Microsoft.Compute/virtualMachines",
            "apiVersion": COMPUTE_API_VERSION,
            "name": "[concat('k8s-master-', parameters('masterEndpointDNSNamePrefix'), "
            "'-', copyIndex())]",
            "location": "[parameters('location')]",
            "copy": {"name": "masterLoop", "count": "[parameters('masterCount')]"},
            "tags": "[parameters('tags')]" if spec.identity.tags else {},
            "properties": {
                "hardwareProfile": {"vmSize": "[parameters('masterVMSize')]"},
                "osProfile": os_profile,
                "storageProfile": storage_profile,
            },
        }

    def _agent_pool(self, name: str) -> dict[str, Any]:
        return {
            "type": "Microsoft.Compute/virtualMachineScaleSets",
            "apiVersion": COMPUTE_API_VERSION,
            "name": f"k8s-{name}",
            "location": "[parameters('location')]",
            "sku": {
                "name": f"[parameters('{name}VMSize')]",
                "capacity": f"[parameters('{name}Count')]",
            },
            "properties": {
                "virtualMachineProfile": {
                    "osProfile": {
                        "computerNamePrefix": f"k8s-{name}",
                        "adminUsername": "[parameters('linuxAdminUsername')]",
                    },
                    "tags": {"poolName": name, "osType": f"[parameters('{name}OSType')]"},
                },
            },
        }


def _write_outputs(
    directory: Path,
    spec: ClusterSpec,
    template: dict[str, Any],
    parameters_file: dict[str, Any],
) -> None:
    directory.mkdir(parents=True, exist_ok=True)
    # The apimodel is the storage-channel form: it holds the secret like the parameters do
    apimodel = flatten_cluster(spec)
    (directory / APIMODEL_FILENAME).write_text(json.dumps(apimodel, indent=2), encoding="utf-8")
    (directory / TEMPLATE_FILENAME).write_text(json.dumps(template, indent=2), encoding="utf-8")
    (directory / PARAMETERS_FILENAME).write_text(
        json.dumps(parameters_file, indent=2), encoding="utf-8"
    )


def generate_template(
    spec: ClusterSpec,
    generator: TemplateGenerator | None = None,
    *,
    output_dir: Path | None = None,
) -> RenderedTemplate:
    """Render a cluster specification.

    Args:
        spec: Validated cluster specification.
        generator: Template generator; defaults to ArmTemplateGenerator.
        output_dir: If set, also write apimodel, template and parameters
            files under <output_dir>/<dns_prefix>/.

    Returns:
        Template and parameter-file JSON text.
    """
    generator = generator or ArmTemplateGenerator()
    template, params = generator.generate(spec)

    parameters_file = {
        "$schema": ARM_PARAMETERS_SCHEMA,
        "contentVersion": CONTENT_VERSION,
        "parameters": params,
    }

    written_to: Path | None = None
    if output_dir is not None:
        written_to = output_dir / spec.master_profile.dns_name_prefix
        _write_outputs(written_to, spec, template, parameters_file)

    logger.info(
        "Generated cluster template",
        extra={
            "cluster": spec.identity.name,
            "agent_pools": len(spec.agent_pool_profiles),
            "kubernetes_version": spec.identity.kubernetes_version,
            "output_dir": str(written_to) if written_to else None,
        },
    )

    return RenderedTemplate(
        template=json.dumps(template, indent=2),
        parameters=json.dumps(parameters_file, indent=2),
        output_dir=written_to,
    )


def render_cluster_template(
    attrs: Mapping[str, Any],
    generator: TemplateGenerator | None = None,
    *,
    table: SupportedVersionTable = DEFAULT_SUPPORTED_VERSIONS,
    output_dir: Path | None = None,
) -> RenderedTemplate:
    """Expand declarative attributes and render them in one step.

    Raises:
        ValidationError: If the attributes do not expand.
    """
    spec = expand_cluster(attrs, table)
    return generate_template(spec, generator, output_dir=output_dir)
