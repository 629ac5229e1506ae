"""Pytest configuration and fixtures."""

import json
import sys
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

# Add tests to path for azure_mock imports
tests_path = Path(__file__).parent
sys.path.insert(0, str(tests_path))

SUBSCRIPTION_ID = "12345678-1234-1234-1234-123456789012"
SSH_KEY = "ssh-rsa AAAAB3NzaC1yc2EAAAADAQABAAABAQC0test azureuser@example"


@pytest.fixture
def cluster_attrs() -> dict[str, Any]:
    """A valid attribute bag for a one-master, one-pool cluster."""
    return {
        "name": "acctest",
        "resource_group": "acctestRG-1",
        "location": "westeurope",
        "kubernetes_version": "1.8.13",
        "linux_profile": [
            {
                "admin_username": "azureuser",
                "ssh": [{"key_data": SSH_KEY}],
            }
        ],
        "service_principal": [
            {
                "client_id": "00000000-0000-0000-0000-000000000001",
                "client_secret": "sp-secret-value",
            }
        ],
        "master_profile": [
            {
                "count": 1,
                "dns_name_prefix": "acctestmaster1",
                "vm_size": "Standard_D2_v2",
            }
        ],
        "agent_pool_profiles": [
            {
                "name": "agentpool1",
                "count": 1,
                "vm_size": "Standard_D2_v2",
            }
        ],
        "tags": {"Environment": "Test"},
    }


def kube_config_document(dns_prefix: str, location: str) -> str:
    """Admin kube config as acs-engine writes it for a deployment."""
    return json.dumps(
        {
            "apiVersion": "v1",
            "clusters": [
                {
                    "cluster": {
                        "certificate-authority-data": "0123",
                        "server": f"https://{dns_prefix}.{location}.cloudapp.azure.com",
                    },
                    "name": dns_prefix,
                }
            ],
            "contexts": [
                {
                    "context": {"cluster": dns_prefix, "user": f"{dns_prefix}-admin"},
                    "name": dns_prefix,
                }
            ],
            "current-context": dns_prefix,
            "kind": "Config",
            "users": [
                {
                    "name": f"{dns_prefix}-admin",
                    "user": {"client-certificate-data": "4567", "client-key-data": "8910"},
                }
            ],
        },
        indent=4,
    )


@pytest.fixture
def make_kube_config() -> Callable[[str, str], str]:
    return kube_config_document


@pytest.fixture
def subscription_id() -> str:
    return SUBSCRIPTION_ID
