"""Tests for the Pydantic models."""

import pytest
from pydantic import ValidationError

from acsengine.models import (
    DEFAULT_VM_SIZE,
    AgentPoolProfile,
    ClusterIdentity,
    ClusterSpec,
    LinuxProfile,
    MasterProfile,
    OSType,
    ServicePrincipal,
    master_fqdn,
)


def make_spec(**pool_overrides: object) -> ClusterSpec:
    pool = {"name": "agentpool1", "count": 3, **pool_overrides}
    return ClusterSpec.model_validate(
        {
            "identity": {
                "name": "k8s",
                "resource_group": "rg-k8s",
                "location": "westeurope",
                "kubernetes_version": "1.9.8",
            },
            "linux_profile": {"admin_username": "azureuser", "ssh_keys": ["ssh-rsa AAAA"]},
            "service_principal": {"client_id": "client", "client_secret": "secret"},
            "master_profile": {"count": 3, "dns_name_prefix": "k8smaster"},
            "agent_pool_profiles": [pool],
        }
    )


class TestMasterProfile:
    """Tests for MasterProfile model."""

    @pytest.mark.parametrize("count", [1, 3, 5])
    def test_valid_counts(self, count: int) -> None:
        profile = MasterProfile(count=count, dns_name_prefix="k8smaster")
        assert profile.count == count

    @pytest.mark.parametrize("count", [0, 2, 4, 6, 7])
    def test_invalid_counts(self, count: int) -> None:
        with pytest.raises(ValidationError) as exc_info:
            MasterProfile(count=count, dns_name_prefix="k8smaster")

        assert "count must be one of" in str(exc_info.value)

    def test_defaults(self) -> None:
        profile = MasterProfile(dns_name_prefix="k8smaster")

        assert profile.count == 1
        assert profile.vm_size == DEFAULT_VM_SIZE
        assert profile.os_disk_size is None
        assert profile.fqdn is None

    def test_invalid_dns_prefix(self) -> None:
        with pytest.raises(ValidationError):
            MasterProfile(dns_name_prefix="-bad")


class TestAgentPoolProfile:
    """Tests for AgentPoolProfile model."""

    @pytest.mark.parametrize("count", [1, 50, 100])
    def test_valid_counts(self, count: int) -> None:
        assert AgentPoolProfile(name="agentpool1", count=count).count == count

    @pytest.mark.parametrize("count", [0, 101])
    def test_invalid_counts(self, count: int) -> None:
        with pytest.raises(ValidationError):
            AgentPoolProfile(name="agentpool1", count=count)

    def test_os_type_default(self) -> None:
        assert AgentPoolProfile(name="agentpool1").os_type is OSType.LINUX

    def test_invalid_os_type(self) -> None:
        with pytest.raises(ValidationError):
            AgentPoolProfile.model_validate({"name": "agentpool1", "os_type": "Plan9"})

    def test_os_disk_size_bounds(self) -> None:
        with pytest.raises(ValidationError):
            AgentPoolProfile(name="agentpool1", os_disk_size=2048)


class TestLinuxProfile:
    """Tests for LinuxProfile model."""

    def test_duplicate_keys_collapse(self) -> None:
        profile = LinuxProfile(admin_username="azureuser", ssh_keys=("a", "b", "a"))
        assert profile.ssh_keys == ("a", "b")

    def test_key_set_ignores_order(self) -> None:
        first = LinuxProfile(admin_username="azureuser", ssh_keys=("a", "b"))
        second = LinuxProfile(admin_username="azureuser", ssh_keys=("b", "a"))
        assert first.key_set == second.key_set


class TestServicePrincipal:
    """Tests for ServicePrincipal model."""

    def test_secret_hidden_in_repr(self) -> None:
        principal = ServicePrincipal(client_id="client", client_secret="top-secret")
        assert "top-secret" not in repr(principal)
        assert principal.client_secret.get_secret_value() == "top-secret"

    def test_empty_secret_rejected(self) -> None:
        with pytest.raises(ValidationError):
            ServicePrincipal(client_id="client", client_secret="")


class TestClusterSpec:
    """Tests for ClusterSpec model."""

    def test_fqdn_derived_from_prefix_and_location(self) -> None:
        spec = make_spec()
        assert spec.fqdn == "k8smaster.westeurope.cloudapp.azure.com"
        assert spec.fqdn == master_fqdn("k8smaster", "westeurope")

    def test_duplicate_pool_names_rejected(self) -> None:
        with pytest.raises(ValidationError) as exc_info:
            ClusterSpec.model_validate(
                {
                    **make_spec().model_dump(),
                    "service_principal": {"client_id": "client", "client_secret": "secret"},
                    "agent_pool_profiles": [{"name": "pool"}, {"name": "pool"}],
                }
            )

        assert "duplicate agent pool name" in str(exc_info.value)

    def test_resource_group_length(self) -> None:
        with pytest.raises(ValidationError):
            ClusterIdentity(
                name="k8s",
                resource_group="r" * 91,
                location="westeurope",
                kubernetes_version="1.9.8",
            )

    def test_to_arm_parameters(self) -> None:
        params = make_spec().to_arm_parameters()

        assert params["location"]["value"] == "westeurope"
        assert params["masterCount"]["value"] == 3
        assert params["masterEndpointDNSNamePrefix"]["value"] == "k8smaster"
        assert params["agentpool1Count"]["value"] == 3
        assert params["agentpool1VMSize"]["value"] == DEFAULT_VM_SIZE
        assert params["linuxAdminUsername"]["value"] == "azureuser"
        assert params["servicePrincipalClientId"]["value"] == "client"
        assert params["servicePrincipalClientSecret"]["value"] == "secret"

    def test_to_arm_parameters_omits_unset_disk_size(self) -> None:
        params = make_spec().to_arm_parameters()

        assert "agentpool1osDiskSizeGB" not in params
        assert "masterOSDiskSizeGB" not in params
        assert "tags" not in params

    def test_to_arm_parameters_includes_set_disk_size(self) -> None:
        params = make_spec(os_disk_size=200).to_arm_parameters()
        assert params["agentpool1osDiskSizeGB"]["value"] == 200
