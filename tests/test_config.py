"""Tests for configuration loading."""

import os
from pathlib import Path
from unittest.mock import patch

import pytest

from acsengine.config import (
    DEFAULT_DEPLOYMENT_TIMEOUT_SECONDS,
    Config,
    ConfigurationError,
)
from acsengine.versions import DEFAULT_SUPPORTED_VERSIONS

SUBSCRIPTION_ID = "12345678-1234-1234-1234-123456789012"


class TestConfig:
    """Tests for Config class."""

    def test_valid_config(self, tmp_path: Path) -> None:
        config = Config(subscription_id=SUBSCRIPTION_ID, output_dir=tmp_path)

        assert config.output_dir == tmp_path
        assert config.write_output_files is True
        assert config.supported_versions is DEFAULT_SUPPORTED_VERSIONS
        assert config.deployment_timeout_seconds == DEFAULT_DEPLOYMENT_TIMEOUT_SECONDS

    def test_missing_subscription(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            Config(subscription_id="", output_dir=tmp_path)

        assert "AZURE_SUBSCRIPTION_ID is required" in str(exc_info.value)

    def test_invalid_subscription(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            Config(subscription_id="not-a-guid", output_dir=tmp_path)

        assert "valid GUID" in str(exc_info.value)

    def test_timeout_out_of_bounds(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            Config(
                subscription_id=SUBSCRIPTION_ID,
                output_dir=tmp_path,
                deployment_timeout_seconds=5,
            )

        assert "DEPLOYMENT_TIMEOUT" in str(exc_info.value)

    def test_output_dir_must_be_directory(self, tmp_path: Path) -> None:
        not_a_dir = tmp_path / "file"
        not_a_dir.write_text("x")

        with pytest.raises(ConfigurationError) as exc_info:
            Config(subscription_id=SUBSCRIPTION_ID, output_dir=not_a_dir)

        assert "not a directory" in str(exc_info.value)

    def test_all_errors_reported_together(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            Config(
                subscription_id="",
                output_dir=tmp_path,
                deployment_timeout_seconds=1,
                max_deployment_retries=0,
            )

        message = str(exc_info.value)
        assert "AZURE_SUBSCRIPTION_ID" in message
        assert "DEPLOYMENT_TIMEOUT" in message
        assert "DEPLOYMENT_RETRIES" in message


class TestConfigFromEnv:
    """Tests for Config.from_env()."""

    def test_from_env_defaults(self) -> None:
        env = {"AZURE_SUBSCRIPTION_ID": SUBSCRIPTION_ID}
        with patch.dict(os.environ, env, clear=True):
            config = Config.from_env()

        assert config.subscription_id == SUBSCRIPTION_ID
        assert config.output_dir == Path("_output")
        assert config.managed_identity_client_id is None

    def test_from_env_overrides(self, tmp_path: Path) -> None:
        env = {
            "AZURE_SUBSCRIPTION_ID": SUBSCRIPTION_ID,
            "ACSENGINE_OUTPUT_DIR": str(tmp_path),
            "WRITE_OUTPUT_FILES": "false",
            "DEPLOYMENT_TIMEOUT": "600",
            "DEPLOYMENT_RETRIES": "5",
            "MANAGED_IDENTITY_CLIENT_ID": "client-id",
        }
        with patch.dict(os.environ, env, clear=True):
            config = Config.from_env()

        assert config.output_dir == tmp_path
        assert config.write_output_files is False
        assert config.deployment_timeout_seconds == 600
        assert config.max_deployment_retries == 5
        assert config.managed_identity_client_id == "client-id"

    def test_from_env_invalid_integer(self) -> None:
        env = {"AZURE_SUBSCRIPTION_ID": SUBSCRIPTION_ID, "DEPLOYMENT_TIMEOUT": "soon"}
        with patch.dict(os.environ, env, clear=True):
            with pytest.raises(ConfigurationError) as exc_info:
                Config.from_env()

        assert "must be an integer" in str(exc_info.value)

    def test_from_env_loads_versions_file(self, tmp_path: Path) -> None:
        versions = tmp_path / "versions.yaml"
        versions.write_text('releaseLines: ["1.9", "1.10"]\ndefaultVersion: "1.9.11"\n')
        env = {"AZURE_SUBSCRIPTION_ID": SUBSCRIPTION_ID, "SUPPORTED_VERSIONS_FILE": str(versions)}
        with patch.dict(os.environ, env, clear=True):
            config = Config.from_env()

        assert config.supported_versions.release_lines == ("1.9", "1.10")
        assert config.supported_versions.default_version == "1.9.11"

    def test_from_env_invalid_versions_file(self, tmp_path: Path) -> None:
        versions = tmp_path / "versions.yaml"
        versions.write_text("releaseLines: []\n")
        env = {"AZURE_SUBSCRIPTION_ID": SUBSCRIPTION_ID, "SUPPORTED_VERSIONS_FILE": str(versions)}
        with patch.dict(os.environ, env, clear=True):
            with pytest.raises(ConfigurationError) as exc_info:
                Config.from_env()

        assert "SUPPORTED_VERSIONS_FILE" in str(exc_info.value)
