"""Tests for the one-shot reconciliation entry point."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any
from unittest import mock

import pytest
import yaml
from azure_mock import MockAzureContext

from acsengine.main import main

SUBSCRIPTION_ID = "12345678-1234-1234-1234-123456789012"


@pytest.fixture
def environment(tmp_path: Path, cluster_attrs: dict[str, Any]) -> dict[str, str]:
    spec_file = tmp_path / "cluster.yaml"
    spec_file.write_text(yaml.safe_dump(cluster_attrs))
    return {
        "AZURE_SUBSCRIPTION_ID": SUBSCRIPTION_ID,
        "ACSENGINE_OUTPUT_DIR": str(tmp_path),
        "SPEC_FILE": str(spec_file),
        "STATE_FILE": str(tmp_path / "state.json"),
    }


class TestMain:
    """Tests for main() exit codes and state handling."""

    @pytest.fixture(autouse=True)
    def no_logging_setup(self) -> Any:
        with mock.patch("acsengine.main.setup_logging"):
            yield

    @pytest.mark.asyncio
    async def test_create_then_update(self, environment: dict[str, str], tmp_path: Path) -> None:
        with mock.patch.dict(os.environ, environment, clear=True), MockAzureContext() as ctx:
            assert await main() == 0
            assert ctx.get_deployment_count() == 1

            # Same attributes again: nothing to deploy
            assert await main() == 0
            assert len(ctx.get_deployments()) == 1

        state = json.loads((tmp_path / "state.json").read_text())
        assert state["name"] == "acctest"

    @pytest.mark.asyncio
    async def test_destroy(self, environment: dict[str, str], tmp_path: Path) -> None:
        with mock.patch.dict(os.environ, environment, clear=True), MockAzureContext() as ctx:
            assert await main() == 0

            with mock.patch.dict(os.environ, {"DESTROY": "true"}):
                assert await main() == 0

            assert ctx.state.get_resource_group("acctestRG-1") is None
        assert not (tmp_path / "state.json").exists()

    @pytest.mark.asyncio
    async def test_configuration_error(self) -> None:
        with mock.patch.dict(os.environ, {}, clear=True):
            assert await main() == 1

    @pytest.mark.asyncio
    async def test_missing_spec_file(self, environment: dict[str, str], tmp_path: Path) -> None:
        environment["SPEC_FILE"] = str(tmp_path / "missing.yaml")
        with mock.patch.dict(os.environ, environment, clear=True), MockAzureContext():
            assert await main() == 1

    @pytest.mark.asyncio
    async def test_rejected_upgrade(
        self,
        environment: dict[str, str],
        cluster_attrs: dict[str, Any],
    ) -> None:
        with mock.patch.dict(os.environ, environment, clear=True), MockAzureContext() as ctx:
            assert await main() == 0

            cluster_attrs["kubernetes_version"] = "1.11.0"
            Path(environment["SPEC_FILE"]).write_text(yaml.safe_dump(cluster_attrs))

            assert await main() == 1
            assert len(ctx.get_deployments()) == 1

    @pytest.mark.asyncio
    async def test_security_violation(self, environment: dict[str, str]) -> None:
        environment["AZURE_CLIENT_SECRET"] = "secret"
        with mock.patch.dict(os.environ, environment, clear=True), MockAzureContext():
            assert await main() == 2


class TestSetupLogging:
    """Tests for the JSON log formatter."""

    def test_json_output(self, capsys: pytest.CaptureFixture[str]) -> None:
        from acsengine.main import setup_logging

        root = logging.getLogger()
        handlers = list(root.handlers)
        level = root.level
        try:
            setup_logging()
            logging.getLogger("acsengine.test").info(
                "Cluster reconciled", extra={"cluster": "acctest"}
            )
        finally:
            for handler in root.handlers[:]:
                if handler not in handlers:
                    root.removeHandler(handler)
            root.setLevel(level)

        line = capsys.readouterr().out.strip().splitlines()[-1]
        record = json.loads(line)
        assert record["message"] == "Cluster reconciled"
        assert record["cluster"] == "acctest"
        assert record["level"] == "INFO"
