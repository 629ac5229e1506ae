"""acs-engine cluster CLI (acsk).

Offline helpers around the cluster mapping plus a one-shot apply.

Usage:
    acsk version check 1.9.8             # Is this version supported?
    acsk version upgrade 1.8.2 1.9.1     # Is this upgrade allowed?
    acsk storage-name My-Cluster         # Derived storage account name
    acsk render cluster.yaml             # Write the ARM template and parameters
    acsk credentials kubeconfig.json     # Credentials derived from a kube config
    acsk apply cluster.yaml              # Create or update the cluster
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any

import click

from .config import DEFAULT_OUTPUT_DIR, Config, ConfigurationError
from .errors import ClusterError, ParseError, PolicyViolation, UnsupportedVersionError
from .kubeconfig import extract_credentials, parse_kube_config
from .mapper import flatten_credentials
from .naming import storage_account_name
from .security import MASKED_VALUE, SecretlessViolationError
from .spec_loader import SpecLoadError, load_attributes
from .template import render_cluster_template
from .versions import (
    DEFAULT_SUPPORTED_VERSIONS,
    SupportedVersionTable,
    validate_kubernetes_version,
    validate_upgrade,
)

CLI_VERSION = "0.1.0"
MAX_KUBE_CONFIG_FILE_SIZE_BYTES = 1024 * 1024


def load_versions_table(path: Path | None) -> SupportedVersionTable:
    """Load a supported versions table, or the built-in one.

    Raises:
        click.ClickException: If the file is not a valid table.
    """
    if path is None:
        return DEFAULT_SUPPORTED_VERSIONS
    try:
        return SupportedVersionTable.from_file(path)
    except ParseError as e:
        raise click.ClickException(str(e)) from e


def echo_json(data: Any) -> None:
    click.echo(json.dumps(data, indent=2, sort_keys=True))


versions_file_option = click.option(
    "--versions-file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="YAML table of supported Kubernetes release lines",
)


# =============================================================================
# Main CLI Group
# =============================================================================


@click.group()
@click.version_option(version=CLI_VERSION, prog_name="acsk")
def cli() -> None:
    """acs-engine Kubernetes cluster CLI (acsk).

    \b
    Quick Start:
        acsk render cluster.yaml      # Inspect the generated template
        acsk apply cluster.yaml       # Provision the cluster
    """
    pass


# =============================================================================
# Version Commands
# =============================================================================


@cli.group()
def version() -> None:
    """Kubernetes version commands: check, upgrade."""
    pass


@version.command("check")
@click.argument("kubernetes_version")
@versions_file_option
def version_check(kubernetes_version: str, versions_file: Path | None) -> None:
    """Check that a version can be used for a new cluster."""
    table = load_versions_table(versions_file)
    try:
        parsed = validate_kubernetes_version(kubernetes_version, table)
    except (ParseError, UnsupportedVersionError) as e:
        raise click.ClickException(str(e)) from e
    click.secho(f"✓ Kubernetes {parsed} is supported", fg="green")


@version.command("upgrade")
@click.argument("current")
@click.argument("proposed")
def version_upgrade(current: str, proposed: str) -> None:
    """Check that a cluster on CURRENT may be upgraded to PROPOSED."""
    try:
        target = validate_upgrade(current, proposed)
    except PolicyViolation as e:
        raise click.ClickException(f"{e} [{e.rule.value}]") from e
    except ParseError as e:
        raise click.ClickException(str(e)) from e
    click.secho(f"✓ Upgrade {current} -> {target} is allowed", fg="green")


# =============================================================================
# Naming Commands
# =============================================================================


@cli.command("storage-name")
@click.argument("name")
def storage_name(name: str) -> None:
    """Print the storage account name derived from a cluster name."""
    click.echo(storage_account_name(name))


# =============================================================================
# Template Commands
# =============================================================================


@cli.command()
@click.argument("spec_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option(
    "--output-dir",
    "-o",
    type=click.Path(file_okay=False, path_type=Path),
    default=DEFAULT_OUTPUT_DIR,
    show_default=True,
    help="Directory for apimodel, template and parameters",
)
@click.option("--stdout", "to_stdout", is_flag=True, help="Print the template instead")
@versions_file_option
def render(
    spec_file: Path,
    output_dir: Path,
    to_stdout: bool,
    versions_file: Path | None,
) -> None:
    """Render the ARM template for a cluster attribute file."""
    table = load_versions_table(versions_file)
    try:
        attrs = load_attributes(spec_file)
        rendered = render_cluster_template(
            attrs, table=table, output_dir=None if to_stdout else output_dir
        )
    except (SpecLoadError, ClusterError) as e:
        raise click.ClickException(str(e)) from e

    if to_stdout:
        click.echo(rendered.template)
        return
    click.secho(f"✓ Template written to {rendered.output_dir}", fg="green")


# =============================================================================
# Credential Commands
# =============================================================================


@cli.command()
@click.argument("kube_config_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--dns-prefix", help="Expected master DNS prefix")
@click.option("--location", help="Expected Azure region")
@click.option("--show-secrets", is_flag=True, help="Print token and client key unmasked")
def credentials(
    kube_config_file: Path,
    dns_prefix: str | None,
    location: str | None,
    show_secrets: bool,
) -> None:
    """Print the credentials derived from a kube config."""
    if kube_config_file.stat().st_size > MAX_KUBE_CONFIG_FILE_SIZE_BYTES:
        raise click.ClickException(
            f"Kube config exceeds maximum size of {MAX_KUBE_CONFIG_FILE_SIZE_BYTES} bytes"
        )
    try:
        text = kube_config_file.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise click.ClickException(f"Failed to read kube config: {e}") from e

    try:
        config = parse_kube_config(text)
        derived = extract_credentials(config, dns_prefix=dns_prefix, location=location)
    except ClusterError as e:
        raise click.ClickException(str(e)) from e

    echo_json(flatten_credentials(derived, display_safe=not show_secrets)[0])
    if not show_secrets:
        click.echo(f"Secrets shown as {MASKED_VALUE}; use --show-secrets to reveal", err=True)


# =============================================================================
# Apply Commands
# =============================================================================


@cli.command()
@click.argument("spec_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option(
    "--state-file",
    type=click.Path(dir_okay=False, path_type=Path),
    help="State file (default: <output_dir>/cluster.state.json)",
)
@click.option("--destroy", is_flag=True, help="Delete the cluster recorded in the state file")
def apply(spec_file: Path, state_file: Path | None, destroy: bool) -> None:
    """Create, update or delete a cluster (reads configuration from the environment)."""
    from .main import STATE_FILENAME, apply_cluster, destroy_cluster
    from .reconciler import ClusterReconciler

    try:
        config = Config.from_env()
    except ConfigurationError as e:
        raise click.ClickException(str(e)) from e

    state_path = state_file or config.output_dir / STATE_FILENAME

    try:
        reconciler = ClusterReconciler(config)
        if destroy:
            if asyncio.run(destroy_cluster(reconciler, state_path)):
                click.secho("✓ Cluster deleted", fg="green")
            else:
                click.echo(f"No state at {state_path}, nothing to delete")
            return
        state = asyncio.run(apply_cluster(reconciler, spec_file, state_path))
    except (SpecLoadError, ClusterError, SecretlessViolationError) as e:
        raise click.ClickException(str(e)) from e

    click.secho(f"✓ Cluster {state['name']} is up to date", fg="green")
    click.echo(f"  FQDN:  {state['master_profile'][0].get('fqdn')}")
    click.echo(f"  State: {state_path}")


# =============================================================================
# Entry Point
# =============================================================================


def main() -> None:
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
