"""orgmapper CLI.

Usage:
    orgmapper run                 # Run the operator loop (same as orgmapper-operator)
    orgmapper reconcile           # Run one reconciliation pass and exit
    orgmapper render ./tenants    # Print the org_mapping for a tenants directory
    orgmapper validate ./tenants  # Check manifests for errors and duplicate tenantIds
"""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path

import click

from .config import (
    DEFAULT_CREDENTIALS_FILE,
    DEFAULT_TENANTS_DIR,
    Config,
    ConfigurationError,
)
from .credentials import (
    CredentialError,
    Credentials,
    load_credentials,
    reject_inline_credentials,
)
from .external import TenantExternal
from .grafana import SSO_PROVIDER, new_client
from .main import main as operator_main
from .main import setup_logging
from .org_mapping import build_org_mapping, iter_entries
from .reconciler import Reconciler, ReconcileResult
from .store import MANIFEST_SUFFIXES, FileTenantStore, TenantLoadError, load_manifest

tenants_dir_argument = click.argument(
    "tenants_dir",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    envvar="TENANTS_DIR",
    default=DEFAULT_TENANTS_DIR,
)


@click.group()
@click.version_option(package_name="orgmapper", prog_name="orgmapper")
def cli() -> None:
    """Keep Grafana's SSO org_mapping in sync with Tenant manifests.

    \b
    Quick Start:
        orgmapper validate ./tenants   # Check manifests
        orgmapper render ./tenants     # Preview the mapping
        orgmapper reconcile --dry-run  # Show what would change in Grafana
    """
    pass


@cli.command()
def run() -> None:
    """Run the operator until SIGTERM/SIGINT, configured from the environment."""
    sys.exit(asyncio.run(operator_main()))


@cli.command()
@click.option("--grafana-url", envvar="GRAFANA_URL", required=True, help="Grafana root URL")
@click.option(
    "--credentials-file",
    envvar="GRAFANA_CREDENTIALS_FILE",
    type=click.Path(dir_okay=False, path_type=Path),
    default=DEFAULT_CREDENTIALS_FILE,
    show_default=True,
    help="Token or basic-auth JSON file",
)
@click.option(
    "--tenants-dir",
    envvar="TENANTS_DIR",
    type=click.Path(file_okay=False, path_type=Path),
    default=DEFAULT_TENANTS_DIR,
    show_default=True,
)
@click.option(
    "--status-dir",
    envvar="STATUS_DIR",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Persisted status (default: <tenants-dir>/.status)",
)
@click.option("--provider", envvar="SSO_PROVIDER", default=SSO_PROVIDER, show_default=True)
@click.option("--dry-run/--no-dry-run", default=False, help="Observe only, write nothing")
@click.option("--verbose", "-v", is_flag=True, help="Debug logging")
def reconcile(
    grafana_url: str,
    credentials_file: Path,
    tenants_dir: Path,
    status_dir: Path | None,
    provider: str,
    dry_run: bool,
    verbose: bool,
) -> None:
    """Run a single reconciliation pass over all tenants.

    Exits non-zero if any tenant failed to reconcile.
    """
    setup_logging(json_output=False, level="DEBUG" if verbose else "WARNING")

    try:
        reject_inline_credentials()
        config = Config(
            grafana_url=grafana_url,
            credentials_file=credentials_file,
            tenants_dir=tenants_dir,
            status_dir=status_dir,
            sso_provider=provider,
            dry_run=dry_run,
            json_logging=False,
        )
        credentials = load_credentials(config.credentials_file)
    except (ConfigurationError, CredentialError) as e:
        raise click.ClickException(str(e)) from e

    results = asyncio.run(_reconcile_once(config, credentials))

    for result in results:
        _echo_result(result)

    failed = [r for r in results if not r.success]
    if failed:
        raise click.ClickException(f"{len(failed)} of {len(results)} tenants failed")
    click.secho(f"✓ Reconciled {len(results)} tenants", fg="green")


async def _reconcile_once(config: Config, credentials: Credentials) -> list[ReconcileResult]:
    async with new_client(
        config.grafana_url,
        credentials,
        timeout=float(config.request_timeout_seconds),
    ) as client:
        store = FileTenantStore(config.tenants_dir, config.effective_status_dir)
        external = TenantExternal(store, client, provider=config.sso_provider)
        return await Reconciler(config, store, external).reconcile_all()


def _echo_result(result: ReconcileResult) -> None:
    action = result.action.value
    if result.dry_run and action != "none":
        action = f"would {action}"
    state = result.state.value if result.state else "-"
    line = f"  {result.tenant}: {state} -> {action}"
    if result.success:
        click.echo(line)
    else:
        click.secho(f"{line} (error: {result.error})", fg="red")


@cli.command()
@tenants_dir_argument
@click.option("--entries", is_flag=True, help="Print one mapping entry per line")
def render(tenants_dir: Path, entries: bool) -> None:
    """Print the org_mapping computed from TENANTS_DIR.

    Tenants marked for deletion are left out. Grafana is not contacted.
    """
    tenants = [t for t in FileTenantStore(tenants_dir).list() if not t.is_deleting]
    mappings = [t.params.to_mapping() for t in tenants]

    if entries:
        for entry in iter_entries(mappings):
            click.echo(entry.render())
    else:
        click.echo(build_org_mapping(mappings))


@cli.command()
@tenants_dir_argument
def validate(tenants_dir: Path) -> None:
    """Validate every manifest in TENANTS_DIR.

    Reports unparseable manifests, duplicate metadata.name values and
    duplicate tenantIds. Exits non-zero if any problem is found.
    """
    problems: list[str] = []
    names: dict[str, Path] = {}
    tenant_ids: dict[str, Path] = {}
    checked = 0

    for path in sorted(tenants_dir.iterdir()):
        if path.suffix not in MANIFEST_SUFFIXES or path.name.startswith(".") or not path.is_file():
            continue
        checked += 1
        try:
            tenant = load_manifest(path)
        except TenantLoadError as e:
            problems.append(str(e))
            continue

        if tenant.name in names:
            problems.append(
                f"{path.name}: metadata.name '{tenant.name}' already used by {names[tenant.name].name}"
            )
            continue
        names[tenant.name] = path

        tenant_id = tenant.params.tenant_id
        if tenant_id in tenant_ids:
            problems.append(
                f"{path.name}: tenantId '{tenant_id}' already used by {tenant_ids[tenant_id].name}"
            )
            continue
        tenant_ids[tenant_id] = path

    for problem in problems:
        click.secho(f"✗ {problem}", fg="red", err=True)

    if problems:
        raise click.ClickException(f"{len(problems)} problem(s) in {checked} manifest(s)")
    click.secho(f"✓ {checked} manifest(s) valid", fg="green")


def main() -> None:
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
