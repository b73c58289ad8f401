"""sitedeploy ledger: inspect and edit the GitOps desired-state ledger."""

from __future__ import annotations

import typer
from rich.console import Console
from rich.table import Table

from sitedeploy.cli.output import configure_logging, load_config_or_exit, report_error
from sitedeploy.config import SiteDeployConfig
from sitedeploy.exceptions import SiteDeployError
from sitedeploy.ledger import GitOpsRegistrar, YamlLedgerStore

ledger_app = typer.Typer(
    name="ledger",
    help="GitOps ledger operations: list, remove.",
)


def _registrar(settings: SiteDeployConfig) -> GitOpsRegistrar:
    paths = settings.paths
    return GitOpsRegistrar(YamlLedgerStore(paths.resolve(paths.ledger_file)))


@ledger_app.command("list")
def list_command(
    all_entries: bool = typer.Option(False, "--all", help="Include removed domains."),
    config: str = typer.Option("", "--config", help="Configuration file (default: sitedeploy.yaml)."),
) -> None:
    """List domains recorded in the ledger."""
    configure_logging()
    settings = load_config_or_exit(config)
    try:
        entries = _registrar(settings).entries()
    except SiteDeployError as e:
        report_error(e)
        raise typer.Exit(1) from e
    if not all_entries:
        entries = [entry for entry in entries if entry.active]
    if not entries:
        typer.echo("No tenants registered.")
        return
    table = Table(title="GitOps Ledger", show_header=True, header_style="bold")
    table.add_column("Domain", no_wrap=True)
    table.add_column("Added", style="dim")
    table.add_column("Status")
    for entry in entries:
        table.add_row(entry.domain, entry.added_at, "active" if entry.active else f"removed {entry.removed_at}")
    Console().print(table)


@ledger_app.command("remove")
def remove_command(
    domain: str = typer.Argument(..., help="Domain to mark as removed."),
    config: str = typer.Option("", "--config", help="Configuration file (default: sitedeploy.yaml)."),
) -> None:
    """Mark a domain removed so the reconciliation controller prunes it."""
    configure_logging()
    settings = load_config_or_exit(config)
    domain = domain.strip().lower()
    try:
        changed = _registrar(settings).deregister(domain)
    except SiteDeployError as e:
        report_error(e)
        raise typer.Exit(1) from e
    if changed:
        typer.echo(f"Removed {domain} from the GitOps ledger.")
    else:
        typer.echo(f"{domain} is not registered; nothing to do.")
