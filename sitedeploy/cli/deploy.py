"""sitedeploy deploy: provision a tenant end to end."""

from __future__ import annotations

import asyncio

import typer
from rich.console import Console
from rich.table import Table

from sitedeploy.cli.output import configure_logging, load_config_or_exit, report_error
from sitedeploy.config import SiteDeployConfig
from sitedeploy.exceptions import SiteDeployError
from sitedeploy.pipeline import PipelineResult, ProvisioningPipeline


def _print_config(config: SiteDeployConfig, raw: dict) -> None:
    console = Console()
    table = Table(title="Configuration", show_header=True, header_style="bold")
    table.add_column("Setting", style="dim")
    table.add_column("Value")
    for key in ("template", "domain", "tier", "theme", "database"):
        table.add_row(key.capitalize(), raw.get(key) or "default")
    table.add_row("Repository root", str(config.paths.repo_root))
    table.add_row("Ledger", str(config.paths.resolve(config.paths.ledger_file)))
    table.add_row("Shared database", f"{config.shared_database.host}:{config.shared_database.port}")
    table.add_row("Secrets", config.secrets.base_path if config.secrets.enabled else "disabled")
    table.add_row("Dry run", "yes" if raw.get("dry_run") else "no")
    table.add_row("Force", "yes" if raw.get("force") else "no")
    console.print(table)


def _database_summary(result: PipelineResult) -> str:
    if result.policy is not None and result.policy.mariadb_enabled:
        return "dedicated MariaDB (in-namespace)"
    if result.database is not None:
        state = "created" if result.database.created else "already existed"
        return f"{result.database.database_name} on {result.database.host} ({state})"
    return "shared (not provisioned)"


def print_summary(result: PipelineResult, verbose: bool = False) -> None:
    """Print the deployment summary as a Rich table."""
    request = result.request
    if request is None:
        return
    console = Console()
    title = "Dry Run Plan" if request.dry_run else "Deployment Summary"
    table = Table(title=title, show_header=True, header_style="bold")
    table.add_column("Item", style="dim")
    table.add_column("Value")
    table.add_row("Site URL", f"https://{request.domain}")
    table.add_row("Namespace", request.namespace)
    table.add_row("Template", request.template)
    table.add_row("Tier", request.tier)
    table.add_row("Theme", request.theme)
    table.add_row("Database", _database_summary(result))
    if result.report is not None:
        if request.dry_run:
            table.add_row("Would apply", ", ".join(result.report.planned))
        else:
            table.add_row("Applied", ", ".join(result.report.applied))
    if result.record is not None:
        table.add_row("Created", result.record.created_at.isoformat())
    if result.repository is not None:
        table.add_row("Repository", str(result.repository))
    if result.secrets_written:
        table.add_row("Secrets written", str(len(result.secrets_written)))
    if not request.dry_run:
        table.add_row("Ledger", "registered" if result.registered else "already registered")
    for warning in result.warnings:
        table.add_row("Warning", warning)
    console.print(table)

    if request.dry_run and verbose and result.manifests is not None:
        for manifest in result.manifests:
            console.rule(manifest.name)
            console.print(manifest.content, markup=False, highlight=False)
    if not request.dry_run:
        typer.echo("Flux will reconcile the tenant on its next sync interval.")


def deploy_command(
    template: str = typer.Option("", "--template", help="Template directory under templates/."),
    domain: str = typer.Option("", "--domain", help="Fully qualified domain of the site."),
    tier: str = typer.Option("shared", "--tier", help="Tier: shared, dedicated or enterprise."),
    theme: str = typer.Option("twentytwentyfour", "--theme", help="WordPress theme to activate."),
    database: str = typer.Option("", "--database", help="Override the shared database host."),
    dry_run: bool = typer.Option(False, "--dry-run", help="Render and list manifests without changing anything."),
    force: bool = typer.Option(False, "--force", help="Re-provision an existing tenant."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging and configuration summary."),
    config: str = typer.Option("", "--config", help="Configuration file (default: sitedeploy.yaml)."),
) -> None:
    """Provision a tenant site: validate, render, provision database, apply and register."""
    configure_logging(verbose)
    settings = load_config_or_exit(config)
    raw = {
        "template": template.strip(),
        "domain": domain.strip(),
        "tier": tier.strip(),
        "theme": theme.strip(),
        "database": database.strip(),
        "dry_run": dry_run,
        "force": force,
    }
    if verbose:
        _print_config(settings, raw)
    pipeline = ProvisioningPipeline.from_config(settings, dry_run=dry_run)
    try:
        result = asyncio.run(pipeline.run(raw))
    except SiteDeployError as e:
        report_error(e)
        raise typer.Exit(1) from e
    print_summary(result, verbose=verbose)
