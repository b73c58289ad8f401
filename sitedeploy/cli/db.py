"""sitedeploy db provision: create a tenant database on the shared cluster."""

from __future__ import annotations

import asyncio

import typer

from sitedeploy.cli.output import configure_logging, load_config_or_exit, report_error
from sitedeploy.exceptions import SiteDeployError, ValidationError
from sitedeploy.pipeline import ProvisioningPipeline
from sitedeploy.validator import LABEL_PATTERN

db_app = typer.Typer(
    name="db",
    help="Shared database operations.",
)


@db_app.command("provision")
def provision_command(
    namespace: str = typer.Option("", "--namespace", help="Tenant namespace (first label of the domain)."),
    database_host: str = typer.Option("", "--database-host", help="Shared MySQL host (default from config)."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging."),
    config: str = typer.Option("", "--config", help="Configuration file (default: sitedeploy.yaml)."),
) -> None:
    """Create, grant and verify wp_<namespace> on the shared MySQL cluster."""
    configure_logging(verbose)
    settings = load_config_or_exit(config)
    namespace = namespace.strip().lower()
    try:
        if not namespace:
            raise ValidationError("--namespace is required", field="namespace")
        if not LABEL_PATTERN.fullmatch(namespace):
            raise ValidationError(f"Invalid namespace: {namespace!r}", field="namespace")
        provisioner = ProvisioningPipeline.from_config(settings).database
        info = asyncio.run(provisioner.provision_namespace(namespace, host=database_host.strip() or None))
    except SiteDeployError as e:
        report_error(e)
        raise typer.Exit(1) from e
    state = "created" if info.created else "already existed"
    typer.echo(f"Database {info.database_name} ready on {info.host}:{info.port} ({state}); user {info.user}.")
