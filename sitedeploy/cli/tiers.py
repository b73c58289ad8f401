"""sitedeploy tiers: show the resolved tier policies of a template."""

from __future__ import annotations

import typer
from rich.console import Console
from rich.table import Table

from sitedeploy.cli.output import configure_logging, load_config_or_exit, report_error
from sitedeploy.exceptions import SiteDeployError, ValidationError
from sitedeploy.tiers import TierPolicyResolver


def tiers_command(
    template: str = typer.Option("", "--template", help="Template directory under templates/."),
    config: str = typer.Option("", "--config", help="Configuration file (default: sitedeploy.yaml)."),
) -> None:
    """List the tiers of a template with their resources and database backend."""
    configure_logging()
    settings = load_config_or_exit(config)
    resolver = TierPolicyResolver(settings.paths.resolve(settings.paths.templates_dir))
    template = template.strip()
    try:
        if template not in resolver.available_templates():
            raise ValidationError(
                f"Template '{template}' not found",
                field="template",
                choices=resolver.available_templates(),
            )
        policies = [resolver.resolve(template, tier) for tier in resolver.available_tiers(template)]
    except SiteDeployError as e:
        report_error(e)
        raise typer.Exit(1) from e

    table = Table(title=f"Tiers for {template}", show_header=True, header_style="bold")
    table.add_column("Tier", no_wrap=True)
    for column in ("Database", "Storage", "CPU", "Memory", "PHP memory", "Upload", "Rate limit"):
        table.add_column(column)
    for policy in policies:
        res = policy.resources
        table.add_row(
            policy.tier,
            policy.database_backend,
            policy.storage_size if policy.persistence_enabled else "ephemeral",
            f"{res.cpu_request} / {res.cpu_limit}",
            f"{res.memory_request} / {res.memory_limit}",
            policy.wp_memory_limit,
            policy.upload_max_size,
            f"{policy.rate_limit.connections} conn, {policy.rate_limit.rpm} rpm",
        )
    Console().print(table)
