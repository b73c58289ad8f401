"""CLI tools: sitedeploy deploy, sitedeploy db, sitedeploy ledger, sitedeploy tiers."""

import sys
from importlib import metadata

import typer

from sitedeploy.cli.db import db_app
from sitedeploy.cli.deploy import deploy_command
from sitedeploy.cli.ledger import ledger_app
from sitedeploy.cli.tiers import tiers_command

app = typer.Typer(
    name="sitedeploy",
    help="sitedeploy: multi-tenant WordPress provisioning for a shared Kubernetes cluster.",
    no_args_is_help=True,
)

app.command("deploy")(deploy_command)
app.command("tiers")(tiers_command)
app.add_typer(db_app, name="db")
app.add_typer(ledger_app, name="ledger")


def _print_version_and_exit() -> None:
    """Print installed package version and exit."""
    try:
        version = metadata.version("sitedeploy")
    except metadata.PackageNotFoundError:
        version = "unknown"
    print(f"sitedeploy {version}")
    raise SystemExit(0)


def main() -> None:
    """CLI entry point."""
    if "--version" in sys.argv[1:2] or "-V" in sys.argv[1:2]:
        _print_version_and_exit()
    try:
        app()
    except KeyboardInterrupt:
        sys.exit(130)


if __name__ == "__main__":
    main()
