"""Shared CLI plumbing: logging setup, config loading and error reporting."""

from __future__ import annotations

import logging

import typer

from sitedeploy.config import ConfigLoadError, SiteDeployConfig, load_config
from sitedeploy.exceptions import RegistrationError, SiteDeployError

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=LOG_FORMAT,
        force=True,
    )


def load_config_or_exit(config: str | None) -> SiteDeployConfig:
    try:
        return load_config(config or None)
    except ConfigLoadError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1) from e


def report_error(exc: SiteDeployError) -> None:
    """Print a failed run to stderr as ``Error [<stage>]: <message>``."""
    typer.echo(f"Error [{exc.stage}]: {exc}", err=True)
    if isinstance(exc, RegistrationError):
        typer.echo(
            "Warning: the deployment is live in the cluster but is not tracked in the GitOps ledger.",
            err=True,
        )
    report = getattr(exc, "report", None)
    if report is not None:
        for outcome in report.outcomes:
            detail = f" ({outcome.detail})" if outcome.detail else ""
            typer.echo(f"  {outcome.name}: {outcome.status.value}{detail}", err=True)
