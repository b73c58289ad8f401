"""Secret store backed by the Infisical CLI."""

from __future__ import annotations

import logging
import posixpath

from sitedeploy.clients.command import command_available, run_command
from sitedeploy.exceptions import CommandError
from sitedeploy.retry import RetryPolicy, call_with_retry

logger = logging.getLogger(__name__)


class InfisicalSecretStore:
    """Write per-tenant secrets with ``infisical secrets set``."""

    def __init__(
        self,
        binary: str = "infisical",
        *,
        environment: str = "prod",
        timeout: float = 30.0,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        self.binary = binary
        self.environment = environment
        self.timeout = timeout
        self.retry_policy = retry_policy or RetryPolicy()

    def available(self) -> bool:
        return command_available(self.binary)

    def ensure_folder(self, path: str) -> None:
        parent, name = posixpath.split(path.rstrip("/"))
        argv = [
            self.binary,
            "secrets",
            "folders",
            "create",
            f"--env={self.environment}",
            f"--path={parent or '/'}",
            f"--name={name}",
        ]
        try:
            run_command(argv, timeout=self.timeout)
        except CommandError as exc:
            if "already exists" not in exc.stderr.lower():
                raise
            logger.debug("Secret folder %s already exists", path)

    def set_secret(self, path: str, name: str, value: str) -> None:
        argv = [
            self.binary,
            "secrets",
            "set",
            f"{name}={value}",
            f"--env={self.environment}",
            f"--path={path}",
        ]
        # Setting a secret to the same value twice is harmless.
        call_with_retry(
            lambda: run_command(argv, timeout=self.timeout),
            self.retry_policy,
            description=f"set secret {name}",
        )
