"""Cluster client backed by the kubectl CLI."""

from __future__ import annotations

import base64
import binascii
import logging

from sitedeploy.clients.command import command_available, run_command
from sitedeploy.exceptions import CommandError
from sitedeploy.models import Manifest
from sitedeploy.retry import RetryPolicy, call_with_retry

logger = logging.getLogger(__name__)


class KubectlClient:
    """Talk to the cluster through ``kubectl``.

    Read-only lookups are retried on transient errors. ``apply`` is attempted
    once; ``kubectl apply`` is idempotent, so a failed run is recovered by
    re-running the whole request with ``--force``.
    """

    def __init__(
        self,
        binary: str = "kubectl",
        *,
        context: str = "",
        timeout: float = 30.0,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        self.binary = binary
        self.context = context
        self.timeout = timeout
        self.retry_policy = retry_policy or RetryPolicy()

    def _argv(self, *args: str) -> list[str]:
        argv = [self.binary]
        if self.context:
            argv.extend(["--context", self.context])
        argv.extend(args)
        return argv

    def _read(self, *args: str, description: str) -> str:
        return call_with_retry(
            lambda: run_command(self._argv(*args), timeout=self.timeout),
            self.retry_policy,
            description=description,
        )

    def available(self) -> bool:
        return command_available(self.binary)

    def ping(self) -> None:
        """Fail with CommandError if the cluster cannot be reached."""
        self._read("cluster-info", description="kubectl cluster-info")

    def namespace_exists(self, namespace: str) -> bool:
        try:
            self._read("get", "namespace", namespace, "-o", "name", description=f"get namespace {namespace}")
        except CommandError as exc:
            if "notfound" in exc.stderr.lower().replace(" ", ""):
                return False
            raise
        return True

    def apply(self, manifest: Manifest) -> str:
        output = run_command(self._argv("apply", "-f", "-"), timeout=self.timeout, input_text=manifest.content)
        for line in output.splitlines():
            logger.debug("%s: %s", manifest.name, line)
        return output

    def find_pod(self, namespace: str, selector: str) -> str | None:
        output = self._read(
            "get",
            "pods",
            "-n",
            namespace,
            "-l",
            selector,
            "-o",
            "jsonpath={.items[0].metadata.name}",
            description=f"find pod {selector} in {namespace}",
        )
        name = output.strip()
        return name or None

    def read_secret(self, namespace: str, name: str, key: str) -> str | None:
        try:
            output = self._read(
                "get",
                "secret",
                name,
                "-n",
                namespace,
                "-o",
                f"jsonpath={{.data.{key}}}",
                description=f"read secret {namespace}/{name}",
            )
        except CommandError as exc:
            if "notfound" in exc.stderr.lower().replace(" ", ""):
                return None
            raise
        encoded = output.strip()
        if not encoded:
            return None
        try:
            return base64.b64decode(encoded).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError):
            logger.warning("Secret %s/%s key %s is not valid base64", namespace, name, key)
            return None
