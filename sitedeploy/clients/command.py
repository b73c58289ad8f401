"""Run external CLIs (kubectl, infisical) with a timeout."""

from __future__ import annotations

import logging
import shutil
import subprocess

from sitedeploy.exceptions import CommandError, TransientClientError

logger = logging.getLogger(__name__)

# stderr fragments that indicate the service is not ready yet.
_TRANSIENT_MARKERS = (
    "connection refused",
    "connection reset",
    "i/o timeout",
    "serviceunavailable",
    "service unavailable",
    "tls handshake timeout",
    "too many requests",
    "etcdserver: request timed out",
)


def command_available(binary: str) -> bool:
    """Return True if ``binary`` is on PATH."""
    return shutil.which(binary) is not None


def run_command(
    argv: list[str],
    *,
    timeout: float,
    input_text: str | None = None,
) -> str:
    """Run ``argv`` and return stdout.

    Raises:
        TransientClientError: Timed out, or stderr looks like a not-ready service.
        CommandError: Non-zero exit for any other reason.
    """
    logger.debug("Running %s", " ".join(argv[:3]))
    try:
        result = subprocess.run(
            argv,
            input=input_text,
            capture_output=True,
            text=True,
            timeout=timeout,
            check=False,
        )
    except subprocess.TimeoutExpired as exc:
        raise TransientClientError(f"{argv[0]} timed out after {timeout:.0f}s") from exc
    except FileNotFoundError as exc:
        raise CommandError(argv, 127, f"{argv[0]} not found on PATH") from exc
    if result.returncode != 0:
        stderr = result.stderr or ""
        lowered = stderr.lower()
        if any(marker in lowered for marker in _TRANSIENT_MARKERS):
            raise TransientClientError(f"{argv[0]} failed: {stderr.strip()}")
        raise CommandError(argv, result.returncode, stderr)
    return result.stdout or ""
