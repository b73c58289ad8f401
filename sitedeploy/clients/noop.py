"""No-op clients substituted for the real ones in dry-run mode."""

from __future__ import annotations

import logging

from sitedeploy.models import Manifest

logger = logging.getLogger(__name__)


class DryRunClusterClient:
    """Cluster client that answers lookups negatively and never mutates.

    Every call is counted so callers can assert that dry-run stayed offline.
    """

    def __init__(self) -> None:
        self.calls: list[str] = []

    def ping(self) -> None:
        self.calls.append("ping")

    def namespace_exists(self, namespace: str) -> bool:
        self.calls.append(f"namespace_exists:{namespace}")
        return False

    def apply(self, manifest: Manifest) -> str:
        self.calls.append(f"apply:{manifest.name}")
        logger.info("[dry-run] would apply %s", manifest.name)
        return ""

    def find_pod(self, namespace: str, selector: str) -> str | None:
        self.calls.append(f"find_pod:{namespace}")
        return None

    def read_secret(self, namespace: str, name: str, key: str) -> str | None:
        self.calls.append(f"read_secret:{namespace}/{name}")
        return None


class NullSecretStore:
    """Secret store used when Infisical is disabled."""

    def available(self) -> bool:
        return False

    def ensure_folder(self, path: str) -> None:
        return None

    def set_secret(self, path: str, name: str, value: str) -> None:
        return None
