"""Per-tenant credential generation, written to the secret store."""

from __future__ import annotations

import logging
import secrets
from typing import Callable

from sitedeploy.clients.base import SecretStore
from sitedeploy.exceptions import ClientError, ProvisioningError
from sitedeploy.models import TenantRequest
from sitedeploy.renderer import env_key

logger = logging.getLogger(__name__)

# (suffix, token bytes)
DATABASE_SECRETS: tuple[tuple[str, int], ...] = (
    ("MYSQL_ROOT_PASSWORD", 32),
    ("MYSQL_PASSWORD", 24),
)
WORDPRESS_KEYS: tuple[str, ...] = (
    "WP_AUTH_KEY",
    "WP_SECURE_AUTH_KEY",
    "WP_LOGGED_IN_KEY",
    "WP_NONCE_KEY",
    "WP_AUTH_SALT",
    "WP_SECURE_AUTH_SALT",
    "WP_LOGGED_IN_SALT",
    "WP_NONCE_SALT",
)


class SecretProvisioner:
    """Generate database passwords and WordPress keys under ``<base_path>/<namespace>``."""

    def __init__(
        self,
        store: SecretStore,
        base_path: str = "/wordpress",
        token_factory: Callable[[int], str] = secrets.token_urlsafe,
    ) -> None:
        self.store = store
        self.base_path = "/" + base_path.strip("/")
        self.token_factory = token_factory

    def secrets_path(self, namespace: str) -> str:
        return f"{self.base_path}/{namespace}"

    def secret_names(self, namespace: str) -> list[str]:
        prefix = env_key(namespace)
        names = [f"{prefix}_{suffix}" for suffix, _ in DATABASE_SECRETS]
        names.extend(f"{prefix}_{key}" for key in WORDPRESS_KEYS)
        return names

    def provision(self, request: TenantRequest) -> list[str]:
        """Write fresh credentials and return the secret names written.

        Returns an empty list when the store is unavailable; the operator then
        creates the secrets by hand at :meth:`secrets_path`.
        """
        namespace = request.namespace
        path = self.secrets_path(namespace)
        if not self.store.available():
            logger.warning("Secret store not available - create secrets manually at path: %s", path)
            return []

        prefix = env_key(namespace)
        values = {f"{prefix}_{suffix}": self.token_factory(size) for suffix, size in DATABASE_SECRETS}
        values.update({f"{prefix}_{key}": self.token_factory(64) for key in WORDPRESS_KEYS})
        try:
            self.store.ensure_folder(path)
            for name, value in values.items():
                self.store.set_secret(path, name, value)
                logger.debug("Set secret %s", name)
        except ClientError as exc:
            raise ProvisioningError(f"Cannot write secrets at {path}: {exc}", stage="secrets") from exc
        logger.info("Created %d secrets at %s", len(values), path)
        return list(values)
