"""Tenant database provisioning on the shared MySQL cluster."""

from __future__ import annotations

import asyncio
import logging

from sitedeploy.clients.base import ClusterClient, DatabaseClient, DatabaseClientFactory
from sitedeploy.clients.mysql import MySQLDatabaseClient
from sitedeploy.config.models import SharedDatabaseConfig
from sitedeploy.exceptions import ClientError, ProvisioningError
from sitedeploy.models import DatabaseConnectionInfo, TenantRequest, TierPolicy
from sitedeploy.retry import RetryPolicy, acall_with_retry

logger = logging.getLogger(__name__)


def database_name_for(namespace: str, prefix: str = "wp_") -> str:
    return f"{prefix}{namespace}"


class DatabaseProvisioner:
    """Create-if-missing, grant and verify ``wp_<namespace>`` on the shared cluster.

    Tiers with a dedicated MariaDB ship their database inside the rendered
    manifests, so :meth:`provision` does nothing for them.
    """

    def __init__(
        self,
        cluster: ClusterClient,
        config: SharedDatabaseConfig | None = None,
        *,
        client_factory: DatabaseClientFactory = MySQLDatabaseClient.connect,
        retry_policy: RetryPolicy | None = None,
        timeout: float = 30.0,
    ) -> None:
        self.cluster = cluster
        self.config = config or SharedDatabaseConfig()
        self.client_factory = client_factory
        self.retry_policy = retry_policy or RetryPolicy()
        self.timeout = timeout

    async def provision(self, request: TenantRequest, policy: TierPolicy) -> DatabaseConnectionInfo | None:
        if policy.mariadb_enabled:
            logger.info("Tier %s uses a dedicated database; shared provisioning skipped", policy.tier)
            return None
        host = request.database_override or policy.external_db_host or self.config.host
        return await self.provision_namespace(request.namespace, host=host)

    async def provision_namespace(self, namespace: str, host: str | None = None) -> DatabaseConnectionInfo:
        """Ensure the tenant database exists and is visible in the catalog.

        Raises:
            ProvisioningError: Database service not found, admin or app_user
                credentials unavailable, a statement failed, or verification
                did not find the database.
        """
        cfg = self.config
        host = host or cfg.host
        name = database_name_for(namespace, cfg.database_prefix)
        self._locate_service()
        password = self._read_credential(cfg.admin_secret_key, "database admin password")
        # Tenants connect as app_user with the password from this same secret.
        self._read_credential(cfg.app_secret_key, f"password for database user '{cfg.app_user}'")

        try:
            client = self.client_factory(host, cfg.port, cfg.admin_user, password)
        except ClientError as exc:
            raise ProvisioningError(f"Cannot connect to shared database at {host}: {exc}") from exc
        try:
            created = await self._ensure_database(client, name)
            verified = await self._call(client.database_exists, name, description=f"verify {name}")
        except (ClientError, asyncio.TimeoutError) as exc:
            raise ProvisioningError(f"Database provisioning for '{name}' on {host} failed: {exc}") from exc
        finally:
            await client.close()

        if not verified:
            raise ProvisioningError(f"Database verification failed: '{name}' not found on {host}")
        logger.info("Database %s ready on %s (user %s)", name, host, cfg.app_user)
        return DatabaseConnectionInfo(
            host=host,
            database_name=name,
            user=cfg.app_user,
            port=cfg.port,
            verified=True,
            created=created,
        )

    def _locate_service(self) -> str:
        cfg = self.config
        try:
            pod = self.cluster.find_pod(cfg.service_namespace, cfg.pod_selector)
        except ClientError as exc:
            raise ProvisioningError(f"Cannot locate shared database service: {exc}") from exc
        if not pod:
            raise ProvisioningError(
                f"No database primary pod found in {cfg.service_namespace} namespace (selector {cfg.pod_selector})"
            )
        logger.debug("Found database pod %s", pod)
        return pod

    def _read_credential(self, key: str, what: str) -> str:
        cfg = self.config
        try:
            value = self.cluster.read_secret(cfg.service_namespace, cfg.admin_secret_name, key)
        except ClientError as exc:
            raise ProvisioningError(f"Cannot read secret {cfg.service_namespace}/{cfg.admin_secret_name}: {exc}") from exc
        if not value:
            raise ProvisioningError(
                f"Could not retrieve {what} from secret {cfg.service_namespace}/{cfg.admin_secret_name} (key {key})"
            )
        return value

    async def _ensure_database(self, client: DatabaseClient, name: str) -> bool:
        cfg = self.config
        exists = await self._call(client.database_exists, name, description=f"lookup {name}")
        if exists:
            logger.info("Database %s already exists; skipping create", name)
        else:
            await self._call(
                lambda: client.create_database(name, cfg.charset, cfg.collation),
                description=f"create {name}",
            )
        # GRANT is idempotent and always re-issued.
        await self._call(lambda: client.grant_all(name, cfg.app_user), description=f"grant {name}")
        return not exists

    async def _call(self, func, *args, description: str):  # type: ignore[no-untyped-def]
        return await acall_with_retry(
            (lambda: func(*args)) if args else func,
            self.retry_policy,
            description=description,
            timeout_seconds=self.timeout,
        )
