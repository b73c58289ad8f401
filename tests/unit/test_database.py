"""Unit tests for DatabaseProvisioner."""

from __future__ import annotations

import asyncio

import pytest

from sitedeploy.clients.mysql import MySQLDatabaseClient
from sitedeploy.config import SharedDatabaseConfig
from sitedeploy.database import DatabaseProvisioner, database_name_for
from sitedeploy.exceptions import ClientError, ProvisioningError, TransientClientError
from sitedeploy.models import TenantRequest
from sitedeploy.retry import RetryPolicy
from sitedeploy.tiers import TierPolicyResolver

_NO_WAIT = RetryPolicy(max_attempts=3, initial_delay_seconds=0.0, max_delay_seconds=0.0)


def _provisioner(cluster, server, **kwargs) -> DatabaseProvisioner:
    kwargs.setdefault("client_factory", server.factory)
    return DatabaseProvisioner(cluster, retry_policy=_NO_WAIT, **kwargs)


def test_database_name_for() -> None:
    assert database_name_for("test1") == "wp_test1"
    assert database_name_for("shop", "site_") == "site_shop"


@pytest.mark.asyncio
async def test_creates_grants_and_verifies(cluster, mysql_server) -> None:
    info = await _provisioner(cluster, mysql_server).provision_namespace("test1")
    assert info.database_name == "wp_test1"
    assert info.verified is True
    assert info.created is True
    assert info.user == "wordpress"
    assert mysql_server.databases == {"wp_test1": ("utf8mb4", "utf8mb4_unicode_ci")}
    assert mysql_server.grants == [("wp_test1", "wordpress")]
    assert mysql_server.connections == [
        ("mysql-cluster-shared.shared-services.svc.cluster.local", 3306, "root", "root-pw")
    ]
    assert mysql_server.closed == 1


@pytest.mark.asyncio
async def test_two_calls_yield_exactly_one_database(cluster, mysql_server) -> None:
    provisioner = _provisioner(cluster, mysql_server)
    first = await provisioner.provision_namespace("test1")
    second = await provisioner.provision_namespace("test1")
    assert list(mysql_server.databases) == ["wp_test1"]
    assert mysql_server.create_calls == 1
    assert first.created is True
    assert second.created is False
    assert second.verified is True
    assert mysql_server.grants == [("wp_test1", "wordpress"), ("wp_test1", "wordpress")]


@pytest.mark.asyncio
async def test_hyphenated_namespace_with_mysql_client(cluster, stub_engine) -> None:
    engine, conn = stub_engine(None, "wp_my-site")
    provisioner = DatabaseProvisioner(
        cluster,
        client_factory=lambda host, port, user, password: MySQLDatabaseClient(engine, host),
        retry_policy=_NO_WAIT,
    )
    info = await provisioner.provision_namespace("my-site")
    assert info.database_name == "wp_my-site"
    assert info.created is True
    statements = [str(call.args[0]) for call in conn.execute.call_args_list]
    assert "CREATE DATABASE IF NOT EXISTS `wp_my-site` CHARACTER SET utf8mb4 COLLATE utf8mb4_unicode_ci" in statements
    assert "GRANT ALL PRIVILEGES ON `wp_my-site`.* TO 'wordpress'@'%'" in statements


@pytest.mark.asyncio
async def test_host_override(cluster, mysql_server) -> None:
    info = await _provisioner(cluster, mysql_server).provision_namespace("test1", host="db.internal")
    assert info.host == "db.internal"
    assert mysql_server.connections[0][0] == "db.internal"


@pytest.mark.asyncio
async def test_provision_uses_request_override_then_policy_host(templates_dir, cluster, mysql_server) -> None:
    policy = TierPolicyResolver(templates_dir).resolve("wordpress-shared", "shared")
    provisioner = _provisioner(cluster, mysql_server, config=SharedDatabaseConfig(host="config.host"))
    request = TenantRequest(template="wordpress-shared", domain="test1.example.org")
    info = await provisioner.provision(request, policy)
    assert info.host == policy.external_db_host
    overridden = TenantRequest(template="wordpress-shared", domain="test1.example.org", database_override="db.override")
    assert (await provisioner.provision(overridden, policy)).host == "db.override"


@pytest.mark.asyncio
async def test_mariadb_tier_is_skipped(templates_dir, cluster, mysql_server) -> None:
    policy = TierPolicyResolver(templates_dir).resolve("wordpress-shared", "enterprise")
    request = TenantRequest(template="wordpress-shared", domain="test3.example.org", tier="enterprise")
    assert await _provisioner(cluster, mysql_server).provision(request, policy) is None
    assert cluster.calls == []
    assert mysql_server.connections == []


@pytest.mark.asyncio
async def test_missing_database_pod(cluster, mysql_server) -> None:
    cluster.pod = None
    with pytest.raises(ProvisioningError, match="No database primary pod"):
        await _provisioner(cluster, mysql_server).provision_namespace("test1")
    assert mysql_server.connections == []


@pytest.mark.asyncio
async def test_missing_admin_password(cluster, mysql_server) -> None:
    cluster.secrets.clear()
    with pytest.raises(ProvisioningError, match="admin password"):
        await _provisioner(cluster, mysql_server).provision_namespace("test1")


@pytest.mark.asyncio
async def test_missing_app_user_password(cluster, mysql_server) -> None:
    del cluster.secrets[("shared-services", "mysql-cluster-shared-secrets", "mysql-password")]
    with pytest.raises(ProvisioningError, match="database user 'wordpress'") as exc_info:
        await _provisioner(cluster, mysql_server).provision_namespace("test1")
    assert "key mysql-password" in str(exc_info.value)
    assert mysql_server.connections == []


@pytest.mark.asyncio
async def test_statement_failure_is_provisioning_error(cluster, mysql_server) -> None:
    mysql_server.fail_create = ClientError("access denied")
    with pytest.raises(ProvisioningError) as exc_info:
        await _provisioner(cluster, mysql_server).provision_namespace("test1")
    assert exc_info.value.stage == "database"
    assert "access denied" in str(exc_info.value)
    assert mysql_server.closed == 1


@pytest.mark.asyncio
async def test_transient_failure_is_retried(cluster, mysql_server) -> None:
    original = mysql_server.factory
    failures = {"left": 1}

    def flaky_factory(host, port, user, password):
        client = original(host, port, user, password)
        create = client.create_database

        async def create_database(name, charset, collation):
            if failures["left"]:
                failures["left"] -= 1
                raise TransientClientError("server has gone away")
            await create(name, charset, collation)

        client.create_database = create_database
        return client

    info = await _provisioner(cluster, mysql_server, client_factory=flaky_factory).provision_namespace("test1")
    assert info.verified is True
    assert "wp_test1" in mysql_server.databases


@pytest.mark.asyncio
async def test_verification_failure(cluster, mysql_server) -> None:
    mysql_server.hide_after_create = True
    with pytest.raises(ProvisioningError, match="verification failed"):
        await _provisioner(cluster, mysql_server).provision_namespace("test1")


@pytest.mark.asyncio
async def test_timeout_is_provisioning_error(cluster, mysql_server) -> None:
    original = mysql_server.factory

    def slow_factory(host, port, user, password):
        client = original(host, port, user, password)

        async def database_exists(name):
            await asyncio.sleep(1)
            return False

        client.database_exists = database_exists
        return client

    provisioner = DatabaseProvisioner(
        cluster,
        client_factory=slow_factory,
        retry_policy=RetryPolicy(max_attempts=1),
        timeout=0.01,
    )
    with pytest.raises(ProvisioningError):
        await provisioner.provision_namespace("test1")
