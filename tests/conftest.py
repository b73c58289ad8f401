"""Shared test fixtures: a tmp repository with the bundled template and client doubles."""

from __future__ import annotations

import shutil
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from sitedeploy.config import PathsConfig, RetryConfig, SecretsConfig, SiteDeployConfig
from sitedeploy.exceptions import ClientError, CommandError
from sitedeploy.models import Manifest
from sitedeploy.pipeline import ProvisioningPipeline

TEMPLATES_SOURCE = Path(__file__).resolve().parent.parent / "templates"
TEMPLATE = "wordpress-shared"


class FakeCluster:
    """In-memory ClusterClient recording every call."""

    def __init__(self) -> None:
        self.calls: list[str] = []
        self.applied: list[str] = []
        self.namespaces: set[str] = set()
        self.fail_on: dict[str, str] = {}
        self.pod: str | None = "mysql-cluster-shared-primary-0"
        self.secrets: dict[tuple[str, str, str], str] = {
            ("shared-services", "mysql-cluster-shared-secrets", "mysql-root-password"): "root-pw",
            ("shared-services", "mysql-cluster-shared-secrets", "mysql-password"): "app-pw",
        }
        self.ping_error: ClientError | None = None

    def ping(self) -> None:
        self.calls.append("ping")
        if self.ping_error is not None:
            raise self.ping_error

    def namespace_exists(self, namespace: str) -> bool:
        self.calls.append(f"namespace_exists:{namespace}")
        return namespace in self.namespaces

    def apply(self, manifest: Manifest) -> str:
        self.calls.append(f"apply:{manifest.name}")
        if manifest.name in self.fail_on:
            raise CommandError(["kubectl", "apply"], 1, self.fail_on[manifest.name])
        self.applied.append(manifest.name)
        if manifest.name == "namespace.yaml":
            for line in manifest.content.splitlines():
                if line.strip().startswith("name:"):
                    self.namespaces.add(line.split(":", 1)[1].strip())
                    break
        return f"{manifest.name} configured"

    def find_pod(self, namespace: str, selector: str) -> str | None:
        self.calls.append(f"find_pod:{namespace}")
        return self.pod

    def read_secret(self, namespace: str, name: str, key: str) -> str | None:
        self.calls.append(f"read_secret:{namespace}/{name}")
        return self.secrets.get((namespace, name, key))


class FakeMySQLServer:
    """Shared state behind FakeDatabaseClient connections."""

    def __init__(self) -> None:
        self.databases: dict[str, tuple[str, str]] = {}
        self.grants: list[tuple[str, str]] = []
        self.connections: list[tuple[str, int, str, str]] = []
        self.create_calls = 0
        self.closed = 0
        self.fail_create: ClientError | None = None
        self.hide_after_create = False

    def factory(self, host: str, port: int, user: str, password: str) -> FakeDatabaseClient:
        self.connections.append((host, port, user, password))
        return FakeDatabaseClient(self)


class FakeDatabaseClient:
    def __init__(self, server: FakeMySQLServer) -> None:
        self.server = server

    async def database_exists(self, name: str) -> bool:
        return name in self.server.databases

    async def create_database(self, name: str, charset: str, collation: str) -> None:
        self.server.create_calls += 1
        if self.server.fail_create is not None:
            raise self.server.fail_create
        if not self.server.hide_after_create:
            self.server.databases.setdefault(name, (charset, collation))

    async def grant_all(self, name: str, user: str) -> None:
        self.server.grants.append((name, user))

    async def close(self) -> None:
        self.server.closed += 1


class FakeSecretStore:
    def __init__(self, available: bool = True) -> None:
        self._available = available
        self.folders: list[str] = []
        self.values: dict[str, dict[str, str]] = {}

    def available(self) -> bool:
        return self._available

    def ensure_folder(self, path: str) -> None:
        self.folders.append(path)

    def set_secret(self, path: str, name: str, value: str) -> None:
        self.values.setdefault(path, {})[name] = value


@pytest.fixture
def repo_root(tmp_path: Path) -> Path:
    """A throwaway repository holding a copy of the bundled templates."""
    shutil.copytree(TEMPLATES_SOURCE, tmp_path / "templates")
    return tmp_path


@pytest.fixture
def templates_dir(repo_root: Path) -> Path:
    return repo_root / "templates"


@pytest.fixture
def config(repo_root: Path) -> SiteDeployConfig:
    return SiteDeployConfig(
        paths=PathsConfig(repo_root=repo_root),
        retry=RetryConfig(max_attempts=2, initial_delay_seconds=0.0, max_delay_seconds=0.0),
        secrets=SecretsConfig(enabled=True),
    )


@pytest.fixture
def cluster() -> FakeCluster:
    return FakeCluster()


@pytest.fixture
def mysql_server() -> FakeMySQLServer:
    return FakeMySQLServer()


@pytest.fixture
def secret_store() -> FakeSecretStore:
    return FakeSecretStore()


@pytest.fixture
def stub_engine():
    """Build a MagicMock AsyncEngine; catalog lookups return ``scalars`` in order."""

    def _make(*scalars):
        result = MagicMock()
        result.scalar.side_effect = list(scalars)
        conn = MagicMock()
        conn.execute = AsyncMock(return_value=result)
        context = MagicMock()
        context.__aenter__ = AsyncMock(return_value=conn)
        context.__aexit__ = AsyncMock(return_value=False)
        engine = MagicMock()
        engine.connect.return_value = context
        engine.begin.return_value = context
        engine.dispose = AsyncMock()
        return engine, conn

    return _make


@pytest.fixture
def fixed_clock():
    return lambda: datetime(2026, 10, 19, 9, 30, tzinfo=timezone.utc)


@pytest.fixture
def make_pipeline(config, cluster, mysql_server, secret_store):
    """Build a pipeline wired to the fake clients."""

    def _make(dry_run: bool = False, **overrides) -> ProvisioningPipeline:
        return ProvisioningPipeline.from_config(
            overrides.pop("config", config),
            dry_run=dry_run,
            cluster=overrides.pop("cluster", cluster),
            secret_store=overrides.pop("secret_store", secret_store),
            database_factory=overrides.pop("database_factory", mysql_server.factory),
            **overrides,
        )

    return _make


def request_for(domain: str = "test1.example.org", **fields) -> dict:
    raw = {"template": TEMPLATE, "domain": domain, "tier": "shared"}
    raw.update(fields)
    return raw


@pytest.fixture
def make_request():
    return request_for
