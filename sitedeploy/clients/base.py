"""Interfaces for the external systems a provisioning run talks to."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from sitedeploy.models import Manifest


@runtime_checkable
class ClusterClient(Protocol):
    """Cluster control plane: manifest apply plus read-only lookups."""

    def ping(self) -> None: ...

    def namespace_exists(self, namespace: str) -> bool: ...

    def apply(self, manifest: Manifest) -> str: ...

    def find_pod(self, namespace: str, selector: str) -> str | None: ...

    def read_secret(self, namespace: str, name: str, key: str) -> str | None: ...


@runtime_checkable
class DatabaseClient(Protocol):
    """Administrative connection to the shared relational database service."""

    async def database_exists(self, name: str) -> bool: ...

    async def create_database(self, name: str, charset: str, collation: str) -> None: ...

    async def grant_all(self, name: str, user: str) -> None: ...

    async def close(self) -> None: ...


class DatabaseClientFactory(Protocol):
    def __call__(self, host: str, port: int, user: str, password: str) -> DatabaseClient: ...


@runtime_checkable
class SecretStore(Protocol):
    """Write-only secret backend."""

    def available(self) -> bool: ...

    def ensure_folder(self, path: str) -> None: ...

    def set_secret(self, path: str, name: str, value: str) -> None: ...
