"""External system clients: cluster, shared database, secret store."""

from sitedeploy.clients.base import ClusterClient, DatabaseClient, DatabaseClientFactory, SecretStore
from sitedeploy.clients.infisical import InfisicalSecretStore
from sitedeploy.clients.kubectl import KubectlClient
from sitedeploy.clients.mysql import MySQLDatabaseClient
from sitedeploy.clients.noop import DryRunClusterClient, NullSecretStore

__all__ = [
    "ClusterClient",
    "DatabaseClient",
    "DatabaseClientFactory",
    "DryRunClusterClient",
    "InfisicalSecretStore",
    "KubectlClient",
    "MySQLDatabaseClient",
    "NullSecretStore",
    "SecretStore",
]
