"""Configuration for sitedeploy: YAML file plus SITEDEPLOY_* environment."""

from sitedeploy.config.loader import ConfigLoadError, config_path, load_config, read_settings_file
from sitedeploy.config.models import (
    ClusterConfig,
    LockingConfig,
    PathsConfig,
    RetryConfig,
    SecretsConfig,
    SharedDatabaseConfig,
    SiteDeployConfig,
    TimeoutsConfig,
)

__all__ = [
    "ClusterConfig",
    "ConfigLoadError",
    "LockingConfig",
    "PathsConfig",
    "RetryConfig",
    "SecretsConfig",
    "SharedDatabaseConfig",
    "SiteDeployConfig",
    "TimeoutsConfig",
    "config_path",
    "load_config",
    "read_settings_file",
]
