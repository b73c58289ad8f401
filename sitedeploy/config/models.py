"""Configuration models for sitedeploy."""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)


class PathsConfig(BaseModel):
    """Filesystem layout; relative paths resolve against the repo root."""

    repo_root: Path = Field(default=Path("."))
    templates_dir: Path = Field(default=Path("templates"))
    tenants_dir: Path = Field(default=Path("tenants"))
    ledger_file: Path = Field(default=Path("clusters/apps/tenants.yaml"))
    lock_dir: Path = Field(default=Path(".sitedeploy/locks"))

    def resolve(self, value: Path) -> Path:
        return value if value.is_absolute() else self.repo_root / value


class SharedDatabaseConfig(BaseModel):
    """Shared MySQL cluster used by tiers without a dedicated database."""

    host: str = Field(default="mysql-cluster-shared.shared-services.svc.cluster.local")
    port: int = Field(default=3306, ge=1, le=65535)
    service_namespace: str = Field(default="shared-services")
    pod_selector: str = Field(default="app.kubernetes.io/name=mysql,app.kubernetes.io/component=primary")
    admin_user: str = Field(default="root")
    admin_secret_name: str = Field(default="mysql-cluster-shared-secrets")
    admin_secret_key: str = Field(default="mysql-root-password")
    app_user: str = Field(default="wordpress")
    # Key in admin_secret_name holding app_user's password; tenants read it from there.
    app_secret_key: str = Field(default="mysql-password")
    database_prefix: str = Field(default="wp_")
    charset: str = Field(default="utf8mb4")
    collation: str = Field(default="utf8mb4_unicode_ci")


class SecretsConfig(BaseModel):
    """Secret store (Infisical) settings."""

    enabled: bool = Field(default=True)
    cli: str = Field(default="infisical")
    environment: str = Field(default="prod")
    base_path: str = Field(default="/wordpress")


class ClusterConfig(BaseModel):
    kubectl: str = Field(default="kubectl")
    context: str = Field(default="")


class TimeoutsConfig(BaseModel):
    call_seconds: float = Field(default=30.0, gt=0)


class RetryConfig(BaseModel):
    """Bounded exponential backoff for transient errors."""

    max_attempts: int = Field(default=3, ge=1, le=10)
    initial_delay_seconds: float = Field(default=0.5, ge=0.0)
    max_delay_seconds: float = Field(default=8.0, ge=0.0)
    backoff_multiplier: float = Field(default=2.0, ge=1.0)


class LockingConfig(BaseModel):
    ttl_seconds: int = Field(default=900, ge=1)


class SiteDeployConfig(BaseSettings):
    """Root configuration model for sitedeploy."""

    app_name: str = Field(default="wordpress")
    paths: PathsConfig = Field(default_factory=PathsConfig)
    shared_database: SharedDatabaseConfig = Field(default_factory=SharedDatabaseConfig)
    secrets: SecretsConfig = Field(default_factory=SecretsConfig)
    cluster: ClusterConfig = Field(default_factory=ClusterConfig)
    timeouts: TimeoutsConfig = Field(default_factory=TimeoutsConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    locking: LockingConfig = Field(default_factory=LockingConfig)

    model_config = SettingsConfigDict(
        env_prefix="SITEDEPLOY_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    @field_validator("app_name")
    @classmethod
    def _app_name_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("app_name must not be empty")
        return value

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # Environment overrides values loaded from sitedeploy.yaml.
        return env_settings, init_settings, dotenv_settings, file_secret_settings
