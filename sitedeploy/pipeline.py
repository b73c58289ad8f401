"""Provisioning pipeline: validate, resolve, render, provision, apply, register."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Mapping

from sitedeploy.applier import DeploymentApplier
from sitedeploy.clients.base import ClusterClient, DatabaseClientFactory, SecretStore
from sitedeploy.clients.infisical import InfisicalSecretStore
from sitedeploy.clients.kubectl import KubectlClient
from sitedeploy.clients.mysql import MySQLDatabaseClient
from sitedeploy.clients.noop import DryRunClusterClient, NullSecretStore
from sitedeploy.config.models import SiteDeployConfig
from sitedeploy.credentials import SecretProvisioner
from sitedeploy.database import DatabaseProvisioner
from sitedeploy.exceptions import ClientError, ProvisioningError, SiteDeployError
from sitedeploy.ledger import GitOpsRegistrar, LedgerStore, YamlLedgerStore
from sitedeploy.locking import NamespaceLock
from sitedeploy.models import (
    ApplyReport,
    DatabaseConnectionInfo,
    ManifestSet,
    RunState,
    TenantRecord,
    TenantRequest,
    TierPolicy,
    can_transition,
)
from sitedeploy.registry import TenantRegistry
from sitedeploy.renderer import ManifestRenderer, write_manifest_set
from sitedeploy.retry import RetryPolicy
from sitedeploy.scaffold import RepositoryScaffolder
from sitedeploy.tiers import TierPolicyResolver
from sitedeploy.validator import TenantValidator

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)


@dataclass
class PipelineResult:
    """Everything a run produced, including how far it got."""

    state: RunState = RunState.REQUESTED
    history: list[RunState] = field(default_factory=lambda: [RunState.REQUESTED])
    request: TenantRequest | None = None
    policy: TierPolicy | None = None
    manifests: ManifestSet | None = None
    database: DatabaseConnectionInfo | None = None
    report: ApplyReport | None = None
    record: TenantRecord | None = None
    warnings: list[str] = field(default_factory=list)
    secrets_written: list[str] = field(default_factory=list)
    repository: Path | None = None
    registered: bool = False
    failed_stage: str | None = None
    error: SiteDeployError | None = None

    def advance(self, target: RunState) -> None:
        if not can_transition(self.state, target):
            raise RuntimeError(f"illegal state transition {self.state.value} -> {target.value}")
        self.state = target
        self.history.append(target)
        logger.debug("Run state: %s", target.value)


class ProvisioningPipeline:
    """Run one tenant provisioning request end to end.

    Side-effecting stages go through the injected clients; build with
    :meth:`from_config` for real runs or dry runs.
    """

    def __init__(
        self,
        *,
        resolver: TierPolicyResolver,
        registry: TenantRegistry,
        cluster: ClusterClient,
        renderer: ManifestRenderer,
        database: DatabaseProvisioner,
        applier: DeploymentApplier,
        registrar: GitOpsRegistrar,
        secrets: SecretProvisioner,
        scaffolder: RepositoryScaffolder | None = None,
        lock_dir: Path | str = ".sitedeploy/locks",
        lock_ttl_seconds: int = 900,
        clock: Callable[[], datetime] = _now,
    ) -> None:
        self.resolver = resolver
        self.registry = registry
        self.cluster = cluster
        self.validator = TenantValidator(resolver, registry, cluster, database_prefix=database.config.database_prefix)
        self.renderer = renderer
        self.database = database
        self.applier = applier
        self.registrar = registrar
        self.secrets = secrets
        self.scaffolder = scaffolder
        self.lock_dir = Path(lock_dir)
        self.lock_ttl_seconds = lock_ttl_seconds
        self.clock = clock

    @classmethod
    def from_config(
        cls,
        config: SiteDeployConfig,
        *,
        dry_run: bool = False,
        cluster: ClusterClient | None = None,
        secret_store: SecretStore | None = None,
        ledger_store: LedgerStore | None = None,
        database_factory: DatabaseClientFactory | None = None,
    ) -> ProvisioningPipeline:
        paths = config.paths
        retry = RetryPolicy.from_config(config.retry)
        timeout = config.timeouts.call_seconds
        if cluster is None:
            cluster = (
                DryRunClusterClient()
                if dry_run
                else KubectlClient(config.cluster.kubectl, context=config.cluster.context, timeout=timeout, retry_policy=retry)
            )
        if secret_store is None:
            if dry_run or not config.secrets.enabled:
                secret_store = NullSecretStore()
            else:
                secret_store = InfisicalSecretStore(
                    config.secrets.cli,
                    environment=config.secrets.environment,
                    timeout=timeout,
                    retry_policy=retry,
                )
        return cls(
            resolver=TierPolicyResolver(paths.resolve(paths.templates_dir)),
            registry=TenantRegistry(paths.resolve(paths.tenants_dir)),
            cluster=cluster,
            renderer=ManifestRenderer(app_name=config.app_name, shared_database=config.shared_database),
            database=DatabaseProvisioner(
                cluster,
                config.shared_database,
                client_factory=database_factory or MySQLDatabaseClient.connect,
                retry_policy=retry,
                timeout=timeout,
            ),
            applier=DeploymentApplier(cluster),
            registrar=GitOpsRegistrar(ledger_store or YamlLedgerStore(paths.resolve(paths.ledger_file))),
            secrets=SecretProvisioner(secret_store, base_path=config.secrets.base_path),
            scaffolder=RepositoryScaffolder(),
            lock_dir=paths.resolve(paths.lock_dir),
            lock_ttl_seconds=config.locking.ttl_seconds,
        )

    async def run(self, raw: Mapping[str, Any], cancel: threading.Event | None = None) -> PipelineResult:
        """Execute the request.

        Raises the stage's typed error on failure, with the partial
        :class:`PipelineResult` attached as ``exc.result``.
        """
        result = PipelineResult()
        try:
            await self._run(raw, result, cancel)
        except SiteDeployError as exc:
            result.failed_stage = exc.stage
            result.error = exc
            result.advance(RunState.FAILED)
            exc.result = result
            logger.error("Provisioning failed at %s stage: %s", exc.stage, exc)
            raise
        return result

    async def _run(self, raw: Mapping[str, Any], result: PipelineResult, cancel: threading.Event | None) -> None:
        validated = self.validator.validate(raw)
        request = validated.request
        result.request = request
        result.warnings.extend(validated.warnings)
        result.advance(RunState.VALIDATED)

        policy = self.resolver.resolve(request.template, request.tier)
        result.policy = policy
        result.advance(RunState.TIER_RESOLVED)

        template_dir = self.resolver.template_dir(request.template)
        context = self.renderer.build_context(request, policy)
        manifests = self.renderer.render_context(context, template_dir)
        result.manifests = manifests
        repository_files = self.scaffolder.render(context, template_dir) if self.scaffolder is not None else None
        result.advance(RunState.RENDERED)

        if request.dry_run:
            result.advance(RunState.DATABASE_PROVISIONED)
            result.report = self.applier.apply(manifests, dry_run=True)
            result.advance(RunState.APPLIED)
            result.advance(RunState.REGISTERED)
            result.advance(RunState.COMPLETE)
            logger.info("Dry run completed - no changes made")
            return

        with NamespaceLock(self.lock_dir, request.namespace, self.lock_ttl_seconds):
            self._preflight()
            # Another run may have created the tenant between validation and the lease.
            validated = self.validator.check_conflicts(request)
            result.warnings = list(validated.warnings)
            if validated.existing is None:
                result.secrets_written = self.secrets.provision(request)
            else:
                logger.info("Tenant %s already has credentials; not regenerating secrets", request.domain)

            result.record = self._save_tenant(request, policy, manifests, validated.existing)
            if self.scaffolder is not None and repository_files is not None:
                target = self.registry.repository_dir(request.domain)
                try:
                    result.repository = self.scaffolder.write(repository_files, target)
                except OSError as exc:
                    raise ProvisioningError(f"Cannot write repository {target}: {exc}", stage="scaffold") from exc

            result.database = await self.database.provision(request, policy)
            result.advance(RunState.DATABASE_PROVISIONED)

            result.report = self.applier.apply(manifests, dry_run=False, cancel=cancel)
            result.advance(RunState.APPLIED)

            result.registered = self.registrar.register(request.domain)
            result.advance(RunState.REGISTERED)
        result.advance(RunState.COMPLETE)
        logger.info("Site '%s' deployed successfully", request.domain)

    def _preflight(self) -> None:
        try:
            self.cluster.ping()
        except ClientError as exc:
            raise ProvisioningError(f"Cannot connect to Kubernetes cluster: {exc}", stage="preflight") from exc

    def _save_tenant(
        self,
        request: TenantRequest,
        policy: TierPolicy,
        manifests: ManifestSet,
        existing: TenantRecord | None,
    ) -> TenantRecord:
        if policy.mariadb_enabled:
            database_name = request.namespace
        else:
            database_name = f"{self.database.config.database_prefix}{request.namespace}"
        record = TenantRecord(
            namespace=request.namespace,
            domain=request.domain,
            database_name=database_name,
            template=request.template,
            tier=request.tier,
            created_at=existing.created_at if existing is not None else self.clock(),
        )
        try:
            write_manifest_set(manifests, self.registry.manifest_dir(request.domain))
            self.registry.save(record)
        except OSError as exc:
            raise ProvisioningError(f"Cannot save tenant files for {request.domain}: {exc}", stage="record") from exc
        logger.info("Manifests generated at %s", self.registry.manifest_dir(request.domain))
        return record
