"""Core data models for tenant provisioning."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Iterator


def namespace_for(domain: str) -> str:
    """First dot-separated label of ``domain``, lowercased."""
    return domain.split(".", 1)[0].lower()


@dataclass(frozen=True)
class TenantRequest:
    """A normalized provisioning request."""

    template: str
    domain: str
    tier: str = "shared"
    theme: str = "twentytwentyfour"
    database_override: str | None = None
    dry_run: bool = False
    force: bool = False

    @property
    def namespace(self) -> str:
        return namespace_for(self.domain)


@dataclass(frozen=True)
class ResourceSpec:
    """CPU/memory requests and limits for one workload."""

    cpu_request: str
    cpu_limit: str
    memory_request: str
    memory_limit: str


@dataclass(frozen=True)
class RateLimit:
    connections: int
    rpm: int


@dataclass(frozen=True)
class TierPolicy:
    """Resolved resource and feature policy for one (template, tier) pair."""

    template: str
    tier: str
    mariadb_enabled: bool
    external_db_enabled: bool
    persistence_enabled: bool
    storage_size: str
    resources: ResourceSpec
    wp_memory_limit: str
    upload_max_size: str
    rate_limit: RateLimit
    external_db_host: str | None = None
    db_persistence_enabled: bool | None = None
    db_storage_size: str | None = None
    db_resources: ResourceSpec | None = None

    @property
    def database_backend(self) -> str:
        return "dedicated" if self.mariadb_enabled else "shared"


@dataclass(frozen=True)
class TenantRecord:
    """Durable record of a provisioned tenant."""

    namespace: str
    domain: str
    database_name: str
    template: str
    tier: str
    created_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "namespace": self.namespace,
            "domain": self.domain,
            "database_name": self.database_name,
            "template": self.template,
            "tier": self.tier,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TenantRecord:
        created = data.get("created_at")
        if isinstance(created, datetime):
            created_at = created
        else:
            created_at = datetime.fromisoformat(str(created))
        return cls(
            namespace=str(data["namespace"]),
            domain=str(data["domain"]),
            database_name=str(data.get("database_name", "")),
            template=str(data.get("template", "")),
            tier=str(data.get("tier", "")),
            created_at=created_at,
        )


@dataclass(frozen=True)
class Manifest:
    """A single rendered document destined for the cluster."""

    name: str
    content: str


@dataclass(frozen=True)
class ManifestSet:
    """Ordered, immutable collection of rendered manifests."""

    manifests: tuple[Manifest, ...] = ()

    def __iter__(self) -> Iterator[Manifest]:
        return iter(self.manifests)

    def __len__(self) -> int:
        return len(self.manifests)

    @property
    def names(self) -> list[str]:
        return [m.name for m in self.manifests]

    def get(self, name: str) -> Manifest | None:
        for manifest in self.manifests:
            if manifest.name == name:
                return manifest
        return None


@dataclass(frozen=True)
class DatabaseConnectionInfo:
    host: str
    database_name: str
    user: str
    port: int = 3306
    verified: bool = False
    created: bool = False


class ManifestStatus(str, Enum):
    """Outcome of one manifest in an apply run."""

    PLANNED = "planned"
    APPLIED = "applied"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class ManifestOutcome:
    name: str
    status: ManifestStatus
    detail: str = ""


@dataclass
class ApplyReport:
    """Per-manifest outcomes of an apply (or dry-run) in render order."""

    dry_run: bool
    outcomes: list[ManifestOutcome] = field(default_factory=list)

    def names_with(self, status: ManifestStatus) -> list[str]:
        return [o.name for o in self.outcomes if o.status is status]

    @property
    def applied(self) -> list[str]:
        return self.names_with(ManifestStatus.APPLIED)

    @property
    def failed(self) -> list[str]:
        return self.names_with(ManifestStatus.FAILED)

    @property
    def skipped(self) -> list[str]:
        return self.names_with(ManifestStatus.SKIPPED)

    @property
    def planned(self) -> list[str]:
        return self.names_with(ManifestStatus.PLANNED)

    @property
    def ok(self) -> bool:
        return not self.failed and not self.skipped


class RunState(str, Enum):
    """States of one provisioning run."""

    REQUESTED = "requested"
    VALIDATED = "validated"
    TIER_RESOLVED = "tier_resolved"
    RENDERED = "rendered"
    DATABASE_PROVISIONED = "database_provisioned"
    APPLIED = "applied"
    REGISTERED = "registered"
    COMPLETE = "complete"
    FAILED = "failed"


_NEXT_STATE: dict[RunState, RunState] = {
    RunState.REQUESTED: RunState.VALIDATED,
    RunState.VALIDATED: RunState.TIER_RESOLVED,
    RunState.TIER_RESOLVED: RunState.RENDERED,
    RunState.RENDERED: RunState.DATABASE_PROVISIONED,
    RunState.DATABASE_PROVISIONED: RunState.APPLIED,
    RunState.APPLIED: RunState.REGISTERED,
    RunState.REGISTERED: RunState.COMPLETE,
}


def can_transition(current: RunState, target: RunState) -> bool:
    """Return True when ``target`` is a legal next state from ``current``."""
    if current in (RunState.COMPLETE, RunState.FAILED):
        return False
    if target is RunState.FAILED:
        return True
    return _NEXT_STATE.get(current) is target
