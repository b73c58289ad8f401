"""GitOps desired-state ledger and registrar.

The ledger is a YAML document of keyed records, one per tenant domain::

    tenants:
      test1.example.org:
        added_at: '2026-10-19T09:30:00+00:00'
        removed_at: null

The reconciliation controller deploys every domain whose ``removed_at`` is
null. Records are never duplicated; removal is a marker, not a deletion.
"""

from __future__ import annotations

import logging
from contextlib import ExitStack, contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, ContextManager, Iterator, Protocol

import yaml  # type: ignore[import-untyped]

from sitedeploy.exceptions import RegistrationError, SiteDeployError
from sitedeploy.locking import LedgerLock
from sitedeploy.registry import atomic_write_text

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LedgerEntry:
    domain: str
    added_at: str
    removed_at: str | None = None

    @property
    def active(self) -> bool:
        return self.removed_at is None


class LedgerStore(Protocol):
    """Persistence for ledger entries keyed by domain."""

    def load(self) -> dict[str, LedgerEntry]: ...

    def save(self, entries: dict[str, LedgerEntry]) -> None: ...

    def locked(self) -> ContextManager[object]:
        """Hold exclusive access for one load-modify-save cycle."""
        ...


def _utcnow() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


class YamlLedgerStore:
    """Ledger persisted as a YAML file, written atomically.

    Concurrent runs for different tenants serialize on ``<ledger>.lock``.
    """

    def __init__(self, path: Path | str, lock_wait_seconds: float = 30.0, lock_ttl_seconds: int = 120) -> None:
        self.path = Path(path)
        self.lock_wait_seconds = lock_wait_seconds
        self.lock_ttl_seconds = lock_ttl_seconds

    def locked(self) -> LedgerLock:
        return LedgerLock(self.path, ttl_seconds=self.lock_ttl_seconds, wait_seconds=self.lock_wait_seconds)

    def load(self) -> dict[str, LedgerEntry]:
        if not self.path.exists():
            return {}
        data = yaml.safe_load(self.path.read_text(encoding="utf-8")) or {}
        if not isinstance(data, dict):
            raise ValueError(f"ledger root must be a mapping: {self.path}")
        tenants = data.get("tenants") or {}
        if not isinstance(tenants, dict):
            raise ValueError(f"'tenants' must be a mapping: {self.path}")
        entries: dict[str, LedgerEntry] = {}
        for domain, record in tenants.items():
            record = record if isinstance(record, dict) else {}
            removed = record.get("removed_at")
            entries[str(domain)] = LedgerEntry(
                domain=str(domain),
                added_at=str(record.get("added_at") or ""),
                removed_at=str(removed) if removed else None,
            )
        return entries

    def save(self, entries: dict[str, LedgerEntry]) -> None:
        document = {
            "tenants": {
                domain: {"added_at": entry.added_at, "removed_at": entry.removed_at}
                for domain, entry in sorted(entries.items())
            }
        }
        atomic_write_text(self.path, yaml.safe_dump(document, sort_keys=False, default_flow_style=False))


class GitOpsRegistrar:
    """Idempotently add and remove tenant domains in the ledger."""

    def __init__(self, store: LedgerStore, clock: Callable[[], str] = _utcnow) -> None:
        self.store = store
        self.clock = clock

    def _load(self, domain: str) -> dict[str, LedgerEntry]:
        try:
            return self.store.load()
        except (OSError, ValueError, yaml.YAMLError) as exc:
            raise RegistrationError(domain, f"cannot read ledger: {exc}") from exc

    def _save(self, domain: str, entries: dict[str, LedgerEntry]) -> None:
        try:
            self.store.save(entries)
        except OSError as exc:
            raise RegistrationError(domain, f"cannot write ledger: {exc}") from exc

    @contextmanager
    def _exclusive(self, domain: str) -> Iterator[None]:
        with ExitStack() as stack:
            try:
                stack.enter_context(self.store.locked())
            except SiteDeployError as exc:
                raise RegistrationError(domain, exc.message) from exc
            yield

    def register(self, domain: str) -> bool:
        """Ensure ``domain`` is active in the ledger. Returns True if it changed."""
        with self._exclusive(domain):
            entries = self._load(domain)
            current = entries.get(domain)
            if current is not None and current.active:
                logger.info("%s already registered in GitOps ledger", domain)
                return False
            entries[domain] = LedgerEntry(domain=domain, added_at=self.clock())
            self._save(domain, entries)
        logger.info("Registered %s in GitOps ledger", domain)
        return True

    def deregister(self, domain: str) -> bool:
        """Mark ``domain`` removed. Returns False if it was not active."""
        with self._exclusive(domain):
            entries = self._load(domain)
            current = entries.get(domain)
            if current is None or not current.active:
                return False
            entries[domain] = LedgerEntry(domain=domain, added_at=current.added_at, removed_at=self.clock())
            self._save(domain, entries)
        logger.info("Marked %s removed in GitOps ledger", domain)
        return True

    def entries(self) -> list[LedgerEntry]:
        return [entry for _, entry in sorted(self._load("ledger").items())]

    def active_domains(self) -> list[str]:
        return [entry.domain for entry in self.entries() if entry.active]
