"""Tenant registry: durable TenantRecords under tenants/<domain>/tenant.yaml."""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path

import yaml  # type: ignore[import-untyped]

from sitedeploy.models import TenantRecord

logger = logging.getLogger(__name__)

RECORD_FILENAME = "tenant.yaml"


def atomic_write_text(path: Path, content: str) -> None:
    """Write ``content`` to ``path`` via a temp file and rename."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(content)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


class TenantRegistry:
    """Look up and persist tenant records; one directory per domain."""

    def __init__(self, tenants_dir: Path | str) -> None:
        self.tenants_dir = Path(tenants_dir)

    def tenant_dir(self, domain: str) -> Path:
        return self.tenants_dir / domain

    def manifest_dir(self, domain: str) -> Path:
        return self.tenant_dir(domain) / "manifests"

    def repository_dir(self, domain: str) -> Path:
        return self.tenant_dir(domain) / "repository"

    def get(self, domain: str) -> TenantRecord | None:
        path = self.tenant_dir(domain) / RECORD_FILENAME
        if not path.is_file():
            return None
        return self._read(path)

    def find_by_namespace(self, namespace: str) -> TenantRecord | None:
        for record in self.list():
            if record.namespace == namespace:
                return record
        return None

    def has_directory(self, domain: str) -> bool:
        return self.tenant_dir(domain).is_dir()

    def list(self) -> list[TenantRecord]:
        if not self.tenants_dir.is_dir():
            return []
        records: list[TenantRecord] = []
        for path in sorted(self.tenants_dir.glob(f"*/{RECORD_FILENAME}")):
            record = self._read(path)
            if record is not None:
                records.append(record)
        return records

    def save(self, record: TenantRecord) -> Path:
        path = self.tenant_dir(record.domain) / RECORD_FILENAME
        atomic_write_text(path, yaml.safe_dump(record.to_dict(), sort_keys=True))
        logger.debug("Saved tenant record %s", path)
        return path

    def _read(self, path: Path) -> TenantRecord | None:
        try:
            data = yaml.safe_load(path.read_text(encoding="utf-8"))
            if not isinstance(data, dict):
                raise ValueError("record root must be a mapping")
            return TenantRecord.from_dict(data)
        except (OSError, yaml.YAMLError, KeyError, ValueError) as exc:
            logger.warning("Ignoring unreadable tenant record %s: %s", path, exc)
            return None
