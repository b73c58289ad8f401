"""Tier policy resolver: loads templates/<template>/config/tier-<tier>.yaml."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml  # type: ignore[import-untyped]

from sitedeploy.exceptions import PolicyInvalidError, PolicyNotFoundError, ValidationError
from sitedeploy.models import RateLimit, ResourceSpec, TierPolicy

logger = logging.getLogger(__name__)

TIER_PREFIX = "tier-"
TIER_SUFFIX = ".yaml"
_RESOURCE_KEYS = ("cpu_request", "cpu_limit", "memory_request", "memory_limit")


class _FieldCollector:
    """Pull typed fields out of a policy mapping, recording every problem."""

    def __init__(self, data: dict[str, Any]) -> None:
        self.data = data
        self.problems: list[str] = []

    def _lookup(self, key: str, section: dict[str, Any] | None = None) -> Any:
        source = self.data if section is None else section
        return source.get(key)

    def flag(self, key: str) -> bool:
        value = self._lookup(key)
        if not isinstance(value, bool):
            self.problems.append(f"'{key}' must be true or false")
            return False
        return value

    def text(self, key: str, section: dict[str, Any] | None = None, label: str | None = None) -> str:
        value = self._lookup(key, section)
        name = label or key
        if value is None or isinstance(value, bool) or str(value).strip() == "":
            self.problems.append(f"'{name}' is required")
            return ""
        return str(value).strip()

    def positive_int(self, key: str) -> int:
        value = self._lookup(key)
        if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
            self.problems.append(f"'{key}' must be a positive integer")
            return 0
        return value

    def resources(self, key: str) -> ResourceSpec:
        section = self.data.get(key)
        if not isinstance(section, dict):
            self.problems.append(f"'{key}' must be a mapping with {', '.join(_RESOURCE_KEYS)}")
            section = {}
        values = {k: self.text(k, section, label=f"{key}.{k}") for k in _RESOURCE_KEYS}
        return ResourceSpec(**values)


class TierPolicyResolver:
    """Resolve and cache tier policies for templates under ``templates_dir``."""

    def __init__(self, templates_dir: Path | str) -> None:
        self.templates_dir = Path(templates_dir)
        self._cache: dict[tuple[str, str], TierPolicy] = {}

    def available_templates(self) -> list[str]:
        if not self.templates_dir.is_dir():
            return []
        return sorted(p.name for p in self.templates_dir.iterdir() if p.is_dir() and not p.name.startswith("."))

    def template_dir(self, template: str) -> Path:
        return self.templates_dir / template

    def available_tiers(self, template: str) -> list[str]:
        config_dir = self.template_dir(template) / "config"
        if not config_dir.is_dir():
            return []
        return sorted(
            p.name[len(TIER_PREFIX) : -len(TIER_SUFFIX)]
            for p in config_dir.glob(f"{TIER_PREFIX}*{TIER_SUFFIX}")
            if p.is_file()
        )

    def policy_path(self, template: str, tier: str) -> Path:
        return self.template_dir(template) / "config" / f"{TIER_PREFIX}{tier}{TIER_SUFFIX}"

    def resolve(self, template: str, tier: str) -> TierPolicy:
        """Return the fully populated policy for ``(template, tier)``.

        Raises:
            ValidationError: Template directory does not exist.
            PolicyNotFoundError: No policy document for the tier.
            PolicyInvalidError: Document unreadable or missing required fields.
        """
        key = (template, tier)
        cached = self._cache.get(key)
        if cached is not None:
            return cached
        if not self.template_dir(template).is_dir():
            raise ValidationError(
                f"Template '{template}' not found in {self.templates_dir}",
                field="template",
                choices=self.available_templates(),
            )
        path = self.policy_path(template, tier)
        if not path.is_file():
            raise PolicyNotFoundError(template, tier, self.available_tiers(template))
        policy = self._load(path, template, tier)
        self._cache[key] = policy
        logger.debug("Resolved tier policy %s/%s from %s", template, tier, path)
        return policy

    def _load(self, path: Path, template: str, tier: str) -> TierPolicy:
        try:
            data = yaml.safe_load(path.read_text(encoding="utf-8"))
        except (OSError, yaml.YAMLError) as exc:
            raise PolicyInvalidError(str(path), [f"unreadable: {exc}"]) from exc
        if not isinstance(data, dict):
            raise PolicyInvalidError(str(path), ["document root must be a mapping"])

        fields = _FieldCollector(data)
        mariadb = fields.flag("mariadb_enabled")
        external = fields.flag("external_db_enabled")
        persistence = fields.flag("persistence_enabled")
        storage_size = fields.text("storage_size")
        resources = fields.resources("resources")
        wp_memory_limit = fields.text("wp_memory_limit")
        upload_max_size = fields.text("upload_max_size")
        rate_limit = RateLimit(
            connections=fields.positive_int("rate_limit_connections"),
            rpm=fields.positive_int("rate_limit_rpm"),
        )
        if mariadb == external and not fields.problems:
            fields.problems.append("exactly one of 'mariadb_enabled' and 'external_db_enabled' must be true")

        external_host = data.get("external_db_host")
        external_host = str(external_host).strip() if external_host not in (None, "") else None

        db_persistence: bool | None = None
        db_storage_size: str | None = None
        db_resources: ResourceSpec | None = None
        if mariadb:
            db_persistence = fields.flag("db_persistence_enabled")
            db_storage_size = fields.text("db_storage_size")
            db_resources = fields.resources("db_resources")

        if fields.problems:
            raise PolicyInvalidError(str(path), fields.problems)

        return TierPolicy(
            template=template,
            tier=tier,
            mariadb_enabled=mariadb,
            external_db_enabled=external,
            external_db_host=external_host,
            persistence_enabled=persistence,
            storage_size=storage_size,
            resources=resources,
            wp_memory_limit=wp_memory_limit,
            upload_max_size=upload_max_size,
            rate_limit=rate_limit,
            db_persistence_enabled=db_persistence,
            db_storage_size=db_storage_size,
            db_resources=db_resources,
        )
