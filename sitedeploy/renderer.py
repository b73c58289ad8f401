"""Manifest renderer: Jinja2 rendering with strict variable binding.

Every ``*.j2`` document in ``<template>/manifests`` is rendered against an
immutable :class:`RenderContext`. A placeholder without a bound value fails
the render instead of producing an empty string.
"""

from __future__ import annotations

import logging
import re
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any

from jinja2 import Environment, FileSystemLoader, StrictUndefined, TemplateError, TemplateNotFound, UndefinedError

from sitedeploy.config.models import SharedDatabaseConfig
from sitedeploy.exceptions import RenderError
from sitedeploy.models import Manifest, ManifestSet, TenantRequest, TierPolicy
from sitedeploy.registry import atomic_write_text

logger = logging.getLogger(__name__)

TEMPLATE_SUFFIX = ".j2"

# Apply order; the applier relies on it.
MANIFEST_ORDER: tuple[str, ...] = (
    "namespace.yaml",
    "secrets.yaml",
    "application.yaml",
    "ingress.yaml",
    "image-automation.yaml",
    "kustomization.yaml",
)

_UNDEFINED_NAME = re.compile(r"'([^']+)' is undefined")


def env_key(text: str) -> str:
    """Upper-case identifier usable as an environment/secret key: ``my-site`` -> ``MY_SITE``."""
    return re.sub(r"[^A-Za-z0-9]+", "_", str(text)).strip("_").upper()


def manifest_sort_key(name: str) -> tuple[int, str]:
    try:
        return (MANIFEST_ORDER.index(name), name)
    except ValueError:
        return (len(MANIFEST_ORDER), name)


@dataclass(frozen=True)
class RenderContext:
    """Immutable variable set substituted into template documents."""

    namespace: str
    domain: str
    tier: str
    theme: str
    template: str
    app_name: str
    secret_prefix: str
    database_backend: str
    database_name: str
    table_prefix: str
    mariadb_enabled: bool
    external_db_enabled: bool
    persistence_enabled: bool
    storage_size: str
    resources_cpu_request: str
    resources_cpu_limit: str
    resources_memory_request: str
    resources_memory_limit: str
    wp_memory_limit: str
    upload_max_size: str
    rate_limit_connections: int
    rate_limit_rpm: int
    external_db_host: str | None = None
    external_db_port: int | None = None
    external_db_user: str | None = None
    external_db_name: str | None = None
    external_db_secret: str | None = None
    external_db_secret_key: str | None = None
    db_persistence_enabled: bool | None = None
    db_storage_size: str | None = None
    db_resources_cpu_request: str | None = None
    db_resources_cpu_limit: str | None = None
    db_resources_memory_request: str | None = None
    db_resources_memory_limit: str | None = None

    @classmethod
    def build(
        cls,
        request: TenantRequest,
        policy: TierPolicy,
        *,
        app_name: str = "wordpress",
        shared_database: SharedDatabaseConfig | None = None,
    ) -> RenderContext:
        shared = shared_database or SharedDatabaseConfig()
        namespace = request.namespace
        values: dict[str, Any] = {
            "namespace": namespace,
            "domain": request.domain,
            "tier": request.tier,
            "theme": request.theme,
            "template": request.template,
            "app_name": app_name,
            "secret_prefix": env_key(namespace),
            "database_backend": policy.database_backend,
            "table_prefix": shared.database_prefix,
            "mariadb_enabled": policy.mariadb_enabled,
            "external_db_enabled": policy.external_db_enabled,
            "persistence_enabled": policy.persistence_enabled,
            "storage_size": policy.storage_size,
            "resources_cpu_request": policy.resources.cpu_request,
            "resources_cpu_limit": policy.resources.cpu_limit,
            "resources_memory_request": policy.resources.memory_request,
            "resources_memory_limit": policy.resources.memory_limit,
            "wp_memory_limit": policy.wp_memory_limit,
            "upload_max_size": policy.upload_max_size,
            "rate_limit_connections": policy.rate_limit.connections,
            "rate_limit_rpm": policy.rate_limit.rpm,
        }
        if policy.mariadb_enabled and policy.db_resources is not None:
            values.update(
                database_name=namespace,
                db_persistence_enabled=policy.db_persistence_enabled,
                db_storage_size=policy.db_storage_size,
                db_resources_cpu_request=policy.db_resources.cpu_request,
                db_resources_cpu_limit=policy.db_resources.cpu_limit,
                db_resources_memory_request=policy.db_resources.memory_request,
                db_resources_memory_limit=policy.db_resources.memory_limit,
            )
        else:
            database_name = f"{shared.database_prefix}{namespace}"
            values.update(
                database_name=database_name,
                external_db_host=request.database_override or policy.external_db_host or shared.host,
                external_db_port=shared.port,
                external_db_user=shared.app_user,
                external_db_name=database_name,
                external_db_secret=shared.admin_secret_name,
                external_db_secret_key=shared.app_secret_key,
            )
        return cls(**values)

    def variables(self) -> dict[str, Any]:
        """Bound variables only; unset optional fields stay undefined for the template."""
        return {key: value for key, value in asdict(self).items() if value is not None}


def make_environment(search_path: Path) -> Environment:
    env = Environment(
        loader=FileSystemLoader(str(search_path)),
        trim_blocks=True,
        lstrip_blocks=True,
        keep_trailing_newline=True,
        undefined=StrictUndefined,
        autoescape=False,
    )
    env.filters["env_key"] = env_key
    return env


def render_document(env: Environment, template_name: str, variables: dict[str, Any]) -> str:
    """Render one template document, translating Jinja2 failures to RenderError."""
    try:
        template = env.get_template(template_name)
        content = template.render(**variables)
    except UndefinedError as e:
        match = _UNDEFINED_NAME.search(str(e))
        placeholder = match.group(1) if match else None
        detail = f"unresolved placeholder '{placeholder}'" if placeholder else str(e)
        raise RenderError(template_name, detail, placeholder=placeholder) from e
    except TemplateNotFound as e:
        raise RenderError(template_name, "template document not found") from e
    except TemplateError as e:
        logger.debug("Template error in %s", template_name, exc_info=True)
        raise RenderError(template_name, str(e)) from e
    if not content.endswith("\n"):
        content += "\n"
    return content


class ManifestRenderer:
    """Render a template's manifest documents into an ordered ManifestSet."""

    def __init__(self, *, app_name: str = "wordpress", shared_database: SharedDatabaseConfig | None = None) -> None:
        self.app_name = app_name
        self.shared_database = shared_database or SharedDatabaseConfig()

    def build_context(self, request: TenantRequest, policy: TierPolicy) -> RenderContext:
        return RenderContext.build(
            request,
            policy,
            app_name=self.app_name,
            shared_database=self.shared_database,
        )

    def render(self, request: TenantRequest, policy: TierPolicy, template_dir: Path | str) -> ManifestSet:
        """Render ``<template_dir>/manifests/*.j2`` for this request and policy.

        Raises:
            RenderError: Missing manifests directory, unresolved placeholder,
                or template syntax error.
        """
        return self.render_context(self.build_context(request, policy), template_dir)

    def render_context(self, context: RenderContext, template_dir: Path | str) -> ManifestSet:
        manifests_dir = Path(template_dir) / "manifests"
        if not manifests_dir.is_dir():
            raise RenderError(str(manifests_dir), "manifests directory not found")
        sources = [p.name for p in manifests_dir.glob(f"*{TEMPLATE_SUFFIX}") if p.is_file()]
        if not sources:
            raise RenderError(str(manifests_dir), "no template documents found")
        env = make_environment(manifests_dir)
        variables = context.variables()
        rendered: list[Manifest] = []
        for source in sorted(sources, key=lambda s: manifest_sort_key(s[: -len(TEMPLATE_SUFFIX)])):
            name = source[: -len(TEMPLATE_SUFFIX)]
            logger.debug("Rendering %s", source)
            rendered.append(Manifest(name=name, content=render_document(env, source, variables)))
        logger.info("Rendered %d manifests for %s", len(rendered), context.domain)
        return ManifestSet(tuple(rendered))


def write_manifest_set(manifest_set: ManifestSet, directory: Path | str) -> list[Path]:
    """Write each manifest into ``directory``; stale manifests from earlier renders are removed."""
    target = Path(directory)
    target.mkdir(parents=True, exist_ok=True)
    keep = set(manifest_set.names)
    for existing in target.glob("*.yaml"):
        if existing.name not in keep:
            existing.unlink()
    written: list[Path] = []
    for manifest in manifest_set:
        path = target / manifest.name
        atomic_write_text(path, manifest.content)
        written.append(path)
    return written
