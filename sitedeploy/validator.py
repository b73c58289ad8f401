"""Tenant validator: normalizes a raw request and detects existing tenants."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Mapping

from sitedeploy.clients.base import ClusterClient
from sitedeploy.exceptions import ClientError, ConflictError, ProvisioningError, ValidationError
from sitedeploy.models import TenantRecord, TenantRequest, namespace_for
from sitedeploy.registry import TenantRegistry
from sitedeploy.tiers import TierPolicyResolver

__all__ = ["HOSTNAME_PATTERN", "LABEL_PATTERN", "TenantValidator", "ValidatedRequest", "is_valid_domain", "namespace_for"]

logger = logging.getLogger(__name__)

_LABEL = r"[A-Za-z0-9](?:[A-Za-z0-9-]{0,61}[A-Za-z0-9])?"
HOSTNAME_PATTERN = re.compile(rf"{_LABEL}(?:\.{_LABEL})*")
LABEL_PATTERN = re.compile(_LABEL)
_NAME_PATTERN = re.compile(r"[A-Za-z0-9][A-Za-z0-9_.-]*")
MAX_HOSTNAME_LENGTH = 253
# MySQL limit on database names.
MAX_DATABASE_NAME_LENGTH = 64


def is_valid_domain(domain: str) -> bool:
    return len(domain) <= MAX_HOSTNAME_LENGTH and HOSTNAME_PATTERN.fullmatch(domain) is not None


def _text(raw: Mapping[str, Any], key: str) -> str:
    value = raw.get(key)
    if value is None:
        return ""
    return str(value).strip()


@dataclass(frozen=True)
class ValidatedRequest:
    request: TenantRequest
    existing: TenantRecord | None = None
    warnings: tuple[str, ...] = field(default_factory=tuple)

    @property
    def namespace(self) -> str:
        return self.request.namespace


class TenantValidator:
    """Validate provisioning input and check for conflicting tenants.

    Read-only: queries the local registry and, outside dry-run, the cluster
    namespace list.
    """

    def __init__(
        self,
        resolver: TierPolicyResolver,
        registry: TenantRegistry,
        cluster: ClusterClient | None = None,
        database_prefix: str = "wp_",
    ) -> None:
        self.resolver = resolver
        self.registry = registry
        self.cluster = cluster
        self.database_prefix = database_prefix

    def parse(self, raw: Mapping[str, Any]) -> TenantRequest:
        """Check field syntax and build a normalized TenantRequest."""
        template = _text(raw, "template")
        tier = _text(raw, "tier")
        domain = _text(raw, "domain")
        if not template:
            raise ValidationError("--template is required", field="template")
        if not domain:
            raise ValidationError("--domain is required", field="domain")
        if not tier:
            raise ValidationError("--tier is required", field="tier")
        for key, value in (("template", template), ("tier", tier)):
            if not _NAME_PATTERN.fullmatch(value):
                raise ValidationError(f"Invalid {key} name: {value!r}", field=key)
        if not is_valid_domain(domain):
            raise ValidationError(f"Invalid domain format: {domain!r}", field="domain")
        namespace = namespace_for(domain.lower())
        if len(self.database_prefix) + len(namespace) > MAX_DATABASE_NAME_LENGTH:
            raise ValidationError(
                f"Database name '{self.database_prefix}{namespace}' derived from {domain!r} "
                f"exceeds {MAX_DATABASE_NAME_LENGTH} characters",
                field="domain",
            )

        theme = _text(raw, "theme") or "twentytwentyfour"
        if not _NAME_PATTERN.fullmatch(theme):
            raise ValidationError(f"Invalid theme name: {theme!r}", field="theme")
        database_override = _text(raw, "database") or _text(raw, "database_override") or None

        return TenantRequest(
            template=template,
            domain=domain.lower(),
            tier=tier,
            theme=theme,
            database_override=database_override,
            dry_run=bool(raw.get("dry_run", False)),
            force=bool(raw.get("force", False)),
        )

    def check_template(self, request: TenantRequest) -> None:
        if request.template not in self.resolver.available_templates():
            raise ValidationError(
                f"Template '{request.template}' not found in {self.resolver.templates_dir}",
                field="template",
                choices=self.resolver.available_templates(),
            )
        tiers = self.resolver.available_tiers(request.template)
        if request.tier not in tiers:
            raise ValidationError(
                f"Tier '{request.tier}' not supported for template '{request.template}'",
                field="tier",
                choices=tiers,
            )

    def find_conflicts(self, request: TenantRequest) -> tuple[TenantRecord | None, list[str]]:
        namespace = request.namespace
        reasons: list[str] = []
        existing = self.registry.get(request.domain) or self.registry.find_by_namespace(namespace)
        if existing is not None:
            reasons.append(f"tenant record for {existing.domain} exists")
        elif self.registry.has_directory(request.domain):
            reasons.append(f"tenant directory {self.registry.tenant_dir(request.domain)} exists")
        if self.cluster is not None and not request.dry_run:
            try:
                if self.cluster.namespace_exists(namespace):
                    reasons.append(f"namespace '{namespace}' exists in cluster")
            except ClientError as exc:
                raise ProvisioningError(f"Cannot query cluster namespaces: {exc}", stage="validate") from exc
        return existing, reasons

    def validate(self, raw: Mapping[str, Any]) -> ValidatedRequest:
        """Return a validated request, or raise ValidationError / ConflictError."""
        request = self.parse(raw)
        self.check_template(request)
        return self.check_conflicts(request)

    def check_conflicts(self, request: TenantRequest) -> ValidatedRequest:
        """Apply the force rule to the current conflicts.

        Called again once the namespace lease is held, since another run may
        have created the tenant after :meth:`validate` looked.
        """
        existing, reasons = self.find_conflicts(request)
        if reasons and not request.force:
            raise ConflictError(request.namespace, reasons)
        for reason in reasons:
            logger.warning("%s; continuing because --force was given", reason)
        return ValidatedRequest(request=request, existing=existing, warnings=tuple(reasons))
