"""Error taxonomy for site provisioning.

Every stage raises a subclass of :class:`SiteDeployError`. The ``stage``
attribute names the pipeline stage that failed so the CLI can report it
without inspecting the exception type.
"""

from __future__ import annotations

from typing import Any


class SiteDeployError(Exception):
    """Base exception for provisioning failures."""

    stage = "provision"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message
        # Attached by the pipeline when the error escapes a run.
        self.result: Any = None


class ValidationError(SiteDeployError):
    """Raised when a request is missing input or has a malformed field."""

    stage = "validate"

    def __init__(self, message: str, field: str | None = None, choices: list[str] | None = None) -> None:
        if choices:
            message = f"{message} (available: {', '.join(choices)})"
        super().__init__(message)
        self.field = field
        self.choices = choices or []


class PolicyError(SiteDeployError):
    """Base class for tier policy failures."""

    stage = "tier"


class PolicyNotFoundError(PolicyError):
    """Raised when no policy document exists for a (template, tier) pair."""

    def __init__(self, template: str, tier: str, available: list[str]) -> None:
        listed = ", ".join(available) if available else "none"
        super().__init__(f"Tier '{tier}' not supported for template '{template}' (available tiers: {listed})")
        self.template = template
        self.tier = tier
        self.available = available


class PolicyInvalidError(PolicyError):
    """Raised when a policy document is missing required fields."""

    def __init__(self, path: str, problems: list[str]) -> None:
        super().__init__(f"Invalid tier policy {path}: {'; '.join(problems)}")
        self.path = path
        self.problems = problems


class ConflictError(SiteDeployError):
    """Raised when the tenant already exists and ``force`` was not given."""

    stage = "validate"

    def __init__(self, namespace: str, reasons: list[str]) -> None:
        super().__init__(
            f"Tenant '{namespace}' already exists: {'; '.join(reasons)}. "
            "Use --force to re-provision or choose a different domain"
        )
        self.namespace = namespace
        self.reasons = reasons


class LockedError(SiteDeployError):
    """Raised when another run holds the namespace (or ledger) lease."""

    stage = "lock"

    def __init__(self, namespace: str, holder: str = "", kind: str = "Namespace") -> None:
        detail = f" (held by {holder})" if holder else ""
        super().__init__(f"{kind} '{namespace}' is locked by another provisioning run{detail}")
        self.namespace = namespace
        self.holder = holder


class RenderError(SiteDeployError):
    """Raised when a template document cannot be rendered."""

    stage = "render"

    def __init__(self, document: str, message: str, placeholder: str | None = None) -> None:
        super().__init__(f"Failed to render {document}: {message}")
        self.document = document
        self.placeholder = placeholder


class ProvisioningError(SiteDeployError):
    """Raised when tenant resources (database, secrets) cannot be provisioned."""

    stage = "database"

    def __init__(self, message: str, stage: str | None = None) -> None:
        super().__init__(message)
        if stage:
            self.stage = stage


class ApplyError(SiteDeployError):
    """Raised when a manifest fails to apply; later manifests are skipped."""

    stage = "apply"

    def __init__(self, manifest: str, cause: str, report: Any = None) -> None:
        super().__init__(f"Failed to apply {manifest}: {cause}")
        self.manifest = manifest
        self.cause = cause
        self.report = report


class CancelledError(SiteDeployError):
    """Raised when a run is cancelled between manifest applications."""

    stage = "apply"

    def __init__(self, next_manifest: str, report: Any = None) -> None:
        super().__init__(f"Cancelled before applying {next_manifest}")
        self.next_manifest = next_manifest
        self.report = report


class RegistrationError(SiteDeployError):
    """Raised when the desired-state ledger cannot be updated."""

    stage = "register"

    def __init__(self, domain: str, message: str) -> None:
        super().__init__(f"Failed to register {domain} in GitOps ledger: {message}")
        self.domain = domain


class ClientError(Exception):
    """Raised by external clients; stages wrap it in a typed error."""


class CommandError(ClientError):
    """Raised when an external command exits non-zero or times out."""

    def __init__(self, argv: list[str], returncode: int | None, stderr: str) -> None:
        detail = stderr.strip() or "no output"
        status = f"exit code {returncode}" if returncode is not None else "timed out"
        super().__init__(f"{argv[0]} {argv[1] if len(argv) > 1 else ''}".strip() + f" failed ({status}): {detail}")
        self.argv = argv
        self.returncode = returncode
        self.stderr = stderr


class TransientClientError(ClientError):
    """Raised for errors worth retrying (service not ready, connection reset)."""
