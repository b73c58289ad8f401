"""Deployment applier: applies a ManifestSet in fixed dependency order."""

from __future__ import annotations

import logging
import threading

from sitedeploy.clients.base import ClusterClient
from sitedeploy.exceptions import ApplyError, CancelledError, ClientError
from sitedeploy.models import ApplyReport, Manifest, ManifestOutcome, ManifestSet, ManifestStatus
from sitedeploy.renderer import MANIFEST_ORDER, manifest_sort_key

logger = logging.getLogger(__name__)


class DeploymentApplier:
    """Apply manifests one at a time; stop at the first failure.

    Manifests named in :data:`MANIFEST_ORDER` go first in that order, then any
    extra documents by name. Documents the template did not produce are simply
    absent from the report.
    """

    def __init__(self, cluster: ClusterClient) -> None:
        self.cluster = cluster

    def apply(
        self,
        manifest_set: ManifestSet,
        dry_run: bool = False,
        cancel: threading.Event | None = None,
    ) -> ApplyReport:
        ordered = sorted(manifest_set, key=lambda m: manifest_sort_key(m.name))
        report = ApplyReport(dry_run=dry_run)

        if dry_run:
            for manifest in ordered:
                report.outcomes.append(ManifestOutcome(manifest.name, ManifestStatus.PLANNED))
            logger.info("Dry run: would apply %s", ", ".join(report.planned) or "nothing")
            return report

        for index, manifest in enumerate(ordered):
            if cancel is not None and cancel.is_set():
                self._skip_rest(report, ordered[index:], "cancelled")
                logger.warning("Cancelled before applying %s", manifest.name)
                raise CancelledError(manifest.name, report=report)
            logger.info("Applying %s...", manifest.name)
            try:
                self.cluster.apply(manifest)
            except ClientError as exc:
                report.outcomes.append(ManifestOutcome(manifest.name, ManifestStatus.FAILED, str(exc)))
                self._skip_rest(report, ordered[index + 1 :], f"{manifest.name} failed")
                raise ApplyError(manifest.name, str(exc), report=report) from exc
            report.outcomes.append(ManifestOutcome(manifest.name, ManifestStatus.APPLIED))

        missing = [name for name in MANIFEST_ORDER if manifest_set.get(name) is None]
        if missing:
            logger.debug("Not produced by template: %s", ", ".join(missing))
        logger.info("Applied %d manifests", len(report.applied))
        return report

    @staticmethod
    def _skip_rest(report: ApplyReport, remaining: list[Manifest], reason: str) -> None:
        for manifest in remaining:
            report.outcomes.append(ManifestOutcome(manifest.name, ManifestStatus.SKIPPED, reason))
