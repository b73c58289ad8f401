"""Unit tests for DeploymentApplier."""

from __future__ import annotations

import threading

import pytest

from sitedeploy.applier import DeploymentApplier
from sitedeploy.exceptions import ApplyError, CancelledError
from sitedeploy.models import Manifest, ManifestSet, ManifestStatus
from sitedeploy.renderer import MANIFEST_ORDER


def _manifest_set(names=MANIFEST_ORDER) -> ManifestSet:
    return ManifestSet(tuple(Manifest(name, f"kind: {name}\n") for name in names))


def test_applies_in_dependency_order(cluster) -> None:
    shuffled = _manifest_set(tuple(reversed(MANIFEST_ORDER)))
    report = DeploymentApplier(cluster).apply(shuffled)
    assert cluster.applied == list(MANIFEST_ORDER)
    assert report.applied == list(MANIFEST_ORDER)
    assert report.ok


def test_second_manifest_failure_skips_the_rest(cluster) -> None:
    cluster.fail_on["secrets.yaml"] = "admission webhook denied"
    with pytest.raises(ApplyError) as exc_info:
        DeploymentApplier(cluster).apply(_manifest_set())
    report = exc_info.value.report
    assert report.applied == ["namespace.yaml"]
    assert report.failed == ["secrets.yaml"]
    assert report.skipped == list(MANIFEST_ORDER[2:])
    assert [o.status for o in report.outcomes] == [
        ManifestStatus.APPLIED,
        ManifestStatus.FAILED,
        *[ManifestStatus.SKIPPED] * 4,
    ]
    assert "admission webhook denied" in str(exc_info.value)
    assert exc_info.value.manifest == "secrets.yaml"
    assert cluster.calls == ["apply:namespace.yaml", "apply:secrets.yaml"]


def test_dry_run_plans_without_cluster_calls(cluster) -> None:
    report = DeploymentApplier(cluster).apply(_manifest_set(), dry_run=True)
    assert report.dry_run is True
    assert report.planned == list(MANIFEST_ORDER)
    assert cluster.calls == []


def test_cancel_between_manifests(cluster) -> None:
    cancel = threading.Event()

    class _CancelAfterFirst:
        def apply(self, manifest):
            cluster.apply(manifest)
            cancel.set()
            return ""

    with pytest.raises(CancelledError) as exc_info:
        DeploymentApplier(_CancelAfterFirst()).apply(_manifest_set(), cancel=cancel)
    assert exc_info.value.next_manifest == "secrets.yaml"
    report = exc_info.value.report
    assert report.applied == ["namespace.yaml"]
    assert report.skipped == list(MANIFEST_ORDER[1:])


def test_partial_template_only_reports_produced_documents(cluster) -> None:
    report = DeploymentApplier(cluster).apply(_manifest_set(("namespace.yaml", "application.yaml")))
    assert report.applied == ["namespace.yaml", "application.yaml"]
