from __future__ import annotations

import pytest

from rosa_provisioner.domain.models import PlanStatus, ResourceKind
from rosa_provisioner.errors import (
    PartialPlanError,
    PermissionDeniedError,
    TransientBackendError,
)
from rosa_provisioner.inspector import ResourceInspector

from fakes import make_spec


def _inspector(backend, catalog, clock) -> ResourceInspector:
    return ResourceInspector(backend, catalog, max_retries=2, sleep=clock.sleep)


@pytest.mark.asyncio
async def test_nothing_exists_so_everything_is_to_create(backend, catalog, clock) -> None:
    plan = await _inspector(backend, catalog, clock).inspect(make_spec())

    assert len(plan) == 5
    assert [entry.status for entry in plan] == [PlanStatus.TO_CREATE] * 5
    assert backend.writes == []


@pytest.mark.asyncio
async def test_existing_resources_are_classified_by_version(backend, catalog, clock) -> None:
    spec = make_spec()
    oidc, installer, ingress = catalog.required_resources(spec)[:3]
    backend.add_existing(oidc)
    backend.add_existing(installer, version="4.13")
    # Resources without a version tag are adopted as they are.
    backend.add_existing(ingress, version=None)

    plan = await _inspector(backend, catalog, clock).inspect(spec)

    assert plan[oidc.logical_name].status == PlanStatus.EXISTING
    assert plan[installer.logical_name].status == PlanStatus.VERSION_MISMATCH
    assert plan[installer.logical_name].existing.version == "4.13"
    assert plan[ingress.logical_name].status == PlanStatus.EXISTING
    assert len(plan.with_status(PlanStatus.TO_CREATE)) == 2


@pytest.mark.asyncio
async def test_transient_lookup_errors_are_retried(backend, catalog, clock) -> None:
    spec = make_spec()
    installer = catalog.required_resources(spec)[1]
    backend.find_errors[installer.name] = [TransientBackendError("Throttling")]

    plan = await _inspector(backend, catalog, clock).inspect(spec)

    assert plan[installer.logical_name].status == PlanStatus.TO_CREATE
    assert clock.sleeps == [0.5]


@pytest.mark.asyncio
async def test_unresolved_lookups_fail_the_whole_inspection(backend, catalog, clock) -> None:
    spec = make_spec()
    installer = catalog.required_resources(spec)[1]
    backend.find_errors[installer.name] = [TransientBackendError("HTTP 503")] * 3

    with pytest.raises(PartialPlanError) as excinfo:
        await _inspector(backend, catalog, clock).inspect(spec)

    assert excinfo.value.unresolved == [installer.logical_name]
    # The remaining resources are still looked up.
    assert len(set(backend.names("find"))) == 5


@pytest.mark.asyncio
async def test_permission_errors_propagate_unchanged(backend, catalog, clock) -> None:
    spec = make_spec()
    oidc = catalog.required_resources(spec)[0]
    backend.find_errors[oidc.name] = [PermissionDeniedError("iam:ListOpenIDConnectProviders")]

    with pytest.raises(PermissionDeniedError):
        await _inspector(backend, catalog, clock).inspect(spec)


@pytest.mark.asyncio
async def test_direct_mode_needs_no_identity_resources(backend, catalog, clock) -> None:
    plan = await _inspector(backend, catalog, clock).inspect(make_spec(security_mode="direct"))

    assert len(plan) == 0
    assert plan.is_complete()
    assert backend.calls == []


@pytest.mark.asyncio
async def test_plan_tiers_follow_dependency_depth(backend, catalog, clock) -> None:
    plan = await _inspector(backend, catalog, clock).inspect(make_spec())

    tiers = [[entry.kind for entry in tier] for tier in plan.tiers()]
    assert tiers == [
        [ResourceKind.OIDC_PROVIDER],
        [ResourceKind.ACCOUNT_ROLE],
        [ResourceKind.OPERATOR_ROLE] * 3,
    ]
