from __future__ import annotations

import pytest

from rosa_provisioner.domain.models import ProvisionedResource, ResourceKind
from rosa_provisioner.errors import (
    PermissionDeniedError,
    RollbackIncomplete,
    TransientBackendError,
)
from rosa_provisioner.rollback import RollbackCoordinator
from rosa_provisioner.utils.time import utc_now

from fakes import FakeClusterService, arn_for, build_poller, make_spec


def _provisioned(backend, resource, *, owned: bool = True) -> ProvisionedResource:
    descriptor = backend.add_existing(resource)
    return ProvisionedResource(
        logical_name=resource.logical_name,
        name=descriptor.name,
        identifier=descriptor.arn,
        kind=resource.kind,
        created_at=utc_now(),
        owned=owned,
    )


def _cluster(cluster_id: str = "2a5b0c1d") -> ProvisionedResource:
    return ProvisionedResource(
        logical_name="cluster",
        name="demo",
        identifier=cluster_id,
        kind=ResourceKind.CLUSTER,
        created_at=utc_now(),
        owned=True,
    )


def _coordinator(backend, service, clock, **kwargs) -> RollbackCoordinator:
    options = {"cluster_delete_timeout": 600.0, "max_retries": 1, "sleep": clock.sleep}
    options.update(kwargs)
    return RollbackCoordinator(backend, service, build_poller(service, clock), **options)


@pytest.mark.asyncio
async def test_deletes_owned_resources_newest_first(backend, service, catalog, clock) -> None:
    required = catalog.required_resources(make_spec())
    resources = [_provisioned(backend, resource) for resource in required]

    report = await _coordinator(backend, service, clock).rollback(resources)

    assert report.complete
    assert backend.names("delete") == [resource.name for resource in reversed(required)]
    assert [r.name for r in report.deleted] == [r.name for r in reversed(resources)]
    assert backend.resources == {}


@pytest.mark.asyncio
async def test_adopted_resources_are_skipped(backend, service, catalog, clock) -> None:
    oidc, installer = catalog.required_resources(make_spec())[:2]
    resources = [_provisioned(backend, oidc, owned=False), _provisioned(backend, installer)]

    report = await _coordinator(backend, service, clock).rollback(resources)

    assert backend.names("delete") == [installer.name]
    assert [r.name for r in report.skipped] == [oidc.name]
    assert (oidc.kind, oidc.name) in backend.resources


@pytest.mark.asyncio
async def test_cluster_is_deleted_and_awaited(backend, catalog, clock) -> None:
    service = FakeClusterService(["uninstalling"])
    installer = catalog.required_resources(make_spec())[1]
    resources = [_provisioned(backend, installer), _cluster()]

    report = await _coordinator(backend, service, clock).rollback(resources)

    assert report.complete
    assert service.deleted == ["2a5b0c1d"]
    assert report.deleted[0].kind == ResourceKind.CLUSTER
    assert backend.names("delete") == [installer.name]


class _StuckService(FakeClusterService):
    """Accepts the delete request but the cluster never goes away."""

    async def get_status(self, cluster_id: str) -> str:
        self.status_calls += 1
        return "uninstalling"


@pytest.mark.asyncio
async def test_cluster_that_never_goes_away_is_reported(backend, catalog, clock) -> None:
    service = _StuckService()
    installer = catalog.required_resources(make_spec())[1]
    resources = [_provisioned(backend, installer), _cluster()]

    report = await _coordinator(backend, service, clock, cluster_delete_timeout=120.0).rollback(
        resources
    )

    assert not report.complete
    assert report.failed_identifiers() == ["2a5b0c1d"]
    assert isinstance(report.errors["2a5b0c1d"], TransientBackendError)
    # The identity resources are still cleaned up.
    assert backend.names("delete") == [installer.name]


@pytest.mark.asyncio
async def test_transient_delete_errors_are_retried_then_reported(
    backend, service, catalog, clock
) -> None:
    oidc, installer = catalog.required_resources(make_spec())[:2]
    resources = [_provisioned(backend, oidc), _provisioned(backend, installer)]
    backend.fail_delete[installer.name] = TransientBackendError("Throttling")

    report = await _coordinator(backend, service, clock).rollback(resources)

    assert backend.names("delete") == [installer.name, installer.name, oidc.name]
    assert report.failed_identifiers() == [arn_for(installer.kind, installer.name)]
    assert [r.name for r in report.deleted] == [oidc.name]


@pytest.mark.asyncio
async def test_incomplete_report_raises_with_every_leftover(
    backend, service, catalog, clock
) -> None:
    required = catalog.required_resources(make_spec())
    resources = [_provisioned(backend, resource) for resource in required]
    for resource in required[2:]:
        backend.fail_delete[resource.name] = PermissionDeniedError("iam:DeleteRole")

    report = await _coordinator(backend, service, clock).rollback(resources)

    with pytest.raises(RollbackIncomplete) as excinfo:
        report.raise_if_incomplete()
    assert len(excinfo.value.resources) == 3
    assert all(arn in str(excinfo.value) for arn in excinfo.value.resources)


@pytest.mark.asyncio
async def test_empty_rollback_is_complete(backend, service, clock) -> None:
    report = await _coordinator(backend, service, clock).rollback([])

    assert report.complete
    report.raise_if_incomplete()
    assert backend.calls == []
