from __future__ import annotations

import asyncio

import pytest

from rosa_provisioner.cli import EXIT_FAILED, EXIT_OK, EXIT_ROLLBACK_INCOMPLETE, exit_code_for
from rosa_provisioner.domain.models import ResourceKind, RunState
from rosa_provisioner.errors import (
    BackendRejectedError,
    ConflictError,
    ConvergenceFailure,
    ConvergenceTimeout,
    NotFoundError,
    PermissionDeniedError,
    ProvisioningError,
    RequestValidationError,
    RunCancelled,
    VerificationError,
)

from fakes import FakeClusterService, build_orchestrator, make_spec

HAPPY_PATH = [
    RunState.PROVISIONING,
    RunState.SUBMITTING,
    RunState.CONVERGING,
    RunState.VERIFYING,
    RunState.DONE,
]


def _required_names(catalog, spec) -> list[str]:
    return [resource.name for resource in catalog.required_resources(spec)]


@pytest.mark.asyncio
async def test_new_cluster_creates_identity_resources_and_ends_done(
    orchestrator, backend, service, catalog, reporter
) -> None:
    spec = make_spec()

    result = await orchestrator.run(spec)

    assert result.state == RunState.DONE
    assert result.cluster_id == "2a5b0c1d"
    assert result.error is None
    assert reporter.stages == HAPPY_PATH
    assert backend.names("create") == _required_names(catalog, spec)
    assert [r.kind for r in result.created] == [
        ResourceKind.OIDC_PROVIDER,
        ResourceKind.ACCOUNT_ROLE,
        ResourceKind.OPERATOR_ROLE,
        ResourceKind.OPERATOR_ROLE,
        ResourceKind.OPERATOR_ROLE,
        ResourceKind.CLUSTER,
    ]
    assert all(resource.owned for resource in result.created)

    payload = service.submitted[0]
    sts = payload["aws"]["sts"]
    assert sts["role_arn"].endswith(":role/ManagedOpenShift-Installer-Role")
    assert len(sts["operator_iam_roles"]) == 3
    assert sts["oidc_endpoint_url"].endswith("/demo")
    assert exit_code_for(result) == EXIT_OK


@pytest.mark.asyncio
async def test_submit_conflict_rolls_back_in_reverse_creation_order(
    orchestrator, backend, service, catalog, reporter
) -> None:
    spec = make_spec()
    service.submit_error = ConflictError("Cluster 'demo' already exists")

    result = await orchestrator.run(spec)

    assert result.state == RunState.FAILED
    assert isinstance(result.error, ConflictError)
    assert reporter.stages == [
        RunState.PROVISIONING,
        RunState.SUBMITTING,
        RunState.ROLLING_BACK,
        RunState.FAILED,
    ]
    names = _required_names(catalog, spec)
    assert backend.names("delete") == list(reversed(names))
    assert result.rollback is not None
    assert result.rollback.failed == []
    assert exit_code_for(result) == EXIT_FAILED


@pytest.mark.asyncio
async def test_all_resources_reused_performs_no_backend_writes(
    orchestrator, backend, service, catalog, reporter
) -> None:
    spec = make_spec()
    for resource in catalog.required_resources(spec):
        backend.add_existing(resource)

    result = await orchestrator.run(spec)

    assert result.state == RunState.DONE
    assert backend.writes == []
    assert reporter.stages[:2] == [RunState.PROVISIONING, RunState.SUBMITTING]
    assert all(outcome == "reused" for _, outcome in reporter.outcomes)
    assert len(service.submitted) == 1
    assert [r.kind for r in result.created] == [ResourceKind.CLUSTER]


@pytest.mark.asyncio
async def test_failed_cluster_state_ends_failed_after_third_poll(
    backend, clock, catalog, reporter
) -> None:
    service = FakeClusterService(["installing", "installing", "failed"])
    orchestrator = build_orchestrator(backend, service, clock, catalog, reporter)

    result = await orchestrator.run(make_spec())

    assert result.state == RunState.FAILED
    assert isinstance(result.error, ConvergenceFailure)
    assert result.error.status == "failed"
    assert [attempt for _, _, attempt in reporter.polls] == [1, 2, 3]
    assert service.deleted == ["2a5b0c1d"]
    assert RunState.DONE not in reporter.stages
    assert len(backend.names("delete")) == 5


@pytest.mark.asyncio
async def test_deadline_elapsing_rolls_back_and_never_reaches_done(
    backend, clock, catalog, reporter
) -> None:
    service = FakeClusterService(["installing"])
    orchestrator = build_orchestrator(backend, service, clock, catalog, reporter)

    result = await orchestrator.run(make_spec())

    assert result.state == RunState.FAILED
    assert isinstance(result.error, ConvergenceTimeout)
    assert RunState.ROLLING_BACK in reporter.stages
    assert RunState.DONE not in reporter.stages
    assert service.deleted == ["2a5b0c1d"]


@pytest.mark.asyncio
async def test_cluster_is_deleted_before_identity_resources(
    backend, clock, catalog
) -> None:
    events: list[str] = []
    service = FakeClusterService(["error"])
    original_delete = service.delete_cluster
    original_resource_delete = backend.delete_resource

    async def delete_cluster(cluster_id: str) -> None:
        events.append(f"cluster:{cluster_id}")
        await original_delete(cluster_id)

    async def delete_resource(descriptor) -> None:
        events.append(descriptor.kind.value)
        await original_resource_delete(descriptor)

    service.delete_cluster = delete_cluster
    backend.delete_resource = delete_resource
    orchestrator = build_orchestrator(backend, service, clock, catalog)

    result = await orchestrator.run(make_spec())

    assert result.state == RunState.FAILED
    assert events[0] == "cluster:2a5b0c1d"
    assert events[1:] == [
        "operator_role",
        "operator_role",
        "operator_role",
        "account_role",
        "oidc_provider",
    ]


@pytest.mark.asyncio
async def test_rollback_never_deletes_reused_resources(
    orchestrator, backend, service, catalog
) -> None:
    spec = make_spec()
    oidc, installer = catalog.required_resources(spec)[:2]
    backend.add_existing(oidc)
    backend.add_existing(installer)
    service.submit_error = BackendRejectedError("compute machine type is not supported")

    result = await orchestrator.run(spec)

    assert result.state == RunState.FAILED
    deleted = backend.names("delete")
    assert oidc.name not in deleted
    assert installer.name not in deleted
    assert len(deleted) == 3
    assert len(result.rollback.skipped) == 2


@pytest.mark.asyncio
async def test_failed_deletes_are_reported_and_do_not_stop_rollback(
    orchestrator, backend, service, catalog
) -> None:
    spec = make_spec()
    names = _required_names(catalog, spec)
    service.submit_error = ConflictError("duplicate")
    backend.fail_delete[names[1]] = PermissionDeniedError("iam:DeleteRole denied")
    backend.fail_delete[names[3]] = PermissionDeniedError("iam:DeleteRole denied")

    result = await orchestrator.run(spec)

    assert result.state == RunState.FAILED
    assert backend.names("delete") == list(reversed(names))
    assert result.rollback.failed_identifiers() == [
        f"arn:aws:iam::111111111111:role/{names[3]}",
        f"arn:aws:iam::111111111111:role/{names[1]}",
    ]
    assert exit_code_for(result) == EXIT_ROLLBACK_INCOMPLETE


@pytest.mark.asyncio
async def test_already_deleted_resource_counts_as_deleted(
    orchestrator, backend, service, catalog
) -> None:
    spec = make_spec()
    names = _required_names(catalog, spec)
    service.submit_error = ConflictError("duplicate")
    backend.fail_delete[names[2]] = NotFoundError("gone")

    result = await orchestrator.run(spec)

    assert result.rollback.failed == []
    assert len(result.rollback.deleted) == 5


@pytest.mark.asyncio
async def test_version_mismatch_is_rejected_without_writes(
    orchestrator, backend, catalog
) -> None:
    spec = make_spec()
    installer = catalog.required_resources(spec)[1]
    backend.add_existing(installer, version="4.12")

    result = await orchestrator.run(spec)

    assert result.state == RunState.FAILED
    assert isinstance(result.error, ConflictError)
    assert installer.logical_name in str(result.error)
    assert backend.writes == []


@pytest.mark.asyncio
async def test_create_failure_stops_new_work_and_rolls_back_created(
    orchestrator, backend, service, catalog
) -> None:
    spec = make_spec()
    names = _required_names(catalog, spec)
    backend.fail_create[names[3]] = BackendRejectedError("MalformedPolicyDocument")

    result = await orchestrator.run(spec)

    assert result.state == RunState.FAILED
    assert isinstance(result.error, ProvisioningError)
    assert backend.names("create") == names[:4]
    assert backend.names("delete") == [names[2], names[1], names[0]]
    assert service.submitted == []


@pytest.mark.asyncio
async def test_unexpected_create_error_rolls_back_every_created_role(
    orchestrator, backend, service, catalog
) -> None:
    spec = make_spec()
    names = _required_names(catalog, spec)
    backend.fail_create[names[2]] = KeyError("Role")
    backend.create_delays = {names[2]: 0.001, names[3]: 0.02}

    result = await orchestrator.run(spec)

    assert result.state == RunState.FAILED
    assert isinstance(result.error, ProvisioningError)
    assert backend.names("delete") == [names[3], names[1], names[0]]
    assert result.rollback.failed == []
    assert backend.resources == {}
    assert service.submitted == []


@pytest.mark.asyncio
async def test_invalid_request_fails_before_any_backend_call(
    orchestrator, backend, service, reporter
) -> None:
    result = await orchestrator.run(make_spec(replicas=1, machine_cidr="10.0.0.0/33"))

    assert result.state == RunState.FAILED
    assert isinstance(result.error, RequestValidationError)
    assert len(result.error.violations) == 2
    assert reporter.stages == [RunState.ROLLING_BACK, RunState.FAILED]
    assert backend.calls == []
    assert service.submitted == []


@pytest.mark.asyncio
async def test_invalid_role_prefix_fails_before_any_backend_call(
    orchestrator, backend
) -> None:
    result = await orchestrator.run(make_spec(operator_roles_prefix="bad prefix!"))

    assert result.state == RunState.FAILED
    assert isinstance(result.error, RequestValidationError)
    assert len(result.error.violations) == 3
    assert all("bad prefix!" in violation for violation in result.error.violations)
    assert backend.calls == []


@pytest.mark.asyncio
async def test_verification_failure_rolls_back(backend, clock, catalog, reporter) -> None:
    service = FakeClusterService(compute_nodes=1)
    orchestrator = build_orchestrator(backend, service, clock, catalog, reporter)

    result = await orchestrator.run(make_spec())

    assert result.state == RunState.FAILED
    assert isinstance(result.error, VerificationError)
    assert RunState.VERIFYING in reporter.stages
    assert service.deleted == ["2a5b0c1d"]


@pytest.mark.asyncio
async def test_cancel_event_set_before_start_fails_without_side_effects(
    orchestrator, backend, service, reporter
) -> None:
    cancel = asyncio.Event()
    cancel.set()

    result = await orchestrator.run(make_spec(), cancel_event=cancel)

    assert result.state == RunState.FAILED
    assert isinstance(result.error, RunCancelled)
    assert reporter.stages == [RunState.ROLLING_BACK, RunState.FAILED]
    assert backend.calls == []
    assert service.submitted == []


@pytest.mark.asyncio
async def test_cancel_during_convergence_rolls_back(backend, clock, catalog, reporter) -> None:
    service = FakeClusterService(["installing"])
    orchestrator = build_orchestrator(backend, service, clock, catalog, reporter)
    cancel = asyncio.Event()
    reporter.on_poll = lambda _cid, _status, attempt: cancel.set() if attempt == 2 else None

    result = await orchestrator.run(make_spec(), cancel_event=cancel)

    assert result.state == RunState.FAILED
    assert isinstance(result.error, RunCancelled)
    assert len(reporter.polls) == 2
    assert service.deleted == ["2a5b0c1d"]
    assert len(backend.names("delete")) == 5


class _BlockingService(FakeClusterService):
    def __init__(self) -> None:
        super().__init__()
        self.polling = asyncio.Event()

    async def get_status(self, cluster_id: str) -> str:
        if cluster_id in self.deleted:
            raise NotFoundError(f"Cluster {cluster_id} not found")
        self.polling.set()
        await asyncio.Event().wait()
        return "installing"


@pytest.mark.asyncio
async def test_task_cancellation_rolls_back_then_propagates(backend, clock, catalog) -> None:
    service = _BlockingService()
    orchestrator = build_orchestrator(backend, service, clock, catalog)

    task = asyncio.create_task(orchestrator.run(make_spec()))
    await service.polling.wait()
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task

    assert service.deleted == ["2a5b0c1d"]
    assert len(backend.names("delete")) == 5


@pytest.mark.asyncio
async def test_direct_mode_skips_identity_resources(orchestrator, backend, service) -> None:
    result = await orchestrator.run(make_spec(security_mode="direct"))

    assert result.state == RunState.DONE
    assert backend.calls == []
    assert "sts" not in service.submitted[0].get("aws", {})


@pytest.mark.asyncio
async def test_upgrade_roles_updates_mismatched_roles_only(orchestrator, backend, catalog) -> None:
    spec = make_spec()
    resources = catalog.required_resources(spec)
    for resource in resources:
        backend.add_existing(resource)
    backend.add_existing(resources[1], version="4.12")

    plan = await orchestrator.upgrade_roles(spec)

    assert backend.names("update") == [resources[1].name]
    assert plan[resources[1].logical_name].realized.version == "4.14"
