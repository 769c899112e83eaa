"""In-memory stand-ins for the cloud backend and the managed cluster service."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any

from rosa_provisioner.catalog import RoleCatalog, RoleCatalogConfig
from rosa_provisioner.catalog.catalog import CLUSTER_TAG
from rosa_provisioner.domain.models import (
    AddOn,
    AddOnInstallation,
    ClusterRecord,
    ClusterSpec,
    ResourceDescriptor,
    ResourceKind,
    ResourceSpec,
    RunState,
)
from rosa_provisioner.errors import NotFoundError
from rosa_provisioner.inspector import ResourceInspector
from rosa_provisioner.orchestrator import ProvisioningOrchestrator
from rosa_provisioner.poller import ConvergencePoller
from rosa_provisioner.provisioner import ResourceProvisioner
from rosa_provisioner.rollback import RollbackCoordinator
from rosa_provisioner.verification import ClusterVerifier

ACCOUNT_ID = "111111111111"

SMALL_CATALOG: dict[str, Any] = {
    "oidc": {"client_ids": ["openshift", "sts.amazonaws.com"]},
    "account_roles": [
        {
            "role": "Installer",
            "trust": {"aws": "arn:aws:iam::710019948333:role/RH-Managed-OpenShift-Installer"},
            "policy_arns": ["arn:aws:iam::aws:policy/service-role/ROSAInstallerPolicy"],
        }
    ],
    "operator_roles": [
        {
            "role": "ingress",
            "namespace": "openshift-ingress-operator",
            "service_accounts": ["cloud-credentials"],
            "policy_arns": ["arn:aws:iam::aws:policy/service-role/ROSAIngressOperatorPolicy"],
        },
        {
            "role": "image-registry",
            "namespace": "openshift-image-registry",
            "service_accounts": ["installer-cloud-credentials"],
            "policy_arns": [
                "arn:aws:iam::aws:policy/service-role/ROSAImageRegistryOperatorPolicy"
            ],
        },
        {
            "role": "ebs-csi",
            "namespace": "openshift-cluster-csi-drivers",
            "service_accounts": ["ebs-cloud-credentials"],
            "policy_arns": [
                "arn:aws:iam::aws:policy/service-role/ROSAAmazonEBSCSIDriverOperatorPolicy"
            ],
        },
    ],
}


def small_catalog() -> RoleCatalog:
    return RoleCatalog(RoleCatalogConfig.from_yaml(SMALL_CATALOG))


def make_spec(**overrides: Any) -> ClusterSpec:
    data: dict[str, Any] = {
        "name": "demo",
        "region": "us-east-1",
        "version": "4.14.5",
        "replicas": 2,
    }
    data.update(overrides)
    return ClusterSpec.model_validate(data)


def arn_for(kind: ResourceKind, name: str) -> str:
    if kind == ResourceKind.OIDC_PROVIDER:
        return f"arn:aws:iam::{ACCOUNT_ID}:oidc-provider/{name.removeprefix('https://')}"
    return f"arn:aws:iam::{ACCOUNT_ID}:role/{name}"


class FakeCloudBackend:
    """Records every call; failures are configured per resource name."""

    def __init__(self) -> None:
        self.resources: dict[tuple[ResourceKind, str], ResourceDescriptor] = {}
        self.calls: list[tuple[str, str]] = []
        self.created_specs: list[ResourceSpec] = []
        self.fail_create: dict[str, Exception] = {}
        self.create_delays: dict[str, float] = {}
        self.fail_delete: dict[str, Exception] = {}
        self.find_errors: dict[str, list[Exception]] = {}
        self.invisible_reads: dict[str, int] = {}

    def add_existing(
        self, resource: ResourceSpec, version: str | None = "__same__"
    ) -> ResourceDescriptor:
        descriptor = ResourceDescriptor(
            kind=resource.kind,
            name=resource.name,
            arn=arn_for(resource.kind, resource.name),
            version=resource.version if version == "__same__" else version,
            tags=dict(resource.tags),
        )
        self.resources[(resource.kind, resource.name)] = descriptor
        return descriptor

    @property
    def writes(self) -> list[tuple[str, str]]:
        return [call for call in self.calls if call[0] in ("create", "update", "delete")]

    def names(self, action: str) -> list[str]:
        return [name for called, name in self.calls if called == action]

    async def find_resource(self, kind: ResourceKind, name: str) -> ResourceDescriptor | None:
        self.calls.append(("find", name))
        errors = self.find_errors.get(name)
        if errors:
            raise errors.pop(0)
        if self.invisible_reads.get(name, 0) > 0:
            self.invisible_reads[name] -= 1
            return None
        return self.resources.get((kind, name))

    async def create_resource(self, kind: ResourceKind, spec: ResourceSpec) -> ResourceDescriptor:
        self.calls.append(("create", spec.name))
        self.created_specs.append(spec)
        if spec.name in self.create_delays:
            await asyncio.sleep(self.create_delays[spec.name])
        if spec.name in self.fail_create:
            raise self.fail_create[spec.name]
        descriptor = ResourceDescriptor(
            kind=kind,
            name=spec.name,
            arn=arn_for(kind, spec.name),
            version=spec.version,
            tags=dict(spec.tags),
        )
        self.resources[(kind, spec.name)] = descriptor
        return descriptor

    async def update_resource(
        self, spec: ResourceSpec, existing: ResourceDescriptor
    ) -> ResourceDescriptor:
        self.calls.append(("update", existing.name))
        updated = ResourceDescriptor(
            kind=existing.kind,
            name=existing.name,
            arn=existing.arn,
            version=spec.version,
            tags={**existing.tags, **spec.tags},
        )
        self.resources[(existing.kind, existing.name)] = updated
        return updated

    async def delete_resource(self, descriptor: ResourceDescriptor) -> None:
        self.calls.append(("delete", descriptor.name))
        if descriptor.name in self.fail_delete:
            raise self.fail_delete[descriptor.name]
        if self.resources.pop((descriptor.kind, descriptor.name), None) is None:
            raise NotFoundError(f"{descriptor.name} does not exist")

    async def list_cluster_resources(
        self, kind: ResourceKind, cluster_name: str
    ) -> list[ResourceDescriptor]:
        self.calls.append(("list", kind.value))
        return [
            descriptor
            for descriptor in self.resources.values()
            if descriptor.kind == kind and descriptor.tags.get(CLUSTER_TAG) == cluster_name
        ]


class FakeClusterService:
    """Returns ``statuses`` in order; the last one repeats."""

    def __init__(
        self,
        statuses: list[str | Exception] | None = None,
        *,
        submit_error: Exception | None = None,
        cluster_id: str = "2a5b0c1d",
        name: str = "demo",
        state: str = "ready",
        compute_nodes: int | None = 2,
        api_url: str | None = "https://api.demo.x1y2.p1.openshiftapps.com:6443",
    ) -> None:
        self.statuses: list[str | Exception] = list(statuses or ["ready"])
        self.submit_error = submit_error
        self.cluster_id = cluster_id
        self.name = name
        self.state = state
        self.compute_nodes = compute_nodes
        self.api_url = api_url
        self.submitted: list[dict[str, Any]] = []
        self.deleted: list[str] = []
        self.status_calls = 0
        self.addons: list[AddOn] = []
        self.installations: list[AddOnInstallation] = []

    async def submit_create(self, payload: dict[str, Any]) -> str:
        if self.submit_error is not None:
            raise self.submit_error
        self.submitted.append(payload)
        return self.cluster_id

    async def get_status(self, cluster_id: str) -> str:
        self.status_calls += 1
        if cluster_id in self.deleted:
            raise NotFoundError(f"Cluster {cluster_id} not found")
        item = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
        if isinstance(item, Exception):
            raise item
        return item

    async def delete_cluster(self, cluster_id: str) -> None:
        self.deleted.append(cluster_id)

    async def get_cluster(self, cluster_key: str) -> ClusterRecord:
        if cluster_key not in (self.cluster_id, self.name):
            raise NotFoundError(f"Cluster '{cluster_key}' not found")
        return ClusterRecord(
            id=self.cluster_id,
            name=self.name,
            state=self.state,
            api_url=self.api_url,
            compute_nodes=self.compute_nodes,
            region="us-east-1",
            version="4.14.5",
        )

    async def list_available_addons(self) -> list[AddOn]:
        return list(self.addons)

    async def list_cluster_addons(self, cluster_id: str) -> list[AddOnInstallation]:
        return list(self.installations)


class FakeClock:
    """Monotonic clock advanced only by ``sleep``."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class RecordingReporter:
    def __init__(self) -> None:
        self.stages: list[RunState] = []
        self.outcomes: list[tuple[str, str]] = []
        self.polls: list[tuple[str, str, int]] = []
        self.rollbacks: list[Any] = []
        self.on_poll: Callable[[str, str, int], None] | None = None

    def stage_changed(self, run: Any, previous: RunState, current: RunState) -> None:
        self.stages.append(current)

    def resource_outcome(self, run: Any, entry: Any) -> None:
        self.outcomes.append((entry.logical_name, entry.outcome.value if entry.outcome else ""))

    def poll_progress(self, cluster_id: str, status: str, attempt: int) -> None:
        self.polls.append((cluster_id, status, attempt))
        if self.on_poll is not None:
            self.on_poll(cluster_id, status, attempt)

    def rollback_outcome(self, run: Any, report: Any) -> None:
        self.rollbacks.append(report)


def build_poller(service: Any, clock: FakeClock) -> ConvergencePoller:
    return ConvergencePoller(
        service,
        initial_interval=10.0,
        max_interval=60.0,
        multiplier=2.0,
        max_transient_errors=2,
        clock=clock,
        sleep=clock.sleep,
    )


def build_orchestrator(
    backend: FakeCloudBackend,
    service: Any,
    clock: FakeClock,
    catalog: RoleCatalog | None = None,
    reporter: RecordingReporter | None = None,
    probe: Any = None,
) -> ProvisioningOrchestrator:
    poller = build_poller(service, clock)
    return ProvisioningOrchestrator(
        ResourceInspector(backend, catalog or small_catalog(), max_retries=2, sleep=clock.sleep),
        ResourceProvisioner(
            backend,
            max_workers=2,
            max_retries=2,
            read_after_write_attempts=3,
            read_after_write_delay=1.0,
            sleep=clock.sleep,
        ),
        service,
        poller,
        ClusterVerifier(probe=probe),
        RollbackCoordinator(
            backend,
            service,
            poller,
            cluster_delete_timeout=600.0,
            max_retries=1,
            sleep=clock.sleep,
        ),
        reporter=reporter,
        poll_timeout=300.0,
    )
