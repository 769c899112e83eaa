"""Domain objects for a provisioning run."""

from __future__ import annotations

import asyncio
from collections import OrderedDict
from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Literal
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator

from rosa_provisioner.errors import InvalidTransition
from rosa_provisioner.utils.time import utc_now

DEFAULT_OIDC_ENDPOINT_BASE = "https://rh-oidc.s3.us-east-1.amazonaws.com"


class ClusterSpec(BaseModel):
    """Immutable user intent for one cluster."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str
    region: str
    version: str
    channel_group: str = Field(default="stable")
    security_mode: Literal["sts", "direct"] = Field(default="sts")
    hosted_control_plane: bool = Field(default=False)

    compute_machine_type: str = Field(default="m5.xlarge")
    replicas: int = Field(default=2)
    multi_az: bool = Field(default=False)

    network_type: str = Field(default="OVNKubernetes")
    machine_cidr: str = Field(default="10.0.0.0/16")
    service_cidr: str = Field(default="172.30.0.0/16")
    pod_cidr: str = Field(default="10.128.0.0/14")
    host_prefix: int = Field(default=23)
    private: bool = Field(default=False)
    subnet_ids: tuple[str, ...] = Field(default=())
    availability_zones: tuple[str, ...] = Field(default=())

    account_roles_prefix: str = Field(default="ManagedOpenShift")
    operator_roles_prefix: str | None = Field(default=None)
    role_version: str | None = Field(
        default=None,
        description="Version tag demanded of identity roles; defaults to major.minor of version",
    )
    oidc_endpoint_base: str = Field(default=DEFAULT_OIDC_ENDPOINT_BASE)
    features: frozenset[str] = Field(default_factory=frozenset)
    tags: dict[str, str] = Field(default_factory=dict)

    @field_validator("subnet_ids", "availability_zones", mode="before")
    @classmethod
    def _validate_tuples(cls, v: Any) -> tuple:
        if v is None:
            return ()
        return tuple(v)

    @field_validator("features", mode="before")
    @classmethod
    def _validate_features(cls, v: Any) -> frozenset:
        if v is None:
            return frozenset()
        return frozenset(str(item).strip().lower() for item in v)

    @field_validator("version")
    @classmethod
    def _strip_version_prefix(cls, v: str) -> str:
        return v.strip().removeprefix("openshift-v")

    @property
    def is_sts(self) -> bool:
        return self.security_mode == "sts"

    @property
    def demanded_role_version(self) -> str:
        if self.role_version:
            return self.role_version
        return ".".join(self.version.split(".")[:2])

    @property
    def effective_operator_roles_prefix(self) -> str:
        return self.operator_roles_prefix or self.name

    @property
    def oidc_issuer_url(self) -> str:
        return f"{self.oidc_endpoint_base.rstrip('/')}/{self.name}"

    def has_feature(self, feature: str) -> bool:
        return feature.lower() in self.features


class ResourceKind(str, Enum):
    OIDC_PROVIDER = "oidc_provider"
    ACCOUNT_ROLE = "account_role"
    OPERATOR_ROLE = "operator_role"
    CLUSTER = "cluster"

    @property
    def depth(self) -> int:
        """Dependency depth; resources at lower depth are created first."""
        return _KIND_DEPTH[self]


_KIND_DEPTH = {
    ResourceKind.OIDC_PROVIDER: 0,
    ResourceKind.ACCOUNT_ROLE: 1,
    ResourceKind.OPERATOR_ROLE: 2,
    ResourceKind.CLUSTER: 3,
}


@dataclass(frozen=True)
class ResourceSpec:
    """Desired state of one identity resource, derived from the role catalog."""

    kind: ResourceKind
    name: str
    logical_name: str
    version: str
    role: str = ""
    namespace: str = ""
    service_accounts: tuple[str, ...] = ()
    trust_policy: dict[str, Any] | None = None
    policy_arns: tuple[str, ...] = ()
    inline_policy: dict[str, Any] | None = None
    tags: dict[str, str] = field(default_factory=dict)
    path: str = "/"
    client_ids: tuple[str, ...] = ()
    thumbprints: tuple[str, ...] = ()


@dataclass(frozen=True)
class ResourceDescriptor:
    """A resource as the cloud backend reports it."""

    kind: ResourceKind
    name: str
    arn: str
    version: str | None = None
    tags: dict[str, str] = field(default_factory=dict)


class PlanStatus(str, Enum):
    EXISTING = "existing"
    TO_CREATE = "to_create"
    VERSION_MISMATCH = "version_mismatch"


class Outcome(str, Enum):
    CREATED = "created"
    REUSED = "reused"
    FAILED = "failed"


@dataclass
class PlanEntry:
    resource: ResourceSpec
    status: PlanStatus
    existing: ResourceDescriptor | None = None
    outcome: Outcome | None = None
    realized: ResourceDescriptor | None = None
    error: Exception | None = None

    @property
    def logical_name(self) -> str:
        return self.resource.logical_name

    @property
    def kind(self) -> ResourceKind:
        return self.resource.kind

    @property
    def is_ready(self) -> bool:
        return self.outcome in (Outcome.CREATED, Outcome.REUSED)

    @property
    def identifier(self) -> str | None:
        descriptor = self.realized or self.existing
        return descriptor.arn if descriptor else None


class ResourcePlan:
    """Ordered mapping of logical resource name to plan entry."""

    def __init__(self, entries: list[PlanEntry]) -> None:
        self._entries: OrderedDict[str, PlanEntry] = OrderedDict(
            (entry.logical_name, entry) for entry in entries
        )

    def __iter__(self) -> Iterator[PlanEntry]:
        return iter(self._entries.values())

    def __len__(self) -> int:
        return len(self._entries)

    def __getitem__(self, logical_name: str) -> PlanEntry:
        return self._entries[logical_name]

    def __contains__(self, logical_name: object) -> bool:
        return logical_name in self._entries

    def by_kind(self, kind: ResourceKind) -> list[PlanEntry]:
        return [entry for entry in self if entry.kind == kind]

    def with_status(self, status: PlanStatus) -> list[PlanEntry]:
        return [entry for entry in self if entry.status == status]

    def tiers(self) -> list[list[PlanEntry]]:
        """Group entries by dependency depth, shallowest first."""
        grouped: dict[int, list[PlanEntry]] = {}
        for entry in self:
            grouped.setdefault(entry.kind.depth, []).append(entry)
        return [grouped[depth] for depth in sorted(grouped)]

    def not_ready(self) -> list[PlanEntry]:
        return [entry for entry in self if not entry.is_ready]

    def is_complete(self) -> bool:
        return not self.not_ready()

    def identifiers(self) -> dict[str, str]:
        return {
            entry.logical_name: entry.identifier
            for entry in self
            if entry.identifier is not None
        }

    def role_arn(self, kind: ResourceKind, role: str) -> str | None:
        for entry in self.by_kind(kind):
            if entry.resource.role == role:
                return entry.identifier
        return None


@dataclass(frozen=True)
class ProvisionedResource:
    """A resource realized (or adopted) during a run."""

    logical_name: str
    name: str
    identifier: str
    kind: ResourceKind
    created_at: datetime
    owned: bool

    def to_descriptor(self) -> ResourceDescriptor:
        return ResourceDescriptor(kind=self.kind, name=self.name, arn=self.identifier)


class RunState(str, Enum):
    PLANNING = "planning"
    PROVISIONING = "provisioning"
    SUBMITTING = "submitting"
    CONVERGING = "converging"
    VERIFYING = "verifying"
    DONE = "done"
    ROLLING_BACK = "rolling_back"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (RunState.DONE, RunState.FAILED)


_ALLOWED_TRANSITIONS: dict[RunState, frozenset[RunState]] = {
    RunState.PLANNING: frozenset({RunState.PROVISIONING, RunState.ROLLING_BACK}),
    RunState.PROVISIONING: frozenset({RunState.SUBMITTING, RunState.ROLLING_BACK}),
    RunState.SUBMITTING: frozenset({RunState.CONVERGING, RunState.ROLLING_BACK}),
    RunState.CONVERGING: frozenset({RunState.VERIFYING, RunState.ROLLING_BACK}),
    RunState.VERIFYING: frozenset({RunState.DONE, RunState.ROLLING_BACK}),
    RunState.ROLLING_BACK: frozenset({RunState.FAILED}),
    RunState.DONE: frozenset(),
    RunState.FAILED: frozenset(),
}


@dataclass
class ProvisioningRun:
    spec: ClusterSpec
    run_id: str = field(default_factory=lambda: uuid4().hex)
    plan: ResourcePlan | None = None
    resources: list[ProvisionedResource] = field(default_factory=list)
    state: RunState = RunState.PLANNING
    history: list[RunState] = field(default_factory=lambda: [RunState.PLANNING])
    cluster_id: str | None = None
    started_at: datetime = field(default_factory=utc_now)
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    def transition(self, new_state: RunState) -> RunState:
        """Move forward to ``new_state`` and return the previous state."""
        if new_state in self.history or new_state not in _ALLOWED_TRANSITIONS[self.state]:
            raise InvalidTransition(
                f"Run {self.run_id} cannot move from {self.state.value} to {new_state.value}"
            )
        previous = self.state
        self.state = new_state
        self.history.append(new_state)
        return previous

    @property
    def entered_rollback(self) -> bool:
        return RunState.ROLLING_BACK in self.history

    async def record(self, resource: ProvisionedResource) -> None:
        async with self._lock:
            self.resources.append(resource)

    def owned_resources(self) -> list[ProvisionedResource]:
        return [resource for resource in self.resources if resource.owned]


@dataclass(frozen=True)
class ClusterRecord:
    """Remote cluster view as last reported by the managed service."""

    id: str
    name: str
    state: str
    api_url: str | None = None
    console_url: str | None = None
    compute_nodes: int | None = None
    region: str | None = None
    version: str | None = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "ClusterRecord":
        nodes = data.get("nodes") or {}
        compute = nodes.get("compute")
        if compute is None:
            autoscale = nodes.get("autoscale_compute") or {}
            compute = autoscale.get("min_replicas")
        status = data.get("status") or {}
        state = data.get("state") or status.get("state") or "unknown"
        return cls(
            id=str(data.get("id", "")),
            name=str(data.get("name", "")),
            state=str(state).lower(),
            api_url=(data.get("api") or {}).get("url") or None,
            console_url=(data.get("console") or {}).get("url") or None,
            compute_nodes=int(compute) if compute is not None else None,
            region=(data.get("region") or {}).get("id"),
            version=(data.get("version") or {}).get("raw_id")
            or (data.get("version") or {}).get("id"),
        )


@dataclass(frozen=True)
class AddOn:
    id: str
    name: str
    available: bool


@dataclass(frozen=True)
class AddOnInstallation:
    id: str
    name: str
    state: str
