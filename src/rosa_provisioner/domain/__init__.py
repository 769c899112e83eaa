"""Domain model for provisioning runs."""

from rosa_provisioner.domain.models import (
    AddOn,
    AddOnInstallation,
    ClusterRecord,
    ClusterSpec,
    Outcome,
    PlanEntry,
    PlanStatus,
    ProvisionedResource,
    ProvisioningRun,
    ResourceDescriptor,
    ResourceKind,
    ResourcePlan,
    ResourceSpec,
    RunState,
)

__all__ = [
    "AddOn",
    "AddOnInstallation",
    "ClusterRecord",
    "ClusterSpec",
    "Outcome",
    "PlanEntry",
    "PlanStatus",
    "ProvisionedResource",
    "ProvisioningRun",
    "ResourceDescriptor",
    "ResourceKind",
    "ResourcePlan",
    "ResourceSpec",
    "RunState",
]
