"""Capability interfaces the provisioning engine consumes."""

from __future__ import annotations

from typing import Any, Protocol

from rosa_provisioner.domain.models import (
    AddOn,
    AddOnInstallation,
    ClusterRecord,
    ResourceDescriptor,
    ResourceKind,
    ResourceSpec,
)


class CloudIdentityBackend(Protocol):
    """Cloud-side identity resources: OIDC providers and IAM roles.

    Implementations raise ``NotFoundError``, ``PermissionDeniedError``,
    ``ConflictError`` or ``TransientBackendError`` from ``rosa_provisioner.errors``.
    """

    async def find_resource(self, kind: ResourceKind, name: str) -> ResourceDescriptor | None:
        """Return the resource called ``name`` or None when it does not exist."""
        ...

    async def create_resource(self, kind: ResourceKind, spec: ResourceSpec) -> ResourceDescriptor:
        ...

    async def update_resource(
        self, spec: ResourceSpec, existing: ResourceDescriptor
    ) -> ResourceDescriptor:
        """Bring an existing role in line with ``spec`` (trust, policies, version tag)."""
        ...

    async def delete_resource(self, descriptor: ResourceDescriptor) -> None:
        ...

    async def list_cluster_resources(
        self, kind: ResourceKind, cluster_name: str
    ) -> list[ResourceDescriptor]:
        """Resources tagged as belonging to ``cluster_name``."""
        ...


class ManagedClusterService(Protocol):
    """The managed-service control plane API."""

    async def submit_create(self, payload: dict[str, Any]) -> str:
        """Submit a cluster creation request and return the new cluster id."""
        ...

    async def get_status(self, cluster_id: str) -> str:
        ...

    async def delete_cluster(self, cluster_id: str) -> None:
        ...

    async def get_cluster(self, cluster_key: str) -> ClusterRecord:
        """Look a cluster up by id, name or external id."""
        ...

    async def list_available_addons(self) -> list[AddOn]:
        ...

    async def list_cluster_addons(self, cluster_id: str) -> list[AddOnInstallation]:
        ...
