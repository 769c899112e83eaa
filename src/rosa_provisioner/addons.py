"""Add-on queries against the managed cluster service."""

from __future__ import annotations

import re

from rosa_provisioner.backends.base import ManagedClusterService
from rosa_provisioner.domain.models import AddOn, AddOnInstallation
from rosa_provisioner.errors import ConflictError, InvalidClusterKey

_CLUSTER_KEY_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")


def is_valid_cluster_key(cluster_key: str) -> bool:
    return bool(_CLUSTER_KEY_PATTERN.match(cluster_key))


async def list_available_addons(service: ManagedClusterService) -> list[AddOn]:
    return await service.list_available_addons()


async def list_cluster_addons(
    service: ManagedClusterService, cluster_key: str
) -> list[AddOnInstallation]:
    """List add-on installations of a cluster; the cluster must be ready."""
    if not is_valid_cluster_key(cluster_key):
        raise InvalidClusterKey(
            f"Cluster name, identifier or external identifier '{cluster_key}' isn't valid: "
            "it must contain only letters, digits, dashes and underscores"
        )
    cluster = await service.get_cluster(cluster_key)
    if cluster.state != "ready":
        raise ConflictError(
            f"Cluster '{cluster_key}' is not yet ready (state {cluster.state})",
            code="cluster_not_ready",
        )
    return await service.list_cluster_addons(cluster.id)
