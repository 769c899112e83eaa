"""Undo the work of a failed run."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from functools import partial

from rosa_provisioner.backends.base import CloudIdentityBackend, ManagedClusterService
from rosa_provisioner.domain.models import ProvisionedResource, ResourceKind
from rosa_provisioner.errors import (
    NotFoundError,
    RollbackIncomplete,
    TransientBackendError,
)
from rosa_provisioner.poller import ConvergencePoller, PollOutcome
from rosa_provisioner.utils.retry import Sleep, retry_transient

logger = logging.getLogger(__name__)


@dataclass
class RollbackReport:
    deleted: list[ProvisionedResource] = field(default_factory=list)
    failed: list[ProvisionedResource] = field(default_factory=list)
    skipped: list[ProvisionedResource] = field(default_factory=list)
    errors: dict[str, Exception] = field(default_factory=dict)

    @property
    def complete(self) -> bool:
        return not self.failed

    def failed_identifiers(self) -> list[str]:
        return [resource.identifier for resource in self.failed]

    def raise_if_incomplete(self) -> None:
        if self.failed:
            raise RollbackIncomplete(self.failed_identifiers())


class RollbackCoordinator:
    """Deletes what a run created, newest first.

    Only resources with ``owned=True`` are touched. Every deletion is
    attempted even when earlier ones fail; a resource that is already gone
    counts as deleted.
    """

    def __init__(
        self,
        backend: CloudIdentityBackend,
        service: ManagedClusterService,
        poller: ConvergencePoller,
        *,
        cluster_delete_timeout: float = 3600.0,
        max_retries: int = 3,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._backend = backend
        self._service = service
        self._poller = poller
        self._cluster_delete_timeout = cluster_delete_timeout
        self._max_retries = max_retries
        self._sleep = sleep

    async def rollback(self, resources: list[ProvisionedResource]) -> RollbackReport:
        report = RollbackReport()
        for resource in reversed(resources):
            if not resource.owned:
                report.skipped.append(resource)
                continue
            try:
                await self._delete(resource)
            except NotFoundError:
                logger.info("%s was already gone", resource.identifier)
                report.deleted.append(resource)
            except Exception as exc:
                logger.error("Could not delete %s: %s", resource.identifier, exc)
                report.failed.append(resource)
                report.errors[resource.identifier] = exc
            else:
                logger.info("Deleted %s (%s)", resource.logical_name, resource.identifier)
                report.deleted.append(resource)

        if report.failed:
            logger.error(
                "Rollback incomplete; manual cleanup required for: %s",
                ", ".join(report.failed_identifiers()),
            )
        return report

    async def _delete(self, resource: ProvisionedResource) -> None:
        if resource.kind == ResourceKind.CLUSTER:
            await self._delete_cluster(resource.identifier)
            return
        await retry_transient(
            partial(self._backend.delete_resource, resource.to_descriptor()),
            attempts=self._max_retries,
            sleep=self._sleep,
            label=f"delete of {resource.name}",
        )

    async def _delete_cluster(self, cluster_id: str) -> None:
        await retry_transient(
            partial(self._service.delete_cluster, cluster_id),
            attempts=self._max_retries,
            sleep=self._sleep,
            label=f"delete of cluster {cluster_id}",
        )
        deadline = self._poller.clock() + self._cluster_delete_timeout
        result = await self._poller.wait_until_gone(cluster_id, deadline)
        if result.outcome != PollOutcome.SUCCEEDED:
            raise TransientBackendError(
                f"Cluster {cluster_id} is still {result.status} after "
                f"{self._cluster_delete_timeout:.0f}s"
            )
