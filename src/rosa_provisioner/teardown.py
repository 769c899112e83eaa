"""Delete an existing cluster and, optionally, its per-cluster identity resources."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from functools import partial

from rosa_provisioner.backends.base import CloudIdentityBackend, ManagedClusterService
from rosa_provisioner.domain.models import ClusterRecord, ResourceDescriptor, ResourceKind
from rosa_provisioner.errors import (
    ConvergenceTimeout,
    NotFoundError,
    RollbackIncomplete,
)
from rosa_provisioner.poller import ConvergencePoller, PollOutcome
from rosa_provisioner.utils.retry import Sleep, retry_transient

logger = logging.getLogger(__name__)

# Account roles are shared between clusters and are never removed here.
_PER_CLUSTER_KINDS = (ResourceKind.OPERATOR_ROLE, ResourceKind.OIDC_PROVIDER)


@dataclass
class TeardownReport:
    cluster: ClusterRecord
    deleted: list[ResourceDescriptor] = field(default_factory=list)
    failed: list[ResourceDescriptor] = field(default_factory=list)
    errors: dict[str, Exception] = field(default_factory=dict)

    def raise_if_incomplete(self) -> None:
        if self.failed:
            raise RollbackIncomplete([descriptor.arn for descriptor in self.failed])


class ClusterTeardown:
    def __init__(
        self,
        service: ManagedClusterService,
        backend: CloudIdentityBackend,
        poller: ConvergencePoller,
        *,
        max_retries: int = 3,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._service = service
        self._backend = backend
        self._poller = poller
        self._max_retries = max_retries
        self._sleep = sleep

    async def delete(
        self,
        cluster_key: str,
        deadline: float,
        *,
        delete_identity: bool = False,
        cancel_event: asyncio.Event | None = None,
    ) -> TeardownReport:
        cluster = await self._service.get_cluster(cluster_key)
        logger.info("Deleting cluster %s (%s)", cluster.name, cluster.id)
        await self._service.delete_cluster(cluster.id)

        result = await self._poller.wait_until_gone(
            cluster.id, deadline, cancel_event=cancel_event
        )
        if result.outcome != PollOutcome.SUCCEEDED:
            raise ConvergenceTimeout(
                f"Cluster {cluster.id} was still {result.status} when the deadline elapsed"
            )

        report = TeardownReport(cluster=cluster)
        if delete_identity:
            for kind in _PER_CLUSTER_KINDS:
                for descriptor in await self._backend.list_cluster_resources(kind, cluster.name):
                    await self._delete_identity(descriptor, report)
        return report

    async def _delete_identity(
        self, descriptor: ResourceDescriptor, report: TeardownReport
    ) -> None:
        try:
            await retry_transient(
                partial(self._backend.delete_resource, descriptor),
                attempts=self._max_retries,
                sleep=self._sleep,
                label=f"delete of {descriptor.name}",
            )
        except NotFoundError:
            report.deleted.append(descriptor)
        except Exception as exc:
            logger.error("Could not delete %s: %s", descriptor.arn, exc)
            report.failed.append(descriptor)
            report.errors[descriptor.arn] = exc
        else:
            report.deleted.append(descriptor)
