"""Discover which identity resources already exist for a cluster."""

from __future__ import annotations

import asyncio
import logging
from functools import partial

from rosa_provisioner.backends.base import CloudIdentityBackend
from rosa_provisioner.catalog.catalog import RoleCatalog
from rosa_provisioner.domain.models import (
    ClusterSpec,
    PlanEntry,
    PlanStatus,
    ResourceDescriptor,
    ResourcePlan,
    ResourceSpec,
)
from rosa_provisioner.errors import PartialPlanError, TransientBackendError
from rosa_provisioner.utils.retry import Sleep, retry_transient

logger = logging.getLogger(__name__)


def classify(resource: ResourceSpec, existing: ResourceDescriptor | None) -> PlanStatus:
    if existing is None:
        return PlanStatus.TO_CREATE
    if existing.version is None or existing.version == resource.version:
        return PlanStatus.EXISTING
    return PlanStatus.VERSION_MISMATCH


class ResourceInspector:
    """Builds a ResourcePlan by looking every required resource up by name.

    Read-only. Transient lookup failures are retried; if any lookup still
    fails the whole inspection fails with ``PartialPlanError`` rather than
    returning a plan with holes in it.
    """

    def __init__(
        self,
        backend: CloudIdentityBackend,
        catalog: RoleCatalog,
        *,
        max_retries: int = 3,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._backend = backend
        self._catalog = catalog
        self._max_retries = max_retries
        self._sleep = sleep

    def required_resources(self, spec: ClusterSpec) -> list[ResourceSpec]:
        return self._catalog.required_resources(spec)

    async def inspect(self, spec: ClusterSpec) -> ResourcePlan:
        entries: list[PlanEntry] = []
        unresolved: list[str] = []

        for resource in self._catalog.required_resources(spec):
            try:
                existing = await retry_transient(
                    partial(self._backend.find_resource, resource.kind, resource.name),
                    attempts=self._max_retries,
                    sleep=self._sleep,
                    label=f"lookup of {resource.name}",
                )
            except TransientBackendError as exc:
                logger.warning("Could not inspect %s: %s", resource.logical_name, exc)
                unresolved.append(resource.logical_name)
                continue

            status = classify(resource, existing)
            if status == PlanStatus.VERSION_MISMATCH and existing is not None:
                logger.warning(
                    "%s (%s) has version %s, cluster requires %s",
                    resource.logical_name,
                    existing.arn,
                    existing.version,
                    resource.version,
                )
            entries.append(PlanEntry(resource=resource, status=status, existing=existing))

        if unresolved:
            raise PartialPlanError(
                "Could not determine the state of: " + ", ".join(unresolved),
                unresolved,
            )

        plan = ResourcePlan(entries)
        logger.info(
            "Plan for %s: %d to create, %d existing, %d version mismatch",
            spec.name,
            len(plan.with_status(PlanStatus.TO_CREATE)),
            len(plan.with_status(PlanStatus.EXISTING)),
            len(plan.with_status(PlanStatus.VERSION_MISMATCH)),
        )
        return plan
