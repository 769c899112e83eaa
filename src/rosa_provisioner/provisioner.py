"""Create the identity resources a ResourcePlan marks as missing."""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from collections.abc import Callable

from rosa_provisioner.backends.base import CloudIdentityBackend
from rosa_provisioner.catalog.catalog import render_operator_trust_policy
from rosa_provisioner.domain.models import (
    Outcome,
    PlanEntry,
    PlanStatus,
    ProvisionedResource,
    ProvisioningRun,
    ResourceDescriptor,
    ResourceKind,
    ResourcePlan,
    ResourceSpec,
)
from rosa_provisioner.errors import (
    ConflictError,
    ProvisionerError,
    ProvisioningError,
    TransientBackendError,
)
from rosa_provisioner.utils.retry import Sleep
from rosa_provisioner.utils.time import utc_now

logger = logging.getLogger(__name__)

OutcomeCallback = Callable[[PlanEntry], None]


def _noop(_entry: PlanEntry) -> None:
    return None


class ResourceProvisioner:
    """Realizes a plan tier by tier: OIDC provider, account roles, operator roles.

    Entries within a tier have no dependencies on each other and are created
    by a bounded pool of workers. Every created resource is recorded on the
    run before its worker finishes, so ``run.resources`` always holds exactly
    what exists. The provisioner never deletes anything; on failure it stops
    starting new work and raises ``ProvisioningError``.
    """

    def __init__(
        self,
        backend: CloudIdentityBackend,
        *,
        max_workers: int = 4,
        max_retries: int = 3,
        read_after_write_attempts: int = 5,
        read_after_write_delay: float = 2.0,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._backend = backend
        self._max_workers = max_workers
        self._max_retries = max_retries
        self._raw_attempts = read_after_write_attempts
        self._raw_delay = read_after_write_delay
        self._sleep = sleep

    async def provision(
        self,
        run: ProvisioningRun,
        on_outcome: OutcomeCallback = _noop,
    ) -> list[ProvisionedResource]:
        plan = run.plan
        if plan is None:
            raise ProvisionerError("Cannot provision a run without a plan")

        mismatched = plan.with_status(PlanStatus.VERSION_MISMATCH)
        if mismatched:
            raise ConflictError(
                "Resources exist with a different version and must be upgraded first: "
                + ", ".join(entry.logical_name for entry in mismatched)
            )

        for tier in plan.tiers():
            for entry in tier:
                if entry.status == PlanStatus.EXISTING and entry.existing is not None:
                    entry.outcome = Outcome.REUSED
                    entry.realized = entry.existing
                    await run.record(self._provisioned(entry, entry.existing, owned=False))
                    on_outcome(entry)

            pending = [entry for entry in tier if entry.status == PlanStatus.TO_CREATE]
            if not pending:
                continue
            failures = await self._create_tier(run, plan, pending, on_outcome)
            if failures:
                raise ProvisioningError(failures)

        return list(run.resources)

    async def upgrade(
        self,
        run: ProvisioningRun,
        on_outcome: OutcomeCallback = _noop,
    ) -> list[PlanEntry]:
        """Upgrade VERSION_MISMATCH roles in place.

        Only called after an explicit user confirmation; ``provision`` never
        mutates an existing resource.
        """
        plan = run.plan
        if plan is None:
            raise ProvisionerError("Cannot upgrade a run without a plan")

        upgraded: list[PlanEntry] = []
        for entry in plan.with_status(PlanStatus.VERSION_MISMATCH):
            if entry.existing is None:
                continue
            if entry.kind == ResourceKind.OIDC_PROVIDER:
                entry.outcome = Outcome.FAILED
                entry.error = ConflictError(
                    f"OIDC provider {entry.existing.arn} cannot be upgraded in place"
                )
                on_outcome(entry)
                continue
            try:
                resource = self._render(run, plan, entry.resource)
                descriptor = await self._backend.update_resource(resource, entry.existing)
            except ProvisionerError as exc:
                entry.outcome = Outcome.FAILED
                entry.error = exc
                on_outcome(entry)
                continue
            entry.outcome = Outcome.REUSED
            entry.realized = descriptor
            upgraded.append(entry)
            on_outcome(entry)
        return upgraded

    async def _create_tier(
        self,
        run: ProvisioningRun,
        plan: ResourcePlan,
        pending: list[PlanEntry],
        on_outcome: OutcomeCallback,
    ) -> dict[str, Exception]:
        semaphore = asyncio.Semaphore(self._max_workers)
        failures: dict[str, Exception] = {}

        def fail(entry: PlanEntry, exc: Exception) -> None:
            entry.outcome = Outcome.FAILED
            entry.error = exc
            failures[entry.logical_name] = exc
            on_outcome(entry)

        async def worker(entry: PlanEntry) -> None:
            async with semaphore:
                if failures:
                    return
                try:
                    resource = self._render(run, plan, entry.resource)
                    descriptor = await self._create(resource)
                except ProvisionerError as exc:
                    logger.error("Creating %s failed: %s", entry.logical_name, exc)
                    fail(entry, exc)
                    return
                except Exception as exc:
                    logger.exception("Unexpected error creating %s", entry.logical_name)
                    fail(entry, exc)
                    return

                await run.record(self._provisioned(entry, descriptor, owned=True))
                entry.outcome = Outcome.CREATED
                entry.realized = descriptor
                on_outcome(entry)

                try:
                    await self._confirm_visible(descriptor)
                except ProvisionerError as exc:
                    fail(entry, exc)
                except Exception as exc:
                    logger.exception("Unexpected error reading back %s", entry.logical_name)
                    fail(entry, exc)

        # All workers settle before returning; nothing is recorded once rollback starts.
        await asyncio.gather(*(worker(entry) for entry in pending))
        return failures

    def _render(
        self, run: ProvisioningRun, plan: ResourcePlan, resource: ResourceSpec
    ) -> ResourceSpec:
        """Fill in the operator trust policy, which needs the OIDC provider ARN."""
        if resource.kind != ResourceKind.OPERATOR_ROLE:
            return resource
        oidc_entries = plan.by_kind(ResourceKind.OIDC_PROVIDER)
        oidc_arn = oidc_entries[0].identifier if oidc_entries else None
        if oidc_arn is None:
            raise ProvisionerError(
                f"Cannot create {resource.logical_name}: OIDC provider is not available"
            )
        trust_policy = render_operator_trust_policy(resource, oidc_arn, run.spec.oidc_issuer_url)
        return dataclasses.replace(resource, trust_policy=trust_policy)

    async def _create(self, resource: ResourceSpec) -> ResourceDescriptor:
        attempt = 0
        while True:
            try:
                return await self._backend.create_resource(resource.kind, resource)
            except TransientBackendError:
                if attempt >= self._max_retries:
                    raise
                await self._sleep(min(0.5 * (2**attempt), 8.0))
                attempt += 1
                # The failed call may still have gone through.
                existing = await self._find_quietly(resource)
                if existing is not None:
                    logger.info("%s exists after a transient create error", resource.name)
                    return existing

    async def _find_quietly(self, resource: ResourceSpec) -> ResourceDescriptor | None:
        try:
            return await self._backend.find_resource(resource.kind, resource.name)
        except TransientBackendError:
            return None

    async def _confirm_visible(self, descriptor: ResourceDescriptor) -> None:
        """Wait until a freshly created resource can be read back."""
        for attempt in range(self._raw_attempts):
            try:
                found = await self._backend.find_resource(descriptor.kind, descriptor.name)
            except TransientBackendError:
                found = None
            if found is not None:
                return
            if attempt < self._raw_attempts - 1:
                await self._sleep(self._raw_delay)
        raise TransientBackendError(
            f"{descriptor.name} was created but is still not visible "
            f"after {self._raw_attempts} reads"
        )

    @staticmethod
    def _provisioned(
        entry: PlanEntry, descriptor: ResourceDescriptor, *, owned: bool
    ) -> ProvisionedResource:
        return ProvisionedResource(
            logical_name=entry.logical_name,
            name=descriptor.name,
            identifier=descriptor.arn,
            kind=entry.kind,
            created_at=utc_now(),
            owned=owned,
        )
