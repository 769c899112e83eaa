"""Drive one provisioning run from plan to a ready cluster, or roll it back."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from functools import partial

from rosa_provisioner.backends.base import ManagedClusterService
from rosa_provisioner.domain.models import (
    ClusterSpec,
    ProvisionedResource,
    ProvisioningRun,
    ResourceKind,
    ResourcePlan,
    RunState,
)
from rosa_provisioner.errors import (
    ConvergenceFailure,
    ConvergenceTimeout,
    ProvisionerError,
    RequestValidationError,
    RunCancelled,
)
from rosa_provisioner.inspector import ResourceInspector
from rosa_provisioner.poller import ConvergencePoller, PollOutcome
from rosa_provisioner.provisioner import ResourceProvisioner
from rosa_provisioner.reporting import LoggingReporter, RunReporter
from rosa_provisioner.request_builder import build_cluster_request, spec_violations
from rosa_provisioner.rollback import RollbackCoordinator, RollbackReport
from rosa_provisioner.utils.time import utc_now
from rosa_provisioner.verification import ClusterVerifier

logger = logging.getLogger(__name__)

CLUSTER_LOGICAL_NAME = "cluster"


@dataclass
class RunResult:
    run_id: str
    state: RunState
    cluster_id: str | None = None
    error: ProvisionerError | None = None
    rollback: RollbackReport | None = None
    plan: ResourcePlan | None = None
    created: list[ProvisionedResource] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.state == RunState.DONE


class ProvisioningOrchestrator:
    """Sequences the stages of a run and owns its state machine.

    Stages never decide whether an error is fatal; every error raised by a
    stage ends here, moves the run to ROLLING_BACK and then FAILED.
    """

    def __init__(
        self,
        inspector: ResourceInspector,
        provisioner: ResourceProvisioner,
        service: ManagedClusterService,
        poller: ConvergencePoller,
        verifier: ClusterVerifier,
        rollback: RollbackCoordinator,
        *,
        reporter: RunReporter | None = None,
        poll_timeout: float = 3600.0,
    ) -> None:
        self._inspector = inspector
        self._provisioner = provisioner
        self._service = service
        self._poller = poller
        self._verifier = verifier
        self._rollback = rollback
        self._reporter: RunReporter = reporter or LoggingReporter()
        self._poll_timeout = poll_timeout

    async def plan(self, spec: ClusterSpec) -> ResourcePlan:
        return await self._inspector.inspect(spec)

    async def upgrade_roles(self, spec: ClusterSpec) -> ResourcePlan:
        """Upgrade roles whose version tag differs from the one ``spec`` demands."""
        run = ProvisioningRun(spec=spec)
        run.plan = await self._inspector.inspect(spec)
        await self._provisioner.upgrade(
            run, on_outcome=partial(self._reporter.resource_outcome, run)
        )
        return run.plan

    async def run(
        self, spec: ClusterSpec, *, cancel_event: asyncio.Event | None = None
    ) -> RunResult:
        run = ProvisioningRun(spec=spec)
        logger.info("Starting run %s for cluster %s", run.run_id, spec.name)
        try:
            await self._execute(run, cancel_event)
        except asyncio.CancelledError:
            logger.warning("Run %s was cancelled; rolling back", run.run_id)
            await self._roll_back(run)
            raise
        except ProvisionerError as exc:
            logger.error("Run %s failed in %s: %s", run.run_id, run.state.value, exc)
            report = await self._roll_back(run)
            return self._result(run, error=exc, rollback=report)
        except Exception as exc:
            logger.exception("Run %s hit an unexpected error in %s", run.run_id, run.state.value)
            error = ProvisionerError(f"Unexpected error: {exc}", code="internal_error")
            report = await self._roll_back(run)
            return self._result(run, error=error, rollback=report)
        return self._result(run)

    async def _execute(self, run: ProvisioningRun, cancel_event: asyncio.Event | None) -> None:
        spec = run.spec
        violations = spec_violations(spec, self._inspector.required_resources(spec))
        if violations:
            raise RequestValidationError(violations)
        self._check_cancelled(cancel_event)
        run.plan = await self._inspector.inspect(spec)

        self._advance(run, RunState.PROVISIONING)
        self._check_cancelled(cancel_event)
        await self._provisioner.provision(
            run, on_outcome=partial(self._reporter.resource_outcome, run)
        )

        self._advance(run, RunState.SUBMITTING)
        self._check_cancelled(cancel_event)
        payload = build_cluster_request(spec, run.plan)
        cluster_id = await self._service.submit_create(payload)
        run.cluster_id = cluster_id
        await run.record(
            ProvisionedResource(
                logical_name=CLUSTER_LOGICAL_NAME,
                name=spec.name,
                identifier=cluster_id,
                kind=ResourceKind.CLUSTER,
                created_at=utc_now(),
                owned=True,
            )
        )

        self._advance(run, RunState.CONVERGING)
        deadline = self._poller.clock() + self._poll_timeout
        result = await self._poller.wait_until_ready(
            cluster_id,
            deadline,
            on_progress=self._reporter.poll_progress,
            cancel_event=cancel_event,
        )
        if result.outcome == PollOutcome.TIMED_OUT:
            raise ConvergenceTimeout(
                f"Cluster {cluster_id} was still {result.status} when the "
                f"{self._poll_timeout:.0f}s deadline elapsed"
            )
        if result.outcome == PollOutcome.FAILED:
            raise ConvergenceFailure(
                f"Cluster {cluster_id} entered state {result.status}", result.status
            )

        self._advance(run, RunState.VERIFYING)
        self._check_cancelled(cancel_event)
        record = await self._service.get_cluster(cluster_id)
        await self._verifier.verify(spec, record)

        self._advance(run, RunState.DONE)

    async def _roll_back(self, run: ProvisioningRun) -> RollbackReport:
        self._advance(run, RunState.ROLLING_BACK)
        report = await self._rollback.rollback(list(run.resources))
        self._reporter.rollback_outcome(run, report)
        self._advance(run, RunState.FAILED)
        return report

    def _advance(self, run: ProvisioningRun, state: RunState) -> None:
        previous = run.transition(state)
        self._reporter.stage_changed(run, previous, state)

    @staticmethod
    def _check_cancelled(cancel_event: asyncio.Event | None) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise RunCancelled("Run cancelled before the next stage started")

    @staticmethod
    def _result(
        run: ProvisioningRun,
        *,
        error: ProvisionerError | None = None,
        rollback: RollbackReport | None = None,
    ) -> RunResult:
        return RunResult(
            run_id=run.run_id,
            state=run.state,
            cluster_id=run.cluster_id,
            error=error,
            rollback=rollback,
            plan=run.plan,
            created=run.owned_resources(),
        )
