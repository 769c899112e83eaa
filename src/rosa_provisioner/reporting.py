"""Run events emitted by the orchestrator.

The engine never renders anything itself. Callers pass a ``RunReporter``;
the CLI renders events as progress text, other callers can simply log them.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Protocol

from rosa_provisioner.domain.models import PlanEntry, ProvisioningRun, RunState

if TYPE_CHECKING:
    from rosa_provisioner.rollback import RollbackReport

logger = logging.getLogger(__name__)


class RunReporter(Protocol):
    def stage_changed(self, run: ProvisioningRun, previous: RunState, current: RunState) -> None:
        ...

    def resource_outcome(self, run: ProvisioningRun, entry: PlanEntry) -> None:
        ...

    def poll_progress(self, cluster_id: str, status: str, attempt: int) -> None:
        ...

    def rollback_outcome(self, run: ProvisioningRun, report: "RollbackReport") -> None:
        ...


class LoggingReporter:
    """Reporter that writes every event to the module logger."""

    def stage_changed(self, run: ProvisioningRun, previous: RunState, current: RunState) -> None:
        logger.info(
            "Run %s: %s -> %s", run.run_id[:8], previous.value, current.value
        )

    def resource_outcome(self, run: ProvisioningRun, entry: PlanEntry) -> None:
        outcome = entry.outcome.value if entry.outcome else "pending"
        logger.info(
            "Run %s: %s %s (%s)",
            run.run_id[:8],
            entry.logical_name,
            outcome,
            entry.identifier or entry.resource.name,
        )

    def poll_progress(self, cluster_id: str, status: str, attempt: int) -> None:
        logger.info("Cluster %s is %s (poll %d)", cluster_id, status, attempt)

    def rollback_outcome(self, run: ProvisioningRun, report: "RollbackReport") -> None:
        if report.failed:
            logger.error(
                "Run %s: rollback left %d resource(s) behind: %s",
                run.run_id[:8],
                len(report.failed),
                ", ".join(resource.identifier for resource in report.failed),
            )
        else:
            logger.info(
                "Run %s: rollback removed %d resource(s)", run.run_id[:8], len(report.deleted)
            )
