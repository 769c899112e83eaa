"""Wait for the managed service to converge a cluster."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from rosa_provisioner.backends.base import ManagedClusterService
from rosa_provisioner.errors import (
    NotFoundError,
    PollError,
    RunCancelled,
    TransientBackendError,
)
from rosa_provisioner.utils.retry import Sleep
from rosa_provisioner.utils.time import Clock

logger = logging.getLogger(__name__)

SUCCESS_STATES = frozenset({"ready"})
FAILURE_STATES = frozenset({"error", "failed"})
GONE_STATUS = "deleted"

ProgressCallback = Callable[[str, str, int], None]


def _noop(_cluster_id: str, _status: str, _attempt: int) -> None:
    return None


class PollOutcome(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


@dataclass(frozen=True)
class PollResult:
    outcome: PollOutcome
    status: str
    attempts: int

    @property
    def succeeded(self) -> bool:
        return self.outcome == PollOutcome.SUCCEEDED


class ConvergencePoller:
    """Polls cluster status with exponential backoff until a terminal state.

    ``deadline`` is an absolute value on the injected ``clock``. Consecutive
    transient query errors beyond ``max_transient_errors`` raise ``PollError``,
    which is distinct from the cluster reporting a failure state.
    """

    def __init__(
        self,
        service: ManagedClusterService,
        *,
        initial_interval: float = 10.0,
        max_interval: float = 60.0,
        multiplier: float = 1.5,
        max_transient_errors: int = 5,
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        if initial_interval <= 0 or max_interval < initial_interval:
            raise ValueError("poll intervals must be positive and max >= initial")
        if multiplier < 1:
            raise ValueError("poll multiplier must be >= 1")
        self._service = service
        self._initial_interval = initial_interval
        self._max_interval = max_interval
        self._multiplier = multiplier
        self._max_transient_errors = max_transient_errors
        self._clock = clock
        self._sleep = sleep

    @property
    def clock(self) -> Clock:
        return self._clock

    async def wait_until_ready(
        self,
        cluster_id: str,
        deadline: float,
        *,
        on_progress: ProgressCallback = _noop,
        cancel_event: asyncio.Event | None = None,
    ) -> PollResult:
        return await self._poll(
            cluster_id,
            deadline,
            on_progress,
            cancel_event,
            gone_is_success=False,
        )

    async def wait_until_gone(
        self,
        cluster_id: str,
        deadline: float,
        *,
        on_progress: ProgressCallback = _noop,
        cancel_event: asyncio.Event | None = None,
    ) -> PollResult:
        """Wait for a deleted cluster to disappear from the service."""
        return await self._poll(
            cluster_id,
            deadline,
            on_progress,
            cancel_event,
            gone_is_success=True,
        )

    async def _poll(
        self,
        cluster_id: str,
        deadline: float,
        on_progress: ProgressCallback,
        cancel_event: asyncio.Event | None,
        *,
        gone_is_success: bool,
    ) -> PollResult:
        interval = self._initial_interval
        attempts = 0
        consecutive_errors = 0
        status = "unknown"

        while True:
            if cancel_event is not None and cancel_event.is_set():
                raise RunCancelled(f"Cancelled while waiting for cluster {cluster_id}")

            attempts += 1
            try:
                status = await self._service.get_status(cluster_id)
            except NotFoundError:
                if not gone_is_success:
                    raise
                on_progress(cluster_id, GONE_STATUS, attempts)
                return PollResult(PollOutcome.SUCCEEDED, GONE_STATUS, attempts)
            except TransientBackendError as exc:
                consecutive_errors += 1
                logger.warning(
                    "Status query %d for %s failed (%d consecutive): %s",
                    attempts,
                    cluster_id,
                    consecutive_errors,
                    exc,
                )
                if consecutive_errors > self._max_transient_errors:
                    raise PollError(
                        f"Status of cluster {cluster_id} could not be read after "
                        f"{consecutive_errors} consecutive attempts: {exc}"
                    ) from exc
            else:
                consecutive_errors = 0
                on_progress(cluster_id, status, attempts)
                if not gone_is_success:
                    if status in SUCCESS_STATES:
                        return PollResult(PollOutcome.SUCCEEDED, status, attempts)
                    if status in FAILURE_STATES:
                        return PollResult(PollOutcome.FAILED, status, attempts)

            remaining = deadline - self._clock()
            if remaining <= 0:
                logger.warning(
                    "Deadline elapsed for cluster %s with status %s after %d polls",
                    cluster_id,
                    status,
                    attempts,
                )
                return PollResult(PollOutcome.TIMED_OUT, status, attempts)

            await self._pause(min(interval, remaining), cancel_event)
            interval = min(interval * self._multiplier, self._max_interval)

    async def _pause(self, seconds: float, cancel_event: asyncio.Event | None) -> None:
        if cancel_event is None:
            await self._sleep(seconds)
            return

        sleeper = asyncio.ensure_future(self._sleep(seconds))
        waiter = asyncio.ensure_future(cancel_event.wait())
        try:
            await asyncio.wait({sleeper, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            pending = [task for task in (sleeper, waiter) if not task.done()]
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
        if cancel_event.is_set():
            raise RunCancelled("Cancelled while waiting between status polls")
