"""Application health polling."""

import time
from dataclasses import dataclass
from typing import Callable

from argocd_deploy.controller.base import Controller
from argocd_deploy.core.logging import StructuredLogger
from argocd_deploy.deploy.models import HealthStatus, OperationOutcome

logger = StructuredLogger(__name__)


@dataclass(frozen=True)
class HealthObservation:
    """Final reading of one observe() call."""

    status: HealthStatus
    outcome: OperationOutcome
    elapsed: float
    polls: int

    @property
    def ok(self) -> bool:
        return self.outcome.ok


class HealthMonitor:
    """Polls an application until it is healthy, fails or runs out of time.

    With fail_fast the first Degraded or Missing reading ends the watch.
    Without it those readings keep polling like `argocd app wait --health`,
    so only Healthy or the deadline can end it.
    """

    def __init__(
        self,
        controller: Controller,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._controller = controller
        self._sleep = sleep
        self._clock = clock

    def classify(self, app: str) -> HealthStatus:
        """Take one health reading."""
        result = self._controller.get_application(app)
        if not result.ok or result.payload is None:
            logger.debug("Health poll failed", app=app, error=result.error)
            return HealthStatus.UNKNOWN

        status = result.payload
        if status.operation_running:
            return HealthStatus.PROGRESSING
        return HealthStatus.from_controller(status.health_status)

    def observe(
        self,
        app: str,
        interval: float,
        timeout: float,
        fail_fast: bool = False,
    ) -> HealthObservation:
        """Poll every `interval` seconds for at most `timeout` seconds."""
        started = self._clock()
        deadline = started + timeout
        polls = 0

        logger.info(
            "Monitoring application health",
            app=app,
            interval=interval,
            timeout=timeout,
            fail_fast=fail_fast,
        )

        while True:
            status = self.classify(app)
            polls += 1
            elapsed = self._clock() - started
            logger.debug("Health reading", app=app, status=status.value, poll=polls)

            if status.is_success:
                logger.info("Application is healthy", app=app, elapsed=f"{elapsed:.0f}s")
                return HealthObservation(status, OperationOutcome.SUCCESS, elapsed, polls)

            if fail_fast and status.is_failure:
                logger.warning("Application health failed", app=app, status=status.value)
                return HealthObservation(status, OperationOutcome.FAILED, elapsed, polls)

            remaining = deadline - self._clock()
            if remaining <= 0:
                logger.warning(
                    "Health check timed out",
                    app=app,
                    status=status.value,
                    timeout=timeout,
                )
                return HealthObservation(status, OperationOutcome.TIMED_OUT, elapsed, polls)

            self._sleep(min(interval, remaining))
