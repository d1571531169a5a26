"""Controller adapter backed by the Argo CD REST API."""

import time
from typing import Any, Callable

from argocd_deploy.clients.argocd import ArgoCDClient
from argocd_deploy.controller.base import (
    FAILED_PHASES,
    PHASE_SUCCEEDED,
    ApplicationStatus,
    ControllerResult,
    parse_history,
)
from argocd_deploy.core.exceptions import ArgoCDDeployError
from argocd_deploy.core.logging import StructuredLogger
from argocd_deploy.deploy.models import HealthStatus, HistoryEntry

logger = StructuredLogger(__name__)


class ArgoCDApiController:
    """Drives sync/rollback through the API and polls the operation state to completion."""

    def __init__(
        self,
        client: ArgoCDClient,
        poll_interval: float = 5.0,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._client = client
        self._poll_interval = poll_interval
        self._sleep = sleep
        self._clock = clock

    def get_application(self, app: str) -> ControllerResult[ApplicationStatus]:
        try:
            manifest = self._client.get_application(app)
        except ArgoCDDeployError as e:
            return ControllerResult.failed(str(e), [f"GET application {app}: {e}"])
        return ControllerResult.success(ApplicationStatus.from_manifest(manifest))

    def sync(self, app: str, timeout: int) -> ControllerResult[ApplicationStatus]:
        return self._run_operation(
            app,
            timeout,
            "sync",
            lambda: self._client.sync_application(app),
        )

    def rollback(self, app: str, history_id: int, timeout: int) -> ControllerResult[ApplicationStatus]:
        return self._run_operation(
            app,
            timeout,
            f"rollback to {history_id}",
            lambda: self._client.rollback_application(app, history_id),
        )

    def get_history(self, app: str) -> ControllerResult[list[HistoryEntry]]:
        try:
            rows = self._client.get_application_history(app)
        except ArgoCDDeployError as e:
            return ControllerResult.failed(str(e), [f"GET history {app}: {e}"])
        entries = parse_history(rows)
        lines = [f"{e.history_id}  {e.deployed_at}  {e.source_revision}" for e in entries]
        return ControllerResult.success(entries, lines)

    def set_auto_sync(self, app: str, enabled: bool) -> ControllerResult[None]:
        policy = "automated" if enabled else "manual"
        try:
            self._client.set_automated_sync(app, enabled)
        except ArgoCDDeployError as e:
            return ControllerResult.failed(str(e), [f"set sync-policy {policy}: {e}"])
        return ControllerResult.success(None, [f"set sync-policy {policy}"])

    def wait_for_health(self, app: str, timeout: int) -> ControllerResult[ApplicationStatus]:
        deadline = self._clock() + timeout
        log_lines: list[str] = [f"wait {app} --health --timeout {timeout}"]
        last: ApplicationStatus | None = None

        while True:
            result = self.get_application(app)
            if result.ok and result.payload is not None:
                last = result.payload
                log_lines.append(f"health={last.health_status} sync={last.sync_status}")
                if (
                    HealthStatus.from_controller(last.health_status).is_success
                    and not last.operation_running
                ):
                    return ControllerResult.success(last, log_lines)
            else:
                log_lines.extend(result.log_lines)

            if self._clock() >= deadline:
                break
            self._sleep(self._poll_interval)

        health = last.health_status if last else "Unknown"
        return ControllerResult.timed_out(
            f"timed out after {timeout}s waiting for health (last: {health})",
            log_lines,
        )

    def get_logs(self, app: str, tail_lines: int) -> ControllerResult[list[str]]:
        try:
            lines = self._client.get_application_logs(app, tail_lines=tail_lines)
        except ArgoCDDeployError as e:
            return ControllerResult.failed(str(e), [f"GET logs {app}: {e}"])
        return ControllerResult.success(lines, lines)

    def _operation_started_at(self, app: str) -> str | None:
        result = self.get_application(app)
        if not result.ok or result.payload is None:
            return None
        return result.payload.raw.get("status", {}).get("operationState", {}).get("startedAt")

    def _run_operation(
        self,
        app: str,
        timeout: int,
        description: str,
        start: Callable[[], Any],
    ) -> ControllerResult[ApplicationStatus]:
        """Start an operation and poll until its phase is terminal or the deadline passes."""
        log_lines = [f"{description} {app} --timeout {timeout}"]
        previous_start = self._operation_started_at(app)
        deadline = self._clock() + timeout

        try:
            start()
        except ArgoCDDeployError as e:
            log_lines.append(f"request failed: {e}")
            return ControllerResult.failed(str(e), log_lines)

        while True:
            result = self.get_application(app)
            if result.ok and result.payload is not None:
                status = result.payload
                operation = status.raw.get("status", {}).get("operationState", {}) or {}
                started_at = operation.get("startedAt")
                is_new = started_at is None or started_at != previous_start

                if is_new and status.operation_phase == PHASE_SUCCEEDED:
                    log_lines.append(f"phase={status.operation_phase} {operation.get('message', '')}".rstrip())
                    return ControllerResult.success(status, log_lines)
                if is_new and status.operation_phase in FAILED_PHASES:
                    message = operation.get("message", "") or status.operation_phase
                    log_lines.append(f"phase={status.operation_phase} {message}")
                    return ControllerResult.failed(f"{description} {status.operation_phase}: {message}", log_lines)
            else:
                log_lines.extend(result.log_lines)

            if self._clock() >= deadline:
                break
            self._sleep(self._poll_interval)

        logger.warning("Operation did not finish before timeout", app=app, operation=description)
        return ControllerResult.timed_out(f"{description} timed out after {timeout}s", log_lines)
