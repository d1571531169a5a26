"""Controller port: the operations the orchestrator needs from Argo CD."""

from dataclasses import dataclass, field
from typing import Any, Generic, Protocol, TypeVar

from argocd_deploy.deploy.models import HistoryEntry, OperationOutcome

T = TypeVar("T")

# Operation phases reported under status.operationState.phase
PHASE_SUCCEEDED = "Succeeded"
PHASE_RUNNING = "Running"
PHASE_TERMINATING = "Terminating"
FAILED_PHASES = ("Failed", "Error")


@dataclass
class ControllerResult(Generic[T]):
    """Outcome, parsed payload and raw log lines of one controller call."""

    outcome: OperationOutcome
    payload: T | None = None
    log_lines: list[str] = field(default_factory=list)
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.outcome.ok

    @classmethod
    def success(cls, payload: T | None = None, log_lines: list[str] | None = None) -> "ControllerResult[T]":
        return cls(OperationOutcome.SUCCESS, payload, log_lines or [])

    @classmethod
    def failed(cls, error: str, log_lines: list[str] | None = None) -> "ControllerResult[T]":
        return cls(OperationOutcome.FAILED, None, log_lines or [], error)

    @classmethod
    def timed_out(cls, error: str, log_lines: list[str] | None = None) -> "ControllerResult[T]":
        return cls(OperationOutcome.TIMED_OUT, None, log_lines or [], error)


@dataclass(frozen=True)
class ApplicationStatus:
    """The parts of an Argo CD Application the orchestrator reads."""

    name: str
    sync_revision: str | None = None
    sync_status: str = "Unknown"
    health_status: str = "Unknown"
    namespace: str = ""
    labels: dict[str, str] = field(default_factory=dict)
    operation_phase: str | None = None
    operation_revision: str | None = None
    auto_sync: bool = False
    raw: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @property
    def operation_running(self) -> bool:
        return self.operation_phase in (PHASE_RUNNING, PHASE_TERMINATING)

    @property
    def stable_revision(self) -> str | None:
        """Source revision of the last successful operation, else the synced revision."""
        if self.operation_phase == PHASE_SUCCEEDED and self.operation_revision:
            return self.operation_revision
        return self.sync_revision

    @classmethod
    def from_manifest(cls, app: dict[str, Any]) -> "ApplicationStatus":
        """Parse an Application resource as returned by the API or `argocd app get -o json`."""
        metadata = app.get("metadata", {}) or {}
        spec = app.get("spec", {}) or {}
        status = app.get("status", {}) or {}
        sync = status.get("sync", {}) or {}
        health = status.get("health", {}) or {}
        operation = status.get("operationState", {}) or {}
        sync_result = operation.get("syncResult", {}) or {}
        sync_policy = spec.get("syncPolicy", {}) or {}

        return cls(
            name=metadata.get("name", ""),
            sync_revision=sync.get("revision") or None,
            sync_status=sync.get("status", "Unknown"),
            health_status=health.get("status", "Unknown"),
            namespace=(spec.get("destination", {}) or {}).get("namespace", ""),
            labels=metadata.get("labels", {}) or {},
            operation_phase=operation.get("phase") or None,
            operation_revision=sync_result.get("revision") or None,
            auto_sync=sync_policy.get("automated") is not None,
            raw=app,
        )


def parse_history(rows: list[dict[str, Any]]) -> list[HistoryEntry]:
    """Normalize API history rows into entries ordered oldest-first."""
    entries = []
    for row in rows:
        try:
            history_id = int(row.get("id"))
        except (TypeError, ValueError):
            continue
        revision = row.get("revision") or ""
        if not revision and row.get("revisions"):
            revision = row["revisions"][0]
        entries.append(
            HistoryEntry(
                history_id=history_id,
                source_revision=revision,
                deployed_at=row.get("deployedAt", "") or "",
            )
        )
    return sorted(entries, key=lambda e: e.history_id)


class Controller(Protocol):
    """Synchronous, non-retrying Argo CD operations. Every call is bounded by a timeout."""

    def get_application(self, app: str) -> ControllerResult[ApplicationStatus]:
        ...

    def sync(self, app: str, timeout: int) -> ControllerResult[ApplicationStatus]:
        ...

    def rollback(self, app: str, history_id: int, timeout: int) -> ControllerResult[ApplicationStatus]:
        ...

    def get_history(self, app: str) -> ControllerResult[list[HistoryEntry]]:
        ...

    def set_auto_sync(self, app: str, enabled: bool) -> ControllerResult[None]:
        ...

    def wait_for_health(self, app: str, timeout: int) -> ControllerResult[ApplicationStatus]:
        ...

    def get_logs(self, app: str, tail_lines: int) -> ControllerResult[list[str]]:
        ...
