"""Deployment data models."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

UNKNOWN = "unknown"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DeploymentMode(str, Enum):
    """What the invocation was asked to do."""

    DEPLOY = "deploy"
    ROLLBACK = "rollback"


class RollbackMode(str, Enum):
    """How a failed deployment is reverted."""

    AUTO = "auto"
    MANUAL = "manual"


class OrchestratorState(str, Enum):
    """Orchestrator state machine states."""

    VALIDATING = "validating"
    RESOLVING = "resolving"
    EXECUTING = "executing"
    HEALTH_CHECKING = "health_checking"
    SUCCEEDED = "succeeded"
    ROLLING_BACK = "rolling_back"
    AWAITING_MANUAL_DECISION = "awaiting_manual_decision"
    FINALIZING = "finalizing"
    TERMINAL = "terminal"


class HealthStatus(str, Enum):
    """Application health as classified from the controller's report."""

    HEALTHY = "Healthy"
    DEGRADED = "Degraded"
    PROGRESSING = "Progressing"
    MISSING = "Missing"
    UNKNOWN = "Unknown"

    @classmethod
    def from_controller(cls, value: str | None) -> "HealthStatus":
        """Map a controller health string, folding unrecognised values to Unknown."""
        for status in cls:
            if value == status.value:
                return status
        return cls.UNKNOWN

    @property
    def is_success(self) -> bool:
        return self is HealthStatus.HEALTHY

    @property
    def is_failure(self) -> bool:
        return self in (HealthStatus.DEGRADED, HealthStatus.MISSING)


class OperationOutcome(str, Enum):
    """Outcome of a mutating controller call or a health observation."""

    SUCCESS = "success"
    FAILED = "failed"
    TIMED_OUT = "timed_out"

    @property
    def ok(self) -> bool:
        return self is OperationOutcome.SUCCESS


class DeploymentResult(str, Enum):
    """Result code persisted as deployment:argocd:<app>:result."""

    PENDING = "pending"
    SUCCESS = "success"
    AUTO_ROLLBACK_SUCCESS = "auto_rollback_success"
    AUTO_ROLLBACK_FAILED = "auto_rollback_failed"
    NO_ROLLBACK_TARGET = "deployment_failed_no_rollback_target"
    DEPLOYMENT_FAILED = "deployment_failed"
    HEALTH_CHECK_FAILED = "health_check_failed"
    ROLLBACK_SUCCESS = "rollback_success"
    ROLLBACK_FAILED = "rollback_failed"
    MANUAL_ROLLBACK_SUCCESS = "manual_rollback_success"
    MANUAL_ROLLBACK_FAILED = "manual_rollback_failed"


class DeploymentStatus(str, Enum):
    """Status persisted as deployment:argocd:<app>:status."""

    DEPLOYING = "deploying"
    DEPLOYED = "deployed"
    ROLLING_BACK = "rolling_back"
    ROLLED_BACK = "rolled_back"
    ROLLBACK_FAILED = "rollback_failed"
    AWAITING_MANUAL_ROLLBACK = "awaiting_manual_rollback"
    FAILED = "failed"


@dataclass(frozen=True)
class HistoryEntry:
    """One row of the controller's retained deployment history."""

    history_id: int
    source_revision: str
    deployed_at: str = ""

    def short_revision(self, length: int = 7) -> str:
        return self.source_revision[:length]

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.history_id,
            "revision": self.source_revision,
            "deployed_at": self.deployed_at,
        }


@dataclass
class DeploymentEvent:
    """State transition event for the audit trail."""

    timestamp: datetime
    state: OrchestratorState
    message: str
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "timestamp": self.timestamp.isoformat(),
            "state": self.state.value,
            "message": self.message,
            "details": self.details,
        }


@dataclass
class DeploymentRecord:
    """Working state of one orchestrator invocation."""

    app: str
    mode: DeploymentMode
    rollback_mode: RollbackMode = RollbackMode.AUTO

    # Revisions
    previous_stable: str = UNKNOWN
    target_revision: str | None = None
    synced_revision: str | None = None
    current_revision: str | None = None

    # Status
    state: OrchestratorState = OrchestratorState.VALIDATING
    result: DeploymentResult = DeploymentResult.PENDING
    success: bool = False
    message: str = ""

    # Timing
    started_at: datetime = field(default_factory=utcnow)
    completed_at: datetime | None = None

    events: list[DeploymentEvent] = field(default_factory=list)

    def transition(
        self,
        state: OrchestratorState,
        message: str = "",
        **details: Any,
    ) -> "DeploymentRecord":
        """Move to a new state and record the transition."""
        self.state = state
        self.events.append(
            DeploymentEvent(
                timestamp=utcnow(),
                state=state,
                message=message or state.value,
                details=details,
            )
        )
        return self

    @property
    def states_visited(self) -> list[OrchestratorState]:
        return [e.state for e in self.events]

    @property
    def has_rollback_target(self) -> bool:
        return bool(self.previous_stable) and self.previous_stable != UNKNOWN

    @property
    def duration_seconds(self) -> float | None:
        """Get invocation duration in seconds."""
        end = self.completed_at or utcnow()
        return (end - self.started_at).total_seconds()

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "app": self.app,
            "mode": self.mode.value,
            "rollback_mode": self.rollback_mode.value,
            "previous_stable": self.previous_stable,
            "target_revision": self.target_revision,
            "synced_revision": self.synced_revision,
            "current_revision": self.current_revision,
            "state": self.state.value,
            "result": self.result.value,
            "success": self.success,
            "message": self.message,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_seconds": self.duration_seconds,
            "events": [e.to_dict() for e in self.events[-20:]],
        }
