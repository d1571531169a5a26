"""Deployment orchestration module."""

from argocd_deploy.deploy.models import (
    UNKNOWN,
    DeploymentMode,
    DeploymentRecord,
    DeploymentResult,
    DeploymentStatus,
    HealthStatus,
    HistoryEntry,
    OperationOutcome,
    OrchestratorState,
    RollbackMode,
)

__all__ = [
    "UNKNOWN",
    "DeploymentMode",
    "DeploymentRecord",
    "DeploymentResult",
    "DeploymentStatus",
    "HealthStatus",
    "HistoryEntry",
    "OperationOutcome",
    "OrchestratorState",
    "RollbackMode",
]
