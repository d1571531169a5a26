"""Fire-and-log execution of side calls that must never fail the primary operation.

Auto-sync toggles, metadata writes, notifications, checkpoint uploads and
artifact handling all go through here. Each call yields an AncillaryResult
that the orchestrator is free to discard; failures are logged as warnings.
"""

from dataclasses import dataclass
from typing import Any, Callable

from argocd_deploy.controller.base import ControllerResult
from argocd_deploy.core.logging import StructuredLogger

logger = StructuredLogger(__name__)


@dataclass(frozen=True)
class AncillaryResult:
    """What happened to one best-effort side call."""

    action: str
    ok: bool
    error: str | None = None
    value: Any = None


def best_effort(action: str, func: Callable[..., Any], *args: Any, **kwargs: Any) -> AncillaryResult:
    """Run func, converting any exception into a logged, failed AncillaryResult."""
    try:
        value = func(*args, **kwargs)
    except Exception as e:
        logger.warning(f"{action} failed", error=str(e))
        return AncillaryResult(action=action, ok=False, error=str(e))
    return AncillaryResult(action=action, ok=True, value=value)


def from_controller(action: str, result: ControllerResult[Any]) -> AncillaryResult:
    """Classify a controller call that is allowed to fail."""
    if result.ok:
        logger.info(f"{action} succeeded")
        return AncillaryResult(action=action, ok=True, value=result.payload)
    logger.warning(f"{action} failed", outcome=result.outcome.value, error=result.error)
    return AncillaryResult(action=action, ok=False, error=result.error)
