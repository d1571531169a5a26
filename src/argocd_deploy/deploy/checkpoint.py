"""Manual-decision checkpoint raised when a manual-mode deployment fails."""

import shlex
from dataclasses import dataclass, field
from typing import Any, Protocol

import yaml

from argocd_deploy.clients.buildkite import BuildkiteAgent
from argocd_deploy.core.logging import StructuredLogger
from argocd_deploy.deploy.models import UNKNOWN, HistoryEntry

logger = StructuredLogger(__name__)

DEFAULT_COMMAND = "argocd-deploy"


def checkpoint_key(app: str) -> str:
    """Meta-data key the operator's chosen rollback target is stored under."""
    return f"argocd-rollback-target-{app}"


@dataclass
class CheckpointRequest:
    """What the operator needs to pick a rollback target."""

    app: str
    failed_revision: str
    candidate: str = UNKNOWN
    reason: str = ""
    history: list[HistoryEntry] = field(default_factory=list)

    def rollback_command(self, command: str = DEFAULT_COMMAND) -> str:
        return f"{command} rollback --app {shlex.quote(self.app)} --rollback-mode manual"

    def history_hint(self) -> str:
        if not self.history:
            return "Enter a history ID or commit SHA."
        recent = ", ".join(f"{e.history_id} ({e.short_revision()})" for e in self.history)
        return f"Recent history: {recent}"


class Checkpoint(Protocol):
    """Pauses for a human; a later rollback-mode invocation acts on the answer."""

    def raise_checkpoint(self, request: CheckpointRequest) -> None:
        ...


def checkpoint_pipeline(request: CheckpointRequest, command: str = DEFAULT_COMMAND) -> dict[str, Any]:
    """Block step collecting the rollback target, followed by the rollback step."""
    text_field: dict[str, Any] = {
        "text": "Rollback target (history ID or commit SHA)",
        "key": checkpoint_key(request.app),
        "hint": request.history_hint(),
        "required": True,
    }
    if request.candidate and request.candidate != UNKNOWN:
        text_field["default"] = request.candidate

    prompt = f"Deployment of {request.app} failed at revision {request.failed_revision}."
    if request.reason:
        prompt = f"{prompt} {request.reason}"

    return {
        "steps": [
            {
                "block": f":rotating_light: Roll back {request.app}?",
                "prompt": prompt,
                "fields": [text_field],
            },
            {
                "label": f":leftwards_arrow_with_hook: Manual rollback {request.app}",
                "command": request.rollback_command(command),
            },
        ]
    }


class BuildkiteCheckpoint:
    """Uploads a block step and the follow-up rollback step into the running build."""

    def __init__(self, agent: BuildkiteAgent, command: str = DEFAULT_COMMAND):
        self._agent = agent
        self._command = command

    def raise_checkpoint(self, request: CheckpointRequest) -> None:
        pipeline = yaml.safe_dump(checkpoint_pipeline(request, self._command), sort_keys=False)
        self._agent.pipeline_upload(pipeline)
        logger.info(
            "Manual rollback checkpoint uploaded",
            app=request.app,
            candidate=request.candidate,
        )


class LoggingCheckpoint:
    """Outside Buildkite there is nothing to pause; tell the operator what to run."""

    def __init__(self, command: str = DEFAULT_COMMAND):
        self._command = command

    def raise_checkpoint(self, request: CheckpointRequest) -> None:
        target = request.candidate if request.candidate != UNKNOWN else "<history-id>"
        logger.warning(
            "Manual rollback decision required",
            app=request.app,
            failed=request.failed_revision,
            command=f"{request.rollback_command(self._command)} --target-revision {target}",
        )
