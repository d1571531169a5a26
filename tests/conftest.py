"""Pytest fixtures for argocd-deploy tests."""

from typing import Any

import pytest
from click.testing import CliRunner

from argocd_deploy.clients.buildkite import BuildInfo
from argocd_deploy.config import (
    ArgoCDConfig,
    BuildkiteConfig,
    MetadataConfig,
    ProfileConfig,
    SlackConfig,
    ToolConfig,
)
from argocd_deploy.controller.base import ApplicationStatus, ControllerResult
from argocd_deploy.core.exceptions import AncillaryError
from argocd_deploy.deploy.health import HealthObservation
from argocd_deploy.deploy.models import HealthStatus, HistoryEntry, OperationOutcome

APP = "guestbook"

SHA_41 = "1111111aaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaa"
SHA_42 = "2222222bbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbb"
SHA_NEW = "3333333ccccccccccccccccccccccccccccccccc"


class FakeController:
    """In-memory Argo CD: sync and rollback append history like the real controller."""

    def __init__(self, history: list[tuple[int, str]] | None = None, current: str | None = None):
        self.history = [
            HistoryEntry(history_id=i, source_revision=rev, deployed_at=f"2024-01-{i % 28 + 1:02d} 10:00:00")
            for i, rev in (history or [])
        ]
        self.current = current if current is not None else (self.history[-1].source_revision if self.history else None)
        self.health = "Healthy"
        self.sync_deploys: str | None = SHA_NEW
        self.sync_outcome = OperationOutcome.SUCCESS
        self.rollback_outcome = OperationOutcome.SUCCESS
        self.auto_sync_outcome = OperationOutcome.SUCCESS
        self.auto_sync = True
        self.calls: list[tuple[Any, ...]] = []

    def calls_named(self, name: str) -> list[tuple[Any, ...]]:
        return [c for c in self.calls if c[0] == name]

    def call_index(self, call: tuple[Any, ...]) -> int:
        return self.calls.index(call)

    def _status(self, app: str) -> ApplicationStatus:
        return ApplicationStatus(
            name=app,
            sync_revision=self.current,
            sync_status="Synced",
            health_status=self.health,
            operation_phase="Succeeded" if self.current else None,
            operation_revision=self.current,
            auto_sync=self.auto_sync,
            raw={"metadata": {"name": app}, "status": {"health": {"status": self.health}}},
        )

    def _append(self, revision: str) -> None:
        next_id = max((e.history_id for e in self.history), default=0) + 1
        self.history.append(HistoryEntry(history_id=next_id, source_revision=revision))
        self.current = revision

    def get_application(self, app: str) -> ControllerResult[ApplicationStatus]:
        self.calls.append(("get_application", app))
        return ControllerResult.success(self._status(app))

    def sync(self, app: str, timeout: int) -> ControllerResult[ApplicationStatus]:
        self.calls.append(("sync", app, timeout))
        if self.sync_outcome is not OperationOutcome.SUCCESS:
            return ControllerResult(self.sync_outcome, None, ["sync output"], f"sync {self.sync_outcome.value}")
        if self.sync_deploys:
            self._append(self.sync_deploys)
        return ControllerResult.success(self._status(app), ["sync output"])

    def rollback(self, app: str, history_id: int, timeout: int) -> ControllerResult[ApplicationStatus]:
        self.calls.append(("rollback", app, history_id, timeout))
        if self.rollback_outcome is not OperationOutcome.SUCCESS:
            return ControllerResult(self.rollback_outcome, None, ["rollback output"], "rollback failed")
        entry = next(e for e in self.history if e.history_id == history_id)
        self._append(entry.source_revision)
        return ControllerResult.success(self._status(app), ["rollback output"])

    def get_history(self, app: str) -> ControllerResult[list[HistoryEntry]]:
        self.calls.append(("get_history", app))
        return ControllerResult.success(list(self.history))

    def set_auto_sync(self, app: str, enabled: bool) -> ControllerResult[None]:
        self.calls.append(("set_auto_sync", app, enabled))
        if self.auto_sync_outcome is not OperationOutcome.SUCCESS:
            return ControllerResult.failed("permission denied")
        self.auto_sync = enabled
        return ControllerResult.success(None)

    def wait_for_health(self, app: str, timeout: int) -> ControllerResult[ApplicationStatus]:
        self.calls.append(("wait_for_health", app, timeout))
        return ControllerResult.success(self._status(app))

    def get_logs(self, app: str, tail_lines: int) -> ControllerResult[list[str]]:
        self.calls.append(("get_logs", app, tail_lines))
        return ControllerResult.success(["log line 1", "log line 2"])


class InMemoryMetadata:
    """Dict-backed metadata store."""

    def __init__(self, initial: dict[str, str] | None = None, fail: bool = False):
        self.data = dict(initial or {})
        self.fail = fail

    def get(self, key: str) -> str | None:
        return self.data.get(key)

    def set(self, key: str, value: str) -> None:
        if self.fail:
            raise AncillaryError("meta-data set failed", action="metadata")
        self.data[key] = value

    def field(self, app: str, name: str) -> str | None:
        return self.data.get(f"deployment:argocd:{app}:{name}")


class RecordingNotifier:
    def __init__(self, fail: bool = False):
        self.sent: list[Any] = []
        self.fail = fail

    def notify(self, notification: Any) -> None:
        if self.fail:
            raise AncillaryError("slack unavailable", action="notify")
        self.sent.append(notification)


class RecordingCheckpoint:
    def __init__(self):
        self.requests: list[Any] = []

    def raise_checkpoint(self, request: Any) -> None:
        self.requests.append(request)


class ScriptedMonitor:
    """Health monitor returning pre-set observations in order."""

    def __init__(self, *outcomes: tuple[HealthStatus, OperationOutcome]):
        self._outcomes = list(outcomes)
        self.calls: list[dict[str, Any]] = []

    def observe(self, app: str, interval: float, timeout: float, fail_fast: bool = False) -> HealthObservation:
        self.calls.append({"app": app, "interval": interval, "timeout": timeout, "fail_fast": fail_fast})
        status, outcome = self._outcomes.pop(0)
        return HealthObservation(status=status, outcome=outcome, elapsed=1.0, polls=1)


class FakeClock:
    """Monotonic clock advanced only by sleep()."""

    def __init__(self):
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


HEALTHY = (HealthStatus.HEALTHY, OperationOutcome.SUCCESS)
TIMED_OUT = (HealthStatus.PROGRESSING, OperationOutcome.TIMED_OUT)
DEGRADED = (HealthStatus.DEGRADED, OperationOutcome.FAILED)


@pytest.fixture
def cli_runner() -> CliRunner:
    """Create a Click CLI runner."""
    return CliRunner()


@pytest.fixture
def controller() -> FakeController:
    """Controller with history 41, 42 and 42 deployed."""
    return FakeController(history=[(41, SHA_41), (42, SHA_42)])


@pytest.fixture
def metadata() -> InMemoryMetadata:
    return InMemoryMetadata()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def checkpoint() -> RecordingCheckpoint:
    return RecordingCheckpoint()


@pytest.fixture
def build_info() -> BuildInfo:
    return BuildInfo(
        build_url="https://buildkite.com/acme/deploy/builds/7",
        build_number="7",
        pipeline="deploy",
        branch="main",
        commit="abc1234",
    )


@pytest.fixture
def mock_config(tmp_path: Any) -> ToolConfig:
    """Configuration with the file metadata backend under tmp_path."""
    return ToolConfig(
        profiles={
            "default": ProfileConfig(
                argocd=ArgoCDConfig(url="https://argocd.test.com", token="test-token"),
                slack=SlackConfig(token="xoxb-test"),
                buildkite=BuildkiteConfig(),
                metadata=MetadataConfig(backend="file", state_dir=str(tmp_path / "state")),
            )
        }
    )


@pytest.fixture(autouse=True)
def clean_buildkite_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Tests run as if outside a Buildkite job unless they opt in."""
    for name in (
        "BUILDKITE",
        "BUILDKITE_BUILD_URL",
        "BUILDKITE_BUILD_NUMBER",
        "BUILDKITE_PIPELINE_SLUG",
        "BUILDKITE_BRANCH",
        "BUILDKITE_COMMIT",
        "ARGOCD_SERVER",
        "ARGOCD_AUTH_TOKEN",
        "SLACK_BOT_TOKEN",
        "SLACK_TOKEN",
    ):
        monkeypatch.delenv(name, raising=False)
