"""Tests for the deploy/rollback state machine."""

import pytest

from argocd_deploy.core.exceptions import ConfigError
from argocd_deploy.deploy.health import HealthMonitor
from argocd_deploy.deploy.metadata import metadata_key
from argocd_deploy.deploy.models import (
    UNKNOWN,
    DeploymentResult,
    HealthStatus,
    OperationOutcome,
    OrchestratorState,
)
from argocd_deploy.deploy.orchestrator import Orchestrator

from conftest import (
    APP,
    DEGRADED,
    HEALTHY,
    SHA_41,
    TIMED_OUT,
    FakeClock,
    FakeController,
    InMemoryMetadata,
    RecordingNotifier,
    ScriptedMonitor,
)


def make(controller, settings, metadata, notifier=None, checkpoint=None, monitor=None, build=None):
    return Orchestrator(
        controller=controller,
        settings=settings,
        metadata=metadata,
        notifier=notifier,
        checkpoint=checkpoint,
        monitor=monitor,
        build=build,
    )


def deploy_settings(**overrides):
    settings = {"app": APP, "mode": "deploy", "rollback_mode": "auto"}
    settings.update(overrides)
    return settings


def rollback_settings(target, rollback_mode="auto", **overrides):
    settings = {"app": APP, "mode": "rollback", "rollback_mode": rollback_mode, "target_revision": target}
    settings.update(overrides)
    return settings


class TestValidation:
    """Invalid input fails before any controller call."""

    @pytest.mark.parametrize(
        "overrides",
        [
            {"timeout": 29},
            {"timeout": 3601},
            {"health_check_interval": 9},
            {"health_check_timeout": 1801},
            {"log_lines": 99},
            {"app": "  "},
            {"rollback_mode": "sometimes"},
            {"notifications": {"slack_channel": "deploys"}},
        ],
    )
    def test_rejects_before_controller(self, controller, metadata, overrides):
        orchestrator = make(controller, deploy_settings(**overrides), metadata)

        with pytest.raises(ConfigError):
            orchestrator.run()

        assert controller.calls == []
        assert metadata.data == {}

    def test_rollback_requires_target(self, controller, metadata):
        orchestrator = make(controller, {"app": APP, "mode": "rollback", "rollback_mode": "auto"}, metadata)

        with pytest.raises(ConfigError):
            orchestrator.run()
        assert controller.calls == []


class TestDeploySuccess:
    def test_healthy_deploy(self, controller, metadata, notifier, build_info):
        monitor = ScriptedMonitor(HEALTHY)
        record = make(controller, deploy_settings(), metadata, notifier, monitor=monitor, build=build_info).run()

        assert record.success is True
        assert record.result == DeploymentResult.SUCCESS
        assert OrchestratorState.SUCCEEDED in record.states_visited
        assert record.states_visited[-1] == OrchestratorState.TERMINAL
        assert controller.calls_named("rollback") == []
        assert controller.calls_named("set_auto_sync") == []

        assert metadata.field(APP, "result") == "success"
        assert metadata.field(APP, "status") == "deployed"
        assert metadata.field(APP, "previous_version") == "42"
        assert metadata.field(APP, "current_version") == "43"
        assert metadata.field(APP, "timestamp")

        assert len(notifier.sent) == 1
        assert notifier.sent[0].result == DeploymentResult.SUCCESS
        assert notifier.sent[0].to_revision == "43"

    def test_state_order(self, controller, metadata):
        record = make(controller, deploy_settings(), metadata, monitor=ScriptedMonitor(HEALTHY)).run()

        assert record.states_visited == [
            OrchestratorState.VALIDATING,
            OrchestratorState.RESOLVING,
            OrchestratorState.EXECUTING,
            OrchestratorState.HEALTH_CHECKING,
            OrchestratorState.SUCCEEDED,
            OrchestratorState.FINALIZING,
            OrchestratorState.TERMINAL,
        ]

    def test_health_settings_passed_to_monitor(self, controller, metadata):
        monitor = ScriptedMonitor(HEALTHY)
        make(
            controller,
            deploy_settings(health_check_interval=15, health_check_timeout=120),
            metadata,
            monitor=monitor,
        ).run()

        assert monitor.calls == [{"app": APP, "interval": 15, "timeout": 120, "fail_fast": False}]
        assert controller.calls_named("sync") == [("sync", APP, 300)]


class TestAutoRollback:
    def test_health_timeout_rolls_back_once(self, controller, metadata, notifier):
        monitor = ScriptedMonitor(TIMED_OUT, HEALTHY)
        record = make(controller, deploy_settings(), metadata, notifier, monitor=monitor).run()

        assert controller.calls_named("rollback") == [("rollback", APP, 42, 300)]
        assert record.result == DeploymentResult.AUTO_ROLLBACK_SUCCESS
        assert record.success is False
        assert OrchestratorState.ROLLING_BACK in record.states_visited

        disable = ("set_auto_sync", APP, False)
        enable = ("set_auto_sync", APP, True)
        rollback = ("rollback", APP, 42, 300)
        assert controller.call_index(disable) < controller.call_index(rollback) < controller.call_index(enable)

        assert metadata.field(APP, "result") == "auto_rollback_success"
        assert metadata.field(APP, "status") == "rolled_back"
        assert metadata.field(APP, "rollback_from") == "43"
        assert metadata.field(APP, "rollback_to") == "42"
        assert metadata.field(APP, "current_version") == "42"

        # Second observation classifies the rollback itself, without fail-fast
        assert [c["fail_fast"] for c in monitor.calls] == [False, False]
        assert notifier.sent[-1].result == DeploymentResult.AUTO_ROLLBACK_SUCCESS

    def test_failed_rollback_still_reenables_auto_sync(self, controller, metadata):
        controller.rollback_outcome = OperationOutcome.FAILED
        monitor = ScriptedMonitor(TIMED_OUT)
        record = make(controller, deploy_settings(), metadata, monitor=monitor).run()

        assert record.result == DeploymentResult.AUTO_ROLLBACK_FAILED
        assert len(controller.calls_named("rollback")) == 1
        assert controller.calls_named("set_auto_sync") == [
            ("set_auto_sync", APP, False),
            ("set_auto_sync", APP, True),
        ]
        assert len(monitor.calls) == 1
        assert metadata.field(APP, "status") == "rollback_failed"
        assert metadata.field(APP, "result") == "auto_rollback_failed"

    def test_rollback_unhealthy_is_failure(self, controller, metadata):
        monitor = ScriptedMonitor(DEGRADED, TIMED_OUT)
        record = make(controller, deploy_settings(), metadata, monitor=monitor).run()

        assert record.result == DeploymentResult.AUTO_ROLLBACK_FAILED
        assert controller.calls_named("set_auto_sync")[-1] == ("set_auto_sync", APP, True)

    def test_sync_failure_skips_health_check(self, controller, metadata):
        controller.sync_outcome = OperationOutcome.TIMED_OUT
        monitor = ScriptedMonitor(HEALTHY)
        record = make(controller, deploy_settings(), metadata, monitor=monitor).run()

        assert OrchestratorState.HEALTH_CHECKING not in record.states_visited
        assert controller.calls_named("rollback") == [("rollback", APP, 42, 300)]
        assert record.result == DeploymentResult.AUTO_ROLLBACK_SUCCESS
        # Only the rollback's own health observation
        assert len(monitor.calls) == 1

    def test_auto_sync_toggle_failure_is_not_fatal(self, controller, metadata):
        controller.auto_sync_outcome = OperationOutcome.FAILED
        record = make(controller, deploy_settings(), metadata, monitor=ScriptedMonitor(TIMED_OUT, HEALTHY)).run()

        assert record.result == DeploymentResult.AUTO_ROLLBACK_SUCCESS
        assert len(controller.calls_named("set_auto_sync")) == 2

    def test_no_rollback_target(self, metadata, notifier):
        controller = FakeController(history=[])
        record = make(controller, deploy_settings(), metadata, notifier, monitor=ScriptedMonitor(TIMED_OUT)).run()

        assert record.previous_stable == UNKNOWN
        assert record.result == DeploymentResult.NO_ROLLBACK_TARGET
        assert controller.calls_named("rollback") == []
        assert controller.calls_named("set_auto_sync") == []
        assert metadata.field(APP, "result") == "deployment_failed_no_rollback_target"
        assert metadata.field(APP, "status") == "failed"
        assert record.synced_revision == "1"
        assert metadata.field(APP, "rollback_from") == "1"
        assert notifier.sent[-1].result == DeploymentResult.NO_ROLLBACK_TARGET


class TestManualDecision:
    def test_fail_fast_returns_after_one_poll(self, controller, metadata, checkpoint):
        controller.health = "Degraded"
        clock = FakeClock()
        monitor = HealthMonitor(controller, sleep=clock.sleep, clock=clock)

        record = make(
            controller,
            deploy_settings(rollback_mode="manual"),
            metadata,
            checkpoint=checkpoint,
            monitor=monitor,
        ).run()

        assert clock.sleeps == []
        assert OrchestratorState.AWAITING_MANUAL_DECISION in record.states_visited
        assert record.result == DeploymentResult.HEALTH_CHECK_FAILED
        assert record.success is False
        assert controller.calls_named("rollback") == []

    def test_manual_branch_persists_and_raises_checkpoint(self, controller, metadata, notifier, checkpoint):
        monitor = ScriptedMonitor(DEGRADED)
        record = make(
            controller,
            deploy_settings(rollback_mode="manual"),
            metadata,
            notifier,
            checkpoint,
            monitor=monitor,
        ).run()

        assert monitor.calls[0]["fail_fast"] is True
        assert metadata.field(APP, "status") == "awaiting_manual_rollback"
        assert metadata.field(APP, "rollback_from") == "43"
        assert metadata.field(APP, "result") == "health_check_failed"
        assert metadata.field(APP, "previous_version") == "42"

        assert len(checkpoint.requests) == 1
        request = checkpoint.requests[0]
        assert request.candidate == "42"
        assert request.failed_revision == "43"
        assert [e.history_id for e in request.history][:3] == [43, 42, 41]

        sent = notifier.sent[-1]
        assert sent.result == DeploymentResult.HEALTH_CHECK_FAILED
        assert sent.from_revision == "43"
        assert sent.to_revision == "42"
        assert record.states_visited[-1] == OrchestratorState.TERMINAL

    def test_manual_sync_failure_uses_previous_stable(self, controller, metadata, checkpoint):
        controller.sync_outcome = OperationOutcome.FAILED
        record = make(
            controller,
            deploy_settings(rollback_mode="manual"),
            metadata,
            checkpoint=checkpoint,
            monitor=ScriptedMonitor(),
        ).run()

        assert record.result == DeploymentResult.DEPLOYMENT_FAILED
        assert metadata.field(APP, "rollback_from") == "42"
        assert checkpoint.requests[0].failed_revision == "42"


class TestRollbackMode:
    def test_rollback_by_history_id(self, controller, metadata, notifier):
        record = make(controller, rollback_settings("41"), metadata, notifier).run()

        assert record.success is True
        assert record.result == DeploymentResult.ROLLBACK_SUCCESS
        assert controller.calls_named("rollback") == [("rollback", APP, 41, 300)]
        assert record.current_revision == "42"
        assert record.target_revision == "41"

        assert metadata.field(APP, "rollback_from") == "42"
        assert metadata.field(APP, "rollback_to") == "41"
        assert metadata.field(APP, "current_version") == "41"
        assert metadata.field(APP, "status") == "rolled_back"
        assert metadata.field(APP, "result") == "rollback_success"

    def test_auto_sync_left_disabled(self, controller, metadata):
        make(controller, rollback_settings("41"), metadata).run()

        assert controller.calls_named("set_auto_sync") == [("set_auto_sync", APP, False)]
        assert controller.call_index(("set_auto_sync", APP, False)) < controller.call_index(
            ("rollback", APP, 41, 300)
        )

    def test_no_health_loop(self, controller, metadata):
        monitor = ScriptedMonitor()
        make(controller, rollback_settings("41"), metadata, monitor=monitor).run()

        assert monitor.calls == []

    def test_rollback_by_commit(self, controller, metadata):
        record = make(controller, rollback_settings(SHA_41[:12]), metadata).run()

        assert controller.calls_named("rollback") == [("rollback", APP, 41, 300)]
        assert record.result == DeploymentResult.ROLLBACK_SUCCESS

    def test_manual_rollback_result_prefix(self, controller, metadata):
        record = make(controller, rollback_settings("41", rollback_mode="manual"), metadata).run()

        assert record.result == DeploymentResult.MANUAL_ROLLBACK_SUCCESS
        assert metadata.field(APP, "result") == "manual_rollback_success"
        assert record.success is True

    def test_rollback_failure(self, controller, metadata, notifier):
        controller.rollback_outcome = OperationOutcome.FAILED
        record = make(controller, rollback_settings("41", rollback_mode="manual"), metadata, notifier).run()

        assert record.success is False
        assert record.result == DeploymentResult.MANUAL_ROLLBACK_FAILED
        assert metadata.field(APP, "status") == "rollback_failed"
        assert metadata.field(APP, "current_version") is None
        assert notifier.sent[-1].result == DeploymentResult.MANUAL_ROLLBACK_FAILED

    def test_unknown_target_does_not_call_rollback(self, controller, metadata, notifier):
        record = make(controller, rollback_settings("99"), metadata, notifier).run()

        assert record.success is False
        assert record.result == DeploymentResult.ROLLBACK_FAILED
        assert controller.calls_named("rollback") == []
        assert controller.calls_named("set_auto_sync") == []
        assert metadata.field(APP, "status") == "rollback_failed"
        assert len(notifier.sent) == 1
        assert metadata.field(APP, "rollback_from") == "42"
        assert metadata.field(APP, "rollback_to") == "99"
        assert record.current_revision == "42"

    def test_previous_keyword_uses_metadata(self, controller):
        metadata = InMemoryMetadata({metadata_key(APP, "previous_version"): "41"})
        make(controller, rollback_settings("previous"), metadata).run()

        assert controller.calls_named("rollback") == [("rollback", APP, 41, 300)]

    def test_previous_keyword_walks_history(self, controller, metadata):
        make(controller, rollback_settings("previous"), metadata).run()

        assert controller.calls_named("rollback") == [("rollback", APP, 41, 300)]


class TestAncillaryFailures:
    def test_metadata_and_notification_failures_do_not_change_result(self, controller):
        metadata = InMemoryMetadata(fail=True)
        notifier = RecordingNotifier(fail=True)

        record = make(controller, deploy_settings(), metadata, notifier, monitor=ScriptedMonitor(HEALTHY)).run()

        assert record.success is True
        assert record.result == DeploymentResult.SUCCESS

    def test_checkpoint_failure_is_not_fatal(self, controller, metadata):
        class BrokenCheckpoint:
            def raise_checkpoint(self, request):
                raise RuntimeError("pipeline upload failed")

        record = make(
            controller,
            deploy_settings(rollback_mode="manual"),
            metadata,
            checkpoint=BrokenCheckpoint(),
            monitor=ScriptedMonitor(DEGRADED),
        ).run()

        assert record.result == DeploymentResult.HEALTH_CHECK_FAILED
        assert record.states_visited[-1] == OrchestratorState.TERMINAL


class TestRecord:
    def test_to_dict(self, controller, metadata):
        record = make(controller, deploy_settings(), metadata, monitor=ScriptedMonitor(HEALTHY)).run()
        data = record.to_dict()

        assert data["app"] == APP
        assert data["result"] == "success"
        assert data["state"] == "terminal"
        assert data["completed_at"] is not None
        assert data["events"][-1]["details"] == {"result": "success"}

    def test_health_status_values(self):
        assert HealthStatus.from_controller("Suspended") is HealthStatus.UNKNOWN
        assert HealthStatus.DEGRADED.is_failure
        assert not HealthStatus.PROGRESSING.is_failure
