"""Tests for CLI commands and help output."""

import json
from unittest.mock import PropertyMock, patch

import pytest
from click.testing import CliRunner

from argocd_deploy.cli import cli
from argocd_deploy.deploy.checkpoint import checkpoint_key
from argocd_deploy.deploy.metadata import FileMetadataStore, metadata_key
from argocd_deploy.deploy.models import OperationOutcome

from conftest import APP, SHA_41


@pytest.fixture
def invoke(cli_runner, mock_config, controller):
    """Invoke the CLI against the fake controller and a file metadata store."""

    def _invoke(*args):
        with patch("argocd_deploy.cli.load_config", return_value=mock_config), patch(
            "argocd_deploy.core.context.DeployContext.controller",
            new_callable=PropertyMock,
            return_value=controller,
        ):
            return cli_runner.invoke(cli, ["--no-color", *args])

    return _invoke


@pytest.fixture
def state(mock_config):
    return FileMetadataStore(mock_config.profiles["default"].metadata.state_dir)


def parse_json(output: str) -> dict:
    start = output.index("{")
    end = output.rindex("}") + 1
    return json.loads(output[start:end])


class TestCLIEntryPoint:
    """Tests for main CLI entry point, flags, and options."""

    def test_help(self, cli_runner: CliRunner):
        """Test CLI help output."""
        result = cli_runner.invoke(cli, ["--help"])
        assert result.exit_code == 0
        assert "argocd-deploy" in result.output
        for command in ("deploy", "rollback", "run", "history", "resolve", "config"):
            assert command in result.output

    def test_version(self, cli_runner: CliRunner):
        """Test CLI version output."""
        result = cli_runner.invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert "argocd-deploy version" in result.output

    def test_config_command(self, invoke):
        """Test configuration is shown."""
        result = invoke("-o", "json", "config")
        assert result.exit_code == 0
        data = parse_json(result.output)
        assert data["metadata"]["backend"] == "file"
        assert data["in_buildkite"] is False

    @pytest.mark.parametrize("command", ["deploy", "rollback", "run", "history", "resolve"])
    def test_command_help(self, cli_runner: CliRunner, command):
        """Test each command has help."""
        result = cli_runner.invoke(cli, [command, "--help"])
        assert result.exit_code == 0


class TestDeployCommand:
    """Tests for the deploy command."""

    def test_successful_deploy(self, invoke, controller, state):
        result = invoke("-o", "json", "deploy", "--app", APP)

        assert result.exit_code == 0, result.output
        assert parse_json(result.output)["result"] == "success"
        assert state.get(metadata_key(APP, "current_version")) == "43"
        assert state.get(metadata_key(APP, "previous_version")) == "42"

    def test_failed_deploy_rolls_back_and_exits_nonzero(self, invoke, controller, state):
        controller.sync_outcome = OperationOutcome.FAILED

        result = invoke("-o", "json", "deploy", "--app", APP)

        assert result.exit_code == 1
        assert state.get(metadata_key(APP, "result")) == "auto_rollback_success"
        assert controller.calls_named("rollback") == [("rollback", APP, 42, 300)]

    def test_invalid_timeout_is_rejected(self, invoke, controller):
        result = invoke("deploy", "--app", APP, "--timeout", "5")

        assert result.exit_code == 1
        assert "Invalid deployment settings" in result.output
        assert controller.calls == []

    def test_invalid_slack_channel(self, invoke, controller):
        result = invoke("deploy", "--app", APP, "--slack-channel", "deploys")

        assert result.exit_code == 1
        assert controller.calls == []

    def test_options_reach_controller(self, invoke, controller):
        result = invoke("deploy", "--app", APP, "--timeout", "600")

        assert result.exit_code == 0, result.output
        assert controller.calls_named("sync") == [("sync", APP, 600)]


class TestRollbackCommand:
    """Tests for the rollback command."""

    def test_rollback_by_commit(self, invoke, controller, state):
        result = invoke("rollback", "--app", APP, "--rollback-mode", "auto", "--target-revision", SHA_41)

        assert result.exit_code == 0, result.output
        assert controller.calls_named("rollback") == [("rollback", APP, 41, 300)]
        assert state.get(metadata_key(APP, "result")) == "rollback_success"

    def test_rollback_uses_checkpoint_answer(self, invoke, controller, state):
        state.set(checkpoint_key(APP), "41")

        result = invoke("rollback", "--app", APP, "--rollback-mode", "manual")

        assert result.exit_code == 0, result.output
        assert controller.calls_named("rollback") == [("rollback", APP, 41, 300)]
        assert state.get(metadata_key(APP, "result")) == "manual_rollback_success"

    def test_rollback_without_target(self, invoke, controller):
        result = invoke("rollback", "--app", APP, "--rollback-mode", "auto")

        assert result.exit_code == 1
        assert controller.calls == []

    def test_rollback_mode_required(self, invoke):
        result = invoke("rollback", "--app", APP, "--target-revision", "41")

        assert result.exit_code == 2

    def test_unknown_target(self, invoke, controller, state):
        result = invoke("rollback", "--app", APP, "--rollback-mode", "auto", "--target-revision", "99")

        assert result.exit_code == 1
        assert controller.calls_named("rollback") == []
        assert state.get(metadata_key(APP, "status")) == "rollback_failed"


class TestPluginCommand:
    """Tests for Buildkite plugin mode."""

    def test_reads_plugin_environment(self, invoke, controller, monkeypatch):
        monkeypatch.setenv("BUILDKITE_PLUGIN_ARGOCD_DEPLOYMENT_APP", APP)
        monkeypatch.setenv("BUILDKITE_PLUGIN_ARGOCD_DEPLOYMENT_MODE", "rollback")
        monkeypatch.setenv("BUILDKITE_PLUGIN_ARGOCD_DEPLOYMENT_ROLLBACK_MODE", "auto")
        monkeypatch.setenv("BUILDKITE_PLUGIN_ARGOCD_DEPLOYMENT_TARGET_REVISION", "41")
        monkeypatch.setenv("BUILDKITE_PLUGIN_ARGOCD_DEPLOYMENT_TIMEOUT", "120")

        result = invoke("run")

        assert result.exit_code == 0, result.output
        assert controller.calls_named("rollback") == [("rollback", APP, 41, 120)]

    def test_missing_app(self, invoke, controller):
        result = invoke("run")

        assert result.exit_code == 1
        assert controller.calls == []

    def test_malformed_plugin_value(self, invoke, controller, monkeypatch):
        monkeypatch.setenv("BUILDKITE_PLUGIN_ARGOCD_DEPLOYMENT_APP", APP)
        monkeypatch.setenv("BUILDKITE_PLUGIN_ARGOCD_DEPLOYMENT_TIMEOUT", "abc")

        result = invoke("run")

        assert result.exit_code == 1
        assert isinstance(result.exception, SystemExit)
        assert "Invalid plugin configuration" in result.output
        assert "timeout" in result.output
        assert controller.calls == []

    def test_plugin_server_overrides_environment(self, invoke, mock_config, monkeypatch):
        monkeypatch.setenv("ARGOCD_SERVER", "argocd.from-env.test")
        monkeypatch.setenv("BUILDKITE_PLUGIN_ARGOCD_DEPLOYMENT_APP", APP)
        monkeypatch.setenv("BUILDKITE_PLUGIN_ARGOCD_DEPLOYMENT_ARGOCD_SERVER", "argocd.plugin.test")

        result = invoke("run")

        assert result.exit_code == 0, result.output
        assert mock_config.profiles["default"].argocd.get_url() == "argocd.plugin.test"


class TestHistoryCommands:
    """Tests for history and resolve."""

    def test_history(self, invoke):
        result = invoke("-o", "json", "history", APP)

        assert result.exit_code == 0, result.output
        rows = json.loads(result.output[result.output.index("["):result.output.rindex("]") + 1])
        assert [row["id"] for row in rows] == [42, 41]
        assert rows[0]["current"] == "*"

    def test_resolve_commit(self, invoke):
        result = invoke("-o", "json", "resolve", APP, SHA_41[:7])

        assert result.exit_code == 0, result.output
        assert parse_json(result.output) == {"app": APP, "token": SHA_41[:7], "history_id": 41}

    def test_resolve_previous(self, invoke):
        result = invoke("-o", "json", "resolve", APP, "previous")

        assert result.exit_code == 0, result.output
        assert parse_json(result.output)["history_id"] == 41

    def test_resolve_unknown_lists_history(self, invoke):
        result = invoke("resolve", APP, "deadbeef")

        assert result.exit_code == 1
        assert "Available history" in result.output
