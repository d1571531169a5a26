"""Tests for output formatting and logging utilities."""

import json
import logging

import pytest
import yaml

from argocd_deploy.core.logging import LogLevel, StructuredLogger, get_logger, log_section, setup_logging
from argocd_deploy.core.output import OutputFormat, OutputFormatter, format_duration


class TestFormatDuration:
    """Tests for format_duration utility."""

    @pytest.mark.parametrize(
        "seconds,expected",
        [(0, "0s"), (42.4, "42s"), (60, "1m 00s"), (185, "3m 05s"), (3720, "1h 02m")],
    )
    def test_format(self, seconds, expected):
        assert format_duration(seconds) == expected


class TestOutputFormatter:
    """Tests for OutputFormatter class."""

    def test_quiet_mode_suppresses_output(self, capsys):
        formatter = OutputFormatter(quiet=True, color=False)
        formatter.print("test message")
        formatter.print_info("info message")
        formatter.print_success("success message")
        formatter.print_outcome("ArgoCD deploy: guestbook", {"result": "success"}, True)
        captured = capsys.readouterr()
        assert captured.out == ""

    def test_error_always_prints(self, capsys):
        formatter = OutputFormatter(quiet=True, color=False)
        formatter.print_error("error message")
        captured = capsys.readouterr()
        assert "error message" in captured.err

    def test_json_output(self, capsys):
        formatter = OutputFormatter(format=OutputFormat.JSON, color=False)
        data = {"app": "guestbook", "history_id": 41}
        formatter.print_data(data)
        assert json.loads(capsys.readouterr().out) == data

    def test_yaml_output_keeps_order(self, capsys):
        formatter = OutputFormatter(format=OutputFormat.YAML, color=False)
        formatter.print_data({"result": "success", "app": "guestbook"})
        out = capsys.readouterr().out
        assert yaml.safe_load(out) == {"result": "success", "app": "guestbook"}
        assert out.index("result") < out.index("app")

    def test_raw_output(self, capsys):
        formatter = OutputFormatter(format=OutputFormat.RAW, color=False)
        formatter.print_data({"app": "guestbook", "result": "success"})
        formatter.print_data([{"id": 42, "revision": "2222222"}])
        out = capsys.readouterr().out
        assert "app=guestbook" in out
        assert "42\t2222222" in out

    def test_outcome_machine_format(self, capsys):
        formatter = OutputFormatter(format=OutputFormat.JSON, color=False)
        formatter.print_outcome("ArgoCD rollback: guestbook", {"result": "rollback_failed"}, False)
        assert json.loads(capsys.readouterr().out) == {"result": "rollback_failed"}

    def test_outcome_panel(self, capsys):
        formatter = OutputFormatter(color=False)
        formatter.print_outcome("ArgoCD deploy: guestbook", {"previous_stable": "42", "synced_revision": ""}, True)
        out = capsys.readouterr().out
        assert "ArgoCD deploy: guestbook" in out
        assert "previous stable" in out
        assert "-" in out


class TestLogging:
    """Tests for logging setup."""

    def test_get_logger_namespacing(self):
        assert get_logger("context").name == "argocd_deploy.context"
        assert get_logger("argocd_deploy.deploy.health").name == "argocd_deploy.deploy.health"

    def test_structured_context(self, caplog):
        logger = StructuredLogger("test").bind(app="guestbook")
        with caplog.at_level(logging.INFO, logger="argocd_deploy"):
            logger.info("Rollback started", target=41, reason="health check failed", skipped=None)
        assert "Rollback started [app=guestbook target=41 reason='health check failed']" in caplog.text

    def test_sections_only_in_buildkite(self, capsys):
        setup_logging(LogLevel.WARNING, rich_output=False)
        log_section("Deploying guestbook")
        assert capsys.readouterr().err == ""

        setup_logging(LogLevel.WARNING, buildkite=True)
        log_section("Deploying guestbook")
        log_section("Rolling back guestbook", expanded=True)
        err = capsys.readouterr().err
        assert "--- :argo: Deploying guestbook" in err
        assert "+++ :argo: Rolling back guestbook" in err

        setup_logging(LogLevel.WARNING, rich_output=False)
