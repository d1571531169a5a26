"""Deploy, rollback and plugin-mode commands."""

import sys
from typing import Any

import click

from argocd_deploy.config import load_plugin_settings, validate_settings
from argocd_deploy.core.context import DeployContext, pass_context
from argocd_deploy.core.exceptions import ConfigError
from argocd_deploy.core.output import format_duration
from argocd_deploy.deploy.checkpoint import checkpoint_key
from argocd_deploy.deploy.models import DeploymentMode, DeploymentRecord


def common_options(func: Any) -> Any:
    """Options shared by deploy and rollback."""
    options = [
        click.option("--app", required=True, help="Argo CD application name"),
        click.option("--timeout", type=int, default=None, help="Operation timeout in seconds (30-3600)"),
        click.option("--health-check-interval", type=int, default=None, help="Seconds between health polls (10-300)"),
        click.option("--health-check-timeout", type=int, default=None, help="Health check timeout in seconds (60-1800)"),
        click.option("--collect-logs/--no-collect-logs", default=False, help="Collect application logs after the operation"),
        click.option("--upload-artifacts/--no-upload-artifacts", default=False, help="Upload logs as build artifacts"),
        click.option("--log-lines", type=int, default=None, help="Application log lines to collect (100-10000)"),
        click.option("--slack-channel", default=None, help="Slack channel (#channel, @user or ID)"),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def build_settings(mode: DeploymentMode, **options: Any) -> dict[str, Any]:
    """Translate CLI options into DeploymentSettings input, dropping unset values."""
    slack_channel = options.pop("slack_channel", None)
    data: dict[str, Any] = {"mode": mode.value}
    data.update({k: v for k, v in options.items() if v is not None})
    if slack_channel:
        data["notifications"] = {"slack_channel": slack_channel}
    return data


def checkpoint_target(ctx: DeployContext, app: str) -> str | None:
    """Rollback target an operator entered at the manual checkpoint, if any."""
    target = ctx.metadata.get(checkpoint_key(app))
    if target:
        ctx.logger.info("Using rollback target from checkpoint", app=app, target=target)
    return target or None


def report_config_error(ctx: DeployContext, error: ConfigError) -> None:
    """Print a configuration error with one line per invalid field, then abort."""
    ctx.output.print_error(error.message)
    for line in error.details.get("errors", []):
        ctx.output.print(f"  {line}")
    raise click.Abort()


def execute(ctx: DeployContext, data: dict[str, Any]) -> DeploymentRecord:
    """Validate, run and report one invocation. Exits 1 unless it succeeded."""
    try:
        settings = validate_settings(data)
    except ConfigError as e:
        report_config_error(ctx, e)

    try:
        record = ctx.build_orchestrator(settings).run()
    finally:
        ctx.close()

    print_summary(ctx, record)
    if not record.success:
        sys.exit(1)
    return record


def print_summary(ctx: DeployContext, record: DeploymentRecord) -> None:
    summary = {
        "app": record.app,
        "mode": record.mode.value,
        "rollback_mode": record.rollback_mode.value,
        "result": record.result.value,
        "previous_stable": record.previous_stable,
        "synced_revision": record.synced_revision or "",
        "target_revision": record.target_revision or "",
        "current_revision": record.current_revision or "",
        "duration": format_duration(record.duration_seconds or 0),
    }
    ctx.output.print_outcome(f"ArgoCD {record.mode.value}: {record.app}", summary, record.success)

    if record.success:
        ctx.output.print_success(record.message or record.result.value)
    else:
        ctx.output.print_error(record.message or record.result.value)


@click.command()
@common_options
@click.option(
    "--rollback-mode",
    type=click.Choice(["auto", "manual"]),
    default="auto",
    help="How to respond to a failed deployment",
)
@pass_context
def deploy(ctx: DeployContext, **options: Any) -> None:
    """Sync an application and roll back if it does not become healthy.

    \b
    Examples:
        argocd-deploy deploy --app my-app
        argocd-deploy deploy --app my-app --rollback-mode manual --slack-channel "#deploys"
    """
    execute(ctx, build_settings(DeploymentMode.DEPLOY, **options))


@click.command()
@common_options
@click.option(
    "--rollback-mode",
    type=click.Choice(["auto", "manual"]),
    required=True,
    help="Recorded in the result (manual_rollback_* for manual)",
)
@click.option(
    "--target-revision",
    default=None,
    help="History ID, commit SHA or 'previous'; defaults to the checkpoint answer",
)
@pass_context
def rollback(ctx: DeployContext, **options: Any) -> None:
    """Roll an application back to an earlier revision.

    \b
    Examples:
        argocd-deploy rollback --app my-app --rollback-mode auto --target-revision 41
        argocd-deploy rollback --app my-app --rollback-mode auto --target-revision previous
        argocd-deploy rollback --app my-app --rollback-mode manual
    """
    if not options.get("target_revision"):
        options["target_revision"] = checkpoint_target(ctx, options["app"])
    execute(ctx, build_settings(DeploymentMode.ROLLBACK, **options))


@click.command("run")
@pass_context
def run_plugin(ctx: DeployContext) -> None:
    """Run from Buildkite plugin configuration.

    Reads BUILDKITE_PLUGIN_ARGOCD_DEPLOYMENT_* environment variables.

    \b
    Examples:
        argocd-deploy run
    """
    try:
        plugin = load_plugin_settings()
    except ConfigError as e:
        report_config_error(ctx, e)
    data = plugin.to_settings_dict()

    if plugin.argocd_server:
        ctx.profile.argocd.override_url = plugin.argocd_server

    if data.get("mode") == DeploymentMode.ROLLBACK.value and not data.get("target_revision") and plugin.app:
        target = checkpoint_target(ctx, plugin.app)
        if target:
            data["target_revision"] = target

    execute(ctx, data)
