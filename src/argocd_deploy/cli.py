"""Main CLI entry point for argocd-deploy."""

import sys
from typing import Any

import click
from rich.console import Console

from argocd_deploy import __version__
from argocd_deploy.config import load_config
from argocd_deploy.core.context import DeployContext
from argocd_deploy.core.exceptions import ArgoCDDeployError, ConfigError
from argocd_deploy.core.output import OutputFormat

CONTEXT_SETTINGS = {
    "help_option_names": ["-h", "--help"],
    "max_content_width": 120,
}


class OutputFormatType(click.ParamType):
    """Custom Click parameter type for output format."""

    name = "format"

    def convert(
        self,
        value: Any,
        param: click.Parameter | None,
        ctx: click.Context | None,
    ) -> OutputFormat:
        if isinstance(value, OutputFormat):
            return value
        try:
            return OutputFormat(value.lower())
        except ValueError:
            self.fail(
                f"Invalid format '{value}'. Choose from: table, json, yaml, raw",
                param,
                ctx,
            )


OUTPUT_FORMAT = OutputFormatType()


def print_version(ctx: click.Context, param: click.Parameter, value: bool) -> None:
    """Print version and exit."""
    if not value or ctx.resilient_parsing:
        return
    console = Console()
    console.print(f"argocd-deploy version {__version__}")
    ctx.exit()


@click.group(context_settings=CONTEXT_SETTINGS)
@click.option(
    "-p",
    "--profile",
    metavar="NAME",
    envvar="ARGOCD_DEPLOY_PROFILE",
    help="Configuration profile to use",
)
@click.option(
    "-o",
    "--output",
    "output_format",
    type=OUTPUT_FORMAT,
    metavar="FORMAT",
    help="Output format: table, json, yaml, raw",
)
@click.option(
    "-v",
    "--verbose",
    count=True,
    help="Increase verbosity (-v for info, -vv for debug)",
)
@click.option(
    "-q",
    "--quiet",
    is_flag=True,
    help="Suppress non-essential output",
)
@click.option(
    "--no-color",
    is_flag=True,
    help="Disable colored output",
)
@click.option(
    "-c",
    "--config",
    "config_file",
    type=click.Path(exists=True),
    metavar="FILE",
    envvar="ARGOCD_DEPLOY_CONFIG",
    help="Path to config file",
)
@click.option(
    "--version",
    is_flag=True,
    callback=print_version,
    expose_value=False,
    is_eager=True,
    help="Show version and exit",
)
@click.pass_context
def cli(
    ctx: click.Context,
    profile: str | None,
    output_format: OutputFormat | None,
    verbose: int,
    quiet: bool,
    no_color: bool,
    config_file: str | None,
) -> None:
    """argocd-deploy - Argo CD deployments with health checks and rollback.

    Syncs an Argo CD application, watches its health and rolls back
    automatically or through a manual Buildkite checkpoint.

    \b
    Examples:
        argocd-deploy deploy --app my-app
        argocd-deploy rollback --app my-app --rollback-mode auto --target-revision previous
        argocd-deploy history my-app
        argocd-deploy run

    \b
    Configuration:
        ~/.argocd-deploy/config.yaml    User configuration
        ./argocd-deploy.yaml            Project configuration
        ARGOCD_SERVER, ARGOCD_AUTH_TOKEN, SLACK_BOT_TOKEN
    """
    try:
        config = load_config(config_file, profile)

        ctx.obj = DeployContext(
            config=config,
            profile=profile,
            output_format=output_format,
            verbose=verbose,
            quiet=quiet,
            color=not no_color,
        )

    except ConfigError as e:
        console = Console(stderr=True)
        console.print(f"[red]Configuration error:[/red] {e}")
        sys.exit(1)


def register_commands() -> None:
    """Register all commands."""
    from argocd_deploy.commands.deploy import deploy, rollback, run_plugin
    from argocd_deploy.commands.history import history, resolve

    cli.add_command(deploy)
    cli.add_command(rollback)
    cli.add_command(run_plugin)
    cli.add_command(history)
    cli.add_command(resolve)


register_commands()


@cli.command()
@click.pass_context
def config(ctx: click.Context) -> None:
    """Show current configuration."""
    deploy_ctx: DeployContext = ctx.obj
    profile = deploy_ctx.profile
    config_data = {
        "profile": deploy_ctx.profile_name,
        "output_format": deploy_ctx.output_format.value,
        "verbose": deploy_ctx.verbose,
        "in_buildkite": deploy_ctx.in_buildkite,
        "argocd": {
            "url": profile.argocd.get_url(),
            "backend": profile.argocd.backend,
            "has_token": bool(profile.argocd.get_token()),
        },
        "slack": {
            "has_token": bool(profile.slack.get_token()),
        },
        "buildkite": {
            "notify_via": profile.buildkite.notify_via,
            "annotate": profile.buildkite.annotate,
        },
        "metadata": {
            "backend": profile.metadata.backend,
        },
    }
    deploy_ctx.output.print_data(config_data, title="Current Configuration")


def main() -> None:
    """Main entry point."""
    try:
        cli()
    except ArgoCDDeployError as e:
        console = Console(stderr=True)
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        console = Console(stderr=True)
        console.print("\n[yellow]Interrupted[/yellow]")
        sys.exit(130)
