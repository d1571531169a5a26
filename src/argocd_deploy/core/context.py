"""Click context object for sharing state across commands."""

from __future__ import annotations

import os
from typing import TYPE_CHECKING

import click

from argocd_deploy.config import (
    DeploymentSettings,
    ProfileConfig,
    ToolConfig,
    get_default_config,
)
from argocd_deploy.core.logging import LogLevel, StructuredLogger, setup_logging
from argocd_deploy.core.output import OutputFormat, OutputFormatter

if TYPE_CHECKING:
    from argocd_deploy.clients.argocd import ArgoCDClient
    from argocd_deploy.clients.buildkite import BuildkiteAgent
    from argocd_deploy.clients.slack import SlackClient
    from argocd_deploy.controller.base import Controller
    from argocd_deploy.deploy.artifacts import ArtifactCollector
    from argocd_deploy.deploy.checkpoint import Checkpoint
    from argocd_deploy.deploy.metadata import MetadataStore
    from argocd_deploy.deploy.notifications import Notifier
    from argocd_deploy.deploy.orchestrator import Orchestrator


def running_in_buildkite() -> bool:
    return os.environ.get("BUILDKITE") == "true"


class DeployContext:
    """Shared context object for argocd-deploy commands.

    This object is passed through Click's context mechanism and provides
    access to configuration, the controller and the side-effect sinks.
    """

    def __init__(
        self,
        config: ToolConfig | None = None,
        profile: str | None = None,
        output_format: OutputFormat | None = None,
        verbose: int = 0,
        quiet: bool = False,
        color: bool = True,
    ):
        # Load or use provided config
        self._config = config or get_default_config()
        self._profile_name = profile or "default"

        # Output settings (CLI overrides config)
        self._output_format = output_format or self._config.global_settings.output_format
        self._verbose = verbose
        self._quiet = quiet
        self._color = color

        # Determine log level from verbosity
        if verbose >= 2:
            log_level = LogLevel.DEBUG
        elif verbose >= 1:
            log_level = LogLevel.INFO
        elif quiet:
            log_level = LogLevel.ERROR
        else:
            log_level = self._config.global_settings.verbosity

        setup_logging(log_level, rich_output=color, buildkite=running_in_buildkite())
        self._logger = StructuredLogger("context")

        self._output = OutputFormatter(
            format=self._output_format,
            color=color,
            quiet=quiet,
        )

        # Lazy-loaded collaborators
        self._argocd_client: ArgoCDClient | None = None
        self._controller: Controller | None = None
        self._agent: BuildkiteAgent | None = None
        self._slack_client: SlackClient | None = None
        self._metadata: MetadataStore | None = None

    @property
    def config(self) -> ToolConfig:
        """Get the loaded configuration."""
        return self._config

    @property
    def profile(self) -> ProfileConfig:
        """Get the current profile configuration."""
        return self._config.get_profile(self._profile_name)

    @property
    def profile_name(self) -> str:
        return self._profile_name

    @property
    def output(self) -> OutputFormatter:
        return self._output

    @property
    def output_format(self) -> OutputFormat:
        return self._output_format

    @property
    def verbose(self) -> int:
        return self._verbose

    @property
    def quiet(self) -> bool:
        return self._quiet

    @property
    def logger(self) -> StructuredLogger:
        return self._logger

    @property
    def in_buildkite(self) -> bool:
        return running_in_buildkite()

    # Clients

    @property
    def argocd(self) -> "ArgoCDClient":
        """Get or create the Argo CD API client."""
        if self._argocd_client is None:
            from argocd_deploy.clients.argocd import ArgoCDClient

            self._argocd_client = ArgoCDClient(self.profile.argocd)
        return self._argocd_client

    @property
    def agent(self) -> "BuildkiteAgent":
        """Get or create the buildkite-agent wrapper."""
        if self._agent is None:
            from argocd_deploy.clients.buildkite import BuildkiteAgent

            self._agent = BuildkiteAgent(self.profile.buildkite)
        return self._agent

    @property
    def slack(self) -> "SlackClient":
        """Get or create the Slack client."""
        if self._slack_client is None:
            from argocd_deploy.clients.slack import SlackClient

            self._slack_client = SlackClient(self.profile.slack)
        return self._slack_client

    @property
    def controller(self) -> "Controller":
        """Controller adapter selected by argocd.backend."""
        if self._controller is None:
            if self.profile.argocd.backend == "cli":
                from argocd_deploy.controller.cli import ArgoCDCliController

                self._controller = ArgoCDCliController(self.profile.argocd.cli_path)
            else:
                from argocd_deploy.controller.api import ArgoCDApiController

                self._controller = ArgoCDApiController(self.argocd)
            self._logger.debug("Using controller backend", backend=self.profile.argocd.backend)
        return self._controller

    @property
    def metadata(self) -> "MetadataStore":
        """Buildkite meta-data inside a build, the state file otherwise."""
        if self._metadata is None:
            from argocd_deploy.deploy.metadata import BuildkiteMetadataStore, FileMetadataStore

            settings = self.profile.metadata
            if settings.backend == "buildkite" and self.in_buildkite:
                self._metadata = BuildkiteMetadataStore(self.agent)
            else:
                if settings.backend == "buildkite":
                    self._logger.debug("Not running in Buildkite, using file metadata store")
                self._metadata = FileMetadataStore(settings.state_dir)
        return self._metadata

    # Deployment collaborators

    def build_notifier(self, settings: DeploymentSettings) -> "Notifier":
        """Assemble the notifiers configured for this invocation."""
        from argocd_deploy.deploy.notifications import (
            BuildkiteAnnotationNotifier,
            BuildkitePipelineNotifier,
            CompositeNotifier,
            NullNotifier,
            SlackNotifier,
        )

        buildkite = self.profile.buildkite
        notifiers: list[Notifier] = []

        channel = settings.slack_channel
        if channel:
            if buildkite.notify_via == "pipeline" and self.in_buildkite:
                notifiers.append(BuildkitePipelineNotifier(self.agent, channel))
            else:
                notifiers.append(SlackNotifier(self.slack, channel))

        if buildkite.annotate and self.in_buildkite:
            notifiers.append(BuildkiteAnnotationNotifier(self.agent))

        if not notifiers:
            return NullNotifier()
        if len(notifiers) == 1:
            return notifiers[0]
        return CompositeNotifier(notifiers)

    def build_checkpoint(self) -> "Checkpoint":
        from argocd_deploy.deploy.checkpoint import BuildkiteCheckpoint, LoggingCheckpoint

        if self.in_buildkite:
            return BuildkiteCheckpoint(self.agent)
        return LoggingCheckpoint()

    def build_artifacts(self, settings: DeploymentSettings) -> "ArtifactCollector":
        from argocd_deploy.deploy.artifacts import ArtifactCollector

        return ArtifactCollector(
            self.controller,
            agent=self.agent if self.in_buildkite else None,
            collect_logs=settings.collect_logs,
            upload_artifacts=settings.upload_artifacts,
            log_lines=settings.log_lines,
        )

    def build_orchestrator(self, settings: DeploymentSettings) -> "Orchestrator":
        """Wire an orchestrator for one validated invocation."""
        from argocd_deploy.deploy.orchestrator import Orchestrator

        return Orchestrator(
            controller=self.controller,
            settings=settings,
            metadata=self.metadata,
            notifier=self.build_notifier(settings),
            checkpoint=self.build_checkpoint(),
            artifacts=self.build_artifacts(settings),
        )

    def close(self) -> None:
        """Close any HTTP clients that were opened."""
        if self._argocd_client is not None:
            self._argocd_client.close()
        if self._slack_client is not None:
            self._slack_client.close()


# Click decorator for passing context
pass_context = click.make_pass_decorator(DeployContext, ensure=True)
