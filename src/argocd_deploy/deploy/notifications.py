"""Human-facing notifications for deployment and rollback outcomes."""

from dataclasses import dataclass, field
from typing import Any, Protocol

import yaml
from jinja2 import BaseLoader, Environment

from argocd_deploy.clients.buildkite import BuildInfo, BuildkiteAgent
from argocd_deploy.clients.slack import SlackClient
from argocd_deploy.core.exceptions import AncillaryError
from argocd_deploy.core.logging import StructuredLogger
from argocd_deploy.deploy.ancillary import AncillaryResult, best_effort
from argocd_deploy.deploy.models import UNKNOWN, DeploymentResult, utcnow

logger = StructuredLogger(__name__)

_jinja = Environment(loader=BaseLoader(), keep_trailing_newline=False)


@dataclass
class Notification:
    """One outcome worth telling a human about."""

    app: str
    result: DeploymentResult
    from_revision: str = UNKNOWN
    to_revision: str = UNKNOWN
    build: BuildInfo = field(default_factory=BuildInfo.from_env)
    detail: str = ""

    @property
    def is_rollback(self) -> bool:
        return "rollback" in self.result.value and self.result is not DeploymentResult.NO_ROLLBACK_TARGET

    def context(self) -> dict[str, Any]:
        return {
            "app": self.app,
            "result": self.result.value,
            "from_revision": self.from_revision or UNKNOWN,
            "to_revision": self.to_revision or UNKNOWN,
            "build": self.build,
            "detail": self.detail,
            "timestamp": utcnow().strftime("%Y-%m-%d %H:%M:%S UTC"),
        }


# result -> (emoji title, status line, closing line)
_MESSAGES: dict[DeploymentResult, tuple[str, str, str]] = {
    DeploymentResult.SUCCESS: (
        ":rocket: *ArgoCD Deployment*",
        "Deployment completed successfully",
        "Application is healthy.",
    ),
    DeploymentResult.AUTO_ROLLBACK_SUCCESS: (
        ":white_check_mark: *ArgoCD Automatic Rollback Successful*",
        "Deployment failed and was rolled back",
        "The application is back on the previous stable revision.",
    ),
    DeploymentResult.AUTO_ROLLBACK_FAILED: (
        ":x: *ArgoCD Automatic Rollback Failed*",
        "Deployment failed and the rollback did not recover it",
        "Manual investigation may be required.",
    ),
    DeploymentResult.NO_ROLLBACK_TARGET: (
        ":rotating_light: *ArgoCD Deployment Failed*",
        "Deployment failed and there is no previous revision to roll back to",
        "Manual investigation required.",
    ),
    DeploymentResult.DEPLOYMENT_FAILED: (
        ":rotating_light: *ArgoCD Deployment Failed*",
        "Deployment sync operation failed",
        "Manual rollback decision required.",
    ),
    DeploymentResult.HEALTH_CHECK_FAILED: (
        ":rotating_light: *ArgoCD Deployment Health Check Failed*",
        "Health check failed after deployment",
        "Manual rollback decision required.",
    ),
    DeploymentResult.ROLLBACK_SUCCESS: (
        ":white_check_mark: *ArgoCD Rollback Successful*",
        "Rollback completed successfully",
        "",
    ),
    DeploymentResult.ROLLBACK_FAILED: (
        ":x: *ArgoCD Rollback Failed*",
        "Rollback operation failed",
        "Manual investigation may be required.",
    ),
    DeploymentResult.MANUAL_ROLLBACK_SUCCESS: (
        ":white_check_mark: *ArgoCD Manual Rollback Successful*",
        "Manual rollback completed successfully",
        "",
    ),
    DeploymentResult.MANUAL_ROLLBACK_FAILED: (
        ":x: *ArgoCD Manual Rollback Failed*",
        "Manual rollback operation failed",
        "Manual investigation may be required.",
    ),
}

_DEFAULT_MESSAGE = (":rotating_light: *ArgoCD Rollback Alert*", "", "")

# Failed deploys awaiting a decision label the revisions differently
_AWAITING_DECISION = (DeploymentResult.DEPLOYMENT_FAILED, DeploymentResult.HEALTH_CHECK_FAILED)

SLACK_TEMPLATE = """{{ title }}

*Application:* `{{ app }}`
{% if awaiting -%}
*Current Revision:* `{{ from_revision }}`
*Available Rollback Target:* `{{ to_revision }}`
{% else -%}
*From Revision:* `{{ from_revision }}`
*To Revision:* `{{ to_revision }}`
{% endif -%}
*Status:* {{ status or result }}
*Build:* <{{ build.build_url }}|#{{ build.build_number }}>
*Pipeline:* `{{ build.pipeline }}`
*Branch:* `{{ build.branch }}`
{%- if detail %}

{{ detail }}
{%- endif %}
{%- if closing %}

{{ closing }}
{%- endif %}"""

ANNOTATION_TEMPLATE = """{{ title }}

**Application:** `{{ app }}`
**{{ from_label }}:** `{{ from_revision }}`
**{{ to_label }}:** `{{ to_revision }}`
**Result:** `{{ result }}`
**Build:** [{{ build.build_number }}]({{ build.build_url }})
**Pipeline:** `{{ build.pipeline }}`
**Branch:** `{{ build.branch }}`
**Timestamp:** {{ timestamp }}
{%- if closing %}

{{ closing }}
{%- endif %}"""


def render_message(notification: Notification) -> str:
    """Render the Slack mrkdwn text for a notification."""
    title, status, closing = _MESSAGES.get(notification.result, _DEFAULT_MESSAGE)
    template = _jinja.from_string(SLACK_TEMPLATE)
    return template.render(
        **notification.context(),
        title=title,
        status=status,
        closing=closing,
        awaiting=notification.result in _AWAITING_DECISION,
    )


def annotation_style(result: DeploymentResult) -> str:
    if result is DeploymentResult.SUCCESS or result in (
        DeploymentResult.ROLLBACK_SUCCESS,
        DeploymentResult.MANUAL_ROLLBACK_SUCCESS,
    ):
        return "success"
    if result is DeploymentResult.AUTO_ROLLBACK_SUCCESS:
        return "warning"
    if result is DeploymentResult.PENDING:
        return "info"
    return "error"


def render_annotation(notification: Notification) -> str:
    """Render the Buildkite annotation markdown for a notification."""
    title, _, closing = _MESSAGES.get(notification.result, _DEFAULT_MESSAGE)
    if notification.is_rollback:
        from_label, to_label = "Failed Revision", "Rolled Back To"
    elif notification.result in _AWAITING_DECISION:
        from_label, to_label = "Current Revision", "Available Rollback Target"
    else:
        from_label, to_label = "Previous Version", "Current Version"

    template = _jinja.from_string(ANNOTATION_TEMPLATE)
    return template.render(
        **notification.context(),
        title=title.replace("*", "**"),
        closing=closing,
        from_label=from_label,
        to_label=to_label,
    )


def notify_pipeline(channel: str, notification: Notification) -> dict[str, Any]:
    """Single-step pipeline whose Buildkite notify block posts to Slack."""
    return {
        "steps": [
            {
                "label": ":slack: ArgoCD Notification",
                "command": "echo 'Sending notification to Slack...'",
                "notify": [
                    {
                        "slack": {
                            "channels": [channel],
                            "message": render_message(notification),
                        }
                    }
                ],
            }
        ]
    }


class Notifier(Protocol):
    """Delivers a notification; raising is allowed and handled by the caller."""

    def notify(self, notification: Notification) -> None:
        ...


class NullNotifier:
    """Used when no channel is configured."""

    def notify(self, notification: Notification) -> None:
        logger.info(
            "No Slack channel configured - skipping notification",
            app=notification.app,
            result=notification.result.value,
        )


class SlackNotifier:
    """Posts directly through the Slack Web API."""

    def __init__(
        self,
        client: SlackClient,
        channel: str,
        username: str | None = None,
        icon_emoji: str | None = None,
    ):
        self._client = client
        self._channel = channel
        self._username = username
        self._icon_emoji = icon_emoji

    def notify(self, notification: Notification) -> None:
        logger.info("Sending Slack notification", channel=self._channel, result=notification.result.value)
        self._client.post_message(
            channel=self._channel,
            text=render_message(notification),
            username=self._username,
            icon_emoji=self._icon_emoji,
        )


class BuildkitePipelineNotifier:
    """Injects a notify step so Buildkite's own Slack integration delivers the message."""

    def __init__(self, agent: BuildkiteAgent, channel: str):
        self._agent = agent
        self._channel = channel

    def notify(self, notification: Notification) -> None:
        pipeline = yaml.safe_dump(notify_pipeline(self._channel, notification), sort_keys=False)
        self._agent.pipeline_upload(pipeline)
        logger.info("Slack notification step injected", channel=self._channel)


class BuildkiteAnnotationNotifier:
    """Annotates the build with the outcome."""

    def __init__(self, agent: BuildkiteAgent):
        self._agent = agent

    def notify(self, notification: Notification) -> None:
        kind = "rollback" if notification.is_rollback else "deployment"
        self._agent.annotate(
            render_annotation(notification),
            style=annotation_style(notification.result),
            context=f"argocd-{kind}-{notification.app}",
        )


class CompositeNotifier:
    """Fans out to several notifiers; one failing does not stop the rest."""

    def __init__(self, notifiers: list[Notifier]):
        self._notifiers = notifiers

    @property
    def notifiers(self) -> list[Notifier]:
        return list(self._notifiers)

    def notify(self, notification: Notification) -> None:
        results: list[AncillaryResult] = [
            best_effort(f"notify via {type(n).__name__}", n.notify, notification)
            for n in self._notifiers
        ]
        failed = [r for r in results if not r.ok]
        if failed and len(failed) == len(results):
            raise AncillaryError(
                "All notification channels failed",
                action="notify",
                details={r.action: r.error for r in failed},
            )
