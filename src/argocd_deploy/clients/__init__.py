"""API clients for external services."""

from argocd_deploy.clients.argocd import ArgoCDClient
from argocd_deploy.clients.buildkite import BuildInfo, BuildkiteAgent
from argocd_deploy.clients.slack import SlackClient

__all__ = ["ArgoCDClient", "BuildInfo", "BuildkiteAgent", "SlackClient"]
