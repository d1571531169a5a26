"""Core utilities and shared components for argocd-deploy."""

# Note: Import context lazily to avoid circular imports
# Use: from argocd_deploy.core.context import DeployContext, pass_context
from argocd_deploy.core.exceptions import (
    AncillaryError,
    ArgoCDDeployError,
    ConfigError,
    ResolutionError,
)
from argocd_deploy.core.output import OutputFormat, OutputFormatter

__all__ = [
    "AncillaryError",
    "ArgoCDDeployError",
    "ConfigError",
    "OutputFormat",
    "OutputFormatter",
    "ResolutionError",
]
