"""Custom exceptions for argocd-deploy."""

from typing import Any


class ArgoCDDeployError(Exception):
    """Base exception for all argocd-deploy errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} - {self.details}"
        return self.message


class ConfigError(ArgoCDDeployError):
    """Configuration-related errors. Fatal, raised before any side effect."""

    pass


class ResolutionError(ArgoCDDeployError):
    """A revision token could not be mapped to a controller history identifier."""

    def __init__(
        self,
        message: str,
        token: str | None = None,
        available: list[str] | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, details)
        self.token = token
        self.available = available or []


class AncillaryError(ArgoCDDeployError):
    """Failure of a best-effort side call (auto-sync, notification, metadata)."""

    def __init__(
        self,
        message: str,
        action: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, details)
        self.action = action


class ArgoCDError(ArgoCDDeployError):
    """Argo CD API or CLI errors."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, details)
        self.status_code = status_code


class SlackError(ArgoCDDeployError):
    """Slack Web API errors."""

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, details)
        self.error_code = error_code


class BuildkiteError(ArgoCDDeployError):
    """buildkite-agent invocation errors."""

    def __init__(
        self,
        message: str,
        returncode: int | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, details)
        self.returncode = returncode


class AuthenticationError(ArgoCDDeployError):
    """Authentication/authorization errors."""

    pass
