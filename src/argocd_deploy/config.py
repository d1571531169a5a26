"""Configuration management for argocd-deploy using Pydantic."""

import os
import re
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from argocd_deploy.core.exceptions import ConfigError
from argocd_deploy.core.logging import LogLevel
from argocd_deploy.core.output import OutputFormat
from argocd_deploy.deploy.models import DeploymentMode, RollbackMode

SLACK_CHANNEL_PATTERN = re.compile(r"^[#@]|^[A-Z0-9]{9,11}$")

PLUGIN_ENV_PREFIX = "BUILDKITE_PLUGIN_ARGOCD_DEPLOYMENT_"


class ArgoCDConfig(BaseModel):
    """Argo CD configuration."""

    url: str | None = None
    token: str | None = None
    insecure: bool = False
    timeout: int = 30
    backend: Literal["api", "cli"] = "api"
    cli_path: str = "argocd"
    # Set from the plugin's argocd_server option; wins over environment and files
    override_url: str | None = Field(default=None, exclude=True)

    def get_url(self) -> str | None:
        """Get Argo CD URL from the plugin override, environment or config."""
        return (
            self.override_url
            or os.environ.get("ARGOCD_DEPLOY_ARGOCD_URL")
            or os.environ.get("ARGOCD_SERVER")
            or self.url
        )

    def get_token(self) -> str | None:
        """Get Argo CD token from config or environment."""
        token = self.token
        if token == "from_env" or token is None:
            token = (
                os.environ.get("ARGOCD_DEPLOY_ARGOCD_TOKEN")
                or os.environ.get("ARGOCD_AUTH_TOKEN")
            )
        return token


class SlackConfig(BaseModel):
    """Slack configuration."""

    token: str | None = None
    username: str = "Argo CD Deploy"
    icon_emoji: str = ":rocket:"
    timeout: int = 30

    def get_token(self) -> str | None:
        """Get Slack bot token from config or environment."""
        token = self.token
        if token == "from_env" or token is None:
            token = (
                os.environ.get("ARGOCD_DEPLOY_SLACK_TOKEN")
                or os.environ.get("SLACK_BOT_TOKEN")
                or os.environ.get("SLACK_TOKEN")
            )
        return token


class BuildkiteConfig(BaseModel):
    """Buildkite agent integration."""

    agent_path: str = "buildkite-agent"
    timeout: int = 60
    notify_via: Literal["slack", "pipeline"] = "pipeline"
    annotate: bool = True


class MetadataConfig(BaseModel):
    """Where deployment metadata is persisted between pipeline steps."""

    backend: Literal["buildkite", "file"] = "buildkite"
    state_dir: str | None = None


class ProfileConfig(BaseModel):
    """Profile configuration grouping all service settings."""

    argocd: ArgoCDConfig = Field(default_factory=ArgoCDConfig)
    slack: SlackConfig = Field(default_factory=SlackConfig)
    buildkite: BuildkiteConfig = Field(default_factory=BuildkiteConfig)
    metadata: MetadataConfig = Field(default_factory=MetadataConfig)


class GlobalConfig(BaseModel):
    """Global settings."""

    output_format: OutputFormat = OutputFormat.TABLE
    color: str = "auto"  # auto, always, never
    verbosity: LogLevel = LogLevel.INFO

    @field_validator("color")
    @classmethod
    def validate_color(cls, v: str) -> str:
        if v not in ("auto", "always", "never"):
            raise ValueError("color must be 'auto', 'always', or 'never'")
        return v


class ToolConfig(BaseModel):
    """Main configuration model."""

    model_config = {"populate_by_name": True}

    version: str = "1"
    global_settings: GlobalConfig = Field(default_factory=GlobalConfig, alias="global")
    profiles: dict[str, ProfileConfig] = Field(default_factory=lambda: {"default": ProfileConfig()})

    def get_profile(self, name: str | None = None) -> ProfileConfig:
        """Get a profile by name, defaulting to 'default'."""
        profile_name = name or "default"
        if profile_name not in self.profiles:
            raise ConfigError(f"Profile '{profile_name}' not found")
        return self.profiles[profile_name]


# Invocation settings


class NotificationSettings(BaseModel):
    """Notification targets for a single invocation."""

    slack_channel: str | None = None

    @field_validator("slack_channel")
    @classmethod
    def validate_slack_channel(cls, v: str | None) -> str | None:
        if v is None or v == "":
            return None
        if not SLACK_CHANNEL_PATTERN.match(v):
            raise ValueError(
                "slack_channel must be #channel, @username or a 9-11 character "
                "uppercase ID (e.g. C0123ABCDE)"
            )
        return v


class DeploymentSettings(BaseModel):
    """Validated settings for one deploy or rollback invocation."""

    model_config = {"extra": "forbid"}

    app: str
    mode: DeploymentMode = DeploymentMode.DEPLOY
    rollback_mode: RollbackMode | None = None
    target_revision: str | None = None
    timeout: int = Field(default=300, ge=30, le=3600)
    health_check_interval: int = Field(default=30, ge=10, le=300)
    health_check_timeout: int = Field(default=300, ge=60, le=1800)
    collect_logs: bool = False
    upload_artifacts: bool = False
    log_lines: int = Field(default=1000, ge=100, le=10000)
    notifications: NotificationSettings = Field(default_factory=NotificationSettings)

    @field_validator("app")
    @classmethod
    def validate_app(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("app must not be empty")
        return v

    @field_validator("target_revision")
    @classmethod
    def strip_target(cls, v: str | None) -> str | None:
        if v is None:
            return None
        return v.strip() or None

    @model_validator(mode="after")
    def check_mode_requirements(self) -> "DeploymentSettings":
        if self.mode == DeploymentMode.DEPLOY:
            if self.rollback_mode is None:
                self.rollback_mode = RollbackMode.AUTO
        else:
            if self.rollback_mode is None:
                raise ValueError("rollback_mode is required when mode is 'rollback'")
            if not self.target_revision:
                raise ValueError("target_revision is required when mode is 'rollback'")
        return self

    @property
    def slack_channel(self) -> str | None:
        return self.notifications.slack_channel


def validation_errors(error: ValidationError) -> list[str]:
    """One "field: message" line per pydantic error."""
    return [
        f"{'.'.join(str(p) for p in err['loc']) or 'settings'}: {err['msg']}"
        for err in error.errors()
    ]


def validate_settings(data: dict[str, Any]) -> DeploymentSettings:
    """Build DeploymentSettings, translating validation failures to ConfigError."""
    try:
        return DeploymentSettings(**data)
    except ValidationError as e:
        raise ConfigError("Invalid deployment settings", details={"errors": validation_errors(e)})


class PluginSettings(BaseSettings):
    """Buildkite plugin configuration read from BUILDKITE_PLUGIN_ARGOCD_DEPLOYMENT_* variables."""

    model_config = SettingsConfigDict(
        env_prefix=PLUGIN_ENV_PREFIX,
        case_sensitive=False,
        extra="ignore",
    )

    app: str = ""
    mode: str = "deploy"
    rollback_mode: str | None = None
    target_revision: str | None = None
    timeout: int | None = None
    health_check_interval: int | None = None
    health_check_timeout: int | None = None
    collect_logs: bool = False
    upload_artifacts: bool = False
    log_lines: int | None = None
    notifications_slack_channel: str | None = None
    argocd_server: str | None = None

    def to_settings_dict(self) -> dict[str, Any]:
        """Map plugin fields onto DeploymentSettings input."""
        data: dict[str, Any] = {
            "app": self.app,
            "mode": self.mode,
            "collect_logs": self.collect_logs,
            "upload_artifacts": self.upload_artifacts,
        }
        optional = {
            "rollback_mode": self.rollback_mode,
            "target_revision": self.target_revision,
            "timeout": self.timeout,
            "health_check_interval": self.health_check_interval,
            "health_check_timeout": self.health_check_timeout,
            "log_lines": self.log_lines,
        }
        data.update({k: v for k, v in optional.items() if v is not None})
        if self.notifications_slack_channel:
            data["notifications"] = {"slack_channel": self.notifications_slack_channel}
        return data


def load_plugin_settings() -> PluginSettings:
    """Read plugin settings from the environment, translating type errors to ConfigError."""
    try:
        return PluginSettings()
    except ValidationError as e:
        raise ConfigError("Invalid plugin configuration", details={"errors": validation_errors(e)})


class ConfigLoader:
    """Loads and merges configuration from multiple sources."""

    CONFIG_FILENAMES = [
        "argocd-deploy.yaml",
        "argocd-deploy.yml",
        ".argocd-deploy.yaml",
        ".argocd-deploy.yml",
    ]

    def __init__(self):
        self._config: ToolConfig | None = None

    def load(
        self,
        config_file: str | Path | None = None,
        profile: str | None = None,
    ) -> ToolConfig:
        """Load configuration from files and environment.

        Priority (highest to lowest):
        1. Explicitly specified config file
        2. Project config (./argocd-deploy.yaml)
        3. User config (~/.argocd-deploy/config.yaml)

        Args:
            config_file: Optional explicit config file path
            profile: Profile name to use

        Returns:
            Merged configuration
        """
        configs: list[dict[str, Any]] = []

        user_config_path = Path.home() / ".argocd-deploy" / "config.yaml"
        if user_config_path.exists():
            configs.append(self._load_yaml_file(user_config_path))

        project_config = self._find_project_config()
        if project_config:
            configs.append(self._load_yaml_file(project_config))

        if config_file:
            config_path = Path(config_file)
            if not config_path.exists():
                raise ConfigError(f"Config file not found: {config_file}")
            configs.append(self._load_yaml_file(config_path))

        merged = self._merge_configs(configs)

        try:
            self._config = ToolConfig(**merged)
        except ValidationError as e:
            raise ConfigError(f"Invalid configuration: {e}")

        if profile:
            self._config.get_profile(profile)
        return self._config

    def _find_project_config(self) -> Path | None:
        """Find project config file in current or parent directories."""
        current = Path.cwd()

        while current != current.parent:
            for filename in self.CONFIG_FILENAMES:
                config_path = current / filename
                if config_path.exists():
                    return config_path
            current = current.parent

        return None

    def _load_yaml_file(self, path: Path) -> dict[str, Any]:
        """Load a YAML config file."""
        try:
            with open(path) as f:
                content = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {path}: {e}")
        except OSError as e:
            raise ConfigError(f"Cannot read {path}: {e}")
        if not isinstance(content, dict):
            raise ConfigError(f"Invalid config in {path}: expected a mapping")
        return content

    def _merge_configs(self, configs: list[dict[str, Any]]) -> dict[str, Any]:
        """Deep merge multiple configuration dictionaries."""
        result: dict[str, Any] = {}
        for config in configs:
            result = self._deep_merge(result, config)
        return result

    def _deep_merge(
        self,
        base: dict[str, Any],
        override: dict[str, Any],
    ) -> dict[str, Any]:
        """Deep merge two dictionaries."""
        result = base.copy()
        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value
        return result


_config_loader = ConfigLoader()


def load_config(
    config_file: str | Path | None = None,
    profile: str | None = None,
) -> ToolConfig:
    """Load argocd-deploy configuration.

    Args:
        config_file: Optional explicit config file path
        profile: Profile name to use

    Returns:
        Loaded configuration
    """
    return _config_loader.load(config_file, profile)


def get_default_config() -> ToolConfig:
    """Get default configuration without loading from files."""
    return ToolConfig()
