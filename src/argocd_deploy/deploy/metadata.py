"""Deployment metadata persistence shared between pipeline steps."""

import json
from pathlib import Path
from typing import Protocol

from argocd_deploy.clients.buildkite import BuildkiteAgent
from argocd_deploy.core.exceptions import AncillaryError
from argocd_deploy.core.logging import StructuredLogger

logger = StructuredLogger(__name__)

CONTROLLER_NAME = "argocd"

# Fields written under deployment:argocd:<app>:<field>
PREVIOUS_VERSION = "previous_version"
CURRENT_VERSION = "current_version"
STATUS = "status"
RESULT = "result"
ROLLBACK_FROM = "rollback_from"
ROLLBACK_TO = "rollback_to"
TIMESTAMP = "timestamp"


def metadata_key(app: str, field: str) -> str:
    """Build the namespaced key for one deployment field."""
    return f"deployment:{CONTROLLER_NAME}:{app}:{field}"


class MetadataStore(Protocol):
    """Key/value store readable by later, independent invocations."""

    def get(self, key: str) -> str | None:
        ...

    def set(self, key: str, value: str) -> None:
        ...


class BuildkiteMetadataStore:
    """Build meta-data via buildkite-agent; visible to every later step of the build."""

    def __init__(self, agent: BuildkiteAgent):
        self._agent = agent

    def get(self, key: str) -> str | None:
        value = self._agent.meta_data_get(key)
        return value or None

    def set(self, key: str, value: str) -> None:
        self._agent.meta_data_set(key, value)


class FileMetadataStore:
    """JSON file store for running outside Buildkite."""

    def __init__(self, state_dir: str | Path | None = None):
        """Initialize file store.

        Args:
            state_dir: Directory holding metadata.json
        """
        if state_dir:
            self._state_dir = Path(state_dir)
        else:
            self._state_dir = Path.home() / ".argocd-deploy" / "state"
        self._state_dir.mkdir(parents=True, exist_ok=True)
        self._state_file = self._state_dir / "metadata.json"

    @property
    def path(self) -> Path:
        return self._state_file

    def _load(self) -> dict[str, str]:
        if not self._state_file.exists():
            return {}
        try:
            with open(self._state_file) as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise AncillaryError(
                f"Failed to read metadata state: {e}",
                action="metadata",
                details={"path": str(self._state_file)},
            )

    def get(self, key: str) -> str | None:
        return self._load().get(key)

    def set(self, key: str, value: str) -> None:
        data = self._load()
        data[key] = value
        try:
            with open(self._state_file, "w") as f:
                json.dump(data, f, indent=2, sort_keys=True)
        except OSError as e:
            raise AncillaryError(
                f"Failed to save metadata state: {e}",
                action="metadata",
                details={"path": str(self._state_file)},
            )
        logger.debug("Saved metadata", key=key)
