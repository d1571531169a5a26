"""buildkite-agent command wrapper."""

import os
import subprocess
from dataclasses import dataclass
from typing import Any

from argocd_deploy.config import BuildkiteConfig
from argocd_deploy.core.exceptions import BuildkiteError
from argocd_deploy.core.logging import StructuredLogger

logger = StructuredLogger(__name__)


@dataclass(frozen=True)
class BuildInfo:
    """Build metadata taken from the Buildkite job environment."""

    build_url: str = "#"
    build_number: str = "unknown"
    pipeline: str = "unknown"
    branch: str = "unknown"
    commit: str = "unknown"

    @classmethod
    def from_env(cls) -> "BuildInfo":
        return cls(
            build_url=os.environ.get("BUILDKITE_BUILD_URL", "#"),
            build_number=os.environ.get("BUILDKITE_BUILD_NUMBER", "unknown"),
            pipeline=os.environ.get("BUILDKITE_PIPELINE_SLUG", "unknown"),
            branch=os.environ.get("BUILDKITE_BRANCH", "unknown"),
            commit=os.environ.get("BUILDKITE_COMMIT", "unknown"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "build_url": self.build_url,
            "build_number": self.build_number,
            "pipeline": self.pipeline,
            "branch": self.branch,
            "commit": self.commit,
        }


class BuildkiteAgent:
    """Runs buildkite-agent subcommands for meta-data, artifacts, pipelines and annotations."""

    def __init__(self, config: BuildkiteConfig | None = None):
        self._config = config or BuildkiteConfig()

    def _run(
        self,
        args: list[str],
        input_text: str | None = None,
        check: bool = True,
    ) -> subprocess.CompletedProcess:
        cmd = [self._config.agent_path, *args]
        logger.debug("Running buildkite-agent", command=" ".join(args[:2]))

        try:
            result = subprocess.run(
                cmd,
                input=input_text,
                capture_output=True,
                text=True,
                timeout=self._config.timeout,
            )
        except subprocess.TimeoutExpired:
            raise BuildkiteError(
                f"buildkite-agent {args[0]} timed out after {self._config.timeout}s"
            )
        except FileNotFoundError:
            raise BuildkiteError(f"{self._config.agent_path} not found in PATH")

        if check and result.returncode != 0:
            raise BuildkiteError(
                f"buildkite-agent {' '.join(args[:2])} failed: {result.stderr.strip()}",
                returncode=result.returncode,
            )
        return result

    # Meta-data
    def meta_data_set(self, key: str, value: str) -> None:
        self._run(["meta-data", "set", key, value])

    def meta_data_exists(self, key: str) -> bool:
        result = self._run(["meta-data", "exists", key], check=False)
        return result.returncode == 0

    def meta_data_get(self, key: str) -> str | None:
        """Return the stored value, or None when the key was never set."""
        if not self.meta_data_exists(key):
            return None
        return self._run(["meta-data", "get", key]).stdout.strip()

    # Artifacts
    def artifact_upload(self, pattern: str) -> None:
        self._run(["artifact", "upload", pattern])

    # Pipelines
    def pipeline_upload(self, pipeline_yaml: str) -> None:
        """Upload pipeline steps read from stdin."""
        self._run(["pipeline", "upload"], input_text=pipeline_yaml)

    # Annotations
    def annotate(self, body: str, style: str = "info", context: str | None = None) -> None:
        args = ["annotate", "--style", style]
        if context:
            args.extend(["--context", context])
        self._run(args, input_text=body)
