"""Deployment log file, log collection and artifact upload."""

import json
import shutil
import tarfile
import tempfile
from pathlib import Path

from argocd_deploy.clients.buildkite import BuildInfo, BuildkiteAgent
from argocd_deploy.controller.base import Controller
from argocd_deploy.core.exceptions import AncillaryError
from argocd_deploy.core.logging import StructuredLogger
from argocd_deploy.deploy.models import DeploymentRecord, utcnow

logger = StructuredLogger(__name__)

SEPARATOR = "=" * 32


def _timestamp() -> str:
    return utcnow().strftime("%Y-%m-%d %H:%M:%S UTC")


class DeploymentLog:
    """Per-invocation log file; controller output is appended as sections."""

    def __init__(
        self,
        app: str,
        operation: str,
        build: BuildInfo | None = None,
        directory: str | Path | None = None,
    ):
        self.app = app
        self.operation = operation
        handle = tempfile.NamedTemporaryFile(
            mode="w",
            prefix=f"deployment-{app}-{operation}-",
            suffix=".log",
            dir=directory,
            delete=False,
        )
        self._path = Path(handle.name)
        build = build or BuildInfo.from_env()
        with handle:
            handle.write(
                "\n".join(
                    [
                        f"=== ArgoCD {operation} Log ===",
                        f"Application: {app}",
                        f"Operation: {operation}",
                        "Status: in_progress",
                        f"Timestamp: {_timestamp()}",
                        f"Build: {build.build_number}",
                        f"Pipeline: {build.pipeline}",
                        f"Branch: {build.branch}",
                        SEPARATOR,
                        "",
                        "",
                    ]
                )
            )
        logger.debug("Created deployment log", path=str(self._path))

    @property
    def path(self) -> Path:
        return self._path

    def write(self, text: str) -> None:
        with open(self._path, "a") as f:
            f.write(text.rstrip("\n") + "\n")

    def section(self, title: str, lines: list[str]) -> None:
        """Append a titled block of raw output."""
        self.write("\n".join([f"=== {title} ===", *lines, ""]))

    def read(self) -> str:
        return self._path.read_text()

    def remove(self) -> None:
        self._path.unlink(missing_ok=True)


class ArtifactCollector:
    """Gathers diagnostics after an operation and uploads them as build artifacts."""

    def __init__(
        self,
        controller: Controller,
        agent: BuildkiteAgent | None = None,
        collect_logs: bool = False,
        upload_artifacts: bool = False,
        log_lines: int = 1000,
        work_dir: str | Path | None = None,
    ):
        self._controller = controller
        self._agent = agent
        self.collect_logs = collect_logs
        self.upload_artifacts = upload_artifacts
        self.log_lines = log_lines
        self._work_dir = work_dir

    @property
    def enabled(self) -> bool:
        return self.collect_logs or self.upload_artifacts

    def collect(self, app: str, record: DeploymentRecord | None = None) -> Path:
        """Write status, history, application logs and a summary into a fresh directory."""
        log_dir = Path(tempfile.mkdtemp(prefix=f"argocd-logs-{app}-", dir=self._work_dir))
        logger.info("Collecting ArgoCD application logs", app=app, lines=self.log_lines)

        app_log = [
            "=== ArgoCD Application Logs ===",
            f"Application: {app}",
            f"Lines: {self.log_lines}",
            f"Timestamp: {_timestamp()}",
            SEPARATOR,
            "",
        ]
        logs = self._controller.get_logs(app, self.log_lines)
        if logs.ok:
            app_log.extend(logs.payload or [])
        else:
            logger.warning("Failed to collect ArgoCD application logs", app=app, error=logs.error)
            app_log.append("Failed to collect ArgoCD logs")
        (log_dir / "argocd-app.log").write_text("\n".join(app_log) + "\n")

        status = self._controller.get_application(app)
        if status.ok and status.payload is not None:
            document = status.payload.raw
        else:
            logger.warning("Failed to collect application status", app=app, error=status.error)
            document = {"error": "Failed to get application status"}
        (log_dir / "app-status.json").write_text(json.dumps(document, indent=2, default=str))

        history = self._controller.get_history(app)
        if history.ok:
            rows = [json.dumps(e.to_dict()) for e in history.payload or []]
        else:
            rows = [f"Failed to get history: {history.error}"]
        (log_dir / "history.txt").write_text("\n".join(rows) + "\n")

        self._write_summary(log_dir, app, record)
        logger.info("Log collection completed", app=app, path=str(log_dir))
        return log_dir

    def _write_summary(self, log_dir: Path, app: str, record: DeploymentRecord | None) -> None:
        lines = [
            "=== Log Collection Summary ===",
            f"Application: {app}",
            f"Timestamp: {_timestamp()}",
            f"Log Directory: {log_dir}",
        ]
        if record is not None:
            lines.extend(
                [
                    f"Mode: {record.mode.value}",
                    f"Result: {record.result.value}",
                    f"Previous Stable: {record.previous_stable}",
                    f"Synced Revision: {record.synced_revision or ''}",
                ]
            )
        lines.append("Files Collected:")
        total = 0
        for path in sorted(log_dir.iterdir()):
            size = path.stat().st_size
            total += size
            lines.append(f"  {path.name} ({size} bytes)")
        lines.append(f"Total Size: {total} bytes")
        (log_dir / "summary.txt").write_text("\n".join(lines) + "\n")

    def archive(self, log_dir: Path, app: str) -> Path:
        """Compress a collected directory to argocd-logs-<app>-<stamp>.tar.gz beside it."""
        stamp = utcnow().strftime("%Y%m%d-%H%M%S")
        archive_path = log_dir.parent / f"argocd-logs-{app}-{stamp}.tar.gz"
        with tarfile.open(archive_path, "w:gz") as tar:
            tar.add(log_dir, arcname=log_dir.name)
        logger.info("Archive created", path=str(archive_path))
        return archive_path

    @property
    def can_upload(self) -> bool:
        return self._agent is not None

    def _upload(self, pattern: str) -> None:
        if self._agent is None:
            raise AncillaryError("Artifact upload requires buildkite-agent", action="artifact upload")
        self._agent.artifact_upload(pattern)

    def _skip_upload(self, path: Path) -> Path:
        logger.warning("Artifact upload requires buildkite-agent; diagnostics left in place", path=str(path))
        return path

    def handle(
        self,
        app: str,
        deployment_log: DeploymentLog | None = None,
        record: DeploymentRecord | None = None,
    ) -> Path | None:
        """Collect and/or upload according to settings. Returns where diagnostics were left."""
        if not self.collect_logs:
            logger.info("Log collection disabled")
            if self.upload_artifacts and deployment_log is not None:
                if not self.can_upload:
                    return self._skip_upload(deployment_log.path)
                logger.info("Uploading deployment log", path=str(deployment_log.path))
                self._upload(str(deployment_log.path))
                deployment_log.remove()
                return None
            return deployment_log.path if deployment_log is not None else None

        log_dir = self.collect(app, record)
        if deployment_log is not None:
            shutil.copy(deployment_log.path, log_dir / deployment_log.path.name)
            deployment_log.remove()

        if not self.upload_artifacts:
            logger.info("Artifact upload disabled", path=str(log_dir))
            return log_dir
        if not self.can_upload:
            return self._skip_upload(log_dir)

        archive_path = self.archive(log_dir, app)
        try:
            self._upload(str(archive_path))
            self._upload(f"{log_dir}/*")
        finally:
            archive_path.unlink(missing_ok=True)
            shutil.rmtree(log_dir, ignore_errors=True)
        logger.info("Artifact upload completed", app=app)
        return None
