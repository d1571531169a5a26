"""Deploy and rollback state machine.

One Orchestrator drives one invocation:

    validating -> resolving -> executing -> health_checking
        -> succeeded | rolling_back | awaiting_manual_decision
        -> finalizing -> terminal

Only the controller's sync and rollback calls decide the outcome. Auto-sync
toggles, metadata writes, notifications, the checkpoint upload and artifact
handling run through best_effort() and can never change the result.
"""

from typing import Any

from argocd_deploy.clients.buildkite import BuildInfo
from argocd_deploy.config import DeploymentSettings, validate_settings
from argocd_deploy.controller.base import ApplicationStatus, Controller, ControllerResult
from argocd_deploy.core.exceptions import ResolutionError
from argocd_deploy.core.logging import StructuredLogger
from argocd_deploy.deploy.ancillary import AncillaryResult, best_effort, from_controller
from argocd_deploy.deploy.artifacts import ArtifactCollector, DeploymentLog
from argocd_deploy.deploy.checkpoint import Checkpoint, CheckpointRequest, LoggingCheckpoint
from argocd_deploy.deploy.health import HealthMonitor, HealthObservation
from argocd_deploy.deploy.metadata import (
    CURRENT_VERSION,
    PREVIOUS_VERSION,
    RESULT,
    ROLLBACK_FROM,
    ROLLBACK_TO,
    STATUS,
    TIMESTAMP,
    MetadataStore,
    metadata_key,
)
from argocd_deploy.deploy.models import (
    UNKNOWN,
    DeploymentMode,
    DeploymentRecord,
    DeploymentResult,
    DeploymentStatus,
    OrchestratorState,
    RollbackMode,
    utcnow,
)
from argocd_deploy.deploy.notifications import Notification, Notifier, NullNotifier
from argocd_deploy.deploy.resolver import RevisionResolver, is_history_id

logger = StructuredLogger(__name__)

PREVIOUS_KEYWORD = "previous"

SUCCESS_RESULTS = (
    DeploymentResult.SUCCESS,
    DeploymentResult.ROLLBACK_SUCCESS,
    DeploymentResult.MANUAL_ROLLBACK_SUCCESS,
)


class Orchestrator:
    """Runs one deploy or rollback to completion."""

    def __init__(
        self,
        controller: Controller,
        settings: DeploymentSettings | dict[str, Any],
        metadata: MetadataStore,
        notifier: Notifier | None = None,
        checkpoint: Checkpoint | None = None,
        artifacts: ArtifactCollector | None = None,
        resolver: RevisionResolver | None = None,
        monitor: HealthMonitor | None = None,
        build: BuildInfo | None = None,
    ):
        """Initialize orchestrator.

        Args:
            controller: Argo CD controller adapter
            settings: Validated settings, or raw input validated when run() starts
            metadata: Store readable by later pipeline steps
            notifier: Where outcome notifications go
            checkpoint: Raised when a manual-mode deployment fails
            artifacts: Log collection and upload; None disables both
            resolver: Revision resolver, built from the controller by default
            monitor: Health monitor, built from the controller by default
            build: Build metadata for notifications and logs
        """
        self._controller = controller
        self._raw_settings = settings
        self._metadata = metadata
        self._notifier = notifier or NullNotifier()
        self._checkpoint = checkpoint or LoggingCheckpoint()
        self._artifacts = artifacts
        self._resolver = resolver or RevisionResolver(controller)
        self._monitor = monitor or HealthMonitor(controller)
        self._build = build or BuildInfo.from_env()
        self._settings: DeploymentSettings | None = None
        self._log: DeploymentLog | None = None

    @property
    def settings(self) -> DeploymentSettings:
        if self._settings is None:
            raise RuntimeError("settings are validated by run()")
        return self._settings

    # Entry point

    def run(self) -> DeploymentRecord:
        """Execute the invocation and return its final record.

        Raises:
            ConfigError: settings are invalid; nothing has been called yet
        """
        settings = self._validate()
        record = DeploymentRecord(
            app=settings.app,
            mode=settings.mode,
            rollback_mode=settings.rollback_mode or RollbackMode.AUTO,
            target_revision=settings.target_revision,
        )
        record.transition(OrchestratorState.VALIDATING, "Settings validated")
        self._open_log(record)

        logger.info(
            "Starting ArgoCD operation",
            app=record.app,
            mode=record.mode.value,
            rollback_mode=record.rollback_mode.value,
        )

        if record.mode == DeploymentMode.DEPLOY:
            self._deploy(record)
        else:
            self._rollback(record)

        self._finalize(record)
        return record

    def _validate(self) -> DeploymentSettings:
        if isinstance(self._raw_settings, DeploymentSettings):
            self._settings = self._raw_settings
        else:
            self._settings = validate_settings(self._raw_settings)
        return self._settings

    # Deploy mode

    def _deploy(self, record: DeploymentRecord) -> None:
        settings = self.settings
        app = record.app

        record.transition(OrchestratorState.RESOLVING, "Capturing current stable revision")
        record.previous_stable = self._resolver.current_stable(app)
        if record.has_rollback_target:
            logger.info("Previous stable revision", app=app, history_id=record.previous_stable)
        else:
            logger.warning("No previous stable revision; rollback unavailable", app=app)
        self._persist(app, **{STATUS: DeploymentStatus.DEPLOYING.value})

        record.transition(OrchestratorState.EXECUTING, "Syncing application")
        logger.section(f"Deploying {app}")
        sync = self._controller.sync(app, settings.timeout)
        self._log_output("Deployment Command Output", sync)

        if not sync.ok:
            logger.error("ArgoCD sync failed", app=app, outcome=sync.outcome.value, error=sync.error)
            record.message = sync.error or f"Sync {sync.outcome.value}"
            self._handle_failure(record, sync_failed=True)
            return

        record.synced_revision = self._synced_revision(app, sync.payload)
        logger.info("ArgoCD sync completed", app=app, revision=record.synced_revision)

        record.transition(OrchestratorState.HEALTH_CHECKING, "Observing application health")
        logger.section(f"Health check {app}")
        observation = self._monitor.observe(
            app,
            interval=settings.health_check_interval,
            timeout=settings.health_check_timeout,
            fail_fast=record.rollback_mode == RollbackMode.MANUAL,
        )
        self._log_health("Health Check", observation)

        if observation.ok:
            self._succeed(record)
            return

        record.message = f"Health check {observation.outcome.value} with status {observation.status.value}"
        self._handle_failure(record, sync_failed=False)

    def _synced_revision(self, app: str, status: ApplicationStatus | None) -> str:
        """History id of the revision just synced, else its source revision."""
        history_id = self._resolver.current_stable(app)
        if history_id != UNKNOWN:
            return history_id
        if status is not None and status.sync_revision:
            return status.sync_revision
        return UNKNOWN

    def _succeed(self, record: DeploymentRecord) -> None:
        record.transition(OrchestratorState.SUCCEEDED, "Application is healthy")
        record.result = DeploymentResult.SUCCESS
        record.message = "Deployment completed successfully"
        self._persist(
            record.app,
            **{
                STATUS: DeploymentStatus.DEPLOYED.value,
                RESULT: record.result.value,
                CURRENT_VERSION: record.synced_revision,
                PREVIOUS_VERSION: record.previous_stable,
            },
        )
        self._notify(record, from_revision=record.previous_stable, to_revision=record.synced_revision)

    def _handle_failure(self, record: DeploymentRecord, sync_failed: bool) -> None:
        if record.rollback_mode == RollbackMode.MANUAL:
            self._await_manual_decision(record, sync_failed)
        elif record.has_rollback_target:
            self._auto_rollback(record)
        else:
            self._fail_without_target(record)

    def _auto_rollback(self, record: DeploymentRecord) -> None:
        app = record.app
        failed_revision = record.synced_revision or UNKNOWN
        target = record.previous_stable

        record.transition(OrchestratorState.ROLLING_BACK, f"Rolling back to {target}", target=target)
        logger.section(f"Rolling back {app} to {target}", expanded=True)
        self._persist(
            app,
            **{
                STATUS: DeploymentStatus.ROLLING_BACK.value,
                ROLLBACK_FROM: failed_revision,
                ROLLBACK_TO: target,
            },
        )

        self._set_auto_sync(app, False)
        try:
            recovered = self._rollback_and_verify(app, target)
        finally:
            self._set_auto_sync(app, True)

        if recovered:
            record.result = DeploymentResult.AUTO_ROLLBACK_SUCCESS
            record.message = f"Deployment failed; rolled back to {target}"
            status = DeploymentStatus.ROLLED_BACK
            logger.info("Automatic rollback succeeded", app=app, history_id=target)
        else:
            record.result = DeploymentResult.AUTO_ROLLBACK_FAILED
            record.message = f"Deployment failed; rollback to {target} failed"
            status = DeploymentStatus.ROLLBACK_FAILED
            logger.error("Automatic rollback failed", app=app, history_id=target)

        fields = {STATUS: status.value, RESULT: record.result.value}
        if recovered:
            fields[CURRENT_VERSION] = target
        self._persist(app, **fields)
        self._notify(record, from_revision=failed_revision, to_revision=target)

    def _rollback_and_verify(self, app: str, target: str) -> bool:
        """Single rollback attempt, then one health observation without fail-fast."""
        settings = self.settings
        try:
            history_id = int(target) if is_history_id(target) else self._resolver.resolve(app, target)
        except ResolutionError as e:
            logger.error("Rollback target could not be resolved", app=app, target=target, error=e.message)
            return False

        result = self._controller.rollback(app, history_id, settings.timeout)
        self._log_output("Rollback Command Output", result)
        if not result.ok:
            logger.error("ArgoCD rollback failed", app=app, outcome=result.outcome.value, error=result.error)
            return False

        observation = self._monitor.observe(
            app,
            interval=settings.health_check_interval,
            timeout=settings.health_check_timeout,
            fail_fast=False,
        )
        self._log_health("Rollback Health Check", observation)
        return observation.ok

    def _fail_without_target(self, record: DeploymentRecord) -> None:
        record.result = DeploymentResult.NO_ROLLBACK_TARGET
        suffix = "no previous revision to roll back to"
        record.message = f"{record.message}; {suffix}" if record.message else suffix
        logger.error("Deployment failed and no rollback target is available", app=record.app)
        failed_revision = record.synced_revision or UNKNOWN
        self._persist(
            record.app,
            **{
                STATUS: DeploymentStatus.FAILED.value,
                ROLLBACK_FROM: failed_revision,
                RESULT: record.result.value,
            },
        )
        self._notify(record, from_revision=failed_revision, to_revision=UNKNOWN)

    def _await_manual_decision(self, record: DeploymentRecord, sync_failed: bool) -> None:
        app = record.app
        failed_revision = record.previous_stable if sync_failed else (record.synced_revision or UNKNOWN)
        record.result = (
            DeploymentResult.DEPLOYMENT_FAILED if sync_failed else DeploymentResult.HEALTH_CHECK_FAILED
        )
        record.transition(
            OrchestratorState.AWAITING_MANUAL_DECISION,
            "Manual rollback decision required",
            rollback_from=failed_revision,
            candidate=record.previous_stable,
        )
        logger.warning(
            "Manual rollback decision required",
            app=app,
            failed=failed_revision,
            candidate=record.previous_stable,
        )

        fields = {
            STATUS: DeploymentStatus.AWAITING_MANUAL_ROLLBACK.value,
            ROLLBACK_FROM: failed_revision,
            RESULT: record.result.value,
        }
        if record.has_rollback_target:
            fields[PREVIOUS_VERSION] = record.previous_stable
        self._persist(app, **fields)
        self._notify(record, from_revision=failed_revision, to_revision=record.previous_stable)

        candidates = best_effort("list rollback candidates", self._resolver.rollback_candidates, app)
        request = CheckpointRequest(
            app=app,
            failed_revision=failed_revision,
            candidate=record.previous_stable,
            reason=record.message,
            history=candidates.value if candidates.ok else [],
        )
        best_effort("raise manual checkpoint", self._checkpoint.raise_checkpoint, request)

    # Rollback mode

    def _rollback(self, record: DeploymentRecord) -> None:
        settings = self.settings
        app = record.app

        record.transition(OrchestratorState.RESOLVING, "Resolving rollback target")
        try:
            history_id = self._resolve_target(app, settings.target_revision or "")
        except ResolutionError as e:
            logger.error("Could not resolve rollback target", app=app, error=e.message)
            record.result = self._rollback_result(success=False)
            record.message = e.message
            record.current_revision = self._resolver.current_stable(app)
            requested = settings.target_revision or UNKNOWN
            self._persist(
                app,
                **{
                    ROLLBACK_FROM: record.current_revision,
                    ROLLBACK_TO: requested,
                    STATUS: DeploymentStatus.ROLLBACK_FAILED.value,
                    RESULT: record.result.value,
                },
            )
            self._notify(
                record,
                from_revision=record.current_revision,
                to_revision=requested,
                detail=e.message,
            )
            return

        record.target_revision = str(history_id)
        record.current_revision = self._resolver.current_stable(app)
        self._persist(
            app,
            **{
                ROLLBACK_FROM: record.current_revision,
                ROLLBACK_TO: record.target_revision,
                STATUS: DeploymentStatus.ROLLING_BACK.value,
            },
        )

        # Left disabled afterwards so the controller does not re-sync the rolled back app
        self._set_auto_sync(app, False)

        record.transition(OrchestratorState.EXECUTING, f"Rolling back to {history_id}", target=history_id)
        logger.section(f"Rolling back {app} to {history_id}")
        result = self._controller.rollback(app, history_id, settings.timeout)
        self._log_output("Rollback Command Output", result)

        record.result = self._rollback_result(success=result.ok)
        if result.ok:
            record.message = f"Rolled back to {history_id}"
            logger.info("ArgoCD rollback completed", app=app, history_id=history_id)
            self._persist(
                app,
                **{
                    CURRENT_VERSION: record.target_revision,
                    RESULT: record.result.value,
                    STATUS: DeploymentStatus.ROLLED_BACK.value,
                },
            )
        else:
            record.message = result.error or f"Rollback {result.outcome.value}"
            logger.error("ArgoCD rollback failed", app=app, outcome=result.outcome.value, error=result.error)
            self._persist(
                app,
                **{
                    RESULT: record.result.value,
                    STATUS: DeploymentStatus.ROLLBACK_FAILED.value,
                },
            )

        self._notify(record, from_revision=record.current_revision, to_revision=record.target_revision)

    def _resolve_target(self, app: str, token: str) -> int:
        if token.lower() == PREVIOUS_KEYWORD:
            previous = self._resolver.previous_stable(app, self._metadata)
            if previous == UNKNOWN:
                raise ResolutionError("No previous stable revision available for rollback", token=token)
            token = previous
        return self._resolver.resolve(app, token)

    def _rollback_result(self, success: bool) -> DeploymentResult:
        manual = self.settings.rollback_mode == RollbackMode.MANUAL
        if success:
            return DeploymentResult.MANUAL_ROLLBACK_SUCCESS if manual else DeploymentResult.ROLLBACK_SUCCESS
        return DeploymentResult.MANUAL_ROLLBACK_FAILED if manual else DeploymentResult.ROLLBACK_FAILED

    # Finalizing

    def _finalize(self, record: DeploymentRecord) -> None:
        record.transition(OrchestratorState.FINALIZING, "Finalizing")
        logger.section(f"Finalizing {record.app}")
        record.success = record.result in SUCCESS_RESULTS
        record.completed_at = utcnow()

        if self._log is not None:
            outcome = "SUCCESS" if record.success else "FAILED"
            best_effort("write deployment log", self._log.write, f"=== Result: {outcome} ({record.result.value}) ===")
        if self._artifacts is not None and self._artifacts.enabled:
            best_effort("collect artifacts", self._artifacts.handle, record.app, self._log, record)

        record.transition(
            OrchestratorState.TERMINAL,
            "success" if record.success else "failure",
            result=record.result.value,
        )
        log = logger.info if record.success else logger.error
        log(
            "ArgoCD operation finished",
            app=record.app,
            result=record.result.value,
            duration=f"{record.duration_seconds:.0f}s",
        )

    # Ancillary calls

    def _set_auto_sync(self, app: str, enabled: bool) -> AncillaryResult:
        action = "enable auto-sync" if enabled else "disable auto-sync"
        call = best_effort(action, self._controller.set_auto_sync, app, enabled)
        if not call.ok:
            return call
        self._log_output(f"Auto-sync {'enabled' if enabled else 'disabled'}", call.value)
        return from_controller(action, call.value)

    def _persist(self, app: str, **fields: str | None) -> list[AncillaryResult]:
        results = []
        for name, value in fields.items():
            if value is None:
                continue
            results.append(best_effort(f"persist {name}", self._metadata.set, metadata_key(app, name), value))
        timestamp = utcnow().strftime("%Y-%m-%d %H:%M:%S UTC")
        results.append(best_effort("persist timestamp", self._metadata.set, metadata_key(app, TIMESTAMP), timestamp))
        return results

    def _notify(
        self,
        record: DeploymentRecord,
        from_revision: str | None,
        to_revision: str | None,
        detail: str = "",
    ) -> AncillaryResult:
        notification = Notification(
            app=record.app,
            result=record.result,
            from_revision=from_revision or UNKNOWN,
            to_revision=to_revision or UNKNOWN,
            build=self._build,
            detail=detail,
        )
        return best_effort("send notification", self._notifier.notify, notification)

    # Deployment log

    def _open_log(self, record: DeploymentRecord) -> None:
        if self._artifacts is None or not self._artifacts.enabled:
            return
        opened = best_effort(
            "create deployment log",
            DeploymentLog,
            record.app,
            record.mode.value,
            build=self._build,
        )
        self._log = opened.value if opened.ok else None

    def _log_output(self, title: str, result: ControllerResult[Any] | None) -> None:
        if self._log is None or result is None:
            return
        lines = list(result.log_lines)
        lines.append(f"Outcome: {result.outcome.value}")
        if result.error:
            lines.append(f"Error: {result.error}")
        best_effort("write deployment log", self._log.section, title, lines)

    def _log_health(self, title: str, observation: HealthObservation) -> None:
        if self._log is None:
            return
        lines = [
            f"Status: {observation.status.value}",
            f"Outcome: {observation.outcome.value}",
            f"Polls: {observation.polls}",
            f"Elapsed: {observation.elapsed:.0f}s",
        ]
        best_effort("write deployment log", self._log.section, title, lines)
