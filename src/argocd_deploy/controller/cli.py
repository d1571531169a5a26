"""Controller adapter that shells out to the argocd CLI."""

import json
import re
import subprocess
from dataclasses import dataclass

from argocd_deploy.controller.base import ApplicationStatus, ControllerResult
from argocd_deploy.core.logging import StructuredLogger
from argocd_deploy.deploy.models import HistoryEntry, OperationOutcome

logger = StructuredLogger(__name__)

# Extra wall-clock allowance on top of the CLI's own --timeout
SUBPROCESS_GRACE_SECONDS = 30
QUERY_TIMEOUT_SECONDS = 60

_HEX_REVISION = re.compile(r"^[0-9a-fA-F]{7,40}$")
_TIMEOUT_MARKERS = ("timed out", "timeout", "deadline exceeded")


@dataclass
class CommandResult:
    returncode: int
    stdout: str
    stderr: str
    timed_out: bool = False

    @property
    def lines(self) -> list[str]:
        return (self.stdout + self.stderr).splitlines()


def parse_history_table(text: str) -> list[HistoryEntry]:
    """Parse `argocd app history` output into entries ordered oldest-first.

    Data rows start with the numeric history id; the source revision is the
    (usually parenthesised) commit hash towards the end of the row.
    """
    entries: list[HistoryEntry] = []
    for line in text.splitlines():
        tokens = line.split()
        if not tokens or not tokens[0].isdigit():
            continue

        revision = ""
        revision_index = len(tokens)
        for index in range(len(tokens) - 1, 0, -1):
            candidate = tokens[index].strip("()")
            if _HEX_REVISION.match(candidate):
                revision = candidate
                revision_index = index
                break

        if not revision:
            continue

        # DATE is rendered as "YYYY-MM-DD HH:MM:SS +ZZZZ TZ"
        deployed_at = " ".join(tokens[1:min(5, revision_index)])
        entries.append(
            HistoryEntry(
                history_id=int(tokens[0]),
                source_revision=revision,
                deployed_at=deployed_at,
            )
        )
    return sorted(entries, key=lambda e: e.history_id)


class ArgoCDCliController:
    """Runs `argocd app ...` subcommands; assumes a prior `argocd login`."""

    def __init__(self, cli_path: str = "argocd"):
        self._cli_path = cli_path

    def _run(self, args: list[str], timeout: int) -> CommandResult:
        cmd = [self._cli_path, *args]
        logger.debug("Running argocd", command=" ".join(args))

        try:
            proc = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired as e:
            stdout = e.stdout.decode() if isinstance(e.stdout, bytes) else (e.stdout or "")
            return CommandResult(returncode=-1, stdout=stdout, stderr="", timed_out=True)
        except FileNotFoundError:
            return CommandResult(returncode=127, stdout="", stderr=f"{self._cli_path} not found in PATH")

        return CommandResult(proc.returncode, proc.stdout, proc.stderr)

    def _mutating(self, args: list[str], timeout: int) -> ControllerResult[ApplicationStatus]:
        """Run a blocking CLI operation and classify its exit status."""
        result = self._run(args, timeout + SUBPROCESS_GRACE_SECONDS)
        log_lines = [f"$ argocd {' '.join(args)}", *result.lines, f"Exit code: {result.returncode}"]
        description = " ".join(args[:2])

        if result.timed_out:
            return ControllerResult.timed_out(f"{description} timed out after {timeout}s", log_lines)
        if result.returncode != 0:
            output = (result.stdout + result.stderr).lower()
            if any(marker in output for marker in _TIMEOUT_MARKERS):
                return ControllerResult.timed_out(f"{description} timed out after {timeout}s", log_lines)
            return ControllerResult.failed(
                f"{description} failed with exit code {result.returncode}", log_lines
            )

        app = args[2]
        status = self.get_application(app)
        return ControllerResult(OperationOutcome.SUCCESS, status.payload, log_lines)

    def get_application(self, app: str) -> ControllerResult[ApplicationStatus]:
        result = self._run(["app", "get", app, "--output", "json"], QUERY_TIMEOUT_SECONDS)
        if result.timed_out:
            return ControllerResult.timed_out(f"app get {app} timed out")
        if result.returncode != 0:
            return ControllerResult.failed(f"app get {app} failed: {result.stderr.strip()}", result.lines)
        try:
            manifest = json.loads(result.stdout)
        except json.JSONDecodeError as e:
            return ControllerResult.failed(f"app get {app} returned invalid JSON: {e}")
        return ControllerResult.success(ApplicationStatus.from_manifest(manifest))

    def sync(self, app: str, timeout: int) -> ControllerResult[ApplicationStatus]:
        return self._mutating(["app", "sync", app, "--timeout", str(timeout)], timeout)

    def rollback(self, app: str, history_id: int, timeout: int) -> ControllerResult[ApplicationStatus]:
        return self._mutating(
            ["app", "rollback", app, str(history_id), "--timeout", str(timeout)], timeout
        )

    def wait_for_health(self, app: str, timeout: int) -> ControllerResult[ApplicationStatus]:
        return self._mutating(["app", "wait", app, "--health", "--timeout", str(timeout)], timeout)

    def get_history(self, app: str) -> ControllerResult[list[HistoryEntry]]:
        result = self._run(["app", "history", app], QUERY_TIMEOUT_SECONDS)
        if result.timed_out:
            return ControllerResult.timed_out(f"app history {app} timed out")
        if result.returncode != 0:
            return ControllerResult.failed(f"app history {app} failed: {result.stderr.strip()}", result.lines)
        return ControllerResult.success(parse_history_table(result.stdout), result.stdout.splitlines())

    def set_auto_sync(self, app: str, enabled: bool) -> ControllerResult[None]:
        policy = "automated" if enabled else "manual"
        args = ["app", "set", app, "--sync-policy", policy]
        result = self._run(args, QUERY_TIMEOUT_SECONDS)
        log_lines = [f"$ argocd {' '.join(args)}", *result.lines, f"Exit code: {result.returncode}"]
        if result.timed_out:
            return ControllerResult.timed_out(f"set sync-policy {policy} timed out", log_lines)
        if result.returncode != 0:
            return ControllerResult.failed(f"set sync-policy {policy} failed", log_lines)
        return ControllerResult.success(None, log_lines)

    def get_logs(self, app: str, tail_lines: int) -> ControllerResult[list[str]]:
        result = self._run(["app", "logs", app, "--tail", str(tail_lines)], QUERY_TIMEOUT_SECONDS)
        if result.timed_out:
            return ControllerResult.timed_out(f"app logs {app} timed out")
        if result.returncode != 0:
            return ControllerResult.failed(f"app logs {app} failed: {result.stderr.strip()}", result.lines)
        lines = result.stdout.splitlines()
        return ControllerResult.success(lines, lines)
