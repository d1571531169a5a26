"""Revision resolution: map operator-supplied tokens onto Argo CD history identifiers.

History is always handled oldest-first (ascending history id) regardless of
how the controller adapter listed it. Two token forms are accepted:

* a history identifier: a decimal integer of at most four digits
* a source identifier: a commit hash, compared on its first seven characters
"""

import re

from argocd_deploy.controller.base import Controller
from argocd_deploy.core.exceptions import ResolutionError
from argocd_deploy.core.logging import StructuredLogger
from argocd_deploy.deploy.metadata import PREVIOUS_VERSION, MetadataStore, metadata_key
from argocd_deploy.deploy.models import UNKNOWN, HistoryEntry

logger = StructuredLogger(__name__)

HISTORY_ID_PATTERN = re.compile(r"^\d{1,4}$")
SHORT_HASH_LENGTH = 7
DIAGNOSTIC_ROWS = 10


def is_history_id(token: str) -> bool:
    return bool(HISTORY_ID_PATTERN.match(token))


def short_hash(revision: str) -> str:
    return revision[:SHORT_HASH_LENGTH]


def format_history(entries: list[HistoryEntry], limit: int = DIAGNOSTIC_ROWS) -> list[str]:
    """Render the most recent entries for error messages, newest first."""
    recent = list(reversed(entries))[:limit]
    return [f"{e.history_id}  {e.deployed_at}  {short_hash(e.source_revision)}".strip() for e in recent]


class RevisionResolver:
    """Stateless lookups against the controller's retained history."""

    def __init__(self, controller: Controller):
        self._controller = controller

    def history(self, app: str) -> list[HistoryEntry]:
        """Fetch history ordered oldest-first."""
        result = self._controller.get_history(app)
        if not result.ok or result.payload is None:
            raise ResolutionError(
                f"Could not read deployment history for {app}",
                details={"error": result.error},
            )
        return sorted(result.payload, key=lambda e: e.history_id)

    def resolve(self, app: str, token: str) -> int:
        """Resolve a history id or commit hash token to a history id.

        Raises:
            ResolutionError: token is empty, the history id does not exist or
                no history row carries the commit
        """
        token = (token or "").strip()
        if not token or token == UNKNOWN:
            raise ResolutionError("No revision given", token=token)

        entries = self.history(app)
        return self._resolve_in(app, token, entries)

    def _resolve_in(self, app: str, token: str, entries: list[HistoryEntry]) -> int:
        if is_history_id(token):
            history_id = int(token)
            if any(e.history_id == history_id for e in entries):
                logger.debug("Token is an existing history id", app=app, token=token)
                return history_id
            raise ResolutionError(
                f"History ID {token} not found for {app}",
                token=token,
                available=format_history(entries),
            )

        wanted = short_hash(token)
        matches = [e for e in entries if short_hash(e.source_revision) == wanted]
        if not matches:
            available = format_history(entries)
            logger.error(
                "Could not find history ID for revision",
                app=app,
                revision=token,
            )
            raise ResolutionError(
                f"Could not find history ID for revision {token} (short: {wanted})",
                token=token,
                available=available,
                details={"available_history": available},
            )

        history_id = matches[-1].history_id
        logger.debug("Resolved revision", app=app, revision=token, history_id=history_id)
        return history_id

    def current_stable(self, app: str) -> str:
        """History id of the deployed state, or UNKNOWN.

        Uses the revision of the last successful operation, falling back to
        the currently synced revision.
        """
        result = self._controller.get_application(app)
        if not result.ok or result.payload is None:
            logger.warning("Could not read application", app=app, error=result.error)
            return UNKNOWN

        revision = result.payload.stable_revision
        if not revision:
            logger.warning("Could not determine current revision", app=app)
            return UNKNOWN

        try:
            return str(self.resolve(app, revision))
        except ResolutionError as e:
            logger.warning("Current revision is not in history", app=app, error=e.message)
            return UNKNOWN

    def previous_stable(self, app: str, metadata: MetadataStore | None = None) -> str:
        """History id to roll back to from the current stable state, or UNKNOWN.

        A previous_version recorded by an earlier step wins. Otherwise the
        history is walked back from the current stable entry to the nearest
        older entry that deployed a different commit.
        """
        if metadata is not None:
            try:
                stored = metadata.get(metadata_key(app, PREVIOUS_VERSION))
            except Exception as e:
                logger.warning("Could not read previous_version metadata", app=app, error=str(e))
                stored = None
            if stored and stored != UNKNOWN:
                logger.debug("Found previous revision in metadata", app=app, revision=stored)
                return stored

        current = self.current_stable(app)
        if current == UNKNOWN:
            return UNKNOWN

        try:
            entries = self.history(app)
        except ResolutionError as e:
            logger.warning("No deployment history available", app=app, error=e.message)
            return UNKNOWN

        return self._predecessor(entries, int(current))

    def _predecessor(self, entries: list[HistoryEntry], current_id: int) -> str:
        position = next((i for i, e in enumerate(entries) if e.history_id == current_id), None)
        if position is None:
            return UNKNOWN

        current_hash = short_hash(entries[position].source_revision)
        for entry in reversed(entries[:position]):
            if short_hash(entry.source_revision) != current_hash:
                return str(entry.history_id)
        return UNKNOWN

    def rollback_candidates(self, app: str, limit: int = DIAGNOSTIC_ROWS) -> list[HistoryEntry]:
        """Most recent history entries, newest first."""
        return list(reversed(self.history(app)))[:limit]
