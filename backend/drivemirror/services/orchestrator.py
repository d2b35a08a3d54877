"""Sync orchestrator: one user-facing "sync now".

Sequences start -> index -> run* -> pull. Every step runs in its own session
and commits, and reports a tagged StepOutcome instead of raising; the POLICY
table decides what the loop does with each kind of outcome.
"""

from __future__ import annotations

import asyncio
import enum
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from drivemirror.core.config import settings
from drivemirror.core.logging import bind_trace_id, get_logger
from drivemirror.db.models import SyncStatus
from drivemirror.db.session import async_session_maker
from drivemirror.services.changes import ChangesService
from drivemirror.services.errors import (
    AuthRequiredError,
    DriveSyncError,
    InvalidBudgetError,
    RootMismatchError,
)
from drivemirror.services.folder_settings import FolderSettingsService
from drivemirror.services.google_drive import DriveClient
from drivemirror.services.indexer import FolderIndexer
from drivemirror.services.sync_runner import SyncRunner
from drivemirror.services.sync_state import SyncStateService
from drivemirror.services.tokens import DriveTokenManager

logger = get_logger(__name__)


class OutcomeKind(str, enum.Enum):
    OK = "ok"
    TOKEN_EXPIRED = "token_expired"
    ROOT_MISMATCH = "root_mismatch"
    FATAL = "fatal"


class PolicyAction(str, enum.Enum):
    CONTINUE = "continue"
    REARM_AND_RETRY = "rearm_and_retry"
    REQUIRE_USER = "require_user"
    ABORT = "abort"


# Recovery policy per outcome kind
POLICY: dict[OutcomeKind, PolicyAction] = {
    OutcomeKind.OK: PolicyAction.CONTINUE,
    OutcomeKind.ROOT_MISMATCH: PolicyAction.REARM_AND_RETRY,
    OutcomeKind.TOKEN_EXPIRED: PolicyAction.REQUIRE_USER,
    OutcomeKind.FATAL: PolicyAction.ABORT,
}


@dataclass
class StepOutcome:
    """Result of one orchestrated step."""

    kind: OutcomeKind
    value: Any = None
    code: str | None = None
    message: str | None = None

    @classmethod
    def ok(cls, value: Any = None) -> StepOutcome:
        return cls(kind=OutcomeKind.OK, value=value)

    @classmethod
    def from_exception(cls, exc: Exception) -> StepOutcome:
        """Classify an exception raised by a step."""
        if isinstance(exc, AuthRequiredError):
            kind = OutcomeKind.TOKEN_EXPIRED
        elif isinstance(exc, RootMismatchError):
            kind = OutcomeKind.ROOT_MISMATCH
        else:
            kind = OutcomeKind.FATAL
        code = exc.code if isinstance(exc, DriveSyncError) else "SYNC_FAILED"
        return cls(kind=kind, code=code, message=str(exc))


@dataclass
class FolderSelection:
    folder_id: str
    folder_name: str | None = None
    folder_path: str | None = None


@dataclass
class SyncReport:
    """What one sync-now invocation achieved.

    ``phase`` is one of ``complete``, ``partial`` (iteration ceiling reached
    before the queue drained), ``reauth_required`` or ``error``.
    """

    trace_id: str
    phase: str = "complete"
    message: str = ""
    reason: str | None = None
    authorize_url: str | None = None
    rearmed: bool = False
    indexed_files: int = 0
    indexed_folders: int = 0
    updated_items: int = 0
    processed_folders: int = 0
    queued: int = 0
    done: bool = False
    iterations: int = 0
    rearms: int = 0
    changes_processed: int = 0
    steps: list[str] = field(default_factory=list)


Step = Callable[[AsyncSession], Awaitable[Any]]


class SyncOrchestrator:
    """Drives start, index, the budgeted run loop and the final pull."""

    def __init__(
        self,
        user_id: str,
        session_factory: async_sessionmaker[AsyncSession] = async_session_maker,
        client_factory: Callable[[str], DriveClient] = DriveClient,
        budget_folders: int | None = None,
        max_iterations: int | None = None,
    ):
        self.user_id = user_id
        self._session_factory = session_factory
        self._client_factory = client_factory
        self.budget_folders = settings.sync_default_budget if budget_folders is None else budget_folders
        if not 1 <= self.budget_folders <= settings.sync_max_budget:
            raise InvalidBudgetError(
                f"budget_folders must be between 1 and {settings.sync_max_budget}"
            )
        self.max_iterations = settings.sync_max_iterations if max_iterations is None else max_iterations

    async def _step(self, name: str, action: Step) -> StepOutcome:
        """Run one step in a fresh session, committing on success."""
        async with self._session_factory() as db:
            try:
                value = await action(db)
                await db.commit()
                return StepOutcome.ok(value)
            except Exception as e:
                await db.rollback()
                outcome = StepOutcome.from_exception(e)
                if outcome.kind is OutcomeKind.FATAL:
                    logger.error("sync_step_failed", step=name, user_id=self.user_id, error=str(e), exc_info=True)
                else:
                    logger.warning("sync_step_interrupted", step=name, kind=outcome.kind.value, code=outcome.code)
                return outcome

    # ========== Steps ==========

    async def _start(self, db: AsyncSession, force: bool, folder: FolderSelection | None):
        if folder is not None:
            await FolderSettingsService(db, self.user_id).set_folder(
                folder.folder_id, folder.folder_name, folder.folder_path
            )
        return await SyncStateService(db, self.user_id).start(force=force)

    async def _index_if_needed(self, db: AsyncSession):
        indexer = FolderIndexer(db, self.user_id, client_factory=self._client_factory)
        state = await indexer.get_state()
        if state is None or state.status != SyncStatus.INDEXING:
            return None
        if state.root_folder_id not in state.pending_ids:
            return None
        return await indexer.index_folder()

    async def _run(self, db: AsyncSession):
        runner = SyncRunner(db, self.user_id, client_factory=self._client_factory)
        return await runner.run(self.budget_folders)

    async def _pull(self, db: AsyncSession):
        return await ChangesService(db, self.user_id, client_factory=self._client_factory).pull()

    async def _arm(self, report: SyncReport, force: bool, folder: FolderSelection | None = None) -> StepOutcome:
        """start() followed by index_folder() when the root is still unindexed."""
        outcome = await self._step("start", lambda db: self._start(db, force, folder))
        report.steps.append("start")
        if outcome.kind is not OutcomeKind.OK:
            return outcome
        report.rearmed = report.rearmed or outcome.value.rearmed

        outcome = await self._step("index", self._index_if_needed)
        if outcome.kind is OutcomeKind.OK and outcome.value is not None:
            report.steps.append("index")
            report.indexed_files += outcome.value.total_files
            report.indexed_folders += outcome.value.total_folders
        return outcome

    # ========== Policy ==========

    async def _apply_policy(self, outcome: StepOutcome, report: SyncReport) -> bool:
        """Act on a non-OK outcome.

        Returns:
            True if the loop may continue, False if ``report`` is final.
        """
        action = POLICY[outcome.kind]

        if action is PolicyAction.CONTINUE:
            return True

        if action is PolicyAction.REARM_AND_RETRY:
            report.rearms += 1
            logger.info("sync_root_mismatch_rearm", user_id=self.user_id, rearms=report.rearms)
            await asyncio.sleep(settings.sync_root_mismatch_delay)
            rearm = await self._arm(report, force=False)
            if rearm.kind in (OutcomeKind.OK, OutcomeKind.ROOT_MISMATCH):
                return True
            return await self._apply_policy(rearm, report)

        if action is PolicyAction.REQUIRE_USER:
            report.phase = "reauth_required"
            report.reason = outcome.code
            report.message = "Google Drive access must be renewed. Reconnect to continue syncing."
            report.authorize_url = await self._reauthorize_url()
            return False

        report.phase = "error"
        report.reason = outcome.code
        report.message = outcome.message or "Sync failed"
        await self._step(
            "mark_error",
            lambda db: SyncStateService(db, self.user_id).mark_error(report.message),
        )
        return False

    async def _reauthorize_url(self) -> str | None:
        """Build a consent URL that forces the consent screen."""
        outcome = await self._step(
            "authorize",
            lambda db: DriveTokenManager(db, self.user_id).authorize(force_consent=True),
        )
        return outcome.value if outcome.kind is OutcomeKind.OK else None

    # ========== Sync Now ==========

    async def sync_now(self, folder: FolderSelection | None = None) -> SyncReport:
        """Run one full "sync now".

        Args:
            folder: Newly selected folder. When given, settings are updated
                and the crawl is force re-armed; otherwise start() only
                re-arms when the state is missing or stale.

        Returns:
            SyncReport describing how far the sync got.
        """
        report = SyncReport(trace_id=bind_trace_id(user_id=self.user_id))
        logger.info("sync_now_started", user_id=self.user_id, folder_id=folder.folder_id if folder else None)

        outcome = await self._arm(report, force=folder is not None, folder=folder)
        if outcome.kind is not OutcomeKind.OK and not await self._apply_policy(outcome, report):
            return self._finish(report)

        while report.iterations < self.max_iterations:
            report.iterations += 1
            outcome = await self._step("run", self._run)
            if outcome.kind is not OutcomeKind.OK:
                if not await self._apply_policy(outcome, report):
                    return self._finish(report)
                continue

            result = outcome.value
            report.updated_items += result.updated_items
            report.processed_folders += result.processed_folders
            report.queued = result.queued
            report.done = result.done
            if result.done or result.queued == 0:
                break
            await asyncio.sleep(settings.sync_run_delay)

        if not report.done:
            report.phase = "partial"
            report.message = f"Iteration limit reached with {report.queued} folders still queued"
            return self._finish(report)

        outcome = await self._step("pull", self._pull)
        report.steps.append("pull")
        if outcome.kind is not OutcomeKind.OK:
            if outcome.kind is OutcomeKind.ROOT_MISMATCH:
                # The folder changed after the crawl finished; the next sync re-arms
                report.phase = "partial"
                report.reason = outcome.code
                report.message = "Selected folder changed during sync"
                return self._finish(report)
            await self._apply_policy(outcome, report)
            return self._finish(report)

        report.changes_processed = outcome.value.processed
        report.phase = "complete"
        report.message = f"Sync complete: {report.updated_items + report.indexed_files} items updated"
        return self._finish(report)

    def _finish(self, report: SyncReport) -> SyncReport:
        log = logger.info if report.phase in ("complete", "partial") else logger.warning
        log(
            "sync_now_finished",
            user_id=self.user_id,
            phase=report.phase,
            reason=report.reason,
            iterations=report.iterations,
            updated_items=report.updated_items,
            processed_folders=report.processed_folders,
        )
        return report
