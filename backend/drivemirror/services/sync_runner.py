"""Budgeted sync runner: drains the crawl queue breadth-first in bounded batches.

Progress is checkpointed per folder, so run() can be called repeatedly from
fresh processes and resumes exactly where the last call stopped. A folder is
removed from ``pending`` only after its complete listing has been written; an
interrupted folder is listed again from the first page on the next call. A
queued folder that Drive no longer knows is dropped along with its mirrored
subtree.
"""

from __future__ import annotations

from dataclasses import dataclass

from drivemirror.core.config import settings
from drivemirror.core.logging import get_logger
from drivemirror.db.base import utcnow
from drivemirror.db.models import SyncState, SyncStatus
from drivemirror.services.errors import (
    AuthRequiredError,
    InvalidBudgetError,
    RootMismatchError,
)
from drivemirror.services.google_drive import GoogleNotFoundError
from drivemirror.services.mirror import MirrorStore, child_path
from drivemirror.services.sync_state import SyncStateService, bump_stats, enqueue

logger = get_logger(__name__)


@dataclass
class RunResult:
    updated_items: int
    processed_folders: int
    queued: int
    done: bool


class SyncRunner(SyncStateService):
    """Processes up to ``budget_folders`` queued folders per call."""

    async def run(self, budget_folders: int | None = None) -> RunResult:
        """Process the head of the crawl queue.

        Args:
            budget_folders: Maximum folders to list in this call. Defaults to
                ``sync_default_budget``.

        Returns:
            RunResult; ``done`` is True once ``pending`` is empty.

        Raises:
            InvalidBudgetError: If the budget is outside 1..sync_max_budget.
            RootMismatchError: If the selected folder changed since start().
            TokenExpiredError: If Drive rejected the credentials mid-batch.
        """
        budget = settings.sync_default_budget if budget_folders is None else budget_folders
        if not 1 <= budget <= settings.sync_max_budget:
            raise InvalidBudgetError(
                f"budget_folders must be between 1 and {settings.sync_max_budget}"
            )

        state, _ = await self.ensure_root()
        if not state.pending and state.start_page_token is not None:
            return RunResult(updated_items=0, processed_folders=0, queued=0, done=True)

        try:
            updated, processed = await self._drain(state, budget)
            state, _ = await self.ensure_root()
            if not state.pending:
                await self._complete_crawl(state)
            await self.db.commit()
        except AuthRequiredError:
            # Nothing but credential audit rows is pending at this point
            await self.db.commit()
            raise
        except RootMismatchError:
            await self.db.rollback()
            raise
        except Exception as e:
            await self.db.rollback()
            logger.error("sync_run_failed", user_id=self.user_id, error=str(e), exc_info=True)
            await self.mark_error(f"{type(e).__name__}: {e}")
            await self.db.commit()
            raise

        queued = len(state.pending)
        logger.info(
            "sync_run_completed",
            user_id=self.user_id,
            updated_items=updated,
            processed_folders=processed,
            queued=queued,
        )
        return RunResult(
            updated_items=updated,
            processed_folders=processed,
            queued=queued,
            done=queued == 0,
        )

    async def _drain(self, state: SyncState, budget: int) -> tuple[int, int]:
        """List and write up to ``budget`` folders, committing after each."""
        if not state.pending:
            return 0, 0

        store = MirrorStore(self.db, self.user_id)
        updated = 0
        processed = 0

        client = await self._get_client()
        if state.crawl_page_token is None and state.start_page_token is None:
            state.crawl_page_token = await client.get_start_page_token()
        state.status = SyncStatus.SYNCING
        await self.db.commit()

        for _ in range(budget):
            if not state.pending:
                break
            entry = state.pending[0]
            folder_id = entry["folder_id"]
            try:
                children = await client.list_children(folder_id)
            except GoogleNotFoundError:
                if folder_id == state.root_folder_id:
                    raise
                children = None

            # Re-check after the (possibly long) listing
            state, _ = await self.ensure_root()
            if not state.pending or state.pending[0]["folder_id"] != folder_id:
                logger.info("sync_folder_taken_elsewhere", user_id=self.user_id, folder_id=folder_id)
                continue

            if children is None:
                # Deleted remotely after it was queued
                await store.remove_subtree(folder_id)
                state.pending = state.pending[1:]
                await self.db.commit()
                logger.warning("sync_folder_gone", user_id=self.user_id, folder_id=folder_id)
                continue

            path = entry.get("path")
            files = [f for f in children if not f.is_folder]
            folders = [f for f in children if f.is_folder]

            await store.upsert_items(files, folder_id, path)
            await store.upsert_folders(folders, folder_id, path)
            enqueue(state, [
                {"folder_id": f.id, "path": child_path(path, f.name)}
                for f in folders
            ])
            state.pending = state.pending[1:]
            bump_stats(
                state,
                updated_items=len(files),
                processed_folders=1,
                found_folders=len(folders),
            )
            await self.db.commit()

            updated += len(files)
            processed += 1
            logger.debug(
                "sync_folder_processed",
                user_id=self.user_id,
                folder_id=folder_id,
                files=len(files),
                folders=len(folders),
            )

        return updated, processed

    async def _complete_crawl(self, state: SyncState) -> None:
        """Finish a drained crawl: promote the cursor and flag orphans.

        Only the first drain after a re-arm is a full crawl; folders queued
        later by the changes puller drain without touching the cursor.
        """
        if state.start_page_token is None:
            token = state.crawl_page_token
            if token is None:
                client = await self._get_client()
                token = await client.get_start_page_token()
            state.start_page_token = token
            state.crawl_page_token = None

            orphans = 0
            if state.armed_at is not None:
                orphans = await MirrorStore(self.db, self.user_id).mark_orphans(state.armed_at)
            state.last_full_scan_at = utcnow()
            logger.info(
                "sync_full_crawl_completed",
                user_id=self.user_id,
                root_folder_id=state.root_folder_id,
                orphans=orphans,
                stats=state.stats,
            )

        state.status = SyncStatus.IDLE
        state.last_error = None
        await self.db.flush()
