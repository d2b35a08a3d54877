"""Sync starter (re-armer) and the root fencing check.

SyncState is the only place crawl progress lives. Every mutating sync step
first calls ``ensure_root()`` so a crawl armed for a previously selected folder
can never write into the mirror after the user switches folders.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from drivemirror.core.logging import get_logger
from drivemirror.db.base import utcnow
from drivemirror.db.models import MirrorFolder, SyncSettings, SyncState, SyncStatus
from drivemirror.services.errors import (
    NoRootFolderError,
    RootMismatchError,
    SyncNotInitializedError,
)
from drivemirror.services.google_drive import DriveClient
from drivemirror.services.tokens import DriveTokenManager

logger = get_logger(__name__)

STAT_KEYS = ("updated_items", "processed_folders", "found_folders")


@dataclass
class StartResult:
    """Outcome of start()."""

    rearmed: bool
    root_folder_id: str
    status: SyncStatus


def enqueue(state: SyncState, entries: list[dict[str, Any]]) -> int:
    """Append folder entries to the tail of ``pending``, skipping known ids.

    Returns:
        Number of entries actually added.
    """
    pending = list(state.pending or [])
    queued = {entry["folder_id"] for entry in pending}
    added = 0
    for entry in entries:
        if entry["folder_id"] in queued:
            continue
        pending.append(entry)
        queued.add(entry["folder_id"])
        added += 1
    if added:
        state.pending = pending
    return added


def bump_stats(state: SyncState, **deltas: int) -> None:
    """Add to the cumulative counters stored on the state row."""
    stats = {key: 0 for key in STAT_KEYS}
    stats.update(state.stats or {})
    for key, value in deltas.items():
        stats[key] = stats.get(key, 0) + value
    state.stats = stats


class SyncStateService:
    """Base for every sync step of one user.

    Holds the session, the user id and the Drive client factory. Subclasses
    (indexer, runner, changes puller) share the fencing check and lazily
    obtain an authorized Drive client.
    """

    def __init__(
        self,
        db: AsyncSession,
        user_id: str,
        client_factory: Callable[[str], DriveClient] = DriveClient,
    ):
        self.db = db
        self.user_id = user_id
        self._client_factory = client_factory
        self._client: DriveClient | None = None

    async def _get_client(self) -> DriveClient:
        """Get a Drive client with a valid (possibly refreshed) access token."""
        if self._client is None:
            token = await DriveTokenManager(self.db, self.user_id).get_valid_access_token()
            self._client = self._client_factory(token)
        return self._client

    # ========== Reads ==========

    async def get_settings(self, refresh: bool = False) -> SyncSettings | None:
        query = select(SyncSettings).where(SyncSettings.user_id == self.user_id)
        if refresh:
            query = query.execution_options(populate_existing=True)
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def get_state(self, refresh: bool = False) -> SyncState | None:
        query = select(SyncState).where(SyncState.user_id == self.user_id)
        if refresh:
            query = query.execution_options(populate_existing=True)
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    # ========== Fencing ==========

    async def ensure_root(self, refresh: bool = True) -> tuple[SyncState, SyncSettings]:
        """Verify the armed root still matches the selected folder.

        Args:
            refresh: Re-read both rows from the database, discarding any
                identity-map copies, so a concurrent folder change is seen.

        Returns:
            Tuple of (state, settings).

        Raises:
            NoRootFolderError: If no folder is selected.
            SyncNotInitializedError: If start() never ran.
            RootMismatchError: If the armed root is stale.
        """
        sync_settings = await self.get_settings(refresh=refresh)
        if sync_settings is None or not sync_settings.folder_id:
            raise NoRootFolderError("No folder selected for mirroring")

        state = await self.get_state(refresh=refresh)
        if state is None:
            raise SyncNotInitializedError("Sync has not been started")

        if state.root_folder_id != sync_settings.folder_id:
            logger.warning(
                "sync_root_mismatch",
                user_id=self.user_id,
                state_root=state.root_folder_id,
                settings_root=sync_settings.folder_id,
            )
            raise RootMismatchError(state.root_folder_id, sync_settings.folder_id)

        return state, sync_settings

    # ========== Re-arm ==========

    async def start(self, force: bool = False) -> StartResult:
        """Reconcile SyncState with the selected folder.

        Re-arms (fresh queue seeded with the root, cursors cleared, status
        ``indexing``) when there is no state, the root changed, or ``force``
        is set. Otherwise leaves the state untouched.

        Raises:
            NoRootFolderError: If no folder is selected.
        """
        sync_settings = await self.get_settings(refresh=True)
        if sync_settings is None or not sync_settings.folder_id:
            raise NoRootFolderError("No folder selected for mirroring")

        state = await self.get_state(refresh=True)
        root_id = sync_settings.folder_id

        if state is not None and state.root_folder_id == root_id and not force:
            logger.debug("sync_start_noop", user_id=self.user_id, root_folder_id=root_id)
            return StartResult(rearmed=False, root_folder_id=root_id, status=state.status)

        previous_root = state.root_folder_id if state else None
        if state is None:
            state = SyncState(user_id=self.user_id, root_folder_id=root_id)
            self.db.add(state)

        state.root_folder_id = root_id
        state.pending = [{"folder_id": root_id, "path": sync_settings.folder_path}]
        state.start_page_token = None
        state.crawl_page_token = None
        state.status = SyncStatus.INDEXING
        state.last_error = None
        state.stats = {key: 0 for key in STAT_KEYS}
        state.armed_at = utcnow()

        # The folder cache describes the armed tree only; the crawl rebuilds it
        await self.db.execute(delete(MirrorFolder).where(MirrorFolder.user_id == self.user_id))
        await self.db.flush()

        logger.info(
            "sync_rearmed",
            user_id=self.user_id,
            root_folder_id=root_id,
            previous_root=previous_root,
            forced=force,
        )
        return StartResult(rearmed=True, root_folder_id=root_id, status=state.status)

    async def mark_error(self, message: str) -> None:
        """Set ``status = error`` with a message, if a state exists."""
        state = await self.get_state(refresh=True)
        if state is None:
            return
        state.status = SyncStatus.ERROR
        state.last_error = message[:2000]
        await self.db.flush()

    # ========== Diagnostics ==========

    async def diagnostics(self, trace_id: str) -> dict[str, Any]:
        """Read-only snapshot of settings and crawl state for support."""
        sync_settings = await self.get_settings()
        state = await self.get_state()

        settings_view = None
        if sync_settings is not None:
            settings_view = {
                "folder_id": sync_settings.folder_id,
                "folder_name": sync_settings.folder_name,
                "folder_path": sync_settings.folder_path,
                "downloads_enabled": sync_settings.downloads_enabled,
            }

        state_view = None
        if state is not None:
            state_view = {
                "root_folder_id": state.root_folder_id,
                "pending": state.pending_ids,
                "status": state.status.value,
                "has_start_page_token": state.start_page_token is not None,
                "last_error": state.last_error,
                "stats": state.stats or {},
                "armed_at": state.armed_at,
                "last_full_scan_at": state.last_full_scan_at,
                "last_changes_at": state.last_changes_at,
            }

        return {"settings": settings_view, "state": state_view, "trace_id": trace_id}
