"""Delta changes puller and peek.

After the first full crawl the mirror is kept fresh through the Drive Changes
API. ``pull()`` applies every change in the mirrored subtree and advances the
stored cursor; ``peek()`` only counts what a pull would see.
"""

from __future__ import annotations

from dataclasses import dataclass

from drivemirror.core.logging import get_logger
from drivemirror.db.base import utcnow
from drivemirror.db.models import ItemStatus, SyncSettings, SyncState, SyncStatus
from drivemirror.services.errors import NoChangeCursorError
from drivemirror.services.google_drive import ChangeInfo, DriveClient
from drivemirror.services.mirror import MirrorStore, child_path
from drivemirror.services.sync_state import SyncStateService, enqueue

logger = get_logger(__name__)


@dataclass
class PullResult:
    processed: int
    applied: int
    queued_folders: int
    start_page_token: str


@dataclass
class PeekResult:
    new_count: int
    additions: int
    modifications: int
    removals: int


class ChangesService(SyncStateService):
    """Applies (or counts) remote changes since the stored cursor."""

    async def pull(self) -> PullResult:
        """Apply all pending remote changes and advance the cursor.

        Safe with zero changes: only ``last_changes_at`` is updated.

        Raises:
            NoChangeCursorError: If no full crawl has completed yet.
            RootMismatchError: If the selected folder changed since start().
            TokenExpiredError: If Drive rejected the credentials.
        """
        state, sync_settings = await self.ensure_root()
        if state.start_page_token is None:
            raise NoChangeCursorError("No change cursor yet; finish a full crawl first")

        client = await self._get_client()
        store = MirrorStore(self.db, self.user_id)
        known = await store.known_folder_ids(state.root_folder_id)

        processed = 0
        applied = 0
        queued = 0
        page_token = state.start_page_token
        while True:
            page = await client.list_changes(page_token)
            for change in page.changes:
                processed += 1
                rows, enqueued = await self._apply(change, state, sync_settings, store, known)
                applied += rows
                queued += enqueued
            if page.new_start_page_token:
                new_token = page.new_start_page_token
                break
            page_token = page.next_page_token

        previous = state.start_page_token
        state.start_page_token = new_token
        state.last_changes_at = utcnow()
        if state.pending and state.status == SyncStatus.IDLE:
            state.status = SyncStatus.SYNCING
        elif not state.pending and state.status == SyncStatus.SYNCING:
            state.status = SyncStatus.IDLE
        await self.db.flush()

        logger.info(
            "changes_pulled",
            user_id=self.user_id,
            processed=processed,
            applied=applied,
            queued_folders=queued,
            cursor_advanced=new_token != previous,
        )
        return PullResult(
            processed=processed,
            applied=applied,
            queued_folders=queued,
            start_page_token=new_token,
        )

    async def _apply(
        self,
        change: ChangeInfo,
        state: SyncState,
        sync_settings: SyncSettings,
        store: MirrorStore,
        known: set[str],
    ) -> tuple[int, int]:
        """Apply one change.

        Returns:
            Tuple of (rows affected, folders enqueued) as 0/1 flags.
        """
        info = change.file
        if change.removed or info is None or info.trashed:
            if change.file_id in known and change.file_id != state.root_folder_id:
                return await self._drop_folder(change.file_id, state, store, known), 0
            return int(await store.mark_removed(change.file_id)), 0

        parent_id = next((p for p in info.parents if p in known), None)

        if parent_id is None:
            # Outside the mirrored subtree; drop it if it used to be inside
            if info.is_folder and info.id in known:
                return await self._drop_folder(info.id, state, store, known), 0
            if not info.is_folder:
                item = await store.get_item(info.id)
                if item is not None and item.status == ItemStatus.ACTIVE:
                    return int(await store.mark_removed(info.id)), 0
            return 0, 0

        parent_path = await store.folder_path(
            parent_id, state.root_folder_id, sync_settings.folder_path
        )

        if info.is_folder:
            created = await store.upsert_folders([info], parent_id, parent_path)
            known.add(info.id)
            added = 0
            if created:
                added = enqueue(state, [{"folder_id": info.id, "path": child_path(parent_path, info.name)}])
            return 1, added

        await store.upsert_items([info], parent_id, parent_path)
        return 1, 0

    @staticmethod
    async def _drop_folder(
        folder_id: str,
        state: SyncState,
        store: MirrorStore,
        known: set[str],
    ) -> int:
        """Trash a folder's whole subtree and stop crawling any part of it."""
        removed, affected = await store.remove_subtree(folder_id)
        known.difference_update(removed)
        if removed.intersection(state.pending_ids):
            state.pending = [entry for entry in state.pending if entry["folder_id"] not in removed]
        return int(affected > 0)

    async def peek(self) -> PeekResult:
        """Count available changes without applying them.

        Never writes the cursor or any mirror row.

        Raises:
            NoChangeCursorError: If no full crawl has completed yet.
        """
        state, _ = await self.ensure_root(refresh=False)
        if state.start_page_token is None:
            raise NoChangeCursorError("No change cursor yet; finish a full crawl first")

        client: DriveClient = await self._get_client()
        store = MirrorStore(self.db, self.user_id)

        result = PeekResult(new_count=0, additions=0, modifications=0, removals=0)
        page_token = state.start_page_token
        while True:
            page = await client.list_changes(page_token)
            for change in page.changes:
                result.new_count += 1
                if change.removed or change.file is None or change.file.trashed:
                    result.removals += 1
                elif await store.get_item(change.file_id) is not None:
                    result.modifications += 1
                else:
                    result.additions += 1
            if page.new_start_page_token:
                break
            page_token = page.next_page_token

        logger.debug("changes_peeked", user_id=self.user_id, new_count=result.new_count)
        return result
