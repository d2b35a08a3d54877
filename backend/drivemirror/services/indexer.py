"""Full indexer: seeds the crawl queue from the root's immediate contents."""

from __future__ import annotations

from dataclasses import dataclass

from drivemirror.core.logging import get_logger
from drivemirror.db.models import SyncStatus
from drivemirror.services.mirror import MirrorStore, child_path
from drivemirror.services.sync_state import SyncStateService, bump_stats, enqueue

logger = get_logger(__name__)


@dataclass
class IndexResult:
    total_files: int
    total_folders: int


class FolderIndexer(SyncStateService):
    """One shallow pass over the armed root.

    Files under the root become mirror items; subfolders are queued for the
    runner. Depth is amortized across later run() calls.
    """

    async def index_folder(self) -> IndexResult:
        """List the root's children and seed ``pending``.

        Safe to re-run: subfolders already queued are not enqueued again.

        Raises:
            RootMismatchError: If the selected folder changed since start().
            TokenExpiredError: If Drive rejected the credentials.
            GoogleDriveError: On other Drive failures.
        """
        state, sync_settings = await self.ensure_root()
        root_id = state.root_folder_id
        root_path = sync_settings.folder_path
        client = await self._get_client()

        # Cursor for changes made while the crawl is in progress
        if state.crawl_page_token is None and state.start_page_token is None:
            state.crawl_page_token = await client.get_start_page_token()
            await self.db.flush()

        children = await client.list_children(root_id)
        files = [f for f in children if not f.is_folder]
        folders = [f for f in children if f.is_folder]

        # The listing may have taken a while
        state, sync_settings = await self.ensure_root()

        store = MirrorStore(self.db, self.user_id)
        await store.upsert_items(files, root_id, root_path)
        await store.upsert_folders(folders, root_id, root_path)

        enqueue(state, [
            {"folder_id": f.id, "path": child_path(root_path, f.name)}
            for f in folders
        ])
        state.pending = [entry for entry in state.pending if entry["folder_id"] != root_id]
        state.status = SyncStatus.SYNCING
        bump_stats(state, updated_items=len(files), found_folders=len(folders))
        await self.db.flush()

        logger.info(
            "root_indexed",
            user_id=self.user_id,
            root_folder_id=root_id,
            files=len(files),
            folders=len(folders),
            queued=len(state.pending),
        )
        return IndexResult(total_files=len(files), total_folders=len(folders))
