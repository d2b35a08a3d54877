"""Mirror store: writes discovered remote files and folders into the catalog."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from drivemirror.core.logging import get_logger
from drivemirror.db.base import utcnow
from drivemirror.db.models import ItemStatus, MediaKind, MirrorFolder, MirrorItem
from drivemirror.services.google_drive import FileInfo

logger = get_logger(__name__)

PATH_SEPARATOR = " / "


def child_path(parent_path: str | None, name: str) -> str:
    """Display path of a child entry below ``parent_path``."""
    return f"{parent_path}{PATH_SEPARATOR}{name}" if parent_path else name


def media_kind_for(mime_type: str | None) -> MediaKind:
    """Classify a MIME type as photo, video or other."""
    if mime_type:
        if mime_type.startswith("image/"):
            return MediaKind.PHOTO
        if mime_type.startswith("video/"):
            return MediaKind.VIDEO
    return MediaKind.OTHER


class MirrorStore:
    """Upserts and status transitions for one user's mirror rows."""

    def __init__(self, db: AsyncSession, user_id: str):
        self.db = db
        self.user_id = user_id

    # ========== Items ==========

    async def get_item(self, item_key: str) -> MirrorItem | None:
        result = await self.db.execute(
            select(MirrorItem).where(
                MirrorItem.user_id == self.user_id,
                MirrorItem.item_key == item_key,
            )
        )
        return result.scalar_one_or_none()

    async def upsert_items(
        self,
        files: list[FileInfo],
        parent_folder_id: str,
        parent_path: str | None,
        seen_at: datetime | None = None,
    ) -> int:
        """Insert or update files found in ``parent_folder_id``.

        Re-seen items are reactivated (leaving virtual trash).

        Returns:
            Number of items written.
        """
        if not files:
            return 0

        seen_at = seen_at or utcnow()
        keys = [f.id for f in files]
        result = await self.db.execute(
            select(MirrorItem).where(
                MirrorItem.user_id == self.user_id,
                MirrorItem.item_key.in_(keys),
            )
        )
        existing = {item.item_key: item for item in result.scalars().all()}

        for f in files:
            item = existing.get(f.id)
            if item is None:
                item = MirrorItem(user_id=self.user_id, item_key=f.id)
                self.db.add(item)
                existing[f.id] = item

            item.name = f.name
            item.mime_type = f.mime_type or None
            item.parent_folder_id = parent_folder_id
            item.path = child_path(parent_path, f.name)
            item.size = f.size
            item.md5_checksum = f.md5_checksum
            item.created_time = f.created_time
            item.modified_time = f.modified_time
            item.thumbnail_link = f.thumbnail_link
            item.web_view_link = f.web_view_link
            item.web_content_link = f.web_content_link
            item.media_kind = media_kind_for(f.mime_type)
            item.video_duration_ms = f.video_duration_ms
            item.video_width = f.video_width
            item.video_height = f.video_height
            item.status = ItemStatus.ACTIVE
            item.missing_since = None
            item.last_seen_at = seen_at

        await self.db.flush()
        return len(files)

    async def mark_removed(self, remote_id: str) -> bool:
        """Move a removed file to virtual trash and flag a removed folder.

        Returns:
            True if a mirrored item or folder was affected.
        """
        now = utcnow()
        items = await self.db.execute(
            update(MirrorItem)
            .where(
                MirrorItem.user_id == self.user_id,
                MirrorItem.item_key == remote_id,
                MirrorItem.status != ItemStatus.TRASHED,
            )
            .values(status=ItemStatus.TRASHED, missing_since=now, updated_at=now)
        )
        folders = await self.db.execute(
            update(MirrorFolder)
            .where(
                MirrorFolder.user_id == self.user_id,
                MirrorFolder.folder_id == remote_id,
                MirrorFolder.trashed.is_(False),
            )
            .values(trashed=True, updated_at=now)
        )
        return (items.rowcount or 0) + (folders.rowcount or 0) > 0

    async def remove_subtree(self, folder_id: str) -> tuple[set[str], int]:
        """Trash a folder that left the mirror, with every folder and item below it.

        Returns:
            Tuple of (ids of the trashed folders, rows affected).
        """
        folder_ids = {folder_id}
        frontier = [folder_id]
        while frontier:
            result = await self.db.execute(
                select(MirrorFolder.folder_id).where(
                    MirrorFolder.user_id == self.user_id,
                    MirrorFolder.parent_folder_id.in_(frontier),
                )
            )
            frontier = [fid for fid in result.scalars().all() if fid not in folder_ids]
            folder_ids.update(frontier)

        now = utcnow()
        items = await self.db.execute(
            update(MirrorItem)
            .where(
                MirrorItem.user_id == self.user_id,
                MirrorItem.parent_folder_id.in_(folder_ids),
                MirrorItem.status != ItemStatus.TRASHED,
            )
            .values(status=ItemStatus.TRASHED, missing_since=now, updated_at=now)
        )
        folders = await self.db.execute(
            update(MirrorFolder)
            .where(
                MirrorFolder.user_id == self.user_id,
                MirrorFolder.folder_id.in_(folder_ids),
                MirrorFolder.trashed.is_(False),
            )
            .values(trashed=True, updated_at=now)
        )
        affected = (items.rowcount or 0) + (folders.rowcount or 0)
        logger.info(
            "mirror_subtree_removed",
            user_id=self.user_id,
            folder_id=folder_id,
            folders=len(folder_ids),
            rows=affected,
        )
        return folder_ids, affected

    # ========== Folders ==========

    async def get_folder(self, folder_id: str) -> MirrorFolder | None:
        result = await self.db.execute(
            select(MirrorFolder).where(
                MirrorFolder.user_id == self.user_id,
                MirrorFolder.folder_id == folder_id,
            )
        )
        return result.scalar_one_or_none()

    async def upsert_folders(
        self,
        folders: list[FileInfo],
        parent_folder_id: str,
        parent_path: str | None,
    ) -> list[str]:
        """Insert or update subfolders of ``parent_folder_id``.

        Returns:
            Ids of folders that were new or came back from trash.
        """
        if not folders:
            return []

        result = await self.db.execute(
            select(MirrorFolder).where(
                MirrorFolder.user_id == self.user_id,
                MirrorFolder.folder_id.in_([f.id for f in folders]),
            )
        )
        existing = {folder.folder_id: folder for folder in result.scalars().all()}

        created: list[str] = []
        for f in folders:
            folder = existing.get(f.id)
            if folder is None:
                folder = MirrorFolder(user_id=self.user_id, folder_id=f.id)
                self.db.add(folder)
                existing[f.id] = folder
                created.append(f.id)
            elif folder.trashed:
                created.append(f.id)
            folder.name = f.name
            folder.parent_folder_id = parent_folder_id
            folder.path = child_path(parent_path, f.name)
            folder.trashed = False

        await self.db.flush()
        return created

    async def known_folder_ids(self, root_folder_id: str) -> set[str]:
        """Ids of the root and every live folder discovered below it."""
        result = await self.db.execute(
            select(MirrorFolder.folder_id).where(
                MirrorFolder.user_id == self.user_id,
                MirrorFolder.trashed.is_(False),
            )
        )
        return {root_folder_id, *result.scalars().all()}

    async def folder_path(self, folder_id: str, root_folder_id: str, root_path: str | None) -> str | None:
        """Resolve the cached display path of a mirrored folder."""
        if folder_id == root_folder_id:
            return root_path
        folder = await self.get_folder(folder_id)
        return folder.path if folder else None

    # ========== Orphans / Virtual Trash ==========

    async def mark_orphans(self, crawl_started_at: datetime) -> int:
        """Flag active items not seen since ``crawl_started_at`` as MISSING.

        Returns:
            Number of items moved to virtual trash.
        """
        now = utcnow()
        result = await self.db.execute(
            update(MirrorItem)
            .where(
                MirrorItem.user_id == self.user_id,
                MirrorItem.status == ItemStatus.ACTIVE,
                or_(
                    MirrorItem.last_seen_at.is_(None),
                    MirrorItem.last_seen_at < crawl_started_at,
                ),
            )
            .values(status=ItemStatus.MISSING, missing_since=now, updated_at=now)
        )
        count = result.rowcount or 0
        if count:
            logger.info("orphans_marked", user_id=self.user_id, count=count)
        return count

    async def list_trash(self, limit: int = 100, offset: int = 0) -> tuple[list[MirrorItem], int]:
        """List items in virtual trash (TRASHED or MISSING), newest first."""
        condition = (
            (MirrorItem.user_id == self.user_id)
            & MirrorItem.status.in_([ItemStatus.TRASHED, ItemStatus.MISSING])
        )
        total = await self.db.scalar(select(func.count()).select_from(MirrorItem).where(condition))
        result = await self.db.execute(
            select(MirrorItem)
            .where(condition)
            .order_by(MirrorItem.missing_since.desc(), MirrorItem.name)
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all()), total or 0

    async def purge_orphans(self, older_than: datetime) -> int:
        """Permanently delete MISSING items flagged before ``older_than``.

        Returns:
            Number of rows deleted.
        """
        result = await self.db.execute(
            delete(MirrorItem).where(
                MirrorItem.user_id == self.user_id,
                MirrorItem.status == ItemStatus.MISSING,
                MirrorItem.missing_since <= older_than,
            )
        )
        count = result.rowcount or 0
        logger.info("orphans_purged", user_id=self.user_id, count=count)
        return count

    async def count_items(self, status: ItemStatus | None = ItemStatus.ACTIVE) -> int:
        query = select(func.count()).select_from(MirrorItem).where(MirrorItem.user_id == self.user_id)
        if status is not None:
            query = query.where(MirrorItem.status == status)
        return await self.db.scalar(query) or 0
