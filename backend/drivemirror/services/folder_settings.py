"""Folder settings registrar: persists the user's chosen mirror root."""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from drivemirror.core.logging import get_logger
from drivemirror.db.models import SyncSettings
from drivemirror.services.errors import NoRootFolderError

logger = get_logger(__name__)


class FolderSettingsService:
    """Reads and writes SyncSettings for one user.

    Writing settings never touches SyncState, so a folder change can be
    staged before a sync is (re)armed.
    """

    def __init__(self, db: AsyncSession, user_id: str):
        self.db = db
        self.user_id = user_id

    async def get(self) -> SyncSettings | None:
        """Get the user's settings, if any."""
        result = await self.db.execute(
            select(SyncSettings).where(SyncSettings.user_id == self.user_id)
        )
        return result.scalar_one_or_none()

    async def set_folder(
        self,
        folder_id: str,
        folder_name: str | None = None,
        folder_path: str | None = None,
    ) -> SyncSettings:
        """Idempotently upsert the chosen root folder.

        Args:
            folder_id: Remote folder id.
            folder_name: Display name of the folder.
            folder_path: Display path of the folder.

        Returns:
            The stored settings.
        """
        sync_settings = await self.get()
        previous = sync_settings.folder_id if sync_settings else None

        if sync_settings is None:
            sync_settings = SyncSettings(user_id=self.user_id, downloads_enabled=False)
            self.db.add(sync_settings)

        sync_settings.folder_id = folder_id
        sync_settings.folder_name = folder_name
        sync_settings.folder_path = folder_path
        await self.db.flush()

        logger.info(
            "sync_folder_set",
            user_id=self.user_id,
            folder_id=folder_id,
            previous_folder_id=previous,
        )
        return sync_settings

    async def set_downloads_enabled(self, enabled: bool) -> SyncSettings:
        """Toggle the downloads flag (which widens the required OAuth scopes).

        Raises:
            NoRootFolderError: If no folder has been selected yet.
        """
        sync_settings = await self.get()
        if sync_settings is None:
            raise NoRootFolderError("Select a folder before changing download settings")

        sync_settings.downloads_enabled = enabled
        await self.db.flush()
        logger.info("downloads_enabled_set", user_id=self.user_id, enabled=enabled)
        return sync_settings
