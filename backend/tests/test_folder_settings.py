"""Tests for FolderSettingsService."""

from __future__ import annotations

import pytest
from sqlalchemy import func, select

from drivemirror.db.models import SyncState
from drivemirror.services.errors import NoRootFolderError
from drivemirror.services.folder_settings import FolderSettingsService


@pytest.fixture
def service(db_session) -> FolderSettingsService:
    return FolderSettingsService(db_session, "user-1")


class TestSetFolder:
    @pytest.mark.asyncio
    async def test_creates_settings(self, service: FolderSettingsService):
        stored = await service.set_folder("F1", "Photos", "My Drive / Photos")

        assert stored.folder_id == "F1"
        assert stored.folder_name == "Photos"
        assert stored.folder_path == "My Drive / Photos"
        assert stored.downloads_enabled is False

    @pytest.mark.asyncio
    async def test_idempotent(self, service: FolderSettingsService):
        first = await service.set_folder("F1", "Photos")
        second = await service.set_folder("F1", "Photos")

        assert first is second
        assert (await service.get()).folder_id == "F1"

    @pytest.mark.asyncio
    async def test_change_folder_overwrites(self, service: FolderSettingsService):
        await service.set_folder("F1", "Photos", "Photos")
        await service.set_folder("F2", "Trips")

        stored = await service.get()
        assert stored.folder_id == "F2"
        assert stored.folder_name == "Trips"
        assert stored.folder_path is None

    @pytest.mark.asyncio
    async def test_does_not_touch_sync_state(self, service: FolderSettingsService, db_session):
        await service.set_folder("F1")

        count = await db_session.scalar(select(func.count()).select_from(SyncState))
        assert count == 0

    @pytest.mark.asyncio
    async def test_users_are_isolated(self, db_session):
        await FolderSettingsService(db_session, "user-1").set_folder("F1")
        await FolderSettingsService(db_session, "user-2").set_folder("F2")

        assert (await FolderSettingsService(db_session, "user-1").get()).folder_id == "F1"
        assert (await FolderSettingsService(db_session, "user-2").get()).folder_id == "F2"


class TestDownloads:
    @pytest.mark.asyncio
    async def test_requires_folder(self, service: FolderSettingsService):
        with pytest.raises(NoRootFolderError):
            await service.set_downloads_enabled(True)

    @pytest.mark.asyncio
    async def test_toggle(self, service: FolderSettingsService):
        await service.set_folder("F1")

        assert (await service.set_downloads_enabled(True)).downloads_enabled is True
        assert (await service.set_downloads_enabled(False)).downloads_enabled is False

    @pytest.mark.asyncio
    async def test_folder_change_keeps_downloads_flag(self, service: FolderSettingsService):
        await service.set_folder("F1")
        await service.set_downloads_enabled(True)
        await service.set_folder("F2")

        assert (await service.get()).downloads_enabled is True
