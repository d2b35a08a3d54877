"""Tests for SyncRunner - the budgeted breadth-first crawl.

Tests cover:
- Budget validation
- Breadth-first queue order and per-folder checkpoints
- Batch size independence of the final mirror
- Root fencing during a batch
- Interruption (auth, Drive errors) and resume
- Crawl completion: cursor promotion and orphan detection
"""

from __future__ import annotations

from datetime import timedelta
from typing import Any

import pytest
from sqlalchemy import select

from drivemirror.db.base import utcnow
from drivemirror.db.models import DriveConnection, ItemStatus, MirrorItem, SyncState, SyncStatus
from drivemirror.services.errors import InvalidBudgetError, RootMismatchError, TokenExpiredError
from drivemirror.services.folder_settings import FolderSettingsService
from drivemirror.services.google_drive import GoogleDriveError, GoogleNotFoundError
from drivemirror.services.indexer import FolderIndexer
from drivemirror.services.mirror import MirrorStore
from drivemirror.services.sync_runner import SyncRunner
from drivemirror.services.sync_state import SyncStateService
from drivemirror.services.tokens import METADATA_SCOPE, encrypt


@pytest.fixture
async def indexed(armed, session_factory, client_factory) -> str:
    """F1 armed and its root indexed; A, B, C are queued."""
    async with session_factory() as session:
        await FolderIndexer(session, armed, client_factory=client_factory).index_folder()
        await session.commit()
    return armed


async def run(session_factory, client_factory, budget: int | None = None, user_id: str = "user-1"):
    async with session_factory() as session:
        return await SyncRunner(session, user_id, client_factory=client_factory).run(budget)


async def load_state(session_factory, user_id: str = "user-1") -> SyncState:
    async with session_factory() as session:
        return await SyncStateService(session, user_id).get_state()


async def mirror(session_factory, user_id: str = "user-1") -> dict[str, tuple[Any, ...]]:
    """item_key -> (name, parent, path, status) for one user."""
    async with session_factory() as session:
        result = await session.execute(select(MirrorItem).where(MirrorItem.user_id == user_id))
        return {
            item.item_key: (item.name, item.parent_folder_id, item.path, item.status)
            for item in result.scalars().all()
        }


# =============================================================================
# Budget
# =============================================================================


class TestBudget:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("budget", [0, -1, 21])
    async def test_invalid_budget(self, indexed, session_factory, client_factory, fake_drive, budget):
        with pytest.raises(InvalidBudgetError) as exc_info:
            await run(session_factory, client_factory, budget)

        assert exc_info.value.status_code == 400
        assert fake_drive.calls["list_children"] == 1

    @pytest.mark.asyncio
    async def test_default_budget(self, indexed, session_factory, client_factory):
        result = await run(session_factory, client_factory)

        assert result.processed_folders == 3
        assert result.done is True


# =============================================================================
# Queue Processing
# =============================================================================


class TestQueueProcessing:
    """Tests for breadth-first draining."""

    @pytest.mark.asyncio
    async def test_breadth_first_order(self, f1_tree, indexed, session_factory, client_factory):
        f1_tree.add_folder("A1", "Nested", "A")
        f1_tree.add_file("A1-1", "deep.jpg", "A1")

        result = await run(session_factory, client_factory, 1)

        assert result.processed_folders == 1
        assert result.updated_items == 2
        assert result.queued == 3
        assert result.done is False
        state = await load_state(session_factory)
        assert state.pending == [
            {"folder_id": "B", "path": "Photos / Album B"},
            {"folder_id": "C", "path": "Photos / Album C"},
            {"folder_id": "A1", "path": "Photos / Album A / Nested"},
        ]

        for _ in range(3):
            await run(session_factory, client_factory, 1)

        items = await mirror(session_factory)
        assert items["A1-1"][2] == "Photos / Album A / Nested / deep.jpg"
        assert (await load_state(session_factory)).pending == []

    @pytest.mark.asyncio
    async def test_full_crawl(self, indexed, session_factory, client_factory):
        result = await run(session_factory, client_factory, 20)

        assert result.updated_items == 6
        assert result.processed_folders == 3
        assert result.queued == 0
        assert result.done is True

        items = await mirror(session_factory)
        assert len(items) == 7
        assert items["B-2"] == ("b2.mp4", "B", "Photos / Album B / b2.mp4", ItemStatus.ACTIVE)

        state = await load_state(session_factory)
        assert state.status == SyncStatus.IDLE
        assert state.stats == {"updated_items": 7, "processed_folders": 3, "found_folders": 3}

    @pytest.mark.asyncio
    async def test_batch_size_does_not_change_result(
        self, f1_tree, session_factory, client_factory, crawl
    ):
        f1_tree.add_folder("A1", "Nested", "A")
        f1_tree.add_file("A1-1", "deep.jpg", "A1")
        f1_tree.add_folder("A2", "Deeper", "A1")
        f1_tree.add_file("A2-1", "deepest.jpg", "A2")

        async with session_factory() as session:
            for user_id in ("small", "large"):
                session.add(DriveConnection(
                    user_id=user_id,
                    access_token_encrypted=encrypt("token"),
                    refresh_token_encrypted=encrypt("refresh"),
                    expires_at=utcnow() + timedelta(days=1),
                    scopes=METADATA_SCOPE,
                ))
                await FolderSettingsService(session, user_id).set_folder("F1", "Photos", "Photos")
                await SyncStateService(session, user_id).start()
            await session.commit()

        await crawl("small", budget=1)
        await crawl("large", budget=20)

        small = await mirror(session_factory, "small")
        assert len(small) == 9
        assert small == await mirror(session_factory, "large")

    @pytest.mark.asyncio
    async def test_done_without_api_calls(self, indexed, session_factory, client_factory, fake_drive):
        await run(session_factory, client_factory, 20)
        fake_drive.calls.clear()

        result = await run(session_factory, client_factory, 5)

        assert result.done is True
        assert result.processed_folders == 0
        assert sum(fake_drive.calls.values()) == 0


# =============================================================================
# Fencing
# =============================================================================


class TestFencing:
    @pytest.mark.asyncio
    async def test_mismatch_before_batch(self, indexed, session_factory, client_factory, fake_drive):
        async with session_factory() as session:
            await FolderSettingsService(session, "user-1").set_folder("F2")
            await session.commit()
        before = await mirror(session_factory)

        with pytest.raises(RootMismatchError):
            await run(session_factory, client_factory, 5)

        assert await mirror(session_factory) == before
        assert fake_drive.calls["list_children"] == 1

    @pytest.mark.asyncio
    async def test_mismatch_during_listing(self, indexed, session_factory, client_factory, fake_drive):
        async def switch_folder():
            async with session_factory() as session:
                await FolderSettingsService(session, "user-1").set_folder("F2")
                await session.commit()

        fake_drive.before_list["A"] = switch_folder
        before = await mirror(session_factory)

        with pytest.raises(RootMismatchError):
            await run(session_factory, client_factory, 5)

        assert await mirror(session_factory) == before
        assert (await load_state(session_factory)).pending_ids == ["A", "B", "C"]


# =============================================================================
# Interruption and Resume
# =============================================================================


class TestInterruption:
    @pytest.mark.asyncio
    async def test_token_expired_keeps_finished_folders(
        self, indexed, session_factory, client_factory, fake_drive
    ):
        fake_drive.fail_listing("B", TokenExpiredError("Access token expired"))

        with pytest.raises(TokenExpiredError):
            await run(session_factory, client_factory, 3)

        items = await mirror(session_factory)
        assert {"A-1", "A-2"} <= items.keys()
        assert "B-1" not in items
        state = await load_state(session_factory)
        assert state.pending_ids == ["B", "C"]
        assert state.status == SyncStatus.SYNCING

        result = await run(session_factory, client_factory, 3)
        assert result.done is True
        assert len(await mirror(session_factory)) == 7

    @pytest.mark.asyncio
    async def test_failure_on_later_page_relists_folder(
        self, f1_tree, indexed, session_factory, client_factory, fake_drive
    ):
        f1_tree.add_file("A-3", "a3.jpg", "A")
        fake_drive.fail_listing("A", GoogleDriveError("backend error"), page=1)

        with pytest.raises(GoogleDriveError):
            await run(session_factory, client_factory, 3)

        state = await load_state(session_factory)
        assert state.status == SyncStatus.ERROR
        assert "backend error" in state.last_error
        assert state.pending_ids == ["A", "B", "C"]
        assert not {"A-1", "A-2", "A-3"} & (await mirror(session_factory)).keys()

        fake_drive.calls.clear()
        result = await run(session_factory, client_factory, 1)

        assert result.updated_items == 3
        assert fake_drive.calls["list_folder"] == 2
        assert {"A-1", "A-2", "A-3"} <= (await mirror(session_factory)).keys()
        assert (await load_state(session_factory)).status == SyncStatus.SYNCING

    @pytest.mark.asyncio
    async def test_folder_deleted_after_queueing_is_dropped(
        self, indexed, session_factory, client_factory, fake_drive
    ):
        fake_drive.fail_listing("B", GoogleNotFoundError("File not found: B"))

        result = await run(session_factory, client_factory, 2)

        assert result.processed_folders == 1
        state = await load_state(session_factory)
        assert state.pending_ids == ["C"]
        assert state.status == SyncStatus.SYNCING
        assert state.last_error is None
        async with session_factory() as session:
            assert (await MirrorStore(session, "user-1").get_folder("B")).trashed is True

        result = await run(session_factory, client_factory, 2)

        assert result.done is True
        items = await mirror(session_factory)
        assert not {"B-1", "B-2"} & items.keys()
        assert items["C-1"][3] == ItemStatus.ACTIVE
        assert (await load_state(session_factory)).status == SyncStatus.IDLE

    @pytest.mark.asyncio
    async def test_missing_root_is_an_error(self, armed, session_factory, client_factory, fake_drive):
        fake_drive.fail_listing("F1", GoogleNotFoundError("File not found: F1"))

        with pytest.raises(GoogleNotFoundError):
            await run(session_factory, client_factory, 1)

        state = await load_state(session_factory)
        assert state.status == SyncStatus.ERROR
        assert state.pending_ids == ["F1"]


# =============================================================================
# Completion
# =============================================================================


class TestCompletion:
    @pytest.mark.asyncio
    async def test_crawl_cursor_promoted(self, indexed, session_factory, client_factory, fake_drive):
        fake_drive.create_file("late", "late.jpg", "C")

        await run(session_factory, client_factory, 20)

        state = await load_state(session_factory)
        assert state.start_page_token == "1"
        assert state.crawl_page_token is None
        assert state.last_full_scan_at is not None

    @pytest.mark.asyncio
    async def test_orphans_marked_missing(self, synced, session_factory, client_factory, fake_drive, crawl):
        # Removed remotely without a change entry reaching the mirror
        del fake_drive.files["A-1"]
        async with session_factory() as session:
            await SyncStateService(session, "user-1").start(force=True)
            await session.commit()

        await crawl()

        items = await mirror(session_factory)
        assert items["A-1"][3] == ItemStatus.MISSING
        assert items["A-2"][3] == ItemStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_reappearing_item_reactivated(self, synced, session_factory, client_factory, fake_drive, crawl):
        removed = fake_drive.files.pop("A-1")
        async with session_factory() as session:
            await SyncStateService(session, "user-1").start(force=True)
            await session.commit()
        await crawl()

        fake_drive.files["A-1"] = removed
        async with session_factory() as session:
            await SyncStateService(session, "user-1").start(force=True)
            await session.commit()
        await crawl()

        assert (await mirror(session_factory))["A-1"][3] == ItemStatus.ACTIVE
