"""Pytest configuration and fixtures."""

from __future__ import annotations

import os
import tempfile
from collections import Counter
from datetime import timedelta
from pathlib import Path
from typing import Awaitable, Callable

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Set config BEFORE importing app modules
_test_tmp_dir = tempfile.mkdtemp(prefix="drivemirror_test_")
os.environ["DRIVEMIRROR_CONFIG_PATH"] = _test_tmp_dir
os.environ["DRIVEMIRROR_GOOGLE_CLIENT_ID"] = "test-client-id.apps.googleusercontent.com"
os.environ["DRIVEMIRROR_GOOGLE_CLIENT_SECRET"] = "test-client-secret"
os.environ["DRIVEMIRROR_GOOGLE_REQUEST_DELAY"] = "0"
os.environ["DRIVEMIRROR_SYNC_RUN_DELAY"] = "0"
os.environ["DRIVEMIRROR_SYNC_ROOT_MISMATCH_DELAY"] = "0"

from drivemirror.api.deps import get_client_factory, get_session_factory  # noqa: E402
from drivemirror.db import get_db  # noqa: E402
from drivemirror.db.base import Base, utcnow  # noqa: E402
from drivemirror.db.models import DriveConnection  # noqa: E402
from drivemirror.main import app  # noqa: E402
from drivemirror.services.folder_settings import FolderSettingsService  # noqa: E402
from drivemirror.services.google_drive import (  # noqa: E402
    FOLDER_MIME_TYPE,
    ChangeInfo,
    ChangesPage,
    FileInfo,
)
from drivemirror.services.indexer import FolderIndexer  # noqa: E402
from drivemirror.services.sync_runner import SyncRunner  # noqa: E402
from drivemirror.services.sync_state import SyncStateService  # noqa: E402
from drivemirror.services.tokens import METADATA_SCOPE, encrypt  # noqa: E402

USER_ID = "user-1"


# =============================================================================
# Fake Drive
# =============================================================================


class FakeDrive:
    """In-memory stand-in for DriveClient.

    Holds a file tree and an append-only change log. Page tokens for folder
    listings are offsets; change tokens are 1-based positions in the log, so
    an empty pull returns the same token it was given.
    """

    def __init__(self, page_size: int = 2):
        self.page_size = page_size
        self.files: dict[str, FileInfo] = {}
        self.changes: list[ChangeInfo] = []
        self.calls: Counter[str] = Counter()
        # folder_id -> (page index, exception); raised once
        self.failures: dict[str, tuple[int, Exception]] = {}
        # folder_id -> coroutine function awaited once before the first page
        self.before_list: dict[str, Callable[[], Awaitable[None]]] = {}

    # ========== Tree Setup ==========

    def add_folder(self, folder_id: str, name: str, parent: str | None = None) -> FileInfo:
        info = FileInfo(
            id=folder_id,
            name=name,
            mime_type=FOLDER_MIME_TYPE,
            parents=[parent] if parent else [],
        )
        self.files[folder_id] = info
        return info

    def add_file(
        self,
        file_id: str,
        name: str,
        parent: str,
        mime_type: str = "image/jpeg",
    ) -> FileInfo:
        info = FileInfo(id=file_id, name=name, mime_type=mime_type, parents=[parent], size=1024)
        self.files[file_id] = info
        return info

    def fail_listing(self, folder_id: str, exc: Exception, page: int = 0) -> None:
        self.failures[folder_id] = (page, exc)

    # ========== Remote Mutations (recorded in the change log) ==========

    def create_file(self, file_id: str, name: str, parent: str, mime_type: str = "image/jpeg") -> None:
        info = self.add_file(file_id, name, parent, mime_type)
        self.changes.append(ChangeInfo(file_id=file_id, file=info))

    def create_folder(self, folder_id: str, name: str, parent: str) -> None:
        info = self.add_folder(folder_id, name, parent)
        self.changes.append(ChangeInfo(file_id=folder_id, file=info))

    def rename(self, file_id: str, name: str) -> None:
        info = self.files[file_id].model_copy(update={"name": name})
        self.files[file_id] = info
        self.changes.append(ChangeInfo(file_id=file_id, file=info))

    def move(self, file_id: str, new_parent: str) -> None:
        info = self.files[file_id].model_copy(update={"parents": [new_parent]})
        self.files[file_id] = info
        self.changes.append(ChangeInfo(file_id=file_id, file=info))

    def trash(self, file_id: str) -> None:
        info = self.files[file_id].model_copy(update={"trashed": True})
        self.files[file_id] = info
        self.changes.append(ChangeInfo(file_id=file_id, file=info))

    def delete(self, file_id: str) -> None:
        self.files.pop(file_id)
        self.changes.append(ChangeInfo(file_id=file_id, removed=True))

    # ========== DriveClient Interface ==========

    async def list_folder(
        self,
        folder_id: str,
        page_token: str | None = None,
        page_size: int = 1000,
    ) -> tuple[list[FileInfo], str | None]:
        self.calls["list_folder"] += 1
        start = int(page_token or 0)
        failure = self.failures.get(folder_id)
        if failure and failure[0] == start // self.page_size:
            del self.failures[folder_id]
            raise failure[1]

        children = sorted(
            (f for f in self.files.values() if folder_id in f.parents and not f.trashed),
            key=lambda f: f.id,
        )
        end = start + self.page_size
        next_token = str(end) if end < len(children) else None
        return children[start:end], next_token

    async def list_children(self, folder_id: str) -> list[FileInfo]:
        self.calls["list_children"] += 1
        hook = self.before_list.pop(folder_id, None)
        if hook is not None:
            await hook()
        children: list[FileInfo] = []
        page_token: str | None = None
        while True:
            files, page_token = await self.list_folder(folder_id, page_token)
            children.extend(files)
            if not page_token:
                return children

    async def get_start_page_token(self) -> str:
        self.calls["get_start_page_token"] += 1
        return str(len(self.changes) + 1)

    async def list_changes(self, page_token: str, page_size: int = 1000) -> ChangesPage:
        self.calls["list_changes"] += 1
        start = int(page_token) - 1
        batch = self.changes[start:start + self.page_size]
        end = start + len(batch)
        if end < len(self.changes):
            return ChangesPage(changes=batch, next_page_token=str(end + 1))
        return ChangesPage(changes=batch, new_start_page_token=str(len(self.changes) + 1))


# =============================================================================
# Database
# =============================================================================


@pytest.fixture
async def db_engine():
    """Create an in-memory test database engine shared by all sessions."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        db_engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
    )


@pytest.fixture
async def db_session(session_factory):
    """Create a test database session."""
    async with session_factory() as session:
        yield session


# =============================================================================
# Drive
# =============================================================================


@pytest.fixture
def fake_drive() -> FakeDrive:
    return FakeDrive()


@pytest.fixture
def client_factory(fake_drive):
    """Client factory handing out the fake drive regardless of token."""
    return lambda access_token: fake_drive


@pytest.fixture
async def connected_user(session_factory) -> str:
    """A user with a valid, far-from-expiry Drive connection."""
    async with session_factory() as session:
        session.add(DriveConnection(
            user_id=USER_ID,
            email="user@example.com",
            access_token_encrypted=encrypt("access-token"),
            refresh_token_encrypted=encrypt("refresh-token"),
            expires_at=utcnow() + timedelta(days=1),
            scopes=METADATA_SCOPE,
        ))
        await session.commit()
    return USER_ID


@pytest.fixture
def f1_tree(fake_drive) -> FakeDrive:
    """Root F1 with subfolders A, B, C (two files each) and one root file."""
    fake_drive.add_folder("F1", "Photos")
    fake_drive.add_file("f1-root", "cover.jpg", "F1")
    for folder in ("A", "B", "C"):
        fake_drive.add_folder(folder, f"Album {folder}", "F1")
        fake_drive.add_file(f"{folder}-1", f"{folder.lower()}1.jpg", folder)
        fake_drive.add_file(f"{folder}-2", f"{folder.lower()}2.mp4", folder, mime_type="video/mp4")
    return fake_drive


@pytest.fixture
async def armed(session_factory, connected_user, f1_tree) -> str:
    """F1 selected as the mirror root and the crawl armed (not yet indexed)."""
    async with session_factory() as session:
        await FolderSettingsService(session, connected_user).set_folder("F1", "Photos", "Photos")
        await SyncStateService(session, connected_user).start()
        await session.commit()
    return connected_user


@pytest.fixture
def crawl(session_factory, client_factory) -> Callable[..., Awaitable[None]]:
    """Index the armed root and run batches until the queue is drained."""

    async def _crawl(user_id: str = USER_ID, budget: int = 20) -> None:
        async with session_factory() as session:
            await FolderIndexer(session, user_id, client_factory=client_factory).index_folder()
            await session.commit()
        for _ in range(100):
            async with session_factory() as session:
                result = await SyncRunner(session, user_id, client_factory=client_factory).run(budget)
            if result.done:
                return
        raise AssertionError("crawl did not finish")

    return _crawl


@pytest.fixture
async def synced(armed, crawl) -> str:
    """F1 fully crawled with a change cursor in place."""
    await crawl(armed)
    return armed


# =============================================================================
# API
# =============================================================================


@pytest.fixture
async def client(session_factory, client_factory):
    """Create a test client with overridden database and Drive dependencies."""

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_client_factory] = lambda: client_factory

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as test_client:
        yield test_client

    app.dependency_overrides.clear()


def pytest_sessionfinish(session, exitstatus):
    """Clean up temp directories after test session."""
    import shutil
    if Path(_test_tmp_dir).exists():
        shutil.rmtree(_test_tmp_dir, ignore_errors=True)
