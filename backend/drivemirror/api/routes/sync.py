"""Sync API endpoints: the individual crawl steps, delta changes and sync-now."""

from __future__ import annotations

from dataclasses import asdict
from datetime import timedelta
from typing import Callable

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from drivemirror.api.deps import (
    get_client_factory,
    get_session_factory,
    get_trace_id,
    get_user_id,
    sync_error,
)
from drivemirror.core.config import settings
from drivemirror.core.logging import get_logger
from drivemirror.db import get_db
from drivemirror.db.base import utcnow
from drivemirror.schemas.sync import (
    DiagnosticsResponse,
    IndexResponse,
    PeekResponse,
    PullResponse,
    PurgeRequest,
    PurgeResponse,
    RunRequest,
    RunResponse,
    StartRequest,
    StartResponse,
    SyncNowRequest,
    SyncNowResponse,
    TrashItem,
    TrashResponse,
)
from drivemirror.services.changes import ChangesService
from drivemirror.services.errors import DriveSyncError
from drivemirror.services.google_drive import DriveClient
from drivemirror.services.indexer import FolderIndexer
from drivemirror.services.mirror import MirrorStore
from drivemirror.services.orchestrator import FolderSelection, SyncOrchestrator
from drivemirror.services.sync_runner import SyncRunner
from drivemirror.services.sync_state import SyncStateService

logger = get_logger(__name__)

router = APIRouter(prefix="/sync", tags=["sync"])


# =============================================================================
# Crawl Steps
# =============================================================================


@router.post("/start", response_model=StartResponse)
async def start_sync(
    request: StartRequest | None = None,
    user_id: str = Depends(get_user_id),
    trace_id: str = Depends(get_trace_id),
    db: AsyncSession = Depends(get_db),
) -> StartResponse:
    """Arm (or re-arm) the crawl for the selected folder."""
    force = request.force if request else False
    try:
        result = await SyncStateService(db, user_id).start(force=force)
    except DriveSyncError as e:
        raise sync_error(e, trace_id)
    return StartResponse(
        rearmed=result.rearmed,
        root_folder_id=result.root_folder_id,
        status=result.status.value,
    )


@router.post("/index", response_model=IndexResponse)
async def index_folder(
    user_id: str = Depends(get_user_id),
    trace_id: str = Depends(get_trace_id),
    db: AsyncSession = Depends(get_db),
    client_factory: Callable[[str], DriveClient] = Depends(get_client_factory),
) -> IndexResponse:
    """Seed the crawl queue from the root folder's immediate contents."""
    try:
        result = await FolderIndexer(db, user_id, client_factory=client_factory).index_folder()
    except DriveSyncError as e:
        raise sync_error(e, trace_id)
    return IndexResponse(total_files=result.total_files, total_folders=result.total_folders)


@router.post("/run", response_model=RunResponse)
async def run_sync(
    request: RunRequest | None = None,
    user_id: str = Depends(get_user_id),
    trace_id: str = Depends(get_trace_id),
    db: AsyncSession = Depends(get_db),
    client_factory: Callable[[str], DriveClient] = Depends(get_client_factory),
) -> RunResponse:
    """Process one budgeted batch of queued folders.

    Answers 401 ``TOKEN_EXPIRED`` when reauthorization is needed and 409
    ``ROOT_MISMATCH`` when the folder changed since the crawl was armed.
    """
    budget = request.budget_folders if request else None
    try:
        result = await SyncRunner(db, user_id, client_factory=client_factory).run(budget)
    except DriveSyncError as e:
        raise sync_error(e, trace_id)
    return RunResponse(**asdict(result))


# =============================================================================
# Delta Changes
# =============================================================================


@router.post("/changes/pull", response_model=PullResponse)
async def pull_changes(
    user_id: str = Depends(get_user_id),
    trace_id: str = Depends(get_trace_id),
    db: AsyncSession = Depends(get_db),
    client_factory: Callable[[str], DriveClient] = Depends(get_client_factory),
) -> PullResponse:
    """Apply remote changes since the stored cursor."""
    try:
        result = await ChangesService(db, user_id, client_factory=client_factory).pull()
    except DriveSyncError as e:
        raise sync_error(e, trace_id)
    return PullResponse(
        processed=result.processed,
        applied=result.applied,
        queued_folders=result.queued_folders,
    )


@router.get("/changes/peek", response_model=PeekResponse)
async def peek_changes(
    user_id: str = Depends(get_user_id),
    trace_id: str = Depends(get_trace_id),
    db: AsyncSession = Depends(get_db),
    client_factory: Callable[[str], DriveClient] = Depends(get_client_factory),
) -> PeekResponse:
    """Count available remote changes without consuming them."""
    try:
        result = await ChangesService(db, user_id, client_factory=client_factory).peek()
    except DriveSyncError as e:
        raise sync_error(e, trace_id)
    return PeekResponse(**asdict(result))


# =============================================================================
# Sync Now
# =============================================================================


@router.post("/now", response_model=SyncNowResponse)
async def sync_now(
    request: SyncNowRequest | None = None,
    user_id: str = Depends(get_user_id),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    client_factory: Callable[[str], DriveClient] = Depends(get_client_factory),
) -> SyncNowResponse:
    """Run start, index, the budgeted run loop and a final pull.

    Failures are reported in the body (``phase``) rather than as HTTP errors
    because earlier steps may already have committed progress.
    """
    request = request or SyncNowRequest()
    folder = None
    if request.folder is not None:
        folder = FolderSelection(
            folder_id=request.folder.folder_id,
            folder_name=request.folder.folder_name,
            folder_path=request.folder.folder_path,
        )

    orchestrator = SyncOrchestrator(
        user_id,
        session_factory=session_factory,
        client_factory=client_factory,
        budget_folders=request.budget_folders,
    )
    report = await orchestrator.sync_now(folder)
    data = asdict(report)
    data.pop("steps")
    data.pop("rearms")
    return SyncNowResponse(ok=report.phase in ("complete", "partial"), **data)


# =============================================================================
# Support
# =============================================================================


@router.get("/diagnostics", response_model=DiagnosticsResponse)
async def diagnostics(
    user_id: str = Depends(get_user_id),
    trace_id: str = Depends(get_trace_id),
    db: AsyncSession = Depends(get_db),
) -> DiagnosticsResponse:
    """Read-only snapshot of the caller's settings and crawl state."""
    snapshot = await SyncStateService(db, user_id).diagnostics(trace_id)
    return DiagnosticsResponse(**snapshot)


@router.get("/trash", response_model=TrashResponse)
async def list_trash(
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    user_id: str = Depends(get_user_id),
    db: AsyncSession = Depends(get_db),
) -> TrashResponse:
    """List mirrored items that were removed remotely or not seen by the last crawl."""
    items, total = await MirrorStore(db, user_id).list_trash(limit=limit, offset=offset)
    return TrashResponse(
        items=[TrashItem.model_validate(item) for item in items],
        total=total,
    )


@router.post("/orphans/purge", response_model=PurgeResponse)
async def purge_orphans(
    request: PurgeRequest | None = None,
    user_id: str = Depends(get_user_id),
    db: AsyncSession = Depends(get_db),
) -> PurgeResponse:
    """Permanently delete orphans older than the retention period."""
    days = settings.orphan_retention_days
    if request is not None and request.older_than_days is not None:
        days = request.older_than_days
    deleted = await MirrorStore(db, user_id).purge_orphans(utcnow() - timedelta(days=days))
    return PurgeResponse(deleted=deleted)
