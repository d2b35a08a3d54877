"""Drive connection API endpoints: OAuth, status, disconnect and folder selection."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from drivemirror.api.deps import get_trace_id, get_user_id, sync_error
from drivemirror.core.logging import get_logger
from drivemirror.db import get_db
from drivemirror.schemas.drive import (
    AuthorizeRequest,
    AuthorizeResponse,
    CallbackResponse,
    DownloadsRequest,
    DriveStatusResponse,
    FolderRequest,
    OkResponse,
)
from drivemirror.services.errors import DriveSyncError
from drivemirror.services.folder_settings import FolderSettingsService
from drivemirror.services.tokens import DriveTokenManager

logger = get_logger(__name__)

router = APIRouter(prefix="/drive", tags=["drive"])


# =============================================================================
# OAuth Flow
# =============================================================================


@router.post("/authorize", response_model=AuthorizeResponse)
async def authorize(
    request: AuthorizeRequest,
    user_id: str = Depends(get_user_id),
    trace_id: str = Depends(get_trace_id),
    db: AsyncSession = Depends(get_db),
) -> AuthorizeResponse:
    """Build the Google consent URL for the caller.

    ``force_consent`` is required when the current settings need scopes the
    stored grant does not have.
    """
    manager = DriveTokenManager(db, user_id)
    try:
        url = await manager.authorize(request.redirect_url, force_consent=request.force_consent)
    except DriveSyncError as e:
        raise sync_error(e, trace_id)
    return AuthorizeResponse(authorize_url=url)


@router.get("/callback", response_model=CallbackResponse)
async def oauth_callback(
    code: str = Query(..., min_length=1),
    state: str = Query(..., min_length=1),
    trace_id: str = Depends(get_trace_id),
    db: AsyncSession = Depends(get_db),
) -> CallbackResponse:
    """Handle the OAuth redirect from Google.

    The caller is identified by the signed ``state``, not by a header.
    """
    try:
        user_id, redirect_uri = DriveTokenManager.decode_state(state)
        connection = await DriveTokenManager(db, user_id).handle_callback(code, redirect_uri)
    except DriveSyncError as e:
        raise sync_error(e, trace_id)

    logger.info("oauth_callback_success", user_id=user_id, email=connection.email)
    return CallbackResponse(ok=True, email=connection.email)


# =============================================================================
# Connection
# =============================================================================


@router.get("/status", response_model=DriveStatusResponse)
async def drive_status(
    user_id: str = Depends(get_user_id),
    db: AsyncSession = Depends(get_db),
) -> DriveStatusResponse:
    """Report whether the caller has a usable Drive connection."""
    status = await DriveTokenManager(db, user_id).status()
    return DriveStatusResponse(**status.model_dump())


@router.post("/disconnect", response_model=OkResponse)
async def disconnect(
    user_id: str = Depends(get_user_id),
    db: AsyncSession = Depends(get_db),
) -> OkResponse:
    """Revoke and delete the caller's stored credentials."""
    await DriveTokenManager(db, user_id).disconnect()
    return OkResponse()


# =============================================================================
# Settings
# =============================================================================


@router.put("/folder", response_model=OkResponse)
async def set_folder(
    request: FolderRequest,
    user_id: str = Depends(get_user_id),
    db: AsyncSession = Depends(get_db),
) -> OkResponse:
    """Select the folder to mirror. Takes effect on the next start()."""
    await FolderSettingsService(db, user_id).set_folder(
        request.folder_id, request.folder_name, request.folder_path
    )
    return OkResponse()


@router.put("/downloads", response_model=OkResponse)
async def set_downloads(
    request: DownloadsRequest,
    user_id: str = Depends(get_user_id),
    trace_id: str = Depends(get_trace_id),
    db: AsyncSession = Depends(get_db),
) -> OkResponse:
    """Enable or disable downloads (requires the wider read scope)."""
    try:
        await FolderSettingsService(db, user_id).set_downloads_enabled(request.enabled)
    except DriveSyncError as e:
        raise sync_error(e, trace_id)
    return OkResponse()
