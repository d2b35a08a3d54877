"""Shared API dependencies and error translation."""

from __future__ import annotations

from typing import Callable

from fastapi import Header, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from drivemirror.core.logging import bind_trace_id, get_logger
from drivemirror.db.session import async_session_maker
from drivemirror.services.errors import DriveSyncError
from drivemirror.services.google_drive import DriveClient

logger = get_logger(__name__)


async def get_user_id(x_user_id: str = Header(..., min_length=1, max_length=64)) -> str:
    """Caller identity supplied by the surrounding application."""
    return x_user_id


async def get_trace_id(x_trace_id: str | None = Header(default=None, max_length=64)) -> str:
    """Correlation id for the request, bound to every log event it emits."""
    return bind_trace_id(x_trace_id)


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Session factory for operations that manage their own transactions."""
    return async_session_maker


def get_client_factory() -> Callable[[str], DriveClient]:
    """Factory building a Drive client from an access token."""
    return DriveClient


def sync_error(exc: DriveSyncError, trace_id: str) -> HTTPException:
    """Translate a DriveSyncError into an HTTPException with a stable code."""
    log = logger.error if exc.status_code >= 500 else logger.warning
    log("request_failed", code=exc.code, status_code=exc.status_code, error=str(exc))
    return HTTPException(
        status_code=exc.status_code,
        detail={
            "ok": False,
            "code": exc.code,
            "message": str(exc),
            "trace_id": trace_id,
        },
    )
