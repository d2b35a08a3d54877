"""Pydantic schemas for the sync API."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from drivemirror.core.config import settings
from drivemirror.db.models import ItemStatus, MediaKind


class StartRequest(BaseModel):
    force: bool = Field(default=False, description="Re-arm even if the state matches the folder")


class StartResponse(BaseModel):
    ok: bool = True
    rearmed: bool
    root_folder_id: str
    status: str


class IndexResponse(BaseModel):
    ok: bool = True
    total_files: int
    total_folders: int


class RunRequest(BaseModel):
    budget_folders: int | None = Field(
        default=None,
        description="Maximum folders to process in this call",
    )


class RunResponse(BaseModel):
    ok: bool = True
    updated_items: int
    processed_folders: int
    queued: int
    done: bool


class PullResponse(BaseModel):
    ok: bool = True
    processed: int
    applied: int
    queued_folders: int


class PeekResponse(BaseModel):
    ok: bool = True
    new_count: int
    additions: int
    modifications: int
    removals: int


class SyncNowFolder(BaseModel):
    folder_id: str = Field(min_length=1, max_length=128)
    folder_name: str | None = None
    folder_path: str | None = None


class SyncNowRequest(BaseModel):
    """Run a full sync, optionally switching to a new folder first."""

    folder: SyncNowFolder | None = None
    budget_folders: int | None = Field(
        default=None,
        ge=1,
        le=settings.sync_max_budget,
        description="Maximum folders per run() batch",
    )


class SyncNowResponse(BaseModel):
    ok: bool
    phase: str
    message: str
    trace_id: str
    reason: str | None = None
    authorize_url: str | None = None
    rearmed: bool = False
    indexed_files: int = 0
    indexed_folders: int = 0
    updated_items: int = 0
    processed_folders: int = 0
    queued: int = 0
    done: bool = False
    iterations: int = 0
    changes_processed: int = 0


class DiagnosticsResponse(BaseModel):
    settings: dict[str, Any] | None = None
    state: dict[str, Any] | None = None
    trace_id: str


class TrashItem(BaseModel):
    """An item in virtual trash."""

    item_key: str
    name: str
    mime_type: str | None = None
    path: str | None = None
    media_kind: MediaKind
    status: ItemStatus
    missing_since: datetime | None = None

    model_config = {"from_attributes": True}


class TrashResponse(BaseModel):
    items: list[TrashItem]
    total: int


class PurgeRequest(BaseModel):
    older_than_days: int | None = Field(
        default=None,
        ge=0,
        description="Retention in days (defaults to orphan_retention_days)",
    )


class PurgeResponse(BaseModel):
    ok: bool = True
    deleted: int
