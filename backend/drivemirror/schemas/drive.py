"""Pydantic schemas for the Drive connection API."""

from __future__ import annotations

from pydantic import BaseModel, Field

from drivemirror.db.models import ConnectionReason


class OkResponse(BaseModel):
    """Generic acknowledgement."""

    ok: bool = True


class AuthorizeRequest(BaseModel):
    """Request a consent URL."""

    redirect_url: str | None = Field(
        default=None,
        description="OAuth redirect URI (defaults to the configured one)",
    )
    force_consent: bool = Field(
        default=False,
        description="Force the consent screen, e.g. to grant additional scopes",
    )


class AuthorizeResponse(BaseModel):
    authorize_url: str


class CallbackResponse(BaseModel):
    ok: bool = True
    email: str | None = None


class DriveStatusResponse(BaseModel):
    """Whether the user has a usable Drive connection."""

    connected: bool
    reason: ConnectionReason | None = None
    email: str | None = None
    dedicated_folder_id: str | None = None
    dedicated_folder_name: str | None = None
    downloads_enabled: bool = False


class FolderRequest(BaseModel):
    """Select the folder to mirror."""

    folder_id: str = Field(min_length=1, max_length=128)
    folder_name: str | None = Field(default=None, max_length=512)
    folder_path: str | None = Field(default=None, max_length=2048)


class DownloadsRequest(BaseModel):
    enabled: bool
