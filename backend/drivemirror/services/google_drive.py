"""Google Drive v3 client used by the sync engine.

Provides:
- Paginated folder listing (one page or all pages of a folder's children)
- Change cursor retrieval and change listing for incremental sync
- Request pacing and exponential backoff on rate limits

The client is built per call from a valid access token handed out by the
token manager; it never touches stored credentials itself.
"""

from __future__ import annotations

import asyncio
import random
import time
from collections import deque
from datetime import datetime, timezone
from typing import Any, Callable

from pydantic import BaseModel, Field

from drivemirror.core.config import settings
from drivemirror.core.logging import get_logger
from drivemirror.services.errors import DriveSyncError, TokenExpiredError

logger = get_logger(__name__)

# Rate limiting configuration
RATE_LIMIT_MAX_RETRIES = 5
RATE_LIMIT_BASE_DELAY = 2.0  # seconds
RATE_LIMIT_MAX_DELAY = 300.0  # 5 minutes
RATE_LIMIT_JITTER = 0.3  # 30% jitter

FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"

FILE_FIELDS = (
    "id, name, mimeType, md5Checksum, size, createdTime, modifiedTime, parents, "
    "trashed, thumbnailLink, webViewLink, webContentLink, videoMediaMetadata"
)
LIST_FIELDS = f"nextPageToken, files({FILE_FIELDS})"
CHANGES_FIELDS = f"nextPageToken, newStartPageToken, changes(fileId, removed, file({FILE_FIELDS}))"


class GoogleDriveError(DriveSyncError):
    """Base exception for Google Drive errors."""

    code = "DRIVE_ERROR"
    status_code = 502


class GoogleAccessDeniedError(GoogleDriveError):
    """Raised when access is denied to a resource."""

    code = "DRIVE_ACCESS_DENIED"
    status_code = 403


class GoogleNotFoundError(GoogleDriveError):
    """Raised when a file or folder is not found."""

    code = "DRIVE_NOT_FOUND"
    status_code = 404


class GoogleRateLimitError(GoogleDriveError):
    """Raised when rate limited by Google API."""

    code = "DRIVE_RATE_LIMITED"
    status_code = 429

    def __init__(self, message: str = "Google API rate limit exceeded", retry_after: int | None = None):
        super().__init__(message)
        self.retry_after = retry_after  # Seconds to wait before retry


class RequestPacer:
    """Spaces Drive API calls made by this process.

    Two limits apply: a minimum gap between consecutive calls and a cap on
    calls inside any rolling 60 second window.
    """

    WINDOW_SECONDS = 60.0

    def __init__(self, min_delay: float = 0.2, requests_per_minute: int = 300):
        self.min_delay = min_delay
        self.requests_per_minute = requests_per_minute
        self._sent: deque[float] = deque()
        self._lock = asyncio.Lock()

    def _wait_time(self, now: float) -> float:
        while self._sent and now - self._sent[0] >= self.WINDOW_SECONDS:
            self._sent.popleft()
        wait = 0.0
        if len(self._sent) >= self.requests_per_minute:
            wait = self.WINDOW_SECONDS - (now - self._sent[0])
        if self._sent and self.min_delay > 0:
            wait = max(wait, self.min_delay - (now - self._sent[-1]))
        return wait

    async def acquire(self) -> None:
        """Block until the next call fits both limits, then record it."""
        async with self._lock:
            wait = self._wait_time(time.monotonic())
            if wait > 0:
                if wait > self.min_delay:
                    logger.debug("drive_pacer_waiting", wait_seconds=round(wait, 2), in_window=len(self._sent))
                await asyncio.sleep(wait)
            self._sent.append(time.monotonic())


_pacer: RequestPacer | None = None


def get_request_pacer() -> RequestPacer:
    """Process-wide pacer configured from settings on first use."""
    global _pacer
    if _pacer is None:
        _pacer = RequestPacer(
            min_delay=settings.google_request_delay,
            requests_per_minute=settings.google_requests_per_minute,
        )
    return _pacer


def _parse_time(value: str | None) -> datetime | None:
    """Parse an RFC 3339 Drive timestamp into naive UTC."""
    if not value:
        return None
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    return parsed.astimezone(timezone.utc).replace(tzinfo=None)


def _to_int(value: Any) -> int | None:
    if value is None or value == "":
        return None
    return int(value)


class FileInfo(BaseModel):
    """Information about a Google Drive file or folder."""

    id: str
    name: str
    mime_type: str = ""
    size: int | None = None
    md5_checksum: str | None = None
    created_time: datetime | None = None
    modified_time: datetime | None = None
    parents: list[str] = Field(default_factory=list)
    trashed: bool = False
    thumbnail_link: str | None = None
    web_view_link: str | None = None
    web_content_link: str | None = None
    video_duration_ms: int | None = None
    video_width: int | None = None
    video_height: int | None = None

    @property
    def is_folder(self) -> bool:
        return self.mime_type == FOLDER_MIME_TYPE

    @property
    def parent_id(self) -> str | None:
        return self.parents[0] if self.parents else None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> FileInfo:
        """Build from a Drive API ``File`` resource."""
        video = data.get("videoMediaMetadata") or {}
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            mime_type=data.get("mimeType", ""),
            size=_to_int(data.get("size")),
            md5_checksum=data.get("md5Checksum"),
            created_time=_parse_time(data.get("createdTime")),
            modified_time=_parse_time(data.get("modifiedTime")),
            parents=list(data.get("parents") or []),
            trashed=bool(data.get("trashed", False)),
            thumbnail_link=data.get("thumbnailLink"),
            web_view_link=data.get("webViewLink"),
            web_content_link=data.get("webContentLink"),
            video_duration_ms=_to_int(video.get("durationMillis")),
            video_width=_to_int(video.get("width")),
            video_height=_to_int(video.get("height")),
        )


class ChangeInfo(BaseModel):
    """One entry from the Drive Changes API."""

    file_id: str
    removed: bool = False
    file: FileInfo | None = None


class ChangesPage(BaseModel):
    """One page of changes.

    Exactly one of ``next_page_token`` (more pages follow) or
    ``new_start_page_token`` (end of the change log) is set.
    """

    changes: list[ChangeInfo] = Field(default_factory=list)
    next_page_token: str | None = None
    new_start_page_token: str | None = None


class DriveClient:
    """Thin async wrapper over the Drive v3 REST API for one access token."""

    def __init__(self, access_token: str):
        """Initialize the client.

        Args:
            access_token: A currently valid OAuth access token.
        """
        self._access_token = access_token
        self._service = None

    def _get_drive_service(self):
        """Build (once) the Drive API service for this token."""
        if self._service is None:
            from google.oauth2.credentials import Credentials as OAuthCredentials
            from googleapiclient.discovery import build

            creds = OAuthCredentials(token=self._access_token)
            self._service = build("drive", "v3", credentials=creds, cache_discovery=False)
        return self._service

    async def _execute(self, make_request: Callable[[Any], Any], operation: str, **context: Any) -> dict:
        """Execute a Drive request with pacing, error mapping and 429 backoff.

        Args:
            make_request: Builds the request object from the Drive service.
            operation: Operation name for logging.
            **context: Extra log context (folder_id, page_token, ...).

        Returns:
            The decoded JSON response.

        Raises:
            TokenExpiredError: On HTTP 401.
            GoogleAccessDeniedError: On HTTP 403 (other than rate limiting).
            GoogleNotFoundError: On HTTP 404.
            GoogleRateLimitError: If rate limited after max retries.
            GoogleDriveError: On any other API failure.
        """
        from googleapiclient.errors import HttpError

        service = self._get_drive_service()

        for attempt in range(RATE_LIMIT_MAX_RETRIES + 1):
            try:
                await get_request_pacer().acquire()
                request = make_request(service)
                return await asyncio.to_thread(request.execute)

            except HttpError as e:
                status = e.resp.status
                if isinstance(e.content, bytes):
                    content = e.content.decode("utf-8", errors="replace")
                else:
                    content = str(e.content or "")
                is_rate_limit = status == 429 or (status == 403 and "ratelimitexceeded" in content.lower())

                if status == 401:
                    raise TokenExpiredError(f"Drive rejected the access token during {operation}") from e
                if status == 404:
                    raise GoogleNotFoundError(f"Not found during {operation}: {context}") from e
                if status == 403 and not is_rate_limit:
                    raise GoogleAccessDeniedError(f"Access denied during {operation}: {context}") from e
                if is_rate_limit:
                    if attempt >= RATE_LIMIT_MAX_RETRIES:
                        raise GoogleRateLimitError(
                            f"Rate limit exceeded after {attempt + 1} attempts"
                        ) from e

                    delay = min(RATE_LIMIT_BASE_DELAY * (2 ** attempt), RATE_LIMIT_MAX_DELAY)
                    jitter = delay * RATE_LIMIT_JITTER * (2 * random.random() - 1)
                    delay += jitter

                    logger.warning(
                        "rate_limit_retry",
                        operation=operation,
                        attempt=attempt + 1,
                        delay_seconds=round(delay, 1),
                        **context,
                    )
                    await asyncio.sleep(delay)
                    continue
                raise GoogleDriveError(f"Google API error during {operation}: {e}") from e

        raise GoogleRateLimitError("Rate limit handling exhausted")

    # ========== Folder Listing ==========

    async def list_folder(
        self,
        folder_id: str,
        page_token: str | None = None,
        page_size: int = 1000,
    ) -> tuple[list[FileInfo], str | None]:
        """List one page of a folder's non-trashed children.

        Args:
            folder_id: Google Drive folder ID.
            page_token: Token for pagination.
            page_size: Number of entries per page.

        Returns:
            Tuple of (list of FileInfo, next_page_token or None).
        """
        result = await self._execute(
            lambda service: service.files().list(
                q=f"'{folder_id}' in parents and trashed = false",
                fields=LIST_FIELDS,
                pageToken=page_token,
                pageSize=page_size,
                supportsAllDrives=True,
                includeItemsFromAllDrives=True,
            ),
            "list_folder",
            folder_id=folder_id,
        )
        files = [FileInfo.from_api(f) for f in result.get("files", [])]
        return files, result.get("nextPageToken")

    async def list_children(self, folder_id: str) -> list[FileInfo]:
        """List all children of a folder, draining every page.

        A failure on any page raises and discards what was read so far, so
        callers redo the whole listing on retry.
        """
        children: list[FileInfo] = []
        page_token: str | None = None
        while True:
            files, page_token = await self.list_folder(folder_id, page_token)
            children.extend(files)
            if not page_token:
                return children

    # ========== Change Tokens (Incremental Sync) ==========

    async def get_start_page_token(self) -> str:
        """Get the current position in the user's change log."""
        response = await self._execute(
            lambda service: service.changes().getStartPageToken(supportsAllDrives=True),
            "get_start_page_token",
        )
        token = response.get("startPageToken")
        if not token:
            raise GoogleDriveError("Drive returned no startPageToken")
        return token

    async def list_changes(self, page_token: str, page_size: int = 1000) -> ChangesPage:
        """List one page of changes since ``page_token``.

        Args:
            page_token: Cursor from get_start_page_token() or a previous page.
            page_size: Number of changes per page.

        Returns:
            ChangesPage with the changes and the follow-up token.
        """
        response = await self._execute(
            lambda service: service.changes().list(
                pageToken=page_token,
                pageSize=page_size,
                fields=CHANGES_FIELDS,
                supportsAllDrives=True,
                includeItemsFromAllDrives=True,
            ),
            "list_changes",
        )

        changes: list[ChangeInfo] = []
        for change in response.get("changes", []):
            file_data = change.get("file")
            changes.append(ChangeInfo(
                file_id=change["fileId"],
                removed=bool(change.get("removed", False)),
                file=FileInfo.from_api(file_data) if file_data else None,
            ))

        logger.debug(
            "changes_listed",
            changes_count=len(changes),
            has_more=bool(response.get("nextPageToken")),
        )

        return ChangesPage(
            changes=changes,
            next_page_token=response.get("nextPageToken"),
            new_start_page_token=response.get("newStartPageToken"),
        )
