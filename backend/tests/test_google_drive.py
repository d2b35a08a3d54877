"""Tests for DriveClient - the Drive v3 API wrapper.

Tests cover:
- File resource parsing (times, sizes, video metadata)
- Folder listing and pagination draining
- Start page token and change listing
- HTTP error mapping (401, 403, 404, 429 backoff)

The Drive API service object is mocked; no network access is needed.
"""

from __future__ import annotations

from datetime import datetime
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from googleapiclient.errors import HttpError

from drivemirror.services.errors import TokenExpiredError
from drivemirror.services.google_drive import (
    FOLDER_MIME_TYPE,
    DriveClient,
    FileInfo,
    GoogleAccessDeniedError,
    GoogleDriveError,
    GoogleNotFoundError,
    GoogleRateLimitError,
)


def http_error(status: int, content: bytes = b"error") -> HttpError:
    response = MagicMock()
    response.status = status
    response.reason = "error"
    return HttpError(response, content)


@pytest.fixture
def drive_client() -> DriveClient:
    return DriveClient("access-token")


@pytest.fixture
def mock_service(drive_client):
    with patch.object(drive_client, "_get_drive_service") as mock_get_service:
        service = MagicMock()
        mock_get_service.return_value = service
        yield service


# =============================================================================
# FileInfo Parsing
# =============================================================================


class TestFileInfo:
    """Tests for FileInfo.from_api."""

    def test_parse_photo(self):
        info = FileInfo.from_api({
            "id": "file1",
            "name": "beach.jpg",
            "mimeType": "image/jpeg",
            "size": "2048",
            "md5Checksum": "abc",
            "createdTime": "2024-05-01T10:00:00.000Z",
            "modifiedTime": "2024-05-02T11:30:00Z",
            "parents": ["folder1"],
            "thumbnailLink": "https://thumb",
        })

        assert info.size == 2048
        assert info.created_time == datetime(2024, 5, 1, 10, 0, 0)
        assert info.modified_time == datetime(2024, 5, 2, 11, 30, 0)
        assert info.created_time.tzinfo is None
        assert info.parent_id == "folder1"
        assert info.is_folder is False

    def test_parse_video_metadata(self):
        info = FileInfo.from_api({
            "id": "vid1",
            "name": "clip.mp4",
            "mimeType": "video/mp4",
            "videoMediaMetadata": {"durationMillis": "61000", "width": 1920, "height": 1080},
        })

        assert info.video_duration_ms == 61000
        assert info.video_width == 1920
        assert info.video_height == 1080

    def test_parse_folder_without_optional_fields(self):
        info = FileInfo.from_api({"id": "f", "name": "Albums", "mimeType": FOLDER_MIME_TYPE})

        assert info.is_folder is True
        assert info.size is None
        assert info.parents == []
        assert info.parent_id is None


# =============================================================================
# Folder Listing
# =============================================================================


class TestListFolder:
    """Tests for list_folder and list_children."""

    @pytest.mark.asyncio
    async def test_list_folder_success(self, drive_client: DriveClient, mock_service):
        mock_service.files.return_value.list.return_value.execute.return_value = {
            "files": [
                {"id": "a", "name": "a.jpg", "mimeType": "image/jpeg"},
                {"id": "sub", "name": "Sub", "mimeType": FOLDER_MIME_TYPE},
            ],
            "nextPageToken": "page2",
        }

        files, next_token = await drive_client.list_folder("root")

        assert [f.id for f in files] == ["a", "sub"]
        assert next_token == "page2"
        kwargs = mock_service.files.return_value.list.call_args.kwargs
        assert kwargs["q"] == "'root' in parents and trashed = false"
        assert kwargs["pageToken"] is None

    @pytest.mark.asyncio
    async def test_list_children_drains_pages(self, drive_client: DriveClient, mock_service):
        mock_service.files.return_value.list.return_value.execute.side_effect = [
            {"files": [{"id": "a", "name": "a.jpg"}], "nextPageToken": "p2"},
            {"files": [{"id": "b", "name": "b.jpg"}], "nextPageToken": "p3"},
            {"files": [{"id": "c", "name": "c.jpg"}]},
        ]

        children = await drive_client.list_children("root")

        assert [f.id for f in children] == ["a", "b", "c"]
        tokens = [c.kwargs["pageToken"] for c in mock_service.files.return_value.list.call_args_list]
        assert tokens == [None, "p2", "p3"]

    @pytest.mark.asyncio
    async def test_list_children_failure_discards_partial_listing(
        self, drive_client: DriveClient, mock_service
    ):
        mock_service.files.return_value.list.return_value.execute.side_effect = [
            {"files": [{"id": "a", "name": "a.jpg"}], "nextPageToken": "p2"},
            http_error(401),
        ]

        with pytest.raises(TokenExpiredError):
            await drive_client.list_children("root")


# =============================================================================
# Changes
# =============================================================================


class TestChanges:
    """Tests for the change token API."""

    @pytest.mark.asyncio
    async def test_get_start_page_token(self, drive_client: DriveClient, mock_service):
        mock_service.changes.return_value.getStartPageToken.return_value.execute.return_value = {
            "startPageToken": "42"
        }

        assert await drive_client.get_start_page_token() == "42"

    @pytest.mark.asyncio
    async def test_get_start_page_token_missing(self, drive_client: DriveClient, mock_service):
        mock_service.changes.return_value.getStartPageToken.return_value.execute.return_value = {}

        with pytest.raises(GoogleDriveError):
            await drive_client.get_start_page_token()

    @pytest.mark.asyncio
    async def test_list_changes(self, drive_client: DriveClient, mock_service):
        mock_service.changes.return_value.list.return_value.execute.return_value = {
            "changes": [
                {"fileId": "gone", "removed": True},
                {"fileId": "new", "file": {"id": "new", "name": "n.jpg", "parents": ["root"]}},
            ],
            "newStartPageToken": "43",
        }

        page = await drive_client.list_changes("40")

        assert page.new_start_page_token == "43"
        assert page.next_page_token is None
        assert page.changes[0].removed is True
        assert page.changes[0].file is None
        assert page.changes[1].file.parent_id == "root"
        assert mock_service.changes.return_value.list.call_args.kwargs["pageToken"] == "40"


# =============================================================================
# Error Handling
# =============================================================================


class TestErrorHandling:
    """Tests for API error mapping."""

    @pytest.mark.asyncio
    async def test_401_becomes_token_expired(self, drive_client: DriveClient, mock_service):
        mock_service.files.return_value.list.return_value.execute.side_effect = http_error(401)

        with pytest.raises(TokenExpiredError) as exc_info:
            await drive_client.list_folder("root")
        assert exc_info.value.code == "TOKEN_EXPIRED"
        assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    async def test_404_error(self, drive_client: DriveClient, mock_service):
        mock_service.files.return_value.list.return_value.execute.side_effect = http_error(404, b"Not Found")

        with pytest.raises(GoogleNotFoundError):
            await drive_client.list_folder("missing")

    @pytest.mark.asyncio
    async def test_403_error(self, drive_client: DriveClient, mock_service):
        mock_service.files.return_value.list.return_value.execute.side_effect = http_error(403, b"Access Denied")

        with pytest.raises(GoogleAccessDeniedError):
            await drive_client.list_folder("private")

    @pytest.mark.asyncio
    async def test_500_error(self, drive_client: DriveClient, mock_service):
        mock_service.files.return_value.list.return_value.execute.side_effect = http_error(500)

        with pytest.raises(GoogleDriveError) as exc_info:
            await drive_client.list_folder("root")
        assert exc_info.value.code == "DRIVE_ERROR"

    @pytest.mark.asyncio
    async def test_rate_limit_retries_then_succeeds(self, drive_client: DriveClient, mock_service):
        mock_service.files.return_value.list.return_value.execute.side_effect = [
            http_error(429),
            http_error(403, b'{"error": {"errors": [{"reason": "rateLimitExceeded"}]}}'),
            {"files": [{"id": "a", "name": "a.jpg"}]},
        ]

        with patch("drivemirror.services.google_drive.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            files, _ = await drive_client.list_folder("root")

        assert [f.id for f in files] == ["a"]
        assert mock_sleep.await_count == 2

    @pytest.mark.asyncio
    async def test_rate_limit_exhausted(self, drive_client: DriveClient, mock_service):
        mock_service.files.return_value.list.return_value.execute.side_effect = http_error(429)

        with patch("drivemirror.services.google_drive.asyncio.sleep", new_callable=AsyncMock):
            with pytest.raises(GoogleRateLimitError):
                await drive_client.list_folder("root")
