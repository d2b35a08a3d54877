"""Business logic services for Drive Mirror."""

from drivemirror.services.changes import ChangesService
from drivemirror.services.errors import DriveSyncError
from drivemirror.services.folder_settings import FolderSettingsService
from drivemirror.services.indexer import FolderIndexer
from drivemirror.services.orchestrator import SyncOrchestrator
from drivemirror.services.sync_runner import SyncRunner
from drivemirror.services.sync_state import SyncStateService
from drivemirror.services.tokens import DriveTokenManager

__all__ = [
    "ChangesService",
    "DriveSyncError",
    "DriveTokenManager",
    "FolderIndexer",
    "FolderSettingsService",
    "SyncOrchestrator",
    "SyncRunner",
    "SyncStateService",
]
