"""Database models for Drive Mirror."""

from drivemirror.db.models.connection import DriveConnection
from drivemirror.db.models.credential_audit import CredentialAudit
from drivemirror.db.models.enums import (
    AuditAction,
    ConnectionReason,
    ItemStatus,
    MediaKind,
    SyncStatus,
)
from drivemirror.db.models.mirror_folder import MirrorFolder
from drivemirror.db.models.mirror_item import MirrorItem
from drivemirror.db.models.sync_settings import SyncSettings
from drivemirror.db.models.sync_state import SyncState

__all__ = [
    # Models
    "CredentialAudit",
    "DriveConnection",
    "MirrorFolder",
    "MirrorItem",
    "SyncSettings",
    "SyncState",
    # Enums
    "AuditAction",
    "ConnectionReason",
    "ItemStatus",
    "MediaKind",
    "SyncStatus",
]
