"""Enum types for database models."""

from __future__ import annotations

import enum


class SyncStatus(str, enum.Enum):
    """Crawl progress status for a user's SyncState."""

    IDLE = "idle"
    INDEXING = "indexing"
    SYNCING = "syncing"
    ERROR = "error"


class ItemStatus(str, enum.Enum):
    """Lifecycle status of a mirrored item."""

    ACTIVE = "ACTIVE"
    TRASHED = "TRASHED"  # Removed or trashed remotely (reported by changes)
    MISSING = "MISSING"  # Not seen during the latest full crawl (orphan)


class MediaKind(str, enum.Enum):
    """Coarse media classification derived from the MIME type."""

    PHOTO = "PHOTO"
    VIDEO = "VIDEO"
    OTHER = "OTHER"


class ConnectionReason(str, enum.Enum):
    """Why a Drive connection is not usable."""

    NO_ACCESS_TOKEN = "NO_ACCESS_TOKEN"
    EXPIRED = "EXPIRED"
    SCOPE_MISSING = "SCOPE_MISSING"


class AuditAction(str, enum.Enum):
    """Credential access actions recorded in the audit log."""

    STORE = "STORE"
    READ = "READ"
    REFRESH = "REFRESH"
    STATUS = "STATUS"
    REVOKE = "REVOKE"
