"""SyncState model: persisted crawl progress (one row per user)."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, Enum, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from drivemirror.db.base import Base, utcnow
from drivemirror.db.models.enums import SyncStatus


class SyncState(Base):
    """Durable crawl state for a user's mirror.

    ``pending`` is an ordered FIFO of ``{"folder_id": ..., "path": ...}``
    entries. It is a JSON column, so it must be reassigned (never mutated in
    place) for SQLAlchemy to persist the change.
    """

    __tablename__ = "sync_state"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)

    root_folder_id: Mapped[str] = mapped_column(String(128), nullable=False)
    pending: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)

    # Remote change cursor; set only once a full crawl has completed
    start_page_token: Mapped[str | None] = mapped_column(String(255), nullable=True)
    # Cursor captured when the current crawl was seeded, promoted on completion
    crawl_page_token: Mapped[str | None] = mapped_column(String(255), nullable=True)

    status: Mapped[SyncStatus] = mapped_column(
        Enum(SyncStatus, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=SyncStatus.IDLE,
    )
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Cumulative counters: updated_items, processed_folders, found_folders
    stats: Mapped[dict[str, int]] = mapped_column(JSON, nullable=False, default=dict)

    armed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    last_full_scan_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    last_changes_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    @property
    def pending_ids(self) -> list[str]:
        """Folder ids in queue order."""
        return [entry["folder_id"] for entry in self.pending or []]
