"""MirrorItem model: one discovered remote file."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import BigInteger, DateTime, Enum, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from drivemirror.db.base import Base, utcnow
from drivemirror.db.models.enums import ItemStatus, MediaKind


class MirrorItem(Base):
    """A remote file mirrored into the local catalog.

    Items are never hard-deleted by sync. Remote removals move them to
    ``TRASHED`` and items not seen by a full crawl move to ``MISSING``; both
    show up in the virtual trash view.
    """

    __tablename__ = "mirror_items"
    __table_args__ = (
        UniqueConstraint("user_id", "item_key", name="uq_mirror_items_user_item"),
        Index("ix_mirror_items_user_status", "user_id", "status"),
        Index("ix_mirror_items_user_parent", "user_id", "parent_folder_id"),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)

    # Remote file id
    item_key: Mapped[str] = mapped_column(String(128), nullable=False)

    name: Mapped[str] = mapped_column(String(1024), nullable=False)
    mime_type: Mapped[str | None] = mapped_column(String(255), nullable=True)
    parent_folder_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    path: Mapped[str | None] = mapped_column(Text, nullable=True)

    size: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    md5_checksum: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_time: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    modified_time: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    # Links
    thumbnail_link: Mapped[str | None] = mapped_column(Text, nullable=True)
    web_view_link: Mapped[str | None] = mapped_column(Text, nullable=True)
    web_content_link: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Media metadata
    media_kind: Mapped[MediaKind] = mapped_column(
        Enum(MediaKind), nullable=False, default=MediaKind.OTHER
    )
    video_duration_ms: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    video_width: Mapped[int | None] = mapped_column(Integer, nullable=True)
    video_height: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Lifecycle
    status: Mapped[ItemStatus] = mapped_column(
        Enum(ItemStatus), nullable=False, default=ItemStatus.ACTIVE
    )
    missing_since: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    last_seen_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)
