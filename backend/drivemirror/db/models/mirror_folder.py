"""MirrorFolder model: a folder discovered inside the mirrored subtree."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from drivemirror.db.base import Base, utcnow


class MirrorFolder(Base):
    """A remote folder known to be inside the user's mirrored subtree.

    Used to scope incoming changes to the subtree and to resolve paths.
    """

    __tablename__ = "mirror_folders"
    __table_args__ = (
        UniqueConstraint("user_id", "folder_id", name="uq_mirror_folders_user_folder"),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    folder_id: Mapped[str] = mapped_column(String(128), nullable=False)

    name: Mapped[str] = mapped_column(String(1024), nullable=False)
    parent_folder_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    path: Mapped[str | None] = mapped_column(Text, nullable=True)
    trashed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)
