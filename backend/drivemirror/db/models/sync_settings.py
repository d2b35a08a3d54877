"""SyncSettings model: the user's chosen mirror root."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from drivemirror.db.base import Base, utcnow


class SyncSettings(Base):
    """The remote folder a user wants mirrored.

    Pure configuration. Changing it does not touch SyncState; the re-armer
    reconciles the two.
    """

    __tablename__ = "sync_settings"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)

    folder_id: Mapped[str] = mapped_column(String(128), nullable=False)
    folder_name: Mapped[str | None] = mapped_column(String(512), nullable=True)
    folder_path: Mapped[str | None] = mapped_column(Text, nullable=True)

    downloads_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)
