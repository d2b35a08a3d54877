"""DriveConnection model for per-user OAuth token storage."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from drivemirror.db.base import Base, utcnow


class DriveConnection(Base):
    """One user's OAuth grant for Google Drive.

    Tokens are stored Fernet-encrypted. Token values are rotated in place on
    refresh; the row is deleted on disconnect.
    """

    __tablename__ = "drive_connections"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)

    # Google account info
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Encrypted tokens
    access_token_encrypted: Mapped[str | None] = mapped_column(Text, nullable=True)
    refresh_token_encrypted: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Token expiration (naive UTC)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    # Space separated list of granted scopes
    scopes: Mapped[str] = mapped_column(Text, nullable=False, default="")

    # Incremented on every credential access (security review side channel)
    access_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    @property
    def granted_scopes(self) -> set[str]:
        """Granted scopes as a set."""
        return set(self.scopes.split()) if self.scopes else set()
