"""
DiagramCore - User SQLAlchemy Model
===================================

What:  ORM model for the `users` table.
Who:   The core only reads it: the sharing registry resolves share subjects
       by email or username. Accounts are created by the auth layer.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import DateTime, Index, String, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column

from diagramcore.database import Base


class User(Base):
    """An actor that can own diagrams and receive shares."""

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )

    # Unique across the system; lookups compare lower-cased values
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)

    username: Mapped[str] = mapped_column(String(100), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        server_default=text("CURRENT_TIMESTAMP"),
    )

    __table_args__ = (
        Index("idx_users_username", "username"),
    )

    def __repr__(self) -> str:
        return f"<User(id={self.id}, username='{self.username}')>"
