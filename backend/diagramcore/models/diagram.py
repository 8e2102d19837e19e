"""
DiagramCore - Diagram SQLAlchemy Model
======================================

What:  ORM model for the `diagrams` table.
How:   Content is an opaque blob plus an encoding tag. `version` is the
       optimistic-concurrency token: every content write is a conditional
       UPDATE keyed on (id, version) that bumps it by exactly one.

Table Design Rationale:
    - version INTEGER NOT NULL CHECK (version >= 1): starts at 1 on create
    - updated_by: actor of the last successful write; SET NULL if the user
      is removed so the diagram survives its last editor
    - folder_id has no ON DELETE action: folder deletion relocates or deletes
      diagrams explicitly before removing the folder
    - idx_diagrams_owner_folder: "list my diagrams in this folder"
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    LargeBinary,
    String,
    Uuid,
    false,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from diagramcore.database import Base


class Diagram(Base):
    """
    A persisted diagram.

    Lifecycle:
        1. Created by its owner at version 1
        2. Content replaced only through AutosaveEngine.save (version + 1 each time)
        3. Moved between folders / made public by the owner
        4. Hard-deleted together with its shares
    """

    __tablename__ = "diagrams"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )

    owner_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )

    folder_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("folders.id"),
        nullable=True,
        default=None,
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    content: Mapped[bytes] = mapped_column(LargeBinary, nullable=False, default=b"")

    content_encoding: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        default="application/json",
    )

    version: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=1,
        server_default=text("1"),
    )

    is_public: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=false(),
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        server_default=text("CURRENT_TIMESTAMP"),
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        server_default=text("CURRENT_TIMESTAMP"),
    )

    updated_by: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        default=None,
    )

    __table_args__ = (
        CheckConstraint("version >= 1", name="ck_diagrams_version_positive"),
        Index("idx_diagrams_owner_folder", "owner_id", "folder_id"),
        Index("idx_diagrams_folder", "folder_id"),
    )

    def __repr__(self) -> str:
        return f"<Diagram(id={self.id}, name='{self.name}', version={self.version})>"
