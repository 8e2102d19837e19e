"""
DiagramCore - Folder SQLAlchemy Model
=====================================

What:  ORM model for the `folders` table: a parent-id arena forming a forest.
How:   Each row stores only its parent's id; the tree is walked one parent
       link at a time (O(depth)), never held as linked objects in memory.

Table Design Rationale:
    - parent_id NULL: folder sits at the root of its owner's tree
    - parent_id has no ON DELETE action: the folder manager decides what
      happens to children (reject / relocate / delete subtree), the database
      only refuses to leave them dangling
    - idx_folders_owner_parent: serves "list children"
    - uq_folders_sibling_name / uq_folders_root_name: enforce case-insensitive
      sibling names in storage. Two partial indexes, because a plain unique
      index treats every NULL parent_id as distinct
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import DateTime, ForeignKey, Index, String, Uuid, func, text
from sqlalchemy.orm import Mapped, mapped_column

from diagramcore.database import Base


class Folder(Base):
    """
    Represents a folder in an owner's tree.

    Invariants (maintained by FolderHierarchyManager):
        - a folder is never its own ancestor
        - parent and child always share the same owner
        - sibling names are unique, compared case-insensitively
    """

    __tablename__ = "folders"

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

    parent_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("folders.id"),
        nullable=True,
        default=None,
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False)

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

    __table_args__ = (
        Index("idx_folders_owner_parent", "owner_id", "parent_id"),
        Index("idx_folders_parent", "parent_id"),
    )

    def __repr__(self) -> str:
        return f"<Folder(id={self.id}, name='{self.name}', parent_id={self.parent_id})>"


# Sibling names, compared case-insensitively; see the store for the error mapping
SIBLING_NAME_INDEXES = ("uq_folders_sibling_name", "uq_folders_root_name")

Index(
    "uq_folders_sibling_name",
    Folder.owner_id,
    Folder.parent_id,
    func.lower(Folder.name),
    unique=True,
    postgresql_where=Folder.parent_id.is_not(None),
    sqlite_where=Folder.parent_id.is_not(None),
)

Index(
    "uq_folders_root_name",
    Folder.owner_id,
    func.lower(Folder.name),
    unique=True,
    postgresql_where=Folder.parent_id.is_(None),
    sqlite_where=Folder.parent_id.is_(None),
)
