"""
DiagramCore - Share SQLAlchemy Models
=====================================

What:  ORM models for `diagram_shares` and `folder_shares`.
How:   The primary key is the (target, subject) pair itself, so the database
       enforces "at most one share per pair" and grants are upserts
       (INSERT ... ON CONFLICT DO UPDATE).
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, String, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column

from diagramcore.database import Base

# 'owner' is derived from ownership and never stored
_ROLE_CHECK = "role IN ('viewer', 'editor', 'owner_delegate')"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DiagramShare(Base):
    """A role granted to one user on one diagram."""

    __tablename__ = "diagram_shares"

    diagram_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("diagrams.id", ondelete="CASCADE"),
        primary_key=True,
    )

    subject_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        primary_key=True,
    )

    role: Mapped[str] = mapped_column(String(20), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    __table_args__ = (
        CheckConstraint(_ROLE_CHECK, name="ck_diagram_shares_role"),
        # "Shared with me" listing
        Index("idx_diagram_shares_subject", "subject_id"),
    )

    def __repr__(self) -> str:
        return f"<DiagramShare(diagram_id={self.diagram_id}, subject_id={self.subject_id}, role='{self.role}')>"


class FolderShare(Base):
    """A role granted on a folder; only consulted when inheritance is enabled."""

    __tablename__ = "folder_shares"

    folder_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("folders.id", ondelete="CASCADE"),
        primary_key=True,
    )

    subject_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        primary_key=True,
    )

    role: Mapped[str] = mapped_column(String(20), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    __table_args__ = (
        CheckConstraint(_ROLE_CHECK, name="ck_folder_shares_role"),
        Index("idx_folder_shares_subject", "subject_id"),
    )

    def __repr__(self) -> str:
        return f"<FolderShare(folder_id={self.folder_id}, subject_id={self.subject_id}, role='{self.role}')>"
