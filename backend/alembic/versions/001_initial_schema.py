"""Create users, folders, diagrams and share tables

Revision ID: 001
Revises: None
Create Date: 2026-10-17 00:00:00.000000+00:00

What:  Creates the full DiagramCore schema.
How:   Portable column types (sa.Uuid, sa.LargeBinary) so the same migration
       runs on PostgreSQL and on SQLite; see diagramcore/models/ for the
       column documentation.

Rollback: downgrade() drops every table (destructive, all data lost).
"""

from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

# revision identifiers
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

_ROLE_CHECK = "role IN ('viewer', 'editor', 'owner_delegate')"


def _timestamps() -> list:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
    ]


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("username", sa.String(100), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email"),
    )
    op.create_index("idx_users_username", "users", ["username"])

    op.create_table(
        "folders",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("owner_id", sa.Uuid(), nullable=False),
        # Root folders have no parent
        sa.Column("parent_id", sa.Uuid(), nullable=True),
        sa.Column("name", sa.String(255), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["owner_id"], ["users.id"], ondelete="CASCADE"),
        # No ON DELETE: children are handled by the folder delete policy
        sa.ForeignKeyConstraint(["parent_id"], ["folders.id"]),
    )
    op.create_index("idx_folders_owner_parent", "folders", ["owner_id", "parent_id"])
    op.create_index("idx_folders_parent", "folders", ["parent_id"])
    # Sibling names are unique per owner and parent, compared case-insensitively;
    # root folders need their own index because NULL parents never collide
    op.create_index(
        "uq_folders_sibling_name",
        "folders",
        ["owner_id", "parent_id", sa.text("lower(name)")],
        unique=True,
        postgresql_where=sa.text("parent_id IS NOT NULL"),
        sqlite_where=sa.text("parent_id IS NOT NULL"),
    )
    op.create_index(
        "uq_folders_root_name",
        "folders",
        ["owner_id", sa.text("lower(name)")],
        unique=True,
        postgresql_where=sa.text("parent_id IS NULL"),
        sqlite_where=sa.text("parent_id IS NULL"),
    )

    op.create_table(
        "diagrams",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("owner_id", sa.Uuid(), nullable=False),
        sa.Column("folder_id", sa.Uuid(), nullable=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("content", sa.LargeBinary(), nullable=False),
        sa.Column("content_encoding", sa.String(100), nullable=False),
        # Optimistic concurrency token, +1 per successful save
        sa.Column("version", sa.Integer(), server_default=sa.text("1"), nullable=False),
        sa.Column("is_public", sa.Boolean(), server_default=sa.false(), nullable=False),
        *_timestamps(),
        sa.Column("updated_by", sa.Uuid(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["owner_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["folder_id"], ["folders.id"]),
        sa.ForeignKeyConstraint(["updated_by"], ["users.id"], ondelete="SET NULL"),
        sa.CheckConstraint("version >= 1", name="ck_diagrams_version_positive"),
    )
    op.create_index("idx_diagrams_owner_folder", "diagrams", ["owner_id", "folder_id"])
    op.create_index("idx_diagrams_folder", "diagrams", ["folder_id"])

    op.create_table(
        "diagram_shares",
        sa.Column("diagram_id", sa.Uuid(), nullable=False),
        sa.Column("subject_id", sa.Uuid(), nullable=False),
        sa.Column("role", sa.String(20), nullable=False),
        *_timestamps(),
        # One share per (diagram, subject); grants upsert on this key
        sa.PrimaryKeyConstraint("diagram_id", "subject_id"),
        sa.ForeignKeyConstraint(["diagram_id"], ["diagrams.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["subject_id"], ["users.id"], ondelete="CASCADE"),
        sa.CheckConstraint(_ROLE_CHECK, name="ck_diagram_shares_role"),
    )
    op.create_index("idx_diagram_shares_subject", "diagram_shares", ["subject_id"])

    op.create_table(
        "folder_shares",
        sa.Column("folder_id", sa.Uuid(), nullable=False),
        sa.Column("subject_id", sa.Uuid(), nullable=False),
        sa.Column("role", sa.String(20), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("folder_id", "subject_id"),
        sa.ForeignKeyConstraint(["folder_id"], ["folders.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["subject_id"], ["users.id"], ondelete="CASCADE"),
        sa.CheckConstraint(_ROLE_CHECK, name="ck_folder_shares_role"),
    )
    op.create_index("idx_folder_shares_subject", "folder_shares", ["subject_id"])


def downgrade() -> None:
    """
    Drop every DiagramCore table, dependents first.

    WARNING: destructive. Production rollbacks should be forward migrations.
    """
    op.drop_index("idx_folder_shares_subject", table_name="folder_shares")
    op.drop_table("folder_shares")
    op.drop_index("idx_diagram_shares_subject", table_name="diagram_shares")
    op.drop_table("diagram_shares")
    op.drop_index("idx_diagrams_folder", table_name="diagrams")
    op.drop_index("idx_diagrams_owner_folder", table_name="diagrams")
    op.drop_table("diagrams")
    op.drop_index("uq_folders_root_name", table_name="folders")
    op.drop_index("uq_folders_sibling_name", table_name="folders")
    op.drop_index("idx_folders_parent", table_name="folders")
    op.drop_index("idx_folders_owner_parent", table_name="folders")
    op.drop_table("folders")
    op.drop_index("idx_users_username", table_name="users")
    op.drop_table("users")
