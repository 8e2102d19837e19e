"""
DiagramCore - Abstract Diagram Store Contract
=============================================

What:  The persistence boundary the services depend on.
How:   `DiagramStore.transaction()` opens an atomic unit of work and yields a
       `StoreTransaction`; every read and write happens through it. A single
       service call uses a single transaction, so a check and the write it
       guards (folder cycle check then re-parent, for example) commit or roll
       back together.
Who:   Implemented by SqlAlchemyDiagramStore; replaced by AsyncMock in unit
       tests that inject failures.

Contract rules every implementation follows:
    - Missing rows come back as None / False / 0, never as exceptions
    - cas_update is ONE conditional write keyed on (id, version); it never
      reads first and compares in Python
    - Transient infrastructure failures raise StorageUnavailableError; other
      backend failures raise DatabaseError
    - Records are detached Pydantic models, never live ORM objects
"""

import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from typing import AsyncContextManager, Iterable, List, Optional

from diagramcore.schemas.access import Role
from diagramcore.schemas.diagram import DiagramRecord, DiagramSummary
from diagramcore.schemas.folder import FolderNode, FolderRecord
from diagramcore.schemas.share import ActorRecord, FolderShareRecord, ShareRecord


class StoreTransaction(ABC):
    """Operations available inside one store transaction."""

    # ── Diagrams ──────────────────────────────────────────────────────────

    @abstractmethod
    async def get_diagram(self, diagram_id: uuid.UUID) -> Optional[DiagramRecord]:
        ...

    @abstractmethod
    async def insert_diagram(self, record: DiagramRecord) -> DiagramRecord:
        ...

    @abstractmethod
    async def cas_update(
        self,
        diagram_id: uuid.UUID,
        expected_version: int,
        content: bytes,
        content_encoding: str,
        updated_by: uuid.UUID,
        updated_at: datetime,
    ) -> bool:
        """
        Atomically replace content if and only if the stored version equals
        `expected_version`, setting version to expected_version + 1.

        Returns:
            True when exactly one row was updated; False when the diagram is
            missing or its version moved on. Storage is untouched on False.
        """
        ...

    @abstractmethod
    async def set_diagram_folder(self, diagram_id: uuid.UUID, folder_id: Optional[uuid.UUID]) -> bool:
        ...

    @abstractmethod
    async def set_diagram_visibility(self, diagram_id: uuid.UUID, is_public: bool) -> bool:
        ...

    @abstractmethod
    async def list_diagrams(
        self,
        owner_id: uuid.UUID,
        folder_id: Optional[uuid.UUID] = None,
    ) -> List[DiagramSummary]:
        """Diagrams of `owner_id` directly inside `folder_id` (None = root)."""
        ...

    @abstractmethod
    async def count_folder_diagrams(self, folder_id: uuid.UUID) -> int:
        ...

    @abstractmethod
    async def list_diagram_ids_in_folders(self, folder_ids: Iterable[uuid.UUID]) -> List[uuid.UUID]:
        ...

    @abstractmethod
    async def relocate_diagrams(
        self,
        from_folder_id: uuid.UUID,
        to_folder_id: Optional[uuid.UUID],
    ) -> int:
        ...

    @abstractmethod
    async def delete_diagrams(self, diagram_ids: Iterable[uuid.UUID]) -> int:
        ...

    # ── Folders ───────────────────────────────────────────────────────────

    @abstractmethod
    async def get_folder(self, folder_id: uuid.UUID, for_update: bool = False) -> Optional[FolderRecord]:
        """
        Fetch one folder. `for_update` locks the row until the transaction
        ends on backends that support row locks.
        """
        ...

    @abstractmethod
    async def insert_folder(self, record: FolderRecord) -> FolderRecord:
        ...

    @abstractmethod
    async def list_child_folders(self, parent_id: Optional[uuid.UUID], owner_id: Optional[uuid.UUID] = None) -> List[FolderRecord]:
        """Direct children of `parent_id`; root folders need `owner_id`."""
        ...

    @abstractmethod
    async def list_child_folder_nodes(self, parent_id: Optional[uuid.UUID], owner_id: uuid.UUID) -> List[FolderNode]:
        """Like list_child_folders, with direct child-folder and diagram counts."""
        ...

    @abstractmethod
    async def list_owner_folders(self, owner_id: uuid.UUID) -> List[FolderRecord]:
        """Every folder `owner_id` owns, ordered by name."""
        ...

    @abstractmethod
    async def folder_name_taken(
        self,
        owner_id: uuid.UUID,
        parent_id: Optional[uuid.UUID],
        name: str,
        exclude_id: Optional[uuid.UUID] = None,
    ) -> bool:
        """Case-insensitive sibling name check."""
        ...

    @abstractmethod
    async def set_folder_parent(self, folder_id: uuid.UUID, parent_id: Optional[uuid.UUID], updated_at: datetime) -> bool:
        ...

    @abstractmethod
    async def rename_folder(self, folder_id: uuid.UUID, name: str, updated_at: datetime) -> bool:
        ...

    @abstractmethod
    async def reparent_child_folders(
        self,
        from_parent_id: uuid.UUID,
        to_parent_id: Optional[uuid.UUID],
        updated_at: datetime,
    ) -> int:
        ...

    @abstractmethod
    async def delete_folders(self, folder_ids: Iterable[uuid.UUID]) -> int:
        ...

    # ── Diagram Shares ────────────────────────────────────────────────────

    @abstractmethod
    async def upsert_share(self, diagram_id: uuid.UUID, subject_id: uuid.UUID, role: Role, now: datetime) -> ShareRecord:
        ...

    @abstractmethod
    async def get_share(self, diagram_id: uuid.UUID, subject_id: uuid.UUID) -> Optional[ShareRecord]:
        ...

    @abstractmethod
    async def delete_share(self, diagram_id: uuid.UUID, subject_id: uuid.UUID) -> bool:
        ...

    @abstractmethod
    async def list_shares(self, diagram_id: uuid.UUID) -> List[ShareRecord]:
        """Ordered by created_at, then subject id."""
        ...

    @abstractmethod
    async def list_shares_for_subject(self, subject_id: uuid.UUID) -> List[ShareRecord]:
        ...

    @abstractmethod
    async def delete_shares_for_diagrams(self, diagram_ids: Iterable[uuid.UUID]) -> int:
        ...

    @abstractmethod
    async def delete_shares_for_subject(self, subject_id: uuid.UUID) -> int:
        """Deletes diagram AND folder shares naming the subject."""
        ...

    # ── Folder Shares ─────────────────────────────────────────────────────

    @abstractmethod
    async def upsert_folder_share(self, folder_id: uuid.UUID, subject_id: uuid.UUID, role: Role, now: datetime) -> FolderShareRecord:
        ...

    @abstractmethod
    async def get_folder_shares(self, folder_ids: Iterable[uuid.UUID], subject_id: uuid.UUID) -> List[FolderShareRecord]:
        """Shares naming `subject_id` on any of `folder_ids`."""
        ...

    @abstractmethod
    async def delete_folder_share(self, folder_id: uuid.UUID, subject_id: uuid.UUID) -> bool:
        ...

    @abstractmethod
    async def list_folder_shares(self, folder_id: uuid.UUID) -> List[FolderShareRecord]:
        ...

    @abstractmethod
    async def delete_folder_shares_for_folders(self, folder_ids: Iterable[uuid.UUID]) -> int:
        ...

    # ── Actors ────────────────────────────────────────────────────────────

    @abstractmethod
    async def find_actor_by_identifier(self, identifier: str) -> Optional[ActorRecord]:
        """Match by email (case-insensitive) first, then by exact username."""
        ...

    @abstractmethod
    async def get_actor(self, actor_id: uuid.UUID) -> Optional[ActorRecord]:
        ...


class DiagramStore(ABC):
    """
    Entry point to storage.

    Implementations:
        - SqlAlchemyDiagramStore: PostgreSQL (asyncpg) or SQLite (aiosqlite)
    """

    @abstractmethod
    def transaction(self) -> AsyncContextManager[StoreTransaction]:
        """
        Open a unit of work.

        Usage:
            async with store.transaction() as tx:
                if await tx.cas_update(...):
                    ...

        Commits when the block exits normally, rolls back when it raises.

        Raises:
            StorageUnavailableError: Backend unreachable (on enter, during
                the block, or at commit).
            DatabaseError: Any other backend failure.
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release pooled resources."""
        ...
