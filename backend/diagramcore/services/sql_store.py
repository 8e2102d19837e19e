"""
DiagramCore - SQLAlchemy Diagram Store
======================================

What:  DiagramStore implementation on async SQLAlchemy (PostgreSQL via asyncpg
       in production, SQLite via aiosqlite in tests).
How:   One AsyncSession + one database transaction per `transaction()` block.
       Reads go through ORM selects converted to detached Pydantic records;
       writes are set-based UPDATE / DELETE / INSERT ... ON CONFLICT
       statements so the database evaluates every condition atomically.

The compare-and-swap write:
    UPDATE diagrams
       SET content = :content, version = version + 1, ...
     WHERE id = :id AND version = :expected_version

    Two sessions racing with the same expected version both issue this
    statement; the database serializes the row update, the second one matches
    zero rows, and its caller reports a conflict. No read-then-write happens
    in Python.

Error translation:
    OperationalError, InterfaceError, DisconnectionError, pool timeouts,
    OS-level connection errors, invalidated connections
        → StorageUnavailableError (transient)
    Any other SQLAlchemyError
        → DatabaseError (details in context, generic message)
"""

import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncGenerator, Iterable, List, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import (
    DBAPIError,
    DisconnectionError,
    IntegrityError,
    InterfaceError,
    OperationalError,
    SQLAlchemyError,
)
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import aliased

from diagramcore.database import build_session_factory, dispose_engine, get_engine
from diagramcore.exceptions import DatabaseError, DuplicateNameError, StorageUnavailableError
from diagramcore.models.diagram import Diagram
from diagramcore.models.folder import SIBLING_NAME_INDEXES, Folder
from diagramcore.models.share import DiagramShare, FolderShare
from diagramcore.models.user import User
from diagramcore.schemas.access import Role
from diagramcore.schemas.diagram import DiagramRecord, DiagramSummary
from diagramcore.schemas.folder import FolderNode, FolderRecord
from diagramcore.schemas.share import ActorRecord, FolderShareRecord, ShareRecord
from diagramcore.services.store_base import DiagramStore, StoreTransaction

logger = logging.getLogger(__name__)

_TRANSIENT_ERRORS = (
    OperationalError,
    InterfaceError,
    DisconnectionError,
    PoolTimeoutError,
    ConnectionError,
    TimeoutError,
)


def _is_transient(exc: BaseException) -> bool:
    if isinstance(exc, _TRANSIENT_ERRORS):
        return True
    return isinstance(exc, DBAPIError) and exc.connection_invalidated


@asynccontextmanager
async def _sibling_names_enforced(name: str = "") -> AsyncGenerator[None, None]:
    """
    Report a sibling-name unique index violation as DuplicateNameError.

    The folder manager checks names before writing; the index catches the
    writer that raced past that check (PostgreSQL READ COMMITTED).
    """
    try:
        yield
    except IntegrityError as exc:
        detail = str(exc.orig)
        constraint = next((index for index in SIBLING_NAME_INDEXES if index in detail), None)
        if constraint is None:
            raise
        logger.info("Sibling folder name clash caught by %s", constraint)
        raise DuplicateNameError(name=name, context={"constraint": constraint}) from exc


class SqlStoreTransaction(StoreTransaction):
    """StoreTransaction bound to one AsyncSession inside an open transaction."""

    def __init__(self, session: AsyncSession, dialect: str):
        self._session = session
        self._dialect = dialect

    # ── Diagrams ──────────────────────────────────────────────────────────

    async def get_diagram(self, diagram_id: uuid.UUID) -> Optional[DiagramRecord]:
        result = await self._session.execute(
            select(Diagram)
            .where(Diagram.id == diagram_id)
            .execution_options(populate_existing=True)
        )
        row = result.scalar_one_or_none()
        return DiagramRecord.model_validate(row) if row is not None else None

    async def insert_diagram(self, record: DiagramRecord) -> DiagramRecord:
        row = Diagram(**record.model_dump())
        self._session.add(row)
        await self._session.flush()
        return DiagramRecord.model_validate(row)

    async def cas_update(
        self,
        diagram_id: uuid.UUID,
        expected_version: int,
        content: bytes,
        content_encoding: str,
        updated_by: uuid.UUID,
        updated_at: datetime,
    ) -> bool:
        result = await self._session.execute(
            update(Diagram)
            .where(Diagram.id == diagram_id, Diagram.version == expected_version)
            .values(
                content=content,
                content_encoding=content_encoding,
                version=Diagram.version + 1,
                updated_by=updated_by,
                updated_at=updated_at,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def set_diagram_folder(self, diagram_id: uuid.UUID, folder_id: Optional[uuid.UUID]) -> bool:
        result = await self._session.execute(
            update(Diagram)
            .where(Diagram.id == diagram_id)
            .values(folder_id=folder_id)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def set_diagram_visibility(self, diagram_id: uuid.UUID, is_public: bool) -> bool:
        result = await self._session.execute(
            update(Diagram)
            .where(Diagram.id == diagram_id)
            .values(is_public=is_public)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def list_diagrams(
        self,
        owner_id: uuid.UUID,
        folder_id: Optional[uuid.UUID] = None,
    ) -> List[DiagramSummary]:
        query = select(Diagram).where(Diagram.owner_id == owner_id)
        if folder_id is None:
            query = query.where(Diagram.folder_id.is_(None))
        else:
            query = query.where(Diagram.folder_id == folder_id)
        query = query.order_by(Diagram.updated_at.desc(), Diagram.id)
        result = await self._session.execute(query)
        return [DiagramSummary.model_validate(row) for row in result.scalars().all()]

    async def count_folder_diagrams(self, folder_id: uuid.UUID) -> int:
        result = await self._session.execute(
            select(func.count()).select_from(Diagram).where(Diagram.folder_id == folder_id)
        )
        return result.scalar_one()

    async def list_diagram_ids_in_folders(self, folder_ids: Iterable[uuid.UUID]) -> List[uuid.UUID]:
        ids = list(folder_ids)
        if not ids:
            return []
        result = await self._session.execute(
            select(Diagram.id).where(Diagram.folder_id.in_(ids))
        )
        return list(result.scalars().all())

    async def relocate_diagrams(
        self,
        from_folder_id: uuid.UUID,
        to_folder_id: Optional[uuid.UUID],
    ) -> int:
        result = await self._session.execute(
            update(Diagram)
            .where(Diagram.folder_id == from_folder_id)
            .values(folder_id=to_folder_id)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    async def delete_diagrams(self, diagram_ids: Iterable[uuid.UUID]) -> int:
        ids = list(diagram_ids)
        if not ids:
            return 0
        result = await self._session.execute(
            delete(Diagram)
            .where(Diagram.id.in_(ids))
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    # ── Folders ───────────────────────────────────────────────────────────

    async def get_folder(self, folder_id: uuid.UUID, for_update: bool = False) -> Optional[FolderRecord]:
        query = (
            select(Folder)
            .where(Folder.id == folder_id)
            .execution_options(populate_existing=True)
        )
        if for_update:
            # No-op on SQLite, where every transaction starts with BEGIN IMMEDIATE
            query = query.with_for_update()
        result = await self._session.execute(query)
        row = result.scalar_one_or_none()
        return FolderRecord.model_validate(row) if row is not None else None

    async def insert_folder(self, record: FolderRecord) -> FolderRecord:
        row = Folder(**record.model_dump())
        self._session.add(row)
        async with _sibling_names_enforced(record.name):
            await self._session.flush()
        return FolderRecord.model_validate(row)

    async def list_child_folders(
        self,
        parent_id: Optional[uuid.UUID],
        owner_id: Optional[uuid.UUID] = None,
    ) -> List[FolderRecord]:
        query = select(Folder)
        if parent_id is None:
            query = query.where(Folder.parent_id.is_(None))
        else:
            query = query.where(Folder.parent_id == parent_id)
        if owner_id is not None:
            query = query.where(Folder.owner_id == owner_id)
        result = await self._session.execute(query.order_by(Folder.name, Folder.id))
        return [FolderRecord.model_validate(row) for row in result.scalars().all()]

    async def list_child_folder_nodes(self, parent_id: Optional[uuid.UUID], owner_id: uuid.UUID) -> List[FolderNode]:
        child = aliased(Folder)
        children_count = (
            select(func.count())
            .select_from(child)
            .where(child.parent_id == Folder.id)
            .correlate(Folder)
            .scalar_subquery()
        )
        diagrams_count = (
            select(func.count())
            .select_from(Diagram)
            .where(Diagram.folder_id == Folder.id)
            .correlate(Folder)
            .scalar_subquery()
        )
        query = select(Folder, children_count, diagrams_count).where(Folder.owner_id == owner_id)
        if parent_id is None:
            query = query.where(Folder.parent_id.is_(None))
        else:
            query = query.where(Folder.parent_id == parent_id)
        result = await self._session.execute(query.order_by(Folder.name, Folder.id))
        return [
            FolderNode(
                **FolderRecord.model_validate(row).model_dump(),
                children_count=children,
                diagrams_count=diagrams,
            )
            for row, children, diagrams in result.all()
        ]

    async def list_owner_folders(self, owner_id: uuid.UUID) -> List[FolderRecord]:
        result = await self._session.execute(
            select(Folder).where(Folder.owner_id == owner_id).order_by(Folder.name, Folder.id)
        )
        return [FolderRecord.model_validate(row) for row in result.scalars().all()]

    async def folder_name_taken(
        self,
        owner_id: uuid.UUID,
        parent_id: Optional[uuid.UUID],
        name: str,
        exclude_id: Optional[uuid.UUID] = None,
    ) -> bool:
        query = (
            select(func.count())
            .select_from(Folder)
            .where(Folder.owner_id == owner_id, func.lower(Folder.name) == name.lower())
        )
        if parent_id is None:
            query = query.where(Folder.parent_id.is_(None))
        else:
            query = query.where(Folder.parent_id == parent_id)
        if exclude_id is not None:
            query = query.where(Folder.id != exclude_id)
        result = await self._session.execute(query)
        return result.scalar_one() > 0

    async def set_folder_parent(self, folder_id: uuid.UUID, parent_id: Optional[uuid.UUID], updated_at: datetime) -> bool:
        async with _sibling_names_enforced():
            result = await self._session.execute(
                update(Folder)
                .where(Folder.id == folder_id)
                .values(parent_id=parent_id, updated_at=updated_at)
                .execution_options(synchronize_session=False)
            )
        return result.rowcount == 1

    async def rename_folder(self, folder_id: uuid.UUID, name: str, updated_at: datetime) -> bool:
        async with _sibling_names_enforced(name):
            result = await self._session.execute(
                update(Folder)
                .where(Folder.id == folder_id)
                .values(name=name, updated_at=updated_at)
                .execution_options(synchronize_session=False)
            )
        return result.rowcount == 1

    async def reparent_child_folders(
        self,
        from_parent_id: uuid.UUID,
        to_parent_id: Optional[uuid.UUID],
        updated_at: datetime,
    ) -> int:
        async with _sibling_names_enforced():
            result = await self._session.execute(
                update(Folder)
                .where(Folder.parent_id == from_parent_id)
                .values(parent_id=to_parent_id, updated_at=updated_at)
                .execution_options(synchronize_session=False)
            )
        return result.rowcount

    async def delete_folders(self, folder_ids: Iterable[uuid.UUID]) -> int:
        ids = list(folder_ids)
        if not ids:
            return 0
        result = await self._session.execute(
            delete(Folder)
            .where(Folder.id.in_(ids))
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    # ── Diagram Shares ────────────────────────────────────────────────────

    def _insert(self, model):
        if self._dialect == "postgresql":
            from sqlalchemy.dialects.postgresql import insert
        elif self._dialect == "sqlite":
            from sqlalchemy.dialects.sqlite import insert
        else:
            return None
        return insert(model)

    async def _upsert(self, model, key: dict, role: Role, now: datetime) -> None:
        insert = self._insert(model)
        if insert is None:
            # Portable fallback; the primary key still rejects duplicates
            existing = await self._session.get(model, tuple(key.values()))
            if existing is None:
                self._session.add(model(**key, role=role.value, created_at=now, updated_at=now))
            else:
                existing.role = role.value
                existing.updated_at = now
            await self._session.flush()
            return

        stmt = insert.values(**key, role=role.value, created_at=now, updated_at=now)
        stmt = stmt.on_conflict_do_update(
            index_elements=list(key.keys()),
            set_={"role": stmt.excluded.role, "updated_at": stmt.excluded.updated_at},
        )
        await self._session.execute(stmt)

    async def upsert_share(self, diagram_id: uuid.UUID, subject_id: uuid.UUID, role: Role, now: datetime) -> ShareRecord:
        await self._upsert(DiagramShare, {"diagram_id": diagram_id, "subject_id": subject_id}, role, now)
        share = await self.get_share(diagram_id, subject_id)
        if share is None:
            raise DatabaseError(context={"operation": "upsert_share", "diagram_id": str(diagram_id)})
        return share

    async def get_share(self, diagram_id: uuid.UUID, subject_id: uuid.UUID) -> Optional[ShareRecord]:
        result = await self._session.execute(
            select(DiagramShare)
            .where(DiagramShare.diagram_id == diagram_id, DiagramShare.subject_id == subject_id)
            .execution_options(populate_existing=True)
        )
        row = result.scalar_one_or_none()
        return ShareRecord.model_validate(row) if row is not None else None

    async def delete_share(self, diagram_id: uuid.UUID, subject_id: uuid.UUID) -> bool:
        result = await self._session.execute(
            delete(DiagramShare)
            .where(DiagramShare.diagram_id == diagram_id, DiagramShare.subject_id == subject_id)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0

    async def list_shares(self, diagram_id: uuid.UUID) -> List[ShareRecord]:
        result = await self._session.execute(
            select(DiagramShare)
            .where(DiagramShare.diagram_id == diagram_id)
            .order_by(DiagramShare.created_at, DiagramShare.subject_id)
            .execution_options(populate_existing=True)
        )
        return [ShareRecord.model_validate(row) for row in result.scalars().all()]

    async def list_shares_for_subject(self, subject_id: uuid.UUID) -> List[ShareRecord]:
        result = await self._session.execute(
            select(DiagramShare)
            .where(DiagramShare.subject_id == subject_id)
            .order_by(DiagramShare.created_at, DiagramShare.diagram_id)
            .execution_options(populate_existing=True)
        )
        return [ShareRecord.model_validate(row) for row in result.scalars().all()]

    async def delete_shares_for_diagrams(self, diagram_ids: Iterable[uuid.UUID]) -> int:
        ids = list(diagram_ids)
        if not ids:
            return 0
        result = await self._session.execute(
            delete(DiagramShare)
            .where(DiagramShare.diagram_id.in_(ids))
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    async def delete_shares_for_subject(self, subject_id: uuid.UUID) -> int:
        diagram_result = await self._session.execute(
            delete(DiagramShare)
            .where(DiagramShare.subject_id == subject_id)
            .execution_options(synchronize_session=False)
        )
        folder_result = await self._session.execute(
            delete(FolderShare)
            .where(FolderShare.subject_id == subject_id)
            .execution_options(synchronize_session=False)
        )
        return diagram_result.rowcount + folder_result.rowcount

    # ── Folder Shares ─────────────────────────────────────────────────────

    async def upsert_folder_share(self, folder_id: uuid.UUID, subject_id: uuid.UUID, role: Role, now: datetime) -> FolderShareRecord:
        await self._upsert(FolderShare, {"folder_id": folder_id, "subject_id": subject_id}, role, now)
        shares = await self.get_folder_shares([folder_id], subject_id)
        if not shares:
            raise DatabaseError(context={"operation": "upsert_folder_share", "folder_id": str(folder_id)})
        return shares[0]

    async def get_folder_shares(self, folder_ids: Iterable[uuid.UUID], subject_id: uuid.UUID) -> List[FolderShareRecord]:
        ids = list(folder_ids)
        if not ids:
            return []
        result = await self._session.execute(
            select(FolderShare)
            .where(FolderShare.folder_id.in_(ids), FolderShare.subject_id == subject_id)
            .execution_options(populate_existing=True)
        )
        return [FolderShareRecord.model_validate(row) for row in result.scalars().all()]

    async def delete_folder_share(self, folder_id: uuid.UUID, subject_id: uuid.UUID) -> bool:
        result = await self._session.execute(
            delete(FolderShare)
            .where(FolderShare.folder_id == folder_id, FolderShare.subject_id == subject_id)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0

    async def list_folder_shares(self, folder_id: uuid.UUID) -> List[FolderShareRecord]:
        result = await self._session.execute(
            select(FolderShare)
            .where(FolderShare.folder_id == folder_id)
            .order_by(FolderShare.created_at, FolderShare.subject_id)
            .execution_options(populate_existing=True)
        )
        return [FolderShareRecord.model_validate(row) for row in result.scalars().all()]

    async def delete_folder_shares_for_folders(self, folder_ids: Iterable[uuid.UUID]) -> int:
        ids = list(folder_ids)
        if not ids:
            return 0
        result = await self._session.execute(
            delete(FolderShare)
            .where(FolderShare.folder_id.in_(ids))
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    # ── Actors ────────────────────────────────────────────────────────────

    async def find_actor_by_identifier(self, identifier: str) -> Optional[ActorRecord]:
        value = identifier.strip()
        result = await self._session.execute(
            select(User).where(func.lower(User.email) == value.lower()).limit(1)
        )
        user = result.scalar_one_or_none()
        if user is None:
            # Usernames are not unique; the oldest account wins
            result = await self._session.execute(
                select(User)
                .where(User.username == value)
                .order_by(User.created_at, User.id)
                .limit(1)
            )
            user = result.scalar_one_or_none()
        return ActorRecord.model_validate(user) if user is not None else None

    async def get_actor(self, actor_id: uuid.UUID) -> Optional[ActorRecord]:
        user = await self._session.get(User, actor_id)
        return ActorRecord.model_validate(user) if user is not None else None


class SqlAlchemyDiagramStore(DiagramStore):
    """
    DiagramStore backed by an AsyncEngine.

    Args:
        engine: Engine to use; defaults to the process-wide engine from
                diagramcore.database.
        session_factory: Optional pre-built factory (tests share one).
    """

    def __init__(
        self,
        engine: Optional[AsyncEngine] = None,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    ):
        self._shared_engine = engine is None
        self._engine = engine or get_engine()
        self._session_factory = session_factory or build_session_factory(self._engine)
        self._dialect = self._engine.dialect.name

    @asynccontextmanager
    async def transaction(self) -> AsyncGenerator[StoreTransaction, None]:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    yield SqlStoreTransaction(session, self._dialect)
        except SQLAlchemyError as exc:
            if _is_transient(exc):
                logger.warning("Storage unavailable: %s", type(exc).__name__)
                raise StorageUnavailableError(context={"error_type": type(exc).__name__}) from exc
            logger.error("Database error: %s", str(exc), exc_info=True)
            raise DatabaseError(context={"error_type": type(exc).__name__}) from exc
        except (ConnectionError, TimeoutError) as exc:
            logger.warning("Storage unreachable: %s", type(exc).__name__)
            raise StorageUnavailableError(context={"error_type": type(exc).__name__}) from exc

    async def close(self) -> None:
        if self._shared_engine:
            # Also resets the process-wide engine so a later get_engine() starts fresh
            await dispose_engine()
        else:
            await self._engine.dispose()
