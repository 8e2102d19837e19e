"""
DiagramCore - Composition Root
==============================

What:  Wires settings, logging, the store and the services into one
       `DiagramCore` object, the surface the API layer calls.
How:   `create_core()` builds the store (SQL by default) and hands it to every
       service. Each public method checks access first, then delegates:

           request → AccessControlEvaluator → service → DiagramStore → result

Who:   Built once per process by the API layer; tests build their own with an
       injected store and settings.

Lifecycle:
    Startup:
    1. setup_logging()
    2. create_core(); the engine connects lazily on first use
    Shutdown:
    1. await core.aclose() (disposes the engine, closes pooled connections)

Access Rules Applied Here:
    load_diagram                  Action.READ
    save                          Action.WRITE
    delete_diagram                Action.DELETE
    grant/revoke/list shares      Action.SHARE
    move_diagram, visibility      diagram owner only
    folder operations             folder owner only (folder_tree lists
                                  the actor's own folders)
"""

import logging
import sys
import uuid
from typing import List, Optional

from diagramcore.config import Settings, settings as default_settings
from diagramcore.exceptions import ForbiddenError
from diagramcore.schemas.access import Action, Role
from diagramcore.schemas.diagram import DiagramRecord, SaveResult
from diagramcore.schemas.folder import (
    CascadePolicy,
    FolderDeleteSummary,
    FolderNode,
    FolderRecord,
    FolderTreeEntry,
)
from diagramcore.schemas.share import ShareRecord
from diagramcore.services.access_service import AccessControlEvaluator
from diagramcore.services.autosave_service import AutosaveEngine
from diagramcore.services.diagram_service import DiagramService
from diagramcore.services.folder_service import FolderHierarchyManager
from diagramcore.services.sharing_service import SharingRegistry
from diagramcore.services.store_base import DiagramStore

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Logging Configuration
# ══════════════════════════════════════════════════════════════════════════

def setup_logging(config: Optional[Settings] = None) -> None:
    """
    Configure the root logger once at process start.

    Format: %(asctime)s [%(levelname)s] %(name)s: %(message)s

    Every module logs through logging.getLogger(__name__), so the logger
    name shows which component (autosave, folders, sharing...) wrote a line.
    """
    cfg = config or default_settings
    logging.basicConfig(
        level=getattr(logging, cfg.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[
            logging.StreamHandler(sys.stdout),
        ],
        force=True,
    )

    # Reduce noise from third-party libraries
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)


# ══════════════════════════════════════════════════════════════════════════
# Core Facade
# ══════════════════════════════════════════════════════════════════════════

class DiagramCore:
    """
    Permission-gated entry point to every core operation.

    Methods take the acting user's id first, like authorize(). save() is the
    exception: it keeps the autosave contract order
    save(diagram_id, actor_id, expected_version, content). Denials raise
    ForbiddenError; save() additionally reports conflicts and transient
    failures as result variants rather than exceptions.
    """

    def __init__(self, store: DiagramStore, settings: Optional[Settings] = None):
        self.settings = settings or default_settings
        self.store = store
        self.access = AccessControlEvaluator(store, self.settings)
        self.folders = FolderHierarchyManager(store, self.settings)
        self.sharing = SharingRegistry(store, self.settings)
        self.autosave = AutosaveEngine(store, self.settings)
        self.diagrams = DiagramService(store, self.settings)

    # ── Access ────────────────────────────────────────────────────────────

    async def authorize(self, actor_id: uuid.UUID, diagram_id: uuid.UUID, action: Action | str) -> bool:
        return await self.access.authorize(actor_id, diagram_id, action)

    # ── Diagrams ──────────────────────────────────────────────────────────

    async def save(
        self,
        diagram_id: uuid.UUID,
        actor_id: uuid.UUID,
        expected_version: int,
        content: bytes,
        encoding: Optional[str] = None,
    ) -> SaveResult:
        await self.access.require(actor_id, diagram_id, Action.WRITE)
        return await self.autosave.save(diagram_id, actor_id, expected_version, content, encoding)

    async def load_diagram(self, actor_id: uuid.UUID, diagram_id: uuid.UUID) -> DiagramRecord:
        await self.access.require(actor_id, diagram_id, Action.READ)
        return await self.autosave.load(diagram_id)

    async def create_diagram(
        self,
        actor_id: uuid.UUID,
        name: str,
        folder_id: Optional[uuid.UUID] = None,
        content: bytes = b"",
        encoding: Optional[str] = None,
        is_public: bool = False,
    ) -> DiagramRecord:
        return await self.diagrams.create_diagram(actor_id, name, folder_id, content, encoding, is_public)

    async def move_diagram(
        self,
        actor_id: uuid.UUID,
        diagram_id: uuid.UUID,
        folder_id: Optional[uuid.UUID],
    ) -> DiagramRecord:
        await self._require_owner(actor_id, diagram_id, "move")
        return await self.diagrams.move_diagram(diagram_id, folder_id)

    async def set_visibility(self, actor_id: uuid.UUID, diagram_id: uuid.UUID, is_public: bool) -> DiagramRecord:
        await self._require_owner(actor_id, diagram_id, "publish")
        return await self.diagrams.set_visibility(diagram_id, is_public)

    async def delete_diagram(self, actor_id: uuid.UUID, diagram_id: uuid.UUID) -> None:
        await self.access.require(actor_id, diagram_id, Action.DELETE)
        await self.diagrams.delete_diagram(diagram_id)

    # ── Folders ───────────────────────────────────────────────────────────

    async def create_folder(
        self,
        actor_id: uuid.UUID,
        name: str,
        parent_id: Optional[uuid.UUID] = None,
    ) -> FolderRecord:
        return await self.folders.create_folder(actor_id, name, parent_id)

    async def rename_folder(self, actor_id: uuid.UUID, folder_id: uuid.UUID, name: str) -> FolderRecord:
        await self._require_folder_owner(actor_id, folder_id, "rename")
        return await self.folders.rename_folder(folder_id, name)

    async def move_folder(
        self,
        actor_id: uuid.UUID,
        folder_id: uuid.UUID,
        new_parent_id: Optional[uuid.UUID],
    ) -> FolderRecord:
        await self._require_folder_owner(actor_id, folder_id, "move")
        return await self.folders.move(folder_id, new_parent_id)

    async def path_of(self, actor_id: uuid.UUID, folder_id: uuid.UUID) -> List[FolderRecord]:
        await self._require_folder_owner(actor_id, folder_id, "read")
        return await self.folders.path_of(folder_id)

    async def list_folder_nodes(self, actor_id: uuid.UUID, parent_id: Optional[uuid.UUID] = None) -> List[FolderNode]:
        """The actor's folders under `parent_id` (root when None), with counts."""
        if parent_id is not None:
            await self._require_folder_owner(actor_id, parent_id, "read")
        return await self.folders.list_child_nodes(parent_id, actor_id)

    async def folder_tree(self, actor_id: uuid.UUID) -> List[FolderTreeEntry]:
        return await self.folders.tree(actor_id)

    async def delete_folder(
        self,
        actor_id: uuid.UUID,
        folder_id: uuid.UUID,
        cascade_policy: Optional[CascadePolicy | str] = None,
    ) -> FolderDeleteSummary:
        await self._require_folder_owner(actor_id, folder_id, "delete")
        return await self.folders.delete(folder_id, cascade_policy)

    # ── Sharing ───────────────────────────────────────────────────────────

    async def grant_share(
        self,
        actor_id: uuid.UUID,
        diagram_id: uuid.UUID,
        subject: uuid.UUID | str,
        role: Role | str,
    ) -> ShareRecord:
        """Share a diagram with an actor id, email address or username."""
        await self.access.require(actor_id, diagram_id, Action.SHARE)
        if isinstance(subject, uuid.UUID):
            return await self.sharing.grant(diagram_id, subject, role)
        return await self.sharing.grant_by_identifier(diagram_id, subject, role)

    async def revoke_share(self, actor_id: uuid.UUID, diagram_id: uuid.UUID, subject_id: uuid.UUID) -> bool:
        await self.access.require(actor_id, diagram_id, Action.SHARE)
        return await self.sharing.revoke(diagram_id, subject_id)

    async def list_shares(self, actor_id: uuid.UUID, diagram_id: uuid.UUID) -> List[ShareRecord]:
        await self.access.require(actor_id, diagram_id, Action.SHARE)
        return await self.sharing.list(diagram_id)

    async def resolve_subject(self, identifier: str) -> uuid.UUID:
        return await self.sharing.resolve_subject(identifier)

    # ── Lifecycle ─────────────────────────────────────────────────────────

    async def aclose(self) -> None:
        await self.store.close()
        logger.info("DiagramCore closed")

    async def _require_owner(self, actor_id: uuid.UUID, diagram_id: uuid.UUID, action: str) -> None:
        if await self.access.access_role(actor_id, diagram_id) is not Role.OWNER:
            logger.info("Denied %s on diagram %s for actor %s (not owner)", action, diagram_id, actor_id)
            raise ForbiddenError(action=action, context={"diagram_id": str(diagram_id)})

    async def _require_folder_owner(self, actor_id: uuid.UUID, folder_id: uuid.UUID, action: str) -> None:
        if not await self.access.can_manage_folder(actor_id, folder_id):
            logger.info("Denied %s on folder %s for actor %s", action, folder_id, actor_id)
            raise ForbiddenError(action=action, context={"folder_id": str(folder_id)})


def create_core(settings: Optional[Settings] = None, store: Optional[DiagramStore] = None) -> DiagramCore:
    """
    Build a DiagramCore.

    Without a store, a SqlAlchemyDiagramStore is used: on the process-wide
    engine by default, or on a new engine when settings are injected.
    """
    if store is None:
        from diagramcore.database import build_engine
        from diagramcore.services.sql_store import SqlAlchemyDiagramStore

        store = SqlAlchemyDiagramStore(build_engine(config=settings) if settings is not None else None)
    core = DiagramCore(store, settings)
    logger.info("DiagramCore ready (folder inheritance=%s)", core.settings.folder_share_inheritance)
    return core
