"""
DiagramCore - Diagram Lifecycle Service
=======================================

What:  Create, fetch, list, move, publish and delete diagrams.
How:   Thin rules over the store. Content writes are NOT here: they only go
       through AutosaveEngine.save so that every content change is
       version-checked.
Who:   Called by the API layer after the access checks it needs
       (ownership for create/move/visibility, Action.DELETE for delete).
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import List, Optional

from diagramcore.config import Settings, settings as default_settings
from diagramcore.exceptions import InvalidMoveError, NotFoundError, ValidationError
from diagramcore.schemas.diagram import DiagramRecord, DiagramSummary
from diagramcore.services.store_base import DiagramStore, StoreTransaction

logger = logging.getLogger(__name__)


class DiagramService:
    def __init__(self, store: DiagramStore, settings: Optional[Settings] = None):
        self._store = store
        self._settings = settings or default_settings

    async def create_diagram(
        self,
        owner_id: uuid.UUID,
        name: str,
        folder_id: Optional[uuid.UUID] = None,
        content: bytes = b"",
        encoding: Optional[str] = None,
        is_public: bool = False,
    ) -> DiagramRecord:
        """
        Create a diagram at version 1.

        Raises:
            ValidationError: Blank or over-long name, oversized content.
            NotFoundError: Owner or folder does not exist.
            InvalidMoveError: Folder belongs to another owner.
        """
        clean_name = (name or "").strip()
        if not clean_name:
            raise ValidationError(message="Diagram name cannot be empty", field="name")
        if len(clean_name) > 255:
            raise ValidationError(message="Diagram name cannot exceed 255 characters", field="name")
        if len(content) > self._settings.max_content_bytes:
            raise ValidationError(
                message=f"Content exceeds the maximum size of {self._settings.max_content_bytes} bytes",
                field="content",
            )

        now = datetime.now(timezone.utc)
        async with self._store.transaction() as tx:
            if await tx.get_actor(owner_id) is None:
                raise NotFoundError(resource="user", resource_id=str(owner_id))
            await self._check_folder(tx, folder_id, owner_id)
            diagram = await tx.insert_diagram(
                DiagramRecord(
                    id=uuid.uuid4(),
                    owner_id=owner_id,
                    folder_id=folder_id,
                    name=clean_name,
                    content=bytes(content),
                    content_encoding=encoding or self._settings.default_content_encoding,
                    version=1,
                    is_public=is_public,
                    created_at=now,
                    updated_at=now,
                    updated_by=owner_id,
                )
            )

        logger.info("Diagram %s created (owner=%s, folder=%s)", diagram.id, owner_id, folder_id)
        return diagram

    async def get_diagram(self, diagram_id: uuid.UUID) -> DiagramRecord:
        async with self._store.transaction() as tx:
            diagram = await tx.get_diagram(diagram_id)
        if diagram is None:
            raise NotFoundError(resource="diagram", resource_id=str(diagram_id))
        return diagram

    async def list_diagrams(self, owner_id: uuid.UUID, folder_id: Optional[uuid.UUID] = None) -> List[DiagramSummary]:
        """Diagrams of `owner_id` directly inside `folder_id` (root when None), newest first."""
        async with self._store.transaction() as tx:
            return await tx.list_diagrams(owner_id, folder_id)

    async def move_diagram(self, diagram_id: uuid.UUID, folder_id: Optional[uuid.UUID]) -> DiagramRecord:
        """
        Put a diagram into `folder_id` (root when None).

        Raises:
            NotFoundError: Diagram or folder does not exist.
            InvalidMoveError: Folder belongs to another owner.
        """
        async with self._store.transaction() as tx:
            diagram = await tx.get_diagram(diagram_id)
            if diagram is None:
                raise NotFoundError(resource="diagram", resource_id=str(diagram_id))
            await self._check_folder(tx, folder_id, diagram.owner_id)
            await tx.set_diagram_folder(diagram_id, folder_id)
            moved = await tx.get_diagram(diagram_id)

        logger.info("Diagram %s moved from %s to %s", diagram_id, diagram.folder_id, folder_id)
        return moved

    async def set_visibility(self, diagram_id: uuid.UUID, is_public: bool) -> DiagramRecord:
        async with self._store.transaction() as tx:
            if not await tx.set_diagram_visibility(diagram_id, is_public):
                raise NotFoundError(resource="diagram", resource_id=str(diagram_id))
            diagram = await tx.get_diagram(diagram_id)

        logger.info("Diagram %s is now %s", diagram_id, "public" if is_public else "private")
        return diagram

    async def delete_diagram(self, diagram_id: uuid.UUID) -> None:
        """
        Delete a diagram and every share on it.

        Raises:
            NotFoundError: Diagram does not exist.
        """
        async with self._store.transaction() as tx:
            shares = await tx.delete_shares_for_diagrams([diagram_id])
            if not await tx.delete_diagrams([diagram_id]):
                raise NotFoundError(resource="diagram", resource_id=str(diagram_id))

        logger.info("Diagram %s deleted with %d shares", diagram_id, shares)

    async def _check_folder(self, tx: StoreTransaction, folder_id: Optional[uuid.UUID], owner_id: uuid.UUID) -> None:
        if folder_id is None:
            return
        folder = await tx.get_folder(folder_id, for_update=True)
        if folder is None:
            raise NotFoundError(resource="folder", resource_id=str(folder_id))
        if folder.owner_id != owner_id:
            raise InvalidMoveError(
                message="Diagrams can only be placed in their owner's folders",
                context={"folder_id": str(folder_id), "owner_id": str(owner_id)},
            )
