"""
DiagramCore - Sharing Registry
==============================

What:  Stores who a diagram (or folder) is shared with, and in which role.
How:   Upserts keyed on (target, subject): granting twice updates the role,
       never duplicates the pair. Revocation is idempotent.
Who:   Called by the API layer AFTER it has checked Action.SHARE with the
       AccessControlEvaluator. The registry itself does not authorize.

Subject Resolution:
    "alice@example.com"  → email match, case-insensitive
    "alice"              → username match (oldest account wins on ties)
    "   "                → ValidationError (malformed input)
    "nobody"             → SubjectNotFoundError (well-formed, no such user)
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import List, Optional

from diagramcore.config import Settings, settings as default_settings
from diagramcore.exceptions import (
    NotFoundError,
    SubjectNotFoundError,
    ValidationError,
)
from diagramcore.schemas.access import Role
from diagramcore.schemas.share import FolderShareRecord, ShareRecord
from diagramcore.services.store_base import DiagramStore, StoreTransaction

logger = logging.getLogger(__name__)


def _grantable_role(role: Role | str) -> Role:
    try:
        parsed = Role.parse(role)
    except ValueError as exc:
        raise ValidationError(message=f"Unknown role '{role}'", field="role") from exc
    if not parsed.grantable:
        raise ValidationError(
            message="The owner role cannot be granted; transfer ownership instead",
            field="role",
        )
    return parsed


class SharingRegistry:
    """Diagram and folder shares plus subject lookup."""

    def __init__(self, store: DiagramStore, settings: Optional[Settings] = None):
        self._store = store
        self._settings = settings or default_settings

    # ── Diagram shares ────────────────────────────────────────────────────

    async def grant(self, diagram_id: uuid.UUID, subject_id: uuid.UUID, role: Role | str) -> ShareRecord:
        """
        Share `diagram_id` with `subject_id` in `role` (insert or update).

        Raises:
            ValidationError: Unknown or ungrantable role, or the subject owns
                the diagram.
            NotFoundError: Diagram or subject does not exist.
        """
        parsed = _grantable_role(role)
        now = datetime.now(timezone.utc)

        async with self._store.transaction() as tx:
            diagram = await tx.get_diagram(diagram_id)
            if diagram is None:
                raise NotFoundError(resource="diagram", resource_id=str(diagram_id))
            if diagram.owner_id == subject_id:
                raise ValidationError(
                    message="A diagram cannot be shared with its owner",
                    field="subject_id",
                )
            await self._require_actor(tx, subject_id)
            share = await tx.upsert_share(diagram_id, subject_id, parsed, now)

        logger.info("Diagram %s shared with %s as %s", diagram_id, subject_id, parsed.value)
        return share

    async def grant_by_identifier(self, diagram_id: uuid.UUID, identifier: str, role: Role | str) -> ShareRecord:
        """Resolve an email or username, then grant()."""
        subject_id = await self.resolve_subject(identifier)
        return await self.grant(diagram_id, subject_id, role)

    async def revoke(self, diagram_id: uuid.UUID, subject_id: uuid.UUID) -> bool:
        """
        Remove the share if present.

        Returns:
            True when a share was removed, False when there was none. Both
            are successes.
        """
        async with self._store.transaction() as tx:
            removed = await tx.delete_share(diagram_id, subject_id)
        if removed:
            logger.info("Share on diagram %s revoked for %s", diagram_id, subject_id)
        else:
            logger.debug("No share on diagram %s for %s; nothing to revoke", diagram_id, subject_id)
        return removed

    async def list(self, diagram_id: uuid.UUID) -> List[ShareRecord]:
        """Shares of `diagram_id`, oldest first."""
        async with self._store.transaction() as tx:
            return await tx.list_shares(diagram_id)

    async def shared_with(self, subject_id: uuid.UUID) -> List[ShareRecord]:
        """Every diagram share naming `subject_id`."""
        async with self._store.transaction() as tx:
            return await tx.list_shares_for_subject(subject_id)

    async def purge_subject(self, subject_id: uuid.UUID) -> int:
        """Delete every diagram and folder share naming `subject_id`."""
        async with self._store.transaction() as tx:
            removed = await tx.delete_shares_for_subject(subject_id)
        logger.info("Purged %d shares for subject %s", removed, subject_id)
        return removed

    # ── Subjects ──────────────────────────────────────────────────────────

    async def resolve_subject(self, identifier: str) -> uuid.UUID:
        """
        Map an email address or username to an actor id.

        Raises:
            ValidationError: Blank identifier.
            SubjectNotFoundError: No actor matches.
        """
        value = (identifier or "").strip()
        if not value:
            raise ValidationError(message="Enter an email address or username", field="identifier")

        async with self._store.transaction() as tx:
            actor = await tx.find_actor_by_identifier(value)
        if actor is None:
            raise SubjectNotFoundError(identifier=value)
        return actor.id

    # ── Folder shares ─────────────────────────────────────────────────────

    async def grant_folder(self, folder_id: uuid.UUID, subject_id: uuid.UUID, role: Role | str) -> FolderShareRecord:
        """
        Share a folder. Only consulted when folder inheritance is enabled.

        Raises:
            ValidationError: Unknown or ungrantable role, or the subject owns
                the folder.
            NotFoundError: Folder or subject does not exist.
        """
        parsed = _grantable_role(role)
        now = datetime.now(timezone.utc)

        async with self._store.transaction() as tx:
            folder = await tx.get_folder(folder_id)
            if folder is None:
                raise NotFoundError(resource="folder", resource_id=str(folder_id))
            if folder.owner_id == subject_id:
                raise ValidationError(
                    message="A folder cannot be shared with its owner",
                    field="subject_id",
                )
            await self._require_actor(tx, subject_id)
            share = await tx.upsert_folder_share(folder_id, subject_id, parsed, now)

        if not self._settings.folder_share_inheritance:
            logger.warning("Folder %s shared while folder share inheritance is disabled", folder_id)
        logger.info("Folder %s shared with %s as %s", folder_id, subject_id, parsed.value)
        return share

    async def revoke_folder(self, folder_id: uuid.UUID, subject_id: uuid.UUID) -> bool:
        async with self._store.transaction() as tx:
            removed = await tx.delete_folder_share(folder_id, subject_id)
        if removed:
            logger.info("Share on folder %s revoked for %s", folder_id, subject_id)
        return removed

    async def list_folder(self, folder_id: uuid.UUID) -> List[FolderShareRecord]:
        async with self._store.transaction() as tx:
            return await tx.list_folder_shares(folder_id)

    # ── Helpers ───────────────────────────────────────────────────────────

    async def _require_actor(self, tx: StoreTransaction, subject_id: uuid.UUID) -> None:
        if await tx.get_actor(subject_id) is None:
            raise NotFoundError(resource="user", resource_id=str(subject_id))
