"""
DiagramCore - Access Control Evaluator
======================================

What:  Decides whether an actor may read, write, share or delete a diagram.
How:   Computes the actor's effective role from storage, then checks the
       role's action set. Pure lookups: the evaluator never writes.
Who:   Consulted by the API layer before every call into the autosave engine,
       the folder manager, the sharing registry or the diagram service.

Resolution Order:
    1. Actor owns the diagram              → OWNER (short-circuit)
    2. Direct share on the diagram         → its role
    3. Folder shares on the ancestry       → most privileged one found
       (only when settings.folder_share_inheritance is on; combined with 2
       by taking the more privileged role)
    4. Diagram is public                   → VIEWER
       (only when settings.public_diagrams_readable is on)
    5. Anything else                       → no role, every action denied

Failure Policy:
    Fail closed. A missing diagram, a dangling folder link, a cyclic folder
    chain, or a storage failure all produce "deny" plus a WARNING log line.
    `require()` turns a deny into ForbiddenError without revealing whether the
    diagram exists.
"""

import logging
import uuid
from typing import List, Optional, Set

from diagramcore.config import Settings, settings as default_settings
from diagramcore.exceptions import DiagramCoreError, ForbiddenError
from diagramcore.schemas.access import Action, Role
from diagramcore.schemas.diagram import DiagramRecord
from diagramcore.services.store_base import DiagramStore, StoreTransaction

logger = logging.getLogger(__name__)


class _BrokenChain(Exception):
    """Folder ancestry could not be walked to a root."""


class AccessControlEvaluator:
    """
    Resolves permissions for (actor, diagram, action) triples.

    Stateless apart from its collaborators; safe to share between concurrent
    requests.
    """

    def __init__(self, store: DiagramStore, settings: Optional[Settings] = None):
        self._store = store
        self._settings = settings or default_settings

    async def authorize(self, actor_id: uuid.UUID, diagram_id: uuid.UUID, action: Action | str) -> bool:
        """
        Return True when `actor_id` may perform `action` on `diagram_id`.

        Never raises for storage problems or unknown ids; those deny.

        Raises:
            ValueError: `action` is not a known action name (programming error).
        """
        action = Action(action)
        role = await self.access_role(actor_id, diagram_id)
        allowed = role is not None and role.allows(action)
        if not allowed:
            logger.info(
                "Denied %s on diagram %s for actor %s (role=%s)",
                action.value,
                diagram_id,
                actor_id,
                role.value if role else None,
            )
        return allowed

    async def require(self, actor_id: uuid.UUID, diagram_id: uuid.UUID, action: Action | str) -> None:
        """
        Raise ForbiddenError unless authorize() allows the action.

        The same error is raised for missing diagrams, so callers cannot
        probe for ids they are not allowed to see.
        """
        action = Action(action)
        if not await self.authorize(actor_id, diagram_id, action):
            raise ForbiddenError(
                action=action.value,
                context={"diagram_id": str(diagram_id), "actor_id": str(actor_id)},
            )

    async def access_role(self, actor_id: uuid.UUID, diagram_id: uuid.UUID) -> Optional[Role]:
        """
        Effective role of `actor_id` on `diagram_id`, or None for no access.
        """
        try:
            async with self._store.transaction() as tx:
                diagram = await tx.get_diagram(diagram_id)
                if diagram is None:
                    return None
                return await self._resolve(tx, actor_id, diagram)
        except DiagramCoreError as exc:
            # Fail closed: an unresolvable lookup is a deny, never an allow
            logger.warning(
                "Access lookup failed for diagram %s, actor %s: %s",
                diagram_id,
                actor_id,
                exc.message,
            )
            return None

    async def can_manage_folder(self, actor_id: uuid.UUID, folder_id: uuid.UUID) -> bool:
        """
        Folder create/rename/move/delete is reserved to the folder's owner.
        """
        try:
            async with self._store.transaction() as tx:
                folder = await tx.get_folder(folder_id)
        except DiagramCoreError as exc:
            logger.warning("Folder lookup failed for %s: %s", folder_id, exc.message)
            return False
        return folder is not None and folder.owner_id == actor_id

    # ── Resolution steps ──────────────────────────────────────────────────

    async def _resolve(self, tx: StoreTransaction, actor_id: uuid.UUID, diagram: DiagramRecord) -> Optional[Role]:
        if diagram.owner_id == actor_id:
            return Role.OWNER

        share = await tx.get_share(diagram.id, actor_id)
        role = share.role if share is not None else None

        if self._settings.folder_share_inheritance and diagram.folder_id is not None:
            if role is None or role.rank < Role.OWNER_DELEGATE.rank:
                try:
                    inherited = await self._inherited_role(tx, actor_id, diagram.folder_id)
                except _BrokenChain as exc:
                    logger.warning("Ignoring folder inheritance for diagram %s: %s", diagram.id, exc)
                    inherited = None
                role = Role.most_privileged(role, inherited)

        if role is None and diagram.is_public and self._settings.public_diagrams_readable:
            role = Role.VIEWER

        return role

    async def _inherited_role(self, tx: StoreTransaction, actor_id: uuid.UUID, folder_id: uuid.UUID) -> Optional[Role]:
        """Least-restrictive folder share found along the ancestry."""
        chain = await self._ancestry(tx, folder_id)
        shares = await tx.get_folder_shares(chain, actor_id)
        return Role.most_privileged(*(share.role for share in shares))

    async def _ancestry(self, tx: StoreTransaction, folder_id: uuid.UUID) -> List[uuid.UUID]:
        chain: List[uuid.UUID] = []
        seen: Set[uuid.UUID] = set()
        current: Optional[uuid.UUID] = folder_id
        while current is not None:
            if current in seen or len(chain) >= self._settings.max_folder_depth:
                raise _BrokenChain(f"cyclic or too deep folder chain at {current}")
            folder = await tx.get_folder(current)
            if folder is None:
                raise _BrokenChain(f"dangling folder reference {current}")
            seen.add(current)
            chain.append(current)
            current = folder.parent_id
        return chain
