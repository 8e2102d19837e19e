"""
DiagramCore - Folder Hierarchy Manager
======================================

What:  Maintains each owner's folder forest: create, rename, move, delete,
       breadcrumb paths, ancestor chains and listings (children with counts,
       the whole forest with depths).
How:   Folders are a parent-id arena in storage. Every walk goes one parent
       link at a time, bounded by settings.max_folder_depth and guarded by a
       visited set, so a corrupted chain is reported instead of looping.
Who:   Called by the API layer after AccessControlEvaluator.can_manage_folder.

Move Validation (inside ONE store transaction):
    1. Lock and load the folder being moved
    2. Target None → root, always acyclic
    3. Otherwise walk target → root, locking each row;
       meeting `folder_id` on the way → CycleDetectedError
    4. Owner and sibling-name checks
    5. Write the new parent
    Steps 3-5 share the transaction, so the check is re-validated against
    the same state the write commits to.

Delete Cascade Policies:
    REJECT                       fail with FolderNotEmptyError if anything is inside
    RELOCATE_CHILDREN_TO_PARENT  sub-folders and diagrams move up one level
    DELETE_SUBTREE               descendants, their diagrams and all related
                                 shares are removed (destructive; the caller
                                 confirms with the user before asking)
"""

import logging
import uuid
from collections import defaultdict, deque
from datetime import datetime, timezone
from typing import Dict, List, Optional, Set

from diagramcore.config import Settings, settings as default_settings
from diagramcore.exceptions import (
    CycleDetectedError,
    DuplicateNameError,
    FolderNotEmptyError,
    InvalidMoveError,
    NotFoundError,
    ValidationError,
)
from diagramcore.schemas.folder import (
    CascadePolicy,
    FolderDeleteSummary,
    FolderNode,
    FolderRecord,
    FolderTreeEntry,
)
from diagramcore.services.store_base import DiagramStore, StoreTransaction

logger = logging.getLogger(__name__)


class FolderHierarchyManager:
    """
    Tree-preserving folder operations.

    Invariants kept across every method:
        - no folder is its own ancestor
        - parent and child share an owner
        - every diagram's folder reference points to an existing folder
    """

    def __init__(self, store: DiagramStore, settings: Optional[Settings] = None):
        self._store = store
        self._settings = settings or default_settings

    # ── Create / Rename ───────────────────────────────────────────────────

    async def create_folder(
        self,
        owner_id: uuid.UUID,
        name: str,
        parent_id: Optional[uuid.UUID] = None,
    ) -> FolderRecord:
        """
        Create a folder under `parent_id` (root when None).

        Raises:
            ValidationError: Blank or over-long name.
            NotFoundError: Parent folder does not exist.
            InvalidMoveError: Parent belongs to another owner.
            DuplicateNameError: A sibling already uses the name.
        """
        clean_name = self._validate_name(name)
        now = datetime.now(timezone.utc)

        async with self._store.transaction() as tx:
            if parent_id is not None:
                parent = await tx.get_folder(parent_id, for_update=True)
                if parent is None:
                    raise NotFoundError(resource="folder", resource_id=str(parent_id))
                if parent.owner_id != owner_id:
                    raise InvalidMoveError(
                        message="Folders can only be created inside your own folders",
                        context={"parent_id": str(parent_id)},
                    )
                depth = len(await self._ancestors(tx, parent_id))
                if depth >= self._settings.max_folder_depth:
                    raise InvalidMoveError(
                        message="Folders are nested too deeply",
                        context={"parent_id": str(parent_id), "depth": depth},
                    )

            if await tx.folder_name_taken(owner_id, parent_id, clean_name):
                raise DuplicateNameError(name=clean_name)

            folder = await tx.insert_folder(
                FolderRecord(
                    id=uuid.uuid4(),
                    owner_id=owner_id,
                    parent_id=parent_id,
                    name=clean_name,
                    created_at=now,
                    updated_at=now,
                )
            )

        logger.info("Folder %s created (owner=%s, parent=%s)", folder.id, owner_id, parent_id)
        return folder

    async def rename_folder(self, folder_id: uuid.UUID, name: str) -> FolderRecord:
        clean_name = self._validate_name(name)
        now = datetime.now(timezone.utc)

        async with self._store.transaction() as tx:
            folder = await self._require_folder(tx, folder_id, for_update=True)
            if await tx.folder_name_taken(folder.owner_id, folder.parent_id, clean_name, exclude_id=folder_id):
                raise DuplicateNameError(name=clean_name)
            await tx.rename_folder(folder_id, clean_name, now)
            renamed = await self._require_folder(tx, folder_id)

        logger.info("Folder %s renamed", folder_id)
        return renamed

    # ── Move ──────────────────────────────────────────────────────────────

    async def move(self, folder_id: uuid.UUID, new_parent_id: Optional[uuid.UUID]) -> FolderRecord:
        """
        Re-parent `folder_id` under `new_parent_id` (root when None).

        Raises:
            NotFoundError: Folder or target missing, or a dangling link on the
                target's ancestry.
            CycleDetectedError: Target is the folder or one of its descendants.
            InvalidMoveError: Target belongs to another owner, or the move
                would exceed the maximum depth.
            DuplicateNameError: Target already holds a folder with this name.
        """
        if new_parent_id == folder_id:
            raise CycleDetectedError(folder_id=str(folder_id), target_id=str(new_parent_id))

        now = datetime.now(timezone.utc)
        async with self._store.transaction() as tx:
            folder = await self._require_folder(tx, folder_id, for_update=True)

            if new_parent_id is not None:
                # Walk target → root; meeting folder_id means target is a descendant
                target_chain = await self._ancestors(tx, new_parent_id, for_update=True, stop_at=folder_id)
                if target_chain and target_chain[-1].id == folder_id:
                    raise CycleDetectedError(folder_id=str(folder_id), target_id=str(new_parent_id))

                target = target_chain[0]
                if target.owner_id != folder.owner_id:
                    raise InvalidMoveError(
                        message="Folders can only be moved inside your own folders",
                        context={"folder_id": str(folder_id), "target_id": str(new_parent_id)},
                    )
                subtree_depth = await self._subtree_height(tx, folder_id)
                if len(target_chain) + subtree_depth > self._settings.max_folder_depth:
                    raise InvalidMoveError(
                        message="Folders are nested too deeply",
                        context={"folder_id": str(folder_id), "target_id": str(new_parent_id)},
                    )

            if folder.parent_id == new_parent_id:
                return folder

            if await tx.folder_name_taken(folder.owner_id, new_parent_id, folder.name, exclude_id=folder_id):
                raise DuplicateNameError(name=folder.name)

            await tx.set_folder_parent(folder_id, new_parent_id, now)
            moved = await self._require_folder(tx, folder_id)

        logger.info("Folder %s moved from %s to %s", folder_id, folder.parent_id, new_parent_id)
        return moved

    # ── Paths ─────────────────────────────────────────────────────────────

    async def path_of(self, folder_id: uuid.UUID) -> List[FolderRecord]:
        """
        Breadcrumb from the root down to `folder_id` (inclusive).

        Raises:
            NotFoundError: The folder, or any parent on the way up, is missing.
                A missing parent is a consistency violation and is reported
                as-is, never repaired.
            CycleDetectedError: The stored chain loops or exceeds max depth.
        """
        async with self._store.transaction() as tx:
            chain = await self._ancestors(tx, folder_id)
        return list(reversed(chain))

    async def ancestor_ids(self, folder_id: uuid.UUID) -> List[uuid.UUID]:
        """Ids from `folder_id` up to its root (leaf first)."""
        async with self._store.transaction() as tx:
            chain = await self._ancestors(tx, folder_id)
        return [folder.id for folder in chain]

    async def list_children(self, parent_id: Optional[uuid.UUID], owner_id: uuid.UUID) -> List[FolderRecord]:
        async with self._store.transaction() as tx:
            return await tx.list_child_folders(parent_id, owner_id)

    async def list_child_nodes(self, parent_id: Optional[uuid.UUID], owner_id: uuid.UUID) -> List[FolderNode]:
        """Children of `parent_id` (root when None), each with its direct folder and diagram counts."""
        async with self._store.transaction() as tx:
            return await tx.list_child_folder_nodes(parent_id, owner_id)

    async def tree(self, owner_id: uuid.UUID) -> List[FolderTreeEntry]:
        """
        The owner's whole forest, ordered by depth then name.

        Roots have depth 0. Folders that no root reaches (a stored cycle) are
        left out and logged.
        """
        async with self._store.transaction() as tx:
            folders = await tx.list_owner_folders(owner_id)

        by_parent: Dict[Optional[uuid.UUID], List[FolderRecord]] = defaultdict(list)
        for folder in folders:
            by_parent[folder.parent_id].append(folder)

        entries: List[FolderTreeEntry] = []
        level = by_parent.get(None, [])
        depth = 0
        while level:
            entries.extend(FolderTreeEntry(**folder.model_dump(), depth=depth) for folder in level)
            level = sorted(
                (child for folder in level for child in by_parent.get(folder.id, [])),
                key=lambda folder: (folder.name, folder.id),
            )
            depth += 1

        if len(entries) < len(folders):
            logger.warning(
                "Folder tree of owner %s skips %d unreachable folders",
                owner_id,
                len(folders) - len(entries),
            )
        return entries

    # ── Delete ────────────────────────────────────────────────────────────

    async def delete(
        self,
        folder_id: uuid.UUID,
        cascade_policy: Optional[CascadePolicy | str] = None,
    ) -> FolderDeleteSummary:
        """
        Delete `folder_id` according to `cascade_policy`.

        None falls back to settings.folder_delete_policy.

        Raises:
            NotFoundError: Folder does not exist.
            FolderNotEmptyError: REJECT policy and the folder has children.
        """
        policy = CascadePolicy(cascade_policy) if cascade_policy is not None else self._settings.folder_delete_policy
        now = datetime.now(timezone.utc)

        async with self._store.transaction() as tx:
            folder = await self._require_folder(tx, folder_id, for_update=True)
            summary = FolderDeleteSummary(folder_id=folder_id, policy=policy)

            if policy is CascadePolicy.REJECT:
                children = await tx.list_child_folders(folder_id)
                diagrams = await tx.count_folder_diagrams(folder_id)
                if children or diagrams:
                    raise FolderNotEmptyError(
                        folder_id=str(folder_id),
                        child_folders=len(children),
                        diagrams=diagrams,
                    )
                await tx.delete_folder_shares_for_folders([folder_id])
                summary.deleted_folders = await tx.delete_folders([folder_id])

            elif policy is CascadePolicy.RELOCATE_CHILDREN_TO_PARENT:
                summary.relocated_folders, summary.relocated_diagrams = await self._relocate_children(
                    tx, folder, now
                )
                await tx.delete_folder_shares_for_folders([folder_id])
                summary.deleted_folders = await tx.delete_folders([folder_id])

            else:
                subtree = await self._collect_subtree(tx, folder_id)
                diagram_ids = await tx.list_diagram_ids_in_folders(subtree)
                await tx.delete_shares_for_diagrams(diagram_ids)
                summary.deleted_diagrams = await tx.delete_diagrams(diagram_ids)
                await tx.delete_folder_shares_for_folders(subtree)
                summary.deleted_folders = await tx.delete_folders(subtree)

        logger.info(
            "Folder %s deleted (policy=%s, folders=%d, diagrams=%d, relocated folders=%d, relocated diagrams=%d)",
            folder_id,
            policy.value,
            summary.deleted_folders,
            summary.deleted_diagrams,
            summary.relocated_folders,
            summary.relocated_diagrams,
        )
        return summary

    # ── Helpers ───────────────────────────────────────────────────────────

    def _validate_name(self, name: str) -> str:
        clean = (name or "").strip()
        if not clean:
            raise ValidationError(message="Folder name cannot be empty", field="name")
        if len(clean) > self._settings.max_folder_name_length:
            raise ValidationError(
                message=f"Folder name cannot exceed {self._settings.max_folder_name_length} characters",
                field="name",
            )
        if "/" in clean:
            raise ValidationError(message="Folder name cannot contain '/'", field="name")
        return clean

    async def _require_folder(self, tx: StoreTransaction, folder_id: uuid.UUID, for_update: bool = False) -> FolderRecord:
        folder = await tx.get_folder(folder_id, for_update=for_update)
        if folder is None:
            raise NotFoundError(resource="folder", resource_id=str(folder_id))
        return folder

    async def _ancestors(
        self,
        tx: StoreTransaction,
        folder_id: uuid.UUID,
        for_update: bool = False,
        stop_at: Optional[uuid.UUID] = None,
    ) -> List[FolderRecord]:
        """
        Folders from `folder_id` up to its root, leaf first.

        Stops early (including it) when `stop_at` is met.
        """
        chain: List[FolderRecord] = []
        seen: Set[uuid.UUID] = set()
        current: Optional[uuid.UUID] = folder_id

        while current is not None:
            if current in seen or len(chain) >= self._settings.max_folder_depth:
                raise CycleDetectedError(
                    folder_id=str(folder_id),
                    context={"corrupt_at": str(current), "depth": len(chain)},
                )
            folder = await tx.get_folder(current, for_update=for_update)
            if folder is None:
                raise NotFoundError(
                    resource="folder",
                    resource_id=str(current),
                    context={"walk_from": str(folder_id)},
                )
            seen.add(current)
            chain.append(folder)
            if stop_at is not None and current == stop_at:
                break
            current = folder.parent_id

        return chain

    async def _collect_subtree(self, tx: StoreTransaction, folder_id: uuid.UUID) -> List[uuid.UUID]:
        """Breadth-first ids of `folder_id` and every descendant (root first)."""
        ordered: List[uuid.UUID] = []
        seen: Set[uuid.UUID] = set()
        queue = deque([folder_id])
        while queue:
            current = queue.popleft()
            if current in seen:
                raise CycleDetectedError(folder_id=str(folder_id), context={"corrupt_at": str(current)})
            seen.add(current)
            ordered.append(current)
            for child in await tx.list_child_folders(current):
                queue.append(child.id)
        return ordered

    async def _subtree_height(self, tx: StoreTransaction, folder_id: uuid.UUID) -> int:
        """Number of levels in the subtree rooted at `folder_id` (1 for a leaf)."""
        height = 0
        level = [folder_id]
        while level:
            height += 1
            if height > self._settings.max_folder_depth:
                break
            next_level: List[uuid.UUID] = []
            for current in level:
                next_level.extend(child.id for child in await tx.list_child_folders(current))
            level = next_level
        return height

    async def _relocate_children(self, tx: StoreTransaction, folder: FolderRecord, now: datetime) -> tuple[int, int]:
        children = await tx.list_child_folders(folder.id)
        for child in children:
            if await tx.folder_name_taken(folder.owner_id, folder.parent_id, child.name, exclude_id=folder.id):
                raise DuplicateNameError(
                    name=child.name,
                    context={"relocating_from": str(folder.id)},
                )
        # A child may take over the deleted folder's name
        await tx.rename_folder(folder.id, str(folder.id), now)
        relocated_folders = await tx.reparent_child_folders(folder.id, folder.parent_id, now)
        relocated_diagrams = await tx.relocate_diagrams(folder.id, folder.parent_id)
        return relocated_folders, relocated_diagrams
