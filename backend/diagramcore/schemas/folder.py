"""
DiagramCore - Folder Records
============================

What:  Pydantic records for folders as the store returns them, the tree and
       node views used by folder listings, the cascade policies of
       delete_folder, and the delete summary.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class CascadePolicy(str, Enum):
    """What delete_folder does with a folder's children."""

    REJECT = "reject"
    RELOCATE_CHILDREN_TO_PARENT = "relocate_children_to_parent"
    DELETE_SUBTREE = "delete_subtree"


class FolderRecord(BaseModel):
    """A folder row. parent_id None means the folder sits at the root."""

    id: uuid.UUID
    owner_id: uuid.UUID
    parent_id: Optional[uuid.UUID] = None
    name: str
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True, "frozen": True}


class FolderTreeEntry(FolderRecord):
    """A folder in its owner's forest; depth 0 is a root folder."""

    depth: int = Field(ge=0)


class FolderNode(FolderRecord):
    """A folder listed with how much it holds directly."""

    children_count: int = Field(default=0, ge=0)
    diagrams_count: int = Field(default=0, ge=0)


class FolderDeleteSummary(BaseModel):
    """
    What delete_folder actually did.

    Exactly one folder is deleted under REJECT and RELOCATE; DELETE_SUBTREE
    counts every descendant too.
    """

    folder_id: uuid.UUID
    policy: CascadePolicy
    deleted_folders: int = Field(default=0, ge=0)
    deleted_diagrams: int = Field(default=0, ge=0)
    relocated_folders: int = Field(default=0, ge=0)
    relocated_diagrams: int = Field(default=0, ge=0)
