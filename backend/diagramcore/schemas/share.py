"""
DiagramCore - Share and Actor Records
=====================================

What:  Records for diagram shares, folder shares and actors.
"""

import uuid
from datetime import datetime

from pydantic import BaseModel

from diagramcore.schemas.access import Role


class ShareRecord(BaseModel):
    """One (diagram, subject) grant. At most one exists per pair."""

    diagram_id: uuid.UUID
    subject_id: uuid.UUID
    role: Role
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True, "frozen": True}


class FolderShareRecord(BaseModel):
    """One (folder, subject) grant, inherited by everything below the folder."""

    folder_id: uuid.UUID
    subject_id: uuid.UUID
    role: Role
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True, "frozen": True}


class ActorRecord(BaseModel):
    id: uuid.UUID
    email: str
    username: str

    model_config = {"from_attributes": True, "frozen": True}
