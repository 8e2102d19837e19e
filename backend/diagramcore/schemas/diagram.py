"""
DiagramCore - Diagram Records and Save Results
==============================================

What:  The diagram record returned by the store and the discriminated result
       of AutosaveEngine.save().
How:   Every save outcome is a small frozen model tagged by `outcome`, and
       `SaveResult` is the annotated union over them. Callers branch on
       `result.outcome` (or isinstance) instead of catching exceptions:
       a conflict is an expected outcome of concurrent editing, not an error.

    saved                → write applied, `version` is the new version
    conflict             → stored version moved on; winner's content attached
    not_found            → the diagram no longer exists
    storage_unavailable  → transient failure; re-fetch, then retry
"""

import uuid
from datetime import datetime
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field


class DiagramRecord(BaseModel):
    """
    A diagram row, content included.

    Content is opaque to the core: raw bytes plus the encoding tag the caller
    declared when it last saved.
    """

    id: uuid.UUID
    owner_id: uuid.UUID
    folder_id: Optional[uuid.UUID] = None
    name: str
    content: bytes = b""
    content_encoding: str
    version: int = Field(ge=1)
    is_public: bool = False
    created_at: datetime
    updated_at: datetime
    updated_by: Optional[uuid.UUID] = None

    model_config = {"from_attributes": True, "frozen": True}


class DiagramSummary(BaseModel):
    """Listing view of a diagram without its content."""

    id: uuid.UUID
    owner_id: uuid.UUID
    folder_id: Optional[uuid.UUID] = None
    name: str
    version: int
    is_public: bool = False
    updated_at: datetime

    model_config = {"from_attributes": True, "frozen": True}


# ══════════════════════════════════════════════════════════════════════════
# Save Results
# ══════════════════════════════════════════════════════════════════════════


class Saved(BaseModel):
    outcome: Literal["saved"] = "saved"
    diagram_id: uuid.UUID
    version: int
    updated_at: datetime
    updated_by: uuid.UUID

    model_config = {"frozen": True}


class Conflict(BaseModel):
    """
    The stored version no longer matches the caller's expected version.

    Carries the current stored state so the caller can discard, overwrite
    (by saving again with `version`), or prompt the user.
    """

    outcome: Literal["conflict"] = "conflict"
    diagram_id: uuid.UUID
    version: int
    content: bytes
    content_encoding: str
    updated_at: datetime
    updated_by: Optional[uuid.UUID] = None

    model_config = {"frozen": True}


class NotFound(BaseModel):
    outcome: Literal["not_found"] = "not_found"
    diagram_id: uuid.UUID

    model_config = {"frozen": True}


class StorageUnavailable(BaseModel):
    """
    Transient storage failure.

    The write may or may not have been applied; callers re-fetch the diagram
    before retrying.
    """

    outcome: Literal["storage_unavailable"] = "storage_unavailable"
    diagram_id: uuid.UUID
    message: str
    retry_after: Optional[int] = None

    model_config = {"frozen": True}


SaveResult = Annotated[
    Union[Saved, Conflict, NotFound, StorageUnavailable],
    Field(discriminator="outcome"),
]
