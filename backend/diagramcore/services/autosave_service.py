"""
DiagramCore - Diagram Autosave Engine
=====================================

What:  Applies content saves from any number of concurrent editor sessions
       without ever losing or merging a write.
How:   Optimistic concurrency. The caller sends the version it last saw; the
       store runs ONE conditional update keyed on (id, version). If it hits,
       the save is applied and the version goes up by one. If it misses, the
       current row is read back in the same transaction and returned to the
       caller as a Conflict.
Who:   Called by the API layer after AccessControlEvaluator allowed WRITE.

Save Flow:
    ┌──────────┐   ┌─────────────────────────┐  hit   ┌──────────────────┐
    │ validate │──▶│ UPDATE ... WHERE id AND │───────▶│ Saved(version+1) │
    └──────────┘   │ version = expected      │        └──────────────────┘
                   └─────────────────────────┘
                               │ miss
                               ▼
                      ┌─────────────────┐  none  ┌──────────┐
                      │ read current row│───────▶│ NotFound │
                      └─────────────────┘        └──────────┘
                               │ present
                               ▼
                 ┌──────────────────────────────┐
                 │ Conflict(current version,    │
                 │          current content)    │
                 └──────────────────────────────┘

Guarantees:
    - Of N concurrent saves with the same expected version, exactly one is
      Saved; all others are Conflict
    - Storage is never written on a miss
    - No retries here: StorageUnavailable goes back to the caller, which
      re-fetches with load() before deciding what to do
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

from diagramcore.config import Settings, settings as default_settings
from diagramcore.exceptions import NotFoundError, StorageUnavailableError, ValidationError
from diagramcore.schemas.diagram import (
    Conflict,
    DiagramRecord,
    NotFound,
    SaveResult,
    Saved,
    StorageUnavailable,
)
from diagramcore.services.store_base import DiagramStore

logger = logging.getLogger(__name__)


class AutosaveEngine:
    """Version-checked content writes."""

    def __init__(self, store: DiagramStore, settings: Optional[Settings] = None):
        self._store = store
        self._settings = settings or default_settings

    async def save(
        self,
        diagram_id: uuid.UUID,
        actor_id: uuid.UUID,
        expected_version: int,
        content: bytes,
        encoding: Optional[str] = None,
    ) -> SaveResult:
        """
        Replace the diagram's content if it is still at `expected_version`.

        Args:
            diagram_id:        Diagram to write
            actor_id:          Recorded as updated_by on success
            expected_version:  Version the caller's copy is based on (>= 1)
            content:           Opaque content bytes
            encoding:          Content encoding tag; defaults to
                               settings.default_content_encoding

        Returns:
            Saved | Conflict | NotFound | StorageUnavailable

        Raises:
            ValidationError: Malformed call (bad version, content type or size).
            DatabaseError: Non-transient storage failure.
        """
        self._validate(expected_version, content, encoding)
        content = bytes(content)
        encoding = encoding or self._settings.default_content_encoding
        now = datetime.now(timezone.utc)

        try:
            async with self._store.transaction() as tx:
                if await tx.cas_update(diagram_id, expected_version, content, encoding, actor_id, now):
                    result = Saved(
                        diagram_id=diagram_id,
                        version=expected_version + 1,
                        updated_at=now,
                        updated_by=actor_id,
                    )
                else:
                    current = await tx.get_diagram(diagram_id)
                    if current is None:
                        result = NotFound(diagram_id=diagram_id)
                    else:
                        result = Conflict(
                            diagram_id=diagram_id,
                            version=current.version,
                            content=current.content,
                            content_encoding=current.content_encoding,
                            updated_at=current.updated_at,
                            updated_by=current.updated_by,
                        )
        except StorageUnavailableError as exc:
            logger.warning("Save of diagram %s failed: storage unavailable", diagram_id)
            return StorageUnavailable(
                diagram_id=diagram_id,
                message=exc.message,
                retry_after=exc.retry_after,
            )

        if result.outcome == "saved":
            logger.info("Diagram %s saved at version %d by %s", diagram_id, result.version, actor_id)
        elif result.outcome == "conflict":
            logger.info(
                "Save conflict on diagram %s: expected version %d, stored version %d",
                diagram_id,
                expected_version,
                result.version,
            )
        else:
            logger.info("Save of diagram %s rejected: diagram not found", diagram_id)
        return result

    async def load(self, diagram_id: uuid.UUID) -> DiagramRecord:
        """
        Current state of a diagram, content included.

        Raises:
            NotFoundError: Diagram does not exist.
        """
        async with self._store.transaction() as tx:
            diagram = await tx.get_diagram(diagram_id)
        if diagram is None:
            raise NotFoundError(resource="diagram", resource_id=str(diagram_id))
        return diagram

    def _validate(self, expected_version: int, content: bytes, encoding: Optional[str]) -> None:
        if isinstance(expected_version, bool) or not isinstance(expected_version, int) or expected_version < 1:
            raise ValidationError(
                message="expected_version must be a positive integer",
                field="expected_version",
            )
        if not isinstance(content, (bytes, bytearray)):
            raise ValidationError(message="Content must be bytes", field="content")
        size = len(content)
        if size > self._settings.max_content_bytes:
            raise ValidationError(
                message=f"Content exceeds the maximum size of {self._settings.max_content_bytes} bytes",
                field="content",
                context={"size": size},
            )
        if encoding is not None and not encoding.strip():
            raise ValidationError(message="Content encoding cannot be blank", field="encoding")
