"""
DiagramCore - Custom Exception Hierarchy
========================================

What:  Application-specific exceptions for every failure the core reports.
How:   Each exception carries a caller-safe message and an optional context
       dict. The API layer maps the classes to status codes; context is for
       server-side logs only.
Who:   Raised by services and by the SQL store; caught by the API layer.

Exception Hierarchy:
    DiagramCoreError (base)
    ├── ValidationError            → caller input that can be corrected
    ├── NotFoundError              → entity missing (terminal)
    ├── ForbiddenError             → access denied (never reveals existence)
    ├── InvalidMoveError           → folder tree invariant would break
    │   └── CycleDetectedError     → target is the folder or a descendant
    ├── DuplicateNameError         → sibling folder with the same name
    ├── FolderNotEmptyError        → delete with the reject policy
    ├── SubjectNotFoundError       → share target could not be resolved
    ├── StorageUnavailableError    → transient; caller may retry with backoff
    └── DatabaseError              → unexpected storage failure

A save conflict is NOT an exception: the autosave engine returns it as an
explicit result variant (see diagramcore.schemas.diagram).
"""

from typing import Any, Dict, Optional


class DiagramCoreError(Exception):
    """
    Base exception for all DiagramCore errors.

    Attributes:
        message:  Human-readable description (safe to show to a user)
        context:  Additional debug info (logged, never returned to clients)
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


class ValidationError(DiagramCoreError):
    """
    Raised when caller input fails validation.

    When:  Blank folder name, oversized content, ungrantable role, sharing a
           diagram with its own owner, non-positive expected version.
    """

    def __init__(
        self,
        message: str = "Validation failed",
        field: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if field:
            ctx["field"] = field
        super().__init__(message=message, context=ctx)
        self.field = field


class NotFoundError(DiagramCoreError):
    """
    Raised when a requested entity does not exist.

    The store returns None for missing rows; services convert that into this
    exception. A dangling folder parent reference is also reported this way.
    """

    def __init__(
        self,
        resource: str = "resource",
        resource_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = f"The requested {resource} was not found"
        if resource_id:
            message = f"{resource} with ID '{resource_id}' was not found"
        ctx = context or {}
        ctx["resource"] = resource
        if resource_id:
            ctx["resource_id"] = resource_id
        super().__init__(message=message, context=ctx)
        self.resource = resource
        self.resource_id = resource_id


class ForbiddenError(DiagramCoreError):
    """
    Raised when an actor is not allowed to perform an action.

    The message is identical whether the diagram exists or not, so a denied
    caller cannot probe for the existence of diagrams it cannot read.
    """

    def __init__(
        self,
        action: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if action:
            ctx["action"] = action
        super().__init__(message="You do not have access to this resource", context=ctx)
        self.action = action


class InvalidMoveError(DiagramCoreError):
    """Raised when a folder move or placement would break the tree rules."""

    def __init__(
        self,
        message: str = "This folder cannot be moved there",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class CycleDetectedError(InvalidMoveError):
    """
    Raised when a move targets the folder itself or one of its descendants.

    Also raised when an ancestor walk revisits a folder or exceeds the
    configured maximum depth, both of which mean the stored tree is corrupt.
    """

    def __init__(
        self,
        folder_id: Optional[str] = None,
        target_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if folder_id:
            ctx["folder_id"] = folder_id
        if target_id:
            ctx["target_id"] = target_id
        super().__init__(
            message="Cannot move a folder into itself or one of its subfolders",
            context=ctx,
        )


class DuplicateNameError(DiagramCoreError):
    """Raised when a sibling folder already uses the name (case-insensitive)."""

    def __init__(
        self,
        name: str = "",
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        ctx["name"] = name
        label = f"named '{name}'" if name else "with this name"
        super().__init__(
            message=f"A folder {label} already exists in this location",
            context=ctx,
        )
        self.name = name


class FolderNotEmptyError(DiagramCoreError):
    """Raised by delete_folder with the reject policy when children exist."""

    def __init__(
        self,
        folder_id: Optional[str] = None,
        child_folders: int = 0,
        diagrams: int = 0,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        ctx.update({"folder_id": folder_id, "child_folders": child_folders, "diagrams": diagrams})
        super().__init__(
            message="The folder is not empty. Move or delete its contents first.",
            context=ctx,
        )
        self.child_folders = child_folders
        self.diagrams = diagrams


class SubjectNotFoundError(DiagramCoreError):
    """
    Raised when a share target cannot be resolved to an actor.

    Kept separate from ValidationError so the UI can say "no such user"
    rather than "invalid request".
    """

    def __init__(
        self,
        identifier: str = "",
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        ctx["identifier"] = identifier
        super().__init__(message=f"No user matches '{identifier}'", context=ctx)
        self.identifier = identifier


class StorageUnavailableError(DiagramCoreError):
    """
    Raised when the storage backend is temporarily unreachable.

    When:  Connection refused or dropped, pool checkout timed out, database
           restarting. The caller decides whether and how to retry.
    """

    def __init__(
        self,
        message: str = "Storage is temporarily unavailable. Please try again shortly.",
        retry_after: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if retry_after:
            ctx["retry_after"] = retry_after
        super().__init__(message=message, context=ctx)
        self.retry_after = retry_after


class DatabaseError(DiagramCoreError):
    """
    Raised when a database operation fails for a non-transient reason.

    The message is always generic; the constraint name or statement that
    failed goes into context for the server log.
    """

    def __init__(
        self,
        message: str = "A database error occurred. Please try again later.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)
