"""
DiagramCore - Package Initializer
=================================

What: Persistence and access-control core of the diagramming application.
Who:  Imported by the API layer (out of this package), Alembic, and pytest.

Architecture Note:
    The core follows the same layered layout as the rest of the backend:

    ┌─────────────────────────────────────┐
    │     main.DiagramCore (surface)      │  ← what the API layer calls
    ├─────────────────────────────────────┤
    │   Services (autosave, folders,      │  ← rules, validation, results
    │   sharing, access control)          │
    ├─────────────────────────────────────┤
    │   Store contract + SQL store        │  ← atomic reads / conditional writes
    ├─────────────────────────────────────┤
    │   Models & Schemas, Database        │  ← SQLAlchemy ORM + Pydantic records
    └─────────────────────────────────────┘

    Services never import SQLAlchemy; they only talk to `DiagramStore`.
    Session/auth state stays outside the core: every operation receives the
    acting user's id explicitly.
"""

__version__ = "1.0.0"
