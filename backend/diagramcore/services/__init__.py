# Services package init
"""
DiagramCore - Services Layer
============================

What:  Business rules between the caller (API layer) and persistence.
How:   Each service takes a DiagramStore and an optional Settings; every call
       opens its own store transaction, so services hold no per-request state
       and can be shared across concurrent requests.

Service Inventory:
    - DiagramStore (abstract): Persistence contract the services depend on
    - SqlAlchemyDiagramStore: DiagramStore on async SQLAlchemy
    - AccessControlEvaluator: Effective role and allow/deny per action
    - FolderHierarchyManager: Folder tree create/rename/move/delete/paths
    - SharingRegistry: Diagram and folder shares, subject lookup
    - AutosaveEngine: Version-checked content saves
    - DiagramService: Diagram create/move/visibility/delete
"""
