"""
DiagramCore - Records and Result Types
======================================

What:  Pydantic models exchanged between services, the store and callers.
Why:   Kept apart from the SQLAlchemy models so services never hold ORM
       objects bound to a session.
"""
