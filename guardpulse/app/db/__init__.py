"""
db — Persistence collaborators.

Sub-modules:
    session     — async engine / session factory
    models      — SQLAlchemy ORM tables
    repository  — read/write operations used by the alert engine
"""
