"""
Database module.
Contains database connection, models, and the job store.
"""

from jobqueue.db.connection import (
    close_db,
    create_schema,
    create_session_factory,
    get_engine,
    get_session_context,
    init_db,
)
from jobqueue.db.models import Base, Job
from jobqueue.db.repository import JobStore

__all__ = [
    "get_session_context",
    "get_engine",
    "create_session_factory",
    "create_schema",
    "init_db",
    "close_db",
    "Job",
    "JobStore",
    "Base",
]
