"""Database module for SQLAlchemy models and session management."""

from takeoff.database.base import Base, async_session_maker, engine
from takeoff.database.client import DatabaseClient, close_database, db_client, init_database
from takeoff.database.models import PlanChunk, PlanSheet, TakeoffBatch, TakeoffJob

__all__ = [
    "Base",
    "engine",
    "async_session_maker",
    "DatabaseClient",
    "db_client",
    "init_database",
    "close_database",
    "TakeoffJob",
    "TakeoffBatch",
    "PlanChunk",
    "PlanSheet",
]
