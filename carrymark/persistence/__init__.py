"""
Persistence module for carry marks, their source records and the audit log.
"""

from .database import DatabaseManager, SQLiteDatabase, PostgreSQLDatabase, DatabaseFactory
from .memory import InMemoryCompositeStore, InMemoryRecordStore
from .repositories import CarryMarkRepository, SqlRecordStore, AuditRepository

__all__ = [
    "DatabaseManager",
    "SQLiteDatabase",
    "PostgreSQLDatabase",
    "DatabaseFactory",
    "InMemoryCompositeStore",
    "InMemoryRecordStore",
    "CarryMarkRepository",
    "SqlRecordStore",
    "AuditRepository",
]
