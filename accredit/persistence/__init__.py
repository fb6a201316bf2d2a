"""
Persistence module for the catalog, credential and user stores.
"""

from .database import DatabaseManager, SQLiteDatabase, PostgreSQLDatabase, DatabaseFactory, SCHEMA
from .repositories import (
    BaseRepository, UserRepository, CourseRepository, StudentCourseRepository
)

__all__ = [
    "DatabaseManager",
    "SQLiteDatabase",
    "PostgreSQLDatabase",
    "DatabaseFactory",
    "SCHEMA",
    "BaseRepository",
    "UserRepository",
    "CourseRepository",
    "StudentCourseRepository",
]
