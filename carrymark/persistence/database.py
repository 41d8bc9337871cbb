"""
Database management and connection handling.

Queries are written with ``?`` placeholders; each backend rewrites them to its
driver's parameter style.
"""

import logging
import sqlite3
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, Dict, List, Optional

import psycopg2
from psycopg2.extras import RealDictCursor

from ..core.exceptions import ConfigurationError, IntegrityViolation, PersistenceError


logger = logging.getLogger(__name__)


def build_schema(real_type: str, id_column: str) -> Dict[str, str]:
    """Table definitions shared by both backends."""
    return {
        "carry_marks": f"""
            CREATE TABLE IF NOT EXISTS carry_marks (
                student_id VARCHAR(255) NOT NULL,
                class_id VARCHAR(255) NOT NULL,
                subject VARCHAR(255) NOT NULL,
                term VARCHAR(50) NOT NULL,
                academic_year VARCHAR(20) NOT NULL,
                assessment_average {real_type},
                assignment_average {real_type},
                attendance_percentage {real_type},
                weights TEXT NOT NULL,
                final_score {real_type},
                grade VARCHAR(10),
                assessment_breakdown TEXT NOT NULL,
                manually_adjusted_fields TEXT NOT NULL,
                computed_at VARCHAR(40) NOT NULL,
                created_at VARCHAR(40) NOT NULL,
                version INTEGER NOT NULL,
                PRIMARY KEY (student_id, class_id, subject, term, academic_year)
            )
        """,
        "assessments": f"""
            CREATE TABLE IF NOT EXISTS assessments (
                id VARCHAR(255) PRIMARY KEY,
                student_id VARCHAR(255) NOT NULL,
                class_id VARCHAR(255) NOT NULL,
                subject VARCHAR(255) NOT NULL,
                assessment_type VARCHAR(20) NOT NULL,
                raw_score {real_type} NOT NULL,
                max_score {real_type} NOT NULL DEFAULT 100,
                term VARCHAR(50) NOT NULL,
                academic_year VARCHAR(20) NOT NULL,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                UNIQUE (student_id, class_id, subject, term, academic_year, assessment_type)
            )
        """,
        "assignments": f"""
            CREATE TABLE IF NOT EXISTS assignments (
                id VARCHAR(255) PRIMARY KEY,
                class_id VARCHAR(255) NOT NULL,
                subject VARCHAR(255) NOT NULL,
                title VARCHAR(255) NOT NULL,
                max_score {real_type} NOT NULL DEFAULT 100,
                term VARCHAR(50) NOT NULL,
                academic_year VARCHAR(20) NOT NULL,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """,
        "assignment_submissions": f"""
            CREATE TABLE IF NOT EXISTS assignment_submissions (
                assignment_id VARCHAR(255) NOT NULL REFERENCES assignments(id) ON DELETE CASCADE,
                student_id VARCHAR(255) NOT NULL,
                raw_score {real_type},
                submitted_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                PRIMARY KEY (assignment_id, student_id)
            )
        """,
        "attendance": """
            CREATE TABLE IF NOT EXISTS attendance (
                student_id VARCHAR(255) NOT NULL,
                class_id VARCHAR(255) NOT NULL,
                date VARCHAR(10) NOT NULL,
                status VARCHAR(20) NOT NULL,
                term VARCHAR(50) NOT NULL,
                academic_year VARCHAR(20) NOT NULL,
                PRIMARY KEY (student_id, class_id, date)
            )
        """,
        "audit_log": f"""
            CREATE TABLE IF NOT EXISTS audit_log (
                seq {id_column},
                id VARCHAR(255) UNIQUE NOT NULL,
                action VARCHAR(50) NOT NULL,
                resource_id VARCHAR(512) NOT NULL,
                actor VARCHAR(255),
                data TEXT NOT NULL,
                prev_hash VARCHAR(64) NOT NULL,
                hash VARCHAR(64) NOT NULL,
                recorded_at VARCHAR(40) NOT NULL
            )
        """,
    }


class DatabaseManager(ABC):
    """Abstract base class for database management."""

    @abstractmethod
    def connect(self) -> Any:
        """Create a database connection."""
        pass

    @abstractmethod
    def execute_query(self, query: str, params: Optional[tuple] = None) -> List[Dict[str, Any]]:
        """Execute a query and return results."""
        pass

    @abstractmethod
    def execute_update(self, query: str, params: Optional[tuple] = None) -> int:
        """Execute an update query and return affected rows."""
        pass

    @abstractmethod
    def create_tables(self, schema: Dict[str, str]) -> None:
        """Create database tables from schema."""
        pass

    @abstractmethod
    def table_exists(self, table_name: str) -> bool:
        """Check if a table exists."""
        pass


class SQLiteDatabase(DatabaseManager):
    """SQLite database implementation."""

    def __init__(self, database_path: str = "carrymark.db", timeout: float = 30.0):
        self._database_path = database_path
        self._timeout = timeout
        self._initialize_database()

    def _initialize_database(self) -> None:
        """Initialize the database with the platform schema."""
        self.create_tables(build_schema(real_type="REAL",
                                        id_column="INTEGER PRIMARY KEY AUTOINCREMENT"))
        logger.info("SQLite database ready at %s", self._database_path)

    @contextmanager
    def _get_connection(self):
        """Get database connection with proper cleanup."""
        conn = None
        try:
            conn = self.connect()
            yield conn
        except sqlite3.IntegrityError as e:
            if conn:
                conn.rollback()
            raise IntegrityViolation(f"Integrity constraint violated: {str(e)}")
        except sqlite3.Error as e:
            if conn:
                conn.rollback()
            raise PersistenceError(f"Database error: {str(e)}")
        finally:
            if conn:
                conn.close()

    def connect(self) -> sqlite3.Connection:
        """Create a database connection."""
        conn = sqlite3.connect(self._database_path, timeout=self._timeout, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def execute_query(self, query: str, params: Optional[tuple] = None) -> List[Dict[str, Any]]:
        """Execute a query and return results."""
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(query, params or ())
            return [dict(row) for row in cursor.fetchall()]

    def execute_update(self, query: str, params: Optional[tuple] = None) -> int:
        """Execute an update query and return affected rows."""
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(query, params or ())
            conn.commit()
            return cursor.rowcount

    def create_tables(self, schema: Dict[str, str]) -> None:
        """Create database tables from schema."""
        with self._get_connection() as conn:
            cursor = conn.cursor()
            for table_name, table_schema in schema.items():
                cursor.execute(table_schema)
            conn.commit()

    def table_exists(self, table_name: str) -> bool:
        """Check if a table exists."""
        query = "SELECT name FROM sqlite_master WHERE type='table' AND name=?"
        results = self.execute_query(query, (table_name,))
        return len(results) > 0


class PostgreSQLDatabase(DatabaseManager):
    """PostgreSQL database implementation."""

    def __init__(self, host: str = "localhost", port: int = 5432,
                 database: str = "carrymark", user: str = "carrymark", password: str = ""):
        self._host = host
        self._port = port
        self._database = database
        self._user = user
        self._password = password
        self._initialize_database()

    def _get_connection_string(self) -> str:
        """Get PostgreSQL connection string."""
        return f"host={self._host} port={self._port} dbname={self._database} user={self._user} password={self._password}"

    def _initialize_database(self) -> None:
        """Initialize the database with the platform schema."""
        self.create_tables(build_schema(real_type="DOUBLE PRECISION", id_column="SERIAL PRIMARY KEY"))
        logger.info("PostgreSQL database ready at %s:%s/%s", self._host, self._port, self._database)

    @staticmethod
    def _format(query: str) -> str:
        return query.replace("?", "%s")

    @contextmanager
    def _get_connection(self):
        """Get database connection with proper cleanup."""
        conn = None
        try:
            conn = self.connect()
            yield conn
        except psycopg2.IntegrityError as e:
            if conn:
                conn.rollback()
            raise IntegrityViolation(f"Integrity constraint violated: {str(e)}")
        except psycopg2.Error as e:
            if conn:
                conn.rollback()
            raise PersistenceError(f"Database error: {str(e)}")
        finally:
            if conn:
                conn.close()

    def connect(self):
        """Create a database connection."""
        return psycopg2.connect(self._get_connection_string())

    def execute_query(self, query: str, params: Optional[tuple] = None) -> List[Dict[str, Any]]:
        """Execute a query and return results."""
        with self._get_connection() as conn:
            cursor = conn.cursor(cursor_factory=RealDictCursor)
            cursor.execute(self._format(query), params or ())
            return [dict(row) for row in cursor.fetchall()]

    def execute_update(self, query: str, params: Optional[tuple] = None) -> int:
        """Execute an update query and return affected rows."""
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(self._format(query), params or ())
            conn.commit()
            return cursor.rowcount

    def create_tables(self, schema: Dict[str, str]) -> None:
        """Create database tables from schema."""
        with self._get_connection() as conn:
            cursor = conn.cursor()
            for table_name, table_schema in schema.items():
                cursor.execute(table_schema)
            conn.commit()

    def table_exists(self, table_name: str) -> bool:
        """Check if a table exists."""
        query = "SELECT table_name FROM information_schema.tables WHERE table_name = ?"
        results = self.execute_query(query, (table_name,))
        return len(results) > 0


class DatabaseFactory:
    """Factory for creating database instances."""

    @staticmethod
    def create_database(database_type: str, **kwargs) -> DatabaseManager:
        """Create a database instance based on type."""
        if database_type.lower() == "sqlite":
            return SQLiteDatabase(**kwargs)
        elif database_type.lower() == "postgresql":
            return PostgreSQLDatabase(**kwargs)
        else:
            raise ConfigurationError(f"Unsupported database type: {database_type}")
