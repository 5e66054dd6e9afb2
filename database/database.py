"""
Database connection and transaction management using raw PostgreSQL
Seat inventory relies on the store's transactions, never on application locks
"""
import logging
from contextlib import contextmanager
from pathlib import Path

import psycopg2
from psycopg2 import pool, extras, sql
from psycopg2.extensions import ISOLATION_LEVEL_READ_COMMITTED

from backend.config import get_settings

logger = logging.getLogger(__name__)

SCHEMA_FILE = Path(__file__).parent / 'schema.sql'


class DatabaseManager:
    """
    Database manager with transaction support and connection pooling
    """

    def __init__(self, database_url=None, echo=False, minconn=1, maxconn=20):
        """
        Initialize database manager

        Args:
            database_url: libpq connection URI (defaults to DATABASE_URL setting)
            echo: Whether to log SQL statements
            minconn: Connections opened eagerly
            maxconn: Upper bound on pooled connections
        """
        settings = get_settings()
        self.database_url = database_url or settings.database_url
        self.echo = echo or settings.db_echo

        try:
            self.connection_pool = pool.ThreadedConnectionPool(
                minconn=minconn,
                maxconn=maxconn,
                dsn=self.database_url
            )
        except psycopg2.Error as e:
            raise RuntimeError(f"Failed to create database connection pool: {e}") from e

    def get_connection(self):
        """Get a connection from the pool"""
        return self.connection_pool.getconn()

    def return_connection(self, conn):
        """Return a connection to the pool"""
        self.connection_pool.putconn(conn)

    def close_all_connections(self):
        """Close all connections in the pool"""
        if self.connection_pool:
            self.connection_pool.closeall()

    def create_tables(self):
        """Create all tables and stored procedures from schema.sql"""
        if not SCHEMA_FILE.exists():
            raise FileNotFoundError(f"Schema file not found: {SCHEMA_FILE}")

        schema_sql = SCHEMA_FILE.read_text()

        conn = self.get_connection()
        try:
            with conn.cursor() as cursor:
                cursor.execute(schema_sql)
            conn.commit()
        finally:
            self.return_connection(conn)
        logger.info("Database schema created")

    def drop_tables(self):
        """Drop all tables and the booking procedure (use with caution!)"""
        conn = self.get_connection()
        try:
            with conn.cursor() as cursor:
                cursor.execute("""
                    SELECT tablename FROM pg_tables
                    WHERE schemaname = 'public'
                """)
                tables = [row[0] for row in cursor.fetchall()]

                for table in tables:
                    cursor.execute(sql.SQL("DROP TABLE IF EXISTS {} CASCADE").format(
                        sql.Identifier(table)
                    ))
                cursor.execute("DROP FUNCTION IF EXISTS book_flight CASCADE")
            conn.commit()
        finally:
            self.return_connection(conn)

    def _log_statement(self, cursor):
        if self.echo and cursor.query:
            logger.debug("SQL: %s", cursor.query.decode('utf-8', 'replace'))

    @contextmanager
    def get_cursor(self, isolation_level=None, cursor_factory=None):
        """
        Get a cursor with automatic connection management

        Usage:
            with db.get_cursor() as cursor:
                cursor.execute("SELECT * FROM flights")
                results = cursor.fetchall()
        """
        conn = self.get_connection()
        conn.set_isolation_level(isolation_level or ISOLATION_LEVEL_READ_COMMITTED)

        cursor = conn.cursor(cursor_factory=cursor_factory or extras.RealDictCursor)

        try:
            yield cursor
            self._log_statement(cursor)
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            cursor.close()
            self.return_connection(conn)

    @contextmanager
    def transaction(self, isolation_level=None):
        """
        Provide a transactional scope with a connection.
        Everything executed inside commits together or not at all.

        Usage:
            with db.transaction() as conn:
                with conn.cursor() as cursor:
                    cursor.execute("UPDATE bookings ...")
        """
        conn = self.get_connection()
        conn.set_isolation_level(isolation_level or ISOLATION_LEVEL_READ_COMMITTED)

        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            self.return_connection(conn)


# Global database manager instance
_db_manager = None


def get_db_manager() -> DatabaseManager:
    """Get or create global database manager instance"""
    global _db_manager
    if _db_manager is None:
        _db_manager = DatabaseManager()
    return _db_manager


def set_db_manager(db_manager: DatabaseManager | None) -> None:
    """Override the global database manager instance.

    Test fixtures use this to point the store at the test database.
    Passing ``None`` resets the singleton so the next
    ``get_db_manager`` call recreates it with default settings.
    """
    global _db_manager
    _db_manager = db_manager


def init_db():
    """Initialize database with tables"""
    get_db_manager().create_tables()


if __name__ == "__main__":
    from backend.config import configure_logging

    configure_logging()
    init_db()
