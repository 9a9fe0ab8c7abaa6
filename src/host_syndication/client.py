"""PostgreSQL client for executing SQL with bounded timeouts."""

from __future__ import annotations
import logging
from contextlib import contextmanager
from typing import Generator, Optional

import psycopg

from .config import DatabaseConfig
from .exceptions import DatabaseError, DatabaseUnavailableError


logger = logging.getLogger(__name__)


class DatabaseClient:
    """Client for connecting to and executing commands on PostgreSQL.

    Every connection is opened with ``connect_timeout`` and every statement
    runs under ``statement_timeout``, so no call blocks indefinitely.
    Connection and timeout failures surface as ``DatabaseUnavailableError``
    (retryable); other driver errors as ``DatabaseError``.
    """

    def __init__(self, config: Optional[DatabaseConfig] = None, *, dsn: Optional[str] = None):
        """Initialize the client.

        Args:
            config: Connection settings
            dsn: PostgreSQL connection string, if provided overrides config's DSN
        """
        self.config = config or DatabaseConfig()
        self._dsn = dsn or self.config.dsn()

    @contextmanager
    def connection(self) -> Generator[psycopg.Connection, None, None]:
        """Get a database connection context manager.

        The connection is always closed when the block exits.
        """
        options = f"-c statement_timeout={self.config.statement_timeout * 1000}"
        try:
            with psycopg.connect(self._dsn, autocommit=True, options=options) as conn:
                yield conn
        except psycopg.OperationalError as e:
            raise DatabaseUnavailableError(f"Database unavailable: {e}") from e
        except psycopg.Error as e:
            raise DatabaseError(f"Database error: {e}") from e

    @contextmanager
    def transaction(self) -> Generator[psycopg.Connection, None, None]:
        """Run the block's statements in a single transaction."""
        with self.connection() as conn:
            with conn.transaction():
                yield conn

    def execute(self, sql: str, params: Optional[tuple] = None) -> int:
        """Execute SQL statement without returning results.

        Args:
            sql: SQL statement to execute
            params: Optional parameters for the SQL statement

        Returns:
            Number of rows affected (-1 for DDL)
        """
        logger.debug(f"Executing SQL: {sql}")
        with self.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(sql, params)
                return cur.rowcount

    def fetch_all(self, sql: str, params: Optional[tuple] = None) -> list[tuple]:
        """Execute SQL and fetch all results.

        Args:
            sql: SQL query to execute
            params: Optional parameters for the SQL query

        Returns:
            List of result tuples
        """
        logger.debug(f"Fetching SQL: {sql}")
        with self.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(sql, params)
                return cur.fetchall()

    def fetch_one(self, sql: str, params: Optional[tuple] = None) -> Optional[tuple]:
        """Execute SQL and fetch one result.

        Args:
            sql: SQL query to execute
            params: Optional parameters for the SQL query

        Returns:
            Single result tuple or None
        """
        logger.debug(f"Fetching one SQL: {sql}")
        with self.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(sql, params)
                return cur.fetchone()

    def health_check(self) -> bool:
        """Check if the database is reachable.

        Returns:
            True if the database answers, False otherwise
        """
        try:
            result = self.fetch_one("SELECT 1")
            return result == (1,)
        except DatabaseError as e:
            logger.warning(f"Health check failed: {e}")
            return False
