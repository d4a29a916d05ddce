"""
PostgreSQL client with connection pooling and explicit transactions.

Uses psycopg2 with ThreadedConnectionPool. Single statements run through
execute()/execute_single()/execute_returning() and commit on their own.
Multi-statement work runs inside transaction(), which hands out a
TransactionContext bound to one pooled connection and commits or rolls back
as a unit.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Tuple
from uuid import UUID

import psycopg2
import psycopg2.extras
import psycopg2.pool

from clients.settings import DatabaseSettings, get_settings

logger = logging.getLogger(__name__)

# Global UUID adapter registration flag
_uuid_registered = False


def _convert_params(params: Tuple | Dict | None) -> Tuple | Dict | None:
    """Convert UUID objects to strings."""
    if params is None:
        return None

    def convert(value: Any) -> Any:
        if isinstance(value, UUID):
            return str(value)
        if isinstance(value, list):
            return [convert(v) for v in value]
        if isinstance(value, tuple):
            return tuple(convert(v) for v in value)
        if isinstance(value, dict):
            return {k: convert(v) for k, v in value.items()}
        return value

    return convert(params)


class TransactionContext:
    """
    A live transaction on one pooled connection.

    Obtained only from PostgresClient.transaction(). Statements issued here
    are not committed individually; the owning context manager commits once
    the block exits cleanly and rolls back otherwise.
    """

    def __init__(self, conn):
        self._conn = conn

    def execute(self, query: str, params: Tuple | Dict | None = None) -> List[Dict[str, Any]]:
        """Execute query, return list of row dicts. Empty list if no results."""
        with self._conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
            cur.execute(query, _convert_params(params))
            if cur.description:
                return [dict(row) for row in cur.fetchall()]
            return []

    def execute_single(self, query: str, params: Tuple | Dict | None = None) -> Dict[str, Any] | None:
        """Execute query, return first row or None."""
        results = self.execute(query, params)
        return results[0] if results else None

    def execute_returning(self, query: str, params: Tuple | Dict | None = None) -> List[Dict[str, Any]]:
        """Execute INSERT/UPDATE/DELETE with RETURNING, return results."""
        with self._conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
            cur.execute(query, _convert_params(params))
            return [dict(row) for row in cur.fetchall()]

    def execute_batch(self, query: str, params_list: List[Tuple]) -> None:
        """Execute the same statement for every parameter tuple."""
        with self._conn.cursor() as cur:
            psycopg2.extras.execute_batch(
                cur, query, [_convert_params(p) for p in params_list]
            )


class PostgresClient:
    """
    PostgreSQL client backed by a shared connection pool.

    Usage:
        db = PostgresClient.from_settings()

        rows = db.execute("SELECT * FROM documents WHERE statut = %s", ("emise",))

        with db.transaction() as tx:
            tx.execute("INSERT INTO documents (...) VALUES (...)", params)
            tx.execute("INSERT INTO lignes_documents (...) VALUES (...)", params)
    """

    # Class-level connection pools shared across instances
    _connection_pools: Dict[str, psycopg2.pool.ThreadedConnectionPool] = {}
    _pools_lock = threading.RLock()

    def __init__(
        self,
        database_url: str,
        min_connections: int = 2,
        max_connections: int = 20,
        connect_timeout: int = 30,
    ):
        self._database_url = database_url
        self._min_connections = min_connections
        self._max_connections = max_connections
        self._connect_timeout = connect_timeout
        self._ensure_connection_pool()

    @classmethod
    def from_settings(cls, settings: DatabaseSettings | None = None) -> "PostgresClient":
        """Client configured from FACTURATION_* settings."""
        settings = settings or get_settings()
        return cls(
            settings.database_url,
            min_connections=settings.pool_min_connections,
            max_connections=settings.pool_max_connections,
            connect_timeout=settings.connect_timeout,
        )

    def _ensure_connection_pool(self) -> None:
        """Create connection pool if it doesn't exist."""
        with self._pools_lock:
            if self._database_url not in self._connection_pools:
                pool = psycopg2.pool.ThreadedConnectionPool(
                    minconn=self._min_connections,
                    maxconn=self._max_connections,
                    dsn=self._database_url,
                    connect_timeout=self._connect_timeout,
                )

                global _uuid_registered
                if not _uuid_registered:
                    psycopg2.extras.register_uuid()
                    _uuid_registered = True

                self._connection_pools[self._database_url] = pool
                logger.info("Connection pool created")

    @contextmanager
    def get_connection(self):
        """Check a connection out of the pool and always return it."""
        if self._database_url not in self._connection_pools:
            self._ensure_connection_pool()

        pool = self._connection_pools[self._database_url]
        conn = None

        try:
            conn = pool.getconn()
            if conn is None:
                raise RuntimeError("Could not get connection from pool")
            yield conn

        finally:
            if conn:
                pool.putconn(conn)

    @contextmanager
    def transaction(self) -> Iterator[TransactionContext]:
        """
        Run a block of statements atomically.

        Commits when the block exits normally. Any exception rolls the whole
        transaction back and is re-raised unchanged.
        """
        with self.get_connection() as conn:
            try:
                yield TransactionContext(conn)
                conn.commit()
            except BaseException:
                conn.rollback()
                raise

    def execute(self, query: str, params: Tuple | Dict | None = None) -> List[Dict[str, Any]]:
        """Execute query, return list of row dicts. Empty list if no results."""
        with self.transaction() as tx:
            return tx.execute(query, params)

    def execute_single(self, query: str, params: Tuple | Dict | None = None) -> Dict[str, Any] | None:
        """Execute query, return first row or None."""
        results = self.execute(query, params)
        return results[0] if results else None

    def execute_scalar(self, query: str, params: Tuple | Dict | None = None) -> Any:
        """Execute query, return first value of first row or None."""
        row = self.execute_single(query, params)
        if row is None:
            return None
        return next(iter(row.values()))

    def execute_returning(self, query: str, params: Tuple | Dict | None = None) -> List[Dict[str, Any]]:
        """Execute INSERT/UPDATE with RETURNING, return results."""
        with self.transaction() as tx:
            return tx.execute_returning(query, params)

    def close(self) -> None:
        """Close connection pool."""
        with self._pools_lock:
            if self._database_url in self._connection_pools:
                self._connection_pools[self._database_url].closeall()
                del self._connection_pools[self._database_url]

    @classmethod
    def close_all_pools(cls) -> None:
        """Close all connection pools."""
        with cls._pools_lock:
            for pool in cls._connection_pools.values():
                pool.closeall()
            cls._connection_pools.clear()
