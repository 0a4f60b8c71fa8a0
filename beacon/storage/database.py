"""PostgreSQL access for Beacon: pooled, one connection per thread.

Request handlers run on FastAPI's threadpool. A thread checks out a
connection on its first query and keeps it until commit(), rollback() or
release_if_held() hands it back. A connection left in a failed
transaction is rolled back before the thread reuses it.
"""

import logging
import threading
from pathlib import Path

import psycopg
from psycopg.pq import TransactionStatus
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

from beacon.config import DatabaseConfig

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).parent / "migrations"

_OPEN_TX = (TransactionStatus.INTRANS, TransactionStatus.INERROR)


class Database:
    """Thin query layer over a psycopg connection pool."""

    def __init__(self, config: DatabaseConfig):
        self.config = config
        self._pool: ConnectionPool | None = None
        self._held = threading.local()

    def connect(self) -> None:
        self._pool = ConnectionPool(
            self.config.dsn,
            min_size=self.config.pool_min_size,
            max_size=self.config.pool_max_size,
            kwargs={
                "row_factory": dict_row,
                "autocommit": False,
                "application_name": "beacon",
            },
        )
        self._pool.wait()
        logger.info(
            "Database pool ready: %s:%s/%s (min=%d, max=%d)",
            self.config.host, self.config.port, self.config.name,
            self.config.pool_min_size, self.config.pool_max_size,
        )

    def close(self) -> None:
        self._checkin()
        if self._pool is not None:
            self._pool.close()
            self._pool = None

    @property
    def connected(self) -> bool:
        return self._pool is not None

    # ----------------------------------------------------------
    # Per-thread connection
    # ----------------------------------------------------------

    def _current(self) -> psycopg.Connection | None:
        conn = getattr(self._held, "conn", None)
        if conn is None or conn.closed:
            return None
        return conn

    def _checkout(self) -> psycopg.Connection:
        conn = self._current()
        if conn is not None:
            if conn.info.transaction_status == TransactionStatus.INERROR:
                logger.warning("Discarding failed transaction left on this thread's connection")
                conn.rollback()
            return conn

        if self._pool is None:
            raise RuntimeError("Database not connected. Call connect() first.")
        self._held.conn = self._pool.getconn()
        return self._held.conn

    def _checkin(self) -> None:
        conn = getattr(self._held, "conn", None)
        if conn is None or self._pool is None:
            return
        try:
            self._pool.putconn(conn)
        except Exception:
            logger.warning("Could not return connection to pool", exc_info=True)
        self._held.conn = None

    # ----------------------------------------------------------
    # Queries
    # ----------------------------------------------------------

    def execute(self, query: str, params: tuple | list | None = None) -> list[dict]:
        """Run a statement; rows if it returns any, else []."""
        with self._checkout().cursor() as cur:
            cur.execute(query, params)
            return cur.fetchall() if cur.description else []

    def execute_one(self, query: str, params: tuple | list | None = None) -> dict | None:
        """Run a statement; first row or None."""
        with self._checkout().cursor() as cur:
            cur.execute(query, params)
            return cur.fetchone() if cur.description else None

    def commit(self) -> None:
        self._checkout().commit()
        self._checkin()

    def rollback(self) -> None:
        self._checkout().rollback()
        self._checkin()

    def release_if_held(self) -> None:
        """Hand back a connection still holding an open transaction.

        Called once per API request; read-only handlers never commit.
        """
        conn = self._current()
        if conn is None or conn.info.transaction_status not in _OPEN_TX:
            return
        try:
            conn.rollback()
        except Exception:
            logger.debug("Rollback before release failed", exc_info=True)
        self._checkin()

    # ----------------------------------------------------------
    # Migrations
    # ----------------------------------------------------------

    def _applied_migrations(self) -> set[str]:
        self.execute(
            """
            CREATE TABLE IF NOT EXISTS beacon_migrations (
                name TEXT PRIMARY KEY,
                applied_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            )
            """
        )
        self.commit()
        return {r["name"] for r in self.execute("SELECT name FROM beacon_migrations")}

    def run_migrations(self) -> None:
        """Apply every migrations/*.sql file not yet recorded, in name order."""
        applied = self._applied_migrations()
        pending = [p for p in sorted(MIGRATIONS_DIR.glob("*.sql")) if p.name not in applied]

        for path in pending:
            logger.info("Applying migration %s", path.name)
            try:
                self.execute(path.read_text())
                self.execute("INSERT INTO beacon_migrations (name) VALUES (%s)", (path.name,))
                self.commit()
            except Exception:
                self.rollback()
                logger.exception("Migration %s failed", path.name)
                raise

        logger.info("Schema up to date (%d applied now, %d before)", len(pending), len(applied))
