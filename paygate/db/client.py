from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Iterator

import psycopg2
from psycopg2.pool import ThreadedConnectionPool

logger = logging.getLogger(__name__)


class PgPool:
    """Lazily created psycopg2 pool with a fixed search_path."""

    def __init__(self, dsn: str, schema: str = "", minconn: int = 1, maxconn: int = 10):
        self.dsn = dsn
        self.schema = schema
        self.minconn = minconn
        self.maxconn = maxconn
        self._pool: ThreadedConnectionPool | None = None
        self._init_lock = threading.Lock()

    def _get_pool(self) -> ThreadedConnectionPool:
        if self._pool is None:
            with self._init_lock:
                if self._pool is None:
                    self._pool = ThreadedConnectionPool(self.minconn, self.maxconn, dsn=self.dsn)
        return self._pool

    @contextmanager
    def connection(self) -> Iterator[psycopg2.extensions.connection]:
        pool = self._get_pool()
        conn: psycopg2.extensions.connection | None = None
        try:
            # Attempt to obtain a healthy connection (retry once on closed connections)
            for attempt in range(2):
                conn = pool.getconn()
                try:
                    if self.schema:
                        with conn.cursor() as cur:
                            cur.execute("SET search_path TO %s", (self.schema,))
                    break
                except (psycopg2.OperationalError, psycopg2.InterfaceError):
                    pool.putconn(conn, close=True)
                    conn = None
                    if attempt == 1:
                        raise
            if conn is None:
                raise psycopg2.OperationalError("no database connection available")
            yield conn
            conn.commit()
        except Exception:
            if conn is not None:
                try:
                    conn.rollback()
                except psycopg2.Error:
                    logger.warning("rollback failed", exc_info=True)
            raise
        finally:
            if conn is not None:
                pool.putconn(conn)

    def close(self) -> None:
        if self._pool is not None:
            self._pool.closeall()
            self._pool = None
