"""SQLite connection pool shared by the key-value store."""
import logging
import sqlite3
import threading
from contextlib import contextmanager
from queue import Empty, Queue
from typing import Generator

logger = logging.getLogger(__name__)


class SQLiteConnectionPool:
    """Thread-safe SQLite connection pool.

    Connections are created lazily up to ``max_connections``; callers beyond
    that limit block until a connection is returned.
    """

    def __init__(self, database: str, max_connections: int = 5, timeout: float = 30.0):
        self.database = database
        self.max_connections = max_connections
        self.timeout = timeout
        self._pool: Queue[sqlite3.Connection] = Queue(maxsize=max_connections)
        self._lock = threading.Lock()
        self._created_connections = 0

    def _create_connection(self) -> sqlite3.Connection:
        # FastAPI runs sync endpoints in a threadpool, so connections travel between threads.
        conn = sqlite3.connect(self.database, timeout=self.timeout, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode = WAL")
        conn.execute("PRAGMA synchronous = NORMAL")
        return conn

    @contextmanager
    def get_connection(self) -> Generator[sqlite3.Connection, None, None]:
        """Borrow a connection, creating one if the pool is not yet full."""
        connection = None
        try:
            connection = self._pool.get(block=False)
        except Empty:
            with self._lock:
                if self._created_connections < self.max_connections:
                    connection = self._create_connection()
                    self._created_connections += 1
                    logger.debug(
                        "Opened connection to %s (total: %d)", self.database, self._created_connections
                    )
            if connection is None:
                connection = self._pool.get(block=True)

        try:
            yield connection
        finally:
            self._release(connection)

    def _release(self, connection: sqlite3.Connection) -> None:
        try:
            connection.rollback()
            self._pool.put(connection)
        except sqlite3.Error as exc:
            logger.error("Discarding broken connection to %s: %s", self.database, exc)
            with self._lock:
                self._created_connections -= 1
            try:
                connection.close()
            except sqlite3.Error:
                pass

    def close(self) -> None:
        """Close every idle connection and reset the pool."""
        with self._lock:
            while True:
                try:
                    connection = self._pool.get(block=False)
                except Empty:
                    break
                connection.close()
                self._created_connections -= 1
