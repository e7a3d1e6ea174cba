"""
SQLite Base

Connection handling and lock-retry shared by the stores. Every store takes
an explicit db_path; the stores are built once at startup and passed in.
"""

import logging
import sqlite3
import time
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional, TypeVar

from ..errors import StoreUnavailable

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Database connection settings
DB_TIMEOUT = 10.0  # seconds
DB_RETRIES = 3
DB_RETRY_BACKOFF = 0.5  # seconds


def to_iso(ts: datetime) -> str:
    return ts.isoformat()


def from_iso(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromisoformat(value)


class SQLiteStore:
    """
    Base class for SQLite-backed stores.

    - WAL mode for concurrent reads
    - One short-lived connection per operation (safe across threads)
    - Locked-database retries with exponential backoff
    - sqlite3 errors surface as StoreUnavailable
    """

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.error(f"Failed to create database directory: {e}")
            raise StoreUnavailable(f"Cannot create {self.db_path.parent}") from e

        def _init():
            with self._get_connection() as conn:
                conn.execute("PRAGMA journal_mode=WAL")
                self._init_schema(conn)

        self._execute_with_retry(_init)

    def _init_schema(self, conn: sqlite3.Connection):
        raise NotImplementedError

    @contextmanager
    def _get_connection(self):
        """Get a database connection with proper cleanup."""
        conn = sqlite3.connect(str(self.db_path), timeout=DB_TIMEOUT)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _execute_with_retry(
        self,
        operation: Callable[[], T],
        retries: int = DB_RETRIES,
        backoff: float = DB_RETRY_BACKOFF,
    ) -> T:
        """
        Execute a database operation with retry logic for locked database.

        Args:
            operation: Callable that performs the database operation
            retries: Number of attempts
            backoff: Initial backoff time in seconds (doubles each retry)

        Returns:
            Result of the operation

        Raises:
            StoreUnavailable: If all retries fail or a non-lock error occurs
        """
        for attempt in range(retries):
            try:
                return operation()
            except sqlite3.OperationalError as e:
                if "locked" in str(e).lower() and attempt < retries - 1:
                    wait_time = backoff * (2 ** attempt)
                    logger.warning(
                        f"Database locked, retrying in {wait_time:.1f}s "
                        f"({attempt + 1}/{retries})"
                    )
                    time.sleep(wait_time)
                    continue
                logger.error(f"Database error: {e}")
                raise StoreUnavailable(str(e)) from e
            except sqlite3.Error as e:
                logger.error(f"Database error: {e}")
                raise StoreUnavailable(str(e)) from e
        raise StoreUnavailable("Database operation failed after retries")
