"""
Whale Database (Non-Decreasing)

Stores all tracked whale addresses. Once added, whales are never removed.
This is the source of truth for which addresses the poll loop visits.
"""

import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional

from ..models import Whale
from .base import SQLiteStore

logger = logging.getLogger(__name__)


@dataclass
class WhaleStats:
    """Statistics about the whale registry."""
    total_whales: int
    manual: int
    total_account_value: float
    never_polled: int


class WhaleDB(SQLiteStore):
    """
    SQLite database for the whale registry.

    The registry is non-decreasing: whales are only added, never removed.
    Stats columns are refreshed by the poll loop.
    """

    def _init_schema(self, conn: sqlite3.Connection):
        conn.execute("""
            CREATE TABLE IF NOT EXISTS whales (
                address TEXT PRIMARY KEY,
                first_seen TEXT NOT NULL,
                last_updated TEXT NOT NULL,
                source TEXT,
                roi REAL DEFAULT 0,
                total_pnl REAL DEFAULT 0,
                win_rate REAL DEFAULT 0,
                account_value REAL DEFAULT 0
            )
        """)
        conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_whales_pnl
            ON whales(total_pnl DESC)
        """)

    # -------------------------------------------------------------------------
    # Add Whales
    # -------------------------------------------------------------------------

    def add_whale(self, address: str, source: str = "manual") -> bool:
        """
        Add a whale to the registry.

        Args:
            address: Account address (0x...)
            source: Where the address came from

        Returns:
            True if the whale was added (new), False if it already existed
        """
        address = address.lower()
        now = datetime.now(timezone.utc).isoformat()

        def _insert():
            with self._get_connection() as conn:
                cursor = conn.execute("""
                    INSERT OR IGNORE INTO whales
                    (address, first_seen, last_updated, source)
                    VALUES (?, ?, ?, ?)
                """, (address, now, now, source))
                return cursor.rowcount > 0

        added = self._execute_with_retry(_insert)
        if added:
            logger.info(f"Added whale {address[:10]}... (source={source})")
        return added

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_whale(self, address: str) -> Optional[Whale]:
        def _get():
            with self._get_connection() as conn:
                return conn.execute(
                    "SELECT * FROM whales WHERE address = ?",
                    (address.lower(),)
                ).fetchone()

        row = self._execute_with_retry(_get)
        return self._row_to_whale(row) if row else None

    def get_addresses(self) -> List[str]:
        """All tracked addresses, oldest first."""
        def _get():
            with self._get_connection() as conn:
                return conn.execute(
                    "SELECT address FROM whales ORDER BY first_seen, address"
                ).fetchall()

        return [row["address"] for row in self._execute_with_retry(_get)]

    def get_top_traders(self, limit: int = 20) -> List[Whale]:
        """Whales ordered by total PnL, best first."""
        def _get():
            with self._get_connection() as conn:
                return conn.execute(
                    "SELECT * FROM whales ORDER BY total_pnl DESC, address LIMIT ?",
                    (limit,)
                ).fetchall()

        return [self._row_to_whale(row) for row in self._execute_with_retry(_get)]

    def count(self) -> int:
        def _get():
            with self._get_connection() as conn:
                return conn.execute("SELECT COUNT(*) FROM whales").fetchone()[0]

        return self._execute_with_retry(_get)

    # -------------------------------------------------------------------------
    # Updates
    # -------------------------------------------------------------------------

    def touch(self, address: str, account_value: Optional[float] = None):
        """Mark a whale as polled, optionally refreshing its account value."""
        now = datetime.now(timezone.utc).isoformat()

        def _update():
            with self._get_connection() as conn:
                if account_value is None:
                    conn.execute(
                        "UPDATE whales SET last_updated = ? WHERE address = ?",
                        (now, address.lower())
                    )
                else:
                    conn.execute(
                        "UPDATE whales SET last_updated = ?, account_value = ? WHERE address = ?",
                        (now, account_value, address.lower())
                    )

        self._execute_with_retry(_update)

    def update_stats(self, address: str, total_pnl: float, roi: float, win_rate: float):
        """Store PnL stats derived from the whale's fills."""
        now = datetime.now(timezone.utc).isoformat()

        def _update():
            with self._get_connection() as conn:
                conn.execute("""
                    UPDATE whales
                    SET total_pnl = ?, roi = ?, win_rate = ?, last_updated = ?
                    WHERE address = ?
                """, (total_pnl, roi, win_rate, now, address.lower()))

        self._execute_with_retry(_update)

    # -------------------------------------------------------------------------
    # Statistics
    # -------------------------------------------------------------------------

    def get_stats(self) -> WhaleStats:
        def _get():
            with self._get_connection() as conn:
                return conn.execute("""
                    SELECT COUNT(*) AS total,
                           COALESCE(SUM(source = 'manual'), 0) AS manual,
                           COALESCE(SUM(account_value), 0) AS account_value,
                           COALESCE(SUM(first_seen = last_updated), 0) AS never_polled
                    FROM whales
                """).fetchone()

        row = self._execute_with_retry(_get)
        return WhaleStats(
            total_whales=row["total"],
            manual=row["manual"],
            total_account_value=row["account_value"],
            never_polled=row["never_polled"],
        )

    def _row_to_whale(self, row: sqlite3.Row) -> Whale:
        return Whale(
            address=row["address"],
            first_seen=row["first_seen"],
            last_updated=row["last_updated"],
            source=row["source"],
            roi=row["roi"] or 0.0,
            total_pnl=row["total_pnl"] or 0.0,
            win_rate=row["win_rate"] or 0.0,
            account_value=row["account_value"] or 0.0,
        )
