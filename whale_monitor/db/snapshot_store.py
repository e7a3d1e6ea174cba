"""
Snapshot Store

Current position per (address, asset) plus an append-only history of every
observed snapshot. This is the only writer of the positions and
position_snapshots tables.
"""

import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from ..models import Position, PositionSnapshot, RawSnapshot, position_key
from .base import SQLiteStore, from_iso, to_iso

logger = logging.getLogger(__name__)


@dataclass
class PositionStats:
    """Statistics about the current positions."""
    total_positions: int
    long_count: int
    short_count: int
    total_notional: float
    history_rows: int


class SnapshotStore(SQLiteStore):
    """
    SQLite store for current positions and their snapshot history.

    Invariants:
    - At most one positions row per (address, asset); a flat position is deleted
    - position_snapshots is append-only and unique per (address, asset, created_at)
    """

    def _init_schema(self, conn: sqlite3.Connection):
        conn.execute("""
            CREATE TABLE IF NOT EXISTS positions (
                id TEXT PRIMARY KEY,
                address TEXT NOT NULL,
                asset TEXT NOT NULL,
                side TEXT NOT NULL,
                size REAL NOT NULL,
                entry_price REAL NOT NULL,
                leverage REAL,
                notional REAL NOT NULL,
                liquidation_px REAL,
                mark_price REAL,
                updated_at TEXT NOT NULL
            )
        """)
        conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_positions_address
            ON positions(address)
        """)
        conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_positions_asset
            ON positions(asset)
        """)

        conn.execute("""
            CREATE TABLE IF NOT EXISTS position_snapshots (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                address TEXT NOT NULL,
                asset TEXT NOT NULL,
                side TEXT NOT NULL,
                size REAL NOT NULL,
                entry_price REAL NOT NULL,
                leverage REAL,
                notional REAL NOT NULL,
                liquidation_px REAL,
                mark_price REAL,
                created_at TEXT NOT NULL,
                UNIQUE(address, asset, created_at)
            )
        """)
        conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_snapshots_addr_asset
            ON position_snapshots(address, asset, created_at DESC)
        """)

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get_position(self, address: str, asset: str) -> Optional[Position]:
        """Get the live position for a key, or None if flat."""
        def _get():
            with self._get_connection() as conn:
                return conn.execute(
                    "SELECT * FROM positions WHERE id = ?",
                    (position_key(address, asset),)
                ).fetchone()

        row = self._execute_with_retry(_get)
        return self._row_to_position(row) if row else None

    def get_positions_for_address(self, address: str) -> List[Position]:
        """Get all live positions for a specific address."""
        def _get():
            with self._get_connection() as conn:
                return conn.execute(
                    "SELECT * FROM positions WHERE address = ? ORDER BY asset",
                    (address,)
                ).fetchall()

        return [self._row_to_position(row) for row in self._execute_with_retry(_get)]

    def get_all_positions(self) -> List[Position]:
        """Get all live positions, largest first."""
        def _get():
            with self._get_connection() as conn:
                return conn.execute(
                    "SELECT * FROM positions ORDER BY notional DESC"
                ).fetchall()

        return [self._row_to_position(row) for row in self._execute_with_retry(_get)]

    def snapshot_exists(self, address: str, asset: str, created_at: datetime) -> bool:
        """Whether a history row already exists for this exact tick."""
        def _get():
            with self._get_connection() as conn:
                return conn.execute(
                    """
                    SELECT 1 FROM position_snapshots
                    WHERE address = ? AND asset = ? AND created_at = ?
                    """,
                    (address, asset, to_iso(created_at))
                ).fetchone()

        return self._execute_with_retry(_get) is not None

    def get_history(
        self,
        address: str,
        asset: str,
        limit: Optional[int] = None,
    ) -> List[PositionSnapshot]:
        """History for a key, oldest first (optionally the latest `limit` rows)."""
        def _get():
            with self._get_connection() as conn:
                sql = """
                    SELECT * FROM position_snapshots
                    WHERE address = ? AND asset = ?
                    ORDER BY created_at DESC, id DESC
                """
                params = [address, asset]
                if limit is not None:
                    sql += " LIMIT ?"
                    params.append(limit)
                return conn.execute(sql, params).fetchall()

        rows = self._execute_with_retry(_get)
        return [self._row_to_snapshot(row) for row in reversed(rows)]

    def count_history(self, address: Optional[str] = None, asset: Optional[str] = None) -> int:
        def _get():
            with self._get_connection() as conn:
                sql = "SELECT COUNT(*) FROM position_snapshots WHERE 1=1"
                params = []
                if address is not None:
                    sql += " AND address = ?"
                    params.append(address)
                if asset is not None:
                    sql += " AND asset = ?"
                    params.append(asset)
                return conn.execute(sql, params).fetchone()[0]

        return self._execute_with_retry(_get)

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def apply(self, snapshot: RawSnapshot) -> bool:
        """
        Record one tick for a key in a single transaction.

        A non-zero snapshot upserts the live position; a flat one deletes it.
        Either way one history row is appended.

        Args:
            snapshot: Validated snapshot

        Returns:
            True if a history row was appended, False if this tick was already recorded
        """
        key = snapshot.key
        ts = to_iso(snapshot.timestamp)
        notional = snapshot.notional

        def _do_apply():
            with self._get_connection() as conn:
                cursor = conn.execute("""
                    INSERT OR IGNORE INTO position_snapshots
                    (address, asset, side, size, entry_price, leverage, notional,
                     liquidation_px, mark_price, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, (
                    snapshot.address, snapshot.asset, snapshot.side, snapshot.size,
                    snapshot.entry_price, snapshot.leverage, notional,
                    snapshot.liquidation_px, snapshot.mark_price, ts,
                ))
                if cursor.rowcount == 0:
                    return False

                if snapshot.is_flat:
                    conn.execute("DELETE FROM positions WHERE id = ?", (key,))
                else:
                    conn.execute("""
                        INSERT INTO positions
                        (id, address, asset, side, size, entry_price, leverage,
                         notional, liquidation_px, mark_price, updated_at)
                        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                        ON CONFLICT(id) DO UPDATE SET
                            side = excluded.side,
                            size = excluded.size,
                            entry_price = excluded.entry_price,
                            leverage = excluded.leverage,
                            notional = excluded.notional,
                            liquidation_px = excluded.liquidation_px,
                            mark_price = excluded.mark_price,
                            updated_at = excluded.updated_at
                    """, (
                        key, snapshot.address, snapshot.asset, snapshot.side,
                        snapshot.size, snapshot.entry_price, snapshot.leverage,
                        notional, snapshot.liquidation_px, snapshot.mark_price, ts,
                    ))
                return True

        return self._execute_with_retry(_do_apply)

    # -------------------------------------------------------------------------
    # Statistics
    # -------------------------------------------------------------------------

    def get_stats(self) -> PositionStats:
        def _get():
            with self._get_connection() as conn:
                row = conn.execute("""
                    SELECT COUNT(*) AS total,
                           COALESCE(SUM(side = 'long'), 0) AS longs,
                           COALESCE(SUM(side = 'short'), 0) AS shorts,
                           COALESCE(SUM(notional), 0) AS notional
                    FROM positions
                """).fetchone()
                history = conn.execute("SELECT COUNT(*) FROM position_snapshots").fetchone()[0]
                return row, history

        row, history = self._execute_with_retry(_get)
        return PositionStats(
            total_positions=row["total"],
            long_count=row["longs"],
            short_count=row["shorts"],
            total_notional=row["notional"],
            history_rows=history,
        )

    # -------------------------------------------------------------------------
    # Private Helpers
    # -------------------------------------------------------------------------

    def _row_to_position(self, row: sqlite3.Row) -> Position:
        return Position(
            address=row["address"],
            asset=row["asset"],
            side=row["side"],
            size=row["size"],
            entry_price=row["entry_price"],
            leverage=row["leverage"],
            notional=row["notional"],
            liquidation_px=row["liquidation_px"],
            mark_price=row["mark_price"],
            updated_at=from_iso(row["updated_at"]),
        )

    def _row_to_snapshot(self, row: sqlite3.Row) -> PositionSnapshot:
        return PositionSnapshot(
            address=row["address"],
            asset=row["asset"],
            side=row["side"],
            size=row["size"],
            entry_price=row["entry_price"],
            leverage=row["leverage"],
            notional=row["notional"],
            liquidation_px=row["liquidation_px"],
            mark_price=row["mark_price"],
            created_at=from_iso(row["created_at"]),
        )
