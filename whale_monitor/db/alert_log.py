"""
Alert Log

Persisted record of classified position events and of every alert handed to
the notification channel. The reporting endpoints read from here.
"""

import logging
import sqlite3
from datetime import datetime, timezone
from typing import Dict, List, Optional

from ..models import (
    CLUSTER_TYPE,
    AlertItem,
    Cluster,
    DispatchResult,
    EventKind,
    PositionEvent,
    alert_notional,
    alert_type,
)
from .base import SQLiteStore, to_iso

logger = logging.getLogger(__name__)

BIG_ALERT_TYPES = (EventKind.OPEN.value, EventKind.LIQUIDATION.value, CLUSTER_TYPE)
FOLLOWUP_TYPES = (EventKind.INCREASE.value, EventKind.REDUCE.value, EventKind.CLOSE.value)


class AlertLog(SQLiteStore):
    """SQLite log of position events and dispatched alerts."""

    def _init_schema(self, conn: sqlite3.Connection):
        conn.execute("""
            CREATE TABLE IF NOT EXISTS position_events (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                event_type TEXT NOT NULL,
                address TEXT NOT NULL,
                asset TEXT NOT NULL,
                side TEXT NOT NULL,
                from_size REAL,
                to_size REAL,
                change_abs REAL,
                change_pct REAL,
                notional REAL,
                price REAL,
                liquidation_unconfirmed INTEGER DEFAULT 0,
                created_at TEXT NOT NULL
            )
        """)
        conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_events_addr_asset
            ON position_events(address, asset)
        """)

        conn.execute("""
            CREATE TABLE IF NOT EXISTS alerts (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                type TEXT NOT NULL,
                address TEXT,
                asset TEXT NOT NULL,
                side TEXT,
                notional REAL,
                message_id INTEGER,
                message TEXT,
                delivered INTEGER NOT NULL DEFAULT 0,
                attempts INTEGER NOT NULL DEFAULT 0,
                error TEXT,
                created_at TEXT NOT NULL
            )
        """)
        conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_alerts_type
            ON alerts(type, created_at DESC)
        """)
        conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_alerts_addr_asset
            ON alerts(address, asset)
        """)

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def record_event(self, event: PositionEvent) -> int:
        """Append a classified event. Returns the row id."""
        def _insert():
            with self._get_connection() as conn:
                cursor = conn.execute("""
                    INSERT INTO position_events
                    (event_type, address, asset, side, from_size, to_size, change_abs,
                     change_pct, notional, price, liquidation_unconfirmed, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, (
                    event.kind.value, event.address, event.asset, event.side,
                    event.previous_size, event.size, event.size_delta, event.change_pct,
                    event.notional, event.price, int(event.liquidation_unconfirmed),
                    to_iso(event.timestamp),
                ))
                return cursor.lastrowid

        return self._execute_with_retry(_insert)

    def record_alert(self, item: AlertItem, result: DispatchResult) -> int:
        """Append the outcome of one dispatch. Returns the row id."""
        if isinstance(item, Cluster):
            address, side = "*", None
        else:
            address, side = item.address, item.side

        now = datetime.now(timezone.utc).isoformat()

        def _insert():
            with self._get_connection() as conn:
                cursor = conn.execute("""
                    INSERT INTO alerts
                    (type, address, asset, side, notional, message_id, message,
                     delivered, attempts, error, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, (
                    alert_type(item), address, item.asset, side, alert_notional(item),
                    result.message_id, result.message, int(result.delivered),
                    result.attempts, result.error, now,
                ))
                return cursor.lastrowid

        return self._execute_with_retry(_insert)

    # -------------------------------------------------------------------------
    # Reports
    # -------------------------------------------------------------------------

    def recent_big(self, min_notional: float, limit: int = 20) -> List[Dict]:
        """Newest OPEN / LIQUIDATION / CLUSTER alerts at or above min_notional."""
        placeholders = ",".join("?" for _ in BIG_ALERT_TYPES)

        def _get():
            with self._get_connection() as conn:
                return conn.execute(f"""
                    SELECT * FROM alerts
                    WHERE type IN ({placeholders}) AND notional >= ?
                    ORDER BY id DESC
                    LIMIT ?
                """, (*BIG_ALERT_TYPES, min_notional, limit)).fetchall()

        return [self._row_to_dict(row) for row in self._execute_with_retry(_get)]

    def recent_followups(self, min_notional: float, limit: int = 20) -> List[Dict]:
        """
        Newest INCREASE / REDUCE / CLOSE alerts on pairs that earlier had a big
        OPEN or LIQUIDATION alert.
        """
        followups = ",".join("?" for _ in FOLLOWUP_TYPES)

        def _get():
            with self._get_connection() as conn:
                return conn.execute(f"""
                    SELECT a.* FROM alerts a
                    WHERE a.type IN ({followups})
                      AND EXISTS (
                          SELECT 1 FROM alerts b
                          WHERE b.address = a.address
                            AND b.asset = a.asset
                            AND b.type IN (?, ?)
                            AND b.notional >= ?
                            AND b.id < a.id
                      )
                    ORDER BY a.id DESC
                    LIMIT ?
                """, (
                    *FOLLOWUP_TYPES, EventKind.OPEN.value, EventKind.LIQUIDATION.value,
                    min_notional, limit,
                )).fetchall()

        return [self._row_to_dict(row) for row in self._execute_with_retry(_get)]

    def get_events(self, address: str, asset: Optional[str] = None) -> List[Dict]:
        """Event log for an address (optionally one asset), oldest first."""
        def _get():
            with self._get_connection() as conn:
                sql = "SELECT * FROM position_events WHERE address = ?"
                params = [address]
                if asset is not None:
                    sql += " AND asset = ?"
                    params.append(asset)
                sql += " ORDER BY id"
                return conn.execute(sql, params).fetchall()

        return [self._row_to_dict(row) for row in self._execute_with_retry(_get)]

    def count_alerts(self, delivered: Optional[bool] = None) -> int:
        def _get():
            with self._get_connection() as conn:
                if delivered is None:
                    return conn.execute("SELECT COUNT(*) FROM alerts").fetchone()[0]
                return conn.execute(
                    "SELECT COUNT(*) FROM alerts WHERE delivered = ?",
                    (int(delivered),)
                ).fetchone()[0]

        return self._execute_with_retry(_get)

    def _row_to_dict(self, row: sqlite3.Row) -> Dict:
        data = dict(row)
        for flag in ("delivered", "liquidation_unconfirmed"):
            if flag in data:
                data[flag] = bool(data[flag])
        return data
