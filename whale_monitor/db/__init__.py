from .whale_db import WhaleDB, WhaleStats
from .snapshot_store import SnapshotStore, PositionStats
from .alert_log import AlertLog

__all__ = ["WhaleDB", "WhaleStats", "SnapshotStore", "PositionStats", "AlertLog"]
