# Core business logic
from .diff_engine import PositionDiffEngine, validate_snapshot
from .clusters import ClusterDetector
from .whale_stats import FillStats, compute_fill_stats
from .monitor import TickResult, WhaleMonitor

__all__ = [
    "PositionDiffEngine",
    "validate_snapshot",
    "ClusterDetector",
    "FillStats",
    "compute_fill_stats",
    "TickResult",
    "WhaleMonitor",
]
