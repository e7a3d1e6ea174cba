"""
Shared Data Models
==================

This package contains dataclasses used across the project.
"""

from .position import (
    LONG,
    SHORT,
    SIDES,
    Position,
    PositionSnapshot,
    RawSnapshot,
    position_key,
)
from .events import (
    CLUSTER_TYPE,
    AlertItem,
    Cluster,
    DispatchResult,
    EventKind,
    PositionEvent,
    alert_notional,
    alert_type,
    size_bucket,
)
from .whale import Whale

__all__ = [
    "LONG",
    "SHORT",
    "SIDES",
    "Position",
    "PositionSnapshot",
    "RawSnapshot",
    "position_key",
    "CLUSTER_TYPE",
    "AlertItem",
    "Cluster",
    "DispatchResult",
    "EventKind",
    "PositionEvent",
    "alert_notional",
    "alert_type",
    "size_bucket",
    "Whale",
]
