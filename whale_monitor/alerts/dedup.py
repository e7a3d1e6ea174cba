"""
Alert Deduplication

Suppresses repeats of the same alert within a cooldown. Two alerts are the
same when they share (address, asset, kind, size bucket); clusters use
address "*" and kind CLUSTER.
"""

import logging
import threading
import time
from typing import Dict, Optional, Tuple

from ..models import AlertItem

logger = logging.getLogger(__name__)

DedupKey = Tuple[str, str, str, int]


class AlertDeduplicator:
    """Cooldown filter keyed by each item's dedup_key."""

    def __init__(self, cooldown_sec: float = 300):
        self.cooldown_sec = cooldown_sec
        self._last_sent: Dict[DedupKey, float] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._last_sent)

    def admit(self, item: AlertItem, now: Optional[float] = None) -> bool:
        """
        Decide whether an item may be dispatched.

        Args:
            item: Event or cluster
            now: Epoch seconds (default: time.time())

        Returns:
            True if admitted (and recorded), False if suppressed
        """
        if now is None:
            now = time.time()
        key = item.dedup_key

        with self._lock:
            self._purge(now)

            last = self._last_sent.get(key)
            if last is not None and now - last < self.cooldown_sec:
                logger.debug(
                    f"Suppressed duplicate {key[2]} {key[1]} "
                    f"({now - last:.0f}s < {self.cooldown_sec:.0f}s cooldown)"
                )
                return False

            self._last_sent[key] = now
            return True

    def clear(self):
        with self._lock:
            self._last_sent.clear()

    def _purge(self, now: float):
        stale = [k for k, ts in self._last_sent.items() if now - ts >= self.cooldown_sec]
        for key in stale:
            del self._last_sent[key]
