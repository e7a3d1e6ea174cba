"""
Error Taxonomy

Nothing below ConfigError is fatal: each error degrades to skipping one
snapshot, one address for one tick, or one notification.
"""


class WhaleMonitorError(Exception):
    """Base class for all monitor errors."""


class ConfigError(WhaleMonitorError):
    """Invalid configuration, raised once at startup."""


class InvalidSnapshot(WhaleMonitorError):
    """Malformed snapshot. Classification is aborted and the store is untouched."""


class StoreUnavailable(WhaleMonitorError):
    """Persistence layer unreachable. The address is retried on the next tick."""


class DeliveryFailed(WhaleMonitorError):
    """Notification channel error. Retried once, then the alert is dropped."""


class UpstreamTimeout(WhaleMonitorError):
    """Exchange API slow or unresponsive. The address is skipped this tick."""
