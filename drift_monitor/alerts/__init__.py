"""
Alert lifecycle: creation with per-metric coalescing, state transitions,
queries, statistics and event fan-out.
"""

from .events import AlertPublisher, LoggingNotifier, RedisChannelHandler
from .manager import AUTO_RESOLVE_NOTE, AlertManager, AlertParams

__all__ = [
    "AlertManager",
    "AlertParams",
    "AUTO_RESOLVE_NOTE",
    "AlertPublisher",
    "LoggingNotifier",
    "RedisChannelHandler",
]
