"""
Alert event fan-out.

``AlertPublisher`` is a process-local publish/subscribe hub: the alert manager
publishes every newly created alert and subscribers react (dashboards pushing
updates, webhooks, the Redis forwarder below). Delivery is synchronous and
best-effort; a failing subscriber is logged and counted but never blocks the
other subscribers or the alert write that triggered it.

Notification hooks are separate from subscribers: they fire only for the
severities configured in ``AlertConfig.notify_severities`` and their outcome
is recorded on the alert (``notifications_sent``).
"""

import json
import logging
import threading
from typing import Any, Callable, Dict, List

from redis import Redis, RedisError

from ..models import Alert

logger = logging.getLogger(__name__)

AlertHandler = Callable[[Alert], None]


class AlertPublisher:
    """
    Synchronous in-process pub/sub for alert events.

    Example:
        >>> publisher = AlertPublisher()
        >>> unsubscribe = publisher.subscribe(lambda alert: print(alert.title))
        >>> publisher.publish(alert)
        Drift detected: response_latency_ms
        >>> unsubscribe()
    """

    def __init__(self):
        self._handlers: List[AlertHandler] = []
        self._lock = threading.Lock()
        self.delivered = 0
        self.failures = 0

    def subscribe(self, handler: AlertHandler) -> Callable[[], None]:
        """Register ``handler``; returns a function that removes it again."""
        with self._lock:
            self._handlers.append(handler)

        def unsubscribe() -> None:
            with self._lock:
                if handler in self._handlers:
                    self._handlers.remove(handler)

        return unsubscribe

    def publish(self, alert: Alert) -> int:
        """
        Deliver ``alert`` to every subscriber.

        Returns:
            Number of subscribers that handled the alert without raising
        """
        with self._lock:
            handlers = list(self._handlers)

        delivered = 0
        for handler in handlers:
            try:
                handler(alert)
                delivered += 1
            except Exception as e:
                self.failures += 1
                logger.warning(
                    f"Alert handler {getattr(handler, '__name__', handler)!r} failed "
                    f"for alert {alert.id}: {e}"
                )
        self.delivered += delivered
        return delivered

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._handlers)

    def get_stats(self) -> Dict[str, Any]:
        return {
            "subscribers": self.subscriber_count,
            "delivered": self.delivered,
            "failures": self.failures,
        }


class LoggingNotifier:
    """
    Default notification hook: writes the alert to the error log.

    Logging-only so it works in offline and test environments; chat or
    paging integrations implement the same ``__call__`` signature.
    """

    channel = "log"

    def __call__(self, alert: Alert) -> None:
        logger.error(
            "ALERT: %s [%s] %s (score=%.2f)",
            alert.title or alert.name,
            alert.severity.value,
            alert.message,
            alert.drift_score,
        )


class RedisChannelHandler:
    """
    Subscriber that forwards created alerts to a Redis pub/sub channel.

    Lets consumers in other processes (notification workers, dashboards)
    receive alerts without polling the query API.
    """

    def __init__(self, client: Redis, channel: str = "drift:alerts"):
        self.client = client
        self.channel = channel

    def __call__(self, alert: Alert) -> None:
        try:
            self.client.publish(self.channel, json.dumps(alert.to_dict()))
        except RedisError as e:
            logger.warning(f"Failed to publish alert {alert.id} to {self.channel}: {e}")
            raise
