"""Notification bus for routing session progress to sinks."""
import logging
import threading
from collections import defaultdict
from typing import Callable

from rebalancer.models import Channel, Notification

logger = logging.getLogger(__name__)

# Messages that carry no content for a reader
SUPPRESSED_MESSAGES = {"", "TERMINATE", "!@#$^"}


class NotificationBus:
    """Thread-safe pub/sub bus delivering notifications to sinks by channel."""

    def __init__(self):
        self._subscribers: dict[str, list[Callable[[Notification], None]]] = defaultdict(list)
        self._lock = threading.Lock()

    def subscribe(self, channels: list[str], callback: Callable[[Notification], None]) -> None:
        """Register callback for specific channels.

        Args:
            channels: Channel names to subscribe to. Use ["*"] for all channels.
            callback: Function to call when a matching notification is published.
        """
        with self._lock:
            for channel in channels:
                self._subscribers[channel].append(callback)
                logger.debug(f"Subscribed {callback.__name__} to {channel}")

    def unsubscribe(self, callback: Callable[[Notification], None]) -> None:
        """Remove callback from all subscriptions."""
        with self._lock:
            for channel in list(self._subscribers.keys()):
                if callback in self._subscribers[channel]:
                    self._subscribers[channel].remove(callback)
                    logger.debug(f"Unsubscribed {callback.__name__} from {channel}")

    def publish(self, notification: Notification) -> bool:
        """Send notification to all subscribers of its channel.

        Returns:
            False if the message was blank and dropped, True otherwise
        """
        message = (notification.message or "").strip()
        if message in SUPPRESSED_MESSAGES:
            return False
        notification.message = message

        with self._lock:
            callbacks = list(
                self._subscribers.get(notification.channel.value, []) +
                self._subscribers.get("*", [])
            )

        for callback in callbacks:
            try:
                callback(notification)
            except Exception as e:
                logger.error(f"Error in subscriber {callback.__name__}: {e}")
        return True


class Notifier:
    """Publishes notifications on behalf of one session."""

    def __init__(self, bus: NotificationBus, session_id: str):
        self.bus = bus
        self.session_id = session_id

    def system(self, message: str) -> None:
        logger.info(f"[{self.session_id}] {message}")
        self.bus.publish(Notification(self.session_id, Channel.SYSTEM, message))

    def oracle(self, message: str) -> None:
        logger.info(f"[{self.session_id}] oracle: {message}")
        self.bus.publish(Notification(self.session_id, Channel.ORACLE, message))
