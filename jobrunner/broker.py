"""A small in-process topic broker that fans messages out to queues."""

from __future__ import annotations

import logging
import queue
import threading
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

MAX_CONSECUTIVE_FAILS = 3


@dataclass
class _Entry:
    channel: Any
    consec_fails: int = 0


@dataclass
class Subscription:
    """A channel's subscription to a topic on a broker."""

    topic: str
    channel: Any
    broker: "Broker"

    def unsubscribe(self) -> None:
        """Remove this subscription from its broker."""
        self.broker.unsubscribe(self.topic, self.channel)


class Broker:
    """Keeps subscribers per topic and publishes to them without blocking.

    A subscriber is any object with ``put_nowait`` (normally a
    ``queue.Queue``). A subscriber whose queue stays full for more than
    three publishes in a row is dropped.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscribers: dict[str, list[_Entry]] = {}

    def subscribe(self, topic: str, channel: Any) -> Subscription:
        """Subscribe ``channel`` to ``topic``."""
        with self._lock:
            self._subscribers.setdefault(topic, []).append(_Entry(channel))
        logger.debug("Subscribed to topic: %s, channel: %r", topic, channel)
        return Subscription(topic, channel, self)

    def unsubscribe(self, topic: str, channel: Any) -> None:
        """Remove the first subscription of ``channel`` to ``topic``, if any."""
        with self._lock:
            entries = self._subscribers.get(topic)
            if entries is None:
                return
            for index, entry in enumerate(entries):
                if entry.channel is channel:
                    del entries[index]
                    break
        logger.debug("Unsubscribed from topic: %s, channel: %r", topic, channel)

    def subscriber_count(self, topic: str) -> int:
        """Return how many channels are subscribed to ``topic``."""
        with self._lock:
            return len(self._subscribers.get(topic, ()))

    def publish(self, topic: str, msg: Any) -> None:
        """Offer ``msg`` to every subscriber of ``topic`` without blocking."""
        with self._lock:
            entries = list(self._subscribers.get(topic, ()))

        for entry in entries:
            if entry.consec_fails > MAX_CONSECUTIVE_FAILS:
                logger.warning(
                    "Too many consecutive failures for topic: %s, channel: %r",
                    topic,
                    entry.channel,
                )
                self.unsubscribe(topic, entry.channel)
                break
            try:
                entry.channel.put_nowait(msg)
            except queue.Full:
                entry.consec_fails += 1
                logger.debug("Publish to %s failed (%d in a row)", topic, entry.consec_fails)
            else:
                entry.consec_fails = 0