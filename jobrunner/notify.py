"""Job update notifications published through a shared broker."""

from __future__ import annotations

import queue
import threading
from typing import Any, Iterable

from . import shutdown
from .broker import Broker, Subscription

JOB_UPDATE_SUBJECT = "job.update"
CLOSE_SIGNAL = "close"

_broker: Broker | None = None
_broker_lock = threading.Lock()


def get_broker() -> Broker:
    """Return the process-wide broker, creating it on first use."""
    global _broker
    with _broker_lock:
        if _broker is None:
            _broker = Broker()
        return _broker


def start_pubsub() -> Broker:
    """Make sure the shared broker exists and return it."""
    return get_broker()


def listen_for_updates(updates: Iterable[Any]) -> threading.Thread:
    """Publish every item of ``updates`` on the job update topic.

    Runs in a background thread that ends when ``updates`` is exhausted;
    for a queue pass e.g. ``iter(q.get, None)``.
    """
    broker = get_broker()

    def _forward() -> None:
        for update in updates:
            broker.publish(JOB_UPDATE_SUBJECT, update)

    thread = threading.Thread(target=_forward, name="job-update-forwarder", daemon=True)
    thread.start()
    return thread


def subscribe_to_updates(out: Any) -> Subscription:
    """Subscribe ``out`` to job updates.

    On shutdown the subscription is removed and ``CLOSE_SIGNAL`` is
    offered to ``out`` without blocking.
    """
    subscription = get_broker().subscribe(JOB_UPDATE_SUBJECT, out)

    def _close(_grace_period: float) -> None:
        subscription.unsubscribe()
        try:
            out.put_nowait(CLOSE_SIGNAL)
        except queue.Full:
            pass

    shutdown.register_hook(_close)
    return subscription