"""Process-wide shutdown flag and the hooks that run when shutdown starts."""

from __future__ import annotations

import logging
import os
import signal
import threading
import time
from typing import Callable

GRACE_PERIOD = 15.0
"""Seconds given to shutdown hooks before the service stops waiting."""

HookFunc = Callable[[float], object]

logger = logging.getLogger(__name__)

_hooks: list[HookFunc] = []
_hooks_lock = threading.Lock()

_state_lock = threading.Lock()
_is_shutdown = False


def register_hook(fn: HookFunc) -> None:
    """Add a hook to be called with the grace period when shutdown starts."""
    with _hooks_lock:
        _hooks.append(fn)
        count = len(_hooks)
    logger.info("Registered shutdown hook: #%d", count)


def check_shutdown() -> bool:
    """Return True once a shutdown is in progress."""
    with _state_lock:
        return _is_shutdown


def _set_shutdown() -> None:
    global _is_shutdown
    with _state_lock:
        _is_shutdown = True
    os.environ["SHUTDOWN"] = "true"


def _reset() -> None:
    """Forget all hooks and clear the shutdown flag."""
    global _is_shutdown
    with _hooks_lock:
        _hooks.clear()
    with _state_lock:
        _is_shutdown = False


def _run_hook(index: int, hook: HookFunc, grace_period: float) -> None:
    try:
        hook(grace_period)
    except Exception:
        logger.exception("Shutdown hook %d failed", index)
    logger.info("Shutdown hook %d completed", index)


def initiate_shutdown(grace_period: float = GRACE_PERIOD) -> bool:
    """Mark the process as shutting down and run every hook concurrently.

    Waits at most ``grace_period`` seconds. Returns True when all hooks
    finished in time.
    """
    _set_shutdown()
    with _hooks_lock:
        hooks = list(_hooks)
    logger.info("Shutting down %d hooks (grace period is: %ss)", len(hooks), grace_period)

    threads = []
    for index, hook in enumerate(hooks):
        thread = threading.Thread(
            target=_run_hook,
            args=(index, hook, grace_period),
            name=f"shutdown-hook-{index}",
            daemon=True,
        )
        thread.start()
        threads.append(thread)

    deadline = time.monotonic() + grace_period
    for thread in threads:
        thread.join(max(0.0, deadline - time.monotonic()))

    completed = not any(thread.is_alive() for thread in threads)
    if completed:
        logger.info("All shutdown hooks completed")
    else:
        logger.warning("Shutdown hooks timed out after %ss", grace_period)
    logger.info("Shutdown service done")
    return completed


def init_shutdown_service(done: threading.Event) -> None:
    """Run the shutdown hooks on SIGINT or SIGTERM, then set ``done``.

    Only the first signal starts a shutdown; later ones are ignored.
    Must be called from the main thread.
    """
    triggered = threading.Event()

    def _shutdown_worker() -> None:
        try:
            initiate_shutdown(GRACE_PERIOD)
        finally:
            done.set()

    def _handle(signum: int, _frame: object) -> None:
        if triggered.is_set():
            return
        triggered.set()
        logger.info("Received shutdown signal: %s", signal.Signals(signum).name)
        threading.Thread(target=_shutdown_worker, name="shutdown", daemon=True).start()

    signal.signal(signal.SIGINT, _handle)
    signal.signal(signal.SIGTERM, _handle)