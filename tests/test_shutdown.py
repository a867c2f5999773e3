import os
import signal
import threading
import time

import pytest

from jobrunner import shutdown


@pytest.fixture(autouse=True)
def clean_state(monkeypatch):
    monkeypatch.delenv("SHUTDOWN", raising=False)
    shutdown._reset()
    yield
    shutdown._reset()


def test_not_shut_down_initially():
    assert shutdown.check_shutdown() is False


def test_initiate_sets_flag_and_environment():
    assert shutdown.initiate_shutdown(1.0) is True
    assert shutdown.check_shutdown() is True
    assert os.environ["SHUTDOWN"] == "true"


def test_hooks_receive_grace_period():
    seen = []
    shutdown.register_hook(seen.append)
    shutdown.register_hook(seen.append)
    assert shutdown.initiate_shutdown(2.5) is True
    assert seen == [2.5, 2.5]


def test_failing_hook_does_not_stop_others():
    seen = []

    def broken(_grace):
        raise RuntimeError("boom")

    shutdown.register_hook(broken)
    shutdown.register_hook(seen.append)
    assert shutdown.initiate_shutdown(1.0) is True
    assert seen == [1.0]


def test_slow_hook_times_out():
    release = threading.Event()
    shutdown.register_hook(lambda _grace: release.wait(5))
    started = time.monotonic()
    try:
        assert shutdown.initiate_shutdown(0.2) is False
        assert time.monotonic() - started < 4
    finally:
        release.set()


def test_hooks_run_concurrently():
    barrier = threading.Barrier(2, timeout=3)
    shutdown.register_hook(lambda _grace: barrier.wait())
    shutdown.register_hook(lambda _grace: barrier.wait())
    assert shutdown.initiate_shutdown(3.0) is True
    assert barrier.broken is False


def test_signal_triggers_service():
    old_int = signal.getsignal(signal.SIGINT)
    old_term = signal.getsignal(signal.SIGTERM)
    done = threading.Event()
    called = threading.Event()
    shutdown.register_hook(lambda _grace: called.set())
    try:
        shutdown.init_shutdown_service(done)
        signal.raise_signal(signal.SIGTERM)
        assert done.wait(5) is True
        assert called.is_set()
        assert shutdown.check_shutdown() is True
    finally:
        signal.signal(signal.SIGINT, old_int)
        signal.signal(signal.SIGTERM, old_term)