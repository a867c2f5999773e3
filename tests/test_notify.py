import queue

import pytest

from jobrunner import notify, shutdown


@pytest.fixture(autouse=True)
def clean_state(monkeypatch):
    monkeypatch.delenv("SHUTDOWN", raising=False)
    shutdown._reset()
    yield
    shutdown._reset()


def test_broker_is_singleton():
    assert notify.get_broker() is notify.get_broker()
    assert notify.start_pubsub() is notify.get_broker()


def test_updates_are_forwarded_to_subscribers():
    out = queue.Queue()
    sub = notify.subscribe_to_updates(out)
    try:
        thread = notify.listen_for_updates(["updated", "again"])
        thread.join(5)
        assert not thread.is_alive()
        assert out.get_nowait() == "updated"
        assert out.get_nowait() == "again"
    finally:
        sub.unsubscribe()


def test_listen_from_queue_until_sentinel():
    out = queue.Queue()
    updates = queue.Queue()
    sub = notify.subscribe_to_updates(out)
    try:
        thread = notify.listen_for_updates(iter(updates.get, None))
        updates.put("updated")
        assert out.get(timeout=5) == "updated"
        updates.put(None)
        thread.join(5)
        assert not thread.is_alive()
    finally:
        sub.unsubscribe()


def test_shutdown_unsubscribes_and_sends_close():
    broker = notify.get_broker()
    before = broker.subscriber_count(notify.JOB_UPDATE_SUBJECT)
    out = queue.Queue()
    sub = notify.subscribe_to_updates(out)
    assert broker.subscriber_count(notify.JOB_UPDATE_SUBJECT) == before + 1
    assert shutdown.initiate_shutdown(2.0) is True
    assert out.get_nowait() == notify.CLOSE_SIGNAL
    assert broker.subscriber_count(notify.JOB_UPDATE_SUBJECT) == before
    sub.unsubscribe()


def test_shutdown_with_full_queue_does_not_block():
    out = queue.Queue(maxsize=1)
    out.put_nowait("pending")
    notify.subscribe_to_updates(out)
    assert shutdown.initiate_shutdown(2.0) is True
    assert out.get_nowait() == "pending"