import queue

from jobrunner.broker import Broker, Subscription


def test_subscriber_receives_published_message():
    broker = Broker()
    out = queue.Queue()
    sub = broker.subscribe("topic", out)
    broker.publish("topic", "hello")
    assert out.get_nowait() == "hello"
    assert sub == Subscription("topic", out, broker)
    assert broker.subscriber_count("topic") == 1


def test_other_topics_are_not_delivered():
    broker = Broker()
    out = queue.Queue()
    broker.subscribe("a", out)
    broker.publish("b", "msg")
    assert out.empty()


def test_unsubscribe_stops_delivery():
    broker = Broker()
    out = queue.Queue()
    sub = broker.subscribe("topic", out)
    sub.unsubscribe()
    broker.publish("topic", "msg")
    assert out.empty()
    assert broker.subscriber_count("topic") == 0


def test_unsubscribe_unknown_topic_is_harmless():
    broker = Broker()
    out = queue.Queue()
    broker.unsubscribe("missing", out)
    assert broker.subscriber_count("missing") == 0


def test_unsubscribe_removes_only_matching_channel():
    broker = Broker()
    first, second = queue.Queue(), queue.Queue()
    broker.subscribe("topic", first)
    broker.subscribe("topic", second)
    broker.unsubscribe("topic", first)
    broker.publish("topic", "x")
    assert first.empty()
    assert second.get_nowait() == "x"


def test_full_subscriber_is_dropped_after_repeated_failures():
    broker = Broker()
    out = queue.Queue(maxsize=1)
    out.put_nowait("blocking")
    broker.subscribe("topic", out)
    for _ in range(4):
        broker.publish("topic", "msg")
    assert broker.subscriber_count("topic") == 1
    broker.publish("topic", "msg")
    assert broker.subscriber_count("topic") == 0


def test_successful_send_resets_failures():
    broker = Broker()
    out = queue.Queue(maxsize=1)
    out.put_nowait("blocking")
    broker.subscribe("topic", out)
    for _ in range(3):
        broker.publish("topic", "msg")
    out.get_nowait()
    broker.publish("topic", "delivered")
    for _ in range(3):
        broker.publish("topic", "msg")
    assert broker.subscriber_count("topic") == 1
    assert out.get_nowait() == "delivered"