import threading
import time

from conftest import RecordingTransport, make_event
from neuvera.client.batcher import EventBatcher


def test_queue_size_triggers_one_flush(recorder):
    b = EventBatcher(recorder, max_queue_size=10)
    for i in range(10):
        b.enqueue(make_event(i))
    assert len(recorder.batches) == 1
    assert len(recorder.batches[0]) == 10
    assert len(b) == 0


def test_twelve_events_flush_first_ten(recorder):
    b = EventBatcher(recorder, max_queue_size=10)
    events = [make_event(i) for i in range(12)]
    for ev in events:
        b.enqueue(ev)
    assert len(recorder.batches) == 1
    assert recorder.batches[0] == events[:10]
    assert b.pending() == events[10:]


def test_flush_empty_is_noop(recorder):
    b = EventBatcher(recorder)
    assert b.flush() is False
    assert recorder.batches == []


def test_offline_defers_unless_forced(recorder):
    online = {"up": False}
    b = EventBatcher(recorder, is_online=lambda: online["up"])
    b.enqueue(make_event(1))
    assert b.flush() is False
    assert len(b) == 1
    assert b.flush(force=True) is True
    assert recorder.sent == [make_event(1)]


def test_failed_batch_requeued_once_in_front():
    t = RecordingTransport(ok=False)
    b = EventBatcher(t, max_queue_size=100, max_retries=1)
    b.enqueue(make_event(1))
    b.enqueue(make_event(2))
    assert b.flush() is False
    b.enqueue(make_event(3))
    assert b.pending() == [make_event(1), make_event(2), make_event(3)]

    # second failure drops the retried events, the new one keeps its retry
    assert b.flush() is False
    assert b.pending() == [make_event(3)]


def test_no_retry_when_disabled():
    t = RecordingTransport(ok=False)
    b = EventBatcher(t, max_retries=0)
    b.enqueue(make_event(1))
    b.flush()
    assert len(b) == 0


def test_flush_not_reentrant():
    b = None

    class Reentrant(RecordingTransport):
        def send(self, batch):
            # a timer tick landing mid-flush must not send again
            assert b.flush(force=True) is False
            return super().send(batch)

    t = Reentrant()
    b = EventBatcher(t, max_queue_size=100)
    b.enqueue(make_event(1))
    assert b.flush() is True
    assert len(t.batches) == 1


def test_timer_flushes_periodically():
    sent = threading.Event()

    class Signalling(RecordingTransport):
        def send(self, batch):
            ok = super().send(batch)
            sent.set()
            return ok

    t = Signalling()
    b = EventBatcher(t, max_queue_size=100)
    b.enqueue(make_event(1))
    b.start(0.01)
    try:
        assert sent.wait(2)
    finally:
        b.stop()
    assert t.sent == [make_event(1)]


class Exploding(RecordingTransport):
    def __init__(self, failures=1):
        super().__init__()
        self.failures = failures

    def send(self, batch):
        if self.failures:
            self.failures -= 1
            raise RuntimeError("boom")
        return super().send(batch)


def test_transport_exception_requeues_batch():
    t = Exploding()
    b = EventBatcher(t, max_queue_size=100)
    b.enqueue(make_event(1))
    assert b.flush() is False
    assert b.pending() == [make_event(1)]
    assert b.flush() is True
    assert t.sent == [make_event(1)]


def test_timer_survives_transport_exception():
    failed, sent = threading.Event(), threading.Event()

    class Flaky(RecordingTransport):
        def send(self, batch):
            if not failed.is_set():
                failed.set()
                raise RuntimeError("boom")
            ok = super().send(batch)
            sent.set()
            return ok

    t = Flaky()
    b = EventBatcher(t, max_queue_size=100, max_retries=0)
    b.enqueue(make_event(1))
    b.start(0.01)
    try:
        assert failed.wait(2)
        b.enqueue(make_event(2))
        assert sent.wait(2)
    finally:
        b.stop()
    # the first batch was dropped, the timer kept going
    assert t.sent == [make_event(2)]


def test_timer_survives_flush_error(recorder):
    calls = []

    def is_online():
        calls.append(1)
        if len(calls) == 1:
            raise OSError("connectivity check failed")
        return True

    b = EventBatcher(recorder, max_queue_size=100, is_online=is_online)
    b.enqueue(make_event(1))
    b.start(0.01)
    try:
        deadline = time.time() + 2
        while not recorder.batches and time.time() < deadline:
            time.sleep(0.01)
    finally:
        b.stop()
    assert recorder.sent == [make_event(1)]
