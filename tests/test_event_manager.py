import json
import threading
import time

import pytest
import requests
import responses

from devcycle.event_manager import (
    AGG_VARIABLE_DEFAULTED,
    EventManager,
    EventQueueClosedError,
    FlushPayload,
    FlushResult,
    QueueFullError,
)

SDK_KEY = "token"
EVENTS_URL = "https://events.devcycle.com/v1/events/batch"
USER = {"user_id": "j_test", "deviceModel": "testing"}


class FakeQueue:
    def __init__(self, max_size=None):
        self.max_size = max_size
        self.events = []
        self.aggregates = []
        self.results = []
        self._lock = threading.Lock()

    def queue_event(self, user, event):
        with self._lock:
            if self.max_size is not None and len(self.events) >= self.max_size:
                raise QueueFullError("queue full")
            self.events.append({"user": user, "event": event})

    def queue_aggregate_event(self, variable_variation_map, event):
        with self._lock:
            self.aggregates.append((variable_variation_map, event))

    def flush_event_queue(self, callback):
        with self._lock:
            snapshot = list(self.events)
        payloads = {"payload-1": FlushPayload("payload-1", snapshot, len(snapshot))} if snapshot else {}
        result = callback(payloads)
        self.results.append(result)
        done = set(result.success_payloads) | set(result.failure_payloads)
        if "payload-1" in done:
            with self._lock:
                del self.events[: len(snapshot)]

    def user_queue_length(self):
        with self._lock:
            return len(self.events)

    def metrics(self):
        return (1, 2, 3)


def quiet_manager(queue, **kwargs):
    return EventManager(
        queue,
        SDK_KEY,
        disable_automatic_event_logging=True,
        disable_custom_event_logging=True,
        **kwargs,
    )


def test_queue_event():
    queue = FakeQueue()
    manager = quiet_manager(queue)
    manager.queue_event(USER, {"target": "customevent", "type": "event"})
    assert queue.user_queue_length() == 1
    assert queue.events[0]["event"]["type"] == "event"


def test_queue_event_100_drop_event():
    queue = FakeQueue(max_size=100)
    manager = quiet_manager(queue, flush_event_queue_size=10)
    queued = 0
    with pytest.raises(QueueFullError, match="event queue is full"):
        for _ in range(1000):
            manager.queue_event(USER, {"target": "customevent"})
            queued += 1
    assert queued == 100


def test_queue_event_100_flush():
    queue = FakeQueue(max_size=100)
    with responses.RequestsMock(assert_all_requests_are_fired=False) as rsps:
        rsps.add(responses.POST, EVENTS_URL, body="{}", status=201)
        manager = EventManager(queue, SDK_KEY, flush_interval=60, flush_event_queue_size=10)
        for _ in range(10):
            manager.queue_event(USER, {"target": "customevent", "type": "event"})
        assert queue.user_queue_length() == 10
        assert len(rsps.calls) == 0

        manager.queue_event(USER, {"target": "customevent", "type": "event"})
        deadline = time.monotonic() + 2
        while len(rsps.calls) < 1 and time.monotonic() < deadline:
            time.sleep(0.01)
        assert len(rsps.calls) == 1
        manager.close()


def test_queue_event_after_close_raises():
    queue = FakeQueue()
    manager = quiet_manager(queue)
    manager.close()
    with pytest.raises(EventQueueClosedError):
        manager.queue_event(USER, {"type": "event"})
    assert manager.closed


def test_queue_variable_defaulted_event():
    queue = FakeQueue()
    manager = quiet_manager(queue)
    manager.queue_variable_defaulted_event("my-variable")
    assert queue.aggregates == [({}, {"type": AGG_VARIABLE_DEFAULTED, "target": "my-variable"})]


def test_metrics_pass_through():
    manager = quiet_manager(FakeQueue())
    assert manager.metrics() == (1, 2, 3)


@pytest.mark.parametrize(
    ("status", "expected"),
    [
        (201, FlushResult(["p"], [], [])),
        (500, FlushResult([], [], ["p"])),
        (503, FlushResult([], [], ["p"])),
        (400, FlushResult([], ["p"], [])),
        (200, FlushResult([], ["p"], [])),
    ],
)
def test_flush_event_payloads_by_status(status, expected):
    manager = quiet_manager(FakeQueue())
    with responses.RequestsMock() as rsps:
        rsps.add(responses.POST, EVENTS_URL, body="{}", status=status)
        result = manager.flush_event_payloads({"p": FlushPayload("p", [{"type": "event"}])})
    assert result == expected


def test_flush_event_payloads_connection_error_is_failure():
    manager = quiet_manager(FakeQueue())
    with responses.RequestsMock() as rsps:
        rsps.add(responses.POST, EVENTS_URL, body=requests.ConnectionError("down"))
        result = manager.flush_event_payloads({"p": FlushPayload("p", [])})
    assert result == FlushResult([], ["p"], [])


def test_flush_event_payloads_request_shape():
    manager = quiet_manager(FakeQueue())
    records = [{"type": "event", "target": "customevent"}]
    with responses.RequestsMock() as rsps:
        rsps.add(responses.POST, EVENTS_URL, body="{}", status=201)
        manager.flush_event_payloads({"p": FlushPayload("p", records)})
        request = rsps.calls[0].request
    assert request.headers["Authorization"] == SDK_KEY
    assert request.headers["Content-Type"] == "application/json"
    assert json.loads(request.body) == {"batch": records}


def test_flush_event_payloads_unserialisable_record_is_failure():
    manager = quiet_manager(FakeQueue())
    with responses.RequestsMock(assert_all_requests_are_fired=False):
        result = manager.flush_event_payloads({"p": FlushPayload("p", [object()])})
    assert result.failure_payloads == ["p"]


def test_flush_events_success_drains_queue():
    queue = FakeQueue()
    manager = quiet_manager(queue)
    manager.queue_event(USER, {"type": "event"})
    manager.queue_event(USER, {"type": "event"})
    with responses.RequestsMock() as rsps:
        rsps.add(responses.POST, EVENTS_URL, body="{}", status=201)
        manager.flush_events()
        assert len(rsps.calls) == 1
    assert queue.user_queue_length() == 0
    assert queue.results[-1].success_payloads == ["payload-1"]


def test_flush_events_server_error_keeps_events():
    queue = FakeQueue()
    manager = quiet_manager(queue)
    manager.queue_event(USER, {"type": "event"})
    with responses.RequestsMock() as rsps:
        rsps.add(responses.POST, EVENTS_URL, body="oops", status=500)
        manager.flush_events()
    assert queue.user_queue_length() == 1
    assert queue.results[-1].failure_with_retry_payloads == ["payload-1"]


def test_close_flushes_remaining_events():
    queue = FakeQueue()
    with responses.RequestsMock() as rsps:
        rsps.add(responses.POST, EVENTS_URL, body="{}", status=201)
        manager = EventManager(queue, SDK_KEY, flush_interval=60)
        manager.queue_event(USER, {"type": "event"})
        manager.close()
        assert len(rsps.calls) == 1
    assert queue.user_queue_length() == 0