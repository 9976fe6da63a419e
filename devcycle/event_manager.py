"""Batching and delivery of analytics events to the events API."""

from __future__ import annotations

import enum
import threading
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol, runtime_checkable

import requests

from . import log
from .request import encode_body

__all__ = [
    "DEFAULT_EVENTS_API_BASE_PATH",
    "AGG_VARIABLE_DEFAULTED",
    "FlushPayload",
    "FlushResult",
    "InternalEventQueue",
    "QueueFullError",
    "EventQueueClosedError",
    "EventManager",
]

DEFAULT_EVENTS_API_BASE_PATH = "https://events.devcycle.com"
DEFAULT_FLUSH_INTERVAL = 10.0
DEFAULT_FLUSH_EVENT_QUEUE_SIZE = 1000
AGG_VARIABLE_DEFAULTED = "aggVariableDefaulted"


@dataclass
class FlushPayload:
    """One batch of event records awaiting delivery."""

    payload_id: str
    records: list[Any] = field(default_factory=list)
    event_count: int = 0


@dataclass
class FlushResult:
    """Outcome of delivering a set of payloads, by payload id."""

    success_payloads: list[str] = field(default_factory=list)
    failure_payloads: list[str] = field(default_factory=list)
    failure_with_retry_payloads: list[str] = field(default_factory=list)


FlushCallback = Callable[[Mapping[str, FlushPayload]], FlushResult]


class QueueFullError(Exception):
    """The event queue cannot accept more events."""


class EventQueueClosedError(Exception):
    """Events were queued after the client was closed."""


@runtime_checkable
class InternalEventQueue(Protocol):
    """Storage for events between being queued and being delivered."""

    def queue_event(self, user: Any, event: Any) -> None:
        """Queue a custom event for a user; raise QueueFullError when full."""

    def queue_aggregate_event(self, variable_variation_map: Mapping[str, Any], event: Any) -> None:
        """Queue an aggregated event."""

    def flush_event_queue(self, callback: FlushCallback) -> None:
        """Hand pending payloads to ``callback`` and apply its result."""

    def user_queue_length(self) -> int:
        """Number of custom events waiting to be batched."""

    def metrics(self) -> tuple[int, int, int]:
        """Counts of events flushed, reported and dropped."""


class _Outcome(enum.Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    RETRY = "retry"


class EventManager:
    """Flushes an internal event queue to the events API, periodically and on demand."""

    def __init__(
        self,
        internal_queue: InternalEventQueue,
        sdk_key: str,
        events_api_base_path: str = DEFAULT_EVENTS_API_BASE_PATH,
        flush_interval: float = DEFAULT_FLUSH_INTERVAL,
        flush_event_queue_size: int = DEFAULT_FLUSH_EVENT_QUEUE_SIZE,
        disable_automatic_event_logging: bool = False,
        disable_custom_event_logging: bool = False,
        session: requests.Session | None = None,
    ) -> None:
        self.internal_queue = internal_queue
        self.sdk_key = sdk_key
        self.events_api_base_path = events_api_base_path
        self.flush_interval = flush_interval
        self.flush_event_queue_size = flush_event_queue_size
        self._session = session if session is not None else requests.Session()
        self._flush_lock = threading.Lock()
        self._force_flush = threading.Event()
        self._stop = threading.Event()
        self._closed = False
        self._thread: Optional[threading.Thread] = None

        # Nothing can produce events, so there is nothing to flush periodically.
        if disable_automatic_event_logging and disable_custom_event_logging:
            return
        self._thread = threading.Thread(
            target=self._run, name="devcycle-event-flush", daemon=True
        )
        self._thread.start()

    @property
    def closed(self) -> bool:
        return self._closed

    def _run(self) -> None:
        while True:
            self._force_flush.wait(self.flush_interval)
            if self._stop.is_set():
                log.infof("Stopping event flushing.")
                return
            self._force_flush.clear()
            try:
                self.flush_events()
            except Exception as exc:  # the flush loop must survive failures
                log.warnf("Error flushing primary events queue: %s", exc)

    def queue_event(self, user: Any, event: Any) -> None:
        """Queue a custom event, triggering a flush once the queue is large enough."""
        if self._closed:
            raise EventQueueClosedError(
                "DevCycle client was closed, no more events can be tracked."
            )
        try:
            queue_size = self.internal_queue.user_queue_length()
        except Exception as exc:
            raise RuntimeError(f"Failed to check queue size, dropping event: {exc}") from exc

        if queue_size >= self.flush_event_queue_size and not self._force_flush.is_set():
            self._force_flush.set()
            log.debugf(
                "FlushEventQueueSize of %d reached: %d, flushing events",
                self.flush_event_queue_size,
                queue_size,
            )
        try:
            self.internal_queue.queue_event(user, event)
        except QueueFullError as exc:
            raise QueueFullError(f"event queue is full, dropping event: {event!r}") from exc

    def queue_variable_defaulted_event(self, variable_key: str) -> None:
        """Record that a variable was evaluated to its default value."""
        self.internal_queue.queue_aggregate_event(
            {}, {"type": AGG_VARIABLE_DEFAULTED, "target": variable_key}
        )

    def flush_events(self) -> None:
        """Deliver every pending payload now."""
        with self._flush_lock:
            log.debugf("Started flushing events")
            self.internal_queue.flush_event_queue(self.flush_event_payloads)
            log.debugf("Finished flushing events")

    def flush_event_payloads(self, payloads: Mapping[str, FlushPayload]) -> FlushResult:
        """Post each payload to the events API and sort the ids by outcome."""
        result = FlushResult()
        for payload in payloads.values():
            outcome = self._flush_payload(payload)
            if outcome is _Outcome.SUCCESS:
                result.success_payloads.append(payload.payload_id)
            elif outcome is _Outcome.RETRY:
                result.failure_with_retry_payloads.append(payload.payload_id)
            else:
                result.failure_payloads.append(payload.payload_id)
        return result

    def _flush_payload(self, payload: FlushPayload) -> _Outcome:
        try:
            body = encode_body({"batch": payload.records}, "application/json")
        except (TypeError, ValueError) as exc:
            log.errorf("Failed to marshal batch events body: %s", exc)
            return _Outcome.FAILURE

        headers = {
            "Authorization": self.sdk_key,
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        url = self.events_api_base_path + "/v1/events/batch"
        try:
            response = self._session.post(url, data=body, headers=headers)
            response_body = response.text
        except requests.RequestException as exc:
            log.errorf("Failed to make request to events api: %s", exc)
            return _Outcome.FAILURE

        status = response.status_code
        if status >= 500:
            log.warnf("Events API Returned a 5xx error, retrying later.")
            return _Outcome.RETRY
        if status >= 400:
            log.errorf("Error sending events - Response: %s", response_body)
            return _Outcome.FAILURE
        if status == 201:
            return _Outcome.SUCCESS
        log.errorf("unknown status code when flushing events %d", status)
        return _Outcome.FAILURE

    def metrics(self) -> tuple[int, int, int]:
        """Counts of events flushed, reported and dropped."""
        return self.internal_queue.metrics()

    def close(self) -> None:
        """Stop periodic flushing, refuse further events and flush what remains."""
        self._stop.set()
        self._force_flush.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join()
        self._closed = True
        self.flush_events()