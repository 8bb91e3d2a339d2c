"""Progress/result event protocol and the sinks that carry it."""

from __future__ import annotations

import json
import queue
import threading
from collections.abc import Iterator
from typing import Annotated, Any, Literal, Protocol

from pydantic import BaseModel, Field

from workstream_engine.schemas import StrategyOutcome


class ProgressEvent(BaseModel):
    """A phase transition reported before the terminal event."""

    type: Literal["progress"] = "progress"
    phase: str
    message: str


class CompleteEvent(BaseModel):
    """Terminal success event carrying the full structured result."""

    type: Literal["complete"] = "complete"
    result: StrategyOutcome


class ErrorEvent(BaseModel):
    """Terminal failure event."""

    type: Literal["error"] = "error"
    message: str
    details: dict[str, Any] | None = None


StreamEvent = Annotated[
    ProgressEvent | CompleteEvent | ErrorEvent,
    Field(discriminator="type"),
]

TERMINAL_EVENT_TYPES = frozenset({"complete", "error"})


class EventSink(Protocol):
    """Receiver for events emitted by the clustering and assignment routines."""

    def emit(self, event: ProgressEvent | CompleteEvent | ErrorEvent) -> None:
        """Deliver one event."""


class NullEventSink:
    """Sink that drops every event."""

    def emit(self, event: ProgressEvent | CompleteEvent | ErrorEvent) -> None:
        return None


class ListEventSink:
    """Sink that records events in memory, in emission order."""

    def __init__(self) -> None:
        self.events: list[ProgressEvent | CompleteEvent | ErrorEvent] = []

    def emit(self, event: ProgressEvent | CompleteEvent | ErrorEvent) -> None:
        self.events.append(event)


class StreamClosedError(RuntimeError):
    """Raised when emitting to a channel that already carried its terminal event."""


class QueueEventSink:
    """Single-producer/single-consumer channel between a worker and a response stream.

    The producer emits from a worker thread; the consumer iterates
    :meth:`iter_events` until the terminal event arrives. Emitting after the
    terminal event is a programming error.
    """

    _CLOSED = object()

    def __init__(self, *, maxsize: int = 0) -> None:
        self._queue: queue.Queue[Any] = queue.Queue(maxsize=maxsize)
        self._closed = threading.Event()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def emit(self, event: ProgressEvent | CompleteEvent | ErrorEvent) -> None:
        if self._closed.is_set():
            raise StreamClosedError(f"Cannot emit '{event.type}' event after the terminal event.")
        self._queue.put(event)
        if event.type in TERMINAL_EVENT_TYPES:
            self._closed.set()
            self._queue.put(self._CLOSED)

    def close(self) -> None:
        """Close the channel without a terminal event (producer gave up)."""

        if not self._closed.is_set():
            self._closed.set()
            self._queue.put(self._CLOSED)

    def iter_events(self, *, timeout: float | None = None) -> Iterator[ProgressEvent | CompleteEvent | ErrorEvent]:
        while True:
            item = self._queue.get(timeout=timeout)
            if item is self._CLOSED:
                return
            yield item


def encode_sse(event: ProgressEvent | CompleteEvent | ErrorEvent) -> str:
    """Encode one event as a server-sent-events ``data:`` record."""

    payload = event.model_dump(mode="json", exclude_none=True)
    return f"data: {json.dumps(payload, ensure_ascii=True)}\n\n"


def decode_sse(body: str) -> list[dict[str, Any]]:
    """Parse a server-sent-events body back into event dicts."""

    events: list[dict[str, Any]] = []
    for block in body.split("\n\n"):
        for line in block.splitlines():
            if line.startswith("data: "):
                events.append(json.loads(line[len("data: ") :]))
    return events


def progress(phase: str, message: str) -> ProgressEvent:
    return ProgressEvent(phase=phase, message=message)


class PipelineCancelledError(RuntimeError):
    """Raised at a phase boundary once the consumer has gone away."""


class CancellableEventSink:
    """Wrap a sink so every phase boundary doubles as a cancellation check.

    Once :meth:`cancel` is called the next emit raises
    :class:`PipelineCancelledError` instead of delivering the event.
    """

    def __init__(self, inner: EventSink) -> None:
        self._inner = inner
        self._cancelled = threading.Event()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self) -> None:
        self._cancelled.set()

    def check(self) -> None:
        if self._cancelled.is_set():
            raise PipelineCancelledError("Client disconnected; stopping pipeline.")

    def emit(self, event: ProgressEvent | CompleteEvent | ErrorEvent) -> None:
        self.check()
        self._inner.emit(event)
