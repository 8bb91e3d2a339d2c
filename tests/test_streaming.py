"""Tests for the progress/result event channel."""

from __future__ import annotations

import threading

import pytest

from workstream_engine.schemas import IncrementalStrategyOutcome
from workstream_engine.streaming import (
    CancellableEventSink,
    CompleteEvent,
    ErrorEvent,
    ListEventSink,
    PipelineCancelledError,
    QueueEventSink,
    StreamClosedError,
    decode_sse,
    encode_sse,
    progress,
)


def _complete() -> CompleteEvent:
    return CompleteEvent(
        result=IncrementalStrategyOutcome(reason="r", embeddings_generated=0, assigned=0, unassigned=0)
    )


def test_encode_sse_is_one_data_record():
    encoded = encode_sse(progress("computing_groups", "Grouping"))
    assert encoded.startswith("data: ")
    assert encoded.endswith("\n\n")
    assert decode_sse(encoded) == [{"type": "progress", "phase": "computing_groups", "message": "Grouping"}]


def test_error_event_omits_empty_details():
    [payload] = decode_sse(encode_sse(ErrorEvent(message="boom")))
    assert payload == {"type": "error", "message": "boom"}


def test_complete_event_carries_strategy_tag():
    [payload] = decode_sse(encode_sse(_complete()))
    assert payload["type"] == "complete"
    assert payload["result"]["strategy"] == "incremental"


class TestQueueEventSink:
    def test_terminal_event_closes_channel(self):
        channel = QueueEventSink()
        channel.emit(progress("a", "first"))
        channel.emit(_complete())

        assert channel.closed
        assert [event.type for event in channel.iter_events(timeout=1)] == ["progress", "complete"]
        with pytest.raises(StreamClosedError):
            channel.emit(progress("b", "late"))

    def test_consumer_sees_events_from_worker_thread(self):
        channel = QueueEventSink()

        def _produce():
            for index in range(3):
                channel.emit(progress("step", str(index)))
            channel.emit(ErrorEvent(message="failed"))

        worker = threading.Thread(target=_produce)
        worker.start()
        events = list(channel.iter_events(timeout=5))
        worker.join()

        assert [event.type for event in events] == ["progress", "progress", "progress", "error"]

    def test_close_without_terminal_ends_iteration(self):
        channel = QueueEventSink()
        channel.emit(progress("a", "only"))
        channel.close()
        assert len(list(channel.iter_events(timeout=1))) == 1


def test_cancelled_sink_stops_delivery():
    inner = ListEventSink()
    sink = CancellableEventSink(inner)
    sink.emit(progress("a", "delivered"))
    sink.cancel()

    with pytest.raises(PipelineCancelledError):
        sink.emit(progress("b", "dropped"))
    assert len(inner.events) == 1
