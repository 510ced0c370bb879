"""Tests for the progress stream protocol."""

import json

import pytest

from wc_migration.models.migration import MigrationStats
from wc_migration.progress import (
    CallbackSink,
    EventType,
    ListSink,
    ProgressEvent,
    ProgressReporter,
    QueueSink,
    consume_stream,
    encode_sse,
    parse_sse_lines,
)


def stats(successful=0, skipped=0, failed=0):
    return MigrationStats(
        total=successful + skipped + failed, successful=successful, skipped=skipped, failed=failed
    )


class TestEncoding:
    def test_sse_framing(self):
        record = encode_sse(ProgressEvent.started(3, entity="products"))

        assert record.startswith("data: ")
        assert record.endswith("\n\n")
        assert json.loads(record[len("data: "):]) == {"type": "started", "entity": "products", "total": 3}

    def test_complete_event_serializes_mapping_keys_as_strings(self):
        event = ProgressEvent.complete(stats(successful=1), [7], {7: 70})

        data = event.to_dict()

        assert data["id_mapping"] == {"7": 70}
        assert data["stats"]["successful"] == 1
        assert data["migrated_ids"] == [7]

    def test_parse_round_trip(self):
        event = ProgressEvent.progress(2, total=5, current={"id": 3, "name": "Hat"}, entity="products")

        parsed = list(parse_sse_lines([encode_sse(event)]))

        assert len(parsed) == 1
        assert parsed[0].type == EventType.PROGRESS
        assert parsed[0].completed == 2
        assert parsed[0].current == {"id": 3, "name": "Hat"}


class TestProgressReporter:
    def test_valid_sequence_is_forwarded(self):
        sink = ListSink()
        reporter = ProgressReporter(sink, "products")

        reporter.started(2)
        reporter.progress(0, current={"id": 1, "name": "A"})
        reporter.progress(1)
        reporter.progress(2)
        reporter.complete(stats(successful=2), [1, 2])

        assert sink.types == ["started", "progress", "progress", "progress", "complete"]
        assert all(e.entity == "products" for e in sink.events)
        assert sink.events[1].total == 2

    def test_progress_before_started_is_dropped(self):
        sink = ListSink()
        reporter = ProgressReporter(sink)

        assert reporter.progress(1) is False
        assert sink.events == []

    def test_decreasing_progress_is_dropped(self):
        sink = ListSink()
        reporter = ProgressReporter(sink)
        reporter.started(5)
        reporter.progress(3)

        assert reporter.progress(2) is False
        assert [e.completed for e in sink.of_type(EventType.PROGRESS)] == [3]

    def test_nothing_after_terminal_event(self):
        sink = ListSink()
        reporter = ProgressReporter(sink)
        reporter.started(1)
        reporter.error("boom")

        assert reporter.complete(stats(), []) is False
        assert reporter.progress(1) is False
        assert sink.types == ["started", "error"]

    def test_error_allowed_before_started(self):
        sink = ListSink()
        reporter = ProgressReporter(sink)

        assert reporter.error("fetch failed") is True
        assert sink.types == ["error"]

    def test_complete_requires_started(self):
        sink = ListSink()

        assert ProgressReporter(sink).complete(stats(), []) is False

    def test_duplicate_started_is_dropped(self):
        sink = ListSink()
        reporter = ProgressReporter(sink)
        reporter.started(1)

        assert reporter.started(2) is False

    def test_reporter_without_sink(self):
        reporter = ProgressReporter(None)

        assert reporter.started(1) is True
        assert reporter.complete(stats(successful=1), [1]) is True

    def test_callback_sink_receives_events(self):
        received = []
        reporter = ProgressReporter(CallbackSink(received.append), "coupons")

        reporter.started(1)
        reporter.error("cancelled")

        assert [event.type for event in received] == [EventType.STARTED, EventType.ERROR]
        assert received[1].entity == "coupons"


class TestParsing:
    def test_malformed_record_is_skipped(self):
        lines = [
            'data: {"type": "started", "total": 2}\n\n',
            "data: {not json\n\n",
            'data: {"type": "mystery"}\n\n',
            'data: {"type": "progress", "completed": 1}\n\n',
        ]

        events = list(parse_sse_lines(lines))

        assert [e.type for e in events] == [EventType.STARTED, EventType.PROGRESS]

    @pytest.mark.parametrize("record", [
        '{"type": "progress", "completed": "1"}',
        '{"type": "complete", "stats": [1]}',
        '{"type": "complete", "stats": {"total": "many"}}',
        '{"type": "progress", "completed": 1, "current": "item"}',
        '{"type": "started", "total": true}',
        "[1, 2]",
    ])
    def test_wrong_shape_is_skipped(self, record):
        assert list(parse_sse_lines([f"data: {record}\n\n"])) == []

    def test_comments_and_bytes(self):
        lines = [b": keepalive\n\n", b'data: {"type": "error", "error": "nope"}\n', b"\n"]

        events = list(parse_sse_lines(lines))

        assert len(events) == 1
        assert events[0].error == "nope"

    def test_trailing_record_without_blank_line(self):
        events = list(parse_sse_lines(['data: {"type": "started", "total": 4}']))

        assert events[0].total == 4


class TestConsumeStream:
    def test_wrong_shape_records_do_not_break_the_stream(self):
        lines = [
            encode_sse(ProgressEvent.started(2)),
            'data: {"type": "progress", "completed": "1"}\n\n',
            'data: {"type": "complete", "stats": [1]}\n\n',
            encode_sse(ProgressEvent.progress(1, total=2)),
        ]

        outcome = consume_stream(lines)

        assert not outcome.succeeded
        assert outcome.error == "Stream ended without a completion event"
        assert outcome.progress.completed == 1

    def test_completed_stream(self):
        lines = [
            encode_sse(ProgressEvent.started(2)),
            encode_sse(ProgressEvent.progress(1, total=2)),
            encode_sse(ProgressEvent.complete(stats(successful=1, skipped=1), [1, 2], {1: 10, 2: 20})),
        ]
        seen = []

        outcome = consume_stream(lines, on_event=seen.append)

        assert outcome.succeeded
        assert outcome.migrated_ids == [1, 2]
        assert outcome.id_mapping == {1: 10, 2: 20}
        assert outcome.progress.completed == 2
        assert outcome.progress.percent == 100.0
        assert len(seen) == 3

    def test_error_event(self):
        outcome = consume_stream([encode_sse(ProgressEvent.failed("Product ID mapping required"))])

        assert not outcome.succeeded
        assert outcome.error == "Product ID mapping required"

    def test_stream_ending_without_complete_is_a_failure(self):
        lines = [encode_sse(ProgressEvent.started(3)), encode_sse(ProgressEvent.progress(1))]

        outcome = consume_stream(lines)

        assert not outcome.completed
        assert outcome.error == "Stream ended without a completion event"
        assert outcome.progress.completed == 1


class TestQueueSink:
    @pytest.mark.asyncio
    async def test_stream_ends_at_terminal_event(self):
        sink = QueueSink()
        sink.emit(ProgressEvent.started(1))
        sink.emit(ProgressEvent.complete(stats(successful=1), [1]))
        sink.emit(ProgressEvent.progress(1))

        chunks = [chunk async for chunk in sink.stream()]

        assert len(chunks) == 2
        assert '"type": "complete"' in chunks[1]

    @pytest.mark.asyncio
    async def test_close_ends_stream(self):
        sink = QueueSink()
        sink.emit(ProgressEvent.started(1))
        sink.close()

        chunks = [chunk async for chunk in sink.stream()]

        assert len(chunks) == 1

    @pytest.mark.asyncio
    async def test_keepalive_while_idle(self):
        sink = QueueSink(keepalive_seconds=0.01)
        stream = sink.stream()

        first = await stream.__anext__()
        sink.close()
        rest = [chunk async for chunk in stream]

        assert first == ": keepalive\n\n"
        assert all(chunk == ": keepalive\n\n" for chunk in rest)
