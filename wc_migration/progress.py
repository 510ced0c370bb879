"""
Progress stream protocol for migration runs.

A run emits `started`, then any number of `progress` events, then exactly one
of `complete` or `error`. Events are framed Server-Sent-Events style as
`data: <json>\\n\\n`. The executor only knows the ProgressSink interface; the
API binds it to an SSE response, the CLI to a logger or callback.
"""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Callable, Dict, Iterable, Iterator, List, Optional

from .models.mapping import mapping_from_json, mapping_to_json
from .models.migration import BatchProgress, MigrationStats

logger = logging.getLogger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


class EventType(str, Enum):
    STARTED = "started"
    PROGRESS = "progress"
    COMPLETE = "complete"
    ERROR = "error"


TERMINAL_EVENTS = (EventType.COMPLETE, EventType.ERROR)

# Wire fields checked when parsing; None is always allowed
FIELD_TYPES = {
    "entity": str,
    "total": int,
    "total_in_source": int,
    "already_migrated": int,
    "completed": int,
    "current": dict,
    "stats": dict,
    "migrated_ids": list,
    "id_mapping": dict,
    "error": str,
}


@dataclass
class ProgressEvent:
    """One record on the progress stream."""
    type: EventType
    entity: Optional[str] = None
    # started
    total: Optional[int] = None
    total_in_source: Optional[int] = None
    already_migrated: Optional[int] = None
    # progress
    completed: Optional[int] = None
    current: Optional[Dict[str, Any]] = None
    # complete
    stats: Optional[Dict[str, Any]] = None
    migrated_ids: Optional[List[Any]] = None
    id_mapping: Optional[Dict[int, int]] = None
    # error
    error: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.type in TERMINAL_EVENTS

    @classmethod
    def started(
        cls,
        total: int,
        entity: Optional[str] = None,
        total_in_source: Optional[int] = None,
        already_migrated: Optional[int] = None,
        **extra
    ) -> "ProgressEvent":
        return cls(
            type=EventType.STARTED,
            entity=entity,
            total=total,
            total_in_source=total_in_source,
            already_migrated=already_migrated,
            extra=extra,
        )

    @classmethod
    def progress(
        cls,
        completed: int,
        total: Optional[int] = None,
        current: Optional[Dict[str, Any]] = None,
        entity: Optional[str] = None
    ) -> "ProgressEvent":
        return cls(type=EventType.PROGRESS, entity=entity, completed=completed, total=total, current=current)

    @classmethod
    def complete(
        cls,
        stats: MigrationStats,
        migrated_ids: List[Any],
        id_mapping: Optional[Dict[int, int]] = None,
        entity: Optional[str] = None
    ) -> "ProgressEvent":
        return cls(
            type=EventType.COMPLETE,
            entity=entity,
            stats=stats.to_dict(),
            migrated_ids=list(migrated_ids),
            id_mapping=dict(id_mapping or {}),
        )

    @classmethod
    def failed(cls, error: str, entity: Optional[str] = None) -> "ProgressEvent":
        return cls(type=EventType.ERROR, entity=entity, error=error)

    def to_dict(self) -> Dict[str, Any]:
        """Wire representation. Unset fields are omitted."""
        data: Dict[str, Any] = {"type": self.type.value}
        for name in ("entity", "total", "total_in_source", "already_migrated", "completed",
                     "current", "stats", "migrated_ids", "error"):
            value = getattr(self, name)
            if value is not None:
                data[name] = value
        if self.id_mapping is not None:
            data["id_mapping"] = mapping_to_json(self.id_mapping)
        data.update(self.extra)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProgressEvent":
        """
        Parse a wire record.

        Raises:
            ValueError: If the type discriminator is missing or unknown, or
                a field has the wrong shape
        """
        if not isinstance(data, dict):
            raise ValueError(f"Progress record must be an object, got {type(data).__name__}")
        for name, expected in FIELD_TYPES.items():
            value = data.get(name)
            if value is not None and (not isinstance(value, expected) or isinstance(value, bool)):
                raise ValueError(f"Progress field '{name}' has type {type(value).__name__}")
        if data.get("stats") is not None:
            MigrationStats.from_dict(data["stats"])

        known = {"type", *FIELD_TYPES}
        return cls(
            type=EventType(data.get("type")),
            entity=data.get("entity"),
            total=data.get("total"),
            total_in_source=data.get("total_in_source"),
            already_migrated=data.get("already_migrated"),
            completed=data.get("completed"),
            current=data.get("current"),
            stats=data.get("stats"),
            migrated_ids=data.get("migrated_ids"),
            id_mapping=mapping_from_json(data["id_mapping"]) if data.get("id_mapping") is not None else None,
            error=data.get("error"),
            extra={k: v for k, v in data.items() if k not in known},
        )


def encode_sse(event: ProgressEvent) -> str:
    """Frame an event as an SSE data record."""
    return f"data: {json.dumps(event.to_dict(), default=str)}\n\n"


# Sinks

class ProgressSink(ABC):
    """Receives progress events from an executor run."""

    @abstractmethod
    def emit(self, event: ProgressEvent) -> None:
        pass


class CallbackSink(ProgressSink):
    """Hands each event to a plain function."""

    def __init__(self, callback: Callable[[ProgressEvent], None]):
        self.callback = callback

    def emit(self, event: ProgressEvent) -> None:
        self.callback(event)


class ListSink(ProgressSink):
    """Collects events in memory."""

    def __init__(self):
        self.events: List[ProgressEvent] = []

    def emit(self, event: ProgressEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: EventType) -> List[ProgressEvent]:
        return [e for e in self.events if e.type == event_type]

    @property
    def types(self) -> List[str]:
        return [e.type.value for e in self.events]


class LoggingSink(ProgressSink):
    """Logs milestones; per-item progress goes to DEBUG."""

    def __init__(self, log: Optional[logging.Logger] = None):
        self.log = log or logger

    def emit(self, event: ProgressEvent) -> None:
        label = event.entity or "migration"
        if event.type == EventType.STARTED:
            self.log.info(
                f"{label}: starting {event.total} items "
                f"({event.already_migrated or 0} already migrated)"
            )
        elif event.type == EventType.PROGRESS:
            current = event.current or {}
            self.log.debug(f"{label}: {event.completed}/{event.total} {current.get('name', '')}".rstrip())
        elif event.type == EventType.COMPLETE:
            stats = event.stats or {}
            self.log.info(
                f"{label}: complete - {stats.get('successful', 0)} migrated, "
                f"{stats.get('skipped', 0)} skipped, {stats.get('failed', 0)} failed"
            )
        else:
            self.log.error(f"{label}: {event.error}")


_CLOSE = object()


class QueueSink(ProgressSink):
    """
    Buffers events on an asyncio queue for an SSE response.

    The executor and the response generator must run on the same loop.
    """

    def __init__(self, keepalive_seconds: float = 15.0):
        self.queue: "asyncio.Queue[Any]" = asyncio.Queue()
        self.keepalive_seconds = keepalive_seconds

    def emit(self, event: ProgressEvent) -> None:
        self.queue.put_nowait(event)

    def close(self) -> None:
        """End the stream even if no terminal event was emitted."""
        self.queue.put_nowait(_CLOSE)

    async def stream(self) -> AsyncIterator[str]:
        """Yield SSE records until a terminal event or close()."""
        while True:
            try:
                item = await asyncio.wait_for(self.queue.get(), timeout=self.keepalive_seconds)
            except asyncio.TimeoutError:
                # SSE comment line; consumers ignore it
                yield ": keepalive\n\n"
                continue

            if item is _CLOSE:
                return
            yield encode_sse(item)
            if item.is_terminal:
                return


class ProgressReporter:
    """
    Enforces started -> progress* -> (complete | error) on a sink.

    Out-of-order events and decreasing progress counts are dropped and logged.
    An error may be emitted before started, for runs that fail while fetching.
    """

    def __init__(self, sink: Optional[ProgressSink], entity: Optional[str] = None):
        self.sink = sink
        self.entity = entity
        self.started_emitted = False
        self.finished = False
        self.total = 0
        self.completed = 0

    def _send(self, event: ProgressEvent) -> None:
        if self.sink is not None:
            self.sink.emit(event)

    def emit(self, event: ProgressEvent) -> bool:
        """
        Forward an event if it is valid in the current position.

        Returns:
            True if the event was forwarded
        """
        if self.finished:
            logger.warning(f"Dropping {event.type.value} event after stream end")
            return False

        if event.entity is None:
            event.entity = self.entity

        if event.type == EventType.STARTED:
            if self.started_emitted:
                logger.warning("Dropping duplicate started event")
                return False
            self.started_emitted = True
            self.total = event.total or 0

        elif event.type == EventType.PROGRESS:
            if not self.started_emitted:
                logger.warning("Dropping progress event before started")
                return False
            completed = event.completed or 0
            if completed < self.completed:
                logger.warning(f"Dropping progress event: count went from {self.completed} to {completed}")
                return False
            self.completed = completed
            if event.total is None:
                event.total = self.total

        elif event.type == EventType.COMPLETE:
            if not self.started_emitted:
                logger.warning("Dropping complete event before started")
                return False
            self.finished = True

        else:
            self.finished = True

        self._send(event)
        return True

    def started(self, total: int, **kwargs) -> bool:
        return self.emit(ProgressEvent.started(total, **kwargs))

    def progress(self, completed: int, current: Optional[Dict[str, Any]] = None) -> bool:
        return self.emit(ProgressEvent.progress(completed, current=current))

    def complete(self, stats: MigrationStats, migrated_ids: List[Any], id_mapping: Optional[Dict[int, int]] = None) -> bool:
        return self.emit(ProgressEvent.complete(stats, migrated_ids, id_mapping))

    def error(self, message: str) -> bool:
        return self.emit(ProgressEvent.failed(message))


# Consumer side

def parse_sse_lines(lines: Iterable[str]) -> Iterator[ProgressEvent]:
    """
    Parse progress events from SSE text lines.

    Each record is parsed on its own; malformed records are skipped.
    """
    buffer: List[str] = []

    def flush() -> Optional[ProgressEvent]:
        if not buffer:
            return None
        payload = "\n".join(buffer)
        buffer.clear()
        try:
            return ProgressEvent.from_dict(json.loads(payload))
        except (ValueError, TypeError, AttributeError) as e:
            logger.debug(f"Skipping malformed progress record: {e}")
            return None

    for raw in lines:
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8", errors="replace")
        for line in raw.split("\n"):
            line = line.rstrip("\r")
            if not line:
                event = flush()
                if event is not None:
                    yield event
            elif line.startswith(":"):
                continue
            elif line.startswith("data:"):
                buffer.append(line[5:].lstrip(" "))

    event = flush()
    if event is not None:
        yield event


@dataclass
class StreamOutcome:
    """What a consumer learned from a progress stream."""
    completed: bool = False
    error: Optional[str] = None
    progress: BatchProgress = field(default_factory=BatchProgress)
    stats: Optional[MigrationStats] = None
    migrated_ids: List[Any] = field(default_factory=list)
    id_mapping: Dict[int, int] = field(default_factory=dict)
    events: List[ProgressEvent] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.completed and self.error is None


def consume_stream(
    lines: Iterable[str],
    on_event: Optional[Callable[[ProgressEvent], None]] = None
) -> StreamOutcome:
    """
    Read a progress stream to its end.

    A stream that ends without a `complete` event is reported as failed.
    """
    outcome = StreamOutcome()

    for event in parse_sse_lines(lines):
        outcome.events.append(event)
        if on_event:
            on_event(event)

        if event.type == EventType.STARTED:
            outcome.progress = BatchProgress(total=event.total or 0)
        elif event.type == EventType.PROGRESS:
            outcome.progress.completed = max(outcome.progress.completed, event.completed or 0)
            outcome.progress.current = event.current
        elif event.type == EventType.COMPLETE:
            outcome.completed = True
            outcome.stats = MigrationStats.from_dict(event.stats or {})
            outcome.migrated_ids = list(event.migrated_ids or [])
            outcome.id_mapping = dict(event.id_mapping or {})
            outcome.progress.completed = outcome.stats.processed
            break
        else:
            outcome.error = event.error or "Migration failed"
            break

    if not outcome.completed and outcome.error is None:
        outcome.error = "Stream ended without a completion event"

    return outcome
