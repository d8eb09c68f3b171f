# Copyright (c) Syntropy Systems
"""Progress channels a job publishes onto.

A job pushes typed events into a :class:`ProgressSink`. Transports consume
sinks independently: the HTTP server streams a :class:`ChannelSink` as
Server-Sent Events, while pollers and tests read a :class:`RecordingSink`.
Sending is fire-and-forget and never blocks the orchestrator.
"""

from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Literal, Optional

from typing_extensions import TypeAlias, override

from codeduel.models.base import JSONObject

logger = logging.getLogger(__name__)

EventType: TypeAlias = Literal[
    "progress",
    "result",
    "refinement_result",
    "complete",
    "error",
]

TERMINAL_EVENTS: frozenset[str] = frozenset({"complete", "error"})


@dataclass(frozen=True)
class ProgressEvent:
    """One event published by a job."""

    type: EventType
    data: JSONObject = field(default_factory=dict)


def format_sse(event: ProgressEvent) -> str:
    """Encode an event as a Server-Sent Events frame."""
    return f"event: {event.type}\ndata: {json.dumps(event.data)}\n\n"


class ProgressSink(ABC):
    """One-way event channel for a single job."""

    _closed: bool = False

    @property
    def closed(self) -> bool:
        return self._closed

    def send(self, event_type: EventType, data: Optional[JSONObject] = None) -> None:
        """Publish an event. Sends after :meth:`close` are dropped."""
        if self._closed:
            logger.debug("Dropping %s event on closed sink", event_type)
            return
        self._publish(ProgressEvent(type=event_type, data=data or {}))

    def close(self) -> None:
        """Close the channel. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        self._on_close()

    @abstractmethod
    def _publish(self, event: ProgressEvent) -> None:
        ...

    def _on_close(self) -> None:  # noqa: B027
        """Hook for subclasses that need to wake consumers on close."""


class NullSink(ProgressSink):
    """Sink that discards everything."""

    @override
    def _publish(self, event: ProgressEvent) -> None:
        return None


class RecordingSink(ProgressSink):
    """Sink that keeps every event in memory, in order."""

    def __init__(self) -> None:
        self.events: list[ProgressEvent] = []

    @override
    def _publish(self, event: ProgressEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: EventType) -> list[ProgressEvent]:
        return [event for event in self.events if event.type == event_type]


class ChannelSink(ProgressSink):
    """Sink backed by an asyncio queue, consumed as an async iterator.

    Must be created and used on the event loop that runs the job.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[Optional[ProgressEvent]] = asyncio.Queue()

    @override
    def _publish(self, event: ProgressEvent) -> None:
        self._queue.put_nowait(event)

    @override
    def _on_close(self) -> None:
        self._queue.put_nowait(None)

    async def events(self) -> AsyncIterator[ProgressEvent]:
        """Yield events until the sink is closed."""
        while True:
            event = await self._queue.get()
            if event is None:
                return
            yield event
