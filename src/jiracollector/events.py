# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Collection event fan-out for live observers (``/ws``).

Each observer owns a bounded ``asyncio.Queue``.  ``publish`` never blocks and
never raises: an observer whose queue is full is dropped instead of slowing
ingestion down.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

# ── Event type constants ─────────────────────────────────────────

COLLECTION_STARTED = "collection_started"
COLLECTION_SKIPPED = "collection_skipped"
COLLECTION_FAILED = "collection_failed"
COLLECTION_SUCCESS = "collection_success"
DATABASE_CLEARED = "database_cleared"

DEFAULT_QUEUE_SIZE = 256


@dataclass(frozen=True, slots=True)
class Event:
    type: str
    data: dict[str, Any]
    timestamp: str = field(default_factory=lambda: datetime.now(UTC).isoformat())

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "data": self.data, "timestamp": self.timestamp}


class EventMeta:
    """Approximate hub counters (diagnostics only)."""

    __slots__ = ("published", "delivered", "dropped_observers")

    def __init__(self) -> None:
        self.published: int = 0
        self.delivered: int = 0
        self.dropped_observers: int = 0

    def snapshot(self) -> dict:
        return {
            "published": self.published,
            "delivered": self.delivered,
            "dropped_observers": self.dropped_observers,
        }


class Subscription:
    """One observer's queue. Iterate to receive events until closed."""

    def __init__(self, hub: EventHub, queue_size: int) -> None:
        self._hub = hub
        self.queue: asyncio.Queue[Event | None] = asyncio.Queue(maxsize=queue_size)
        self.closed = False

    def _close(self) -> None:
        self.closed = True
        # Wake a pending reader; a full queue already has items to drain
        try:
            self.queue.put_nowait(None)
        except asyncio.QueueFull:
            pass

    async def get(self) -> Event | None:
        """Next event, or ``None`` once the subscription was closed."""
        if self.closed and self.queue.empty():
            return None
        return await self.queue.get()

    def close(self) -> None:
        self._hub.unsubscribe(self)

    async def __aiter__(self) -> AsyncIterator[Event]:
        while True:
            event = await self.get()
            if event is None:
                return
            yield event


class EventHub:
    """Bounded, best-effort fan-out of collection events."""

    def __init__(self, *, queue_size: int = DEFAULT_QUEUE_SIZE, logger: logging.Logger | None = None) -> None:
        self._queue_size = queue_size
        self._subscribers: set[Subscription] = set()
        self._logger = logger or logging.getLogger(__name__)
        self.meta = EventMeta()

    @property
    def observer_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self) -> Subscription:
        sub = Subscription(self, self._queue_size)
        self._subscribers.add(sub)
        self._logger.debug("Observer subscribed (total=%d)", len(self._subscribers))
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        if sub in self._subscribers:
            self._subscribers.discard(sub)
            sub._close()
            self._logger.debug("Observer unsubscribed (total=%d)", len(self._subscribers))

    def publish(self, event_type: str, data: dict[str, Any]) -> Event:
        """Deliver an event to every observer without waiting. Never raises."""
        event = Event(type=event_type, data=data)
        self.meta.published += 1
        for sub in list(self._subscribers):
            try:
                sub.queue.put_nowait(event)
                self.meta.delivered += 1
            except asyncio.QueueFull:
                self._logger.warning("Dropping slow observer (queue full at %d events)", self._queue_size)
                self.meta.dropped_observers += 1
                self._subscribers.discard(sub)
                sub.closed = True
        return event

    def close(self) -> None:
        for sub in list(self._subscribers):
            self.unsubscribe(sub)
