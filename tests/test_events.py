# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tests for the bounded event fan-out."""

from __future__ import annotations

import asyncio

from jiracollector.events import COLLECTION_STARTED, COLLECTION_SUCCESS, EventHub


class TestEventHub:
    async def test_fan_out_to_every_observer(self):
        hub = EventHub(queue_size=4)
        a, b = hub.subscribe(), hub.subscribe()
        hub.publish(COLLECTION_STARTED, {"url": "u"})
        assert (await a.get()).data == {"url": "u"}
        assert (await b.get()).type == COLLECTION_STARTED
        assert hub.meta.snapshot() == {"published": 1, "delivered": 2, "dropped_observers": 0}

    async def test_publish_without_observers(self):
        hub = EventHub()
        event = hub.publish(COLLECTION_SUCCESS, {})
        assert event.to_dict()["type"] == COLLECTION_SUCCESS
        assert hub.meta.published == 1

    async def test_slow_observer_dropped_without_blocking(self):
        hub = EventHub(queue_size=2)
        slow, fast = hub.subscribe(), hub.subscribe()
        hub.publish("e", {"n": 1})
        hub.publish("e", {"n": 2})
        assert await fast.get() is not None
        assert await fast.get() is not None

        hub.publish("e", {"n": 3})

        assert hub.observer_count == 1
        assert hub.meta.dropped_observers == 1
        assert (await fast.get()).data == {"n": 3}
        # The dropped observer drains what it had, then ends
        received = [event.data["n"] async for event in slow]
        assert received == [1, 2]

    async def test_unsubscribe_wakes_reader(self):
        hub = EventHub()
        sub = hub.subscribe()
        reader = asyncio.create_task(sub.get())
        await asyncio.sleep(0)
        sub.close()
        assert await asyncio.wait_for(reader, timeout=1) is None
        assert hub.observer_count == 0

    async def test_close_ends_iteration(self):
        hub = EventHub()
        sub = hub.subscribe()
        hub.publish("e", {"n": 1})
        hub.close()
        assert [event.data async for event in sub] == [{"n": 1}]
        assert await sub.get() is None

    def test_unsubscribe_twice_is_harmless(self):
        hub = EventHub()
        sub = hub.subscribe()
        hub.unsubscribe(sub)
        hub.unsubscribe(sub)
        assert hub.observer_count == 0
