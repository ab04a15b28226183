# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tests for versioned ingestion merges."""

from __future__ import annotations

import dataclasses
from datetime import UTC, datetime

import pytest

from jiracollector.errors import StorageError
from jiracollector.merge import IngestionMerger, MergeStats, MonotonicClock
from jiracollector.models import ProjectData, StoredTicket, TicketData
from jiracollector.normalizer import compute_ticket_hash
from jiracollector.storage import InMemoryStorage


def _ticket(key: str, **fields) -> TicketData:
    ticket = TicketData(key=key, project_id=key.split("-")[0], **fields)
    return dataclasses.replace(ticket, hash=compute_ticket_hash(ticket))


class _Ticks:
    """Deterministic clock: T1, T2, ..."""

    def __init__(self) -> None:
        self.n = 0

    def __call__(self) -> str:
        self.n += 1
        return f"T{self.n}"


class _FailingProjectStorage(InMemoryStorage):
    def __init__(self, failing: str) -> None:
        super().__init__()
        self._failing = failing

    async def save_tickets(self, project_key, tickets):
        if project_key == self._failing:
            raise StorageError(f"disk full for {project_key}")
        await super().save_tickets(project_key, tickets)


@pytest.fixture
def merger(storage) -> IngestionMerger:
    return IngestionMerger(storage, clock=_Ticks())


class TestMonotonicClock:
    def test_equal_readings_nudged(self):
        fixed = datetime(2026, 3, 1, 12, 0, 0, tzinfo=UTC)
        clock = MonotonicClock(now=lambda: fixed)
        stamps = [clock() for _ in range(3)]
        assert stamps == sorted(stamps)
        assert len(set(stamps)) == 3
        assert stamps[0] == "2026-03-01T12:00:00.000000+00:00"
        assert stamps[1] == "2026-03-01T12:00:00.000001+00:00"

    def test_clock_going_backwards(self):
        readings = iter([datetime(2026, 3, 1, 12, tzinfo=UTC), datetime(2026, 3, 1, 11, tzinfo=UTC)])
        clock = MonotonicClock(now=lambda: next(readings))
        first, second = clock(), clock()
        assert second > first


class TestMergeTickets:
    async def test_new_then_existing(self, merger, storage):
        # First ingestion: two new tickets
        stats = await merger.merge_tickets("ABC", {"ABC-1": _ticket("ABC-1"), "ABC-2": _ticket("ABC-2")})
        assert (stats.added, stats.updated) == (2, 0)

        # Second ingestion: one known, one new
        stats = await merger.merge_tickets(
            "ABC", {"ABC-1": _ticket("ABC-1", status="Done"), "ABC-3": _ticket("ABC-3")}
        )
        assert (stats.added, stats.updated, stats.unchanged) == (1, 1, 0)

        stored = await storage.load_tickets("ABC")
        assert sorted(stored) == ["ABC-1", "ABC-2", "ABC-3"]
        assert stored["ABC-1"].version == 2
        assert stored["ABC-1"].collected_at == "T1"
        assert stored["ABC-1"].updated_at == "T2"
        assert stored["ABC-1"].ticket.status == "Done"
        assert stored["ABC-2"].version == 1
        assert stored["ABC-3"].collected_at == "T2"

    async def test_unchanged_still_bumps_version(self, merger, storage):
        await merger.merge_tickets("ABC", {"ABC-1": _ticket("ABC-1")})
        stats = await merger.merge_tickets("ABC", {"ABC-1": _ticket("ABC-1")})
        assert (stats.updated, stats.unchanged) == (1, 1)
        assert (await storage.load_tickets("ABC"))["ABC-1"].version == 2

    async def test_sent_flags_preserved(self, merger, storage):
        sent = StoredTicket(ticket=_ticket("ABC-1"), collected_at="T0", updated_at="T0", sent=True, sent_at="S")
        await storage.save_tickets("ABC", {"ABC-1": sent})
        await merger.merge_tickets("ABC", {"ABC-1": _ticket("ABC-1", summary="new")})
        stored = (await storage.load_tickets("ABC"))["ABC-1"]
        assert (stored.sent, stored.sent_at, stored.collected_at) == (True, "S", "T0")

    async def test_mismatched_prefix_skipped(self, merger, storage):
        stats = await merger.merge_tickets("ABC", {"ABC-1": _ticket("ABC-1"), "OPS-1": _ticket("OPS-1")})
        assert (stats.added, stats.skipped) == (1, 1)
        assert await storage.load_tickets("OPS") == {}

    async def test_empty_input(self, merger, storage):
        assert await merger.merge_tickets("ABC", {}) == MergeStats()
        assert await storage.get_last_update("ABC") == ""

    async def test_last_update_stamped(self, merger, storage):
        await merger.merge_tickets("ABC", {"ABC-1": _ticket("ABC-1")})
        assert await storage.get_last_update("ABC") == "T1"


class TestMergeBatch:
    async def test_groups_by_project(self, merger, storage):
        batch = {k: _ticket(k) for k in ("ABC-1", "OPS-1", "ABC-2")}
        stats = await merger.merge_ticket_batch(batch)
        assert stats.added == 3
        assert sorted(await storage.load_tickets("ABC")) == ["ABC-1", "ABC-2"]
        assert list(await storage.load_tickets("OPS")) == ["OPS-1"]

    async def test_failed_project_isolated(self, caplog):
        storage = _FailingProjectStorage("OPS")
        merger = IngestionMerger(storage, clock=_Ticks())
        stats = await merger.merge_ticket_batch({k: _ticket(k) for k in ("ABC-1", "OPS-1")})
        assert stats.added == 1
        assert stats.failed_projects == ["OPS"]
        assert list(await storage.load_all_tickets()) == ["ABC-1"]
        assert "Failed to merge tickets for OPS" in caplog.text

    def test_stats_dict(self):
        stats = MergeStats(added=1, updated=2, unchanged=1)
        assert stats.merged == 3
        assert stats.to_dict()["failed_projects"] == []


class TestMergeProjects:
    async def test_add_then_update(self, merger, storage):
        stats = await merger.merge_projects([ProjectData(key="ABC", name="Alpha"), ProjectData(key="OPS")])
        assert stats.added == 2

        stats = await merger.merge_projects([ProjectData(key="ABC", name="Alpha", updated="later")])
        assert (stats.added, stats.updated, stats.unchanged) == (0, 1, 1)

        projects = {p.key: p for p in await storage.load_projects()}
        assert projects["ABC"].version == 2
        assert projects["ABC"].collected_at == "T1"
        assert projects["OPS"].version == 1

    async def test_later_duplicate_wins(self, merger, storage):
        stats = await merger.merge_projects([ProjectData(key="ABC", name="Old"), ProjectData(key="ABC", name="New")])
        assert (stats.added, stats.skipped) == (1, 1)
        (stored,) = await storage.load_projects()
        assert stored.project.name == "New"
