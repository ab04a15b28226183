# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Ingestion merge — versioned upserts of normalized entities.

For every incoming entity the merger looks up the stored copy:
  - absent   → ``collected_at = now``, ``version = 1``
  - present  → ``version + 1``; ``collected_at``, ``sent`` and ``sent_at`` kept
``updated_at`` is always ``now``.

Add/update outcomes are counted per key while merging, not inferred from
store counts.  ``version`` increments even when the content hash did not
change; such merges are also counted as ``unchanged``.

No locks: two concurrent merges of one key race and the later write wins.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime, timedelta

from .errors import StorageError
from .models import ProjectData, StoredProject, StoredTicket, TicketData, project_key_of
from .normalizer import group_by_project
from .storage import StorageProtocol

_ONE_MICROSECOND = timedelta(microseconds=1)


class MonotonicClock:
    """UTC ISO-8601 stamps that strictly increase across calls.

    A reading equal to (or behind) the previous stamp is nudged to
    previous + 1 µs.
    """

    def __init__(self, now: Callable[[], datetime] | None = None) -> None:
        self._now = now or (lambda: datetime.now(UTC))
        self._last: datetime | None = None

    def __call__(self) -> str:
        current = self._now()
        if self._last is not None and current <= self._last:
            current = self._last + _ONE_MICROSECOND
        self._last = current
        return current.isoformat(timespec="microseconds")


@dataclass(slots=True)
class MergeStats:
    """Per-call merge outcome. ``unchanged`` is a subset of ``updated``."""

    added: int = 0
    updated: int = 0
    unchanged: int = 0
    skipped: int = 0
    failed_projects: list[str] = field(default_factory=list)

    @property
    def merged(self) -> int:
        return self.added + self.updated

    def combine(self, other: MergeStats) -> None:
        self.added += other.added
        self.updated += other.updated
        self.unchanged += other.unchanged
        self.skipped += other.skipped
        self.failed_projects.extend(other.failed_projects)

    def to_dict(self) -> dict[str, object]:
        return {
            "added": self.added,
            "updated": self.updated,
            "unchanged": self.unchanged,
            "skipped": self.skipped,
            "failed_projects": list(self.failed_projects),
        }


class IngestionMerger:
    """Merges normalized tickets and projects into a ``StorageProtocol``."""

    def __init__(
        self,
        storage: StorageProtocol,
        *,
        clock: Callable[[], str] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._storage = storage
        self._clock = clock or MonotonicClock()
        self._logger = logger or logging.getLogger(__name__)

    async def merge_tickets(self, project_key: str, incoming: Mapping[str, TicketData]) -> MergeStats:
        """Merge one project's tickets and write them in one storage call.

        Keys whose project prefix is not ``project_key`` are skipped.

        Raises:
            StorageError: load or save failed; nothing of this call was written.
        """
        stats = MergeStats()
        if not incoming:
            return stats

        existing = await self._storage.load_tickets(project_key)
        now = self._clock()
        merged: dict[str, StoredTicket] = {}

        for key, ticket in incoming.items():
            if ticket.key != key or project_key_of(key) != project_key:
                self._logger.warning("Skipping ticket %s: not in project %s", key, project_key)
                stats.skipped += 1
                continue

            previous = existing.get(key)
            if previous is None:
                merged[key] = StoredTicket(ticket=ticket, collected_at=now, updated_at=now, version=1)
                stats.added += 1
                continue

            merged[key] = StoredTicket(
                ticket=ticket,
                collected_at=previous.collected_at,
                updated_at=now,
                version=previous.version + 1,
                sent=previous.sent,
                sent_at=previous.sent_at,
            )
            stats.updated += 1
            if previous.ticket.hash and previous.ticket.hash == ticket.hash:
                stats.unchanged += 1

        if merged:
            await self._storage.save_tickets(project_key, merged)

        self._logger.info(
            "Merged tickets for %s: added=%d updated=%d unchanged=%d skipped=%d",
            project_key,
            stats.added,
            stats.updated,
            stats.unchanged,
            stats.skipped,
        )
        return stats

    async def merge_ticket_batch(self, incoming: Mapping[str, TicketData]) -> MergeStats:
        """Merge tickets of several projects, one storage write per project.

        A storage failure for one project is logged and recorded in
        ``failed_projects``; the other projects are still merged.
        """
        stats = MergeStats()
        for project_key, tickets in group_by_project(incoming).items():
            if not project_key:
                stats.skipped += len(tickets)
                continue
            try:
                stats.combine(await self.merge_tickets(project_key, tickets))
            except StorageError as e:
                self._logger.error("Failed to merge tickets for %s: %s", project_key, e)
                stats.failed_projects.append(project_key)
        return stats

    async def merge_projects(self, incoming: Sequence[ProjectData]) -> MergeStats:
        """Merge projects by key; a later duplicate in ``incoming`` wins.

        Raises:
            StorageError: load or save failed.
        """
        stats = MergeStats()
        if not incoming:
            return stats

        existing = {p.key: p for p in await self._storage.load_projects()}
        now = self._clock()
        merged: dict[str, StoredProject] = {}

        for project in incoming:
            if project.key in merged:
                stats.skipped += 1
            previous = existing.get(project.key)
            if previous is None:
                merged[project.key] = StoredProject(project=project, collected_at=now, updated_at=now, version=1)
            else:
                merged[project.key] = StoredProject(
                    project=project,
                    collected_at=previous.collected_at,
                    updated_at=now,
                    version=previous.version + 1,
                )

        for key, stored in merged.items():
            previous = existing.get(key)
            if previous is None:
                stats.added += 1
                continue
            stats.updated += 1
            if replace(previous.project, updated="") == replace(stored.project, updated=""):
                stats.unchanged += 1

        await self._storage.save_projects(list(merged.values()))
        self._logger.info(
            "Merged projects: added=%d updated=%d unchanged=%d",
            stats.added,
            stats.updated,
            stats.unchanged,
        )
        return stats
