# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Storage abstraction — protocol-based persistence for tickets and projects.

Defines ``StorageProtocol`` (async) and ``InMemoryStorage`` for tests and
ephemeral runs.  ``SqliteStorage`` in ``storage_sqlite.py`` is the durable
implementation.

Contract shared by every backend:
  - ``save_*`` upserts by key and is durable when it returns
  - ``load_*`` returns copies keyed by issue key (tickets) or a list (projects)
  - any backend failure surfaces as ``StorageError``

Dependencies: models.py only.
"""

from __future__ import annotations

import copy
from collections.abc import Mapping, Sequence
from typing import Protocol, runtime_checkable

from .models import StoredProject, StoredTicket

# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------


@runtime_checkable
class StorageProtocol(Protocol):
    """Interface for ticket/project persistence — in-memory or SQLite."""

    async def save_tickets(self, project_key: str, tickets: Mapping[str, StoredTicket]) -> None: ...

    async def load_tickets(self, project_key: str) -> dict[str, StoredTicket]: ...

    async def load_all_tickets(self) -> dict[str, StoredTicket]: ...

    async def clear_all_tickets(self) -> None: ...

    async def save_projects(self, projects: Sequence[StoredProject]) -> None: ...

    async def load_projects(self) -> list[StoredProject]: ...

    async def clear_all_projects(self) -> None: ...

    async def get_last_update(self, project_key: str) -> str: ...

    async def close(self) -> None: ...


# ---------------------------------------------------------------------------
# In-memory implementation
# ---------------------------------------------------------------------------


class InMemoryStorage:
    """Dict-backed storage. Entities are deep-copied on the way in and out,
    so callers never share mutable state (``custom_fields``) with the store.
    """

    def __init__(self) -> None:
        self._tickets: dict[str, dict[str, StoredTicket]] = {}
        self._projects: dict[str, StoredProject] = {}
        self._last_update: dict[str, str] = {}

    async def save_tickets(self, project_key: str, tickets: Mapping[str, StoredTicket]) -> None:
        """Upsert ``tickets`` under ``project_key`` and stamp the last update."""
        bucket = self._tickets.setdefault(project_key, {})
        bucket.update(copy.deepcopy(dict(tickets)))
        latest = max((t.updated_at for t in tickets.values()), default="")
        if latest:
            self._last_update[project_key] = latest

    async def load_tickets(self, project_key: str) -> dict[str, StoredTicket]:
        return copy.deepcopy(self._tickets.get(project_key, {}))

    async def load_all_tickets(self) -> dict[str, StoredTicket]:
        merged: dict[str, StoredTicket] = {}
        for bucket in self._tickets.values():
            merged.update(bucket)
        return copy.deepcopy(merged)

    async def clear_all_tickets(self) -> None:
        self._tickets.clear()
        self._last_update.clear()

    async def save_projects(self, projects: Sequence[StoredProject]) -> None:
        for project in projects:
            self._projects[project.key] = copy.deepcopy(project)

    async def load_projects(self) -> list[StoredProject]:
        return copy.deepcopy(sorted(self._projects.values(), key=lambda p: p.key))

    async def clear_all_projects(self) -> None:
        self._projects.clear()

    async def get_last_update(self, project_key: str) -> str:
        """ISO timestamp of the last ticket write for ``project_key`` ("" if none)."""
        return self._last_update.get(project_key, "")

    async def close(self) -> None:
        """No-op for in-memory storage."""

    # ── Convenience accessors (not part of Protocol) ──────────────

    @property
    def ticket_count(self) -> int:
        return sum(len(b) for b in self._tickets.values())
