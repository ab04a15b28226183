# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Collection service — one ingestion envelope through the whole pipeline.

    envelope
      → size guard (ResourceExhaustionError)
      → PageAssessor           (classification gate)
      → JiraExtractor          (or pre-extracted tickets from the extension)
      → RecordNormalizer
      → IngestionMerger        (storage)
      → EventHub               (collection_* events)

Every call gets a ``txn-<uuid4 hex>`` transaction id that is bound to the
structlog context for its duration and echoed in events and the result.

Dependencies: page_classifier, extraction, normalizer, merge, events, storage.
"""

from __future__ import annotations

import dataclasses
import logging
import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from .errors import NormalizationError, ParseError, ResourceExhaustionError, StorageError
from .events import (
    COLLECTION_FAILED,
    COLLECTION_SKIPPED,
    COLLECTION_STARTED,
    COLLECTION_SUCCESS,
    DATABASE_CLEARED,
    EventHub,
)
from .extraction import JiraExtractor
from .logging_config import bind_transaction, clear_transaction
from .merge import IngestionMerger, MergeStats
from .models import IssueRecord, PageAssessment, PageType, ProjectData, ProjectRecord, TicketData
from .normalizer import RecordNormalizer
from .page_classifier import PageAssessor
from .schemas import CollectionEnvelope
from .storage import StorageProtocol

DEFAULT_MAX_HTML_BYTES = 10 * 1024 * 1024
_SNIPPET_CHARS = 1000


def new_transaction_id() -> str:
    return f"txn-{uuid.uuid4().hex}"


@dataclass(slots=True)
class CollectionStats:
    projects_added: int = 0
    projects_total: int = 0
    tickets_added: int = 0
    tickets_total: int = 0
    tickets_updated: int = 0

    def to_dict(self) -> dict[str, int]:
        return dataclasses.asdict(self)


@dataclass(slots=True)
class CollectionResult:
    """Outcome of one ingestion, serialized as the ``/receiver`` response body."""

    success: bool
    message: str
    transaction_id: str
    assessment: PageAssessment
    stats: CollectionStats | None = None
    data: Any = None
    error: str = ""
    timestamp: str = field(default_factory=lambda: datetime.now(UTC).isoformat())

    @property
    def page_type(self) -> str:
        return str(self.assessment.page_type)

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "success": self.success,
            "message": self.message,
            "timestamp": self.timestamp,
            "page_type": self.page_type,
            "transaction_id": self.transaction_id,
        }
        if self.stats is not None:
            body["stats"] = self.stats.to_dict()
        if self.data is not None:
            body["data"] = self.data
        if self.error:
            body["error"] = self.error
        return body


class CollectionService:
    """Runs ingestion envelopes against one storage backend."""

    def __init__(
        self,
        storage: StorageProtocol,
        *,
        events: EventHub | None = None,
        assessor: PageAssessor | None = None,
        extractor: JiraExtractor | None = None,
        normalizer: RecordNormalizer | None = None,
        merger: IngestionMerger | None = None,
        max_html_bytes: int = DEFAULT_MAX_HTML_BYTES,
        logger: logging.Logger | None = None,
    ) -> None:
        self._logger = logger or logging.getLogger(__name__)
        self.storage = storage
        self.events = events or EventHub()
        self._assessor = assessor or PageAssessor()
        self._extractor = extractor or JiraExtractor()
        self._normalizer = normalizer or RecordNormalizer()
        self._merger = merger or IngestionMerger(storage)
        self._max_html_bytes = max_html_bytes

    # ── Guards ───────────────────────────────────────────────

    def check_size(self, html: str | None) -> None:
        """Raises ResourceExhaustionError when ``html`` exceeds ``max_html_bytes``."""
        if not html:
            return
        size = len(html.encode("utf-8", errors="replace"))
        if size > self._max_html_bytes:
            raise ResourceExhaustionError(f"HTML too large: {size} bytes (limit {self._max_html_bytes})")

    def assess(self, html: str, url: str) -> PageAssessment:
        """Size-guarded classification without storage side effects."""
        self.check_size(html)
        return self._assessor.assess(html, url)

    # ── Ingestion ────────────────────────────────────────────

    async def collect(self, envelope: CollectionEnvelope) -> CollectionResult:
        """Classify, extract, normalize and merge one captured page.

        Non-collectable and empty pages succeed with an explanatory message.
        A storage failure yields ``success=False``.

        Raises:
            ResourceExhaustionError: the HTML exceeds ``max_html_bytes``.
        """
        html = envelope.data.html or ""
        self.check_size(html)

        txn = new_transaction_id()
        bind_transaction(txn, url=envelope.url)
        try:
            return await self._collect(envelope, html, txn)
        finally:
            clear_transaction()

    async def _collect(self, envelope: CollectionEnvelope, html: str, txn: str) -> CollectionResult:
        self._logger.info(
            "Received page from %s %s: %s",
            envelope.collector.name or "collector",
            envelope.collector.version,
            envelope.url,
        )
        self.events.publish(
            COLLECTION_STARTED,
            {"transaction_id": txn, "url": envelope.url, "title": envelope.title, "timestamp": envelope.timestamp},
        )

        assessment = self._assessor.assess(html, envelope.url)
        hint = (envelope.data.page_type or "").strip()
        if hint:
            if hint != assessment.page_type:
                self._logger.info("Client page type hint %r differs from assessment %s", hint, assessment.page_type)
            assessment = dataclasses.replace(assessment, indicators=assessment.indicators | {f"client_hint:{hint}"})

        self._logger.info(
            "Page assessed: type=%s confidence=%s collectable=%s",
            assessment.page_type,
            assessment.confidence,
            assessment.collectable,
        )

        if not assessment.collectable:
            self.events.publish(
                COLLECTION_SKIPPED,
                {
                    "transaction_id": txn,
                    "url": envelope.url,
                    "page_type": str(assessment.page_type),
                    "confidence": str(assessment.confidence),
                    "reason": "not collectable",
                    "description": assessment.description,
                },
            )
            return CollectionResult(
                success=True,
                message=f"Page received but not collectable: {assessment.description}",
                transaction_id=txn,
                assessment=assessment,
                data={"assessment": assessment.to_dict()},
            )

        timestamp = envelope.timestamp or datetime.now(UTC).isoformat()
        try:
            data, merge_stats, failed = await self._store(envelope, html, assessment, timestamp)
            stats = await self._totals(merge_stats, assessment.page_type)
        except ParseError as e:
            return self._failed(envelope, assessment, txn, e, message="Failed to parse page")
        except StorageError as e:
            return self._failed(envelope, assessment, txn, e)

        if failed:
            return self._failed(
                envelope,
                assessment,
                txn,
                StorageError(f"Failed to store tickets for project(s): {', '.join(failed)}"),
                stats=stats,
            )

        message = f"Successfully processed {assessment.page_type} page"
        if data is None:
            message = f"No data found in {assessment.page_type} page"
        if stats.projects_added:
            message += f" - Added {stats.projects_added} project(s)"
        if stats.tickets_added:
            message += f" - Added {stats.tickets_added} ticket(s)"

        self._logger.info(
            "Collection complete: projects_added=%d tickets_added=%d tickets_updated=%d",
            stats.projects_added,
            stats.tickets_added,
            stats.tickets_updated,
        )
        self.events.publish(
            COLLECTION_SUCCESS,
            {
                "transaction_id": txn,
                "url": envelope.url,
                "page_type": str(assessment.page_type),
                "stats": stats.to_dict(),
                "data": data,
            },
        )
        return CollectionResult(
            success=True,
            message=message,
            transaction_id=txn,
            assessment=assessment,
            stats=stats,
            data=data,
        )

    def _failed(
        self,
        envelope: CollectionEnvelope,
        assessment: PageAssessment,
        txn: str,
        error: Exception,
        *,
        message: str = "Failed to store data",
        stats: CollectionStats | None = None,
    ) -> CollectionResult:
        self._logger.error("%s: %s", message, error)
        self.events.publish(
            COLLECTION_FAILED,
            {
                "transaction_id": txn,
                "url": envelope.url,
                "page_type": str(assessment.page_type),
                "error": str(error),
            },
        )
        return CollectionResult(
            success=False,
            message=message,
            transaction_id=txn,
            assessment=assessment,
            stats=stats,
            error=str(error),
        )

    async def _store(
        self,
        envelope: CollectionEnvelope,
        html: str,
        assessment: PageAssessment,
        timestamp: str,
    ) -> tuple[Any, MergeStats, list[str]]:
        page_type = assessment.page_type
        pre_extracted = envelope.data.tickets

        if pre_extracted and page_type is not PageType.PROJECTS_LIST:
            self._logger.info("Using %d pre-extracted tickets from the extension", len(pre_extracted))
            tickets = self._tickets_from_mappings(pre_extracted, timestamp)
            stats = await self._merger.merge_ticket_batch(tickets)
            return {"tickets_collected": len(tickets)}, stats, stats.failed_projects

        if not html.strip():
            self._logger.warning("No HTML content in payload")
            return None, MergeStats(), []

        records = self._extractor.parse_html(html, page_type, envelope.url)
        if not records:
            self._logger.warning("No data found in HTML (page_type=%s html_size=%d)", page_type, len(html))
            self._logger.debug("HTML content preview: %s", html[:_SNIPPET_CHARS])
            return None, MergeStats(), []

        if page_type is PageType.PROJECTS_LIST:
            projects = self._projects_from_records(records, timestamp, envelope.url)
            stats = await self._merger.merge_projects(projects)
            data = [{k: p.to_dict()[k] for k in ("key", "name", "type", "url", "description")} for p in projects]
            return data, stats, []

        issues = [r for r in records if isinstance(r, IssueRecord)]
        tickets = self._normalizer.tickets_from_records(issues, timestamp)
        self._logger.info("Extracted %d issues from HTML", len(tickets))
        stats = await self._merger.merge_ticket_batch(tickets)
        return {"tickets_collected": len(tickets)}, stats, stats.failed_projects

    def _tickets_from_mappings(self, mappings: list[dict[str, Any]], timestamp: str) -> dict[str, TicketData]:
        tickets: dict[str, TicketData] = {}
        for mapping in mappings:
            try:
                ticket = self._normalizer.ticket_from_mapping(mapping, timestamp)
            except NormalizationError as e:
                self._logger.warning("Skipping pre-extracted ticket: %s", e)
                continue
            tickets[ticket.key] = ticket
        return tickets

    def _projects_from_records(self, records: list[Any], timestamp: str, page_url: str) -> list[ProjectData]:
        projects: list[ProjectData] = []
        for record in records:
            if not isinstance(record, ProjectRecord):
                continue
            try:
                projects.append(self._normalizer.to_project(record, timestamp, page_url))
            except NormalizationError as e:
                self._logger.warning("Skipping project row: %s", e)
        return projects

    async def _totals(self, merge_stats: MergeStats, page_type: PageType) -> CollectionStats:
        stats = CollectionStats(
            projects_total=len(await self.storage.load_projects()),
            tickets_total=len(await self.storage.load_all_tickets()),
        )
        if page_type is PageType.PROJECTS_LIST:
            stats.projects_added = merge_stats.added
        else:
            stats.tickets_added = merge_stats.added
            stats.tickets_updated = merge_stats.updated
        return stats

    # ── Direct imports (REST) ────────────────────────────────

    async def import_tickets(self, tickets: Mapping[str, TicketData]) -> MergeStats:
        """Merge already-normalized tickets (e.g. from the REST client)."""
        stats = await self._merger.merge_ticket_batch(tickets)
        self._logger.info("Imported %d tickets (added=%d updated=%d)", len(tickets), stats.added, stats.updated)
        return stats

    # ── Store views ──────────────────────────────────────────

    async def project_summaries(self) -> list[dict[str, Any]]:
        """Stored projects with their ticket counts, sorted by key."""
        summaries = []
        for stored in await self.storage.load_projects():
            tickets = await self.storage.load_tickets(stored.key)
            summaries.append(
                {
                    **stored.project.to_dict(),
                    "ticket_count": len(tickets),
                    "last_update": await self.storage.get_last_update(stored.key),
                }
            )
        return summaries

    async def ticket_count(self) -> int:
        return len(await self.storage.load_all_tickets())

    async def clear_database(self) -> None:
        """Remove every stored project and ticket.

        Raises:
            StorageError: a backend clear failed.
        """
        self._logger.info("Clearing all stored projects and tickets")
        await self.storage.clear_all_projects()
        await self.storage.clear_all_tickets()
        self.events.publish(DATABASE_CLEARED, {})
