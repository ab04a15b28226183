# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Record normalization — extraction output and API field bags to entities.

Three sources converge on ``TicketData``:
  1. ``IssueRecord``  from the HTML extraction engine
  2. REST ``fields``  from ``/rest/api/2/search``
  3. plain mappings   pre-extracted by the browser extension

Normalization is deterministic: identical input yields an identical entity,
including ``hash``.  Names not recognized pass through into
``custom_fields``.
"""

from __future__ import annotations

import dataclasses
import hashlib
import json
import logging
import re
from collections.abc import Iterable, Mapping
from typing import Any
from urllib.parse import urljoin

from .errors import NormalizationError
from .models import (
    Attachment,
    Comment,
    IssueLink,
    IssueRecord,
    ProjectData,
    ProjectRecord,
    Subtask,
    TicketData,
    WorkLogEntry,
    project_key_of,
)

ISSUE_KEY_FULL_RE = re.compile(r"^[A-Z][A-Z0-9]+-\d+$")
PROJECT_KEY_FULL_RE = re.compile(r"^[A-Z0-9]{2,10}$")

# Excluded from the content hash: the hash itself, the raw capture and the
# update stamp, which moves on every capture of a page that does not show one
_HASH_EXCLUDED = frozenset({"hash", "raw_html", "updated"})

# camelCase spellings used by the browser extension
_MAPPING_ALIASES = {
    "projectId": "project_id",
    "projectKey": "project_id",
    "issueType": "issue_type",
    "customFields": "custom_fields",
    "rawHtml": "raw_html",
    "workLog": "worklog",
}

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def compute_ticket_hash(ticket: TicketData) -> str:
    """First 8 bytes of SHA-256 (16 hex chars) over the canonical JSON of content fields."""
    data = {k: v for k, v in ticket.to_dict().items() if k not in _HASH_EXCLUDED}
    canonical = json.dumps(data, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:16]


def _clean(value: Any) -> str:
    if value is None:
        return ""
    return " ".join(str(value).split())


def _sequence(values: Any) -> tuple[Any, ...]:
    """List-like values as a tuple; a lone string is one item, other scalars none."""
    if isinstance(values, (list, tuple)):
        return tuple(values)
    if isinstance(values, str):
        return (values,)
    return ()


def _mapping(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


def _ordered_set(values: Any) -> tuple[str, ...]:
    seen: dict[str, None] = {}
    for v in _sequence(values):
        text = _clean(v)
        if text:
            seen.setdefault(text, None)
    return tuple(seen)


def _items(cls: type, entries: Any) -> tuple[Any, ...]:
    """Build frozen item dataclasses from loose dicts; duplicates collapse."""
    names = {f.name for f in dataclasses.fields(cls)}
    built: list[Any] = []
    for entry in _sequence(entries):
        if not isinstance(entry, Mapping):
            continue
        kwargs: dict[str, Any] = {}
        for name, value in entry.items():
            if name not in names or value in (None, ""):
                continue
            if name == "size":
                try:
                    kwargs[name] = int(value)
                except (TypeError, ValueError):
                    continue
            elif name == "body":
                kwargs[name] = str(value).strip()
            else:
                kwargs[name] = _clean(value)
        if not kwargs:
            continue
        item = cls(**kwargs)
        if item not in built:
            built.append(item)
    return tuple(built)


def _adf_text(node: Any) -> str:
    """Flatten an Atlassian Document Format node to plain text."""
    if node is None:
        return ""
    if isinstance(node, str):
        return node
    if isinstance(node, list):
        return " ".join(t for t in (_adf_text(n) for n in node) if t)
    if isinstance(node, Mapping):
        if node.get("type") == "text":
            return str(node.get("text", ""))
        return _adf_text(node.get("content"))
    return str(node)


def _name_of(value: Any, *attrs: str) -> str:
    if isinstance(value, Mapping):
        for attr in attrs:
            if value.get(attr):
                return _clean(value[attr])
        return ""
    return _clean(value)


def _person(value: Any) -> str:
    return _name_of(value, "displayName", "emailAddress", "name")


def _jsonable(value: Any) -> Any:
    """Round-trip through JSON so custom fields compare and hash stably."""
    return json.loads(json.dumps(value, sort_keys=True, default=str))


# ---------------------------------------------------------------------------
# Normalizer
# ---------------------------------------------------------------------------


class RecordNormalizer:
    """Converts records and field bags into ``TicketData`` / ``ProjectData``."""

    def __init__(self, *, logger: logging.Logger | None = None) -> None:
        self._logger = logger or logging.getLogger(__name__)

    # ── HTML records ─────────────────────────────────────────

    def to_ticket(self, record: IssueRecord, timestamp: str = "") -> TicketData:
        """Normalize an extracted issue record.

        ``timestamp`` fills ``updated`` when the page did not show one.

        Raises:
            NormalizationError: the record has no valid issue key.
        """
        key = _clean(record.key)
        if not ISSUE_KEY_FULL_RE.match(key):
            raise NormalizationError(f"Record has no valid issue key: {record.key!r}")

        ticket = TicketData(
            key=key,
            project_id=_clean(record.project_id) or project_key_of(key),
            url=_clean(record.url),
            summary=_clean(record.summary),
            description=_adf_text(record.description).strip(),
            issue_type=_clean(record.issue_type),
            status=_clean(record.status),
            priority=_clean(record.priority),
            created=_clean(record.created),
            updated=_clean(record.updated) or timestamp,
            reporter=_clean(record.reporter),
            assignee=_clean(record.assignee),
            labels=_ordered_set(record.labels),
            components=_ordered_set(record.components),
            custom_fields=_jsonable(dict(record.extra)),
            comments=_items(Comment, record.comments),
            subtasks=_items(Subtask, record.subtasks),
            attachments=_items(Attachment, record.attachments),
            links=_items(IssueLink, record.links),
            worklog=_items(WorkLogEntry, record.worklog),
            raw_html=record.raw_html if isinstance(record.raw_html, str) and record.raw_html else None,
        )
        return dataclasses.replace(ticket, hash=compute_ticket_hash(ticket))

    def to_project(self, record: ProjectRecord, timestamp: str = "", page_url: str = "") -> ProjectData:
        """Normalize a projects-list row.

        The project id defaults to the key; a relative URL is resolved
        against ``page_url``.

        Raises:
            NormalizationError: the record has no valid project key.
        """
        key = _clean(record.key)
        if not PROJECT_KEY_FULL_RE.match(key):
            raise NormalizationError(f"Record has no valid project key: {record.key!r}")
        url = _clean(record.url)
        if url and page_url and not re.match(r"^[a-z][a-z0-9+.-]*://", url, re.IGNORECASE):
            url = urljoin(page_url, url)
        return ProjectData(
            key=key,
            id=_clean(record.id) or key,
            name=_clean(record.name) or key,
            type=_clean(record.type),
            url=url,
            description=_clean(record.description),
            updated=timestamp,
        )

    # ── Pre-extracted mappings ───────────────────────────────

    def ticket_from_mapping(self, mapping: Mapping[str, Any], timestamp: str = "") -> TicketData:
        """Normalize a ticket dict sent by the browser extension.

        Accepts snake_case and the extension's camelCase spellings; unknown
        names land in ``custom_fields``.
        """
        record = IssueRecord()
        for raw_name, value in mapping.items():
            name = _MAPPING_ALIASES.get(raw_name, raw_name)
            if name == "custom_fields" and isinstance(value, Mapping):
                record.extra.update(value)
            elif name == "hash":
                continue
            else:
                record.set_field(name, value)
        return self.to_ticket(record, timestamp)

    # ── REST API ─────────────────────────────────────────────

    def ticket_from_api(self, issue_key: str, fields: Mapping[str, Any], *, base_url: str = "") -> TicketData:
        """Normalize one issue of a REST search response."""
        record = IssueRecord(key=issue_key)
        if base_url:
            record.url = f"{base_url.rstrip('/')}/browse/{issue_key}"

        project = fields.get("project")
        if isinstance(project, Mapping) and project.get("key"):
            record.project_id = _clean(project["key"])

        record.summary = _clean(fields.get("summary"))
        record.description = _adf_text(fields.get("description")).strip()
        record.issue_type = _name_of(fields.get("issuetype"), "name")
        record.status = _name_of(fields.get("status"), "name")
        record.priority = _name_of(fields.get("priority"), "name")
        record.assignee = _person(fields.get("assignee"))
        record.reporter = _person(fields.get("reporter"))
        record.created = _clean(fields.get("created"))
        record.updated = _clean(fields.get("updated"))
        record.labels = list(_sequence(fields.get("labels")))
        record.components = [_name_of(c, "name") for c in _sequence(fields.get("components"))]

        comment_block = fields.get("comment")
        comments = _sequence(_mapping(comment_block).get("comments"))
        record.comments = [
            {
                "id": _clean(c.get("id")),
                "author": _person(c.get("author")),
                "body": _adf_text(c.get("body")),
                "created": _clean(c.get("created")),
                "updated": _clean(c.get("updated")),
            }
            for c in comments
            if isinstance(c, Mapping)
        ]

        record.subtasks = [
            {
                "key": _clean(s.get("key")),
                "summary": _clean(_mapping(s.get("fields")).get("summary")),
                "status": _name_of(_mapping(s.get("fields")).get("status"), "name"),
                "issue_type": _name_of(_mapping(s.get("fields")).get("issuetype"), "name"),
                "url": f"{base_url.rstrip('/')}/browse/{s.get('key')}" if base_url and s.get("key") else "",
            }
            for s in _sequence(fields.get("subtasks"))
            if isinstance(s, Mapping)
        ]

        record.attachments = [
            {
                "id": _clean(a.get("id")),
                "filename": _clean(a.get("filename")),
                "size": a.get("size") or 0,
                "mime_type": _clean(a.get("mimeType")),
                "created": _clean(a.get("created")),
                "author": _person(a.get("author")),
                "url": _clean(a.get("content")),
            }
            for a in _sequence(fields.get("attachment"))
            if isinstance(a, Mapping)
        ]

        record.links = [self._api_link(lk) for lk in _sequence(fields.get("issuelinks")) if isinstance(lk, Mapping)]

        worklog_block = fields.get("worklog")
        worklogs = _sequence(_mapping(worklog_block).get("worklogs"))
        record.worklog = [
            {
                "id": _clean(w.get("id")),
                "author": _person(w.get("author")),
                "time_spent": _clean(w.get("timeSpent")),
                "comment": _adf_text(w.get("comment")),
                "created": _clean(w.get("created")),
                "updated": _clean(w.get("updated")),
            }
            for w in worklogs
            if isinstance(w, Mapping)
        ]

        for name, value in fields.items():
            if name.startswith("customfield_") and value is not None:
                record.extra[name] = value

        return self.to_ticket(record)

    @staticmethod
    def _api_link(link: Mapping[str, Any]) -> dict[str, str]:
        link_type = _mapping(link.get("type"))
        if isinstance(link.get("outwardIssue"), Mapping):
            other, direction, label = link["outwardIssue"], "outward", link_type.get("outward")
        else:
            other, direction, label = _mapping(link.get("inwardIssue")), "inward", link_type.get("inward")
        return {
            "link_type": _clean(label or link_type.get("name")),
            "direction": direction,
            "issue_key": _clean(other.get("key")),
            "issue_summary": _clean(_mapping(other.get("fields")).get("summary")),
        }

    # ── Batches ──────────────────────────────────────────────

    def tickets_from_records(self, records: Iterable[IssueRecord], timestamp: str = "") -> dict[str, TicketData]:
        """Normalize many records; a record that fails is logged and skipped.

        Later records with the same key replace earlier ones.
        """
        tickets: dict[str, TicketData] = {}
        for record in records:
            try:
                ticket = self.to_ticket(record, timestamp)
            except NormalizationError as e:
                self._logger.warning("Skipping record: %s", e)
                continue
            tickets[ticket.key] = ticket
        return tickets


def group_by_project(tickets: Mapping[str, TicketData]) -> dict[str, dict[str, TicketData]]:
    """Split a ticket map by the project key of each issue key."""
    grouped: dict[str, dict[str, TicketData]] = {}
    for key, ticket in tickets.items():
        grouped.setdefault(project_key_of(key), {})[key] = ticket
    return grouped

