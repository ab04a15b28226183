# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Core data model: page assessments, extracted records, canonical entities.

Three layers:
  1. ``PageAssessment`` — classifier verdict for one captured page
  2. ``IssueRecord`` / ``ProjectRecord`` — transient extraction output
  3. ``TicketData`` / ``ProjectData`` — canonical entities, wrapped by
     ``StoredTicket`` / ``StoredProject`` for versioned storage

Leaf module — no jiracollector imports.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, ClassVar

# ---------------------------------------------------------------------------
# Page assessment
# ---------------------------------------------------------------------------


class PageType(StrEnum):
    """Semantic Jira page type."""

    PROJECTS_LIST = "projectsList"
    ISSUE = "issue"
    ISSUE_LIST = "issueList"
    BOARD = "board"
    SEARCH = "search"
    GENERIC = "generic"
    UNKNOWN = "unknown"


class Confidence(StrEnum):
    """Classifier confidence level."""

    NONE = "none"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


PAGE_DESCRIPTIONS: dict[PageType, str] = {
    PageType.PROJECTS_LIST: "Jira Projects Directory - Lists all available projects",
    PageType.ISSUE: "Jira Issue Detail - Single ticket with full details",
    PageType.ISSUE_LIST: "Jira Issue List - Multiple tickets in a project",
    PageType.BOARD: "Jira Board - Kanban or Scrum board view",
    PageType.SEARCH: "Jira Search Results - Filtered ticket list",
    PageType.GENERIC: "Generic Jira Page - May contain ticket references",
    PageType.UNKNOWN: "Unknown Page Type - Not a recognized Jira page",
}


@dataclass(frozen=True, slots=True)
class PageAssessment:
    """Result of page classification."""

    page_type: PageType
    confidence: Confidence
    collectable: bool
    indicators: frozenset[str] = frozenset()

    @property
    def description(self) -> str:
        return PAGE_DESCRIPTIONS[self.page_type]

    def to_dict(self) -> dict[str, Any]:
        return {
            "page_type": str(self.page_type),
            "confidence": str(self.confidence),
            "collectable": self.collectable,
            "description": self.description,
            "indicators": sorted(self.indicators),
        }


UNKNOWN_ASSESSMENT = PageAssessment(PageType.UNKNOWN, Confidence.NONE, False, frozenset())


# ---------------------------------------------------------------------------
# Extracted records (transient)
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class IssueRecord:
    """Loosely-typed issue fields recovered from markup.

    Known field names are typed attributes; anything else lands in ``extra``
    and is carried through normalization into ``custom_fields``.
    """

    kind: ClassVar[str] = "issue"

    key: str | None = None
    project_id: str | None = None
    url: str | None = None
    summary: str | None = None
    description: str | None = None
    issue_type: str | None = None
    status: str | None = None
    priority: str | None = None
    created: str | None = None
    updated: str | None = None
    reporter: str | None = None
    assignee: str | None = None
    labels: list[str] = field(default_factory=list)
    components: list[str] = field(default_factory=list)
    comments: list[dict[str, str]] = field(default_factory=list)
    subtasks: list[dict[str, str]] = field(default_factory=list)
    attachments: list[dict[str, str]] = field(default_factory=list)
    links: list[dict[str, str]] = field(default_factory=list)
    worklog: list[dict[str, str]] = field(default_factory=list)
    raw_html: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def set_field(self, name: str, value: Any) -> None:
        """Set a known field, or stash an unknown one in ``extra``."""
        if name in _ISSUE_FIELD_NAMES:
            setattr(self, name, value)
        else:
            self.extra[name] = value

    def has(self, name: str) -> bool:
        """True when the known field ``name`` holds a non-empty value."""
        return bool(getattr(self, name, None))

    def is_empty(self) -> bool:
        return not self.key and not self.summary and not self.extra


@dataclass(slots=True)
class ProjectRecord:
    """Loosely-typed project fields recovered from a projects-list row."""

    kind: ClassVar[str] = "project"

    key: str | None = None
    id: str | None = None
    name: str | None = None
    type: str | None = None
    url: str | None = None
    description: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def set_field(self, name: str, value: Any) -> None:
        if name in _PROJECT_FIELD_NAMES:
            setattr(self, name, value)
        else:
            self.extra[name] = value

    def has(self, name: str) -> bool:
        return bool(getattr(self, name, None))

    def is_empty(self) -> bool:
        return not self.key and not self.name


Record = IssueRecord | ProjectRecord

_ISSUE_FIELD_NAMES = frozenset(f.name for f in dataclasses.fields(IssueRecord)) - {"extra"}
_PROJECT_FIELD_NAMES = frozenset(f.name for f in dataclasses.fields(ProjectRecord)) - {"extra"}


# ---------------------------------------------------------------------------
# Canonical entities
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Comment:
    id: str = ""
    author: str = ""
    body: str = ""
    created: str = ""
    updated: str = ""


@dataclass(frozen=True, slots=True)
class Subtask:
    key: str = ""
    summary: str = ""
    status: str = ""
    issue_type: str = ""
    url: str = ""


@dataclass(frozen=True, slots=True)
class Attachment:
    id: str = ""
    filename: str = ""
    size: int = 0
    mime_type: str = ""
    created: str = ""
    author: str = ""
    url: str = ""


@dataclass(frozen=True, slots=True)
class IssueLink:
    link_type: str = ""
    direction: str = ""  # inward | outward
    issue_key: str = ""
    issue_summary: str = ""
    url: str = ""


@dataclass(frozen=True, slots=True)
class WorkLogEntry:
    id: str = ""
    author: str = ""
    time_spent: str = ""
    comment: str = ""
    created: str = ""
    updated: str = ""


def _from_mapping(cls: type, data: dict[str, Any]) -> Any:
    names = {f.name for f in dataclasses.fields(cls)}
    return cls(**{k: v for k, v in data.items() if k in names})


@dataclass(frozen=True, slots=True)
class TicketData:
    """Canonical Jira ticket."""

    key: str
    project_id: str = ""
    url: str = ""
    summary: str = ""
    description: str = ""
    issue_type: str = ""
    status: str = ""
    priority: str = ""
    created: str = ""
    updated: str = ""
    reporter: str = ""
    assignee: str = ""
    labels: tuple[str, ...] = ()
    components: tuple[str, ...] = ()
    custom_fields: dict[str, Any] = field(default_factory=dict)
    comments: tuple[Comment, ...] = ()
    subtasks: tuple[Subtask, ...] = ()
    attachments: tuple[Attachment, ...] = ()
    links: tuple[IssueLink, ...] = ()
    worklog: tuple[WorkLogEntry, ...] = ()
    raw_html: str | None = None
    hash: str = ""

    @property
    def project_key(self) -> str:
        """Substring of the key before its first hyphen."""
        return project_key_of(self.key)

    def to_dict(self) -> dict[str, Any]:
        data = dataclasses.asdict(self)
        for name in ("labels", "components", "comments", "subtasks", "attachments", "links", "worklog"):
            data[name] = list(data[name])
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TicketData:
        return cls(
            key=data["key"],
            project_id=data.get("project_id", ""),
            url=data.get("url", ""),
            summary=data.get("summary", ""),
            description=data.get("description", ""),
            issue_type=data.get("issue_type", ""),
            status=data.get("status", ""),
            priority=data.get("priority", ""),
            created=data.get("created", ""),
            updated=data.get("updated", ""),
            reporter=data.get("reporter", ""),
            assignee=data.get("assignee", ""),
            labels=tuple(data.get("labels") or ()),
            components=tuple(data.get("components") or ()),
            custom_fields=dict(data.get("custom_fields") or {}),
            comments=tuple(_from_mapping(Comment, c) for c in data.get("comments") or ()),
            subtasks=tuple(_from_mapping(Subtask, s) for s in data.get("subtasks") or ()),
            attachments=tuple(_from_mapping(Attachment, a) for a in data.get("attachments") or ()),
            links=tuple(_from_mapping(IssueLink, lk) for lk in data.get("links") or ()),
            worklog=tuple(_from_mapping(WorkLogEntry, w) for w in data.get("worklog") or ()),
            raw_html=data.get("raw_html"),
            hash=data.get("hash", ""),
        )


@dataclass(frozen=True, slots=True)
class ProjectData:
    """Canonical Jira project."""

    key: str
    id: str = ""
    name: str = ""
    type: str = ""
    url: str = ""
    description: str = ""
    updated: str = ""

    def to_dict(self) -> dict[str, Any]:
        return dataclasses.asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProjectData:
        return _from_mapping(cls, data)


def project_key_of(issue_key: str) -> str:
    """Return the project key of ``issue_key`` ("" when it has no hyphen)."""
    head, sep, _ = issue_key.partition("-")
    return head if sep else ""


# ---------------------------------------------------------------------------
# Versioned store records
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class StoredTicket:
    """A ticket plus store bookkeeping. Bookkeeping never feeds the hash."""

    ticket: TicketData
    collected_at: str
    updated_at: str
    version: int = 1
    sent: bool = False
    sent_at: str | None = None

    @property
    def key(self) -> str:
        return self.ticket.key

    def to_dict(self) -> dict[str, Any]:
        return {
            "ticket": self.ticket.to_dict(),
            "collected_at": self.collected_at,
            "updated_at": self.updated_at,
            "version": self.version,
            "sent": self.sent,
            "sent_at": self.sent_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StoredTicket:
        return cls(
            ticket=TicketData.from_dict(data["ticket"]),
            collected_at=data["collected_at"],
            updated_at=data["updated_at"],
            version=int(data.get("version", 1)),
            sent=bool(data.get("sent", False)),
            sent_at=data.get("sent_at"),
        )


@dataclass(frozen=True, slots=True)
class StoredProject:
    """A project plus store bookkeeping."""

    project: ProjectData
    collected_at: str
    updated_at: str
    version: int = 1

    @property
    def key(self) -> str:
        return self.project.key

    def to_dict(self) -> dict[str, Any]:
        return {
            "project": self.project.to_dict(),
            "collected_at": self.collected_at,
            "updated_at": self.updated_at,
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StoredProject:
        return cls(
            project=ProjectData.from_dict(data["project"]),
            collected_at=data["collected_at"],
            updated_at=data["updated_at"],
            version=int(data.get("version", 1)),
        )
