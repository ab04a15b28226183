# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Issue detail page extraction.

Scalar fields use the same :class:`Found` cascades as list rows, with
detail-page marker allow-lists in front: legacy server ids (``summary-val``,
``status-val``...) first, then SPA test-ids.

Collection fields (labels, components, comments, subtasks, attachments,
issue links, worklog) are located via container markers; each item inside a
container is scanned independently.  Without a container, marked items are
collected from the whole document.
"""

from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass

import lxml.html

from ..models import IssueRecord, project_key_of
from .dom import (
    BROWSE_KEY_RE,
    Visit,
    class_of,
    collapse,
    element_children,
    hrefs,
    iter_elements,
    test_id_of,
    text_of,
    walk,
)
from .rows import find_issue_rows
from .strategies import (
    MAX_ISSUE_TYPE_LEN,
    MAX_PERSON_LEN,
    MAX_PRIORITY_LEN,
    MAX_STATUS_LEN,
    MAX_SUMMARY_LEN,
    NOT_FOUND,
    STATUS_STRATEGIES,
    SUMMARY_STRATEGIES,
    Found,
    Strategy,
    extract_issue_key,
    first_found,
    label_attribute,
    marker_text,
)

MAX_DESCRIPTION_LEN = 100_000
MAX_DATE_LEN = 50
MAX_LABEL_LEN = 100
MAX_CUSTOM_FIELD_LEN = 1_000

_TITLE_RE = re.compile(r"^\[(?P<key>[A-Z][A-Z0-9]+-\d+)\]\s*(?P<summary>.+?)(?:\s+-\s+[^-]+)?$")
_CUSTOM_FIELD_ID_RE = re.compile(r"^(customfield_\d+)-val$")
_TIME_SPENT_RE = re.compile(r"\b\d+(?:\.\d+)?[wdhm](?:\s+\d+(?:\.\d+)?[wdhm])*\b")
_SIZE_RE = re.compile(r"(\d+(?:\.\d+)?)\s*(bytes|b|kb|mb|gb)\b", re.IGNORECASE)
_SIZE_FACTORS = {"bytes": 1, "b": 1, "kb": 1024, "mb": 1024**2, "gb": 1024**3}


# ---------------------------------------------------------------------------
# Scalar fields
# ---------------------------------------------------------------------------


def _title_match(doc: lxml.html.HtmlElement) -> re.Match[str] | None:
    """Match ``<title>[PROJ-1] Summary - Jira</title>``."""
    for el in iter_elements(doc, max_depth=2):
        if el.tag == "title":
            return _TITLE_RE.match(text_of(el))
    return None


def summary_from_title(doc: lxml.html.HtmlElement, *_: object) -> Found:
    m = _title_match(doc)
    return Found(True, m.group("summary")) if m else NOT_FOUND


def date_marker(*, ids: tuple[str, ...], test_id_contains: tuple[str, ...]) -> Strategy:
    """Prefer a ``<time datetime>`` inside the marked element over its text."""
    text_strategy = marker_text(ids=ids, test_id_contains=test_id_contains, max_len=MAX_DATE_LEN)

    def strategy(doc: lxml.html.HtmlElement, *_: object) -> Found:
        for el in iter_elements(doc):
            if (el.get("id") or "") in ids or any(s in test_id_of(el).lower() for s in test_id_contains):
                for t in iter_elements(el):
                    if t.tag == "time" and t.get("datetime"):
                        return Found(True, t.get("datetime"))
        return text_strategy(doc)

    return strategy


DETAIL_FIELD_CASCADES: dict[str, tuple[Strategy, ...]] = {
    "summary": (
        marker_text(
            ids=("summary-val",),
            test_ids=(
                "issue.views.issue-base.foundation.summary.heading",
                "issue.views.issue-base.foundation.summary",
                "issue-summary",
            ),
            max_len=MAX_SUMMARY_LEN,
        ),
        marker_text(test_id_contains=("summary",), max_len=MAX_SUMMARY_LEN),
        summary_from_title,
    ),
    "description": (
        marker_text(
            ids=("description-val",),
            test_ids=(
                "issue.views.field.rich-text.description",
                "issue.views.issue-base.foundation.description",
            ),
            max_len=MAX_DESCRIPTION_LEN,
        ),
        marker_text(test_id_contains=("description",), max_len=MAX_DESCRIPTION_LEN),
    ),
    "status": (
        marker_text(ids=("status-val",), max_len=MAX_STATUS_LEN),
        marker_text(test_id_contains=("status",), max_len=MAX_STATUS_LEN),
    ),
    "priority": (
        marker_text(ids=("priority-val",), max_len=MAX_PRIORITY_LEN),
        label_attribute(
            keywords=("priority",),
            prefix_re=re.compile(r"(?i)\bpriority\b\s*:?\s*"),
            max_len=MAX_PRIORITY_LEN,
        ),
        marker_text(test_id_contains=("priority",), max_len=MAX_PRIORITY_LEN),
    ),
    "issue_type": (
        marker_text(ids=("type-val",), max_len=MAX_ISSUE_TYPE_LEN),
        marker_text(test_id_contains=("issue-type", "issuetype"), max_len=MAX_ISSUE_TYPE_LEN),
    ),
    "assignee": (
        marker_text(ids=("assignee-val",), max_len=MAX_PERSON_LEN),
        marker_text(test_id_contains=("assignee",), max_len=MAX_PERSON_LEN),
    ),
    "reporter": (
        marker_text(ids=("reporter-val",), max_len=MAX_PERSON_LEN),
        marker_text(test_id_contains=("reporter",), max_len=MAX_PERSON_LEN),
    ),
    "created": (date_marker(ids=("created-val",), test_id_contains=("created",)),),
    "updated": (date_marker(ids=("updated-val",), test_id_contains=("updated",)),),
}


def custom_fields(doc: lxml.html.HtmlElement) -> dict[str, str]:
    """Legacy ``customfield_NNNNN-val`` values, keyed by field id."""
    found: dict[str, str] = {}
    for el in iter_elements(doc):
        m = _CUSTOM_FIELD_ID_RE.match(el.get("id") or "")
        if m and m.group(1) not in found:
            text = text_of(el)
            if text and len(text) < MAX_CUSTOM_FIELD_LEN:
                found[m.group(1)] = text
    return found


# ---------------------------------------------------------------------------
# Collections
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Marker:
    """Substring allow-lists for one kind of element (case-insensitive)."""

    ids: tuple[str, ...] = ()
    test_ids: tuple[str, ...] = ()
    classes: tuple[str, ...] = ()

    def matches(self, el: lxml.html.HtmlElement) -> bool:
        el_id = (el.get("id") or "").lower()
        test_id = test_id_of(el).lower()
        cls = class_of(el).lower()
        return (
            any(s in el_id for s in self.ids)
            or any(s in test_id for s in self.test_ids)
            or any(s in cls for s in self.classes)
        )


def find_marked(
    root: lxml.html.HtmlElement, marker: Marker, *, include_root: bool = True
) -> list[lxml.html.HtmlElement]:
    """Outermost elements matching ``marker``; matches are not re-descended."""
    found: list[lxml.html.HtmlElement] = []

    def visit(el: lxml.html.HtmlElement, depth: int) -> Visit:
        if (include_root or depth > 0) and marker.matches(el):
            found.append(el)
            return Visit.SKIP
        return Visit.DESCEND

    walk(root, visit)
    return found


def collection_items(
    doc: lxml.html.HtmlElement,
    container: Marker,
    item: Marker,
) -> list[lxml.html.HtmlElement]:
    """Items inside marked containers, or marked items anywhere as a fallback.

    A container with no marked items contributes its element children.
    """
    containers = find_marked(doc, container)
    if not containers:
        return find_marked(doc, item)
    items: list[lxml.html.HtmlElement] = []
    for box in containers:
        marked = find_marked(box, item, include_root=False)
        items.extend(marked or element_children(box))
    return items


def _leaf_texts(box: lxml.html.HtmlElement, tags: tuple[str, ...], max_len: int) -> list[str]:
    values: list[str] = []
    for el in iter_elements(box):
        if el.tag not in tags:
            continue
        if any(d.tag in tags for d in iter_elements(el) if d is not el):
            continue
        text = text_of(el)
        if text and len(text) < max_len and text not in values:
            values.append(text)
    return values


LABELS_CONTAINER = Marker(ids=("labels-",), test_ids=("issue.views.field.labels",), classes=("labels",))
COMPONENTS_CONTAINER = Marker(ids=("components-field", "components-val"), test_ids=("issue.views.field.components",))


def extract_labels(doc: lxml.html.HtmlElement) -> list[str]:
    labels: list[str] = []
    for box in find_marked(doc, LABELS_CONTAINER):
        for text in _leaf_texts(box, ("span", "a"), MAX_LABEL_LEN):
            if text not in labels:
                labels.append(text)
    return labels


def extract_components(doc: lxml.html.HtmlElement) -> list[str]:
    components: list[str] = []
    for box in find_marked(doc, COMPONENTS_CONTAINER):
        for text in _leaf_texts(box, ("span", "a"), MAX_LABEL_LEN):
            if text not in components:
                components.append(text)
    return components


def _attr_marked_text(item: lxml.html.HtmlElement, words: tuple[str, ...], max_len: int) -> str:
    """Text of the first descendant with an attribute value mentioning one of ``words``."""
    for el in iter_elements(item):
        if el is item:
            continue
        for value in el.attrib.values():
            low = value.lower()
            if any(w in low for w in words):
                text = text_of(el)
                if text and len(text) < max_len:
                    return text
                break
    return ""


def _time_of(item: lxml.html.HtmlElement) -> str:
    for el in iter_elements(item):
        if el.tag == "time" and el.get("datetime"):
            return el.get("datetime")
    return _attr_marked_text(item, ("date", "time"), MAX_DATE_LEN)


# -- comments ---------------------------------------------------------------

COMMENTS_CONTAINER = Marker(ids=("issue_actions_container",), test_ids=("comments-list", "comment-list"))
COMMENT_ITEM = Marker(ids=("comment-",), test_ids=("comment",), classes=("activity-comment",))
COMMENT_BODY = Marker(test_ids=("comment-body", "body"), classes=("action-body", "comment-body"))


def comment_from_item(item: lxml.html.HtmlElement) -> dict[str, str] | None:
    bodies = find_marked(item, COMMENT_BODY, include_root=False)
    body = text_of(bodies[0]) if bodies else text_of(item)
    if not body:
        return None
    comment_id = item.get("data-comment-id") or item.get("id") or ""
    if comment_id.startswith("comment-"):
        comment_id = comment_id[len("comment-") :]
    return {
        "id": comment_id,
        "author": _attr_marked_text(item, ("author", "user"), MAX_PERSON_LEN),
        "body": body,
        "created": _time_of(item),
    }


# -- subtasks ---------------------------------------------------------------

SUBTASKS_CONTAINER = Marker(ids=("view-subtasks",), test_ids=("child-issues", "subtasks"))
SUBTASK_ITEM = Marker(test_ids=("subtask",), classes=("subtask",))


def subtask_from_item(item: lxml.html.HtmlElement) -> dict[str, str] | None:
    key = extract_issue_key(item)
    if not key:
        return None
    url = next((h for h in hrefs(item) if BROWSE_KEY_RE.search(h)), "")
    summary = first_found(SUMMARY_STRATEGIES, item, key)
    status = first_found(STATUS_STRATEGIES, item, key)
    return {
        "key": key,
        "url": url,
        "summary": summary.value if summary.found else collapse(text_of(item).replace(key, " ")),
        "status": status.value if status.found else "",
    }


def subtask_items(doc: lxml.html.HtmlElement) -> list[lxml.html.HtmlElement]:
    containers = find_marked(doc, SUBTASKS_CONTAINER)
    if not containers:
        return find_marked(doc, SUBTASK_ITEM)
    items: list[lxml.html.HtmlElement] = []
    for box in containers:
        items.extend(m.element for m in find_issue_rows(box))
    return items


# -- attachments ------------------------------------------------------------

ATTACHMENTS_CONTAINER = Marker(ids=("attachmentmodule", "attachment_thumbnails"), test_ids=("attachments",))
ATTACHMENT_ITEM = Marker(test_ids=("attachment",), classes=("attachment-content", "attachment"))


def parse_size(text: str) -> int:
    """``"12 kB"`` → 12288. 0 when no size is present."""
    m = _SIZE_RE.search(text)
    if not m:
        return 0
    return int(float(m.group(1)) * _SIZE_FACTORS[m.group(2).lower()])


def attachment_from_item(item: lxml.html.HtmlElement) -> dict[str, str] | None:
    links = hrefs(item)
    if not links:
        return None
    url = links[-1]
    filename = ""
    for el in iter_elements(item):
        filename = el.get("download") or el.get("title") or ""
        if filename:
            break
    if not filename:
        anchors = [a for a in iter_elements(item) if a.tag == "a" and text_of(a)]
        filename = text_of(anchors[0]) if anchors else url.rstrip("/").rsplit("/", 1)[-1]
    size = parse_size(text_of(item))
    return {
        "id": item.get("data-attachment-id") or "",
        "filename": filename,
        "url": url,
        "size": str(size) if size else "",
        "created": _time_of(item),
    }


# -- issue links ------------------------------------------------------------

LINKS_CONTAINER = Marker(ids=("linkingmodule",), test_ids=("issue-links", "linked-issues"))
LINK_ITEM = Marker(test_ids=("issue-link",), classes=("link-content", "issue-link"))

# (keyword, link type, direction); first keyword present in the context wins
LINK_TYPE_KEYWORDS: tuple[tuple[str, str, str], ...] = (
    ("is blocked by", "is blocked by", "inward"),
    ("blocked", "is blocked by", "inward"),
    ("blocks", "blocks", "outward"),
    ("is cloned by", "is cloned by", "inward"),
    ("clones", "clones", "outward"),
    ("is duplicated by", "is duplicated by", "inward"),
    ("duplicates", "duplicates", "outward"),
    ("relates", "relates to", "outward"),
)


def classify_link(context: str) -> tuple[str, str]:
    low = context.lower()
    for keyword, link_type, direction in LINK_TYPE_KEYWORDS:
        if keyword in low:
            return link_type, direction
    return "relates to", "outward"


def _link_context(item: lxml.html.HtmlElement) -> str:
    """Item text plus the nearest ``<dt>`` heading of a legacy link list."""
    parts = [text_of(item)]
    node = item
    for _ in range(3):
        node = node.getparent()
        if node is None:
            break
        sib = node.getprevious()
        while sib is not None and not isinstance(sib.tag, str):
            sib = sib.getprevious()
        if sib is not None and sib.tag == "dt":
            parts.insert(0, sib.get("title") or text_of(sib))
            break
    return " ".join(parts)


def link_from_item(item: lxml.html.HtmlElement) -> dict[str, str] | None:
    for href in hrefs(item):
        m = BROWSE_KEY_RE.search(href)
        if m:
            key, url = m.group(1), href
            break
    else:
        return None
    link_type, direction = classify_link(_link_context(item))
    summary = first_found(SUMMARY_STRATEGIES, item, key)
    return {
        "link_type": link_type,
        "direction": direction,
        "issue_key": key,
        "issue_summary": summary.value if summary.found else "",
        "url": url,
    }


# -- worklog ----------------------------------------------------------------

WORKLOG_CONTAINER = Marker(ids=("worklog-tabpanel",), test_ids=("worklog-list",))
WORKLOG_ITEM = Marker(ids=("worklog-",), test_ids=("worklog",), classes=("worklog",))


def worklog_from_item(item: lxml.html.HtmlElement) -> dict[str, str] | None:
    text = text_of(item)
    spent = _TIME_SPENT_RE.search(text)
    if not spent:
        return None
    return {
        "id": (item.get("id") or "").removeprefix("worklog-"),
        "author": _attr_marked_text(item, ("author", "user"), MAX_PERSON_LEN),
        "time_spent": spent.group(0),
        "comment": _attr_marked_text(item, ("comment",), MAX_DESCRIPTION_LEN),
        "created": _time_of(item),
    }


@dataclass(frozen=True, slots=True)
class CollectionDef:
    name: str
    items: Callable[[lxml.html.HtmlElement], list[lxml.html.HtmlElement]]
    build: Callable[[lxml.html.HtmlElement], dict[str, str] | None]


COLLECTIONS: tuple[CollectionDef, ...] = (
    CollectionDef("comments", lambda d: collection_items(d, COMMENTS_CONTAINER, COMMENT_ITEM), comment_from_item),
    CollectionDef("subtasks", subtask_items, subtask_from_item),
    CollectionDef(
        "attachments", lambda d: collection_items(d, ATTACHMENTS_CONTAINER, ATTACHMENT_ITEM), attachment_from_item
    ),
    CollectionDef("links", lambda d: collection_items(d, LINKS_CONTAINER, LINK_ITEM), link_from_item),
    CollectionDef("worklog", lambda d: collection_items(d, WORKLOG_CONTAINER, WORKLOG_ITEM), worklog_from_item),
)


# ---------------------------------------------------------------------------
# Page
# ---------------------------------------------------------------------------

_URL_KEY_RE = re.compile(r"/browse/([A-Z][A-Z0-9]+-\d+)")


def extract_issue_page(doc: lxml.html.HtmlElement, url: str) -> IssueRecord | None:
    """Build the single record of an issue detail page.

    The key comes from the page URL, then from the title or a legacy marker.
    Returns ``None`` when no key can be recovered.
    """
    key = ""
    m = _URL_KEY_RE.search(url or "")
    if m:
        key = m.group(1)
    else:
        title = _title_match(doc)
        if title:
            key = title.group("key")
        if not key:
            key = extract_issue_key(doc)
    if not key:
        return None

    record = IssueRecord(key=key, project_id=project_key_of(key), url=url or None)
    for name, cascade in DETAIL_FIELD_CASCADES.items():
        result = first_found(cascade, doc, key)
        if result.found:
            record.set_field(name, result.value)

    # Jira renders the key into the summary heading in some layouts
    if record.summary and record.summary.startswith(key):
        stripped = record.summary[len(key) :].strip(" :-")
        record.summary = stripped or record.summary

    record.labels = extract_labels(doc)
    record.components = extract_components(doc)

    for coll in COLLECTIONS:
        values: list[dict[str, str]] = []
        for item in coll.items(doc):
            built = coll.build(item)
            if built is not None and built not in values:
                values.append(built)
        record.set_field(coll.name, values)

    for field_id, value in custom_fields(doc).items():
        record.set_field(field_id, value)

    return record
