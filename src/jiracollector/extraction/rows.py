# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Row discovery for list pages and project tables.

Issue rows are found by one walk that tries four rules per element, most
specific first:

  1. legacy marker     ``data-issue-key`` on a row-like tag
  2. test-id marker    issue test-id substring + a key in some ``data-*`` value
  3. link container    a ``/browse/`` link within 5 levels + >=2 element children
  4. role / class      ``role=row|listitem`` or "issue"/"row" class + key in text

A matched element is never re-descended, so nested markup inside one row
cannot produce a second row.
"""

from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass

import lxml.html

from ..models import ProjectRecord
from .dom import (
    BROWSE_KEY_RE,
    ISSUE_KEY_RE,
    LEGACY_KEY_ATTRS,
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
from .strategies import LINK_SEARCH_DEPTH

ROW_TAGS = frozenset({"tr", "div", "li", "article"})
ROLE_ROW_TAGS = frozenset({"tr", "div", "li"})
ROW_ROLES = frozenset({"row", "listitem"})

# The link-container rule only fires this close to the document root
LINK_ROW_MAX_DEPTH = 15

# Only the head of a candidate's text is scanned for a key
ROLE_TEXT_WINDOW = 200


# ---------------------------------------------------------------------------
# Issue rows
# ---------------------------------------------------------------------------


def _legacy_marker(el: lxml.html.HtmlElement, depth: int) -> bool:
    return el.tag in ROW_TAGS and any(el.get(name) is not None for name in LEGACY_KEY_ATTRS)


def _test_id_marker(el: lxml.html.HtmlElement, depth: int) -> bool:
    low = test_id_of(el).lower()
    if not low or "issue" not in low:
        return False
    if not ("issue." in low or "issue-" in low or "row" in low or "container" in low):
        return False
    return any(name.startswith("data-") and ISSUE_KEY_RE.search(value) for name, value in el.attrib.items())


def _distinct_link_keys(el: lxml.html.HtmlElement, limit: int = 2) -> int:
    """Distinct ``/browse/`` keys within link search depth, counting stops at ``limit``."""
    keys: set[str] = set()
    for href in hrefs(el, max_depth=LINK_SEARCH_DEPTH):
        m = BROWSE_KEY_RE.search(href)
        if m:
            keys.add(m.group(1))
            if len(keys) >= limit:
                break
    return len(keys)


def _link_container(el: lxml.html.HtmlElement, depth: int) -> bool:
    if el.tag not in ROW_TAGS or depth >= LINK_ROW_MAX_DEPTH:
        return False
    if len(element_children(el)) < 2:
        return False
    distinct = _distinct_link_keys(el)
    if not distinct:
        return False
    # Links to different issues anywhere below: a list or list wrapper, not a row
    return el.tag == "tr" or distinct < 2


def _role_or_class(el: lxml.html.HtmlElement, depth: int) -> bool:
    if el.tag not in ROLE_ROW_TAGS:
        return False
    role = (el.get("role") or "").lower()
    cls = class_of(el).lower()
    if role not in ROW_ROLES and "issue" not in cls and "row" not in cls:
        return False
    return bool(ISSUE_KEY_RE.search(text_of(el)[:ROLE_TEXT_WINDOW]))


@dataclass(frozen=True, slots=True)
class RowRule:
    name: str
    matches: Callable[[lxml.html.HtmlElement, int], bool]


ROW_RULES: tuple[RowRule, ...] = (
    RowRule("legacy_marker", _legacy_marker),
    RowRule("test_id_marker", _test_id_marker),
    RowRule("link_container", _link_container),
    RowRule("role_or_class", _role_or_class),
)


@dataclass(frozen=True, slots=True)
class RowMatch:
    element: lxml.html.HtmlElement
    rule: str
    depth: int


def find_issue_rows(root: lxml.html.HtmlElement, *, max_depth: int | None = None) -> list[RowMatch]:
    """Row candidates in document order, outermost match wins."""
    matches: list[RowMatch] = []

    def visit(el: lxml.html.HtmlElement, depth: int) -> Visit:
        for rule in ROW_RULES:
            if rule.matches(el, depth):
                matches.append(RowMatch(el, rule.name, depth))
                return Visit.SKIP
        return Visit.DESCEND

    walk(root, visit, max_depth=max_depth)
    return matches


# ---------------------------------------------------------------------------
# Project rows
# ---------------------------------------------------------------------------

PROJECT_KEY_CELL_RE = re.compile(r"^[A-Z0-9]{2,10}$")
PROJECT_ID_RE = re.compile(r"/projects/(\d+)")
_PROJECT_TYPE_WORDS = ("software", "managed")


def _cells(row: lxml.html.HtmlElement) -> list[lxml.html.HtmlElement]:
    return [c for c in element_children(row) if c.tag in ("td", "th")]


def _in_thead(row: lxml.html.HtmlElement) -> bool:
    return any(anc.tag == "thead" for anc in row.iterancestors())


def find_project_rows(root: lxml.html.HtmlElement) -> list[lxml.html.HtmlElement]:
    """Table rows that carry a project-key shaped cell."""
    rows = []
    for row in iter_elements(root):
        if row.tag != "tr" or _in_thead(row):
            continue
        cells = _cells(row)
        if not any(c.tag == "td" for c in cells):
            continue
        if any(PROJECT_KEY_CELL_RE.match(text_of(c)) for c in cells):
            rows.append(row)
    return rows


def project_from_row(row: lxml.html.HtmlElement) -> ProjectRecord | None:
    """Build a :class:`ProjectRecord` from one accepted table row."""
    cells = _cells(row)
    key = next((t for t in (text_of(c) for c in cells) if PROJECT_KEY_CELL_RE.match(t)), "")
    if not key:
        return None

    record = ProjectRecord(key=key)
    for a in iter_elements(row):
        if a.tag != "a":
            continue
        href = a.get("href") or ""
        if "/projects/" not in href and "/browse/" not in href:
            continue
        name = text_of(a)
        if not name or name == key:
            continue
        record.name = name
        record.url = href
        m = PROJECT_ID_RE.search(href)
        if m:
            record.id = m.group(1)
        break

    for cell in cells:
        text = text_of(cell)
        if any(w in text.lower() for w in _PROJECT_TYPE_WORDS):
            record.type = collapse(text)
            break

    return record
