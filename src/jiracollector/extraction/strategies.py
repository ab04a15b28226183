# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Field-recovery strategies and the cascade runner.

Every strategy is a plain function returning :class:`Found`.  A cascade is an
ordered tuple of strategies; :func:`first_found` runs them in order and stops
at the first hit.  Markup variants (legacy server pages, SPA test-ids, ARIA
labels) are handled by adding a strategy, never by branching inside one.

Key strategies honour an optional project filter: a key from another project
is treated as not found, so the cascade moves on.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any

import lxml.html

from .dom import BROWSE_KEY_RE, ISSUE_KEY_RE, LEGACY_KEY_ATTRS, class_of, collapse, iter_elements, test_id_of, text_of

# Depth bound for the /browse/ link search below a row candidate
LINK_SEARCH_DEPTH = 5

# Length bounds reject whole-container text picked up by a loose marker
MAX_STATUS_LEN = 30
MAX_PRIORITY_LEN = 20
MAX_ISSUE_TYPE_LEN = 30
MAX_PERSON_LEN = 100
MIN_SUMMARY_LEN = 5
MAX_SUMMARY_LEN = 255

STATUS_KEYWORDS: tuple[str, ...] = (
    "To Do",
    "In Progress",
    "Done",
    "Closed",
    "Open",
    "Resolved",
    "In Review",
)

# Attributes whose value is a human label ("Priority: High"), not a marker
LABEL_ATTRS = ("aria-label", "title", "alt")


@dataclass(frozen=True, slots=True)
class Found:
    """Uniform strategy result."""

    found: bool
    value: Any = None


NOT_FOUND = Found(False)

Strategy = Callable[..., Found]


def first_found(strategies: Iterable[Strategy], *args: Any) -> Found:
    """Run ``strategies`` in order; return the first hit or ``NOT_FOUND``."""
    for strategy in strategies:
        result = strategy(*args)
        if result.found:
            return result
    return NOT_FOUND


def matches_project(key: str, project_filter: str) -> bool:
    return not project_filter or key.startswith(project_filter + "-")


# ---------------------------------------------------------------------------
# Issue key
# ---------------------------------------------------------------------------


def key_from_data_attributes(el: lxml.html.HtmlElement, project_filter: str = "") -> Found:
    """Legacy ``data-issue-key`` first, then any ``data-*`` value carrying a key."""
    for name in LEGACY_KEY_ATTRS:
        legacy = (el.get(name) or "").strip()
        if legacy and matches_project(legacy, project_filter):
            return Found(True, legacy)
    for name, value in el.attrib.items():
        if not name.startswith("data-") or name in LEGACY_KEY_ATTRS:
            continue
        for key in ISSUE_KEY_RE.findall(value):
            if matches_project(key, project_filter):
                return Found(True, key)
    return NOT_FOUND


def key_from_browse_links(el: lxml.html.HtmlElement, project_filter: str = "") -> Found:
    for a in iter_elements(el, max_depth=LINK_SEARCH_DEPTH):
        if a.tag != "a":
            continue
        m = BROWSE_KEY_RE.search(a.get("href") or "")
        if m and matches_project(m.group(1), project_filter):
            return Found(True, m.group(1))
    return NOT_FOUND


def key_from_text(el: lxml.html.HtmlElement, project_filter: str = "") -> Found:
    for key in ISSUE_KEY_RE.findall(text_of(el)):
        if matches_project(key, project_filter):
            return Found(True, key)
    return NOT_FOUND


KEY_STRATEGIES: tuple[Strategy, ...] = (
    key_from_data_attributes,
    key_from_browse_links,
    key_from_text,
)


def extract_issue_key(el: lxml.html.HtmlElement, project_filter: str = "") -> str:
    """Issue key of a row candidate, or "" when none matches the filter."""
    return first_found(KEY_STRATEGIES, el, project_filter).value or ""


# ---------------------------------------------------------------------------
# Generic marker strategies
# ---------------------------------------------------------------------------


def _bounded(text: str, max_len: int, min_len: int = 0) -> Found:
    text = collapse(text)
    if text and min_len < len(text) < max_len:
        return Found(True, text)
    return NOT_FOUND


def marker_text(
    *,
    ids: tuple[str, ...] = (),
    test_ids: tuple[str, ...] = (),
    test_id_contains: tuple[str, ...] = (),
    class_contains: tuple[str, ...] = (),
    max_len: int,
    min_len: int = 0,
) -> Strategy:
    """Build a strategy returning the text of the first marked element.

    ``ids`` and ``test_ids`` match exactly; ``*_contains`` match substrings
    case-insensitively. Candidates failing the length bounds are skipped.
    """

    def is_marked(el: lxml.html.HtmlElement) -> bool:
        el_id = el.get("id") or ""
        test_id = test_id_of(el)
        if el_id and el_id in ids:
            return True
        if test_id and test_id in test_ids:
            return True
        low_tid = test_id.lower()
        if low_tid and any(s in low_tid for s in test_id_contains):
            return True
        low_cls = class_of(el).lower()
        return bool(low_cls) and any(s in low_cls for s in class_contains)

    def strategy(root: lxml.html.HtmlElement, *_: Any) -> Found:
        for el in iter_elements(root):
            if is_marked(el):
                result = _bounded(text_of(el), max_len, min_len)
                if result.found:
                    return result
        return NOT_FOUND

    return strategy


def label_attribute(*, keywords: tuple[str, ...], prefix_re: re.Pattern[str], max_len: int) -> Strategy:
    """Build a strategy reading a human label attribute ("Priority: High").

    The label must mention every keyword; ``prefix_re`` is stripped from it.
    """

    def strategy(root: lxml.html.HtmlElement, *_: Any) -> Found:
        for el in iter_elements(root):
            for name in LABEL_ATTRS:
                value = el.get(name) or ""
                low = value.lower()
                if value and all(k in low for k in keywords):
                    result = _bounded(prefix_re.sub("", value), max_len)
                    if result.found:
                        return result
        return NOT_FOUND

    return strategy


def data_attribute(name: str, *, max_len: int) -> Strategy:
    def strategy(root: lxml.html.HtmlElement, *_: Any) -> Found:
        for el in iter_elements(root):
            value = el.get(name)
            if value:
                result = _bounded(value, max_len)
                if result.found:
                    return result
        return NOT_FOUND

    return strategy


# ---------------------------------------------------------------------------
# Row-scoped scalar fields (issue lists, boards, subtask items)
# ---------------------------------------------------------------------------


def _without_key(text: str, key: str) -> str:
    return collapse(text.replace(key, " ")) if key else collapse(text)


def summary_from_test_id(row: lxml.html.HtmlElement, key: str = "") -> Found:
    for el in iter_elements(row):
        if "summary" in test_id_of(el).lower():
            result = _bounded(_without_key(text_of(el), key), MAX_SUMMARY_LEN, MIN_SUMMARY_LEN)
            if result.found:
                return result
    return NOT_FOUND


def summary_from_issue_link(row: lxml.html.HtmlElement, key: str = "") -> Found:
    if not key:
        return NOT_FOUND
    target = re.compile(r"/browse/" + re.escape(key) + r"(?!\d)")
    for a in iter_elements(row):
        if a.tag == "a" and target.search(a.get("href") or ""):
            result = _bounded(_without_key(text_of(a), key), MAX_SUMMARY_LEN, MIN_SUMMARY_LEN)
            if result.found:
                return result
    return NOT_FOUND


def summary_from_any_link(row: lxml.html.HtmlElement, key: str = "") -> Found:
    for a in iter_elements(row):
        if a.tag == "a":
            result = _bounded(_without_key(text_of(a), key), MAX_SUMMARY_LEN, MIN_SUMMARY_LEN)
            if result.found:
                return result
    return NOT_FOUND


def status_from_markers(row: lxml.html.HtmlElement, *_: Any) -> Found:
    """Element whose attribute names or values mention status/lozenge."""
    for el in iter_elements(row):
        for name, value in el.attrib.items():
            low = (name + value).lower()
            if "status" in low or "lozenge" in low:
                result = _bounded(text_of(el), MAX_STATUS_LEN)
                if result.found:
                    return result
                break
    return NOT_FOUND


def status_from_exact_keyword(row: lxml.html.HtmlElement, *_: Any) -> Found:
    """Element whose whole text is one status keyword (a status cell)."""
    wanted = {k.lower(): k for k in STATUS_KEYWORDS}
    for el in iter_elements(row):
        text = text_of(el).lower()
        if text in wanted:
            return Found(True, wanted[text])
    return NOT_FOUND


def status_from_keyword_text(row: lxml.html.HtmlElement, *_: Any) -> Found:
    text = text_of(row)
    for keyword in STATUS_KEYWORDS:
        if keyword in text:
            return Found(True, keyword)
    return NOT_FOUND


SUMMARY_STRATEGIES: tuple[Strategy, ...] = (summary_from_test_id, summary_from_issue_link, summary_from_any_link)

STATUS_STRATEGIES: tuple[Strategy, ...] = (
    status_from_markers,
    status_from_exact_keyword,
    status_from_keyword_text,
)

PRIORITY_STRATEGIES: tuple[Strategy, ...] = (
    label_attribute(
        keywords=("priority",),
        prefix_re=re.compile(r"(?i)\bpriority\b\s*:?\s*"),
        max_len=MAX_PRIORITY_LEN,
    ),
    data_attribute("data-priority", max_len=MAX_PRIORITY_LEN),
    marker_text(test_id_contains=("priority",), class_contains=("priority",), max_len=MAX_PRIORITY_LEN),
)

ISSUE_TYPE_STRATEGIES: tuple[Strategy, ...] = (
    label_attribute(
        keywords=("issue", "type"),
        prefix_re=re.compile(r"(?i)\bissue\s*type\b\s*:?\s*"),
        max_len=MAX_ISSUE_TYPE_LEN,
    ),
    data_attribute("data-issue-type", max_len=MAX_ISSUE_TYPE_LEN),
    marker_text(
        test_id_contains=("issue-type", "issuetype", "issue_type"),
        class_contains=("issue-type", "issuetype"),
        max_len=MAX_ISSUE_TYPE_LEN,
    ),
)

ASSIGNEE_STRATEGIES: tuple[Strategy, ...] = (
    label_attribute(
        keywords=("assignee",),
        prefix_re=re.compile(r"(?i)\bassignee\b\s*:?\s*"),
        max_len=MAX_PERSON_LEN,
    ),
    marker_text(test_id_contains=("assignee",), class_contains=("assignee",), max_len=MAX_PERSON_LEN),
)

ROW_FIELD_CASCADES: dict[str, tuple[Strategy, ...]] = {
    "summary": SUMMARY_STRATEGIES,
    "status": STATUS_STRATEGIES,
    "priority": PRIORITY_STRATEGIES,
    "issue_type": ISSUE_TYPE_STRATEGIES,
    "assignee": ASSIGNEE_STRATEGIES,
}


def extract_row_fields(row: lxml.html.HtmlElement, key: str) -> dict[str, str]:
    """Run every row cascade; absent fields are simply left out."""
    fields: dict[str, str] = {}
    for name, cascade in ROW_FIELD_CASCADES.items():
        result = first_found(cascade, row, key)
        if result.found:
            fields[name] = result.value
    return fields
