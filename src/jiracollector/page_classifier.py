# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Jira page classifier — URL + DOM indicator cascade.

Two indicator layers, evaluated independently:
  1. URL   – substring/regex checks on path and query   (<0.1 ms)
  2. HTML  – one bounded-depth walk over the lxml tree   (<30 ms)

Indicators are plain strings (``url_pattern:*`` / ``html_structure:*``) so
callers can log or display why a verdict was reached.  The page type is then
resolved by a fixed priority cascade rather than by scores: a single issue
detail signal beats any amount of list evidence, and repeated content
evidence beats an ambiguous URL.

Never raises. A document lxml cannot parse degrades to
``unknown / none / not collectable``.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from urllib.parse import parse_qs, urlparse

import lxml.html

from .errors import ParseError
from .extraction.dom import BROWSE_KEY_RE, LEGACY_KEY_ATTRS, Visit, parse_document, test_id_of, walk
from .models import UNKNOWN_ASSESSMENT, Confidence, PageAssessment, PageType

URL_PREFIX = "url_pattern:"
HTML_PREFIX = "html_structure:"

# Hard cap on the assessment walk; deep SPA trees are cut here.
DEFAULT_MAX_DEPTH = 20

# Raw counts become "multiple_*" indicators only at this repetition.
REPEAT_THRESHOLD = 3

COLLECTABLE_TYPES: frozenset[PageType] = frozenset(
    {
        PageType.PROJECTS_LIST,
        PageType.ISSUE,
        PageType.ISSUE_LIST,
        PageType.BOARD,
        PageType.SEARCH,
    }
)

_COLLECTABLE_CONFIDENCE: frozenset[Confidence] = frozenset({Confidence.HIGH, Confidence.MEDIUM, Confidence.LOW})

# ---------------------------------------------------------------------------
# URL signals
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class UrlParts:
    """Pre-split URL handed to every URL signal."""

    raw: str
    host: str
    path: str
    query: dict[str, list[str]]


@dataclass(frozen=True, slots=True)
class UrlSignal:
    name: str
    check: Callable[[UrlParts], bool]


_ISSUE_DETAIL_PATH_RE = re.compile(r"/browse/[A-Z][A-Z0-9]+-\d+")
_ISSUE_LIST_PATH_RE = re.compile(r"/projects/[^/]+/issues")
_BOARD_PATH_RE = re.compile(r"/boards?/|/secure/RapidBoard")


def _is_projects_list_path(u: UrlParts) -> bool:
    return u.path.rstrip("/").endswith("/projects")


URL_SIGNALS: tuple[UrlSignal, ...] = (
    UrlSignal("projects_list", _is_projects_list_path),
    UrlSignal("issue_detail", lambda u: bool(_ISSUE_DETAIL_PATH_RE.search(u.path))),
    UrlSignal("issue_list", lambda u: bool(_ISSUE_LIST_PATH_RE.search(u.path))),
    UrlSignal("board", lambda u: bool(_BOARD_PATH_RE.search(u.path))),
    UrlSignal("search", lambda u: "/issues/" in u.path or "jql" in u.query),
    UrlSignal("jira_domain", lambda u: u.host.endswith(".atlassian.net") or "/jira/" in u.path),
)


def _split_url(url: str) -> UrlParts:
    parsed = urlparse(url or "")
    return UrlParts(
        raw=url or "",
        host=(parsed.hostname or "").lower(),
        path=parsed.path or "",
        query=parse_qs(parsed.query),
    )


def url_indicators(url: str) -> set[str]:
    """Return ``url_pattern:*`` indicators for ``url``."""
    parts = _split_url(url)
    return {URL_PREFIX + sig.name for sig in URL_SIGNALS if sig.check(parts)}


# ---------------------------------------------------------------------------
# HTML signals
# ---------------------------------------------------------------------------

_ROW_TAGS = frozenset({"tr", "div", "li"})
_DETAIL_LAYOUT_MARKERS = ("issue-view", "issue-details", "issue.views.issue-details")
_PROJECT_LINK_RE = re.compile(r"/projects/([^/?#]+)")


@dataclass(slots=True)
class _HtmlScan:
    """Mutable accumulator for one assessment walk."""

    indicators: set[str] = field(default_factory=set)
    issue_row_count: int = 0
    issue_keys: set[str] = field(default_factory=set)
    project_targets: set[str] = field(default_factory=set)

    def add(self, name: str) -> None:
        self.indicators.add(HTML_PREFIX + name)

    def visit(self, el: lxml.html.HtmlElement, depth: int) -> Visit:
        tag = el.tag
        test_id = test_id_of(el)

        if tag == "table" and "project" in (el.get("data-testid") or ""):
            self.add("project_table")

        if tag in _ROW_TAGS:
            if any(el.get(name) is not None for name in LEGACY_KEY_ATTRS):
                self.issue_row_count += 1
                self.add("issue_rows")
            low = test_id.lower()
            if "issue" in low and ("row" in low or "container" in low or "issue." in low):
                self.issue_row_count += 1
                self.add("issue_elements")

        if tag == "a":
            href = el.get("href") or ""
            if "/browse/" in href:
                m = BROWSE_KEY_RE.search(href)
                if m:
                    self.issue_keys.add(m.group(1))
            m = _PROJECT_LINK_RE.search(href)
            if m:
                self.project_targets.add(m.group(1))

        if tag == "div":
            cls = el.get("class") or ""
            if any("board" in v or "column" in v for v in (cls, el.get("data-testid") or "")):
                self.add("board_layout")

        if tag in ("div", "section"):
            for value in (el.get("data-testid") or "", el.get("id") or ""):
                if any(marker in value for marker in _DETAIL_LAYOUT_MARKERS):
                    self.add("issue_detail_layout")

        return Visit.DESCEND

    def finish(self) -> set[str]:
        if len(self.issue_keys) >= REPEAT_THRESHOLD:
            self.add("multiple_issue_links")
        if self.issue_row_count >= REPEAT_THRESHOLD:
            self.add("multiple_issue_rows")
        if len(self.project_targets) >= REPEAT_THRESHOLD:
            self.add("multiple_project_links")
        return self.indicators


def html_indicators(doc: lxml.html.HtmlElement, *, max_depth: int = DEFAULT_MAX_DEPTH) -> set[str]:
    """Return ``html_structure:*`` indicators from one bounded walk of ``doc``."""
    scan = _HtmlScan()
    walk(doc, scan.visit, max_depth=max_depth)
    return scan.finish()


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------


def resolve_page_type(indicators: set[str] | frozenset[str]) -> PageType:
    """Priority cascade over indicator names."""

    def has(*names: str) -> bool:
        return any(n in indicators for n in names)

    url_board = has("url_pattern:board")
    url_search = has("url_pattern:search")
    html_board = has("html_structure:board_layout")

    if has("url_pattern:issue_detail", "html_structure:issue_detail_layout"):
        return PageType.ISSUE

    if has(
        "url_pattern:projects_list",
        "html_structure:project_table",
        "html_structure:multiple_project_links",
    ):
        return PageType.PROJECTS_LIST

    # Repeated issue content outranks whatever the URL hints at
    if has(
        "html_structure:multiple_issue_links",
        "html_structure:issue_rows",
        "html_structure:issue_elements",
        "html_structure:multiple_issue_rows",
    ):
        if url_board or html_board:
            return PageType.BOARD
        if url_search:
            return PageType.SEARCH
        return PageType.ISSUE_LIST

    if has("url_pattern:issue_list"):
        return PageType.ISSUE_LIST
    if url_board or html_board:
        return PageType.BOARD
    if url_search:
        return PageType.SEARCH

    if has("url_pattern:jira_domain"):
        return PageType.GENERIC
    return PageType.UNKNOWN


def confidence_for(indicators: set[str] | frozenset[str]) -> Confidence:
    if not indicators:
        return Confidence.NONE
    has_url = any(i.startswith(URL_PREFIX) for i in indicators)
    has_html = any(i.startswith(HTML_PREFIX) for i in indicators)
    if has_url and has_html:
        return Confidence.HIGH
    if has_url or has_html:
        return Confidence.MEDIUM
    return Confidence.LOW


def is_collectable(page_type: PageType, confidence: Confidence) -> bool:
    # Low confidence stays collectable: pages are often captured mid-render
    return page_type in COLLECTABLE_TYPES and confidence in _COLLECTABLE_CONFIDENCE


# ---------------------------------------------------------------------------
# Assessor
# ---------------------------------------------------------------------------


class PageAssessor:
    """Classifies captured Jira pages. Stateless apart from injected settings."""

    def __init__(self, *, logger: logging.Logger | None = None, max_depth: int = DEFAULT_MAX_DEPTH) -> None:
        self._logger = logger or logging.getLogger(__name__)
        self._max_depth = max_depth

    def assess(self, html: str, url: str) -> PageAssessment:
        """Classify ``html`` captured at ``url``. Never raises."""
        indicators = url_indicators(url)

        if html and html.strip():
            try:
                doc = parse_document(html)
            except ParseError as e:
                self._logger.warning("Failed to parse HTML for assessment: %s", e)
                return UNKNOWN_ASSESSMENT
            indicators |= html_indicators(doc, max_depth=self._max_depth)

        page_type = resolve_page_type(indicators)
        confidence = confidence_for(indicators)
        assessment = PageAssessment(
            page_type=page_type,
            confidence=confidence,
            collectable=is_collectable(page_type, confidence),
            indicators=frozenset(indicators),
        )

        if assessment.collectable and confidence is Confidence.LOW:
            self._logger.debug("Allowing collection with low confidence for %s", page_type)
        self._logger.debug(
            "Page assessment completed: type=%s confidence=%s collectable=%s indicators=%d",
            page_type,
            confidence,
            assessment.collectable,
            len(indicators),
        )
        return assessment


_default_assessor = PageAssessor()


def assess_page(html: str, url: str) -> PageAssessment:
    """Module-level convenience wrapper around a default :class:`PageAssessor`."""
    return _default_assessor.assess(html, url)
