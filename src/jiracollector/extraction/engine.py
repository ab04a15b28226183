# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Page-type dispatch for record extraction.

Each collectable page type has one handler.  Handlers never raise for a
missing field; only a document lxml cannot parse fails the whole call
(``ParseError``), once, for that page.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from urllib.parse import unquote_plus, urlparse

import lxml.html

from ..models import IssueRecord, PageType, Record, project_key_of
from .dom import BROWSE_KEY_RE, ISSUE_KEY_RE, iter_elements, parse_document
from .issue_page import extract_issue_page
from .rows import find_issue_rows, find_project_rows, project_from_row
from .strategies import extract_issue_key, extract_row_fields, matches_project

# Hard cap for row discovery walks
DEFAULT_MAX_DEPTH = 64

_PROJECT_PATH_RE = re.compile(r"/projects/([A-Z0-9]+)")
_JQL_PROJECT_RE = re.compile(r"project\s*=\s*\"?([A-Z0-9]+)\"?", re.IGNORECASE | re.ASCII)


def project_filter_from_url(url: str) -> str:
    """Project key implied by a list page URL ("" when none)."""
    if not url:
        return ""
    m = _PROJECT_PATH_RE.search(url)
    if m:
        return m.group(1)
    m = _JQL_PROJECT_RE.search(unquote_plus(url))
    if m:
        return m.group(1).upper()
    return ""


def base_url_of(url: str) -> str:
    """``scheme://host[:port]`` of ``url`` ("" for relative input)."""
    parsed = urlparse(url or "")
    if not parsed.scheme or not parsed.netloc:
        return ""
    return f"{parsed.scheme}://{parsed.netloc}"


def issue_url(base_url: str, key: str) -> str:
    return f"{base_url}/browse/{key}" if base_url else f"/browse/{key}"


def sweep_issue_keys(doc: lxml.html.HtmlElement, project_filter: str = "") -> list[str]:
    """Every issue key in text and ``/browse/`` links, in document order, once."""
    keys: list[str] = []
    seen: set[str] = set()

    def add(key: str) -> None:
        if key not in seen and matches_project(key, project_filter):
            seen.add(key)
            keys.append(key)

    for el in iter_elements(doc):
        if el.tag in ("script", "style"):
            continue
        if el.tag == "a":
            m = BROWSE_KEY_RE.search(el.get("href") or "")
            if m:
                add(m.group(1))
        for chunk in (el.text, el.tail):
            if chunk:
                for key in ISSUE_KEY_RE.findall(chunk):
                    add(key)
    return keys


class JiraExtractor:
    """Turns a parsed Jira page into an ordered list of records."""

    def __init__(
        self,
        *,
        logger: logging.Logger | None = None,
        capture_raw_html: bool = True,
        max_depth: int = DEFAULT_MAX_DEPTH,
    ) -> None:
        self._logger = logger or logging.getLogger(__name__)
        self._capture_raw_html = capture_raw_html
        self._max_depth = max_depth
        self._handlers: dict[PageType, Callable[[lxml.html.HtmlElement, str, str], list[Record]]] = {
            PageType.PROJECTS_LIST: self._parse_projects_list,
            PageType.ISSUE: self._parse_issue,
            PageType.ISSUE_LIST: self._parse_issue_list,
            PageType.SEARCH: self._parse_issue_list,
            PageType.BOARD: self._parse_board,
            PageType.GENERIC: self._parse_generic,
        }

    def parse_html(self, html: str, page_type: PageType | str, url: str) -> list[Record]:
        """Extract records from ``html``.

        Raises:
            ParseError: the document could not be parsed.
        """
        try:
            handler = self._handlers.get(PageType(page_type))
        except ValueError:
            handler = None
        if handler is None:
            self._logger.debug("No extraction handler for page type %r", page_type)
            return []

        doc = parse_document(html)
        records = handler(doc, html, url)
        self._logger.debug("Extracted %d records from %s page", len(records), page_type)
        return records

    # ── handlers ────────────────────────────────────────────

    def _parse_projects_list(self, doc: lxml.html.HtmlElement, html: str, url: str) -> list[Record]:
        projects: list[Record] = []
        seen: set[str] = set()
        for row in find_project_rows(doc):
            record = project_from_row(row)
            if record is None or record.key in seen:
                continue
            seen.add(record.key)
            projects.append(record)
        return projects

    def _parse_issue(self, doc: lxml.html.HtmlElement, html: str, url: str) -> list[Record]:
        record = extract_issue_page(doc, url)
        if record is None:
            self._logger.debug("Issue page without a recoverable key: %s", url)
            return []
        if self._capture_raw_html:
            record.raw_html = html
        return [record]

    def _parse_issue_list(self, doc: lxml.html.HtmlElement, html: str, url: str) -> list[Record]:
        project_filter = project_filter_from_url(url)
        records = self._rows_to_records(doc, project_filter, base_url_of(url))
        if not records and project_filter:
            records = self._sweep_to_records(doc, project_filter, base_url_of(url))
        return records

    def _parse_board(self, doc: lxml.html.HtmlElement, html: str, url: str) -> list[Record]:
        project_filter = project_filter_from_url(url)
        records = self._rows_to_records(doc, project_filter, base_url_of(url))
        if not records:
            records = self._sweep_to_records(doc, project_filter, base_url_of(url))
        return records

    def _parse_generic(self, doc: lxml.html.HtmlElement, html: str, url: str) -> list[Record]:
        return self._sweep_to_records(doc, project_filter_from_url(url), base_url_of(url))

    # ── helpers ─────────────────────────────────────────────

    def _rows_to_records(self, doc: lxml.html.HtmlElement, project_filter: str, base_url: str) -> list[Record]:
        records: list[Record] = []
        seen: set[str] = set()
        for match in find_issue_rows(doc, max_depth=self._max_depth):
            key = extract_issue_key(match.element, project_filter)
            if not key or key in seen:
                continue
            seen.add(key)
            record = IssueRecord(key=key, project_id=project_key_of(key), url=issue_url(base_url, key))
            for name, value in extract_row_fields(match.element, key).items():
                record.set_field(name, value)
            records.append(record)
        return records

    def _sweep_to_records(self, doc: lxml.html.HtmlElement, project_filter: str, base_url: str) -> list[Record]:
        return [
            IssueRecord(key=key, project_id=project_key_of(key), url=issue_url(base_url, key))
            for key in sweep_issue_keys(doc, project_filter)
        ]


_default_extractor = JiraExtractor()


def parse_html(html: str, page_type: PageType | str, url: str) -> list[Record]:
    """Module-level convenience wrapper around a default :class:`JiraExtractor`."""
    return _default_extractor.parse_html(html, page_type, url)

