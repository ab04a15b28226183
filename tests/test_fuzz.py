# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Property-based fuzz tests using Hypothesis.

Verifies invariants hold for arbitrary inputs across the page assessor,
extraction engine, normalizer and merge clock.
"""

from __future__ import annotations

import dataclasses
import re
from datetime import UTC, datetime

import pytest

pytest.importorskip("hypothesis")

from hypothesis import HealthCheck, example, given, settings  # noqa: E402
from hypothesis import strategies as st  # noqa: E402

from jiracollector.errors import ParseError
from jiracollector.extraction import JiraExtractor
from jiracollector.extraction.engine import project_filter_from_url
from jiracollector.merge import MonotonicClock
from jiracollector.models import IssueRecord, PageType, TicketData
from jiracollector.normalizer import compute_ticket_hash
from jiracollector.page_classifier import assess_page
from tests._jira_pages import ISSUE_LIST_URL

# ---------------------------------------------------------------------------
# Module-level strategies
# ---------------------------------------------------------------------------

GENERAL_TEXT = st.text(min_size=0, max_size=2000)

HTML_LIKE = st.text(
    alphabet=st.characters(
        whitelist_categories=("L", "N", "P", "Z"),
        whitelist_characters="<>/=\"'&;#!.- \n\t",
    ),
    min_size=10,
    max_size=3000,
)

KEYED_HTML = st.lists(
    st.tuples(
        st.sampled_from(["ABC", "OPS", "AB1"]),
        st.integers(1, 99999),
        st.text(alphabet="abcxyz ", max_size=40),
    ),
    max_size=20,
).map(lambda rows: "<html><body>" + "".join(f"<p>{p}-{n} {t}</p>" for p, n, t in rows) + "</body></html>")

URLS = st.one_of(
    GENERAL_TEXT,
    st.from_regex(r"https?://[a-z0-9\-]+\.[a-z]{2,6}(/[A-Za-z0-9\-._~/?=&%+]*)?", fullmatch=True),
)

_KEY_RE = re.compile(r"^[A-Z][A-Z0-9]+-\d+$")

# ---------------------------------------------------------------------------
# Shared settings
# ---------------------------------------------------------------------------

_fuzz_settings = settings(
    max_examples=200,
    suppress_health_check=[HealthCheck.too_slow],
)


@pytest.mark.fuzz
class TestFuzzAssessor:
    @_fuzz_settings
    @given(html=HTML_LIKE, url=URLS)
    @example("<table><tr data-issue-key='ABC-1'>", "https://acme.atlassian.net/browse/ABC-1")
    @example("", "")
    def test_never_raises(self, html: str, url: str) -> None:
        assessment = assess_page(html, url)
        assert assessment.page_type in set(PageType)
        if assessment.collectable:
            assert assessment.page_type is not PageType.UNKNOWN

    @_fuzz_settings
    @given(url=URLS)
    def test_project_filter_is_key_or_empty(self, url: str) -> None:
        project = project_filter_from_url(url)
        assert project == "" or re.fullmatch(r"[A-Z0-9]+", project)


@pytest.mark.fuzz
class TestFuzzExtraction:
    @_fuzz_settings
    @given(html=HTML_LIKE)
    def test_issue_list_yields_valid_keys(self, html: str) -> None:
        try:
            records = JiraExtractor().parse_html(html, PageType.ISSUE_LIST, ISSUE_LIST_URL)
        except ParseError:
            return
        for record in records:
            assert isinstance(record, IssueRecord)
            assert _KEY_RE.match(record.key)

    @_fuzz_settings
    @given(html=KEYED_HTML)
    def test_project_filter_respected(self, html: str) -> None:
        records = JiraExtractor().parse_html(html, PageType.ISSUE_LIST, ISSUE_LIST_URL)
        keys = [r.key for r in records]
        assert all(k.startswith("ABC-") for k in keys)
        assert len(keys) == len(set(keys))


@pytest.mark.fuzz
class TestFuzzNormalizer:
    @_fuzz_settings
    @given(summary=GENERAL_TEXT, updated=GENERAL_TEXT, raw=st.none() | GENERAL_TEXT)
    def test_hash_ignores_volatile_fields(self, summary: str, updated: str, raw: str | None) -> None:
        ticket = TicketData(key="ABC-1", summary=summary)
        touched = dataclasses.replace(ticket, updated=updated, raw_html=raw)
        assert compute_ticket_hash(ticket) == compute_ticket_hash(touched)
        assert re.fullmatch(r"[0-9a-f]{16}", compute_ticket_hash(ticket))


@pytest.mark.fuzz
class TestFuzzClock:
    @_fuzz_settings
    @given(
        readings=st.lists(
            st.datetimes(min_value=datetime(2000, 1, 1), max_value=datetime(2100, 1, 1), timezones=st.just(UTC)),
            min_size=1,
            max_size=50,
        )
    )
    def test_strictly_increasing(self, readings: list[datetime]) -> None:
        it = iter(readings)
        clock = MonotonicClock(lambda: next(it))
        stamps = [clock() for _ in readings]
        assert all(a < b for a, b in zip(stamps, stamps[1:], strict=False))
