# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tests for field-recovery strategies and the Found cascade runner."""

from __future__ import annotations

from jiracollector.extraction.dom import parse_document
from jiracollector.extraction.strategies import (
    KEY_STRATEGIES,
    NOT_FOUND,
    Found,
    extract_issue_key,
    extract_row_fields,
    first_found,
    key_from_browse_links,
    key_from_data_attributes,
    key_from_text,
    status_from_exact_keyword,
    status_from_markers,
    summary_from_issue_link,
)


def _el(html: str, el_id: str = "row"):
    return parse_document(f"<html><body>{html}</body></html>").get_element_by_id(el_id)


# ---------------------------------------------------------------------------
# Cascade runner
# ---------------------------------------------------------------------------


class TestFirstFound:
    def test_stops_at_first_hit(self):
        calls = []

        def miss(*_):
            calls.append("miss")
            return NOT_FOUND

        def hit(*_):
            calls.append("hit")
            return Found(True, "v")

        def never(*_):
            calls.append("never")
            return Found(True, "w")

        assert first_found((miss, hit, never)) == Found(True, "v")
        assert calls == ["miss", "hit"]

    def test_all_miss(self):
        assert first_found((lambda: NOT_FOUND,)) is NOT_FOUND

    def test_empty_value_can_be_found(self):
        assert first_found((lambda: Found(True, ""),)).found is True


# ---------------------------------------------------------------------------
# Issue key
# ---------------------------------------------------------------------------


class TestKeyStrategies:
    def test_strategy_order(self):
        assert KEY_STRATEGIES == (key_from_data_attributes, key_from_browse_links, key_from_text)

    def test_legacy_attribute(self):
        row = _el('<table><tr id="row" data-issue-key="ABC-7"><td>x</td></tr></table>')
        assert key_from_data_attributes(row) == Found(True, "ABC-7")

    def test_older_attribute_spelling(self):
        row = _el('<div id="row" data-issuekey="ABC-8">x</div>')
        assert extract_issue_key(row) == "ABC-8"

    def test_any_data_attribute(self):
        row = _el('<div id="row" data-rbd-draggable-id="ISSUE::ABC-9">x</div>')
        assert key_from_data_attributes(row) == Found(True, "ABC-9")

    def test_browse_link(self):
        row = _el('<div id="row"><span><a href="/browse/ABC-10">open</a></span></div>')
        assert key_from_browse_links(row) == Found(True, "ABC-10")

    def test_browse_link_beyond_depth_ignored(self):
        deep = "<span>" * 6 + '<a href="/browse/ABC-11">x</a>' + "</span>" * 6
        row = _el(f'<div id="row">{deep}</div>')
        assert key_from_browse_links(row) is NOT_FOUND

    def test_visible_text(self):
        row = _el('<div id="row">See OPS-3 for details</div>')
        assert key_from_text(row) == Found(True, "OPS-3")

    def test_project_filter_skips_other_project(self):
        row = _el('<div id="row"><a href="/browse/OTHER-1">a</a> <a href="/browse/ABC-2">b</a></div>')
        assert extract_issue_key(row, "ABC") == "ABC-2"
        assert extract_issue_key(row) == "OTHER-1"

    def test_filter_falls_through_to_text(self):
        row = _el('<div id="row" data-issue-key="OTHER-1">mentions ABC-5</div>')
        assert extract_issue_key(row, "ABC") == "ABC-5"

    def test_filter_with_no_match(self):
        row = _el('<div id="row" data-issue-key="OTHER-1">OTHER-1</div>')
        assert extract_issue_key(row, "ABC") == ""


# ---------------------------------------------------------------------------
# Row fields
# ---------------------------------------------------------------------------


class TestRowFields:
    def test_link_summary_and_status_cell(self):
        row = _el(
            '<table><tr id="row" data-issue-key="PROJ-7">'
            '<td><a href="/browse/PROJ-7">Fix bug</a></td><td>In Progress</td>'
            "</tr></table>"
        )
        assert extract_row_fields(row, "PROJ-7") == {"summary": "Fix bug", "status": "In Progress"}

    def test_summary_strips_key(self):
        row = _el('<div id="row"><a href="/browse/ABC-1">ABC-1 Broken export</a></div>')
        assert summary_from_issue_link(row, "ABC-1") == Found(True, "Broken export")

    def test_short_summary_rejected(self):
        row = _el('<div id="row"><a href="/browse/ABC-1">ABC-1 Fix</a></div>')
        assert summary_from_issue_link(row, "ABC-1") is NOT_FOUND

    def test_status_marker_beats_keyword(self):
        row = _el('<div id="row">Done soon <span data-testid="issue-status-lozenge">Blocked</span></div>')
        assert status_from_markers(row) == Found(True, "Blocked")
        assert extract_row_fields(row, "")["status"] == "Blocked"

    def test_status_marker_too_long_skipped(self):
        long_text = "x" * 40
        row = _el(f'<div id="row"><span class="status">{long_text}</span><b>Closed</b></div>')
        assert status_from_markers(row) is NOT_FOUND
        assert status_from_exact_keyword(row) == Found(True, "Closed")

    def test_labelled_fields(self):
        row = _el(
            '<div id="row">'
            '<img alt="Priority: Medium" src="p.svg">'
            '<img alt="Issue Type: Story" src="t.svg">'
            '<span aria-label="Assignee: Kim Lee"></span>'
            "</div>"
        )
        fields = extract_row_fields(row, "")
        assert fields["priority"] == "Medium"
        assert fields["issue_type"] == "Story"
        assert fields["assignee"] == "Kim Lee"

    def test_absent_fields_left_out(self):
        row = _el('<div id="row">nothing useful</div>')
        assert extract_row_fields(row, "") == {}
