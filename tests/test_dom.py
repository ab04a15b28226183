# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tests for jiracollector.extraction.dom — parsing and the bounded walk."""

from __future__ import annotations

import pytest

from jiracollector.errors import ParseError
from jiracollector.extraction import dom
from jiracollector.extraction.dom import (
    Visit,
    element_children,
    find_browse_key,
    hrefs,
    iter_elements,
    parse_document,
    text_of,
    walk,
)


class TestParseDocument:
    def test_returns_html_root(self):
        doc = parse_document("<p>hi</p>")
        assert doc.tag == "html"

    @pytest.mark.parametrize("html", ["", "   \n\t"])
    def test_empty_input_raises(self, html):
        with pytest.raises(ParseError):
            parse_document(html)

    def test_unicode_survives(self):
        doc = parse_document("<p>Überprüfung – 検索</p>")
        assert "Überprüfung – 検索" in text_of(doc)


class TestWalk:
    HTML = "<div id='a'><span id='b'><i id='c'></i></span><p id='d'></p></div>"

    def _ids(self, **kwargs):
        doc = parse_document(self.HTML)
        root = doc.get_element_by_id("a")
        seen = []
        walk(root, lambda el, depth: seen.append((el.get("id"), depth)), **kwargs)
        return seen

    def test_preorder_document_order_with_depth(self):
        assert self._ids() == [("a", 0), ("b", 1), ("c", 2), ("d", 1)]

    def test_depth_cap(self):
        assert self._ids(max_depth=1) == [("a", 0), ("b", 1), ("d", 1)]

    def test_skip_prunes_subtree(self):
        doc = parse_document(self.HTML)
        seen = []

        def visit(el, depth):
            seen.append(el.get("id"))
            return Visit.SKIP if el.get("id") == "b" else Visit.DESCEND

        walk(doc.get_element_by_id("a"), visit)
        assert seen == ["a", "b", "d"]

    def test_stop_ends_walk(self):
        doc = parse_document(self.HTML)
        seen = []

        def visit(el, depth):
            seen.append(el.get("id"))
            return Visit.STOP if el.get("id") == "c" else None

        walk(doc.get_element_by_id("a"), visit)
        assert seen == ["a", "b", "c"]

    def test_deep_tree_fully_walked(self):
        depth = 200
        doc = parse_document("<div>" * depth + "x" + "</div>" * depth)
        count = sum(1 for _ in iter_elements(doc))
        assert count >= depth

    def test_comments_are_not_elements(self):
        doc = parse_document("<div id='a'><!-- note --><span></span></div>")
        assert [c.tag for c in element_children(doc.get_element_by_id("a"))] == ["span"]


class TestNodeHelpers:
    def test_text_of_collapses_whitespace(self):
        doc = parse_document("<div id='x'>  Fix \n <b>the</b>\tbug </div>")
        assert text_of(doc.get_element_by_id("x")) == "Fix the bug"

    def test_test_id_variants(self):
        doc = parse_document("<div id='x' data-test-id='legacy'></div><div id='y' data-testid='modern'></div>")
        assert dom.test_id_of(doc.get_element_by_id("x")) == "legacy"
        assert dom.test_id_of(doc.get_element_by_id("y")) == "modern"

    def test_hrefs_and_browse_key(self):
        doc = parse_document("<div id='x'><a href='/wiki'>w</a><a href='/browse/OPS-17?focus=1'>k</a></div>")
        box = doc.get_element_by_id("x")
        assert hrefs(box) == ["/wiki", "/browse/OPS-17?focus=1"]
        assert find_browse_key(box) == "OPS-17"

    def test_browse_key_absent(self):
        doc = parse_document("<div id='x'><a href='/browse/lowercase-1'>k</a></div>")
        assert find_browse_key(doc.get_element_by_id("x")) == ""
