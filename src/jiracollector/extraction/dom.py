# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""lxml parsing + bounded iterative tree walk + small node helpers.

Every traversal in the collector goes through :func:`walk`, an explicit
stack walk carrying a depth counter, so worst-case cost is bounded by the
depth cap and no closure captures outer state.

Leaf module — only errors.py is imported.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Iterator
from enum import Enum

import lxml.html
from lxml import etree

from ..errors import ParseError

ISSUE_KEY_RE = re.compile(r"\b([A-Z][A-Z0-9]+-\d+)\b")
BROWSE_KEY_RE = re.compile(r"/browse/([A-Z][A-Z0-9]+-\d+)(?!\d)")

TEST_ID_ATTRS = ("data-testid", "data-test-id")

# Legacy server-rendered rows; "data-issuekey" is the older spelling
LEGACY_KEY_ATTRS = ("data-issue-key", "data-issuekey")


class Visit(Enum):
    """Visitor verdict for one element."""

    DESCEND = "descend"  # visit children
    SKIP = "skip"  # do not visit children
    STOP = "stop"  # end the walk


Visitor = Callable[["lxml.html.HtmlElement", int], "Visit | None"]


def parse_document(html: str) -> lxml.html.HtmlElement:
    """Parse raw HTML into an lxml root element.

    Raises:
        ParseError: empty input or lxml failure.
    """
    if not html or not html.strip():
        raise ParseError("Empty HTML input")
    try:
        parser = lxml.html.HTMLParser(recover=True, encoding="utf-8")
        return lxml.html.document_fromstring(html.encode("utf-8"), parser=parser)
    except (etree.ParserError, etree.XMLSyntaxError, ValueError) as e:
        raise ParseError(f"lxml parsing failed: {e}") from e


def is_element(node: object) -> bool:
    """True for element nodes (comments and processing instructions have non-str tags)."""
    return isinstance(getattr(node, "tag", None), str)


def element_children(el: lxml.html.HtmlElement) -> list[lxml.html.HtmlElement]:
    return [c for c in el if is_element(c)]


def walk(root: lxml.html.HtmlElement, visitor: Visitor, *, max_depth: int | None = None) -> None:
    """Pre-order walk in document order. ``root`` is depth 0.

    Elements deeper than ``max_depth`` are never visited. A visitor returning
    ``None`` is treated as ``Visit.DESCEND``.
    """
    stack: list[tuple[lxml.html.HtmlElement, int]] = [(root, 0)]
    while stack:
        el, depth = stack.pop()
        verdict = visitor(el, depth)
        if verdict is Visit.STOP:
            return
        if verdict is Visit.SKIP:
            continue
        if max_depth is not None and depth >= max_depth:
            continue
        children = element_children(el)
        stack.extend((child, depth + 1) for child in reversed(children))


def iter_elements(root: lxml.html.HtmlElement, *, max_depth: int | None = None) -> Iterator[lxml.html.HtmlElement]:
    """Yield elements of ``root``'s subtree (root included) in document order."""
    found: list[lxml.html.HtmlElement] = []
    walk(root, lambda el, _depth: found.append(el), max_depth=max_depth)
    yield from found


def text_of(el: lxml.html.HtmlElement) -> str:
    """Visible text of the subtree, whitespace-collapsed."""
    return " ".join(" ".join(el.itertext()).split())


def test_id_of(el: lxml.html.HtmlElement) -> str:
    for name in TEST_ID_ATTRS:
        value = el.get(name)
        if value:
            return value
    return ""


def class_of(el: lxml.html.HtmlElement) -> str:
    return el.get("class") or ""


def hrefs(el: lxml.html.HtmlElement, *, max_depth: int | None = None) -> list[str]:
    """``href`` values of anchors in the subtree, in document order."""
    return [a.get("href") for a in iter_elements(el, max_depth=max_depth) if a.tag == "a" and a.get("href")]


def find_browse_key(el: lxml.html.HtmlElement, *, max_depth: int | None = None) -> str:
    """First issue key found in a ``/browse/`` anchor of the subtree, or ""."""
    for href in hrefs(el, max_depth=max_depth):
        m = BROWSE_KEY_RE.search(href)
        if m:
            return m.group(1)
    return ""


def collapse(text: str | None) -> str:
    return " ".join((text or "").split())
