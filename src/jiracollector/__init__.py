# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Jira page collector: classify captured Jira pages and extract tickets.

Pipeline:
- page_classifier: (html, url) -> PageAssessment (type, confidence, collectable)
- extraction: page-type dispatch over strategy cascades -> IssueRecord / ProjectRecord
- normalizer: records and REST field bags -> TicketData / ProjectData
- merge: versioned upserts into storage with explicit add/update counts
"""

from __future__ import annotations

__version__ = "0.3.0"

from .errors import CollectorError, ParseError, StorageError  # noqa: E402
from .extraction import JiraExtractor, parse_html  # noqa: E402
from .models import Confidence, PageAssessment, PageType, ProjectData, TicketData  # noqa: E402
from .page_classifier import PageAssessor, assess_page  # noqa: E402

__all__ = [
    "CollectorError",
    "Confidence",
    "JiraExtractor",
    "PageAssessment",
    "PageAssessor",
    "PageType",
    "ParseError",
    "ProjectData",
    "StorageError",
    "TicketData",
    "__version__",
    "assess_page",
    "parse_html",
]
