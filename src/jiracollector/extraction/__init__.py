# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""HTML record extraction for captured Jira pages."""

from .engine import JiraExtractor, parse_html
from .strategies import Found, extract_issue_key, first_found

__all__ = ["Found", "JiraExtractor", "extract_issue_key", "first_found", "parse_html"]
