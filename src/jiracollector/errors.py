# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Collector exception hierarchy.

All collector-specific errors inherit from CollectorError, allowing callers
to catch the base class for any collector failure or specific subclasses
for targeted handling.

Low confidence classification, empty extraction and concurrent merges of
one key are steady-state outcomes, not errors, and have no class here.
"""

from __future__ import annotations


class CollectorError(Exception):
    """Base exception for all collector errors."""


class ParseError(CollectorError):
    """Captured HTML could not be parsed. Fatal for that single page only."""


class StorageError(CollectorError):
    """Storage backend read or write failure."""


class ResourceExhaustionError(CollectorError):
    """Input exceeds configured resource limits (HTML size, etc.)."""


class ConfigError(CollectorError):
    """Invalid configuration file or value."""


class JiraApiError(CollectorError):
    """Jira REST API request failure."""

    def __init__(self, message: str, *, status_code: int = 0) -> None:
        super().__init__(message)
        self.status_code = status_code


class NormalizationError(CollectorError):
    """A record could not be turned into a canonical entity. Fatal for that record only."""
