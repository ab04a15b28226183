# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Jira REST issue search — the API path that bypasses HTML extraction.

Basic auth (username + API token) over one ``httpx.AsyncClient``.  Search
pages are requested until ``startAt + len(issues)`` reaches ``total``; each
issue's ``fields`` bag goes through ``RecordNormalizer.ticket_from_api``.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Sequence
from typing import Any

import httpx

from .errors import JiraApiError, NormalizationError
from .models import TicketData
from .normalizer import RecordNormalizer

SEARCH_PATH = "/rest/api/2/search"
DEFAULT_PAGE_SIZE = 50


def _quote(value: str) -> str:
    return "'" + value.replace("\\", "\\\\").replace("'", "\\'") + "'"


def build_jql(
    project_key: str,
    issue_types: Sequence[str] = (),
    statuses: Sequence[str] = (),
    updated_after: str = "",
) -> str:
    """JQL selecting one project, optionally narrowed by type, status and update time."""
    parts = [f"project = {project_key}"]
    if issue_types:
        parts.append(f"issuetype in ({', '.join(_quote(t) for t in issue_types)})")
    if statuses:
        parts.append(f"status in ({', '.join(_quote(s) for s in statuses)})")
    if updated_after:
        parts.append(f"updated >= {_quote(updated_after)}")
    return " AND ".join(parts)


class JiraClient:
    """Async Jira REST client. Use as an async context manager or call ``close()``."""

    def __init__(
        self,
        base_url: str,
        username: str = "",
        api_token: str = "",
        *,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
        normalizer: RecordNormalizer | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._normalizer = normalizer or RecordNormalizer()
        self._logger = logger or logging.getLogger(__name__)
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            auth=(username, api_token) if username else None,
            timeout=httpx.Timeout(timeout, connect=min(timeout, 10.0)),
            headers={"Accept": "application/json"},
            transport=transport,
        )

    async def __aenter__(self) -> JiraClient:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()

    build_jql = staticmethod(build_jql)

    async def search_issues(self, jql: str, max_results: int = DEFAULT_PAGE_SIZE, start_at: int = 0) -> dict[str, Any]:
        """One page of ``/rest/api/2/search``.

        Raises:
            JiraApiError: transport failure, non-200 status or a non-JSON body.
        """
        params = {"jql": jql, "startAt": start_at, "maxResults": max_results, "fields": "*all"}
        try:
            response = await self._client.get(SEARCH_PATH, params=params)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            raise JiraApiError(
                f"Jira API returned status {e.response.status_code}: {e.response.text[:200]}",
                status_code=e.response.status_code,
            ) from e
        except httpx.RequestError as e:
            raise JiraApiError(f"Jira API request failed: {e}") from e
        except ValueError as e:
            raise JiraApiError(f"Jira API returned invalid JSON: {e}") from e

        if not isinstance(data, dict) or not isinstance(data.get("issues", []), list):
            raise JiraApiError("Jira API returned an unexpected search response")
        return data

    async def iter_issues(self, jql: str, page_size: int = DEFAULT_PAGE_SIZE) -> AsyncIterator[TicketData]:
        """Every issue matching ``jql`` as a normalized ticket, page by page.

        Issues that fail normalization are logged and skipped.
        """
        start_at = 0
        while True:
            page = await self.search_issues(jql, max_results=page_size, start_at=start_at)
            issues = page.get("issues") or []
            total = int(page.get("total") or 0)
            self._logger.debug("Search page startAt=%d: %d of %d issues", start_at, len(issues), total)

            for issue in issues:
                try:
                    yield self._normalizer.ticket_from_api(
                        str(issue.get("key", "")),
                        issue.get("fields") or {},
                        base_url=self.base_url,
                    )
                except NormalizationError as e:
                    self._logger.warning("Skipping API issue: %s", e)

            start_at += len(issues)
            if not issues or start_at >= total:
                return

    async def fetch_tickets(self, jql: str, page_size: int = DEFAULT_PAGE_SIZE) -> dict[str, TicketData]:
        """All matching issues keyed by issue key."""
        return {t.key: t async for t in self.iter_issues(jql, page_size)}
