# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Captured-page builders shared by extraction, service and app tests.

Underscore prefix prevents pytest collection.
"""

from __future__ import annotations

BASE = "https://acme.atlassian.net"
PROJECTS_URL = f"{BASE}/jira/projects"
ISSUE_LIST_URL = f"{BASE}/jira/software/c/projects/ABC/issues"
ISSUE_URL = f"{BASE}/browse/ABC-42"


def issue_table(*rows: tuple[str, str, str], extra: str = "") -> str:
    """Legacy issue navigator: one ``tr[data-issue-key]`` per (key, summary, status)."""
    body = "".join(
        f'<tr data-issue-key="{key}"><td><a href="/browse/{key}">{key}</a></td>'
        f'<td data-testid="issue-summary">{summary}</td><td>{status}</td></tr>'
        for key, summary, status in rows
    )
    return f"<html><body><table><tbody>{body}</tbody></table>{extra}</body></html>"


PROJECTS_HTML = """
<html><body>
<table data-testid="project-list-table">
  <thead><tr><th>Name</th><th>Key</th><th>Type</th></tr></thead>
  <tbody>
    <tr>
      <td><a href="/jira/software/projects/ABC/boards">Alpha Build Crew</a></td>
      <td>ABC</td>
      <td>Team-managed software</td>
    </tr>
    <tr>
      <td><a href="/jira/software/projects/OPS/boards">Operations</a></td>
      <td>OPS</td>
      <td>Company-managed software</td>
    </tr>
  </tbody>
</table>
</body></html>
"""

ISSUE_HTML = """
<html><head><title>[ABC-42] Login button does nothing - Jira</title></head><body>
<div data-testid="issue.views.issue-details.issue-layout">
  <h1 data-testid="issue.views.issue-base.foundation.summary.heading">Login button does nothing</h1>
  <div data-testid="issue.views.field.rich-text.description"><p>Clicking login has no effect.</p></div>
  <span id="status-val">In Progress</span>
  <span id="priority-val">High</span>
  <span id="type-val">Bug</span>
  <span id="assignee-val">Dana Smith</span>
  <span id="reporter-val">Lee Park</span>
  <div id="labels-val"><a>frontend</a><a>auth</a><a>frontend</a></div>
</div>
</body></html>
"""

PLAIN_HTML = "<html><body><h1>Welcome</h1><p>Nothing to see here.</p></body></html>"
