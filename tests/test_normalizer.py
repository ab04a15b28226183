# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tests for record normalization and the ticket content hash."""

from __future__ import annotations

import dataclasses

import pytest

from jiracollector.errors import NormalizationError
from jiracollector.models import IssueRecord, ProjectRecord, TicketData
from jiracollector.normalizer import RecordNormalizer, compute_ticket_hash, group_by_project

STAMP = "2026-03-01T10:00:00+00:00"


@pytest.fixture
def normalizer() -> RecordNormalizer:
    return RecordNormalizer()


def _record(**overrides) -> IssueRecord:
    fields = {
        "key": "ABC-1",
        "summary": "  Export   fails on\tlarge files ",
        "status": "Open",
        "labels": ["backend", " backend ", "", "export"],
    }
    fields.update(overrides)
    return IssueRecord(**fields)


class TestToTicket:
    def test_whitespace_and_project_defaults(self, normalizer):
        ticket = normalizer.to_ticket(_record(), STAMP)
        assert ticket.summary == "Export fails on large files"
        assert ticket.project_id == "ABC"
        assert ticket.project_key == "ABC"
        assert ticket.updated == STAMP

    def test_labels_deduplicated_in_order(self, normalizer):
        assert normalizer.to_ticket(_record()).labels == ("backend", "export")

    def test_page_updated_wins_over_timestamp(self, normalizer):
        ticket = normalizer.to_ticket(_record(updated="2026-01-01"), STAMP)
        assert ticket.updated == "2026-01-01"

    def test_extra_fields_become_custom_fields(self, normalizer):
        record = _record()
        record.set_field("customfield_10010", "Sprint 14")
        assert normalizer.to_ticket(record).custom_fields == {"customfield_10010": "Sprint 14"}

    def test_collection_items_built_and_deduplicated(self, normalizer):
        comment = {"id": "1", "author": "Kim", "body": " Looks good \n", "created": "2026-02-02"}
        record = _record(comments=[comment, dict(comment)], attachments=[{"filename": "a.log", "size": "12"}])
        ticket = normalizer.to_ticket(record)
        assert len(ticket.comments) == 1
        assert ticket.comments[0].body == "Looks good"
        assert ticket.attachments[0].size == 12

    @pytest.mark.parametrize("key", [None, "", "abc-1", "ABC", "ABC-", "1BC-2"])
    def test_invalid_key_rejected(self, normalizer, key):
        with pytest.raises(NormalizationError):
            normalizer.to_ticket(_record(key=key))


class TestHash:
    def test_deterministic(self, normalizer):
        first = normalizer.to_ticket(_record(), STAMP)
        second = normalizer.to_ticket(_record(), STAMP)
        assert first == second
        assert len(first.hash) == 16
        int(first.hash, 16)

    def test_ignores_update_stamp_and_raw_html(self, normalizer):
        a = normalizer.to_ticket(_record(raw_html="<html>a</html>"), "2026-01-01T00:00:00+00:00")
        b = normalizer.to_ticket(_record(raw_html="<html>b</html>"), "2026-06-01T00:00:00+00:00")
        assert a.hash == b.hash

    def test_content_change_changes_hash(self, normalizer):
        a = normalizer.to_ticket(_record(status="Open"))
        b = normalizer.to_ticket(_record(status="Done"))
        assert a.hash != b.hash

    def test_stored_hash_not_part_of_input(self, normalizer):
        ticket = normalizer.to_ticket(_record())
        assert compute_ticket_hash(dataclasses.replace(ticket, hash="deadbeef")) == ticket.hash


class TestMappings:
    def test_camel_case_aliases(self, normalizer):
        ticket = normalizer.ticket_from_mapping(
            {
                "key": "OPS-9",
                "summary": "Rotate keys",
                "issueType": "Task",
                "projectKey": "OPS",
                "customFields": {"customfield_1": "x"},
                "team": "Platform",
                "hash": "ignored",
            },
            STAMP,
        )
        assert ticket.issue_type == "Task"
        assert ticket.project_id == "OPS"
        assert ticket.custom_fields == {"customfield_1": "x", "team": "Platform"}
        assert ticket.hash != "ignored"
        assert ticket.updated == STAMP

    def test_loose_value_types(self, normalizer):
        ticket = normalizer.ticket_from_mapping(
            {
                "key": "ABC-3",
                "description": {"type": "doc", "content": [{"type": "text", "text": "From ADF"}]},
                "labels": "solo",
                "components": 7,
                "comments": "not a list",
                "subtasks": {"key": "ABC-4"},
                "rawHtml": 12,
            },
            STAMP,
        )
        assert ticket.description == "From ADF"
        assert ticket.labels == ("solo",)
        assert ticket.components == ()
        assert ticket.comments == ()
        assert ticket.subtasks == ()
        assert ticket.raw_html is None

    def test_numeric_description(self, normalizer):
        ticket = normalizer.ticket_from_mapping({"key": "ABC-3", "description": 42, "labels": True})
        assert ticket.description == "42"
        assert ticket.labels == ()

    def test_mapping_without_key_rejected(self, normalizer):
        with pytest.raises(NormalizationError):
            normalizer.ticket_from_mapping({"summary": "orphan"})


class TestApiFields:
    FIELDS = {
        "project": {"key": "ABC", "name": "Alpha"},
        "summary": "Login broken",
        "description": {
            "type": "doc",
            "content": [{"type": "paragraph", "content": [{"type": "text", "text": "Steps to reproduce"}]}],
        },
        "issuetype": {"name": "Bug"},
        "status": {"name": "In Progress"},
        "priority": {"name": "High"},
        "assignee": {"displayName": "Dana Smith"},
        "reporter": {"emailAddress": "lee@example.com"},
        "created": "2026-01-05T09:00:00.000+0000",
        "updated": "2026-01-06T09:00:00.000+0000",
        "labels": ["auth"],
        "components": [{"name": "Web"}],
        "comment": {"comments": [{"id": "7", "author": {"displayName": "Kim"}, "body": "Seen it"}]},
        "subtasks": [{"key": "ABC-2", "fields": {"summary": "Write test", "status": {"name": "To Do"}}}],
        "issuelinks": [
            {"type": {"name": "Blocks", "outward": "blocks"}, "outwardIssue": {"key": "ABC-3"}},
            {"type": {"name": "Blocks", "inward": "is blocked by"}, "inwardIssue": {"key": "OPS-1"}},
        ],
        "customfield_10020": [{"name": "Sprint 3"}],
        "customfield_10030": None,
    }

    def test_fields_mapped(self, normalizer):
        ticket = normalizer.ticket_from_api("ABC-1", self.FIELDS, base_url="https://acme.atlassian.net/")
        assert ticket.url == "https://acme.atlassian.net/browse/ABC-1"
        assert ticket.description == "Steps to reproduce"
        assert ticket.issue_type == "Bug"
        assert ticket.assignee == "Dana Smith"
        assert ticket.reporter == "lee@example.com"
        assert ticket.components == ("Web",)
        assert ticket.updated == "2026-01-06T09:00:00.000+0000"

    def test_nested_collections(self, normalizer):
        ticket = normalizer.ticket_from_api("ABC-1", self.FIELDS, base_url="https://acme.atlassian.net")
        assert ticket.comments[0].author == "Kim"
        assert ticket.subtasks[0].key == "ABC-2"
        assert ticket.subtasks[0].status == "To Do"
        assert ticket.subtasks[0].url == "https://acme.atlassian.net/browse/ABC-2"
        assert [(lk.link_type, lk.direction, lk.issue_key) for lk in ticket.links] == [
            ("blocks", "outward", "ABC-3"),
            ("is blocked by", "inward", "OPS-1"),
        ]

    def test_custom_fields_kept_when_set(self, normalizer):
        ticket = normalizer.ticket_from_api("ABC-1", self.FIELDS)
        assert ticket.custom_fields == {"customfield_10020": [{"name": "Sprint 3"}]}

    def test_malformed_shapes_ignored(self, normalizer):
        fields = {
            "labels": "single",
            "components": None,
            "comment": ["not", "a", "block"],
            "subtasks": 3,
            "attachment": "file.txt",
            "issuelinks": [{"type": "Blocks", "outwardIssue": "ABC-9"}, "junk"],
            "worklog": {"worklogs": "none"},
        }
        ticket = normalizer.ticket_from_api("ABC-1", fields)
        assert ticket.labels == ("single",)
        assert ticket.components == ()
        assert ticket.comments == ()
        assert ticket.subtasks == ()
        assert ticket.attachments == ()
        assert ticket.worklog == ()

    def test_minimal_fields(self, normalizer):
        ticket = normalizer.ticket_from_api("ABC-5", {})
        assert ticket.key == "ABC-5"
        assert ticket.project_id == "ABC"
        assert ticket.url == ""


class TestProjects:
    def test_relative_url_resolved_and_id_defaults_to_key(self, normalizer):
        record = ProjectRecord(key="ABC", name=" Alpha  Build ", url="/jira/software/projects/ABC/boards")
        project = normalizer.to_project(record, STAMP, "https://acme.atlassian.net/jira/projects")
        assert project.id == "ABC"
        assert project.name == "Alpha Build"
        assert project.url == "https://acme.atlassian.net/jira/software/projects/ABC/boards"
        assert project.updated == STAMP

    def test_absolute_url_untouched(self, normalizer):
        record = ProjectRecord(key="ABC", id="10042", url="https://other.example/p/ABC")
        project = normalizer.to_project(record, page_url="https://acme.atlassian.net/jira/projects")
        assert project.url == "https://other.example/p/ABC"
        assert project.id == "10042"
        assert project.name == "ABC"

    @pytest.mark.parametrize("key", [None, "A", "abc", "TOOLONGPROJECTKEY"])
    def test_invalid_key_rejected(self, normalizer, key):
        with pytest.raises(NormalizationError):
            normalizer.to_project(ProjectRecord(key=key))


class TestBatches:
    def test_bad_records_skipped(self, normalizer, caplog):
        tickets = normalizer.tickets_from_records([_record(key="ABC-1"), _record(key="nope"), _record(key="OPS-2")])
        assert list(tickets) == ["ABC-1", "OPS-2"]
        assert "Skipping record" in caplog.text

    def test_later_duplicate_wins(self, normalizer):
        tickets = normalizer.tickets_from_records([_record(status="Open"), _record(status="Done")])
        assert tickets["ABC-1"].status == "Done"

    def test_group_by_project(self):
        tickets = {k: TicketData(key=k) for k in ("ABC-1", "OPS-2", "ABC-3")}
        grouped = group_by_project(tickets)
        assert sorted(grouped) == ["ABC", "OPS"]
        assert list(grouped["ABC"]) == ["ABC-1", "ABC-3"]
