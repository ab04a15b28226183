# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Pydantic request models for the ingestion boundary.

All fields are optional with permissive defaults so that older extension
builds keep working; unknown keys are ignored.  Validation failures map to
HTTP 400 in ``app.py``.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class CollectorInfo(BaseModel):
    """Identity of the sending collector (browser extension build)."""

    model_config = ConfigDict(extra="ignore")

    name: str = Field("", description="Collector name")
    version: str = Field("", description="Collector version")


class PagePayload(BaseModel):
    """Captured page content."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    html: str | None = Field(None, description="Full outer HTML of the captured document")
    tickets: list[dict[str, Any]] = Field(default_factory=list, description="Tickets pre-extracted in the browser")
    page_type: str | None = Field(None, alias="pageType", description="Client-side page type guess (hint only)")


class CollectionEnvelope(BaseModel):
    """One capture sent to ``POST /receiver``."""

    model_config = ConfigDict(extra="ignore")

    timestamp: str = Field("", description="Capture time (ISO 8601), used as the update stamp")
    url: str = Field(..., min_length=1, description="Source page URL")
    title: str = Field("", description="Document title")
    data: PagePayload = Field(default_factory=PagePayload)
    collector: CollectorInfo = Field(default_factory=CollectorInfo)


class AssessRequest(BaseModel):
    """Body of ``POST /assess``."""

    model_config = ConfigDict(extra="ignore")

    url: str = Field(..., min_length=1, description="Page URL")
    html: str = Field("", description="Page HTML (may be empty for URL-only assessment)")
