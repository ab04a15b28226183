# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Shared test configuration and fixtures."""

try:
    import jiracollector  # noqa: F401
except ImportError:
    raise ImportError("jiracollector is not installed. Run: pip install -e '.[test]'") from None

import pytest
import structlog

from jiracollector.events import EventHub
from jiracollector.service import CollectionService
from jiracollector.storage import InMemoryStorage


@pytest.fixture
def storage() -> InMemoryStorage:
    return InMemoryStorage()


@pytest.fixture
def events():
    hub = EventHub(queue_size=16)
    yield hub
    hub.close()


@pytest.fixture
def service(storage, events) -> CollectionService:
    return CollectionService(storage, events=events)


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Transaction ids bound by one test must not leak into the next."""
    yield
    structlog.contextvars.clear_contextvars()
