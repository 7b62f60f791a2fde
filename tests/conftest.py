"""Shared test fixtures for the AML compliance engine tests."""

import os
from datetime import UTC, datetime

import pytest

from src.domains.compliance.providers import (
    CollectingEventSink,
    InMemoryPartyProvider,
    InMemorySARRepository,
)
from src.domains.compliance.sar import CaseManager

FIXED_NOW = datetime(2026, 3, 2, 12, 0, tzinfo=UTC)

# Keep env overrides from a developer shell out of config tests
for _key in [k for k in os.environ if k.startswith("COMPLIANCE_")]:
    del os.environ[_key]


@pytest.fixture
def now() -> datetime:
    return FIXED_NOW


@pytest.fixture
def repository() -> InMemorySARRepository:
    return InMemorySARRepository()


@pytest.fixture
def event_sink() -> CollectingEventSink:
    return CollectingEventSink()


@pytest.fixture
def party_provider() -> InMemoryPartyProvider:
    return InMemoryPartyProvider()


@pytest.fixture
def case_manager(repository, event_sink) -> CaseManager:
    return CaseManager(
        repository=repository,
        event_sink=event_sink,
        clock=lambda: FIXED_NOW,
    )
