"""
Inline Replay Test Suite - Pytest Fixtures and Configuration.

This module provides pytest fixtures shared by the suite, including:
- An in-memory store (FakeGateway) with the migration marker applied
- Resolver, scope and recorder fixtures bound to that store
- Isolation from INLINE_REPLAY_* variables of the host environment
"""

from __future__ import annotations

import os
from collections.abc import Generator

import pytest

from inline_replay.config import get_settings
from inline_replay.identity import IdentityResolver
from inline_replay.models import ExperimentScope
from inline_replay.replay.recorder import DecisionRecorder
from tests.fakes import FakeGateway


# =============================================================================
# Pytest Configuration
# =============================================================================


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "scenario: mark test as an end-to-end record/replay scenario"
    )


# =============================================================================
# Environment Isolation
# =============================================================================


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    """Strip INLINE_REPLAY_* variables and reset the settings cache."""
    for name in list(os.environ):
        if name.upper().startswith("INLINE_REPLAY_"):
            monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


# =============================================================================
# Store Fixtures
# =============================================================================


@pytest.fixture
def fake_gateway() -> FakeGateway:
    """Return an empty in-memory store with the migration marker applied."""
    return FakeGateway()


@pytest.fixture(params=["upsert", "insert_select"])
def strategy(request: pytest.FixtureRequest) -> str:
    """Run resolver-backed tests under both get-or-create statement shapes."""
    return request.param


@pytest.fixture
def resolver(fake_gateway: FakeGateway, strategy: str) -> IdentityResolver:
    return IdentityResolver(fake_gateway, strategy=strategy)  # type: ignore[arg-type]


@pytest.fixture
def scope(resolver: IdentityResolver) -> ExperimentScope:
    """Return the scope of package Foo 1.0, experiment Exp1."""
    return resolver.open_scope("Foo", "1.0", "Exp1")


@pytest.fixture
def recorder(
    fake_gateway: FakeGateway,
    resolver: IdentityResolver,
    scope: ExperimentScope,
) -> DecisionRecorder:
    return DecisionRecorder(fake_gateway, resolver, scope)
