"""Pytest fixtures for unit tests."""

from __future__ import annotations

from datetime import timedelta

import pytest

from fakes import START, FakeChanges, FakeClock


@pytest.fixture
def fake_clock() -> FakeClock:
    """Fake clock starting at noon UTC, stopping after ten minutes."""
    return FakeClock(START, limit=START + timedelta(minutes=10))


@pytest.fixture
def fake_changes() -> FakeChanges:
    """Change source standing in for watchfiles.awatch."""
    return FakeChanges()
