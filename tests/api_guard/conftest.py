from __future__ import annotations

import pytest

from tests.api_guard.support.fakes import FakeClock, FakeLogger, RecordingSleep


@pytest.fixture
def fake_logger() -> FakeLogger:
    """Provide a fresh structured logger test double per test."""
    return FakeLogger()


@pytest.fixture
def fake_clock() -> FakeClock:
    """Provide a fresh virtual monotonic clock per test."""
    return FakeClock()


@pytest.fixture
def recording_sleep(fake_clock: FakeClock) -> RecordingSleep:
    """Provide a backoff sleep that advances the virtual clock."""
    return RecordingSleep(fake_clock)
