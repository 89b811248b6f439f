"""
Shared fixtures: in-memory database, fake clocks, mocked LLM collaborator.
"""

from datetime import datetime, timedelta
from unittest.mock import AsyncMock

import pytest

from studypartner.database import make_engine, make_session_factory, init_db
from studypartner.llm import LLMResult


class FakeClock:
    """Monotonic-seconds clock that only moves when told to."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeNow:
    """Naive-UTC datetime clock for the response cache."""

    def __init__(self, start: datetime = datetime(2024, 3, 1, 12, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


def llm_returning(*texts: str) -> AsyncMock:
    """AsyncMock LLM whose complete() returns the given texts in order."""
    llm = AsyncMock()
    llm.complete.side_effect = [
        LLMResult(text=t, latency_ms=5, model="test-model") for t in texts
    ]
    return llm


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_now():
    return FakeNow()


@pytest.fixture
def session_factory():
    engine = make_engine("sqlite:///:memory:")
    init_db(engine)
    yield make_session_factory(engine)
    engine.dispose()
