import asyncio

import pytest

from quotagate.infrastructure.config import settings


class FakeClock:
    """Monotonic clock that advances only when told to, or when slept on."""

    def __init__(self, start: float = 0.0):
        self.now = start
        self.sleeps = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        await asyncio.sleep(0)


@pytest.fixture
def clock():
    """Provides a fresh FakeClock starting at t=0."""
    return FakeClock()


@pytest.fixture(autouse=True)
def isolated_config(monkeypatch):
    """Keeps tests away from ~/.quotagate and from each other's overrides."""
    monkeypatch.setattr(settings, "_config", {})
    monkeypatch.setattr(settings, "_loaded", True)
    settings.clear_test_config()
    yield
    settings.clear_test_config()
