"""Shared fixtures for the simulator tests."""

import pytest
from fastapi.testclient import TestClient

from faultsim.app.core.config import Settings
from faultsim.app.main import create_app
from faultsim.app.services.rate_limiter import FixedWindowRateLimiter
from faultsim.app.services.simulator import Simulator


class FakeClock:
    """Manually advanced epoch clock."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    """Stands in for asyncio.sleep and remembers the requested durations."""

    def __init__(self):
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def config():
    return Settings(rate_limit_sweep_interval_seconds=0)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_sleep():
    return RecordingSleep()


@pytest.fixture
def limiter(clock):
    return FixedWindowRateLimiter(clock=clock)


@pytest.fixture
def simulator(limiter, config, fake_sleep):
    return Simulator(limiter, config=config, sleep=fake_sleep)


@pytest.fixture
def app(config):
    """App with a real limiter and real sleeps."""
    return create_app(config=config)


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def fast_client(config, simulator):
    """Client whose delays are recorded instead of slept."""
    return TestClient(create_app(config=config, simulator=simulator))
