"""Pytest configuration and fixtures."""

import asyncio
from datetime import datetime, timezone

import pytest

from governor.cache.memory import MemoryStore
from governor.config import get_settings
from governor.services import RateCard


def epoch_ms(*args: int) -> float:
    """Epoch milliseconds for a UTC date/time."""
    return datetime(*args, tzinfo=timezone.utc).timestamp() * 1000


class FakeClock:
    """Controllable millisecond clock whose sleep advances time instantly."""

    def __init__(self, start: float = epoch_ms(2024, 1, 15, 12, 0)) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += ms

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds * 1000
        await asyncio.sleep(0)


async def settle(rounds: int = 10) -> None:
    """Let pending event loop callbacks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def rate_card() -> RateCard:
    """Default card with a tight DexCheck budget for usage tests."""
    return RateCard.from_dict({"dexcheck": {"monthly_limit": 10}})


@pytest.fixture(autouse=True)
def clear_settings_cache():
    """Settings are cached per process; start each test fresh."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
