"""Shared fixtures: a fake clock, the fake game and a client wired to it."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from datetime import datetime, timedelta, timezone

import pytest

from fake_game import FakeGame
from fleetpilot.client import SpaceTradersClient
from fleetpilot.config import Settings
from fleetpilot.fleet.clock import Clock
from fleetpilot.fleet.scheduler import RequestScheduler

START = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock(Clock):
    """Clock whose waits return at once after moving time forward.

    Once time would pass `horizon` the stop event is set, so loops that
    only idle end on their own.
    """

    def __init__(self, start: datetime = START, horizon: float = 3600.0) -> None:
        self._now = start
        self.horizon = start + timedelta(seconds=horizon)
        self.waits: list[float] = []

    def now(self) -> datetime:
        return self._now

    def advance(self, seconds: float) -> None:
        self._now += timedelta(seconds=seconds)

    async def wait(self, seconds: float, stop: asyncio.Event) -> bool:
        await asyncio.sleep(0)
        if stop.is_set():
            return True
        if seconds <= 0:
            return False
        self.waits.append(seconds)
        target = self._now + timedelta(seconds=seconds)
        if target > self.horizon:
            self._now = self.horizon
            stop.set()
            return True
        self._now = target
        return False


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def game(clock: FakeClock) -> FakeGame:
    return FakeGame(clock.now)


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        token="test-token",
        token_file=tmp_path / "AGENT_TOKEN",
        data_dir=tmp_path,
        rate_limit=1000.0,
        burst=1000,
        backoff_schedule=(0.0,),
        max_retries=2,
        rate_limit_cooldown=0.01,
        rate_limit_cooldown_max=0.05,
        error_backoff=5.0,
        restart_backoff=(1.0,),
    )


@pytest.fixture
async def scheduler(settings: Settings) -> AsyncIterator[RequestScheduler]:
    sched = RequestScheduler(
        rate=settings.rate_limit,
        burst=settings.burst,
        cooldown_base=settings.rate_limit_cooldown,
        cooldown_max=settings.rate_limit_cooldown_max,
    )
    yield sched
    await sched.stop()


@pytest.fixture
async def client(
    settings: Settings, scheduler: RequestScheduler, game: FakeGame,
) -> AsyncIterator[SpaceTradersClient]:
    async with SpaceTradersClient(
        settings, scheduler=scheduler, token=settings.token, transport=game.transport(),
    ) as c:
        yield c
