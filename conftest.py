"""Shared fixtures: a fresh SQLite ladder per test, a fixed clock and a recording notifier."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from pong_rank import db
from pong_rank.config import Settings
from pong_rank.service import Ladder

T0 = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class RecordingNotifier:
    def __init__(self):
        self.sent = []

    async def notify(self, payload, recipient_ids):
        self.sent.append((payload, list(recipient_ids)))

    def events(self):
        return [p["event"] for p, _ in self.sent]


@pytest.fixture
def db_path(tmp_path):
    path = str(tmp_path / "ladder.sqlite")
    asyncio.run(db.init_db(path))
    return path


@pytest.fixture
def settings(db_path):
    return Settings(database_path=db_path)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def ladder(settings, notifier, clock):
    return Ladder(settings, notifier=notifier, clock=clock)


@pytest.fixture
def players(db_path):
    """Six players (ids 1-6), all at 1500."""
    async def create():
        for uid in range(1, 7):
            await db.get_or_create_player(uid, f"Player{uid}", base_rating=1500)

    asyncio.run(create())
    return list(range(1, 7))
