"""Shared fixtures: a throwaway store per test and a controllable clock."""

import os
from datetime import datetime, timedelta

# Keep bcrypt cheap in tests; must be set before config is imported.
os.environ.setdefault("GYM_BCRYPT_ROUNDS", "4")

import pytest

from gym_system import GymSystem, Session
from models import ROLE_MEMBER

START = datetime(2026, 1, 5, 9, 0, 0)


class FakeClock:
    def __init__(self, start: datetime = START):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **delta) -> None:
        self.current += timedelta(**delta)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def db_file(tmp_path):
    return tmp_path / "gym.db"


@pytest.fixture
def gym(db_file, clock):
    return GymSystem(db_file=db_file, clock=clock)


@pytest.fixture
def ana(gym):
    gym.register_member("ana", "secret1", "Ana Pop")
    return gym.login("ana", "secret1")


@pytest.fixture
def operator(gym):
    gym.register_operator("boss", "secret1", "Big Boss", access_level="full")
    return gym.login("boss", "secret1")


@pytest.fixture
def active_member(gym):
    """Factory: register a member with an active monthly plan and return its session."""

    def _make(account_id: str) -> Session:
        gym.register_member(account_id, "secret1", account_id.title())
        session = Session(account_id, ROLE_MEMBER)
        gym.activate_membership(session, "monthly")
        return session

    return _make
