"""
Shared fixtures: a throwaway SQLite database, a controllable clock and
the wired-up engine components.
"""

from datetime import datetime, timedelta

import pytest

from medshare.database import create_schema, make_engine
from medshare.gateway import AccessGateway
from medshare.identity import ProfileDirectory
from medshare.lifecycle import GrantLifecycle
from medshare.store import GrantStore

PATIENTS = ["P1", "P2"]
DOCTORS = [f"D{i}" for i in range(1, 9)]


class FakeClock:
    """Callable clock that only moves when told to."""
    def __init__(self, now=datetime(2026, 3, 2, 9, 0, 0)):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def engine(tmp_path):
    eng = make_engine(f"sqlite:///{tmp_path / 'grants.db'}")
    create_schema(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def directory(engine):
    d = ProfileDirectory(engine)
    for subject in PATIENTS:
        d.add(subject, "patient", f"Patient {subject}")
    for subject in DOCTORS:
        d.add(subject, "doctor", f"Dr {subject}", "Dermatology")
    return d


@pytest.fixture
def store(engine):
    return GrantStore(engine)


@pytest.fixture
def lifecycle(store, directory, clock):
    return GrantLifecycle(store, directory, clock=clock)


@pytest.fixture
def gateway(store, clock):
    return AccessGateway(store, clock=clock)
