import dataclasses
import os as _os
import sys

import pytest

# Ensure project root is importable when the package is not installed.
_project_root = _os.path.dirname(_os.path.dirname(__file__))
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from routesync import db  # noqa: E402
from routesync.discovery import DiscoveryUnavailable, RawMetadata  # noqa: E402


@pytest.fixture(autouse=True)
def event_db(tmp_path_factory, monkeypatch):
    """Point the event log at an isolated sqlite file."""
    db_dir = tmp_path_factory.mktemp("eventdb")
    monkeypatch.setattr(db, "settings", dataclasses.replace(db.settings, db_path=str(db_dir / "events.db")))
    db.init_db()
    return db


def metadata(links, envvars):
    return RawMetadata(links=tuple(links), envvars=tuple(envvars.items()) if isinstance(envvars, dict) else tuple(envvars))


class FakeSource:
    """Discovery stand-in: returns the current metadata, or raises the queued error."""

    def __init__(self, raw=None):
        self.raw = raw or metadata([], {})
        self.calls = 0
        self.fail_with = None

    def fetch_raw(self):
        self.calls += 1
        if self.fail_with is not None:
            raise self.fail_with
        return self.raw


class FakeTimer:
    def __init__(self, interval, fn, clock):
        self.interval = interval
        self.fn = fn
        self.clock = clock
        self.started = False
        self.cancelled = False
        self.daemon = False

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True


class FakeClock:
    """Mocked clock driving FakeTimers: ``advance`` fires whatever is due."""

    def __init__(self):
        self.now = 0.0
        self.timers = []  # (due, timer)

    def timer_factory(self, interval, fn):
        t = FakeTimer(interval, fn, self)
        self.timers.append((self.now + interval, t))
        return t

    def pending(self):
        return [t for _, t in self.timers if t.started and not t.cancelled]

    def advance(self, seconds):
        end = self.now + seconds
        while True:
            due = [(when, t) for when, t in self.timers if t.started and not t.cancelled and when <= end]
            if not due:
                break
            when, t = min(due, key=lambda x: x[0])
            self.timers.remove((when, t))
            self.now = when
            t.fn()
        self.now = end


@pytest.fixture
def source():
    return FakeSource()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def unavailable():
    return DiscoveryUnavailable("connection refused")
