"""Shared fixtures for the kiosk test-suite."""

import os
import tempfile

# Keep the application log out of the source tree while testing.
os.environ.setdefault("KIOSK_LOG_FILE", os.path.join(tempfile.gettempdir(), "kiosk-tests.log"))

import pytest
from unittest.mock import MagicMock

from PySide6.QtCore import QCoreApplication


@pytest.fixture(scope="session")
def qapp():
    """One QCoreApplication for every test that touches Qt objects."""
    app = QCoreApplication.instance() or QCoreApplication([])
    yield app


class FakeTimer:
    def __init__(self, delay_s, callback):
        self.delay_s = delay_s
        self.callback = callback
        self.cancelled = False
        self.fired = False

    def cancel(self):
        self.cancelled = True

    def fire(self):
        assert not self.cancelled, "cancelled timer fired"
        self.fired = True
        self.callback()


class FakeScheduler:
    """Records scheduled callbacks; tests fire them by hand."""

    def __init__(self):
        self.timers = []

    def __call__(self, delay_s, callback):
        timer = FakeTimer(delay_s, callback)
        self.timers.append(timer)
        return timer

    @property
    def live(self):
        return [t for t in self.timers if not t.cancelled and not t.fired]


@pytest.fixture
def scheduler():
    return FakeScheduler()


@pytest.fixture
def clock():
    """Manually advanced monotonic clock."""
    class _Clock:
        now = 100.0

        def __call__(self):
            return self.now

        def advance(self, seconds):
            self.now += seconds

    return _Clock()


@pytest.fixture
def audit():
    return MagicMock()


@pytest.fixture
def hub():
    return MagicMock()
