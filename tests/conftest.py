import os
import sys

import pytest

# Run Qt headless unless the caller chose a platform
os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")

# Allow running the suite from a source checkout without installing
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "src")))

from tagsync.core.events import DATA_CHANGED, ERROR, LOG  # noqa: E402
from tagsync.core.session_manager import TagSessionManager  # noqa: E402
from tagsync.models.data_item import ResultCode  # noqa: E402
from tagsync.protocols.opc.simulator import DEFAULT_SERVER_NAME, SimulatedProtocolClient  # noqa: E402

HOST = "127.0.0.1"


class EventRecorder:
    """Collects everything a session manager reports."""

    def __init__(self, manager):
        self.data = []
        self.errors = []
        self.logs = []
        manager.on(DATA_CHANGED, self.data.append)
        manager.on(ERROR, self.errors.append)
        manager.on(LOG, self.logs.append)

    def clear(self):
        self.data.clear()
        self.errors.clear()
        self.logs.clear()

    def error_codes(self):
        return [e.code for e in self.errors]

    def log_messages(self):
        return [e.message for e in self.logs]

    def data_for(self, code):
        return [e for e in self.data if e.code == code]


@pytest.fixture
def sim():
    return SimulatedProtocolClient()


@pytest.fixture
def manager(sim):
    # Long interval: tests drive ticks explicitly where they need them
    m = TagSessionManager(sim, health_interval_s=60)
    yield m
    m.close()


@pytest.fixture
def events(manager):
    return EventRecorder(manager)


@pytest.fixture
def connected(manager, sim):
    assert manager.connect(DEFAULT_SERVER_NAME, HOST) == ResultCode.OK
    sim.reset_calls()
    return manager
