import pytest

from vstream.store.memory import MemoryLogStore
from vstream.telemetry import TelemetryManager
from vstream.transport import StreamTransport


@pytest.fixture(autouse=True)
def fresh_telemetry():
    # Metrics live on the singleton; give every test its own counters
    TelemetryManager._instance = None
    yield
    TelemetryManager._instance = None


@pytest.fixture
def store():
    return MemoryLogStore()


@pytest.fixture
def transport(store):
    return StreamTransport(store)
