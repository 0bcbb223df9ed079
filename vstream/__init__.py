from vstream.cache import InitializationCache, InitState
from vstream.envelope import Envelope
from vstream.errors import GroupExistsError, LogStoreError, NotFoundKeyError
from vstream.settings import settings
from vstream.store.interfaces import LogStore
from vstream.store.memory import MemoryLogStore
from vstream.store.valkey import ValkeyConnector, ValkeyLogStore
from vstream.telemetry import TelemetryCarrier, TraceContextCarrier
from vstream.transport import InitOutcome, StreamTransport
from vstream.worker import StreamReader

__version__ = "0.1.0"

__all__ = [
    "Envelope",
    "GroupExistsError",
    "InitializationCache",
    "InitOutcome",
    "InitState",
    "LogStore",
    "LogStoreError",
    "MemoryLogStore",
    "NotFoundKeyError",
    "StreamReader",
    "StreamTransport",
    "TelemetryCarrier",
    "TraceContextCarrier",
    "ValkeyConnector",
    "ValkeyLogStore",
    "settings",
]
