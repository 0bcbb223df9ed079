import asyncio
from enum import Enum
from typing import Dict, List, Set, Tuple


class InitState(str, Enum):
    UNKNOWN = "unknown"
    INITIALIZING = "initializing"
    CONFIRMED = "confirmed"


class InitializationCache:
    """
    Remembers which (log key, consumer group) pairs this process has seen
    provisioned, so steady-state appends and reads skip the round-trips.

    The server stays authoritative: an entry is only confirmed after the
    group was observed (or created), and a log key is evicted as soon as a
    read proves it gone. Lookups take no lock; the transition to confirmed
    is serialized by `lock`, a single lock per cache instance.
    """
    def __init__(self):
        self._confirmed: Dict[str, Set[str]] = {}
        self._initializing: Set[Tuple[str, str]] = set()
        self.lock = asyncio.Lock()

    def is_confirmed(self, log_key: str, group: str) -> bool:
        return group in self._confirmed.get(log_key, ())

    def state(self, log_key: str, group: str) -> InitState:
        if self.is_confirmed(log_key, group):
            return InitState.CONFIRMED
        if (log_key, group) in self._initializing:
            return InitState.INITIALIZING
        return InitState.UNKNOWN

    def begin(self, log_key: str, group: str) -> None:
        self._initializing.add((log_key, group))

    def confirm(self, log_key: str, group: str) -> None:
        self._initializing.discard((log_key, group))
        self._confirmed.setdefault(log_key, set()).add(group)

    def fail(self, log_key: str, group: str) -> None:
        self._initializing.discard((log_key, group))

    def evict(self, log_key: str) -> bool:
        """Forget every group of `log_key`. Returns True if anything was cached."""
        return self._confirmed.pop(log_key, None) is not None

    def keys(self) -> List[str]:
        return list(self._confirmed)

    def __contains__(self, log_key: str) -> bool:
        return bool(self._confirmed.get(log_key))

    def __len__(self) -> int:
        return len(self._confirmed)
