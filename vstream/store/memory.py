import asyncio
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from vstream.errors import GroupExistsError, NotFoundKeyError
from vstream.store.interfaces import LogStore, RawEntry
from vstream.utils.logging import get_logger

logger = get_logger("MemoryLogStore")

# Approximate trimming only ever removes whole blocks of this many entries.
TRIM_SLACK = 100

EntryId = Tuple[int, int]


def parse_entry_id(entry_id: str) -> EntryId:
    ms, _, seq = entry_id.partition("-")
    return int(ms), int(seq or 0)


def format_entry_id(entry_id: EntryId) -> str:
    return f"{entry_id[0]}-{entry_id[1]}"


@dataclass
class _Group:
    last_delivered: EntryId = (0, 0)
    # entry id -> consumer name
    pending: Dict[str, str] = field(default_factory=dict)


@dataclass
class _Log:
    entries: List[RawEntry] = field(default_factory=list)
    last_id: EntryId = (0, 0)
    groups: Dict[str, _Group] = field(default_factory=dict)


class MemoryLogStore(LogStore):
    """
    In-memory LogStore for testing/local verification.
    Mirrors the stream semantics the transport relies on: monotonic ids,
    per-group delivery cursor, pending entries and approximate trimming.
    Not persistent across restarts.
    """
    def __init__(self):
        self._logs: Dict[str, _Log] = {}
        self._lock = asyncio.Lock()

    def _next_id(self, log: _Log) -> EntryId:
        ms = int(time.time() * 1000)
        if ms <= log.last_id[0]:
            # Same ms (or clock went backwards): keep the ms, bump the sequence
            return log.last_id[0], log.last_id[1] + 1
        return ms, 0

    async def append_with_trim(self, key: str, fields: Dict[str, str],
                               max_len: Optional[int] = None,
                               approximate: bool = True) -> str:
        async with self._lock:
            log = self._logs.setdefault(key, _Log())
            new_id = self._next_id(log)
            log.last_id = new_id
            entry_id = format_entry_id(new_id)
            log.entries.append((entry_id, dict(fields)))
            if max_len is not None:
                self._trim(log, max_len, approximate)
            return entry_id

    def _trim(self, log: _Log, max_len: int, approximate: bool) -> None:
        excess = len(log.entries) - max_len
        if excess <= 0:
            return
        if approximate:
            excess -= excess % TRIM_SLACK
        if excess:
            del log.entries[:excess]

    async def key_exists(self, key: str) -> bool:
        return key in self._logs

    async def group_names(self, key: str) -> List[str]:
        log = self._logs.get(key)
        if log is None:
            raise NotFoundKeyError(key, None, "ERR no such key")
        return list(log.groups)

    async def create_group(self, key: str, group: str, start_id: str = "0",
                           mkstream: bool = True) -> None:
        async with self._lock:
            log = self._logs.get(key)
            if log is None:
                if not mkstream:
                    raise NotFoundKeyError(key, group)
                log = self._logs[key] = _Log()
            if group in log.groups:
                raise GroupExistsError("BUSYGROUP Consumer Group name already exists")
            cursor = log.last_id if start_id == "$" else parse_entry_id(start_id)
            log.groups[group] = _Group(last_delivered=cursor)

    async def group_read(self, key: str, group: str, consumer: str,
                         count: int, start_id: str = ">") -> List[RawEntry]:
        async with self._lock:
            log = self._logs.get(key)
            if log is None or group not in log.groups:
                raise NotFoundKeyError(
                    key, group,
                    f"NOGROUP No such key '{key}' or consumer group '{group}' "
                    f"in XREADGROUP with GROUP option",
                )
            state = log.groups[group]

            if start_id != ">":
                # History: this consumer's pending entries after start_id
                after = parse_entry_id(start_id)
                return [
                    (entry_id, dict(fields)) for entry_id, fields in log.entries
                    if state.pending.get(entry_id) == consumer
                    and parse_entry_id(entry_id) > after
                ][:count]

            batch: List[RawEntry] = []
            for entry_id, fields in log.entries:
                if len(batch) >= count:
                    break
                if parse_entry_id(entry_id) > state.last_delivered:
                    batch.append((entry_id, dict(fields)))

            for entry_id, _ in batch:
                state.pending[entry_id] = consumer
            if batch:
                state.last_delivered = parse_entry_id(batch[-1][0])
            return batch

    async def acknowledge(self, key: str, group: str, *entry_ids: str) -> int:
        async with self._lock:
            log = self._logs.get(key)
            if log is None or group not in log.groups:
                return 0
            pending = log.groups[group].pending
            return sum(1 for entry_id in entry_ids if pending.pop(entry_id, None) is not None)

    async def delete_key(self, key: str) -> bool:
        """Drop a log and all its groups, as an eviction or DEL would."""
        async with self._lock:
            removed = self._logs.pop(key, None) is not None
        if removed:
            logger.info(f"Deleted log {key}")
        return removed

    async def length(self, key: str) -> int:
        log = self._logs.get(key)
        return len(log.entries) if log else 0

    async def pending_count(self, key: str, group: str) -> int:
        log = self._logs.get(key)
        if log is None or group not in log.groups:
            return 0
        return len(log.groups[group].pending)
