import re
from typing import Any, Dict, List, Optional

import valkey.asyncio as valkey
from valkey.exceptions import ResponseError, ValkeyError

from vstream.errors import GroupExistsError, LogStoreError, NotFoundKeyError
from vstream.store.interfaces import LogStore, RawEntry
from vstream.utils.logging import get_logger

logger = get_logger("ValkeyLogStore")

# NOGROUP No such key 'orders' or consumer group 'g1' in XREADGROUP with GROUP option
_NO_SUCH_KEY = re.compile(r"No such key '([^']*)'")


class ValkeyConnector:
    """
    Owns the Valkey connection pool.
    Lazily creates the client on first use so construction never does I/O.
    """
    def __init__(self, host: str = "localhost", port: int = 6379,
                 password: Optional[str] = None, db: int = 0):
        self.host = host
        self.port = port
        self.password = password
        self.db = db
        self._client: Optional[valkey.Valkey] = None

    def get_client(self) -> valkey.Valkey:
        if self._client is None:
            self._client = valkey.Valkey(
                host=self.host,
                port=self.port,
                password=self.password,
                db=self.db,
                decode_responses=True,
            )
        return self._client

    async def connect(self) -> None:
        client = self.get_client()
        await client.ping()
        logger.info(f"Connected to Valkey at {self.host}:{self.port}")

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            logger.info("Closed Valkey connection")


def _missing_key(error: ResponseError, key: str, group: Optional[str]) -> NotFoundKeyError:
    message = str(error)
    match = _NO_SUCH_KEY.search(message)
    reported = match.group(1) if match else key
    return NotFoundKeyError(reported, group, message)


class ValkeyLogStore(LogStore):
    """
    LogStore backed by Valkey (or Redis) Streams.

    XADD MAXLEN ~ for appends, XGROUP CREATE MKSTREAM for provisioning,
    XREADGROUP '>' for delivery and XACK for acknowledgment.
    """
    def __init__(self, connector: ValkeyConnector):
        self.connector = connector

    @property
    def client(self) -> valkey.Valkey:
        return self.connector.get_client()

    async def append_with_trim(self, key: str, fields: Dict[str, str],
                               max_len: Optional[int] = None,
                               approximate: bool = True) -> str:
        try:
            return await self.client.xadd(key, fields, maxlen=max_len, approximate=approximate)
        except ValkeyError as e:
            raise LogStoreError(str(e)) from e

    async def key_exists(self, key: str) -> bool:
        try:
            return bool(await self.client.exists(key))
        except ValkeyError as e:
            raise LogStoreError(str(e)) from e

    async def group_names(self, key: str) -> List[str]:
        try:
            groups = await self.client.xinfo_groups(key)
        except ResponseError as e:
            if "no such key" in str(e).lower():
                raise NotFoundKeyError(key, None, str(e)) from e
            raise LogStoreError(str(e)) from e
        except ValkeyError as e:
            raise LogStoreError(str(e)) from e
        return [_as_str(g.get("name")) for g in groups]

    async def create_group(self, key: str, group: str, start_id: str = "0",
                           mkstream: bool = True) -> None:
        try:
            await self.client.xgroup_create(key, group, id=start_id, mkstream=mkstream)
        except ResponseError as e:
            if "BUSYGROUP" in str(e):
                raise GroupExistsError(str(e)) from e
            raise LogStoreError(str(e)) from e
        except ValkeyError as e:
            raise LogStoreError(str(e)) from e

    async def group_read(self, key: str, group: str, consumer: str,
                         count: int, start_id: str = ">") -> List[RawEntry]:
        try:
            response = await self.client.xreadgroup(group, consumer, {key: start_id}, count=count)
        except ResponseError as e:
            if "NOGROUP" in str(e):
                raise _missing_key(e, key, group) from e
            raise LogStoreError(str(e)) from e
        except ValkeyError as e:
            raise LogStoreError(str(e)) from e
        return _flatten_read(response)

    async def acknowledge(self, key: str, group: str, *entry_ids: str) -> int:
        if not entry_ids:
            return 0
        try:
            return int(await self.client.xack(key, group, *entry_ids))
        except ValkeyError as e:
            raise LogStoreError(str(e)) from e


def _as_str(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8")
    return str(value)


def _flatten_read(response: Any) -> List[RawEntry]:
    """
    Normalise an XREADGROUP reply into [(entry_id, fields), ...].
    RESP2 replies are [[stream, entries]], RESP3 replies are {stream: [entries]}.
    """
    if not response:
        return []

    if isinstance(response, dict):
        streams = list(response.values())
    else:
        streams = [stream_entries for _, stream_entries in response]

    entries: List[RawEntry] = []
    for stream_entries in streams:
        # RESP3 nests the entry list one level deeper
        if stream_entries and isinstance(stream_entries[0], list) and stream_entries[0] \
                and isinstance(stream_entries[0][0], (list, tuple)):
            stream_entries = stream_entries[0]
        for entry_id, fields in stream_entries:
            # Entries deleted while pending come back with no fields
            decoded = {_as_str(k): _as_str(v) for k, v in (fields or {}).items()}
            entries.append((_as_str(entry_id), decoded))
    return entries
