from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Tuple

RawEntry = Tuple[str, Dict[str, str]]


class LogStore(ABC):
    """
    Abstract capability interface for a key-addressed append-only log
    with server-side consumer group bookkeeping.

    Implementations raise `vstream.errors.LogStoreError` (or a subclass)
    for every store-level failure.
    """

    @abstractmethod
    async def append_with_trim(self, key: str, fields: Dict[str, str],
                               max_len: Optional[int] = None,
                               approximate: bool = True) -> str:
        """Append an entry, creating the key if absent. Returns the entry id."""
        pass

    @abstractmethod
    async def key_exists(self, key: str) -> bool:
        pass

    @abstractmethod
    async def group_names(self, key: str) -> List[str]:
        """Names of the consumer groups registered on `key`."""
        pass

    @abstractmethod
    async def create_group(self, key: str, group: str, start_id: str = "0",
                           mkstream: bool = True) -> None:
        """
        Create a consumer group.
        Raises GroupExistsError if the group is already registered.
        """
        pass

    @abstractmethod
    async def group_read(self, key: str, group: str, consumer: str,
                         count: int, start_id: str = ">") -> List[RawEntry]:
        """
        Read entries for `consumer` within `group`.
        Raises NotFoundKeyError if the key or group does not exist.
        """
        pass

    @abstractmethod
    async def acknowledge(self, key: str, group: str, *entry_ids: str) -> int:
        """Acknowledge entries. Returns how many were actually pending."""
        pass
