from typing import Optional


class LogStoreError(Exception):
    """
    Base class for failures reported by a log store.
    Treated as transient by the transport: logged, then retried next cycle.
    """


class NotFoundKeyError(LogStoreError):
    """
    The store has no such key, or no such consumer group on it.

    Attributes:
        key (str): The log key the store reported missing.
        group (Optional[str]): The consumer group involved, when known.
    """
    def __init__(self, key: str, group: Optional[str] = None, message: str = ""):
        super().__init__(message or f"No such key '{key}' or consumer group '{group}'")
        self.key = key
        self.group = group


class GroupExistsError(LogStoreError):
    """Consumer group creation hit an existing group (BUSYGROUP)."""
