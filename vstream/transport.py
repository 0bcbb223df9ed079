from contextlib import nullcontext
from enum import Enum
from typing import Dict, List, Optional, Tuple

from opentelemetry.context import Context
from opentelemetry.trace import SpanKind

from vstream.cache import InitializationCache
from vstream.envelope import CONTEXT_FIELD, Envelope
from vstream.errors import GroupExistsError, LogStoreError, NotFoundKeyError
from vstream.store.interfaces import LogStore
from vstream.telemetry import TelemetryCarrier, TelemetryManager
from vstream.utils.logging import get_logger

logger = get_logger("StreamTransport")

DEFAULT_MAX_LENGTH = 10_000
DEFAULT_READ_COUNT = 1000

# New groups start from the beginning of the log
GROUP_START_ID = "0"


class InitOutcome(str, Enum):
    CACHED = "cached"
    EXISTING = "existing"
    CREATED = "created"
    FAILED = "failed"


class StreamTransport:
    """
    Durable stream transport over a LogStore.

    Producers `append` payloads to a log key; consumers `read_group` new
    entries for their consumer group and `acknowledge` what they processed.
    Log keys and consumer groups are provisioned lazily and recreated when
    the log disappears underneath a running consumer.

    Delivery is at-least-once per group. No store failure is raised to the
    caller: appends return None, reads return an empty batch, and the
    caller retries on its own schedule.

    Attributes:
        store (LogStore): The log store backend.
        cache (InitializationCache): Provisioning cache, one per transport.
        carrier (Optional[TelemetryCarrier]): Trace context propagation, if any.
        default_group (Optional[str]): Group provisioned eagerly on append.
    """
    def __init__(self,
                 store: LogStore,
                 cache: Optional[InitializationCache] = None,
                 carrier: Optional[TelemetryCarrier] = None,
                 default_group: Optional[str] = None,
                 telemetry: Optional[TelemetryManager] = None):
        self.store = store
        self.cache = cache or InitializationCache()
        self.carrier = carrier
        self.default_group = default_group
        self.telemetry = telemetry or TelemetryManager()
        self.metrics = self.telemetry.metrics
        self.tracer = self.telemetry.get_tracer()

    def _span(self, name: str, kind: SpanKind, context: Optional[Context] = None,
              attributes: Optional[Dict[str, str]] = None):
        # Without our own spans the caller's current context is what gets propagated
        if not self.telemetry.enabled:
            return nullcontext()
        return self.tracer.start_as_current_span(name, context=context, kind=kind, attributes=attributes)

    async def ensure_initialized(self, log_key: str, group: str) -> InitOutcome:
        """
        Make sure `group` exists on `log_key`, creating both if needed.

        Cached pairs return without I/O. Otherwise provisioning runs under
        the cache lock, re-checking the cache once the lock is held. Store
        failures are logged and leave the pair unconfirmed.
        """
        if self.cache.is_confirmed(log_key, group):
            return InitOutcome.CACHED

        async with self.cache.lock:
            # Another task may have finished while we waited
            if self.cache.is_confirmed(log_key, group):
                return InitOutcome.CACHED

            self.cache.begin(log_key, group)
            try:
                outcome = await self._provision(log_key, group)
            except LogStoreError as e:
                self.cache.fail(log_key, group)
                logger.error(f"Failed to initialize stream {log_key} (Group: {group}): {e}")
                return InitOutcome.FAILED
            except BaseException:
                # Cancelled or unexpected: back to Unknown so the next call retries
                self.cache.fail(log_key, group)
                raise

            self.cache.confirm(log_key, group)
            return outcome

    async def _provision(self, log_key: str, group: str) -> InitOutcome:
        if await self.store.key_exists(log_key) and group in await self._registered_groups(log_key):
            return InitOutcome.EXISTING

        try:
            await self.store.create_group(log_key, group, start_id=GROUP_START_ID, mkstream=True)
        except GroupExistsError:
            logger.debug(f"Group {group} on {log_key} was created concurrently")
            return InitOutcome.EXISTING

        logger.info(f"Created consumer group {group} on {log_key}")
        return InitOutcome.CREATED

    async def _registered_groups(self, log_key: str) -> List[str]:
        try:
            return await self.store.group_names(log_key)
        except NotFoundKeyError:
            # Deleted between the existence check and the lookup
            return []

    async def append(self, log_key: str, payload: str,
                     max_length: Optional[int] = DEFAULT_MAX_LENGTH) -> Optional[str]:
        """
        Append `payload` to `log_key`, trimming the log to roughly `max_length`.

        Returns:
            The entry id, or None if the store rejected the write.
        """
        return await self.append_envelope(log_key, Envelope(payload=payload), max_length)

    async def append_envelope(self, log_key: str, envelope: Envelope,
                              max_length: Optional[int] = DEFAULT_MAX_LENGTH) -> Optional[str]:
        if self.default_group:
            await self.ensure_initialized(log_key, self.default_group)

        with self._span("stream-write", SpanKind.PRODUCER,
                        attributes={"messaging.destination": log_key}):
            if self.carrier is not None:
                token = self.carrier.inject()
                if token:
                    # The caller may reuse its envelope; the token belongs to this write only
                    envelope = envelope.model_copy(deep=True)
                    envelope.metadata[CONTEXT_FIELD] = token

            try:
                entry_id = await self.store.append_with_trim(
                    log_key, envelope.to_fields(), max_len=max_length, approximate=True
                )
            except LogStoreError as e:
                self.metrics.append_failures.labels(stream=log_key).inc()
                logger.error(
                    f"Error during append. Stream: {log_key} Message: {envelope.payload!r}: {e}",
                    exc_info=True,
                )
                return None

        self.metrics.entries_appended.labels(stream=log_key).inc()
        return entry_id

    async def read_group(self, log_key: str, group: str, consumer: str,
                         max_count: int = DEFAULT_READ_COUNT) -> List[Tuple[str, str]]:
        """
        Read up to `max_count` entries not yet delivered to any consumer of `group`.

        Returns:
            [(entry_id, payload), ...] in delivery order. Empty on any store
            failure, including a recovered missing log.
        """
        envelopes = await self.read_group_envelopes(log_key, group, consumer, max_count)
        return [(entry_id, envelope.payload) for entry_id, envelope in envelopes]

    async def read_group_envelopes(self, log_key: str, group: str, consumer: str,
                                   max_count: int = DEFAULT_READ_COUNT) -> List[Tuple[str, Envelope]]:
        """Like `read_group`, keeping the full envelope of each entry."""
        await self.ensure_initialized(log_key, group)

        try:
            raw_entries = await self.store.group_read(log_key, group, consumer, count=max_count)
        except NotFoundKeyError as e:
            logger.error(
                f"Stream or group missing during read. Stream: {log_key} "
                f"Group: {group} Consumer: {consumer}: {e}"
            )
            await self._recover(e, log_key, group)
            return []
        except LogStoreError as e:
            self.metrics.read_failures.labels(stream=log_key, group=group).inc()
            logger.error(
                f"Error during read. Stream: {log_key} Group: {group} Consumer: {consumer}: {e}",
                exc_info=True,
            )
            return []

        messages: List[Tuple[str, Envelope]] = []
        for entry_id, fields in raw_entries:
            envelope = Envelope.from_fields(fields)
            if envelope is None:
                self.metrics.malformed_entries.labels(stream=log_key, group=group).inc()
                logger.warning(f"Dropping entry {entry_id} on {log_key}: missing or empty payload")
                continue

            parent = self.extract_context(envelope)
            with self._span("stream-read", SpanKind.CONSUMER, context=parent,
                            attributes={"messaging.message_id": entry_id,
                                        "messaging.destination": log_key}):
                messages.append((entry_id, envelope))

        if messages:
            self.metrics.entries_delivered.labels(stream=log_key, group=group).inc(len(messages))
        return messages

    def extract_context(self, envelope: Envelope) -> Optional[Context]:
        if self.carrier is None or not envelope.telemetry_context:
            return None
        return self.carrier.extract(envelope.telemetry_context)

    async def _recover(self, error: NotFoundKeyError, log_key: str, group: str) -> None:
        """
        Forget the vanished log and provision it again from scratch.
        Entries that were never consumed before the log vanished are lost.
        """
        self.cache.evict(error.key)
        if error.key != log_key:
            self.cache.evict(log_key)

        self.metrics.recoveries.labels(stream=log_key, group=group).inc()
        logger.warning(f"Recreating consumer group {group} on {log_key} (reported missing: {error.key})")
        await self.ensure_initialized(log_key, group)

    async def acknowledge(self, log_key: str, group: str, entry_id: str) -> None:
        """
        Acknowledge `entry_id` for `group`. Failures are logged, never raised.
        Acknowledging an entry that is not pending is a no-op.
        """
        outcome = await self.ensure_initialized(log_key, group)
        if outcome is InitOutcome.CREATED:
            self.metrics.ack_provisioned_groups.labels(stream=log_key, group=group).inc()
            logger.warning(
                f"Acknowledge of {entry_id} created missing group {group} on {log_key}; "
                f"the entry cannot be pending there"
            )

        try:
            await self.store.acknowledge(log_key, group, entry_id)
        except LogStoreError as e:
            self.metrics.ack_failures.labels(stream=log_key, group=group).inc()
            logger.error(
                f"Error during acknowledge. Stream: {log_key} Group: {group} Entry: {entry_id}: {e}",
                exc_info=True,
            )
            return

        self.metrics.acks.labels(stream=log_key, group=group).inc()
