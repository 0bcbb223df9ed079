import asyncio
import inspect
import signal
import time
from typing import Awaitable, Callable, Optional

from opentelemetry import trace
from opentelemetry.trace import SpanKind

from vstream.envelope import Envelope
from vstream.settings import settings
from vstream.transport import DEFAULT_READ_COUNT, StreamTransport
from vstream.utils.logging import get_logger

logger = get_logger("StreamReader")

Handler = Callable[..., Awaitable[None]]

# Seconds to wait after an unexpected error in the poll loop
ERROR_BACKOFF = 1.0


class StreamReader:
    """
    Polls one consumer group on a fixed cadence and hands entries to a handler.

    Features:
    - Fixed-interval polling (read, handle, acknowledge)
    - Graceful Shutdown (SIGTERM/SIGINT) between ticks
    - Acknowledgments run to completion even if the task is cancelled
    - Pause / resume without leaving the loop

    Entries whose handler raises are left pending in the group; they are
    not redelivered by this reader.

    Attributes:
        transport (StreamTransport): The transport to read through.
        log_key (str): Stream to consume.
        group (str): Consumer group name.
        consumer (str): This consumer's name within the group.
        batch_size (int): Max entries per tick.
        poll_interval (float): Seconds between ticks.
    """
    def __init__(self, transport: StreamTransport, log_key: str, group: str, consumer: str,
                 batch_size: int = DEFAULT_READ_COUNT, poll_interval: float = 0.5):
        self.transport = transport
        self.log_key = log_key
        self.group = group
        self.consumer = consumer
        self.batch_size = batch_size
        self.poll_interval = poll_interval
        self._running = False
        self._paused = False
        self._shutdown_event = asyncio.Event()
        self._shutdown_complete = asyncio.Event()
        self.telemetry = transport.telemetry
        self.tracer = self.telemetry.get_tracer()

    @property
    def running(self) -> bool:
        return self._running

    @property
    def paused(self) -> bool:
        return self._paused

    def pause(self):
        """Pause message consumption."""
        self._paused = True
        logger.info("Reader paused.")

    def resume(self):
        """Resume message consumption."""
        self._paused = False
        logger.info("Reader resumed.")

    def _setup_signals(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.add_signal_handler(sig, lambda: asyncio.create_task(self.shutdown()))
            except NotImplementedError:
                # Windows support or special environments
                pass

    async def shutdown(self, timeout: float = 10.0) -> None:
        """
        Initiate graceful shutdown.

        Stops the loop at the next tick boundary and waits for the current
        batch to finish.
        """
        if self._running:
            logger.info("Shutdown signal received. Finishing current batch...")
            self._running = False
            self._shutdown_event.set()
            try:
                await asyncio.wait_for(self._shutdown_complete.wait(), timeout=timeout)
            except asyncio.TimeoutError:
                logger.warning("Shutdown timed out.")

    def _set_status(self, value: int) -> None:
        self.telemetry.metrics.worker_status.labels(
            stream=self.log_key, group=self.group, consumer=self.consumer
        ).set(value)

    async def run(self, handler: Handler, install_signal_handlers: bool = True,
                  serve_admin: bool = False) -> None:
        """
        Execute the poll loop until `shutdown()` is called.

        Args:
            handler (Callable): Async function called per entry.
                                Signature: (entry_id, payload) or (entry_id, payload, envelope)
            install_signal_handlers (bool): Hook SIGTERM/SIGINT to `shutdown()`.
            serve_admin (bool): Also serve the admin API on settings.ADMIN_PORT.
        """
        self._running = True
        self._shutdown_event.clear()
        self._shutdown_complete.clear()
        if install_signal_handlers:
            self._setup_signals()

        logger.info(f"Entered poll loop. Consuming from {self.log_key} (Group: {self.group}, Consumer: {self.consumer})")

        admin_task: Optional[asyncio.Task] = None
        if serve_admin:
            admin_task = asyncio.create_task(self._start_admin_server())

        try:
            while self._running:
                self._set_status(0 if self._paused else 1)
                delay = self.poll_interval
                if not self._paused:
                    try:
                        await self.poll_once(handler)
                    except asyncio.CancelledError:
                        logger.info("Loop cancelled.")
                        raise
                    except Exception as e:
                        logger.error(f"Unexpected error in poll loop: {e}", exc_info=True)
                        delay = max(self.poll_interval, ERROR_BACKOFF)

                await self._wait_next_tick(delay)
        finally:
            self._running = False
            self._set_status(0)
            if admin_task is not None:
                admin_task.cancel()
                try:
                    await admin_task
                except asyncio.CancelledError:
                    pass
            self._shutdown_complete.set()
            logger.info("Reader stopped.")

    async def _wait_next_tick(self, delay: float) -> None:
        try:
            await asyncio.wait_for(self._shutdown_event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass

    async def poll_once(self, handler: Handler) -> int:
        """
        Run a single tick: read one batch, handle it, acknowledge successes.

        Returns:
            Number of entries handled successfully.
        """
        messages = await self.transport.read_group_envelopes(
            self.log_key, self.group, self.consumer, self.batch_size
        )
        wants_envelope = len(inspect.signature(handler).parameters) >= 3

        handled = 0
        for entry_id, envelope in messages:
            if await self._process_single_message(handler, entry_id, envelope, wants_envelope):
                await self._acknowledge(entry_id)
                handled += 1
        return handled

    async def _acknowledge(self, entry_id: str) -> None:
        ack = asyncio.ensure_future(self.transport.acknowledge(self.log_key, self.group, entry_id))
        try:
            await asyncio.shield(ack)
        except asyncio.CancelledError:
            # Finish the issued ack before giving up the task, or loop teardown drops it
            await ack
            raise

    async def _process_single_message(self, handler: Handler, entry_id: str,
                                      envelope: Envelope, wants_envelope: bool) -> bool:
        start = time.time()
        metrics = self.telemetry.metrics
        parent = self.transport.extract_context(envelope)

        with self.tracer.start_as_current_span(
            "process_message",
            context=parent,
            kind=SpanKind.CONSUMER,
            attributes={"messaging.message_id": entry_id, "messaging.destination": self.log_key},
        ) as span:
            try:
                if wants_envelope:
                    await handler(entry_id, envelope.payload, envelope)
                else:
                    await handler(entry_id, envelope.payload)
            except Exception as e:
                metrics.messages_processed.labels(stream=self.log_key, status="error").inc()
                logger.error(f"Error processing entry {entry_id}: {e}; leaving it pending")
                span.record_exception(e)
                span.set_status(trace.Status(trace.StatusCode.ERROR))
                return False

        metrics.messages_processed.labels(stream=self.log_key, status="success").inc()
        metrics.processing_latency.labels(stream=self.log_key).observe(time.time() - start)
        return True

    async def _start_admin_server(self):
        """
        Starts the Admin API server.
        """
        try:
            from uvicorn import Config, Server
            from vstream.admin import create_admin_app

            app = create_admin_app(self)
            config = Config(
                app=app,
                host=settings.ADMIN_HOST,
                port=settings.ADMIN_PORT,
                log_config=None,
                log_level="warning",
            )
            server = Server(config)

            # Disable signal handlers as we manage them
            server.install_signal_handlers = lambda: None

            logger.info(f"Starting Admin API on port {settings.ADMIN_PORT}")
            await server.serve()
        except Exception as e:
            logger.error(f"Failed to start Admin API: {e}")
