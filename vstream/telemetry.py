import json
from abc import ABC, abstractmethod
from typing import Dict, Optional

from opentelemetry import propagate, trace
from opentelemetry.context import Context
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram

from vstream.settings import settings
from vstream.utils.logging import get_logger

logger = get_logger("telemetry")

TRACER_NAME = "vstream"


class TelemetryCarrier(ABC):
    """
    Serializes a trace context into an opaque token that can ride along
    with a message, and reconstructs it on the consuming side.
    """

    @abstractmethod
    def inject(self, context: Optional[Context] = None) -> str:
        """Token for `context` (the current context if None). Empty if there is nothing to propagate."""
        pass

    @abstractmethod
    def extract(self, token: str) -> Optional[Context]:
        pass


class TraceContextCarrier(TelemetryCarrier):
    """
    Carrier built on the globally configured OpenTelemetry propagator
    (W3C traceparent/tracestate and baggage by default).
    The token is the JSON-encoded propagation headers.
    """
    def inject(self, context: Optional[Context] = None) -> str:
        headers: Dict[str, str] = {}
        propagate.inject(headers, context=context)
        return json.dumps(headers) if headers else ""

    def extract(self, token: str) -> Optional[Context]:
        try:
            headers = json.loads(token)
        except ValueError:
            logger.warning(f"Discarding malformed telemetry context: {token!r}")
            return None
        if not isinstance(headers, dict):
            logger.warning(f"Discarding malformed telemetry context: {token!r}")
            return None
        return propagate.extract(headers)


class MetricsCollector:
    """
    Prometheus metrics for the transport and reader loop.
    Each collector owns its registry so independent instances never collide.
    """
    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry or CollectorRegistry()

        self.entries_appended = Counter(
            "vstream_entries_appended", "Entries appended to a stream",
            ["stream"], registry=self.registry)
        self.append_failures = Counter(
            "vstream_append_failures", "Appends that failed at the store",
            ["stream"], registry=self.registry)
        self.entries_delivered = Counter(
            "vstream_entries_delivered", "Entries returned by group reads",
            ["stream", "group"], registry=self.registry)
        self.malformed_entries = Counter(
            "vstream_malformed_entries", "Entries dropped for a missing or empty payload",
            ["stream", "group"], registry=self.registry)
        self.read_failures = Counter(
            "vstream_read_failures", "Group reads that failed at the store",
            ["stream", "group"], registry=self.registry)
        self.recoveries = Counter(
            "vstream_recoveries", "Consumer groups recreated after the log disappeared",
            ["stream", "group"], registry=self.registry)
        self.acks = Counter(
            "vstream_acks", "Acknowledge calls issued",
            ["stream", "group"], registry=self.registry)
        self.ack_failures = Counter(
            "vstream_ack_failures", "Acknowledge calls that failed at the store",
            ["stream", "group"], registry=self.registry)
        self.ack_provisioned_groups = Counter(
            "vstream_ack_provisioned_groups", "Groups created by an acknowledge call",
            ["stream", "group"], registry=self.registry)
        self.messages_processed = Counter(
            "vstream_messages_processed", "Messages handled by a reader",
            ["stream", "status"], registry=self.registry)
        self.processing_latency = Histogram(
            "vstream_processing_latency_seconds", "Handler latency",
            ["stream"], registry=self.registry)
        self.worker_status = Gauge(
            "vstream_worker_status", "1 while a reader is consuming, 0 otherwise",
            ["stream", "group", "consumer"], registry=self.registry)

    def value(self, name: str, **labels: str) -> float:
        """Current value of a sample, 0.0 if it was never touched."""
        sample = self.registry.get_sample_value(name, labels)
        return sample if sample is not None else 0.0


class TelemetryManager:
    """
    Process-wide access point for the tracer and metrics.
    Tracing is a no-op unless OTEL_ENABLED is set.
    """
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            instance = super(TelemetryManager, cls).__new__(cls)
            instance.enabled = settings.OTEL_ENABLED
            instance.metrics = MetricsCollector()
            cls._instance = instance
        return cls._instance

    def get_tracer(self) -> trace.Tracer:
        if self.enabled:
            return trace.get_tracer(TRACER_NAME)
        return trace.NoOpTracer()


def init_tracer(service_name: str) -> None:
    """Install an SDK tracer provider exporting to the console."""
    provider = TracerProvider(resource=Resource.create({"service.name": service_name}))
    provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
    trace.set_tracer_provider(provider)
    logger.info(f"Initialized tracer for {service_name}")
