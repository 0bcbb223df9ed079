from unittest.mock import patch

from opentelemetry import trace

from vstream.telemetry import MetricsCollector, TelemetryManager


def test_telemetry_singleton():
    t1 = TelemetryManager()
    t2 = TelemetryManager()
    assert t1 is t2
    assert t1.metrics is t2.metrics


def test_tracing_disabled_gives_noop_tracer():
    with patch("vstream.settings.settings.OTEL_ENABLED", False):
        TelemetryManager._instance = None
        telemetry = TelemetryManager()
        assert not telemetry.enabled
        assert isinstance(telemetry.get_tracer(), trace.NoOpTracer)


def test_tracing_enabled_uses_global_provider():
    with patch("vstream.settings.settings.OTEL_ENABLED", True):
        TelemetryManager._instance = None
        telemetry = TelemetryManager()
        assert telemetry.enabled
        assert not isinstance(telemetry.get_tracer(), trace.NoOpTracer)


def test_collectors_do_not_share_registries():
    a, b = MetricsCollector(), MetricsCollector()
    a.recoveries.labels(stream="orders", group="g1").inc()

    assert a.value("vstream_recoveries_total", stream="orders", group="g1") == 1
    assert b.value("vstream_recoveries_total", stream="orders", group="g1") == 0
