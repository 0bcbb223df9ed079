from datetime import datetime, timezone

from opentelemetry import trace
from opentelemetry.sdk.trace import TracerProvider

from vstream.envelope import CONTEXT_FIELD, CREATED_AT_FIELD, VALUE_FIELD, Envelope
from vstream.telemetry import TraceContextCarrier


def test_fields_without_context():
    created = datetime(2024, 5, 1, 12, 30, tzinfo=timezone.utc)
    envelope = Envelope(payload="hello", created_at=created)

    assert envelope.to_fields() == {
        VALUE_FIELD: "hello",
        CREATED_AT_FIELD: "2024-05-01T12:30:00+00:00",
    }


def test_context_is_written_when_present():
    envelope = Envelope(payload="hello", metadata={CONTEXT_FIELD: '{"traceparent": "x"}'})
    assert envelope.to_fields()[CONTEXT_FIELD] == '{"traceparent": "x"}'


def test_from_fields_rejects_missing_or_empty_payload():
    assert Envelope.from_fields({CREATED_AT_FIELD: "2024-05-01T12:30:00+00:00"}) is None
    assert Envelope.from_fields({VALUE_FIELD: ""}) is None


def test_from_fields_ignores_unknown_fields():
    envelope = Envelope.from_fields({"origin": "api", VALUE_FIELD: "hello", CONTEXT_FIELD: "tok"})
    assert envelope.payload == "hello"
    assert envelope.metadata == {CONTEXT_FIELD: "tok"}
    assert envelope.created_at is None


def test_from_fields_tolerates_foreign_timestamps():
    envelope = Envelope.from_fields({VALUE_FIELD: "hello", CREATED_AT_FIELD: "5/1/2024 12:30:00 PM +00:00"})
    assert envelope.payload == "hello"
    assert envelope.created_at is None


def test_carrier_round_trip():
    carrier = TraceContextCarrier()
    tracer = TracerProvider().get_tracer("tests")

    with tracer.start_as_current_span("producer") as span:
        token = carrier.inject()

    assert "traceparent" in token
    restored = trace.get_current_span(carrier.extract(token)).get_span_context()
    assert restored.trace_id == span.get_span_context().trace_id
    assert restored.span_id == span.get_span_context().span_id


def test_carrier_without_active_span_yields_empty_token():
    assert TraceContextCarrier().inject() == ""


def test_carrier_discards_malformed_tokens():
    carrier = TraceContextCarrier()
    assert carrier.extract("not-json") is None
    assert carrier.extract('["a", "b"]') is None
