from fastapi.testclient import TestClient

from vstream.admin import create_admin_app
from vstream.store.memory import MemoryLogStore
from vstream.transport import StreamTransport
from vstream.worker import StreamReader


def make_client():
    reader = StreamReader(StreamTransport(MemoryLogStore()), "orders", "g1", "c1")
    return reader, TestClient(create_admin_app(reader))


def test_health_of_stopped_reader():
    _, client = make_client()
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "stopped", "worker_state": "stopped"}


def test_health_of_running_reader():
    reader, client = make_client()
    reader._running = True
    assert client.get("/health").json() == {"status": "ok", "worker_state": "running"}

    reader.pause()
    assert client.get("/health").json() == {"status": "ok", "worker_state": "paused"}


def test_pause_and_resume():
    reader, client = make_client()

    assert client.post("/control/pause").json() == {"status": "paused"}
    assert reader.paused

    assert client.post("/control/resume").json() == {"status": "resumed"}
    assert not reader.paused


def test_status_reports_stream_and_cache():
    reader, client = make_client()
    reader.transport.cache.confirm("orders", "g1")

    body = client.get("/control/status").json()

    assert body["stream"] == "orders"
    assert body["group"] == "g1"
    assert body["consumer"] == "c1"
    assert body["initialized_streams"] == ["orders"]
    assert body["running"] is False


def test_metrics_endpoint_exposes_prometheus_text():
    reader, client = make_client()
    reader.telemetry.metrics.acks.labels(stream="orders", group="g1").inc()

    response = client.get("/metrics")

    assert response.status_code == 200
    assert 'vstream_acks_total{stream="orders",group="g1"} 1.0' in response.text
