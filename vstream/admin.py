from typing import Any, Dict, TYPE_CHECKING

from fastapi import FastAPI, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from vstream.utils.logging import get_logger

if TYPE_CHECKING:
    from vstream.worker import StreamReader

logger = get_logger("AdminAPI")


def create_admin_app(reader: "StreamReader") -> FastAPI:
    """
    Creates the FastAPI Admin Application.

    Args:
        reader: The active StreamReader instance to control.
    """
    app = FastAPI(title="vstream Admin API", version="0.1.0")

    @app.get("/health")
    async def health_check() -> Dict[str, str]:
        """Returns the health status of the reader."""
        if reader.running:
            status = "paused" if reader.paused else "running"
            return {"status": "ok", "worker_state": status}
        return {"status": "stopped", "worker_state": "stopped"}

    @app.post("/control/pause")
    async def pause_worker() -> Dict[str, str]:
        """Pauses the poll loop."""
        reader.pause()
        return {"status": "paused"}

    @app.post("/control/resume")
    async def resume_worker() -> Dict[str, str]:
        """Resumes the poll loop."""
        reader.resume()
        return {"status": "resumed"}

    @app.get("/control/status")
    async def worker_status() -> Dict[str, Any]:
        """Detailed status of the reader."""
        return {
            "running": reader.running,
            "paused": reader.paused,
            "stream": reader.log_key,
            "group": reader.group,
            "consumer": reader.consumer,
            "initialized_streams": reader.transport.cache.keys(),
        }

    @app.get("/metrics")
    async def metrics() -> Response:
        registry = reader.telemetry.metrics.registry
        return Response(content=generate_latest(registry), media_type=CONTENT_TYPE_LATEST)

    return app
