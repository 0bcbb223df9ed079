import asyncio
import logging
from typing import Optional

import httpx
import typer

from vstream.bootstrap import build_connector, build_transport
from vstream.settings import settings
from vstream.utils.logging import get_logger, setup_logging
from vstream.worker import StreamReader

app = typer.Typer(help="vstream Control Interface")

logger = get_logger("cli")


@app.callback()
def main(log_level: str = typer.Option(settings.LOG_LEVEL, help="Logging level")):
    setup_logging(getattr(logging, log_level.upper(), logging.INFO), settings.LOG_FORMAT)


@app.command()
def append(
    payload: str = typer.Argument(..., help="Message payload"),
    stream: str = typer.Option(settings.STREAM_NAME, help="Stream key"),
    max_length: int = typer.Option(settings.STREAM_MAX_LENGTH, help="Approximate length bound"),
):
    """
    Appends one message to a stream.
    """
    async def _append() -> Optional[str]:
        connector = build_connector()
        try:
            return await build_transport(connector=connector).append(stream, payload, max_length)
        finally:
            await connector.close()

    entry_id = asyncio.run(_append())
    if entry_id is None:
        typer.echo(f"❌ Failed to append to {stream}")
        raise typer.Exit(code=1)
    typer.echo(entry_id)


@app.command()
def read(
    stream: str = typer.Option(settings.STREAM_NAME, help="Stream key"),
    group: str = typer.Option(settings.CONSUMER_GROUP_NAME, help="Consumer group"),
    consumer: str = typer.Option(settings.CONSUMER_NAME, help="Consumer name"),
    count: int = typer.Option(10, help="Max entries to read"),
    ack: bool = typer.Option(False, help="Acknowledge entries after printing"),
):
    """
    Reads new entries for a consumer and prints them.
    """
    async def _read():
        connector = build_connector()
        transport = build_transport(connector=connector)
        try:
            entries = await transport.read_group(stream, group, consumer, count)
            for entry_id, payload in entries:
                typer.echo(f"[{entry_id}] {payload}")
                if ack:
                    await transport.acknowledge(stream, group, entry_id)
            return entries
        finally:
            await connector.close()

    entries = asyncio.run(_read())
    if not entries:
        typer.echo("No new entries.")


@app.command("ack")
def acknowledge(
    entry_id: str = typer.Argument(..., help="Entry id to acknowledge"),
    stream: str = typer.Option(settings.STREAM_NAME, help="Stream key"),
    group: str = typer.Option(settings.CONSUMER_GROUP_NAME, help="Consumer group"),
):
    """
    Acknowledges an entry for a consumer group.
    """
    async def _ack():
        connector = build_connector()
        try:
            await build_transport(connector=connector).acknowledge(stream, group, entry_id)
        finally:
            await connector.close()

    asyncio.run(_ack())
    typer.echo(f"✅ Acknowledged {entry_id}")


@app.command()
def consume(
    stream: str = typer.Option(settings.STREAM_NAME, help="Stream key"),
    group: str = typer.Option(settings.CONSUMER_GROUP_NAME, help="Consumer group"),
    consumer: str = typer.Option(settings.CONSUMER_NAME, help="Consumer name"),
    batch_size: int = typer.Option(settings.READ_BATCH_SIZE, help="Max entries per poll"),
    interval_ms: int = typer.Option(settings.POLL_INTERVAL_MS, help="Poll interval in milliseconds"),
    admin: bool = typer.Option(True, help="Serve the admin API"),
):
    """
    Runs a reader that logs and acknowledges every entry until interrupted.
    """
    async def handler(entry_id: str, payload: str) -> None:
        logger.info(f"[{entry_id}] {payload}")

    async def _consume():
        connector = build_connector()
        reader = StreamReader(build_transport(connector=connector), stream, group, consumer,
                              batch_size=batch_size, poll_interval=interval_ms / 1000)
        try:
            await reader.run(handler, serve_admin=admin)
        finally:
            await connector.close()

    asyncio.run(_consume())


@app.command()
def status(url: str = typer.Option(f"http://localhost:{settings.ADMIN_PORT}", help="URL of the Admin API")):
    """
    Checks the status of a running reader.
    """
    try:
        r = httpx.get(f"{url}/health")
        if r.status_code == 200:
            typer.echo(f"✅ Reader Online: {r.json()}")
        else:
            typer.echo(f"⚠️  Reader returned {r.status_code}: {r.text}")
    except httpx.RequestError as e:
        typer.echo(f"❌ Failed to connect to {url}: {e}")


@app.command()
def pause(url: str = typer.Option(f"http://localhost:{settings.ADMIN_PORT}", help="URL of the Admin API")):
    """
    Pauses the reader's poll loop.
    """
    _send_control(url, "pause")


@app.command()
def resume(url: str = typer.Option(f"http://localhost:{settings.ADMIN_PORT}", help="URL of the Admin API")):
    """
    Resumes the reader's poll loop.
    """
    _send_control(url, "resume")


def _send_control(base_url: str, action: str):
    url = f"{base_url}/control/{action}"
    try:
        r = httpx.post(url)
        if r.status_code == 200:
            typer.echo(f"✅ Command '{action}' sent successfully.")
        else:
            typer.echo(f"⚠️  Failed to {action}: {r.status_code} {r.text}")
    except httpx.RequestError as e:
        typer.echo(f"❌ Connection error: {e}")


if __name__ == "__main__":
    app()
