"""Health and readiness endpoints for the container orchestrator.

- ``GET /health``: liveness; 503 when the database is unreachable.
- ``GET /ready``: readiness; 503 until reference data is loaded, since a
  cold worker would spend its first ranking run reading every reference
  table.

Served with raw asyncio.start_server, no HTTP framework.
"""

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable

import psycopg

from .metrics import get_metrics
from .reference_data import reference_cache

logger = logging.getLogger(__name__)

_REASONS = {200: "OK", 404: "Not Found", 503: "Service Unavailable"}

Route = Callable[[str], Awaitable[tuple[int, dict]]]


async def _check_db(db_url: str) -> str:
    """SELECT 1 with a 2s timeout. Returns 'ok' or 'error'."""
    try:
        async with asyncio.timeout(2):
            async with await psycopg.AsyncConnection.connect(db_url, autocommit=True) as conn:
                await conn.execute("SELECT 1")
        return "ok"
    except Exception:
        return "error"


def build_health_body(db_status: str) -> tuple[bool, str]:
    metrics = get_metrics()
    healthy = db_status == "ok"
    body = json.dumps({
        "status": "ok" if healthy else "degraded",
        "uptime_seconds": metrics["uptime_seconds"],
        "db": db_status,
        "reference_data": "loaded" if reference_cache.is_populated else "cold",
        "metrics": metrics,
    })
    return healthy, body


async def _health(db_url: str) -> tuple[int, dict]:
    healthy, body = build_health_body(await _check_db(db_url))
    return (200 if healthy else 503), json.loads(body)


async def _ready(db_url: str) -> tuple[int, dict]:
    ready = reference_cache.is_populated
    return (200 if ready else 503), {"ready": ready}


ROUTES: dict[str, Route] = {
    "/health": _health,
    "/ready": _ready,
}


def render_response(status: int, payload: dict) -> bytes:
    body = json.dumps(payload)
    return (
        f"HTTP/1.1 {status} {_REASONS[status]}\r\n"
        "Content-Type: application/json\r\n"
        f"Content-Length: {len(body)}\r\n\r\n{body}"
    ).encode()


async def _handle_request(
    reader: asyncio.StreamReader,
    writer: asyncio.StreamWriter,
    db_url: str,
) -> None:
    try:
        request_line = await asyncio.wait_for(reader.readline(), timeout=5)
        # "GET /health HTTP/1.1"
        parts = request_line.decode("utf-8", errors="replace").split()
        route = ROUTES.get(parts[1] if len(parts) >= 2 else "/")
        if route is None:
            status, payload = 404, {"error": "not_found"}
        else:
            status, payload = await route(db_url)
        writer.write(render_response(status, payload))
        await writer.drain()
    except Exception:
        logger.debug("Health endpoint request error", exc_info=True)
    finally:
        writer.close()
        await writer.wait_closed()


async def start_health_server(port: int, db_url: str) -> asyncio.Server:
    async def handler(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        await _handle_request(reader, writer, db_url)

    server = await asyncio.start_server(handler, "0.0.0.0", port)
    logger.info("Health endpoints (%s) listening on port %d", ", ".join(ROUTES), port)
    return server
