# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Starlette ASGI app — the collector's HTTP and WebSocket boundary.

Routes:
  POST   /receiver  ingestion envelope from the browser extension
  POST   /assess    classification only, no storage
  GET    /projects  stored projects with ticket counts
  GET    /database  ticket count
  DELETE /database  clear projects and tickets
  GET    /health    liveness + storage probe
  WS     /ws        live collection events

Handlers are thin: all pipeline work lives in ``CollectionService``.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from contextlib import suppress

from pydantic import ValidationError
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route, WebSocketRoute
from starlette.websockets import WebSocket

from . import __version__
from .errors import ResourceExhaustionError, StorageError
from .schemas import AssessRequest, CollectionEnvelope
from .service import CollectionService

logger = logging.getLogger("jiracollector.app")


def _error(status_code: int, message: str, error: str = "") -> JSONResponse:
    body = {"success": False, "message": message}
    if error:
        body["error"] = error
    return JSONResponse(body, status_code=status_code)


async def _read_json(request: Request) -> object:
    body = await request.body()
    return json.loads(body) if body else {}


def create_app(service: CollectionService, *, version: str = __version__) -> Starlette:
    """Build the ASGI app around an already-initialised service."""
    started = time.monotonic()

    # ── Ingestion ───────────────────────────────────────────

    async def receiver(request: Request) -> JSONResponse:
        try:
            envelope = CollectionEnvelope.model_validate(await _read_json(request))
        except (json.JSONDecodeError, UnicodeDecodeError, ValidationError) as e:
            logger.warning("Invalid receiver payload: %s", e)
            return _error(400, "Invalid payload format", str(e))

        try:
            result = await service.collect(envelope)
        except ResourceExhaustionError as e:
            return _error(413, "Payload too large", str(e))

        return JSONResponse(result.to_dict(), status_code=200 if result.success else 500)

    async def assess(request: Request) -> JSONResponse:
        try:
            body = AssessRequest.model_validate(await _read_json(request))
        except (json.JSONDecodeError, UnicodeDecodeError, ValidationError) as e:
            return _error(400, "Invalid request format", str(e))
        try:
            assessment = service.assess(body.html, body.url)
        except ResourceExhaustionError as e:
            return _error(413, "Payload too large", str(e))
        return JSONResponse({"success": True, "assessment": assessment.to_dict()})

    # ── Store views ─────────────────────────────────────────

    async def projects(request: Request) -> JSONResponse:
        try:
            summaries = await service.project_summaries()
        except StorageError as e:
            logger.error("Failed to load projects: %s", e)
            return _error(500, "Failed to load projects", str(e))
        return JSONResponse({"success": True, "projects": summaries, "count": len(summaries)})

    async def database(request: Request) -> JSONResponse:
        if request.method == "DELETE":
            try:
                await service.clear_database()
            except StorageError as e:
                logger.error("Failed to clear database: %s", e)
                return _error(500, "Failed to clear database", str(e))
            return JSONResponse({"success": True, "message": "All data cleared from database", "count": 0})

        try:
            count = await service.ticket_count()
        except StorageError as e:
            logger.error("Failed to load tickets: %s", e)
            return _error(500, "Failed to load tickets", str(e))
        return JSONResponse({"success": True, "message": f"Retrieved {count} tickets", "count": count})

    async def health(request: Request) -> JSONResponse:
        database_ok = True
        try:
            await service.storage.load_projects()
        except StorageError:
            database_ok = False
        return JSONResponse(
            {
                "status": "ok" if database_ok else "degraded",
                "version": version,
                "uptime_seconds": round(time.monotonic() - started, 3),
                "services": {"database": database_ok},
            },
            status_code=200 if database_ok else 503,
        )

    # ── Live events ─────────────────────────────────────────

    async def events(websocket: WebSocket) -> None:
        sub = service.events.subscribe()
        await websocket.accept()

        async def forward() -> None:
            async for event in sub:
                await websocket.send_json(event.to_dict())

        async def drain() -> None:
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    return

        tasks = [asyncio.create_task(forward()), asyncio.create_task(drain())]
        stream_ended = False
        try:
            done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
            for task in done:
                if task.exception() is not None:
                    logger.debug("Event stream ended: %s", task.exception())
            stream_ended = tasks[0] in done and tasks[0].exception() is None
        finally:
            sub.close()
            for task in tasks:
                task.cancel()
                with suppress(asyncio.CancelledError, Exception):
                    await task
        # Stream ended (observer dropped or hub closed) while the client is connected
        if stream_ended:
            with suppress(RuntimeError):
                await websocket.close(code=1008)

    return Starlette(
        routes=[
            Route("/receiver", receiver, methods=["POST"]),
            Route("/assess", assess, methods=["POST"]),
            Route("/projects", projects, methods=["GET"]),
            Route("/database", database, methods=["GET", "DELETE"]),
            Route("/health", health, methods=["GET"]),
            WebSocketRoute("/ws", events),
        ],
    )
