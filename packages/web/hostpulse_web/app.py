"""FastAPI transport: one-shot snapshot requests and a WebSocket push stream."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from starlette.concurrency import run_in_threadpool
from starlette.websockets import WebSocketState

from hostpulse_core.broadcast import SubscriberHandle
from hostpulse_core.config import ServerConfig
from hostpulse_core.logging_setup import get_logger
from hostpulse_core.serialize import snapshot_to_dict
from hostpulse_core.service import MetricsService, app_version
from hostpulse_telemetry.errors import SubscriberStalled


logger = get_logger("web")

POLL_SECONDS = 0.5


async def _watch_disconnect(websocket: WebSocket, handle: SubscriberHandle) -> None:
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                return
    finally:
        handle.close()


async def _close(websocket: WebSocket, code: int) -> None:
    if websocket.client_state == WebSocketState.CONNECTED:
        try:
            await websocket.close(code=code)
        except RuntimeError:
            pass


def create_app(
    service: MetricsService,
    server: ServerConfig | None = None,
    manage_service: bool = True,
) -> FastAPI:
    server = server or service.config.server
    max_subscribers = service.config.broadcast.max_subscribers

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        if manage_service:
            service.start()
        try:
            yield
        finally:
            if manage_service:
                await run_in_threadpool(service.stop)

    app = FastAPI(title="HostPulse", version=app_version(), lifespan=lifespan)
    app.state.service = service

    if server.enable_cors:
        app.add_middleware(CORSMiddleware, allow_origins=["*"], allow_methods=["GET"], allow_headers=["*"])

    @app.get("/api/snapshot")
    async def get_snapshot() -> dict[str, Any]:
        snapshot = service.latest()
        if snapshot is None:
            raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="no snapshot sampled yet")
        return snapshot_to_dict(snapshot)

    @app.get("/api/history")
    async def get_history() -> list[dict[str, Any]]:
        return [snapshot_to_dict(s) for s in service.recent()]

    @app.get("/api/health")
    async def get_health() -> dict[str, Any]:
        return service.health()

    @app.get("/api/clients")
    async def get_clients() -> list[dict[str, Any]]:
        now = datetime.now(timezone.utc)
        return [
            {
                "id": c.id,
                "connected_at": c.connected_at.isoformat(),
                "connected_duration_seconds": int((now - c.connected_at).total_seconds()),
                "delivered": c.delivered,
                "dropped": c.dropped,
                "queue_depth": c.queue_depth,
            }
            for c in service.broadcaster.clients()
        ]

    @app.websocket("/ws")
    async def stream(websocket: WebSocket) -> None:
        await websocket.accept()
        if service.broadcaster.subscriber_count >= max_subscribers:
            logger.warning("websocket rejected, subscriber limit reached", extra={"event": "subscriber_rejected"})
            await _close(websocket, status.WS_1013_TRY_AGAIN_LATER)
            return

        backfill, handle = service.open_stream()
        watcher = asyncio.create_task(_watch_disconnect(websocket, handle))
        try:
            for snapshot in backfill:
                await websocket.send_json(snapshot_to_dict(snapshot))
            while not handle.closed:
                snapshot = await run_in_threadpool(handle.get, POLL_SECONDS)
                if snapshot is None:
                    continue
                await websocket.send_json(snapshot_to_dict(snapshot))
        except WebSocketDisconnect:
            pass
        finally:
            watcher.cancel()
            service.unsubscribe(handle)

        if isinstance(handle.close_reason, SubscriberStalled):
            await _close(websocket, status.WS_1008_POLICY_VIOLATION)
        else:
            await _close(websocket, status.WS_1000_NORMAL_CLOSURE)

    if server.static_dir:
        static_path = Path(server.static_dir).expanduser()
        if static_path.is_dir():
            app.mount("/", StaticFiles(directory=str(static_path), html=True), name="static")
        else:
            logger.warning(f"static directory {static_path} not found", extra={"event": "static_missing"})

    return app


def serve(service: MetricsService, server: ServerConfig | None = None) -> None:
    import uvicorn

    server = server or service.config.server
    app = create_app(service, server)
    logger.info(f"serving on http://{server.host}:{server.port}", extra={"event": "server_started"})
    uvicorn.run(app, host=server.host, port=server.port, log_config=None)
