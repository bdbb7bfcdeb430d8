from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, Dict

import socketio
from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger
from pymongo.errors import PyMongoError

from .database import ensure_indexes, settings
from .realtime.channels import SocketIOConnection, WebSocketConnection
from .routers import admin, auth, donations, donors, requests
from .services import build_services
from .utils.logging import configure_logging

configure_logging(settings.log_level)

services = build_services()
channels = services.channels


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting LifeLine API")
    try:
        await ensure_indexes()
        await admin.ensure_admin_account(services.users)
    except PyMongoError as exc:  # pragma: no cover - external service
        logger.warning("MongoDB unavailable; skipping index creation and admin seeding: {}", exc)
    channels.start()
    yield
    logger.info("Shutting down LifeLine API")
    await channels.shutdown()


sio = socketio.AsyncServer(async_mode="asgi", cors_allowed_origins=[settings.frontend_url])
app = FastAPI(title="LifeLine API", version="1.0.0", lifespan=lifespan)
app.state.services = services

app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.frontend_url],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

for module in (auth, donors, requests, donations, admin):
    app.include_router(module.router, prefix="/api")


@app.get("/api/health")
async def healthcheck() -> Dict[str, Any]:
    return {
        "status": "ok",
        "message": "LifeLine server is running",
        "connections": channels.connection_count,
        "push_configured": services.fanout.configured,
    }


@app.websocket("/ws")
async def live_updates(websocket: WebSocket) -> None:
    await websocket.accept()
    connection = WebSocketConnection(websocket)
    await channels.connect(connection)
    try:
        while True:
            message = await websocket.receive_json()
            if isinstance(message, dict) and message.get("event") in ("join", "joinLocation"):
                await channels.join(connection, message.get("data") or {})
    except WebSocketDisconnect:
        pass
    finally:
        await channels.disconnect(connection.id)


@sio.event
async def connect(sid, environ):  # pragma: no cover - socket handshake
    await channels.connect(SocketIOConnection(sio, sid))
    logger.info("New client connected: {}", sid)


@sio.event
async def join(sid, data):  # pragma: no cover - socket handshake
    joined = await channels.join(SocketIOConnection(sio, sid), data or {})
    logger.info("Client {} joined {}", sid, ", ".join(joined) or "nothing")


@sio.on("joinLocation")
async def join_location(sid, data):  # pragma: no cover - socket handshake
    await channels.join(SocketIOConnection(sio, sid), data or {})


@sio.event
async def disconnect(sid):  # pragma: no cover - socket handshake
    await channels.disconnect(f"sio:{sid}")
    logger.info("Client disconnected: {}", sid)


socket_app = socketio.ASGIApp(sio, other_asgi_app=app)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("lifeline.main:socket_app", host="0.0.0.0", port=5000)
