from __future__ import annotations

import asyncio
import re
import time
from typing import Any, Dict, Iterable, List, Optional, Protocol, Set

import socketio
from fastapi import WebSocket
from loguru import logger

from ..database import settings


def user_channel(user_id: str) -> str:
    return f"user:{user_id}"


def normalize_city(city: str) -> str:
    return re.sub(r"\s+", "_", city.strip().lower())


def city_channel(city: str) -> str:
    return f"city:{normalize_city(city)}"


def blood_type_channel(blood_type: str) -> str:
    return f"bloodType:{blood_type.strip().upper()}"


class Connection(Protocol):
    id: str

    async def send(self, event: str, payload: Any) -> None: ...


class SocketIOConnection:
    def __init__(self, sio: socketio.AsyncServer, sid: str) -> None:
        self.sio = sio
        self.id = f"sio:{sid}"
        self.sid = sid

    async def send(self, event: str, payload: Any) -> None:
        await self.sio.emit(event, payload, to=self.sid)


class WebSocketConnection:
    def __init__(self, websocket: WebSocket) -> None:
        self.websocket = websocket
        self.id = f"ws:{id(websocket)}"

    async def send(self, event: str, payload: Any) -> None:
        await self.websocket.send_json({"event": event, "payload": payload})


class ChannelRouter:
    """Live-presence pub/sub over logical channels.

    Channels are ``user:<id>``, ``city:<name>`` and ``bloodType:<type>``.
    Delivery is to whoever is connected at publish time; nothing is queued
    for offline connections. A connection whose send fails or outlives
    ``send_timeout`` is torn down, so one stalled client cannot hold up a publish.
    """

    def __init__(self, heartbeat_interval: float | None = None, send_timeout: float | None = None) -> None:
        self.heartbeat_interval = (
            heartbeat_interval if heartbeat_interval is not None else settings.heartbeat_interval_seconds
        )
        self.send_timeout = send_timeout if send_timeout is not None else settings.realtime_send_timeout_seconds
        self._connections: Dict[str, Connection] = {}
        self._channels: Dict[str, Set[str]] = {}
        self._memberships: Dict[str, Set[str]] = {}
        self._lock = asyncio.Lock()
        self._heartbeat: Optional[asyncio.Task] = None

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    def members(self, channel: str) -> Set[str]:
        return set(self._channels.get(channel, ()))

    def subscriptions(self, connection_id: str) -> Set[str]:
        return set(self._memberships.get(connection_id, ()))

    async def connect(self, connection: Connection) -> None:
        async with self._lock:
            self._connections[connection.id] = connection
            self._memberships.setdefault(connection.id, set())

    async def subscribe(self, connection: Connection, channel: str) -> None:
        async with self._lock:
            self._connections.setdefault(connection.id, connection)
            self._memberships.setdefault(connection.id, set()).add(channel)
            self._channels.setdefault(channel, set()).add(connection.id)
        logger.debug("{} joined {}", connection.id, channel)

    async def unsubscribe(self, connection_id: str, channel: str) -> None:
        async with self._lock:
            self._memberships.get(connection_id, set()).discard(channel)
            self._drop_member(channel, connection_id)

    async def disconnect(self, connection_id: str) -> None:
        async with self._lock:
            self._connections.pop(connection_id, None)
            for channel in self._memberships.pop(connection_id, set()):
                self._drop_member(channel, connection_id)

    def _drop_member(self, channel: str, connection_id: str) -> None:
        members = self._channels.get(channel)
        if members is None:
            return
        members.discard(connection_id)
        if not members:
            del self._channels[channel]

    async def publish(self, channel: str, event: str, payload: Any) -> int:
        return await self.publish_many([channel], event, payload)

    async def publish_many(self, channels: Iterable[str], event: str, payload: Any) -> int:
        """Deliver once to every connection subscribed to any of ``channels``."""
        targets: Set[str] = set()
        for channel in channels:
            targets |= self._channels.get(channel, set())
        return await self._deliver(targets, event, payload)

    async def broadcast_all(self, event: str, payload: Any) -> int:
        return await self._deliver(set(self._connections), event, payload)

    async def _deliver(self, connection_ids: Set[str], event: str, payload: Any) -> int:
        recipients: List[Connection] = [
            self._connections[cid] for cid in connection_ids if cid in self._connections
        ]
        if not recipients:
            return 0
        results = await asyncio.gather(
            *(asyncio.wait_for(connection.send(event, payload), self.send_timeout) for connection in recipients),
            return_exceptions=True,
        )
        delivered = 0
        for connection, result in zip(recipients, results):
            if isinstance(result, asyncio.TimeoutError):
                logger.warning("Dropping connection {}: {} not sent within {}s", connection.id, event, self.send_timeout)
                await self.disconnect(connection.id)
            elif isinstance(result, Exception):
                logger.warning("Dropping connection {} after send failure: {}", connection.id, result)
                await self.disconnect(connection.id)
            else:
                delivered += 1
        return delivered

    async def ping(self) -> int:
        return await self.broadcast_all("ping", {"timestamp": int(time.time() * 1000)})

    async def _heartbeat_loop(self) -> None:
        while True:
            await asyncio.sleep(self.heartbeat_interval)
            try:
                await self.ping()
            except Exception as exc:  # pragma: no cover - keep the loop alive
                logger.error("Heartbeat failed: {}", exc)

    def start(self) -> None:
        if self._heartbeat is None or self._heartbeat.done():
            self._heartbeat = asyncio.create_task(self._heartbeat_loop())

    async def shutdown(self) -> None:
        if self._heartbeat is not None:
            self._heartbeat.cancel()
            try:
                await self._heartbeat
            except asyncio.CancelledError:
                pass
            self._heartbeat = None
        async with self._lock:
            self._connections.clear()
            self._channels.clear()
            self._memberships.clear()

    async def join(self, connection: Connection, data: Dict[str, Any]) -> List[str]:
        """Handle a client ``join``/``joinLocation`` message; returns the channels joined."""
        joined: List[str] = []
        user_id = data.get("userId")
        if user_id:
            joined.append(user_channel(str(user_id)))
        city = data.get("city")
        if city:
            joined.append(city_channel(str(city)))
        blood_type = data.get("bloodType")
        if blood_type:
            joined.append(blood_type_channel(str(blood_type)))
        for channel in joined:
            await self.subscribe(connection, channel)
        return joined
