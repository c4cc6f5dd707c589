"""Topic-based fan-out of publisher messages to WebSocket clients."""

from __future__ import annotations

from collections import defaultdict
from typing import Any, Protocol

from fastapi import WebSocket, WebSocketDisconnect
from loguru import logger

from app.core.clock import Clock, now_ms

TOKEN_UPDATES_TOPIC = "token_updates"

PRICE_UPDATE = "price_update"
NEW_TOKEN = "new_token"
INITIAL_DATA = "initial_data"
PONG = "pong"

_SEND_ERRORS = (WebSocketDisconnect, RuntimeError, ConnectionError)


class PushChannel(Protocol):
    def subscriber_count(self, topic: str = TOKEN_UPDATES_TOPIC) -> int: ...

    async def publish(self, topic: str, message_type: str, data: Any) -> int: ...


def build_message(message_type: str, data: Any, *, timestamp: int) -> dict[str, Any]:
    return {"type": message_type, "data": data, "timestamp": timestamp}


class WebSocketHub:
    """Tracks connected sockets and their topic subscriptions.

    A socket that fails a send is treated as gone and removed from every topic.
    """

    def __init__(self, *, clock: Clock = now_ms) -> None:
        self._clock = clock
        self._connections: set[WebSocket] = set()
        self._topics: dict[str, set[WebSocket]] = defaultdict(set)

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    def subscriber_count(self, topic: str = TOKEN_UPDATES_TOPIC) -> int:
        return len(self._topics.get(topic, ()))

    async def connect(self, websocket: WebSocket) -> None:
        await websocket.accept()
        self._connections.add(websocket)
        logger.info("WebSocket connected; total={}", len(self._connections))

    def disconnect(self, websocket: WebSocket) -> None:
        self._connections.discard(websocket)
        for topic, members in list(self._topics.items()):
            members.discard(websocket)
            if not members:
                del self._topics[topic]
        logger.info("WebSocket disconnected; total={}", len(self._connections))

    def subscribe(self, websocket: WebSocket, topic: str = TOKEN_UPDATES_TOPIC) -> None:
        self._topics[topic].add(websocket)
        logger.debug("WebSocket joined {}; subscribers={}", topic, self.subscriber_count(topic))

    def unsubscribe(self, websocket: WebSocket, topic: str = TOKEN_UPDATES_TOPIC) -> None:
        members = self._topics.get(topic)
        if members is None:
            return
        members.discard(websocket)
        if not members:
            del self._topics[topic]

    async def send(self, websocket: WebSocket, message_type: str, data: Any) -> bool:
        try:
            await websocket.send_json(build_message(message_type, data, timestamp=self._clock()))
        except _SEND_ERRORS as exc:
            logger.warning("Dropping WebSocket after failed send: {}", exc)
            self.disconnect(websocket)
            return False
        return True

    async def publish(self, topic: str, message_type: str, data: Any) -> int:
        """Send one message to every subscriber of ``topic``; returns deliveries."""

        delivered = 0
        for websocket in list(self._topics.get(topic, ())):
            if await self.send(websocket, message_type, data):
                delivered += 1
        logger.debug("Published {} to {} subscribers of {}", message_type, delivered, topic)
        return delivered

    async def handle_client_message(self, websocket: WebSocket, message: Any) -> None:
        if not isinstance(message, dict):
            message = {}
        action = message.get("action")
        topic = message.get("topic") or TOKEN_UPDATES_TOPIC
        if action == "subscribe":
            self.subscribe(websocket, topic)
        elif action == "unsubscribe":
            self.unsubscribe(websocket, topic)
        elif action == "ping":
            await self.send(websocket, PONG, None)
        else:
            logger.debug("Ignoring WebSocket message without a known action: {!r}", message)
