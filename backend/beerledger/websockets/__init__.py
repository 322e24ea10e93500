"""Forwards domain events to websocket clients watching a game."""

import asyncio
import logging
from typing import Dict, Optional

from fastapi import WebSocket
from fastapi.websockets import WebSocketState

from ..schemas.events import DomainEvent
from ..services.notifications import EventBus

logger = logging.getLogger(__name__)


class ConnectionManager:
    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self.active_connections: Dict[str, Dict[str, WebSocket]] = {}
        self.loop = loop

    async def connect(self, websocket: WebSocket, game_id: str, client_id: str):
        await websocket.accept()
        self.active_connections.setdefault(game_id, {})[client_id] = websocket
        if self.loop is None:
            self.loop = asyncio.get_running_loop()

    def disconnect(self, game_id: str, client_id: str):
        connections = self.active_connections.get(game_id)
        if connections and client_id in connections:
            del connections[client_id]
            if not connections:
                del self.active_connections[game_id]

    def connection_count(self, game_id: str) -> int:
        return len(self.active_connections.get(game_id, {}))

    async def broadcast(self, message: dict, game_id: str, exclude_client_id: Optional[str] = None):
        for client_id, websocket in list(self.active_connections.get(game_id, {}).items()):
            if client_id == exclude_client_id:
                continue
            try:
                if websocket.client_state != WebSocketState.DISCONNECTED:
                    await websocket.send_json(message)
            except Exception as e:
                logger.error(f"Error broadcasting to {client_id}: {e}", exc_info=True)
                self.disconnect(game_id, client_id)

    def forward(self, event: DomainEvent) -> None:
        """EventBus subscriber: schedule a broadcast on the websocket event loop."""
        if event.game_id not in self.active_connections:
            return
        coro = self.broadcast(event.to_message(), event.game_id)
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is not None:
            running.create_task(coro)
        elif self.loop is not None and self.loop.is_running():
            asyncio.run_coroutine_threadsafe(coro, self.loop)
        else:
            coro.close()
            logger.debug("No event loop to forward %s for game %s", event.type.value, event.game_id)

    def attach(self, bus: EventBus):
        return bus.subscribe(self.forward)


manager = ConnectionManager()
