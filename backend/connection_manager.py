from contextlib import asynccontextmanager
from dataclasses import dataclass
from fastapi import WebSocket
from typing import Dict, Set
import json
import logging

logger = logging.getLogger(__name__)

PHASE_UPDATE = "phase_update"
RESULTS_READY = "results_ready"
GAME_FINISHED = "game_finished"
PLAYER_JOINED = "player_joined"
PLAYER_READY = "player_ready"
SETTINGS_UPDATED = "settings_updated"
ROOM_RESET = "room_reset"


def room_channel(room_id: str) -> str:
    """Roster and readiness changes."""
    return f"room-{room_id}"

def phase_channel(room_id: str) -> str:
    """Battle phase transitions."""
    return f"room-phase-{room_id}"


@dataclass(eq=False)
class Subscription:
    websocket: WebSocket
    channel: str


class ConnectionManager:
    def __init__(self):
        # Channel name -> Set of subscriptions
        self.active_connections: Dict[str, Set[Subscription]] = {}

    @asynccontextmanager
    async def subscribe(self, websocket: WebSocket, channel: str):
        """Accept the socket and keep it on ``channel`` until the block exits."""
        await websocket.accept()
        subscription = Subscription(websocket, channel)
        self.active_connections.setdefault(channel, set()).add(subscription)
        try:
            yield subscription
        finally:
            self.release(subscription)

    def release(self, subscription: Subscription):
        subscribers = self.active_connections.get(subscription.channel)
        if subscribers is None:
            return
        subscribers.discard(subscription)
        if not subscribers:
            del self.active_connections[subscription.channel]

    def subscriber_count(self, channel: str) -> int:
        return len(self.active_connections.get(channel, ()))

    async def broadcast(self, channel: str, event: str, payload: dict):
        message = json.dumps({"type": "broadcast", "event": event, "payload": payload})
        # Copy so failed sockets can be released while iterating
        for subscription in list(self.active_connections.get(channel, ())):
            try:
                await subscription.websocket.send_text(message)
            except Exception as e:
                logger.info("Dropping dead socket on %s: %s", channel, e)
                self.release(subscription)

manager = ConnectionManager()
