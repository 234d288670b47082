"""Connection registry for real-time chat delivery.

Delivery is best effort: events go to whatever sockets are open at the time
and are dropped otherwise. Clients treat them as hints and reload state over
HTTP; the database stays the source of truth.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional, Set

from fastapi import WebSocket

logger = logging.getLogger(__name__)


class ConnectionRegistry:
    """Tracks open WebSocket connections per user and per conversation room.

    Entries are created by ``connect``/``join_room`` and removed by
    ``disconnect``; nothing outside this class touches the maps directly.
    Only code running on the event loop may read or change them, so HTTP
    routes that read the registry are ``async def``.
    """

    def __init__(self):
        # user_id -> open sockets (a user may have several tabs/devices)
        self._user_connections: Dict[int, Set[WebSocket]] = {}
        # socket -> user_id
        self._socket_users: Dict[WebSocket, int] = {}
        # conversation_id -> sockets that joined the room
        self._rooms: Dict[int, Set[WebSocket]] = {}

    async def connect(self, websocket: WebSocket, user_id: int) -> None:
        """Accept a socket and register it for the user."""
        await websocket.accept()
        self._user_connections.setdefault(user_id, set()).add(websocket)
        self._socket_users[websocket] = user_id
        logger.info(f"[WS] User {user_id} connected ({len(self._user_connections[user_id])} open)")

    def disconnect(self, websocket: WebSocket) -> Optional[int]:
        """Forget a socket everywhere. Returns the user it belonged to."""
        user_id = self._socket_users.pop(websocket, None)
        if user_id is not None:
            sockets = self._user_connections.get(user_id)
            if sockets is not None:
                sockets.discard(websocket)
                if not sockets:
                    del self._user_connections[user_id]
        for conversation_id in [cid for cid, members in self._rooms.items() if websocket in members]:
            self.leave_room(websocket, conversation_id)
        if user_id is not None:
            logger.info(f"[WS] User {user_id} disconnected")
        return user_id

    def is_online(self, user_id: int) -> bool:
        return bool(self._user_connections.get(user_id))

    def online_user_ids(self) -> List[int]:
        return sorted(self._user_connections)

    def user_for(self, websocket: WebSocket) -> Optional[int]:
        return self._socket_users.get(websocket)

    def join_room(self, websocket: WebSocket, conversation_id: int) -> None:
        self._rooms.setdefault(conversation_id, set()).add(websocket)

    def leave_room(self, websocket: WebSocket, conversation_id: int) -> None:
        members = self._rooms.get(conversation_id)
        if members is None:
            return
        members.discard(websocket)
        if not members:
            del self._rooms[conversation_id]

    def room_members(self, conversation_id: int) -> Set[WebSocket]:
        return set(self._rooms.get(conversation_id, set()))

    async def _send(self, websocket: WebSocket, event: Dict[str, Any]) -> bool:
        try:
            await websocket.send_json(event)
            return True
        except Exception as e:
            logger.warning(f"[WS] Dropping connection after failed send: {type(e).__name__}: {e}")
            self.disconnect(websocket)
            return False

    async def notify(self, user_id: int, event: Dict[str, Any]) -> int:
        """Send an event to every open socket of a user. Returns deliveries made."""
        delivered = 0
        for websocket in list(self._user_connections.get(user_id, set())):
            if await self._send(websocket, event):
                delivered += 1
        return delivered

    async def notify_users(self, user_ids: Iterable[int], event: Dict[str, Any]) -> int:
        delivered = 0
        for user_id in set(user_ids):
            delivered += await self.notify(user_id, event)
        return delivered

    async def broadcast_to_room(
        self,
        conversation_id: int,
        event: Dict[str, Any],
        exclude: Optional[WebSocket] = None,
    ) -> int:
        """Send an event to every socket in a conversation room."""
        delivered = 0
        for websocket in self.room_members(conversation_id):
            if websocket is exclude:
                continue
            if await self._send(websocket, event):
                delivered += 1
        return delivered

    async def broadcast(self, event: Dict[str, Any]) -> None:
        for websocket in list(self._socket_users):
            await self._send(websocket, event)


# Process-wide registry; state is rebuilt as clients reconnect
registry = ConnectionRegistry()


async def push_to_participants(user_ids: Iterable[int], event: Dict[str, Any]) -> None:
    """Background-task entry point for REST mutations. Never raises."""
    try:
        delivered = await registry.notify_users(user_ids, event)
        logger.debug(f"[WS] Event {event.get('type')} delivered to {delivered} connection(s)")
    except Exception:
        logger.warning(f"[WS] Failed to push event {event.get('type')}", exc_info=True)
