"""WebSocket endpoint for real-time chat."""

import json
import logging
from typing import Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from elearning.api.deps import get_user_from_token
from elearning.crud import crud_conversation
from elearning.database import SessionLocal
from elearning.services.realtime import registry

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/ws",
    tags=["WebSocket Chat"],
)


def _load_user(token: str):
    db = SessionLocal()
    try:
        user = get_user_from_token(token, db)
        if user is None:
            return None
        return {"id": user.id, "name": user.name}
    finally:
        db.close()


def _is_participant(conversation_id: int, user_id: int) -> bool:
    db = SessionLocal()
    try:
        conversation = crud_conversation.get(db, conversation_id)
        return bool(conversation and conversation.is_participant(user_id))
    finally:
        db.close()


def _conversation_id(frame: dict) -> Optional[int]:
    value = frame.get("conversation_id")
    if isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


async def _broadcast_online_users() -> None:
    await registry.broadcast({"type": "online_users", "online_users": registry.online_user_ids()})


async def _handle_frame(websocket: WebSocket, user: dict, frame: dict) -> None:
    frame_type = frame.get("type")

    if frame_type == "ping":
        # Heartbeat
        await websocket.send_json({"type": "pong"})
        return

    if frame_type not in ("join_conversation", "leave_conversation", "typing"):
        await websocket.send_json({"type": "error", "message": f"Unknown event type: {frame_type}"})
        return

    conversation_id = _conversation_id(frame)
    if conversation_id is None:
        await websocket.send_json({"type": "error", "message": "conversation_id is required"})
        return

    if frame_type == "join_conversation":
        if not _is_participant(conversation_id, user["id"]):
            await websocket.send_json({
                "type": "error",
                "message": "You do not have access to this conversation",
                "conversation_id": conversation_id,
            })
            return
        registry.join_room(websocket, conversation_id)
        logger.info(f"[WS] User {user['id']} joined conversation {conversation_id}")
        await websocket.send_json({"type": "joined_conversation", "conversation_id": conversation_id})

    elif frame_type == "leave_conversation":
        registry.leave_room(websocket, conversation_id)

    else:
        # Typing indicators only reach rooms the sender has joined
        if websocket not in registry.room_members(conversation_id):
            await websocket.send_json({
                "type": "error",
                "message": "Join the conversation before sending typing events",
                "conversation_id": conversation_id,
            })
            return
        is_typing = bool(frame.get("is_typing", True))
        await registry.broadcast_to_room(
            conversation_id,
            {
                "type": "user_typing" if is_typing else "user_stop_typing",
                "conversation_id": conversation_id,
                "user_id": user["id"],
                "user_name": user["name"],
                "is_typing": is_typing,
            },
            exclude=websocket,
        )


@router.websocket("/chat")
async def websocket_endpoint(
    websocket: WebSocket,
    token: str = None,
):
    """
    WebSocket endpoint for real-time chat.

    Query parameters:
    - token: JWT token for authentication

    Client frames (JSON):
    - ``{"type": "ping"}``
    - ``{"type": "join_conversation", "conversation_id": 1}``
    - ``{"type": "leave_conversation", "conversation_id": 1}``
    - ``{"type": "typing", "conversation_id": 1, "is_typing": true}``

    Messages themselves are sent over the REST API; the socket receives
    ``new_message``, ``message_edited``, ``message_deleted``,
    ``reaction_update`` and ``read_receipt`` events for the user's conversations.
    """
    if not token:
        await websocket.close(code=1008, reason="Token required")
        return

    user = _load_user(token)
    if user is None:
        await websocket.close(code=1008, reason="Invalid token")
        return

    await registry.connect(websocket, user["id"])

    try:
        # Send connection confirmation
        await websocket.send_json({
            "type": "connection",
            "message": "Connected to chat",
            "user_id": user["id"],
        })
        await _broadcast_online_users()

        # Listen for frames
        while True:
            data = await websocket.receive_text()

            try:
                frame = json.loads(data)
            except json.JSONDecodeError:
                await websocket.send_json({
                    "type": "error",
                    "message": "Invalid JSON format"
                })
                continue

            if not isinstance(frame, dict):
                await websocket.send_json({"type": "error", "message": "Event must be a JSON object"})
                continue

            await _handle_frame(websocket, user, frame)

    except WebSocketDisconnect:
        pass
    finally:
        registry.disconnect(websocket)
        await _broadcast_online_users()
