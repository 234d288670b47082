"""API v1 router aggregator."""

from fastapi import APIRouter

from elearning.api.v1.endpoints import chat, websocket_chat

api_router = APIRouter(prefix="/api/v1")

api_router.include_router(chat.router)
api_router.include_router(websocket_chat.router)

__all__ = ["api_router"]
