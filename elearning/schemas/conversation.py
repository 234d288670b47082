"""Pydantic schemas for Conversation."""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel

from elearning.models.conversation import ParticipantRole
from elearning.schemas.common import CourseSummary, Pagination, UserSummary


class ParticipantResponse(BaseModel):
    user_id: int
    role: ParticipantRole
    joined_at: Optional[datetime] = None
    last_seen_at: Optional[datetime] = None


class LastMessagePreview(BaseModel):
    id: int
    content: str
    sender_id: int
    message_type: str
    created_at: datetime


class ConversationResponse(BaseModel):
    """Conversation as seen by one of its participants."""
    id: int
    title: str
    course: Optional[CourseSummary] = None
    partner: Optional[UserSummary] = None
    participants: List[ParticipantResponse]
    last_message: Optional[LastMessagePreview] = None
    last_activity_at: Optional[datetime] = None
    unread_count: int = 0
    is_pinned: bool = False
    is_active: bool = True
    total_messages: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ConversationListResponse(BaseModel):
    """Response for listing conversations."""
    conversations: List[ConversationResponse]
    pagination: Pagination


class PinResponse(BaseModel):
    conversation_id: int
    is_pinned: bool


class OnlineUsersResponse(BaseModel):
    online_users: List[int]
