"""Pydantic schemas for Message."""

from datetime import datetime
from typing import Annotated, List, Optional

from pydantic import BaseModel, ConfigDict, Field, StringConstraints

from elearning.config import settings
from elearning.models.message import MessagePriority, MessageType, ReactionEmoji
from elearning.schemas.common import Pagination, UserSummary


DELETED_MESSAGE_TEXT = "This message was deleted"

MessageContent = Annotated[
    str,
    StringConstraints(strip_whitespace=True, min_length=1, max_length=settings.MESSAGE_MAX_LENGTH),
]


class MessageCreate(BaseModel):
    """Schema for sending a new message."""
    content: MessageContent = Field(..., description="Message content, 1-2000 characters after trimming")
    message_type: MessageType = MessageType.TEXT
    reply_to: Optional[int] = Field(None, gt=0, description="ID of a message in the same conversation")
    priority: MessagePriority = MessagePriority.NORMAL

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "content": "Could you explain the second exercise again?",
            "message_type": "text",
            "reply_to": None,
        }
    })


class MessageUpdate(BaseModel):
    """Schema for editing a message."""
    content: MessageContent


class ReactionCreate(BaseModel):
    emoji: ReactionEmoji


class AttachmentResponse(BaseModel):
    id: int
    file_name: str
    original_name: Optional[str] = None
    mime_type: str
    size: int
    url: str
    uploaded_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class ReadReceiptResponse(BaseModel):
    user_id: int
    read_at: datetime

    model_config = ConfigDict(from_attributes=True)


class EditHistoryResponse(BaseModel):
    content: str
    edited_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ReactionResponse(BaseModel):
    user_id: int
    user_name: Optional[str] = None
    emoji: str
    reacted_at: datetime


class ReplyPreview(BaseModel):
    """The message a reply points at, trimmed for display."""
    id: int
    sender_id: Optional[int] = None
    content: str
    is_deleted: bool = False


class DeletedMessagePlaceholder(ReplyPreview):
    """Stands in for a reply target that was soft-deleted."""
    content: str = DELETED_MESSAGE_TEXT
    is_deleted: bool = True


def build_reply_preview(target) -> ReplyPreview:
    """Resolve a reply target to a live preview or a deleted placeholder."""
    if target.is_deleted:
        return DeletedMessagePlaceholder(id=target.id, sender_id=target.sender_id)
    return ReplyPreview(id=target.id, sender_id=target.sender_id, content=target.content)


class MessageResponse(BaseModel):
    """Schema for Message response."""
    id: int
    conversation_id: int
    sender: Optional[UserSummary] = None
    content: str
    message_type: MessageType
    priority: MessagePriority
    attachments: List[AttachmentResponse] = []
    reply_to: Optional[ReplyPreview] = None
    read_by: List[ReadReceiptResponse] = []
    edit_history: List[EditHistoryResponse] = []
    reactions: List[ReactionResponse] = []
    reaction_count: int = 0
    is_read: bool = False
    is_edited: bool = False
    is_deleted: bool = False
    deleted_at: Optional[datetime] = None
    created_at: datetime
    updated_at: Optional[datetime] = None


class MessageCursor(BaseModel):
    """Where a cursor-paged listing continues.

    ``next_before`` is the oldest timestamp on a ``before`` page and
    ``next_after`` the newest on an ``after`` page; an empty page echoes the
    cursor it was asked for.
    """
    next_before: Optional[datetime] = None
    next_after: Optional[datetime] = None
    has_more: bool = False


class MessageListResponse(BaseModel):
    """Response for listing messages: ``cursor`` for cursor requests, ``pagination`` otherwise."""
    messages: List[MessageResponse]
    pagination: Optional[Pagination] = None
    cursor: Optional[MessageCursor] = None


class MessageSearchResponse(MessageListResponse):
    pagination: Pagination
    search_term: str


class ReactionListResponse(BaseModel):
    message_id: int
    reactions: List[ReactionResponse]


class UnreadCountResponse(BaseModel):
    """Response for unread message count."""
    conversation_id: int
    unread_count: int
