"""
SQLAlchemy Models for the e-learning chat backend
"""

from ..database import Base
from .user import User
from .course import Course
from .lesson import Lesson
from .conversation import Conversation, ParticipantRole
from .message import (
    Message,
    MessageAttachment,
    MessageRead,
    MessageEdit,
    MessageReaction,
    MessageType,
    MessagePriority,
    ReactionEmoji,
)

# Export all models
__all__ = [
    "Base",
    "User",
    "Course",
    "Lesson",
    "Conversation",
    "ParticipantRole",
    "Message",
    "MessageAttachment",
    "MessageRead",
    "MessageEdit",
    "MessageReaction",
    "MessageType",
    "MessagePriority",
    "ReactionEmoji",
]
