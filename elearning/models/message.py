"""Message model for chat messages and their per-user side tables."""

import enum

from sqlalchemy import (
    Column,
    Integer,
    String,
    Text,
    Boolean,
    TIMESTAMP,
    ForeignKey,
    Index,
    UniqueConstraint,
    CheckConstraint,
)
from sqlalchemy.orm import relationship
from ..database import Base
from ..utils.clock import utcnow


class MessageType(str, enum.Enum):
    TEXT = "text"
    IMAGE = "image"
    FILE = "file"
    SYSTEM = "system"


class MessagePriority(str, enum.Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


class ReactionEmoji(str, enum.Enum):
    """The fixed set of reactions a participant may leave on a message."""

    THUMBS_UP = "👍"
    HEART = "❤️"
    SMILE = "😊"
    LAUGH = "😂"
    SURPRISED = "😮"
    SAD = "😢"
    ANGRY = "😡"


class Message(Base):
    """Model for a message inside a conversation."""

    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, index=True)

    # Foreign Keys
    conversation_id = Column(
        Integer,
        ForeignKey("conversations.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    sender_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    reply_to_id = Column(
        Integer,
        ForeignKey("messages.id", ondelete="SET NULL"),
        nullable=True
    )

    # Message Content
    content = Column(Text, nullable=False)
    message_type = Column(String(20), nullable=False, default=MessageType.TEXT.value)
    priority = Column(String(20), nullable=False, default=MessagePriority.NORMAL.value)

    # Edit / delete state
    is_edited = Column(Boolean, default=False, nullable=False)
    is_deleted = Column(Boolean, default=False, nullable=False, index=True)
    deleted_at = Column(TIMESTAMP, nullable=True)
    # Bumped on every content/delete write; edits are conditional on it
    version = Column(Integer, default=1, nullable=False)

    # Timestamps (application-assigned so ordering keeps sub-second precision)
    created_at = Column(TIMESTAMP, default=utcnow, nullable=False, index=True)
    updated_at = Column(TIMESTAMP, default=utcnow, onupdate=utcnow)

    # Constraints & Indexes
    __table_args__ = (
        CheckConstraint(
            "message_type IN ('text', 'image', 'file', 'system')",
            name="check_message_type"
        ),
        CheckConstraint(
            "priority IN ('low', 'normal', 'high', 'urgent')",
            name="check_message_priority"
        ),
        Index('idx_message_conversation_created', 'conversation_id', 'created_at'),
        Index('idx_message_conversation_deleted', 'conversation_id', 'is_deleted', 'created_at'),
        Index('idx_message_sender_created', 'sender_id', 'created_at'),
    )

    # Relationships
    conversation = relationship(
        "Conversation",
        back_populates="messages",
        foreign_keys=[conversation_id]
    )
    sender = relationship("User", foreign_keys=[sender_id])
    reply_to = relationship("Message", remote_side=[id], foreign_keys=[reply_to_id])
    attachments = relationship(
        "MessageAttachment",
        back_populates="message",
        cascade="all, delete-orphan"
    )
    read_by = relationship(
        "MessageRead",
        back_populates="message",
        order_by="MessageRead.read_at",
        cascade="all, delete-orphan"
    )
    edit_history = relationship(
        "MessageEdit",
        back_populates="message",
        order_by="MessageEdit.id",
        cascade="all, delete-orphan"
    )
    reactions = relationship(
        "MessageReaction",
        back_populates="message",
        order_by="MessageReaction.id",
        cascade="all, delete-orphan"
    )

    def is_read_by_user(self, user_id: int) -> bool:
        return any(receipt.user_id == user_id for receipt in self.read_by)


class MessageAttachment(Base):
    """File attached to a message; rows are written by the upload service."""

    __tablename__ = "message_attachments"

    id = Column(Integer, primary_key=True, index=True)
    message_id = Column(
        Integer,
        ForeignKey("messages.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    file_name = Column(String(255), nullable=False)
    original_name = Column(String(255))
    mime_type = Column(String(100), nullable=False)
    size = Column(Integer, nullable=False)
    url = Column(String(500), nullable=False)
    uploaded_at = Column(TIMESTAMP, default=utcnow)

    message = relationship("Message", back_populates="attachments")


class MessageRead(Base):
    """Read receipt: at most one per (message, user)."""

    __tablename__ = "message_reads"

    id = Column(Integer, primary_key=True, index=True)
    message_id = Column(
        Integer,
        ForeignKey("messages.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    user_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    read_at = Column(TIMESTAMP, default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint('message_id', 'user_id', name='uq_message_read_user'),
    )

    message = relationship("Message", back_populates="read_by")


class MessageEdit(Base):
    """Previous content of an edited message."""

    __tablename__ = "message_edits"

    id = Column(Integer, primary_key=True, index=True)
    message_id = Column(
        Integer,
        ForeignKey("messages.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    content = Column(Text, nullable=False)
    edited_at = Column(TIMESTAMP, default=utcnow, nullable=False)

    message = relationship("Message", back_populates="edit_history")


class MessageReaction(Base):
    """Emoji reaction: at most one per (message, user), replaced on re-react."""

    __tablename__ = "message_reactions"

    id = Column(Integer, primary_key=True, index=True)
    message_id = Column(
        Integer,
        ForeignKey("messages.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    user_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    emoji = Column(String(16), nullable=False)
    reacted_at = Column(TIMESTAMP, default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint('message_id', 'user_id', name='uq_message_reaction_user'),
    )

    message = relationship("Message", back_populates="reactions")
    user = relationship("User")
