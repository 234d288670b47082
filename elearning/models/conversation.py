"""Conversation model for chat between a student and a course instructor."""

import enum
from typing import List, Optional

from sqlalchemy import (
    Column,
    Integer,
    String,
    Boolean,
    TIMESTAMP,
    ForeignKey,
    UniqueConstraint,
    CheckConstraint,
    Index,
)
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from ..database import Base
from ..utils.clock import utcnow


class ParticipantRole(str, enum.Enum):
    """Role a user holds inside a conversation."""

    STUDENT = "student"
    TEACHER = "teacher"

    @property
    def other(self) -> "ParticipantRole":
        if self is ParticipantRole.STUDENT:
            return ParticipantRole.TEACHER
        return ParticipantRole.STUDENT


DEFAULT_CONVERSATION_TITLE = "Course discussion"


def _lower_participant(context):
    params = context.get_current_parameters()
    return min(params["student_id"], params["teacher_id"])


def _higher_participant(context):
    params = context.get_current_parameters()
    return max(params["student_id"], params["teacher_id"])


class Conversation(Base):
    """Model for a conversation between one student and one teacher about a course.

    Participant data is stored per role (``student_*`` / ``teacher_*`` columns);
    ``participants`` exposes it as the two-entry list callers expect.
    """

    __tablename__ = "conversations"

    id = Column(Integer, primary_key=True, index=True)

    # Foreign Keys
    course_id = Column(
        Integer,
        ForeignKey("courses.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    student_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    teacher_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    # The participant pair in id order, whichever role each user holds
    participant_low_id = Column(Integer, nullable=False, default=_lower_participant)
    participant_high_id = Column(Integer, nullable=False, default=_higher_participant)

    # Participant metadata
    student_joined_at = Column(TIMESTAMP, default=utcnow)
    teacher_joined_at = Column(TIMESTAMP, default=utcnow)
    student_last_seen_at = Column(TIMESTAMP, default=utcnow)
    teacher_last_seen_at = Column(TIMESTAMP, default=utcnow)

    # Metadata
    title = Column(String(200), nullable=True)
    last_message_id = Column(
        Integer,
        ForeignKey("messages.id", ondelete="SET NULL", use_alter=True, name="fk_conversation_last_message"),
        nullable=True
    )
    last_activity_at = Column(TIMESTAMP, default=utcnow, index=True)
    is_active = Column(Boolean, default=True, nullable=False, index=True)
    total_messages = Column(Integer, default=0, nullable=False)

    # Per-role flags and counters
    student_pinned = Column(Boolean, default=False, nullable=False)
    teacher_pinned = Column(Boolean, default=False, nullable=False)
    student_unread_count = Column(Integer, default=0, nullable=False)
    teacher_unread_count = Column(Integer, default=0, nullable=False)

    # Timestamps
    created_at = Column(TIMESTAMP, server_default=func.now())
    updated_at = Column(TIMESTAMP, server_default=func.now(), onupdate=func.now())

    # Constraints
    __table_args__ = (
        # One conversation per participant pair and course, in either role order; backs find-or-create
        UniqueConstraint(
            'participant_low_id',
            'participant_high_id',
            'course_id',
            name='uq_conversation_participants_course'
        ),
        CheckConstraint('student_id <> teacher_id', name='check_conversation_distinct_participants'),
        CheckConstraint('student_unread_count >= 0', name='check_student_unread_non_negative'),
        CheckConstraint('teacher_unread_count >= 0', name='check_teacher_unread_non_negative'),
        Index('idx_conversation_student', 'student_id', 'last_activity_at'),
        Index('idx_conversation_teacher', 'teacher_id', 'last_activity_at'),
        Index('idx_conversation_course_active', 'course_id', 'is_active'),
    )

    # Relationships
    course = relationship("Course")
    student = relationship("User", foreign_keys=[student_id])
    teacher = relationship("User", foreign_keys=[teacher_id])
    last_message = relationship("Message", foreign_keys=[last_message_id], post_update=True)
    messages = relationship(
        "Message",
        back_populates="conversation",
        foreign_keys="Message.conversation_id",
        cascade="all, delete-orphan"
    )

    @property
    def participants(self) -> List[dict]:
        return [
            {
                "user_id": self.student_id,
                "role": ParticipantRole.STUDENT,
                "joined_at": self.student_joined_at,
                "last_seen_at": self.student_last_seen_at,
            },
            {
                "user_id": self.teacher_id,
                "role": ParticipantRole.TEACHER,
                "joined_at": self.teacher_joined_at,
                "last_seen_at": self.teacher_last_seen_at,
            },
        ]

    def is_participant(self, user_id: int) -> bool:
        return user_id in (self.student_id, self.teacher_id)

    def get_user_role(self, user_id: int) -> Optional[ParticipantRole]:
        if user_id == self.student_id:
            return ParticipantRole.STUDENT
        if user_id == self.teacher_id:
            return ParticipantRole.TEACHER
        return None

    def participant_id(self, role: ParticipantRole) -> int:
        return self.student_id if role is ParticipantRole.STUDENT else self.teacher_id

    def partner_id(self, user_id: int) -> Optional[int]:
        """User id of the other participant, or None for outsiders."""
        role = self.get_user_role(user_id)
        if role is None:
            return None
        return self.participant_id(role.other)

    def unread_count_for(self, role: ParticipantRole) -> int:
        return getattr(self, f"{role.value}_unread_count") or 0

    def is_pinned_for(self, role: ParticipantRole) -> bool:
        return bool(getattr(self, f"{role.value}_pinned"))
