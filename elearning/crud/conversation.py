"""CRUD operations for Conversation.

Counters, pin flags, last-seen and last-message fields are only ever written
through single ``UPDATE`` statements so concurrent requests cannot lose
each other's changes.
"""

import logging
from typing import List, Optional, Tuple

from sqlalchemy import select, update, func, and_, or_, not_, exists
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, aliased, selectinload

from elearning.core.exceptions import ConflictException
from elearning.crud.base import CRUDBase
from elearning.models.conversation import (
    Conversation,
    ParticipantRole,
    DEFAULT_CONVERSATION_TITLE,
)
from elearning.models.course import Course
from elearning.models.message import Message, MessageRead
from elearning.models.user import User
from elearning.utils.clock import utcnow

logger = logging.getLogger(__name__)


def unread_messages_condition(conversation_id: int, user_id: int):
    """Visible messages from the other participant the user has no receipt for."""
    receipt = exists().where(
        MessageRead.message_id == Message.id,
        MessageRead.user_id == user_id,
    )
    return and_(
        Message.conversation_id == conversation_id,
        Message.sender_id != user_id,
        Message.is_deleted.is_(False),
        ~receipt,
    )


def _role_column(role: ParticipantRole, suffix: str):
    return getattr(Conversation, f"{role.value}_{suffix}")


class CRUDConversation(CRUDBase[Conversation]):
    """CRUD operations for Conversation."""

    def _find_between(
        self,
        db: Session,
        *,
        student_id: int,
        teacher_id: int,
        course_id: int,
        active_only: bool = True,
    ) -> Optional[Conversation]:
        stmt = select(Conversation).where(
            Conversation.course_id == course_id,
            or_(
                and_(Conversation.student_id == student_id, Conversation.teacher_id == teacher_id),
                and_(Conversation.student_id == teacher_id, Conversation.teacher_id == student_id),
            ),
        )
        if active_only:
            stmt = stmt.where(Conversation.is_active.is_(True))
        return db.scalars(stmt.order_by(Conversation.id).limit(1)).first()

    def find_or_create(
        self,
        db: Session,
        *,
        student_id: int,
        teacher_id: int,
        course_id: int
    ) -> Conversation:
        """Get the conversation for (student, teacher, course), creating it on first use.

        Concurrent callers converge on one row: the loser of the insert race hits
        the unique constraint, rolls back and reads the winner's row.
        """
        conversation = self._find_between(
            db, student_id=student_id, teacher_id=teacher_id, course_id=course_id
        )
        if conversation:
            return conversation

        conversation = Conversation(
            student_id=student_id,
            teacher_id=teacher_id,
            course_id=course_id,
            title=DEFAULT_CONVERSATION_TITLE,
        )
        try:
            db.add(conversation)
            db.commit()
        except IntegrityError:
            db.rollback()
            logger.info(
                f"[CHAT] Concurrent create for student={student_id} teacher={teacher_id} "
                f"course={course_id}; reusing existing conversation"
            )
            existing = self._find_between(
                db,
                student_id=student_id,
                teacher_id=teacher_id,
                course_id=course_id,
                active_only=False,
            )
            if existing is None:
                raise
            if not existing.is_active:
                raise ConflictException("This conversation has been closed")
            return existing

        db.refresh(conversation)
        logger.info(f"[CHAT] Created conversation {conversation.id} for course {course_id}")
        return conversation

    def _user_conversations_stmt(
        self,
        *,
        user_id: int,
        search: str = "",
        course_id: Optional[int] = None,
    ):
        student = aliased(User)
        teacher = aliased(User)
        stmt = (
            select(Conversation)
            .join(Course, Course.id == Conversation.course_id)
            .join(student, student.id == Conversation.student_id)
            .join(teacher, teacher.id == Conversation.teacher_id)
            .where(
                or_(Conversation.student_id == user_id, Conversation.teacher_id == user_id),
                Conversation.is_active.is_(True),
            )
        )
        if course_id is not None:
            stmt = stmt.where(Conversation.course_id == course_id)
        if search:
            pattern = f"%{escape_like(search)}%"
            stmt = stmt.where(
                or_(
                    student.name.ilike(pattern, escape="\\"),
                    teacher.name.ilike(pattern, escape="\\"),
                    Course.name.ilike(pattern, escape="\\"),
                    Conversation.title.ilike(pattern, escape="\\"),
                )
            )
        return stmt

    def count_user_conversations(
        self,
        db: Session,
        *,
        user_id: int,
        search: str = "",
        course_id: Optional[int] = None,
    ) -> int:
        stmt = self._user_conversations_stmt(user_id=user_id, search=search, course_id=course_id)
        return db.scalar(select(func.count()).select_from(stmt.subquery())) or 0

    def get_user_conversations(
        self,
        db: Session,
        *,
        user_id: int,
        page: int = 1,
        limit: int = 20,
        search: str = "",
        course_id: Optional[int] = None,
    ) -> Tuple[List[Conversation], int]:
        """Active conversations the user takes part in, most recent activity first."""
        stmt = self._user_conversations_stmt(user_id=user_id, search=search, course_id=course_id)

        total = self.count_user_conversations(
            db, user_id=user_id, search=search, course_id=course_id
        )

        stmt = (
            stmt.options(
                selectinload(Conversation.course),
                selectinload(Conversation.student),
                selectinload(Conversation.teacher),
                selectinload(Conversation.last_message),
            )
            .order_by(Conversation.last_activity_at.desc(), Conversation.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        return list(db.scalars(stmt).all()), total

    def update_last_seen(
        self,
        db: Session,
        *,
        conversation: Conversation,
        user_id: int,
        commit: bool = True,
    ) -> None:
        """Set the participant's last-seen timestamp to now."""
        role = conversation.get_user_role(user_id)
        if role is None:
            return
        db.execute(
            update(Conversation)
            .where(Conversation.id == conversation.id)
            .values({_role_column(role, "last_seen_at"): utcnow()})
            .execution_options(synchronize_session=False)
        )
        if commit:
            db.commit()

    def mark_as_read(
        self,
        db: Session,
        *,
        conversation: Conversation,
        user_id: int,
        commit: bool = True,
    ) -> None:
        """Reset the user's unread counter to the messages still lacking a receipt.

        Callers write the receipts first (``crud_message.mark_conversation_read``).
        The count is taken inside the ``UPDATE`` so a message sent after the
        receipts were chosen stays counted.
        """
        role = conversation.get_user_role(user_id)
        if role is None:
            return
        db.flush()
        unread = (
            select(func.count(Message.id))
            .where(unread_messages_condition(conversation.id, user_id))
            .scalar_subquery()
        )
        db.execute(
            update(Conversation)
            .where(Conversation.id == conversation.id)
            .values({_role_column(role, "unread_count"): unread})
            .execution_options(synchronize_session=False)
        )
        if commit:
            db.commit()

    def increment_unread_count(
        self,
        db: Session,
        *,
        conversation: Conversation,
        exclude_user_id: int,
        commit: bool = True,
    ) -> None:
        """Add one unread message for every role except the sender's."""
        values = {}
        for participant in conversation.participants:
            if participant["user_id"] != exclude_user_id:
                column = _role_column(participant["role"], "unread_count")
                values[column] = column + 1
        if not values:
            return
        db.execute(
            update(Conversation)
            .where(Conversation.id == conversation.id)
            .values(values)
            .execution_options(synchronize_session=False)
        )
        if commit:
            db.commit()

    def decrement_unread_count(
        self,
        db: Session,
        *,
        conversation_id: int,
        role: ParticipantRole,
    ) -> None:
        """Remove one unread message from a role's counter, never going below zero.

        Does not commit; callers run it inside their own write.
        """
        column = _role_column(role, "unread_count")
        db.execute(
            update(Conversation)
            .where(Conversation.id == conversation_id, column > 0)
            .values({column: column - 1})
            .execution_options(synchronize_session=False)
        )

    def toggle_pin(
        self,
        db: Session,
        *,
        conversation: Conversation,
        user_id: int,
    ) -> bool:
        """Flip the caller's pin flag and return the new value."""
        role = conversation.get_user_role(user_id)
        column = _role_column(role, "pinned")
        db.execute(
            update(Conversation)
            .where(Conversation.id == conversation.id)
            .values({column: not_(column)})
            .execution_options(synchronize_session=False)
        )
        db.commit()
        db.refresh(conversation)
        return conversation.is_pinned_for(role)

    def get_unread_count(
        self,
        db: Session,
        *,
        conversation: Conversation,
        user_id: int
    ) -> int:
        """Count messages from the other participant the user has no read receipt for.

        This is the value the cached per-role counter stands in for.
        """
        if not conversation.is_participant(user_id):
            return 0
        stmt = select(func.count(Message.id)).where(unread_messages_condition(conversation.id, user_id))
        return db.scalar(stmt) or 0


def escape_like(term: str) -> str:
    """Escape LIKE wildcards so user input matches literally."""
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


# Create instance
crud_conversation = CRUDConversation(Conversation)
