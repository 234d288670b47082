"""CRUD operations for Message: send, edit, soft delete, receipts, reactions, listing."""

import logging
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

from sqlalchemy import select, update, delete, func, exists
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from elearning.config import settings
from elearning.core.exceptions import (
    AuthorizationException,
    ConflictException,
    NotFoundException,
    StaleMessageException,
    ValidationException,
)
from elearning.crud.base import CRUDBase
from elearning.crud.conversation import unread_messages_condition, crud_conversation, escape_like
from elearning.models.conversation import Conversation
from elearning.models.message import (
    Message,
    MessageEdit,
    MessagePriority,
    MessageReaction,
    MessageRead,
    MessageType,
    ReactionEmoji,
)
from elearning.models.user import User
from elearning.schemas.message import ReplyPreview, build_reply_preview
from elearning.utils.clock import utcnow

logger = logging.getLogger(__name__)

MESSAGE_NOT_FOUND = "Message not found"


def _with_details(stmt):
    return stmt.options(
        selectinload(Message.sender),
        selectinload(Message.reply_to),
        selectinload(Message.attachments),
        selectinload(Message.read_by),
        selectinload(Message.edit_history),
        selectinload(Message.reactions).selectinload(MessageReaction.user),
    )


class CRUDMessage(CRUDBase[Message]):
    """CRUD operations for Message."""

    def get_with_details(self, db: Session, message_id: int) -> Optional[Message]:
        stmt = _with_details(select(Message).where(Message.id == message_id))
        return db.scalars(stmt).first()

    def resolve_reply(self, message: Message) -> Optional[ReplyPreview]:
        """The message replied to, or a placeholder if it has since been deleted."""
        target = message.reply_to
        if target is None:
            return None
        return build_reply_preview(target)

    def send(
        self,
        db: Session,
        *,
        conversation: Conversation,
        sender_id: int,
        content: str,
        message_type: MessageType = MessageType.TEXT,
        reply_to_id: Optional[int] = None,
        priority: MessagePriority = MessagePriority.NORMAL,
    ) -> Message:
        """Append a message and update the conversation in the same transaction.

        The conversation's last message, last activity, message total and the
        recipient's unread counter are written with one atomic ``UPDATE``.
        """
        if reply_to_id is not None:
            target = db.get(Message, reply_to_id)
            if target is None:
                raise NotFoundException("Replied-to message not found")
            if target.conversation_id != conversation.id:
                raise ValidationException("Replied-to message belongs to another conversation")

        now = utcnow()
        message = Message(
            conversation_id=conversation.id,
            sender_id=sender_id,
            content=content,
            message_type=MessageType(message_type).value,
            priority=MessagePriority(priority).value,
            reply_to_id=reply_to_id,
            created_at=now,
            updated_at=now,
        )
        try:
            db.add(message)
            db.flush()

            db.execute(
                update(Conversation)
                .where(Conversation.id == conversation.id)
                .values(
                    last_message_id=message.id,
                    last_activity_at=now,
                    total_messages=Conversation.total_messages + 1,
                )
                .execution_options(synchronize_session=False)
            )
            crud_conversation.increment_unread_count(
                db, conversation=conversation, exclude_user_id=sender_id, commit=False
            )
            db.commit()
        except Exception:
            db.rollback()
            raise

        db.refresh(message)
        logger.info(f"[CHAT] Message {message.id} sent to conversation {conversation.id} by user {sender_id}")
        return message

    def edit(
        self,
        db: Session,
        *,
        message: Message,
        editor_id: int,
        content: str,
        now: Optional[datetime] = None,
    ) -> Message:
        """Replace the content of a message, keeping the previous text in its history.

        Only the sender may edit, and only within the configured edit window.
        The write is conditional on the version the caller loaded; if another
        edit or a delete committed first the edit is rejected.
        """
        if message.is_deleted:
            raise NotFoundException(MESSAGE_NOT_FOUND)
        if message.sender_id != editor_id:
            raise AuthorizationException("You can only edit your own messages")

        now = now or utcnow()
        window = timedelta(minutes=settings.MESSAGE_EDIT_WINDOW_MINUTES)
        if now - message.created_at > window:
            raise ConflictException(
                f"Messages can only be edited within {settings.MESSAGE_EDIT_WINDOW_MINUTES} minutes"
            )

        if content == message.content:
            return message

        previous_content = message.content
        seen_version = message.version
        try:
            result = db.execute(
                update(Message)
                .where(
                    Message.id == message.id,
                    Message.version == seen_version,
                    Message.is_deleted.is_(False),
                )
                .values(
                    content=content,
                    is_edited=True,
                    version=Message.version + 1,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                db.rollback()
                logger.warning(f"[CHAT] Edit of message {message.id} lost to a concurrent write")
                raise StaleMessageException()

            db.add(MessageEdit(message_id=message.id, content=previous_content, edited_at=now))
            db.commit()
        except StaleMessageException:
            raise
        except Exception:
            db.rollback()
            raise

        db.refresh(message)
        return message

    def soft_delete(
        self,
        db: Session,
        *,
        message: Message,
        user: User,
    ) -> Message:
        """Mark a message deleted; allowed for its sender and administrators.

        The row stays in place so replies can still resolve it. The conversation's
        last message pointer moves back to the newest remaining message, its
        ``total_messages`` drops to match the visible count, and the recipient's
        unread counter drops if they never read it.
        """
        if message.is_deleted:
            raise NotFoundException(MESSAGE_NOT_FOUND)
        if message.sender_id != user.id and not user.is_admin:
            raise AuthorizationException("You are not allowed to delete this message")

        conversation = db.get(Conversation, message.conversation_id)
        now = utcnow()
        try:
            result = db.execute(
                update(Message)
                .where(Message.id == message.id, Message.is_deleted.is_(False))
                .values(
                    is_deleted=True,
                    deleted_at=now,
                    version=Message.version + 1,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                db.rollback()
                raise NotFoundException(MESSAGE_NOT_FOUND)

            db.execute(
                update(Conversation)
                .where(Conversation.id == conversation.id, Conversation.total_messages > 0)
                .values(total_messages=Conversation.total_messages - 1)
                .execution_options(synchronize_session=False)
            )

            recipient_id = conversation.partner_id(message.sender_id)
            if recipient_id is not None and not self._has_receipt(db, message.id, recipient_id):
                crud_conversation.decrement_unread_count(
                    db,
                    conversation_id=conversation.id,
                    role=conversation.get_user_role(recipient_id),
                )

            if conversation.last_message_id == message.id:
                previous = db.scalars(
                    select(Message.id)
                    .where(
                        Message.conversation_id == conversation.id,
                        Message.id != message.id,
                        Message.is_deleted.is_(False),
                    )
                    .order_by(Message.created_at.desc(), Message.id.desc())
                    .limit(1)
                ).first()
                db.execute(
                    update(Conversation)
                    .where(
                        Conversation.id == conversation.id,
                        Conversation.last_message_id == message.id,
                    )
                    .values(last_message_id=previous)
                    .execution_options(synchronize_session=False)
                )
            db.commit()
        except NotFoundException:
            raise
        except Exception:
            db.rollback()
            raise

        db.refresh(message)
        logger.info(f"[CHAT] Message {message.id} deleted by user {user.id}")
        return message

    def _has_receipt(self, db: Session, message_id: int, user_id: int) -> bool:
        stmt = select(
            exists().where(MessageRead.message_id == message_id, MessageRead.user_id == user_id)
        )
        return bool(db.scalar(stmt))

    def mark_read_by(
        self,
        db: Session,
        *,
        message: Message,
        user_id: int,
    ) -> bool:
        """Record that a user read a message. Returns False if already recorded."""
        if message.is_deleted:
            raise NotFoundException(MESSAGE_NOT_FOUND)
        if self._has_receipt(db, message.id, user_id):
            return False

        conversation = db.get(Conversation, message.conversation_id)
        try:
            db.add(MessageRead(message_id=message.id, user_id=user_id, read_at=utcnow()))
            role = conversation.get_user_role(user_id)
            if role is not None and user_id != message.sender_id:
                crud_conversation.decrement_unread_count(
                    db, conversation_id=conversation.id, role=role
                )
            db.commit()
        except IntegrityError:
            db.rollback()
            return False
        return True

    def mark_conversation_read(
        self,
        db: Session,
        *,
        conversation: Conversation,
        user_id: int,
    ) -> int:
        """Write receipts for every unread message from the other participant and reset
        the user's unread counter. Returns the number of new receipts."""
        for attempt in range(2):
            unread_ids = list(db.scalars(
                select(Message.id).where(unread_messages_condition(conversation.id, user_id))
            ).all())

            now = utcnow()
            try:
                db.add_all(
                    [MessageRead(message_id=message_id, user_id=user_id, read_at=now) for message_id in unread_ids]
                )
                crud_conversation.mark_as_read(db, conversation=conversation, user_id=user_id, commit=False)
                crud_conversation.update_last_seen(db, conversation=conversation, user_id=user_id, commit=False)
                db.commit()
                return len(unread_ids)
            except IntegrityError:
                # Another request wrote some of the same receipts; recompute once
                db.rollback()
                if attempt:
                    raise
        return 0

    def add_reaction(
        self,
        db: Session,
        *,
        message: Message,
        user_id: int,
        emoji: ReactionEmoji,
    ) -> List[MessageReaction]:
        """Set the user's reaction on a message, replacing any previous one."""
        if message.is_deleted:
            raise NotFoundException(MESSAGE_NOT_FOUND)

        emoji_value = ReactionEmoji(emoji).value
        for attempt in range(2):
            existing = db.scalars(
                select(MessageReaction).where(
                    MessageReaction.message_id == message.id,
                    MessageReaction.user_id == user_id,
                )
            ).first()
            try:
                if existing:
                    existing.emoji = emoji_value
                    existing.reacted_at = utcnow()
                else:
                    db.add(MessageReaction(
                        message_id=message.id,
                        user_id=user_id,
                        emoji=emoji_value,
                        reacted_at=utcnow(),
                    ))
                db.commit()
                break
            except IntegrityError:
                db.rollback()
                if attempt:
                    raise

        return self.get_reactions(db, message_id=message.id)

    def remove_reaction(
        self,
        db: Session,
        *,
        message: Message,
        user_id: int,
    ) -> List[MessageReaction]:
        """Drop the user's reaction if there is one."""
        if message.is_deleted:
            raise NotFoundException(MESSAGE_NOT_FOUND)

        db.execute(
            delete(MessageReaction).where(
                MessageReaction.message_id == message.id,
                MessageReaction.user_id == user_id,
            )
        )
        db.commit()
        return self.get_reactions(db, message_id=message.id)

    def get_reactions(self, db: Session, *, message_id: int) -> List[MessageReaction]:
        stmt = (
            select(MessageReaction)
            .options(selectinload(MessageReaction.user))
            .where(MessageReaction.message_id == message_id)
            .order_by(MessageReaction.id)
        )
        return list(db.scalars(stmt).all())

    def count_visible(self, db: Session, *, conversation_id: int) -> int:
        stmt = select(func.count(Message.id)).where(
            Message.conversation_id == conversation_id,
            Message.is_deleted.is_(False),
        )
        return db.scalar(stmt) or 0

    def has_messages_beyond(
        self,
        db: Session,
        *,
        conversation_id: int,
        before: Optional[datetime] = None,
        after: Optional[datetime] = None,
    ) -> bool:
        """Whether visible messages exist older than ``before`` or newer than ``after``."""
        stmt = exists().where(
            Message.conversation_id == conversation_id,
            Message.is_deleted.is_(False),
        )
        if before is not None:
            stmt = stmt.where(Message.created_at < before)
        if after is not None:
            stmt = stmt.where(Message.created_at > after)
        return bool(db.scalar(select(stmt)))

    def list_messages(
        self,
        db: Session,
        *,
        conversation_id: int,
        page: int = 1,
        limit: int = 50,
        before: Optional[datetime] = None,
        after: Optional[datetime] = None,
    ) -> Tuple[List[Message], int]:
        """Messages of a conversation, soft-deleted ones excluded.

        - ``before``: the ``limit`` messages immediately older than the cursor, newest first.
        - ``after``: the ``limit`` messages newer than the cursor, oldest first.
        - no cursor: oldest first, paged by ``page``/``limit``.

        Returns the page and the total number of visible messages.
        """
        if before is not None and after is not None:
            raise ValidationException("Use either 'before' or 'after', not both")

        stmt = _with_details(select(Message)).where(
            Message.conversation_id == conversation_id,
            Message.is_deleted.is_(False),
        )
        if before is not None:
            stmt = stmt.where(Message.created_at < before).order_by(
                Message.created_at.desc(), Message.id.desc()
            )
        elif after is not None:
            stmt = stmt.where(Message.created_at > after).order_by(
                Message.created_at.asc(), Message.id.asc()
            )
        else:
            stmt = stmt.order_by(Message.created_at.asc(), Message.id.asc()).offset((page - 1) * limit)

        messages = list(db.scalars(stmt.limit(limit)).all())
        total = self.count_visible(db, conversation_id=conversation_id)
        return messages, total

    def search(
        self,
        db: Session,
        *,
        conversation_id: int,
        term: str,
        page: int = 1,
        limit: int = 20,
    ) -> Tuple[List[Message], int]:
        """Case-insensitive substring search over visible messages, newest first."""
        condition = (
            (Message.conversation_id == conversation_id)
            & Message.is_deleted.is_(False)
            & Message.content.ilike(f"%{escape_like(term)}%", escape="\\")
        )
        stmt = (
            _with_details(select(Message))
            .where(condition)
            .order_by(Message.created_at.desc(), Message.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        messages = list(db.scalars(stmt).all())
        total = db.scalar(select(func.count(Message.id)).where(condition)) or 0
        return messages, total


# Create instance
crud_message = CRUDMessage(Message)
