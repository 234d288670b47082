"""Chat endpoints for conversations between students and course instructors."""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status
from sqlalchemy.orm import Session

from elearning.api.deps import get_current_user, get_db
from elearning.config import settings
from elearning.core.exceptions import (
    AuthorizationException,
    ConflictException,
    NotFoundException,
    ValidationException,
)
from elearning.crud import crud_conversation, crud_course, crud_message, crud_user
from elearning.models.conversation import Conversation, ParticipantRole
from elearning.models.message import Message
from elearning.models.user import User
from elearning.schemas.common import ApiResponse, CourseSummary, Pagination, UserSummary
from elearning.schemas.conversation import (
    ConversationListResponse,
    ConversationResponse,
    LastMessagePreview,
    OnlineUsersResponse,
    ParticipantResponse,
    PinResponse,
)
from elearning.schemas.message import (
    AttachmentResponse,
    EditHistoryResponse,
    MessageCreate,
    MessageCursor,
    MessageListResponse,
    MessageResponse,
    MessageSearchResponse,
    MessageUpdate,
    ReactionCreate,
    ReactionListResponse,
    ReactionResponse,
    ReadReceiptResponse,
    UnreadCountResponse,
)
from elearning.services.realtime import push_to_participants, registry
from elearning.utils.api_response import get_pagination
from elearning.utils.clock import to_naive_utc

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/chat",
    tags=["Chat"],
)


def _get_conversation_for_participant(
    db: Session,
    conversation_id: int,
    current_user: User,
) -> Conversation:
    """Load a conversation and verify the caller takes part in it."""
    conversation = crud_conversation.get(db, conversation_id)
    if not conversation:
        raise NotFoundException("Conversation not found")
    if not conversation.is_participant(current_user.id):
        raise AuthorizationException("You do not have access to this conversation")
    return conversation


def _get_message(db: Session, message_id: int) -> Message:
    message = crud_message.get_with_details(db, message_id)
    if not message:
        raise NotFoundException("Message not found")
    return message


def _ensure_participant(db: Session, message: Message, current_user: User) -> Conversation:
    conversation = crud_conversation.get(db, message.conversation_id)
    if not conversation.is_participant(current_user.id):
        raise AuthorizationException("You are not a participant of this conversation")
    return conversation


def _serialize_reactions(reactions) -> list:
    return [
        ReactionResponse(
            user_id=reaction.user_id,
            user_name=reaction.user.name if reaction.user else None,
            emoji=reaction.emoji,
            reacted_at=reaction.reacted_at,
        )
        for reaction in reactions
    ]


def _serialize_message(message: Message) -> MessageResponse:
    return MessageResponse(
        id=message.id,
        conversation_id=message.conversation_id,
        sender=UserSummary.model_validate(message.sender) if message.sender else None,
        content=message.content,
        message_type=message.message_type,
        priority=message.priority,
        attachments=[AttachmentResponse.model_validate(a) for a in message.attachments],
        reply_to=crud_message.resolve_reply(message),
        read_by=[ReadReceiptResponse.model_validate(r) for r in message.read_by],
        edit_history=[EditHistoryResponse.model_validate(e) for e in message.edit_history],
        reactions=_serialize_reactions(message.reactions),
        reaction_count=len(message.reactions),
        # Read by anyone other than the sender
        is_read=any(r.user_id != message.sender_id for r in message.read_by),
        is_edited=message.is_edited,
        is_deleted=message.is_deleted,
        deleted_at=message.deleted_at,
        created_at=message.created_at,
        updated_at=message.updated_at,
    )


def _serialize_conversation(conversation: Conversation, current_user: User) -> ConversationResponse:
    """Conversation as seen by ``current_user``: their counters, their pin, their partner."""
    role = conversation.get_user_role(current_user.id)
    partner = conversation.teacher if role is ParticipantRole.STUDENT else conversation.student

    last_message = None
    if conversation.last_message and not conversation.last_message.is_deleted:
        last = conversation.last_message
        last_message = LastMessagePreview(
            id=last.id,
            content=last.content,
            sender_id=last.sender_id,
            message_type=last.message_type,
            created_at=last.created_at,
        )

    title = conversation.title or f"Conversation with {partner.name if partner else 'Unknown'}"
    return ConversationResponse(
        id=conversation.id,
        title=title,
        course=CourseSummary.model_validate(conversation.course) if conversation.course else None,
        partner=UserSummary.model_validate(partner) if partner else None,
        participants=[ParticipantResponse(**p) for p in conversation.participants],
        last_message=last_message,
        last_activity_at=conversation.last_activity_at,
        unread_count=conversation.unread_count_for(role) if role else 0,
        is_pinned=conversation.is_pinned_for(role) if role else False,
        is_active=conversation.is_active,
        total_messages=conversation.total_messages,
        created_at=conversation.created_at,
        updated_at=conversation.updated_at,
    )


def _participant_ids(conversation: Conversation) -> list:
    return [conversation.student_id, conversation.teacher_id]


@router.get(
    "/conversations",
    response_model=ApiResponse[ConversationListResponse],
    status_code=status.HTTP_200_OK,
    summary="List conversations",
    description="""
    Get the current user's active conversations, most recent activity first.

    - **search**: case-insensitive match on participant name, course name or title
    - **course_id**: only conversations about this course
    """,
)
def list_conversations(
    page: int = Query(1, ge=1, description="Page number"),
    limit: int = Query(settings.CONVERSATIONS_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE, description="Page size"),
    search: str = Query("", max_length=100),
    course_id: Optional[int] = Query(None, ge=1),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> ApiResponse[ConversationListResponse]:
    """List all conversations for the current user."""
    conversations, total = crud_conversation.get_user_conversations(
        db,
        user_id=current_user.id,
        page=page,
        limit=limit,
        search=search.strip(),
        course_id=course_id,
    )

    return ApiResponse[ConversationListResponse](
        message="Conversations retrieved",
        data=ConversationListResponse(
            conversations=[_serialize_conversation(c, current_user) for c in conversations],
            pagination=Pagination(**get_pagination(page, limit, total)),
        ),
    )


@router.get(
    "/conversations/{course_id}/instructor",
    response_model=ApiResponse[ConversationResponse],
    status_code=status.HTTP_200_OK,
    summary="Get or create conversation with course instructor",
    description="""
    Open the conversation between the current user and the instructor of a course.
    The conversation is created on first use; repeated calls return the same one.
    """,
)
def get_or_create_instructor_conversation(
    course_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> ApiResponse[ConversationResponse]:
    course = crud_course.get_active(db, course_id)
    if not course:
        raise NotFoundException("Course not found")

    instructor = crud_user.get_instructor_for_course(db, course)
    if not instructor:
        raise NotFoundException("No instructor found for this course. Please contact an administrator.")

    if instructor.id == current_user.id:
        raise ValidationException("You cannot start a conversation with yourself")

    conversation = crud_conversation.find_or_create(
        db,
        student_id=current_user.id,
        teacher_id=instructor.id,
        course_id=course.id,
    )
    crud_conversation.update_last_seen(db, conversation=conversation, user_id=current_user.id)

    return ApiResponse[ConversationResponse](
        message="Conversation retrieved",
        data=_serialize_conversation(conversation, current_user),
    )


@router.get(
    "/conversations/{conversation_id}",
    response_model=ApiResponse[ConversationResponse],
    status_code=status.HTTP_200_OK,
    summary="Get conversation detail",
)
def get_conversation(
    conversation_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> ApiResponse[ConversationResponse]:
    conversation = _get_conversation_for_participant(db, conversation_id, current_user)
    return ApiResponse[ConversationResponse](
        message="Conversation retrieved",
        data=_serialize_conversation(conversation, current_user),
    )


@router.get(
    "/conversations/{conversation_id}/messages",
    response_model=ApiResponse[MessageListResponse],
    status_code=status.HTTP_200_OK,
    summary="Get messages",
    description="""
    Get messages of a conversation. Deleted messages are not returned.

    - **before**: the page of messages just older than this timestamp, newest first
    - **after**: messages newer than this timestamp, oldest first
    - neither: oldest first, paged with `page` / `limit`

    `before`/`after` cursors are the preferred way to page a live chat; `page`
    is ignored when a cursor is given. Cursor requests return `cursor`
    (`next_before` / `next_after`, `has_more`) instead of `pagination`.
    Reading marks the conversation as read.
    """,
)
def get_messages(
    conversation_id: int,
    background_tasks: BackgroundTasks,
    page: int = Query(1, ge=1),
    limit: int = Query(settings.MESSAGES_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    before: Optional[datetime] = Query(None, description="ISO timestamp cursor"),
    after: Optional[datetime] = Query(None, description="ISO timestamp cursor"),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> ApiResponse[MessageListResponse]:
    conversation = _get_conversation_for_participant(db, conversation_id, current_user)
    before = to_naive_utc(before)
    after = to_naive_utc(after)

    messages, total = crud_message.list_messages(
        db,
        conversation_id=conversation.id,
        page=page,
        limit=limit,
        before=before,
        after=after,
    )
    payload = MessageListResponse(messages=[_serialize_message(m) for m in messages])
    if before is not None:
        # Pages run newest first, so the last row is the oldest
        next_before = messages[-1].created_at if messages else before
        payload.cursor = MessageCursor(
            next_before=next_before,
            has_more=crud_message.has_messages_beyond(
                db, conversation_id=conversation.id, before=next_before
            ),
        )
    elif after is not None:
        next_after = messages[-1].created_at if messages else after
        payload.cursor = MessageCursor(
            next_after=next_after,
            has_more=crud_message.has_messages_beyond(
                db, conversation_id=conversation.id, after=next_after
            ),
        )
    else:
        payload.pagination = Pagination(**get_pagination(page, limit, total))

    # Viewing implies reading
    read_count = crud_message.mark_conversation_read(db, conversation=conversation, user_id=current_user.id)
    if read_count:
        background_tasks.add_task(
            push_to_participants,
            [conversation.partner_id(current_user.id)],
            {
                "type": "read_receipt",
                "conversation_id": conversation.id,
                "reader_id": current_user.id,
                "read_count": read_count,
            },
        )

    return ApiResponse[MessageListResponse](message="Messages retrieved", data=payload)


@router.post(
    "/conversations/{conversation_id}/messages",
    response_model=ApiResponse[MessageResponse],
    status_code=status.HTTP_201_CREATED,
    summary="Send message",
)
def send_message(
    conversation_id: int,
    message_in: MessageCreate,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> ApiResponse[MessageResponse]:
    conversation = _get_conversation_for_participant(db, conversation_id, current_user)
    if not conversation.is_active:
        raise ConflictException("This conversation has been closed")

    message = crud_message.send(
        db,
        conversation=conversation,
        sender_id=current_user.id,
        content=message_in.content,
        message_type=message_in.message_type,
        reply_to_id=message_in.reply_to,
        priority=message_in.priority,
    )
    data = _serialize_message(message)

    background_tasks.add_task(
        push_to_participants,
        _participant_ids(conversation),
        {"type": "new_message", "message": data.model_dump(mode="json")},
    )

    return ApiResponse[MessageResponse](message="Message sent", data=data)


@router.put(
    "/messages/{message_id}",
    response_model=ApiResponse[MessageResponse],
    status_code=status.HTTP_200_OK,
    summary="Edit message",
    description="Edit your own message. Only allowed within the edit window after sending.",
)
def edit_message(
    message_id: int,
    message_in: MessageUpdate,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> ApiResponse[MessageResponse]:
    message = _get_message(db, message_id)
    conversation = _ensure_participant(db, message, current_user)

    message = crud_message.edit(
        db,
        message=message,
        editor_id=current_user.id,
        content=message_in.content,
    )
    data = _serialize_message(message)

    background_tasks.add_task(
        push_to_participants,
        _participant_ids(conversation),
        {"type": "message_edited", "message": data.model_dump(mode="json")},
    )

    return ApiResponse[MessageResponse](message="Message updated", data=data)


@router.delete(
    "/messages/{message_id}",
    response_model=ApiResponse[dict],
    status_code=status.HTTP_200_OK,
    summary="Delete message",
    description="Soft-delete a message. Allowed for its sender and administrators.",
)
def delete_message(
    message_id: int,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> ApiResponse[dict]:
    message = _get_message(db, message_id)
    conversation = crud_conversation.get(db, message.conversation_id)
    if not current_user.is_admin and not conversation.is_participant(current_user.id):
        raise AuthorizationException("You are not allowed to delete this message")

    crud_message.soft_delete(db, message=message, user=current_user)

    background_tasks.add_task(
        push_to_participants,
        _participant_ids(conversation),
        {"type": "message_deleted", "conversation_id": conversation.id, "message_id": message_id},
    )

    return ApiResponse[dict](message="Message deleted", data={"message_id": message_id})


@router.post(
    "/conversations/{conversation_id}/read",
    response_model=ApiResponse[dict],
    status_code=status.HTTP_200_OK,
    summary="Mark conversation as read",
)
def mark_conversation_read(
    conversation_id: int,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> ApiResponse[dict]:
    conversation = _get_conversation_for_participant(db, conversation_id, current_user)

    read_count = crud_message.mark_conversation_read(db, conversation=conversation, user_id=current_user.id)
    if read_count:
        background_tasks.add_task(
            push_to_participants,
            [conversation.partner_id(current_user.id)],
            {
                "type": "read_receipt",
                "conversation_id": conversation.id,
                "reader_id": current_user.id,
                "read_count": read_count,
            },
        )

    return ApiResponse[dict](
        message="Conversation marked as read",
        data={"conversation_id": conversation.id, "read_count": read_count},
    )


@router.post(
    "/messages/{message_id}/reaction",
    response_model=ApiResponse[ReactionListResponse],
    status_code=status.HTTP_200_OK,
    summary="Add or replace reaction",
)
def add_reaction(
    message_id: int,
    reaction_in: ReactionCreate,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> ApiResponse[ReactionListResponse]:
    message = _get_message(db, message_id)
    conversation = _ensure_participant(db, message, current_user)

    reactions = crud_message.add_reaction(
        db, message=message, user_id=current_user.id, emoji=reaction_in.emoji
    )
    data = ReactionListResponse(message_id=message_id, reactions=_serialize_reactions(reactions))

    background_tasks.add_task(
        push_to_participants,
        _participant_ids(conversation),
        {"type": "reaction_update", "conversation_id": conversation.id, **data.model_dump(mode="json")},
    )

    return ApiResponse[ReactionListResponse](message="Reaction added", data=data)


@router.delete(
    "/messages/{message_id}/reaction",
    response_model=ApiResponse[ReactionListResponse],
    status_code=status.HTTP_200_OK,
    summary="Remove reaction",
)
def remove_reaction(
    message_id: int,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> ApiResponse[ReactionListResponse]:
    message = _get_message(db, message_id)
    conversation = _ensure_participant(db, message, current_user)

    reactions = crud_message.remove_reaction(db, message=message, user_id=current_user.id)
    data = ReactionListResponse(message_id=message_id, reactions=_serialize_reactions(reactions))

    background_tasks.add_task(
        push_to_participants,
        _participant_ids(conversation),
        {"type": "reaction_update", "conversation_id": conversation.id, **data.model_dump(mode="json")},
    )

    return ApiResponse[ReactionListResponse](message="Reaction removed", data=data)


@router.get(
    "/conversations/{conversation_id}/search",
    response_model=ApiResponse[MessageSearchResponse],
    status_code=status.HTTP_200_OK,
    summary="Search messages",
    description="Case-insensitive search over the conversation's messages, newest first.",
)
def search_messages(
    conversation_id: int,
    q: str = Query("", max_length=200, description="Search term"),
    page: int = Query(1, ge=1),
    limit: int = Query(settings.SEARCH_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> ApiResponse[MessageSearchResponse]:
    term = q.strip()
    if len(term) < settings.SEARCH_MIN_LENGTH:
        raise ValidationException(
            f"Search term must be at least {settings.SEARCH_MIN_LENGTH} characters"
        )

    conversation = _get_conversation_for_participant(db, conversation_id, current_user)

    messages, total = crud_message.search(
        db, conversation_id=conversation.id, term=term, page=page, limit=limit
    )

    return ApiResponse[MessageSearchResponse](
        message="Search completed",
        data=MessageSearchResponse(
            messages=[_serialize_message(m) for m in messages],
            search_term=term,
            pagination=Pagination(**get_pagination(page, limit, total)),
        ),
    )


@router.post(
    "/conversations/{conversation_id}/pin",
    response_model=ApiResponse[PinResponse],
    status_code=status.HTTP_200_OK,
    summary="Pin or unpin conversation",
    description="Toggle the pin flag for the caller only; the other participant's flag is untouched.",
)
def toggle_pin(
    conversation_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> ApiResponse[PinResponse]:
    conversation = _get_conversation_for_participant(db, conversation_id, current_user)

    is_pinned = crud_conversation.toggle_pin(db, conversation=conversation, user_id=current_user.id)

    return ApiResponse[PinResponse](
        message="Conversation pinned" if is_pinned else "Conversation unpinned",
        data=PinResponse(conversation_id=conversation.id, is_pinned=is_pinned),
    )


@router.get(
    "/conversations/{conversation_id}/unread-count",
    response_model=ApiResponse[UnreadCountResponse],
    status_code=status.HTTP_200_OK,
    summary="Get unread message count",
)
def get_unread_count(
    conversation_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> ApiResponse[UnreadCountResponse]:
    conversation = _get_conversation_for_participant(db, conversation_id, current_user)

    unread_count = crud_conversation.get_unread_count(
        db, conversation=conversation, user_id=current_user.id
    )

    return ApiResponse[UnreadCountResponse](
        message="Unread count retrieved",
        data=UnreadCountResponse(conversation_id=conversation.id, unread_count=unread_count),
    )


@router.get(
    "/online-users",
    response_model=ApiResponse[OnlineUsersResponse],
    status_code=status.HTTP_200_OK,
    summary="List users connected to real-time chat",
)
async def get_online_users(
    current_user: User = Depends(get_current_user),
) -> ApiResponse[OnlineUsersResponse]:
    return ApiResponse[OnlineUsersResponse](
        message="Online users retrieved",
        data=OnlineUsersResponse(online_users=registry.online_user_ids()),
    )
