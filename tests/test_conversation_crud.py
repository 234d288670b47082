import pytest
from sqlalchemy import select, func

from elearning.core.exceptions import ConflictException
from elearning.crud import crud_conversation, crud_message
from elearning.crud.conversation import CRUDConversation, escape_like
from elearning.models import Conversation, Course, ParticipantRole


def test_find_or_create_returns_same_conversation(db, student, teacher, course):
    first = crud_conversation.find_or_create(
        db, student_id=student.id, teacher_id=teacher.id, course_id=course.id
    )
    second = crud_conversation.find_or_create(
        db, student_id=student.id, teacher_id=teacher.id, course_id=course.id
    )

    assert first.id == second.id


def test_find_or_create_matches_either_orientation(db, conversation, student, teacher, course):
    found = crud_conversation.find_or_create(
        db, student_id=teacher.id, teacher_id=student.id, course_id=course.id
    )
    assert found.id == conversation.id


def test_find_or_create_is_scoped_by_course(db, conversation, student, teacher):
    other_course = Course(
        name="Advanced Python",
        description="Generators and descriptors",
        category="Programming",
        level="Advanced",
        instructor="Tina Teacher",
    )
    db.add(other_course)
    db.commit()

    other = crud_conversation.find_or_create(
        db, student_id=student.id, teacher_id=teacher.id, course_id=other_course.id
    )
    assert other.id != conversation.id


def test_concurrent_create_converges_on_one_row(db, conversation, student, teacher, course, monkeypatch):
    # The second caller misses on its initial lookup, as if it raced the first insert
    original = CRUDConversation._find_between
    calls = []

    def racing_find_between(self, db, **kwargs):
        calls.append(kwargs)
        if len(calls) == 1:
            return None
        return original(self, db, **kwargs)

    monkeypatch.setattr(CRUDConversation, "_find_between", racing_find_between)

    result = crud_conversation.find_or_create(
        db, student_id=student.id, teacher_id=teacher.id, course_id=course.id
    )

    assert result.id == conversation.id
    assert len(calls) == 2
    total = db.scalar(
        select(func.count(Conversation.id)).where(Conversation.course_id == course.id)
    )
    assert total == 1


def test_concurrent_create_with_swapped_roles_converges_on_one_row(
    db, conversation, student, teacher, course, monkeypatch
):
    original = CRUDConversation._find_between
    calls = []

    def racing_find_between(self, db, **kwargs):
        calls.append(kwargs)
        if len(calls) == 1:
            return None
        return original(self, db, **kwargs)

    monkeypatch.setattr(CRUDConversation, "_find_between", racing_find_between)

    result = crud_conversation.find_or_create(
        db, student_id=teacher.id, teacher_id=student.id, course_id=course.id
    )

    assert result.id == conversation.id
    assert result.student_id == student.id
    total = db.scalar(
        select(func.count(Conversation.id)).where(Conversation.course_id == course.id)
    )
    assert total == 1


def test_closed_conversation_is_not_reopened(db, conversation, student, teacher, course):
    conversation.is_active = False
    db.commit()

    with pytest.raises(ConflictException):
        crud_conversation.find_or_create(
            db, student_id=student.id, teacher_id=teacher.id, course_id=course.id
        )


def test_user_conversations_ordered_by_activity(db, conversation, student, teacher, outsider, course):
    older = crud_conversation.find_or_create(
        db, student_id=outsider.id, teacher_id=teacher.id, course_id=course.id
    )
    crud_message.send(db, conversation=older, sender_id=outsider.id, content="first")
    crud_message.send(db, conversation=conversation, sender_id=student.id, content="second")

    conversations, total = crud_conversation.get_user_conversations(db, user_id=teacher.id)

    assert total == 2
    assert [c.id for c in conversations] == [conversation.id, older.id]

    own, own_total = crud_conversation.get_user_conversations(db, user_id=student.id)
    assert own_total == 1
    assert own[0].id == conversation.id


def test_user_conversations_search_and_course_filter(db, conversation, teacher):
    by_name, _ = crud_conversation.get_user_conversations(db, user_id=teacher.id, search="sam")
    by_course, _ = crud_conversation.get_user_conversations(db, user_id=teacher.id, search="PYTHON")
    missing, total = crud_conversation.get_user_conversations(db, user_id=teacher.id, search="chemistry")
    other_course, _ = crud_conversation.get_user_conversations(
        db, user_id=teacher.id, course_id=conversation.course_id + 100
    )

    assert [c.id for c in by_name] == [conversation.id]
    assert [c.id for c in by_course] == [conversation.id]
    assert missing == [] and total == 0
    assert other_course == []


def test_search_wildcards_match_literally(db, conversation, teacher):
    assert escape_like("50%_off") == "50\\%\\_off"
    found, total = crud_conversation.get_user_conversations(db, user_id=teacher.id, search="%")
    assert total == 0
    assert crud_conversation.count_user_conversations(db, user_id=teacher.id) == 1


def test_unread_counter_increments_and_resets(db, conversation, student):
    crud_conversation.increment_unread_count(db, conversation=conversation, exclude_user_id=student.id)
    crud_conversation.increment_unread_count(db, conversation=conversation, exclude_user_id=student.id)
    db.refresh(conversation)
    assert conversation.teacher_unread_count == 2
    assert conversation.student_unread_count == 0

    crud_conversation.mark_as_read(db, conversation=conversation, user_id=conversation.teacher_id)
    db.refresh(conversation)
    assert conversation.teacher_unread_count == 0


def test_decrement_never_goes_below_zero(db, conversation):
    crud_conversation.decrement_unread_count(
        db, conversation_id=conversation.id, role=ParticipantRole.STUDENT
    )
    db.commit()
    db.refresh(conversation)
    assert conversation.student_unread_count == 0


def test_toggle_pin_is_per_participant(db, conversation, student, teacher):
    assert crud_conversation.toggle_pin(db, conversation=conversation, user_id=student.id) is True
    assert conversation.is_pinned_for(ParticipantRole.TEACHER) is False

    assert crud_conversation.toggle_pin(db, conversation=conversation, user_id=student.id) is False


def test_update_last_seen_moves_forward(db, conversation, student):
    before = conversation.student_last_seen_at
    crud_conversation.update_last_seen(db, conversation=conversation, user_id=student.id)
    db.refresh(conversation)
    assert conversation.student_last_seen_at >= before


def test_computed_unread_count_matches_counter(db, conversation, student, teacher):
    crud_message.send(db, conversation=conversation, sender_id=teacher.id, content="one")
    crud_message.send(db, conversation=conversation, sender_id=teacher.id, content="two")
    crud_message.send(db, conversation=conversation, sender_id=student.id, content="reply")

    db.refresh(conversation)
    computed = crud_conversation.get_unread_count(db, conversation=conversation, user_id=student.id)
    assert computed == 2 == conversation.student_unread_count
    assert crud_conversation.get_unread_count(db, conversation=conversation, user_id=0) == 0
