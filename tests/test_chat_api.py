from datetime import datetime, timedelta

from sqlalchemy import update

from elearning.models import Message
from elearning.utils.clock import utcnow

BASE = "/api/v1/chat"


def _send(client, headers, conversation_id, content="Hello", **extra):
    return client.post(
        f"{BASE}/conversations/{conversation_id}/messages",
        json={"content": content, **extra},
        headers=headers,
    )


def test_health(client):
    assert client.get("/health").json() == {"status": "healthy"}


def test_missing_token_is_unauthorized(client, conversation):
    response = client.get(f"{BASE}/conversations")

    assert response.status_code == 401
    assert response.json()["success"] is False


def test_invalid_token_is_unauthorized(client):
    response = client.get(f"{BASE}/conversations", headers={"Authorization": "Bearer not-a-jwt"})

    assert response.status_code == 401
    assert response.json() == {"success": False, "message": "Could not validate credentials"}


def test_get_or_create_instructor_conversation(client, auth_headers, student, teacher, course):
    url = f"{BASE}/conversations/{course.id}/instructor"

    first = client.get(url, headers=auth_headers(student))
    second = client.get(url, headers=auth_headers(student))

    assert first.status_code == 200
    body = first.json()
    assert body["success"] is True
    assert body["data"]["partner"]["id"] == teacher.id
    assert body["data"]["course"]["name"] == "Intro to Python"
    assert second.json()["data"]["id"] == body["data"]["id"]

    listed = client.get(f"{BASE}/conversations", headers=auth_headers(teacher)).json()
    assert listed["data"]["pagination"]["total"] == 1


def test_instructor_conversation_errors(client, auth_headers, teacher, course):
    unknown = client.get(f"{BASE}/conversations/9999/instructor", headers=auth_headers(teacher))
    with_self = client.get(f"{BASE}/conversations/{course.id}/instructor", headers=auth_headers(teacher))

    assert unknown.status_code == 404
    assert unknown.json()["message"] == "Course not found"
    assert with_self.status_code == 400


def test_list_conversations_for_participant(client, auth_headers, conversation, student, outsider):
    mine = client.get(f"{BASE}/conversations", headers=auth_headers(student)).json()
    theirs = client.get(f"{BASE}/conversations", headers=auth_headers(outsider)).json()

    assert [c["id"] for c in mine["data"]["conversations"]] == [conversation.id]
    assert mine["data"]["pagination"] == {
        "current": 1, "pages": 1, "total": 1, "has_next": False, "has_prev": False
    }
    assert theirs["data"]["conversations"] == []


def test_conversation_detail_access(client, auth_headers, conversation, student, outsider):
    url = f"{BASE}/conversations/{conversation.id}"

    assert client.get(url, headers=auth_headers(student)).status_code == 200
    assert client.get(url, headers=auth_headers(outsider)).status_code == 403
    assert client.get(f"{BASE}/conversations/9999", headers=auth_headers(student)).status_code == 404


def test_send_message(client, auth_headers, conversation, student, teacher):
    response = _send(client, auth_headers(teacher), conversation.id, "  Hello  ")

    assert response.status_code == 201
    data = response.json()["data"]
    assert data["content"] == "Hello"
    assert data["sender"]["id"] == teacher.id
    assert data["message_type"] == "text"

    detail = client.get(f"{BASE}/conversations/{conversation.id}", headers=auth_headers(student)).json()
    assert detail["data"]["unread_count"] == 1
    assert detail["data"]["last_message"]["content"] == "Hello"


def test_send_message_validation(client, auth_headers, conversation, student, outsider):
    empty = _send(client, auth_headers(student), conversation.id, "   ")
    too_long = _send(client, auth_headers(student), conversation.id, "x" * 2001)
    bad_type = _send(client, auth_headers(student), conversation.id, "hi", message_type="video")
    stranger = _send(client, auth_headers(outsider), conversation.id, "hi")

    assert empty.status_code == 400
    assert empty.json()["success"] is False
    assert empty.json()["errors"][0]["field"] == "content"
    assert too_long.status_code == 400
    assert bad_type.status_code == 400
    assert stranger.status_code == 403


def test_send_to_closed_conversation(client, db, auth_headers, conversation, student):
    conversation.is_active = False
    db.commit()

    assert _send(client, auth_headers(student), conversation.id).status_code == 400


def test_reply_to_deleted_message_shows_placeholder(client, auth_headers, conversation, student, teacher):
    original = _send(client, auth_headers(student), conversation.id, "original").json()["data"]
    reply = _send(
        client, auth_headers(teacher), conversation.id, "reply", reply_to=original["id"]
    ).json()["data"]
    assert reply["reply_to"]["content"] == "original"

    client.delete(f"{BASE}/messages/{original['id']}", headers=auth_headers(student))

    messages = client.get(
        f"{BASE}/conversations/{conversation.id}/messages", headers=auth_headers(teacher)
    ).json()["data"]["messages"]
    assert [m["id"] for m in messages] == [reply["id"]]
    assert messages[0]["reply_to"] == {
        "id": original["id"],
        "sender_id": student.id,
        "content": "This message was deleted",
        "is_deleted": True,
    }


def test_get_messages_marks_conversation_read(client, auth_headers, conversation, student, teacher):
    _send(client, auth_headers(teacher), conversation.id, "one")
    _send(client, auth_headers(teacher), conversation.id, "two")

    response = client.get(
        f"{BASE}/conversations/{conversation.id}/messages", headers=auth_headers(student)
    )

    body = response.json()["data"]
    assert [m["content"] for m in body["messages"]] == ["one", "two"]
    assert body["pagination"]["total"] == 2

    unread = client.get(
        f"{BASE}/conversations/{conversation.id}/unread-count", headers=auth_headers(student)
    ).json()["data"]
    assert unread == {"conversation_id": conversation.id, "unread_count": 0}

    again = client.get(
        f"{BASE}/conversations/{conversation.id}/messages", headers=auth_headers(teacher)
    ).json()["data"]["messages"]
    assert all(m["is_read"] for m in again)


def test_cursor_pages_return_the_next_cursor(client, auth_headers, db, conversation, student, teacher):
    ids = [_send(client, auth_headers(teacher), conversation.id, text).json()["data"]["id"]
           for text in ("first", "second", "third")]
    start = datetime(2024, 1, 1)
    for minute, message_id in enumerate(ids, start=1):
        db.execute(
            update(Message).where(Message.id == message_id).values(created_at=start + timedelta(minutes=minute))
        )
    db.commit()
    url = f"{BASE}/conversations/{conversation.id}/messages"

    older = client.get(
        url, params={"before": "2024-01-01T00:10:00Z", "limit": 2}, headers=auth_headers(student)
    ).json()["data"]
    assert [m["content"] for m in older["messages"]] == ["third", "second"]
    assert older["pagination"] is None
    assert older["cursor"] == {"next_before": "2024-01-01T00:02:00", "next_after": None, "has_more": True}

    oldest = client.get(
        url, params={"before": older["cursor"]["next_before"], "limit": 2}, headers=auth_headers(student)
    ).json()["data"]
    assert [m["content"] for m in oldest["messages"]] == ["first"]
    assert oldest["cursor"]["has_more"] is False

    newer = client.get(
        url, params={"after": "2024-01-01T00:00:00Z", "limit": 2}, headers=auth_headers(student)
    ).json()["data"]
    assert [m["content"] for m in newer["messages"]] == ["first", "second"]
    assert newer["cursor"] == {"next_before": None, "next_after": "2024-01-01T00:02:00", "has_more": True}

    caught_up = client.get(
        url, params={"after": "2024-01-01T00:03:00"}, headers=auth_headers(student)
    ).json()["data"]
    assert caught_up["messages"] == []
    assert caught_up["cursor"] == {"next_before": None, "next_after": "2024-01-01T00:03:00", "has_more": False}


def test_get_messages_with_both_cursors_is_rejected(client, auth_headers, conversation, student):
    response = client.get(
        f"{BASE}/conversations/{conversation.id}/messages",
        params={"before": "2024-01-01T00:00:00Z", "after": "2023-01-01T00:00:00Z"},
        headers=auth_headers(student),
    )

    assert response.status_code == 400


def test_edit_message(client, auth_headers, conversation, student, teacher):
    message = _send(client, auth_headers(teacher), conversation.id).json()["data"]
    url = f"{BASE}/messages/{message['id']}"

    edited = client.put(url, json={"content": "Hello again"}, headers=auth_headers(teacher))
    forbidden = client.put(url, json={"content": "mine now"}, headers=auth_headers(student))

    assert edited.status_code == 200
    assert edited.json()["data"]["is_edited"] is True
    assert edited.json()["data"]["edit_history"][0]["content"] == "Hello"
    assert forbidden.status_code == 403


def test_edit_after_window_is_rejected(client, db, auth_headers, conversation, teacher):
    message = _send(client, auth_headers(teacher), conversation.id).json()["data"]
    db.execute(
        update(Message)
        .where(Message.id == message["id"])
        .values(created_at=utcnow() - timedelta(minutes=16))
        .execution_options(synchronize_session=False)
    )
    db.commit()

    response = client.put(
        f"{BASE}/messages/{message['id']}", json={"content": "late"}, headers=auth_headers(teacher)
    )

    assert response.status_code == 400
    assert "15 minutes" in response.json()["message"]
    assert db.get(Message, message["id"]).content == "Hello"


def test_delete_message(client, auth_headers, conversation, student, teacher, admin, outsider):
    first = _send(client, auth_headers(teacher), conversation.id, "first").json()["data"]
    second = _send(client, auth_headers(teacher), conversation.id, "second").json()["data"]

    assert client.delete(f"{BASE}/messages/{first['id']}", headers=auth_headers(student)).status_code == 403
    assert client.delete(f"{BASE}/messages/{first['id']}", headers=auth_headers(outsider)).status_code == 403

    by_sender = client.delete(f"{BASE}/messages/{first['id']}", headers=auth_headers(teacher))
    by_admin = client.delete(f"{BASE}/messages/{second['id']}", headers=auth_headers(admin))
    repeated = client.delete(f"{BASE}/messages/{first['id']}", headers=auth_headers(teacher))

    assert by_sender.status_code == 200
    assert by_sender.json()["data"] == {"message_id": first["id"]}
    assert by_admin.status_code == 200
    assert repeated.status_code == 404
    assert client.delete(f"{BASE}/messages/9999", headers=auth_headers(teacher)).status_code == 404


def test_mark_conversation_read(client, auth_headers, conversation, student, teacher):
    _send(client, auth_headers(teacher), conversation.id)

    response = client.post(f"{BASE}/conversations/{conversation.id}/read", headers=auth_headers(student))

    assert response.status_code == 200
    assert response.json()["data"] == {"conversation_id": conversation.id, "read_count": 1}


def test_reactions(client, auth_headers, conversation, student, teacher):
    message = _send(client, auth_headers(student), conversation.id, "Question").json()["data"]
    url = f"{BASE}/messages/{message['id']}/reaction"

    client.post(url, json={"emoji": "👍"}, headers=auth_headers(teacher))
    replaced = client.post(url, json={"emoji": "❤️"}, headers=auth_headers(teacher))
    invalid = client.post(url, json={"emoji": "🍕"}, headers=auth_headers(teacher))

    assert replaced.status_code == 200
    reactions = replaced.json()["data"]["reactions"]
    assert [(r["user_id"], r["emoji"]) for r in reactions] == [(teacher.id, "❤️")]
    assert reactions[0]["user_name"] == "Tina Teacher"
    assert invalid.status_code == 400

    removed = client.delete(url, headers=auth_headers(teacher))
    assert removed.json()["data"]["reactions"] == []


def test_reaction_on_deleted_message_is_rejected(client, auth_headers, conversation, student, teacher):
    message = _send(client, auth_headers(student), conversation.id).json()["data"]
    client.delete(f"{BASE}/messages/{message['id']}", headers=auth_headers(student))

    response = client.post(
        f"{BASE}/messages/{message['id']}/reaction", json={"emoji": "😊"}, headers=auth_headers(teacher)
    )

    assert response.status_code == 404


def test_search_messages(client, auth_headers, conversation, student):
    message = _send(client, auth_headers(student), conversation.id, "see abc123XY").json()["data"]
    _send(client, auth_headers(student), conversation.id, "unrelated")
    url = f"{BASE}/conversations/{conversation.id}/search"

    found = client.get(url, params={"q": "ABC123"}, headers=auth_headers(student)).json()["data"]
    assert [m["id"] for m in found["messages"]] == [message["id"]]
    assert found["search_term"] == "ABC123"

    client.delete(f"{BASE}/messages/{message['id']}", headers=auth_headers(student))
    after_delete = client.get(url, params={"q": "abc123"}, headers=auth_headers(student)).json()["data"]
    assert after_delete["messages"] == []

    too_short = client.get(url, params={"q": " a "}, headers=auth_headers(student))
    assert too_short.status_code == 400


def test_toggle_pin(client, auth_headers, conversation, student, teacher):
    url = f"{BASE}/conversations/{conversation.id}/pin"

    pinned = client.post(url, headers=auth_headers(student)).json()
    assert pinned["data"] == {"conversation_id": conversation.id, "is_pinned": True}
    assert pinned["message"] == "Conversation pinned"

    teacher_view = client.get(f"{BASE}/conversations/{conversation.id}", headers=auth_headers(teacher))
    assert teacher_view.json()["data"]["is_pinned"] is False

    unpinned = client.post(url, headers=auth_headers(student)).json()
    assert unpinned["data"]["is_pinned"] is False


def test_online_users_empty_without_connections(client, auth_headers, student):
    response = client.get(f"{BASE}/online-users", headers=auth_headers(student))

    assert response.json()["data"] == {"online_users": []}
