"""Pytest configuration: in-memory SQLite database, users, a course and an API client."""

import os

# Settings are read at import time; configure them BEFORE any elearning imports
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["DEBUG"] = "false"

import pytest
from fastapi.testclient import TestClient

from elearning.api.deps import get_db
from elearning.core.security import create_access_token
from elearning.crud import crud_conversation
from elearning.database import Base, SessionLocal, engine
from elearning.main import app
from elearning.models import Course, User
from elearning.services.realtime import registry


@pytest.fixture
def db():
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def client(db):
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def reset_registry():
    yield
    registry._user_connections.clear()
    registry._socket_users.clear()
    registry._rooms.clear()


def _create_user(db, *, name, email, role="user", is_active=True):
    user = User(name=name, email=email, role=role, is_active=is_active)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def student(db):
    return _create_user(db, name="Sam Student", email="sam@example.com")


@pytest.fixture
def teacher(db):
    return _create_user(db, name="Tina Teacher", email="tina@example.com", role="teacher")


@pytest.fixture
def outsider(db):
    return _create_user(db, name="Olly Outsider", email="olly@example.com")


@pytest.fixture
def admin(db):
    return _create_user(db, name="Ada Admin", email="ada@example.com", role="admin")


@pytest.fixture
def course(db, teacher):
    course = Course(
        name="Intro to Python",
        description="Variables, loops and functions",
        category="Programming",
        level="Beginner",
        instructor="Tina Teacher",
    )
    db.add(course)
    db.commit()
    db.refresh(course)
    return course


@pytest.fixture
def conversation(db, student, teacher, course):
    return crud_conversation.find_or_create(
        db, student_id=student.id, teacher_id=teacher.id, course_id=course.id
    )


def make_token(user) -> str:
    return create_access_token({"sub": str(user.id)})


@pytest.fixture
def token_for():
    return make_token


@pytest.fixture
def auth_headers():
    def _headers(user):
        return {"Authorization": f"Bearer {make_token(user)}"}

    return _headers
