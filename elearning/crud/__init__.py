"""CRUD operations package - exports singleton instances for all models."""

from .base import CRUDBase
from .user import crud_user
from .course import crud_course
from .conversation import crud_conversation
from .message import crud_message


__all__ = [
    # Base
    "CRUDBase",
    # CRUD instances
    "crud_user",
    "crud_course",
    "crud_conversation",
    "crud_message",
]
