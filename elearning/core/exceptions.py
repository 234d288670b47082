"""Custom exceptions for the chat subsystem.

Every exception carries its HTTP status and a human-readable default detail.
The handlers registered in ``elearning.main`` render them as the standard
``{success, message, errors?}`` envelope.
"""

from typing import Any, List, Optional

from fastapi import HTTPException, status


class ChatException(HTTPException):
    """Base exception for chat errors."""

    def __init__(
        self,
        status_code: int,
        detail: str,
        errors: Optional[List[Any]] = None,
    ):
        super().__init__(status_code=status_code, detail=detail)
        self.errors = errors


class ValidationException(ChatException):
    """Malformed or out-of-range request data."""

    def __init__(self, detail: str = "Invalid request data", errors: Optional[List[Any]] = None):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=detail,
            errors=errors,
        )


class AuthorizationException(ChatException):
    """Caller is not a participant, not the sender, or not an administrator."""

    def __init__(self, detail: str = "You do not have access to this conversation"):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=detail,
        )


class NotFoundException(ChatException):
    """Conversation, message, course or instructor does not exist."""

    def __init__(self, detail: str = "Resource not found"):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=detail,
        )


class ConflictException(ChatException):
    """
    The request is well-formed but conflicts with the current state.

    Status Code: 400 Bad Request

    Usage:
        >>> raise ConflictException("Messages can only be edited within 15 minutes")
    """

    def __init__(self, detail: str = "Request conflicts with the current state", status_code: int = status.HTTP_400_BAD_REQUEST):
        super().__init__(
            status_code=status_code,
            detail=detail,
        )


class StaleMessageException(ConflictException):
    """
    A concurrent write changed the message first (edit lost a race against
    another edit or a delete). The losing write is discarded.

    Status Code: 409 Conflict
    """

    def __init__(self, detail: str = "Message was modified by another request, please reload"):
        super().__init__(detail=detail, status_code=status.HTTP_409_CONFLICT)


__all__ = [
    "ChatException",
    "ValidationException",
    "AuthorizationException",
    "NotFoundException",
    "ConflictException",
    "StaleMessageException",
]
