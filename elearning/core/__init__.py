"""Core module exports."""

from .security import (
    create_access_token,
    decode_token,
    ALGORITHM,
    ACCESS_TOKEN_EXPIRE_DAYS,
)
from .exceptions import (
    ValidationException,
    AuthorizationException,
    NotFoundException,
    ConflictException,
    StaleMessageException,
)

__all__ = [
    "create_access_token",
    "decode_token",
    "ALGORITHM",
    "ACCESS_TOKEN_EXPIRE_DAYS",
    "ValidationException",
    "AuthorizationException",
    "NotFoundException",
    "ConflictException",
    "StaleMessageException",
]
