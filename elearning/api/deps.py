"""FastAPI dependency injection functions for authentication and database access."""

import logging
from typing import Generator, Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session

from elearning.core.security import decode_token
from elearning.crud import crud_user
from elearning.database import SessionLocal
from elearning.models.user import User

logger = logging.getLogger(__name__)

# OAuth2 Bearer token scheme; tokens are issued by the auth service
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/login")


def get_db() -> Generator[Session, None, None]:
    """
    Dependency to get database session.
    
    Yields:
        Session: SQLAlchemy database session
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_user_from_token(token: str, db: Session) -> Optional[User]:
    """Resolve the active user a bearer token belongs to, or None."""
    try:
        payload = decode_token(token)
        subject = payload.get("sub")
        if subject is None:
            logger.warning("[AUTH] Token has no subject")
            return None
        user_id = int(subject)
    except HTTPException:
        logger.warning("[AUTH] Token decode failed")
        return None
    except (TypeError, ValueError):
        logger.warning("[AUTH] Token subject is not a user id")
        return None

    user = crud_user.get(db, user_id)
    if user is None or not user.is_active:
        logger.warning(f"[AUTH] User not found or inactive for id: {user_id}")
        return None
    return user


def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: Session = Depends(get_db)
) -> User:
    """
    Dependency to get current authenticated user from JWT token.

    Raises:
        HTTPException: 401 if token is invalid or user not found
    """
    user = get_user_from_token(token, db)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


__all__ = [
    "oauth2_scheme",
    "get_db",
    "get_user_from_token",
    "get_current_user",
]
