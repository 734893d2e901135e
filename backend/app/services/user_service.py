"""
User service layer for user management operations.

Handles user registration, token authentication and email verification.
"""

import re
from typing import Optional, Tuple

from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError

from app.core.errors import StorageFailure, Unauthenticated, ValidationError
from app.database import utcnow
from app.models.user import User


# Username validation regex: 3-50 characters, alphanumeric + dash/underscore
USERNAME_PATTERN = re.compile(r'^[a-zA-Z0-9_-]{3,50}$')
EMAIL_PATTERN = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')


def validate_username(username: str) -> Tuple[bool, Optional[str]]:
    """
    Validate username format.

    Args:
        username: Username to validate

    Returns:
        Tuple of (is_valid, error_message)
    """
    if not username:
        return False, "Username is required"

    username = username.strip()

    if len(username) < 3:
        return False, "Username must be at least 3 characters"

    if len(username) > 50:
        return False, "Username must not exceed 50 characters"

    if not USERNAME_PATTERN.match(username):
        return False, "Username can only contain letters, numbers, dashes, and underscores"

    return True, None


def register_user(db: Session, username: str, email: Optional[str] = None) -> User:
    """
    Get existing user or create new user (idempotent operation).

    Args:
        db: Database session
        username: Username to register/retrieve
        email: Contact address for verification

    Returns:
        User object (existing or newly created)

    Raises:
        ValidationError: If username or email validation fails
        StorageFailure: If the insert fails
    """
    is_valid, error_message = validate_username(username)
    if not is_valid:
        raise ValidationError(error_message)

    if email is not None and not EMAIL_PATTERN.match(email.strip()):
        raise ValidationError("Invalid email address")

    username = username.strip()

    existing_user = get_user_by_username(db, username)
    if existing_user:
        return existing_user

    new_user = User(username=username, email=email.strip() if email else None)
    try:
        db.add(new_user)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise StorageFailure(f"Failed to register user: {e}") from e
    db.refresh(new_user)

    return new_user


def verify_email(db: Session, user: User) -> User:
    """
    Mark a user's email as confirmed (idempotent).

    Args:
        db: Database session
        user: User to verify

    Returns:
        The verified user
    """
    if user.email_confirmed_at is None:
        user.email_confirmed_at = utcnow()
        try:
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise StorageFailure(f"Failed to verify user: {e}") from e
        db.refresh(user)
    return user


def authenticate(db: Session, authorization: Optional[str]) -> User:
    """
    Resolve a caller from an ``Authorization: Bearer <token>`` header.

    Raises:
        Unauthenticated: If the header is missing, malformed or unknown
    """
    if not authorization:
        raise Unauthenticated("Missing authorization header")

    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise Unauthenticated("Invalid authorization header")

    user = get_user_by_token(db, token.strip())
    if not user:
        raise Unauthenticated("Invalid or expired token")
    return user


def get_user_by_token(db: Session, token: str) -> Optional[User]:
    return db.query(User).filter(User.api_token == token).first()


def get_user_by_username(db: Session, username: str) -> Optional[User]:
    """
    Get user by username.

    Args:
        db: Database session
        username: Username to lookup

    Returns:
        User object if found, None otherwise
    """
    return db.query(User).filter(User.username == username).first()
