"""
User model for bot ownership.

Stands in for the external identity provider: callers authenticate with
an API token and must have a confirmed email to mutate bots.
"""

import secrets

from sqlalchemy import CheckConstraint, Column, Integer, String, DateTime
from sqlalchemy.orm import relationship

from app.database import Base, utcnow


def generate_api_token() -> str:
    """Generate an opaque bearer token for a user."""
    return secrets.token_hex(24)


class User(Base):
    """
    User model for bot ownership and identification.

    Attributes:
        id: Primary key
        username: Unique username (3-50 chars, alphanumeric + dash/underscore)
        email: Contact address (verification gates mutating operations)
        api_token: Bearer token presented by the dashboard
        email_confirmed_at: When the email was verified (None = unverified)
        bot_count: Quota counter maintained in the same transaction as
            bot inserts and deletes
        bots: Relationship to user's bots (one-to-many)
    """
    __tablename__ = "users"
    __table_args__ = (
        CheckConstraint("bot_count >= 0", name="ck_users_bot_count_non_negative"),
    )

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(50), unique=True, nullable=False, index=True)
    email = Column(String(255), nullable=True)
    api_token = Column(String(64), unique=True, nullable=False, index=True, default=generate_api_token)
    email_confirmed_at = Column(DateTime, nullable=True)
    bot_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    # Relationships
    bots = relationship("Bot", back_populates="owner", cascade="all, delete-orphan", passive_deletes=True)

    @property
    def is_verified(self) -> bool:
        return self.email_confirmed_at is not None

    def __repr__(self):
        return f"<User(id={self.id}, username='{self.username}')>"
