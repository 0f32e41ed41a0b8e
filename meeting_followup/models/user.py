"""
Known users that action items can be assigned to.
"""
from sqlalchemy import Column, DateTime, Integer, String

from meeting_followup.models.base import Base
from meeting_followup.utils import utcnow


class User(Base):
    """User with optional chat and calendar integration tokens."""

    __tablename__ = 'users'

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=True)
    email = Column(String(255), nullable=True, index=True)
    slack_user_id = Column(String(64), nullable=True)
    slack_token = Column(String(4096), nullable=True)  # Encrypted
    google_access_token = Column(String(4096), nullable=True)  # Encrypted
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<User(id={self.id}, email='{self.email}')>"
