"""
Meeting, transcript and action item models.
"""
import enum

from sqlalchemy import Boolean, Column, Date, DateTime, ForeignKey, Integer, JSON, String, Text
from sqlalchemy.orm import relationship

from meeting_followup.models.base import Base
from meeting_followup.utils import utcnow


class MeetingStatus(str, enum.Enum):
    PENDING = "pending"
    TRANSCRIBING = "transcribing"
    EXTRACTING = "extracting"
    NOTIFYING = "notifying"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({MeetingStatus.COMPLETED, MeetingStatus.FAILED})


class ActionItemStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"


class Meeting(Base):
    """A recorded meeting moving through the follow-up pipeline."""

    __tablename__ = 'meetings'

    id = Column(String(64), primary_key=True)
    title = Column(String(500), nullable=True)
    recording_ref = Column(Text, nullable=True)
    # Written only by the coordinator
    status = Column(String(20), nullable=False, default=MeetingStatus.PENDING.value, index=True)
    summary = Column(Text, nullable=True)
    error_message = Column(Text, nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    transcript = relationship("Transcript", back_populates="meeting", uselist=False, cascade="all, delete-orphan")
    action_items = relationship(
        "ActionItem",
        back_populates="meeting",
        cascade="all, delete-orphan",
        order_by="ActionItem.id",
    )

    def __repr__(self):
        return f"<Meeting(id='{self.id}', status='{self.status}')>"


class Transcript(Base):
    """Transcript of a meeting; at most one per meeting."""

    __tablename__ = 'transcripts'

    id = Column(Integer, primary_key=True, autoincrement=True)
    meeting_id = Column(String(64), ForeignKey('meetings.id', ondelete='CASCADE'), nullable=False, unique=True)
    full_text = Column(Text, nullable=False, default="")
    segments = Column(JSON, nullable=False, default=list)  # [{start, end, text}, ...]
    language = Column(String(20), nullable=True)
    duration_seconds = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    meeting = relationship("Meeting", back_populates="transcript")

    def __repr__(self):
        return f"<Transcript(meeting_id='{self.meeting_id}', segments={len(self.segments or [])})>"


class ActionItem(Base):
    """Follow-up task extracted from a meeting transcript."""

    __tablename__ = 'action_items'

    id = Column(Integer, primary_key=True, autoincrement=True)
    meeting_id = Column(String(64), ForeignKey('meetings.id', ondelete='CASCADE'), nullable=False, index=True)
    description = Column(Text, nullable=False)
    assignee_id = Column(Integer, ForeignKey('users.id', ondelete='SET NULL'), nullable=True, index=True)
    assignee_text = Column(String(255), nullable=True)
    due_date = Column(Date, nullable=True)
    priority = Column(String(10), nullable=True)  # low, medium, high
    status = Column(String(20), nullable=False, default=ActionItemStatus.PENDING.value)
    notified = Column(Boolean, nullable=False, default=False)
    notification_ref = Column(String(255), nullable=True)  # chat message ts
    calendar_event_id = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    meeting = relationship("Meeting", back_populates="action_items")
    assignee = relationship("User")

    def __repr__(self):
        return f"<ActionItem(id={self.id}, meeting_id='{self.meeting_id}', notified={self.notified})>"
