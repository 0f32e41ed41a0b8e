"""
Append-only log of external collaborator calls.
"""
import enum

from sqlalchemy import Column, DateTime, Index, Integer, JSON, String

from meeting_followup.models.base import Base
from meeting_followup.utils import utcnow


class IntegrationKind(str, enum.Enum):
    TRANSCRIPTION = "transcription"
    EXTRACTION = "extraction"
    CHAT = "chat"
    CALENDAR = "calendar"


class IntegrationOutcome(str, enum.Enum):
    SUCCESS = "success"
    ERROR = "error"


class IntegrationLogEntry(Base):
    """One attempt at an external call. Never updated or deleted."""

    __tablename__ = 'integration_logs'
    __table_args__ = (
        Index('ix_integration_logs_entity', 'entity_type', 'entity_id', 'integration_type'),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    entity_type = Column(String(50), nullable=False)
    entity_id = Column(String(64), nullable=False)
    integration_type = Column(String(20), nullable=False)
    outcome = Column(String(10), nullable=False)
    details = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    def __repr__(self):
        return (
            f"<IntegrationLogEntry(id={self.id}, {self.entity_type}:{self.entity_id}, "
            f"'{self.integration_type}', '{self.outcome}')>"
        )
