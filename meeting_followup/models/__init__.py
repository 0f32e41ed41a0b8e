"""
Database models package.
Import all models here so the metadata knows every table.
"""
from meeting_followup.models.base import Base
from meeting_followup.models.user import User
from meeting_followup.models.meeting import (
    ActionItem,
    ActionItemStatus,
    Meeting,
    MeetingStatus,
    Transcript,
    TERMINAL_STATUSES,
)
from meeting_followup.models.integration import (
    IntegrationKind,
    IntegrationLogEntry,
    IntegrationOutcome,
)

__all__ = [
    'Base',
    'User',
    'Meeting',
    'MeetingStatus',
    'TERMINAL_STATUSES',
    'Transcript',
    'ActionItem',
    'ActionItemStatus',
    'IntegrationLogEntry',
    'IntegrationKind',
    'IntegrationOutcome',
]
