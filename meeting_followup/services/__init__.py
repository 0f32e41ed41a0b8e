"""
External collaborator contracts and their HTTP clients.
"""
from meeting_followup.services.base import BaseHTTPService
from meeting_followup.services.calendar_service import GoogleCalendarService
from meeting_followup.services.contracts import (
    CalendarCredential,
    CalendarEvent,
    ChatCredential,
    ChatMessage,
    Recording,
    TranscriptionResult,
    TranscriptSegment,
)
from meeting_followup.services.credentials import CredentialStore
from meeting_followup.services.llm_service import OpenAIExtractionService
from meeting_followup.services.slack_service import SlackChatService
from meeting_followup.services.storage import LocalAndHTTPStorage
from meeting_followup.services.transcription_service import OpenAITranscriptionService

__all__ = [
    'BaseHTTPService',
    'CalendarCredential',
    'CalendarEvent',
    'ChatCredential',
    'ChatMessage',
    'CredentialStore',
    'GoogleCalendarService',
    'LocalAndHTTPStorage',
    'OpenAIExtractionService',
    'OpenAITranscriptionService',
    'Recording',
    'SlackChatService',
    'TranscriptionResult',
    'TranscriptSegment',
]
