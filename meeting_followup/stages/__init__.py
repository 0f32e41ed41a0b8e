"""
Pipeline stages. Each stage reads committed state, calls its collaborators
and writes its own outputs; meeting status is left to the coordinator.
"""
from meeting_followup.stages.extraction import (
    ExtractedActionItem,
    ExtractionStage,
    resolve_assignee,
    validate_action_item,
)
from meeting_followup.stages.notification import ItemOutcome, NotificationStage, build_chat_message
from meeting_followup.stages.transcription import TranscriptionStage

__all__ = [
    'ExtractedActionItem',
    'ExtractionStage',
    'ItemOutcome',
    'NotificationStage',
    'TranscriptionStage',
    'build_chat_message',
    'resolve_assignee',
    'validate_action_item',
]
