"""
Narrow contracts for the external collaborators the pipeline consumes.

Stages depend only on these protocols; the httpx-based clients in this
package are one implementation of each.
"""
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Protocol

from pydantic import BaseModel


@dataclass
class Recording:
    content: bytes
    filename: str
    content_type: str = "application/octet-stream"


class TranscriptSegment(BaseModel):
    start: float
    end: float
    text: str


class TranscriptionResult(BaseModel):
    text: str
    segments: List[TranscriptSegment] = []
    language: Optional[str] = None
    duration: Optional[float] = None


@dataclass
class ChatCredential:
    token: str
    channel: str


@dataclass
class ChatMessage:
    text: str
    blocks: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class CalendarCredential:
    access_token: str


@dataclass
class CalendarEvent:
    title: str
    description: str
    start: datetime
    end: datetime
    timezone: str = "UTC"


class RecordingStorage(Protocol):
    async def resolve(self, recording_ref: str) -> Recording:
        ...


class SpeechToText(Protocol):
    async def transcribe(self, recording: Recording) -> TranscriptionResult:
        ...


class ExtractionModel(Protocol):
    async def extract_action_items(
        self,
        transcript_text: str,
        meeting_title: Optional[str] = None,
        meeting_date: Optional[date] = None,
    ) -> List[Any]:
        ...

    async def summarize(self, transcript_text: str, meeting_title: Optional[str] = None) -> str:
        ...


class ChatNotifier(Protocol):
    async def send_direct_message(self, credential: ChatCredential, message: ChatMessage) -> str:
        ...


class CalendarScheduler(Protocol):
    async def create_event(self, credential: CalendarCredential, event: CalendarEvent) -> str:
        ...


class CredentialProvider(Protocol):
    def chat_credential(self, user: Any) -> Optional[ChatCredential]:
        ...

    def calendar_credential(self, user: Any) -> Optional[CalendarCredential]:
        ...
