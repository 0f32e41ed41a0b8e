"""
Pytest configuration and fixtures.
"""
from datetime import date, datetime
from typing import Any, Dict, List, Optional

import pytest
from cryptography.fernet import Fernet
from sqlalchemy import delete, select

from meeting_followup.config import Settings
from meeting_followup.coordinator import PipelineCoordinator
from meeting_followup.db import Database
from meeting_followup.exceptions import PermanentIntegrationError
from meeting_followup.integration_log import IntegrationLog
from meeting_followup.models import ActionItem, Meeting, MeetingStatus, Transcript, User
from meeting_followup.retry import RetryPolicy
from meeting_followup.services import CredentialStore
from meeting_followup.services.contracts import (
    CalendarCredential,
    CalendarEvent,
    ChatCredential,
    ChatMessage,
    Recording,
    TranscriptionResult,
    TranscriptSegment,
)
from meeting_followup.stages import ExtractionStage, NotificationStage, TranscriptionStage
from meeting_followup.utils import TokenDecryptor


# ============================================
# TEST CONFIGURATION
# ============================================

@pytest.fixture(scope="session")
def test_encryption_key():
    """Generate a test encryption key."""
    return Fernet.generate_key().decode()


@pytest.fixture(scope="session")
def decryptor(test_encryption_key):
    return TokenDecryptor(test_encryption_key)


@pytest.fixture
def test_settings(test_encryption_key, tmp_path):
    """Create test settings."""
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'settings.db'}",
        encryption_key=test_encryption_key,
        openai_api_key="sk-test",
        debug=True,
    )


@pytest.fixture
def fast_retry():
    """Three attempts without sleeping."""
    return RetryPolicy(max_attempts=3, min_wait=0, max_wait=0)


# ============================================
# DATABASE FIXTURES
# ============================================

@pytest.fixture
async def database(tmp_path):
    """On-disk SQLite database with all tables, one per test."""
    db = Database(f"sqlite+aiosqlite:///{tmp_path / 'pipeline.db'}")
    await db.open()
    await db.create_tables()
    yield db
    await db.close()


@pytest.fixture
def integration_log(database):
    return IntegrationLog(database)


@pytest.fixture
def credentials(decryptor):
    return CredentialStore(decryptor)


# ============================================
# FAKE COLLABORATORS
# ============================================

class FakeStorage:
    def __init__(self, content: bytes = b"RIFF....WAVEfmt "):
        self.content = content
        self.calls: List[str] = []

    async def resolve(self, recording_ref: str) -> Recording:
        self.calls.append(recording_ref)
        if recording_ref.startswith("missing://"):
            raise PermanentIntegrationError(f"Recording not found: {recording_ref}", integration="storage")
        return Recording(content=self.content, filename="meeting.wav", content_type="audio/wav")


class FakeSpeechToText:
    def __init__(self, text: str = "Alice will send the report by Friday. Bob reviews the budget."):
        self.text = text
        self.errors: List[Exception] = []
        self.calls = 0

    async def transcribe(self, recording: Recording) -> TranscriptionResult:
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return TranscriptionResult(
            text=self.text,
            segments=[TranscriptSegment(start=0.0, end=4.2, text=self.text)],
            language="en",
            duration=4.2,
        )


class FakeExtractionModel:
    def __init__(self, items: Optional[List[Any]] = None, summary: str = "The team agreed on next steps."):
        self.items = items if items is not None else []
        self.summary = summary
        self.extract_errors: List[Exception] = []
        self.extract_calls = 0
        self.summarize_calls = 0
        self.meeting_dates: List[Optional[date]] = []

    async def extract_action_items(
        self,
        transcript_text: str,
        meeting_title: Optional[str] = None,
        meeting_date: Optional[date] = None,
    ) -> List[Any]:
        self.extract_calls += 1
        self.meeting_dates.append(meeting_date)
        if self.extract_errors:
            raise self.extract_errors.pop(0)
        return list(self.items)

    async def summarize(self, transcript_text: str, meeting_title: Optional[str] = None) -> str:
        self.summarize_calls += 1
        return self.summary


class FakeChat:
    def __init__(self):
        self.sent: List[Dict[str, Any]] = []
        # channel -> queue of errors raised before succeeding
        self.errors: Dict[str, List[Exception]] = {}
        self.attempts = 0

    async def send_direct_message(self, credential: ChatCredential, message: ChatMessage) -> str:
        self.attempts += 1
        pending = self.errors.get(credential.channel)
        if pending:
            raise pending.pop(0)
        self.sent.append({"channel": credential.channel, "text": message.text, "blocks": message.blocks})
        return f"ts-{len(self.sent)}"


class FakeCalendar:
    def __init__(self):
        self.events: List[CalendarEvent] = []
        self.errors: List[Exception] = []

    async def create_event(self, credential: CalendarCredential, event: CalendarEvent) -> str:
        if self.errors:
            raise self.errors.pop(0)
        self.events.append(event)
        return f"evt-{len(self.events)}"


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def speech_to_text():
    return FakeSpeechToText()


@pytest.fixture
def extraction_model():
    return FakeExtractionModel()


@pytest.fixture
def chat():
    return FakeChat()


@pytest.fixture
def calendar():
    return FakeCalendar()


# ============================================
# PIPELINE FIXTURES
# ============================================

@pytest.fixture
def transcription_stage(database, integration_log, storage, speech_to_text):
    return TranscriptionStage(database, integration_log, storage, speech_to_text)


@pytest.fixture
def extraction_stage(database, integration_log, extraction_model):
    return ExtractionStage(database, integration_log, extraction_model)


@pytest.fixture
def notification_stage(database, integration_log, chat, credentials, calendar):
    return NotificationStage(database, integration_log, chat, credentials, calendar=calendar)


@pytest.fixture
def coordinator(database, transcription_stage, extraction_stage, notification_stage, fast_retry):
    return PipelineCoordinator(
        database,
        transcription=transcription_stage,
        extraction=extraction_stage,
        notification=notification_stage,
        retry_policy=fast_retry,
    )


# ============================================
# FACTORY FIXTURES
# ============================================

class Factory:
    """Inserts rows through short sessions, like the pipeline does."""

    def __init__(self, database: Database, decryptor: TokenDecryptor):
        self.database = database
        self.decryptor = decryptor

    async def meeting(
        self,
        meeting_id: str = "m1",
        title: Optional[str] = "Weekly sync",
        recording_ref: Optional[str] = "file:///recordings/m1.wav",
        status: MeetingStatus = MeetingStatus.PENDING,
        summary: Optional[str] = None,
        created_at: Optional[datetime] = None,
    ) -> str:
        extra = {"created_at": created_at} if created_at is not None else {}
        async with self.database.session() as session:
            session.add(Meeting(
                id=meeting_id,
                title=title,
                recording_ref=recording_ref,
                status=status.value,
                summary=summary,
                **extra,
            ))
        return meeting_id

    async def user(
        self,
        name: str,
        email: str,
        slack_user_id: Optional[str] = None,
        slack_token: Optional[str] = None,
        google_token: Optional[str] = None,
    ) -> int:
        async with self.database.session() as session:
            user = User(
                name=name,
                email=email,
                slack_user_id=slack_user_id,
                slack_token=self.decryptor.encrypt_token(slack_token) if slack_token else None,
                google_access_token=self.decryptor.encrypt_token(google_token) if google_token else None,
            )
            session.add(user)
            await session.flush()
            return user.id

    async def transcript(self, meeting_id: str, text: str = "Alice will send the report.") -> None:
        async with self.database.session() as session:
            session.add(Transcript(meeting_id=meeting_id, full_text=text, segments=[]))

    async def action_item(
        self,
        meeting_id: str,
        description: str = "Send the report",
        assignee_id: Optional[int] = None,
        due_date: Optional[date] = None,
        notified: bool = False,
    ) -> int:
        async with self.database.session() as session:
            item = ActionItem(
                meeting_id=meeting_id,
                description=description,
                assignee_id=assignee_id,
                due_date=due_date,
                notified=notified,
            )
            session.add(item)
            await session.flush()
            return item.id

    async def get_meeting(self, meeting_id: str) -> Optional[Meeting]:
        async with self.database.session() as session:
            return await session.get(Meeting, meeting_id)

    async def get_action_items(self, meeting_id: str) -> List[ActionItem]:
        async with self.database.session() as session:
            result = await session.execute(
                select(ActionItem).where(ActionItem.meeting_id == meeting_id).order_by(ActionItem.id)
            )
            return list(result.scalars().all())

    async def delete_meeting(self, meeting_id: str) -> None:
        async with self.database.session() as session:
            await session.execute(delete(ActionItem).where(ActionItem.meeting_id == meeting_id))
            await session.execute(delete(Transcript).where(Transcript.meeting_id == meeting_id))
            await session.execute(delete(Meeting).where(Meeting.id == meeting_id))


@pytest.fixture
def factory(database, decryptor):
    return Factory(database, decryptor)
