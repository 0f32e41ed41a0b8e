"""
Transcription stage: stored recording -> persisted transcript.
"""
from sqlalchemy import select

from meeting_followup.db import Database
from meeting_followup.exceptions import NotFoundError, PermanentIntegrationError
from meeting_followup.integration_log import IntegrationLog
from meeting_followup.logging_config import get_logger
from meeting_followup.models import IntegrationKind, Meeting, Transcript
from meeting_followup.services.contracts import RecordingStorage, SpeechToText, TranscriptionResult

logger = get_logger(__name__)


class TranscriptionStage:
    name = "transcription"

    def __init__(
        self,
        database: Database,
        integration_log: IntegrationLog,
        storage: RecordingStorage,
        speech_to_text: SpeechToText,
    ):
        self._database = database
        self._log = integration_log
        self._storage = storage
        self._speech_to_text = speech_to_text

    async def run(self, meeting_id: str) -> None:
        async with self._database.session() as session:
            meeting = await session.get(Meeting, meeting_id)
            if meeting is None:
                raise NotFoundError("meeting", meeting_id)
            recording_ref = meeting.recording_ref

        async with self._log.attempt("meeting", meeting_id, IntegrationKind.TRANSCRIPTION) as attempt:
            if not recording_ref:
                raise PermanentIntegrationError("Meeting has no recording reference", integration="storage")
            recording = await self._storage.resolve(recording_ref)
            attempt.details.update(filename=recording.filename, size_bytes=len(recording.content))
            result = await self._speech_to_text.transcribe(recording)
            attempt.details.update(segments=len(result.segments), language=result.language)

        await self._upsert_transcript(meeting_id, result)

    async def _upsert_transcript(self, meeting_id: str, result: TranscriptionResult) -> None:
        segments = [segment.model_dump() for segment in result.segments]
        duration = int(result.duration) if result.duration is not None else None

        async with self._database.session() as session:
            if await session.get(Meeting, meeting_id) is None:
                raise NotFoundError("meeting", meeting_id)
            existing = await session.execute(select(Transcript).where(Transcript.meeting_id == meeting_id))
            transcript = existing.scalar_one_or_none()
            if transcript is None:
                session.add(Transcript(
                    meeting_id=meeting_id,
                    full_text=result.text,
                    segments=segments,
                    language=result.language,
                    duration_seconds=duration,
                ))
                created = True
            else:
                transcript.full_text = result.text
                transcript.segments = segments
                transcript.language = result.language
                transcript.duration_seconds = duration
                created = False

        logger.info("transcript_saved", meeting_id=meeting_id, inserted=created, segments=len(segments))
