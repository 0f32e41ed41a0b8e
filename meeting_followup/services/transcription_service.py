"""
Speech-to-text through the OpenAI audio transcription endpoint.
"""
from typing import Optional

import httpx
from aiolimiter import AsyncLimiter
from pydantic import ValidationError

from meeting_followup.exceptions import PermanentIntegrationError
from meeting_followup.logging_config import get_logger
from meeting_followup.services.base import BaseHTTPService
from meeting_followup.services.contracts import Recording, TranscriptionResult

logger = get_logger(__name__)

# Whisper rejects uploads above 25 MB
MAX_UPLOAD_BYTES = 25 * 1024 * 1024


class OpenAITranscriptionService(BaseHTTPService):
    """Transcribes recordings with segment-level timestamps."""

    integration = "transcription"

    def __init__(
        self,
        api_key: str,
        model: str = "whisper-1",
        base_url: str = "https://api.openai.com/v1",
        timeout: float = 300.0,
        limiter: Optional[AsyncLimiter] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(timeout, limiter=limiter, transport=transport)
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")

    async def transcribe(self, recording: Recording) -> TranscriptionResult:
        """
        Transcribe a recording.

        Raises:
            TransientIntegrationError: timeouts, rate limits and server errors
            PermanentIntegrationError: empty, oversized or unsupported audio
        """
        if not recording.content:
            raise PermanentIntegrationError("Recording is empty", integration=self.integration)
        if len(recording.content) > MAX_UPLOAD_BYTES:
            raise PermanentIntegrationError(
                f"Recording is {len(recording.content)} bytes, above the {MAX_UPLOAD_BYTES} byte limit",
                integration=self.integration,
            )

        response = await self._request(
            "POST",
            f"{self.base_url}/audio/transcriptions",
            "transcribe",
            headers={"Authorization": f"Bearer {self.api_key}"},
            data={
                "model": self.model,
                "response_format": "verbose_json",
                "timestamp_granularities[]": "segment",
            },
            files={"file": (recording.filename, recording.content, recording.content_type)},
        )

        data = self._json(response, "transcribe")
        try:
            result = TranscriptionResult.model_validate(data)
        except ValidationError as e:
            raise PermanentIntegrationError(
                f"Unexpected transcription response: {e}",
                integration=self.integration,
            )

        logger.info(
            "recording_transcribed",
            recording=recording.filename,
            segments=len(result.segments),
            language=result.language,
        )
        return result
