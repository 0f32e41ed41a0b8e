#!/usr/bin/env python3
"""
Command line entry point for the meeting follow-up pipeline.

    meeting-followup process <meeting_id> [<meeting_id> ...]
    meeting-followup init-db [--reset]

``process`` wires every collaborator from settings, runs a worker pool until
the given meetings are drained, then shuts everything down.
"""
import asyncio
import sys
import time
from typing import List, Optional, Sequence

from prometheus_client import start_http_server

from meeting_followup.config import Settings, load_settings
from meeting_followup.coordinator import PipelineCoordinator
from meeting_followup.db import Database
from meeting_followup.exceptions import ConfigurationError
from meeting_followup.integration_log import IntegrationLog
from meeting_followup.logging_config import get_logger, setup_logging
from meeting_followup.rate_limiters import RateLimiters
from meeting_followup.retry import RetryPolicy
from meeting_followup.services import (
    BaseHTTPService,
    CredentialStore,
    GoogleCalendarService,
    LocalAndHTTPStorage,
    OpenAIExtractionService,
    OpenAITranscriptionService,
    SlackChatService,
)
from meeting_followup.stages import ExtractionStage, NotificationStage, TranscriptionStage
from meeting_followup.utils import TokenDecryptor, format_duration
from meeting_followup.worker import JOB_RETRYABLE_ERRORS, JobQueue, WorkerPool

logger = get_logger(__name__)

USAGE = (
    "usage:\n"
    "  meeting-followup process <meeting_id> [<meeting_id> ...]\n"
    "  meeting-followup init-db [--reset]"
)


class Runtime:
    """Everything a worker pool needs, with one open/close lifecycle."""

    def __init__(self, settings: Settings):
        if not settings.is_openai_configured:
            raise ConfigurationError("OPENAI_API_KEY is required to process meetings")

        self.settings = settings
        self.database = Database(settings.database_url, echo=settings.debug)
        limiters = RateLimiters(settings)

        self.storage = LocalAndHTTPStorage(timeout=settings.storage_timeout)
        self.speech_to_text = OpenAITranscriptionService(
            settings.openai_api_key,
            model=settings.transcription_model,
            base_url=settings.openai_base_url,
            timeout=settings.transcription_timeout,
            limiter=limiters.for_integration("transcription"),
        )
        self.extraction_model = OpenAIExtractionService(
            settings.openai_api_key,
            model=settings.extraction_model,
            base_url=settings.openai_base_url,
            timeout=settings.llm_timeout,
            limiter=limiters.for_integration("extraction"),
        )
        self.chat = SlackChatService(
            api_base=settings.slack_api_base,
            timeout=settings.chat_timeout,
            limiter=limiters.for_integration("chat"),
        )
        self.calendar = GoogleCalendarService(
            api_base=settings.google_calendar_base,
            timeout=settings.calendar_timeout,
            limiter=limiters.for_integration("calendar"),
        )
        self.clients: List[BaseHTTPService] = [
            self.storage, self.speech_to_text, self.extraction_model, self.chat, self.calendar,
        ]

        integration_log = IntegrationLog(self.database)
        credentials = CredentialStore(TokenDecryptor(settings.encryption_key))

        self.coordinator = PipelineCoordinator(
            self.database,
            transcription=TranscriptionStage(self.database, integration_log, self.storage, self.speech_to_text),
            extraction=ExtractionStage(self.database, integration_log, self.extraction_model),
            notification=NotificationStage(
                self.database,
                integration_log,
                self.chat,
                credentials,
                calendar=self.calendar,
                reminders_enabled=settings.calendar_reminders_enabled,
                reminder_hour=settings.calendar_reminder_hour,
                reminder_timezone=settings.calendar_timezone,
                app_base_url=settings.app_base_url,
            ),
            retry_policy=RetryPolicy.from_settings(settings),
        )
        self.queue = JobQueue()
        self.pool = WorkerPool(
            self.coordinator,
            self.queue,
            concurrency=settings.worker_concurrency,
            retry_policy=RetryPolicy.from_settings(
                settings,
                max_attempts=settings.job_max_attempts,
                retry_on=JOB_RETRYABLE_ERRORS,
            ),
        )

    async def open(self) -> None:
        await self.database.open()
        for client in self.clients:
            await client.open()

    async def close(self) -> None:
        for client in self.clients:
            await client.close()
        await self.database.close()


async def process(meeting_ids: Sequence[str], settings: Optional[Settings] = None) -> None:
    """Process the given meetings to a terminal status."""
    settings = settings or load_settings()
    if settings.metrics_port:
        start_http_server(settings.metrics_port)
        logger.info("metrics_server_started", port=settings.metrics_port)

    runtime = Runtime(settings)
    start = time.monotonic()
    await runtime.open()
    try:
        runtime.pool.start()
        for meeting_id in meeting_ids:
            runtime.queue.enqueue(meeting_id)
        await runtime.pool.shutdown(drain=True)
    finally:
        await runtime.close()
    logger.info(
        "processing_finished",
        meetings=len(meeting_ids),
        duration=format_duration(time.monotonic() - start),
    )


async def init_db(reset: bool = False, settings: Optional[Settings] = None) -> None:
    """Create the pipeline tables; with ``reset`` drop them first."""
    settings = settings or load_settings()
    database = Database(settings.database_url)
    await database.open()
    try:
        if reset:
            logger.warning("dropping_all_tables", database=database.engine.url.render_as_string(hide_password=True))
            await database.drop_tables()
        await database.create_tables()
        logger.info("database_tables_created", tables=["users", "meetings", "transcripts", "action_items",
                                                       "integration_logs"])
    finally:
        await database.close()


def run(argv: Optional[List[str]] = None) -> int:
    args = list(sys.argv[1:] if argv is None else argv)
    if not args or args[0] not in ("process", "init-db"):
        print(USAGE, file=sys.stderr)
        return 2

    command, rest = args[0], args[1:]
    settings = load_settings()
    setup_logging(settings)

    if command == "process":
        if not rest:
            print(USAGE, file=sys.stderr)
            return 2
        asyncio.run(process(rest, settings))
        return 0

    if rest and rest != ["--reset"]:
        print(USAGE, file=sys.stderr)
        return 2
    if rest:
        response = input("This will DELETE ALL DATA in the pipeline tables. Continue? (yes/no): ")
        if response.lower() != "yes":
            logger.info("reset_cancelled")
            return 1
    asyncio.run(init_db(reset=bool(rest), settings=settings))
    return 0


if __name__ == "__main__":
    sys.exit(run())
