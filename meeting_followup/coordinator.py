"""
Pipeline coordinator: the meeting status state machine.

The coordinator is the only writer of ``Meeting.status``. Each ``advance``
call performs one step:

    pending      -> transcribing   (job accepted, no stage runs)
    transcribing -> extracting     (TranscriptionStage)
    extracting   -> notifying      (ExtractionStage)
    notifying    -> completed      (NotificationStage)

Any non-terminal state can move to ``failed``. ``completed`` and ``failed``
are terminal. Calls for the same meeting id are serialized by an in-process
keyed lock; the status write itself is a compare-and-set so a second process
racing on the same meeting cannot apply a transition twice.
"""
import asyncio
import time
from collections import defaultdict
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Dict, Optional, Protocol

from sqlalchemy import update

from meeting_followup.db import Database
from meeting_followup.exceptions import NotFoundError, PipelineError, StateConflictError
from meeting_followup.logging_config import get_logger
from meeting_followup.models import Meeting, MeetingStatus, TERMINAL_STATUSES
from meeting_followup.monitoring import record_error, stage_duration, stage_runs_total, status_transitions_total
from meeting_followup.retry import RetryPolicy
from meeting_followup.utils import utcnow

logger = get_logger(__name__)

NEXT_STATUS: Dict[MeetingStatus, MeetingStatus] = {
    MeetingStatus.PENDING: MeetingStatus.TRANSCRIBING,
    MeetingStatus.TRANSCRIBING: MeetingStatus.EXTRACTING,
    MeetingStatus.EXTRACTING: MeetingStatus.NOTIFYING,
    MeetingStatus.NOTIFYING: MeetingStatus.COMPLETED,
}


def is_allowed_transition(current: MeetingStatus, target: MeetingStatus) -> bool:
    if current in TERMINAL_STATUSES:
        return False
    return target == MeetingStatus.FAILED or NEXT_STATUS.get(current) == target


class Stage(Protocol):
    name: str

    async def run(self, meeting_id: str) -> None:
        ...


@dataclass(frozen=True)
class AdvanceResult:
    meeting_id: str
    status: MeetingStatus
    noop: bool = False

    @property
    def terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class KeyedLock:
    """One asyncio.Lock per key, dropped once nobody holds or waits for it."""

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = defaultdict(int)

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] += 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)


class PipelineCoordinator:
    def __init__(
        self,
        database: Database,
        transcription: Stage,
        extraction: Stage,
        notification: Stage,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        self._database = database
        self._stages: Dict[MeetingStatus, Stage] = {
            MeetingStatus.TRANSCRIBING: transcription,
            MeetingStatus.EXTRACTING: extraction,
            MeetingStatus.NOTIFYING: notification,
        }
        self._retry_policy = retry_policy or RetryPolicy()
        self._locks = KeyedLock()

    async def get_status(self, meeting_id: str) -> MeetingStatus:
        async with self._database.session() as session:
            meeting = await session.get(Meeting, meeting_id)
            if meeting is None:
                raise NotFoundError("meeting", meeting_id)
            return MeetingStatus(meeting.status)

    async def advance(self, meeting_id: str) -> AdvanceResult:
        """
        Run the next step for a meeting.

        Raises:
            NotFoundError: the meeting does not exist (or was deleted mid-run)
        """
        async with self._locks.hold(meeting_id):
            status = await self.get_status(meeting_id)
            if status in TERMINAL_STATUSES:
                logger.debug("advance_noop_terminal", meeting_id=meeting_id, status=status.value)
                return AdvanceResult(meeting_id, status, noop=True)

            if status == MeetingStatus.PENDING:
                return await self._apply(meeting_id, status, MeetingStatus.TRANSCRIBING)

            stage = self._stages[status]
            try:
                await self._run_stage(stage, meeting_id)
            except NotFoundError:
                raise
            except PipelineError as e:
                logger.error(
                    "stage_failed",
                    meeting_id=meeting_id,
                    stage=stage.name,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                return await self._apply(meeting_id, status, MeetingStatus.FAILED, error_message=f"{stage.name}: {e}")

            return await self._apply(meeting_id, status, NEXT_STATUS[status])

    async def run_to_completion(self, meeting_id: str) -> AdvanceResult:
        """Advance until the meeting reaches a terminal status."""
        while True:
            result = await self.advance(meeting_id)
            if result.terminal:
                return result

    async def fail(self, meeting_id: str, error: BaseException) -> AdvanceResult:
        """Mark a non-terminal meeting failed; terminal meetings are left untouched."""
        async with self._locks.hold(meeting_id):
            status = await self.get_status(meeting_id)
            if status in TERMINAL_STATUSES:
                return AdvanceResult(meeting_id, status, noop=True)
            return await self._apply(meeting_id, status, MeetingStatus.FAILED, error_message=str(error))

    async def _run_stage(self, stage: Stage, meeting_id: str) -> None:
        logger.info("stage_started", meeting_id=meeting_id, stage=stage.name)
        start = time.monotonic()
        try:
            await self._retry_policy.run(stage.run, meeting_id)
        except Exception as e:
            stage_runs_total.labels(stage=stage.name, outcome="error").inc()
            record_error(type(e).__name__, stage.name)
            raise
        finally:
            stage_duration.labels(stage=stage.name).observe(time.monotonic() - start)
        stage_runs_total.labels(stage=stage.name, outcome="success").inc()
        logger.info("stage_finished", meeting_id=meeting_id, stage=stage.name)

    async def _apply(
        self,
        meeting_id: str,
        current: MeetingStatus,
        target: MeetingStatus,
        error_message: Optional[str] = None,
    ) -> AdvanceResult:
        try:
            await self._transition(meeting_id, current, target, error_message)
        except StateConflictError as e:
            logger.info("transition_conflict", meeting_id=meeting_id, current=e.current, expected=e.expected)
            return AdvanceResult(meeting_id, MeetingStatus(e.current), noop=True)
        return AdvanceResult(meeting_id, target)

    async def _transition(
        self,
        meeting_id: str,
        current: MeetingStatus,
        target: MeetingStatus,
        error_message: Optional[str] = None,
    ) -> None:
        """Compare-and-set the status; exactly one write per transition."""
        if not is_allowed_transition(current, target):
            raise StateConflictError(meeting_id, current.value, target.value)

        values = {"status": target.value, "updated_at": utcnow()}
        if target == MeetingStatus.FAILED:
            values["error_message"] = error_message
        if target == MeetingStatus.COMPLETED:
            values["completed_at"] = utcnow()

        async with self._database.session() as session:
            result = await session.execute(
                update(Meeting)
                .where(Meeting.id == meeting_id, Meeting.status == current.value)
                .values(**values)
            )
            if result.rowcount == 1:
                status_transitions_total.labels(from_status=current.value, to_status=target.value).inc()
                log = logger.warning if target == MeetingStatus.FAILED else logger.info
                log("meeting_status_changed", meeting_id=meeting_id, from_status=current.value,
                    to_status=target.value, error=error_message)
                return
            meeting = await session.get(Meeting, meeting_id)

        if meeting is None:
            raise NotFoundError("meeting", meeting_id)
        raise StateConflictError(meeting_id, meeting.status, current.value)
