"""
Extraction stage: transcript -> action items and meeting summary.

Model output is validated item by item. A malformed item is dropped as a
``ParseError`` and never fails the stage. Assignees are resolved against
known users with a deterministic tie-break: exact email, then exact name,
then a substring of name or email, each scanned in user id order.

Re-running the stage keeps the first set of action items (skip policy) and
does not regenerate an existing summary.
"""
from datetime import date
from typing import Any, List, Optional, Sequence, Tuple

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator
from sqlalchemy import func, select

from meeting_followup.db import Database
from meeting_followup.exceptions import NotFoundError, ParseError, UnusableTranscriptError
from meeting_followup.integration_log import IntegrationLog
from meeting_followup.logging_config import get_logger
from meeting_followup.models import ActionItem, IntegrationKind, Meeting, Transcript, User
from meeting_followup.services.contracts import ExtractionModel

logger = get_logger(__name__)

PRIORITIES = ("low", "medium", "high")
_EMPTY_ASSIGNEES = {"", "null", "none", "unassigned", "n/a", "tbd"}


class ExtractedActionItem(BaseModel):
    """One action item as returned by the model, after validation."""

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    description: str = Field(min_length=1)
    assignee: Optional[str] = None
    due_date: Optional[date] = Field(default=None, validation_alias=AliasChoices("dueDate", "due_date", "deadline"))
    priority: Optional[str] = None

    @field_validator("assignee", mode="before")
    @classmethod
    def blank_assignee_is_none(cls, v: Any) -> Optional[str]:
        if not isinstance(v, str) or v.strip().lower() in _EMPTY_ASSIGNEES:
            return None
        return v

    @field_validator("due_date", mode="before")
    @classmethod
    def lenient_due_date(cls, v: Any) -> Optional[date]:
        if v is None or isinstance(v, date):
            return v
        if isinstance(v, str):
            try:
                return date.fromisoformat(v.strip()[:10])
            except ValueError:
                logger.warning("unparseable_due_date", value=v)
        return None

    @field_validator("priority", mode="before")
    @classmethod
    def known_priority(cls, v: Any) -> Optional[str]:
        if isinstance(v, str) and v.strip().lower() in PRIORITIES:
            return v.strip().lower()
        return None


def validate_action_item(raw: Any) -> ExtractedActionItem:
    """Validate one raw item or raise ``ParseError``."""
    if not isinstance(raw, dict):
        raise ParseError(f"Action item is a {type(raw).__name__}, not an object", raw=raw)
    if "description" not in raw and "task" in raw:
        raw = {**raw, "description": raw["task"]}
    try:
        return ExtractedActionItem.model_validate(raw)
    except ValidationError as e:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
        raise ParseError(f"Invalid action item ({fields})", raw=raw)


def resolve_assignee(assignee_text: Optional[str], users: Sequence[User]) -> Optional[User]:
    """First user matching the free text, or None. ``users`` must be in a fixed order."""
    if not assignee_text:
        return None
    needle = assignee_text.strip().casefold()
    if not needle:
        return None

    def norm(value: Optional[str]) -> str:
        return (value or "").casefold()

    matchers = (
        lambda u: norm(u.email) == needle,
        lambda u: norm(u.name) == needle,
        lambda u: needle in norm(u.name) or needle in norm(u.email),
    )
    for matches in matchers:
        for user in users:
            if matches(user):
                return user
    return None


class ExtractionStage:
    name = "extraction"

    def __init__(self, database: Database, integration_log: IntegrationLog, model: ExtractionModel):
        self._database = database
        self._log = integration_log
        self._model = model

    async def run(self, meeting_id: str) -> None:
        async with self._database.session() as session:
            meeting = await session.get(Meeting, meeting_id)
            if meeting is None:
                raise NotFoundError("meeting", meeting_id)
            title = meeting.title
            meeting_date = meeting.created_at.date() if meeting.created_at else None
            has_summary = meeting.summary is not None
            transcript = (
                await session.execute(select(Transcript).where(Transcript.meeting_id == meeting_id))
            ).scalar_one_or_none()
            existing_items = await self._count_items(session, meeting_id)
            users = list((await session.execute(select(User).order_by(User.id))).scalars().all())

        if transcript is None or not (transcript.full_text or "").strip():
            raise UnusableTranscriptError(f"Meeting {meeting_id} has no usable transcript")
        text = transcript.full_text

        items: Optional[List[ExtractedActionItem]] = None
        if existing_items:
            logger.info("action_items_exist_skipping_extraction", meeting_id=meeting_id, count=existing_items)
        else:
            async with self._log.attempt(
                "meeting", meeting_id, IntegrationKind.EXTRACTION, operation="extract_action_items"
            ) as attempt:
                raw_items = await self._model.extract_action_items(text, title, meeting_date)
                items, dropped = self._validate_all(meeting_id, raw_items)
                attempt.details.update(received=len(raw_items), accepted=len(items), dropped=dropped)

        summary = None
        if not has_summary:
            async with self._log.attempt(
                "meeting", meeting_id, IntegrationKind.EXTRACTION, operation="summarize"
            ) as attempt:
                summary = await self._model.summarize(text, title)
                attempt.details["length"] = len(summary)

        await self._persist(meeting_id, items, summary, users)

    def _validate_all(self, meeting_id: str, raw_items: List[Any]) -> Tuple[List[ExtractedActionItem], List[str]]:
        valid: List[ExtractedActionItem] = []
        dropped: List[str] = []
        for index, raw in enumerate(raw_items):
            try:
                valid.append(validate_action_item(raw))
            except ParseError as e:
                dropped.append(str(e))
                logger.warning("action_item_dropped", meeting_id=meeting_id, index=index, error=str(e))
        return valid, dropped

    async def _count_items(self, session, meeting_id: str) -> int:
        result = await session.execute(
            select(func.count(ActionItem.id)).where(ActionItem.meeting_id == meeting_id)
        )
        return result.scalar_one()

    async def _persist(
        self,
        meeting_id: str,
        items: Optional[List[ExtractedActionItem]],
        summary: Optional[str],
        users: Sequence[User],
    ) -> None:
        async with self._database.session() as session:
            meeting = await session.get(Meeting, meeting_id)
            if meeting is None:
                raise NotFoundError("meeting", meeting_id)

            created = 0
            if items is not None and not await self._count_items(session, meeting_id):
                for item in items:
                    assignee = resolve_assignee(item.assignee, users)
                    if item.assignee and assignee is None:
                        logger.info("assignee_unresolved", meeting_id=meeting_id, assignee=item.assignee)
                    session.add(ActionItem(
                        meeting_id=meeting_id,
                        description=item.description,
                        assignee_id=assignee.id if assignee else None,
                        assignee_text=item.assignee,
                        due_date=item.due_date,
                        priority=item.priority,
                    ))
                    created += 1
            if summary is not None:
                meeting.summary = summary

        logger.info("extraction_saved", meeting_id=meeting_id, action_items=created, summary=summary is not None)
