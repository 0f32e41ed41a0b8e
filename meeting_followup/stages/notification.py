"""
Notification fan-out stage: delivers each action item to its assignee.
"""
import enum
from datetime import datetime, time, timedelta
from typing import List, Optional, Tuple

from sqlalchemy import select

from meeting_followup.db import Database
from meeting_followup.exceptions import (
    AuthError,
    IntegrationError,
    NotFoundError,
    PermanentIntegrationError,
    TransientIntegrationError,
)
from meeting_followup.integration_log import IntegrationLog
from meeting_followup.logging_config import get_logger
from meeting_followup.models import (
    ActionItem,
    ActionItemStatus,
    IntegrationKind,
    IntegrationOutcome,
    Meeting,
    User,
)
from meeting_followup.monitoring import notifications_total
from meeting_followup.services.contracts import (
    CalendarEvent,
    CalendarScheduler,
    ChatMessage,
    ChatNotifier,
    CredentialProvider,
)

logger = get_logger(__name__)


class ItemOutcome(str, enum.Enum):
    NOTIFIED = "notified"
    ALREADY_NOTIFIED = "already_notified"
    SKIPPED = "skipped"
    RETRY = "retry"


def build_chat_message(item: ActionItem, meeting_title: Optional[str], app_base_url: Optional[str] = None) -> ChatMessage:
    """Slack blocks for an action item, with complete/view buttons."""
    due = item.due_date.strftime("%b %d, %Y") if item.due_date else "No deadline specified"
    title = meeting_title or "Untitled meeting"

    fields = [
        {"type": "mrkdwn", "text": f"*From Meeting:* {title}"},
        {"type": "mrkdwn", "text": f"*Due Date:* {due}"},
    ]
    if item.priority:
        fields.append({"type": "mrkdwn", "text": f"*Priority:* {item.priority.capitalize()}"})

    view_button = {
        "type": "button",
        "text": {"type": "plain_text", "text": "View Details"},
        "value": str(item.id),
        "action_id": "view_action",
    }
    if app_base_url:
        view_button["url"] = f"{app_base_url.rstrip('/')}/meetings/{item.meeting_id}/action-items/{item.id}"

    blocks = [
        {"type": "header", "text": {"type": "plain_text", "text": "📋 New Action Item Assigned to You"}},
        {"type": "section", "text": {"type": "mrkdwn", "text": f"*Task:* {item.description}"}},
        {"type": "section", "fields": fields},
        {
            "type": "actions",
            "elements": [
                {
                    "type": "button",
                    "text": {"type": "plain_text", "text": "Mark Complete"},
                    "style": "primary",
                    "value": str(item.id),
                    "action_id": "complete_action",
                },
                view_button,
            ],
        },
    ]
    return ChatMessage(text=f"New action item from meeting: {item.description}", blocks=blocks)


class NotificationStage:
    """
    Sends one chat message per assigned action item and, when the item has a
    due date, a best-effort calendar reminder.

    An item is finished once it is notified or permanently skipped (no
    assignee, no credential, rejected credential). Items that hit a transient
    failure stay ``notified=False`` and the stage raises
    ``TransientIntegrationError`` after the whole batch, so a retry only
    re-attempts those items.
    """

    name = "notification"

    def __init__(
        self,
        database: Database,
        integration_log: IntegrationLog,
        chat: ChatNotifier,
        credentials: CredentialProvider,
        calendar: Optional[CalendarScheduler] = None,
        reminders_enabled: bool = True,
        reminder_hour: int = 9,
        reminder_timezone: str = "UTC",
        app_base_url: Optional[str] = None,
    ):
        self._database = database
        self._log = integration_log
        self._chat = chat
        self._credentials = credentials
        self._calendar = calendar
        self._reminders_enabled = reminders_enabled
        self._reminder_hour = reminder_hour
        self._reminder_timezone = reminder_timezone
        self._app_base_url = app_base_url

    async def run(self, meeting_id: str) -> None:
        async with self._database.session() as session:
            meeting = await session.get(Meeting, meeting_id)
            if meeting is None:
                raise NotFoundError("meeting", meeting_id)
            title = meeting.title
            rows = await session.execute(
                select(ActionItem, User)
                .outerjoin(User, ActionItem.assignee_id == User.id)
                .where(ActionItem.meeting_id == meeting_id)
                .order_by(ActionItem.id)
            )
            pairs: List[Tuple[ActionItem, Optional[User]]] = [(item, user) for item, user in rows.all()]

        outcomes = []
        for item, user in pairs:
            outcomes.append(await self._notify_item(title, item, user))

        retry = outcomes.count(ItemOutcome.RETRY)
        logger.info(
            "notification_fanout_finished",
            meeting_id=meeting_id,
            items=len(outcomes),
            notified=outcomes.count(ItemOutcome.NOTIFIED),
            skipped=outcomes.count(ItemOutcome.SKIPPED),
            retry=retry,
        )
        if retry:
            raise TransientIntegrationError(
                f"{retry} action item notification(s) pending retry",
                integration=IntegrationKind.CHAT.value,
            )

    async def _notify_item(self, meeting_title: Optional[str], item: ActionItem, user: Optional[User]) -> ItemOutcome:
        if item.notified:
            return ItemOutcome.ALREADY_NOTIFIED
        if item.status == ActionItemStatus.COMPLETED.value:
            return ItemOutcome.SKIPPED

        history = await self._log.entries_for("action_item", item.id, IntegrationKind.CHAT)
        delivered = next(
            (entry for entry in reversed(history) if entry.outcome == IntegrationOutcome.SUCCESS.value), None
        )
        if delivered is not None:
            # Delivered by an earlier run that stopped before the flag was written
            await self._mark_notified(item.id, delivered.details.get("receipt"))
            logger.info("notification_flag_repaired", action_item_id=item.id)
            return ItemOutcome.ALREADY_NOTIFIED
        if any(entry.details.get("permanent") for entry in history):
            return ItemOutcome.SKIPPED

        credential = self._credentials.chat_credential(user)
        if credential is None:
            reason = "unassigned" if user is None else "missing_chat_credential"
            error = AuthError(f"No chat credential for action item {item.id} ({reason})", integration="chat")
            await self._log.record(
                "action_item", item.id, IntegrationKind.CHAT, IntegrationOutcome.ERROR,
                {"error_type": type(error).__name__, "error": str(error), "reason": reason, "permanent": True},
            )
            notifications_total.labels(channel="chat", outcome="skipped").inc()
            logger.warning("notification_skipped", action_item_id=item.id, reason=reason)
            return ItemOutcome.SKIPPED

        message = build_chat_message(item, meeting_title, self._app_base_url)
        try:
            async with self._log.attempt(
                "action_item", item.id, IntegrationKind.CHAT, channel=credential.channel
            ) as attempt:
                receipt = await self._chat.send_direct_message(credential, message)
                attempt.details["receipt"] = receipt
        except TransientIntegrationError as e:
            notifications_total.labels(channel="chat", outcome="retry").inc()
            logger.warning("notification_failed_transient", action_item_id=item.id, error=str(e))
            return ItemOutcome.RETRY
        except PermanentIntegrationError as e:
            notifications_total.labels(channel="chat", outcome="failed").inc()
            logger.warning("notification_failed_permanent", action_item_id=item.id, error=str(e))
            return ItemOutcome.SKIPPED

        await self._mark_notified(item.id, receipt)
        notifications_total.labels(channel="chat", outcome="sent").inc()
        await self._schedule_reminder(meeting_title, item, user)
        return ItemOutcome.NOTIFIED

    async def _mark_notified(self, action_item_id: int, receipt: Optional[str]) -> None:
        async with self._database.session() as session:
            item = await session.get(ActionItem, action_item_id)
            if item is not None and not item.notified:
                item.notified = True
                item.notification_ref = receipt

    async def _schedule_reminder(self, meeting_title: Optional[str], item: ActionItem, user: Optional[User]) -> None:
        if self._calendar is None or not self._reminders_enabled:
            return
        if item.due_date is None or item.calendar_event_id:
            return

        credential = self._credentials.calendar_credential(user)
        if credential is None:
            await self._log.record(
                "action_item", item.id, IntegrationKind.CALENDAR, IntegrationOutcome.ERROR,
                {"error_type": "AuthError", "error": "No calendar credential", "permanent": True},
            )
            notifications_total.labels(channel="calendar", outcome="skipped").inc()
            return

        start = datetime.combine(item.due_date, time(hour=self._reminder_hour))
        event = CalendarEvent(
            title=f"Task Due: {item.description}",
            description=f"Action item from meeting: {meeting_title or item.meeting_id}",
            start=start,
            end=start + timedelta(hours=1),
            timezone=self._reminder_timezone,
        )
        try:
            async with self._log.attempt("action_item", item.id, IntegrationKind.CALENDAR) as attempt:
                event_id = await self._calendar.create_event(credential, event)
                attempt.details["event_id"] = event_id
        except IntegrationError as e:
            notifications_total.labels(channel="calendar", outcome="failed").inc()
            logger.warning("calendar_reminder_failed", action_item_id=item.id, error=str(e))
            return
        except Exception as e:
            # Reminders are best-effort; the item is already sent and flagged
            notifications_total.labels(channel="calendar", outcome="failed").inc()
            logger.error(
                "calendar_reminder_crashed",
                action_item_id=item.id,
                error=str(e),
                error_type=type(e).__name__,
                exc_info=e,
            )
            return

        async with self._database.session() as session:
            stored = await session.get(ActionItem, item.id)
            if stored is not None:
                stored.calendar_event_id = event_id
        notifications_total.labels(channel="calendar", outcome="sent").inc()
