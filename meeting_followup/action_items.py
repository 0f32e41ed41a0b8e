"""
Operations triggered from chat interactions on a delivered action item.
"""
from meeting_followup.db import Database
from meeting_followup.exceptions import NotFoundError
from meeting_followup.logging_config import get_logger
from meeting_followup.models import ActionItem, ActionItemStatus

logger = get_logger(__name__)


async def complete_action_item(database: Database, action_item_id: int) -> bool:
    """
    Mark an action item completed ("Mark Complete" button).

    Returns:
        True if the status changed, False if it was already completed

    Raises:
        NotFoundError: no action item with that id
    """
    async with database.session() as session:
        item = await session.get(ActionItem, action_item_id)
        if item is None:
            raise NotFoundError("action_item", action_item_id)
        if item.status == ActionItemStatus.COMPLETED.value:
            return False
        item.status = ActionItemStatus.COMPLETED.value

    logger.info("action_item_completed", action_item_id=action_item_id)
    return True
