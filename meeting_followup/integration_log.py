"""
Append-only record of every external call attempt.

Entries are written in their own session so that an attempt stays on record
even when the stage that made it rolls back. Failing to write an entry never
fails the business operation: the error goes to the operational log instead.
"""
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional, Union

from sqlalchemy import select

from meeting_followup.db import Database
from meeting_followup.exceptions import PermanentIntegrationError
from meeting_followup.logging_config import get_logger
from meeting_followup.models import IntegrationKind, IntegrationLogEntry, IntegrationOutcome
from meeting_followup.monitoring import record_error

logger = get_logger(__name__)

Kind = Union[IntegrationKind, str]


class Attempt:
    """Mutable details for an in-progress call; filled in by the caller."""

    def __init__(self, details: Optional[Dict[str, Any]] = None):
        self.details: Dict[str, Any] = dict(details or {})


class IntegrationLog:
    def __init__(self, database: Database):
        self._database = database

    async def record(
        self,
        entity_type: str,
        entity_id: Any,
        integration_type: Kind,
        outcome: Union[IntegrationOutcome, str],
        details: Optional[Dict[str, Any]] = None,
    ) -> Optional[int]:
        """Append an entry. Returns its id, or None if the entry could not be written."""
        try:
            entry = IntegrationLogEntry(
                entity_type=entity_type,
                entity_id=str(entity_id),
                integration_type=IntegrationKind(integration_type).value,
                outcome=IntegrationOutcome(outcome).value,
                details=details or {},
            )
            async with self._database.session() as session:
                session.add(entry)
                await session.flush()
                return entry.id
        except Exception as e:
            record_error(type(e).__name__, "integration_log")
            logger.error(
                "integration_log_write_failed",
                entity_type=entity_type,
                entity_id=str(entity_id),
                integration_type=str(integration_type),
                error=str(e),
            )
            return None

    @asynccontextmanager
    async def attempt(
        self,
        entity_type: str,
        entity_id: Any,
        integration_type: Kind,
        **details: Any,
    ) -> AsyncIterator[Attempt]:
        """
        Record exactly one entry for the wrapped call: ``success`` with the
        collected details, or ``error`` with the exception type and message.
        The exception is re-raised.
        """
        attempt = Attempt(details)
        try:
            yield attempt
        except Exception as e:
            attempt.details.update(
                error_type=type(e).__name__,
                error=str(e),
                permanent=isinstance(e, PermanentIntegrationError),
            )
            await self.record(entity_type, entity_id, integration_type, IntegrationOutcome.ERROR, attempt.details)
            raise
        await self.record(entity_type, entity_id, integration_type, IntegrationOutcome.SUCCESS, attempt.details)

    async def entries_for(
        self,
        entity_type: str,
        entity_id: Any,
        integration_type: Optional[Kind] = None,
    ) -> List[IntegrationLogEntry]:
        """Entries for an entity in insertion order."""
        stmt = select(IntegrationLogEntry).where(
            IntegrationLogEntry.entity_type == entity_type,
            IntegrationLogEntry.entity_id == str(entity_id),
        )
        if integration_type is not None:
            stmt = stmt.where(IntegrationLogEntry.integration_type == IntegrationKind(integration_type).value)
        async with self._database.session() as session:
            result = await session.execute(stmt.order_by(IntegrationLogEntry.id))
            return list(result.scalars().all())
