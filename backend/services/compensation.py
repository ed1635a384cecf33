"""
Compensation event log.

Rows written here record failed or half-finished background work (a story
that could not be generated, a cover uploaded for a story that was never
saved) so an operator can review and resolve them by hand.
"""

import logging
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from infrastructure.database.models import (
    CompensationEvent,
    CompensationEventType,
    CompensationStatus,
)

logger = logging.getLogger(__name__)

MAX_ERROR_LENGTH = 2000


class CompensationService:
    """Writes and resolves compensation events."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def record(
        self,
        request_id: str,
        identity_user_id: str,
        event_type: CompensationEventType | str,
        status: CompensationStatus | str = CompensationStatus.FAILED,
        reason: Optional[str] = None,
        error: Optional[str] = None,
        payload: Optional[dict[str, Any]] = None,
        story_id: Optional[str] = None,
    ) -> CompensationEvent:
        event = CompensationEvent(
            request_id=request_id,
            identity_user_id=identity_user_id,
            story_id=story_id,
            event_type=CompensationEventType(event_type).value,
            status=CompensationStatus(status).value,
            reason=reason,
            error=error[:MAX_ERROR_LENGTH] if error else None,
            payload=payload,
        )
        self.db.add(event)
        await self.db.commit()
        await self.db.refresh(event)

        logger.warning(
            "Compensation event recorded: type=%s status=%s request_id=%s user=%s",
            event.event_type,
            event.status,
            request_id,
            identity_user_id,
        )
        return event

    async def list_for_review(self, limit: int = 50) -> list[CompensationEvent]:
        """Events still needing attention, newest first."""
        result = await self.db.execute(
            select(CompensationEvent)
            .where(
                CompensationEvent.status.in_(
                    [CompensationStatus.PENDING_REVIEW.value, CompensationStatus.FAILED.value]
                )
            )
            .order_by(CompensationEvent.created_at.desc(), CompensationEvent.id.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def resolve(self, event_id: int, reason: Optional[str] = None) -> Optional[CompensationEvent]:
        """Mark an event resolved. Returns None when the event does not exist."""
        event = await self.db.get(CompensationEvent, event_id)
        if not event:
            logger.warning("Compensation event %s not found", event_id)
            return None

        event.status = CompensationStatus.RESOLVED.value
        if reason:
            event.reason = reason
        await self.db.commit()
        await self.db.refresh(event)
        return event
