# podpublisher/infrastructure/events_repo.py
from typing import Optional
import uuid

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel.ext.asyncio.session import AsyncSession

from podpublisher.infrastructure.database import get_session
from podpublisher.models.integration_event import IntegrationEvent

logger = structlog.get_logger(__name__)


class EventsRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def log(
        self,
        user_id: uuid.UUID,
        provider: str,
        event_type: str,
        status: str,
        payload: Optional[dict] = None,
        error: Optional[str] = None,
    ) -> None:
        """
        Append an audit row in a short session of its own, so a broken audit
        table never rolls back or expires the caller's work. Database errors
        are logged here and not raised.
        """
        event = IntegrationEvent(
            user_id=user_id,
            provider=provider,
            event_type=event_type,
            status=status,
            payload=payload or {},
            error=error,
        )
        try:
            async with get_session(self.session.bind) as audit_session:
                audit_session.add(event)
                await audit_session.commit()
        except SQLAlchemyError as e:
            logger.warning("integration_event_write_failed", provider=provider, event_type=event_type, error=str(e))
