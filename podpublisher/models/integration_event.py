# podpublisher/models/integration_event.py
from sqlmodel import SQLModel, Field, Column
from typing import Optional
from datetime import datetime
import uuid
from sqlalchemy import JSON, Text

from podpublisher.models.scheduled_post import UTCDateTime, utcnow


class IntegrationEvent(SQLModel, table=True):
    __tablename__ = "integration_events"

    id: Optional[uuid.UUID] = Field(default_factory=uuid.uuid4, primary_key=True)
    user_id: uuid.UUID = Field(index=True)
    provider: str = Field(index=True)
    event_type: str  # auth_success, token_refresh, send, send_failure, ...
    status: str  # success, failure
    payload: dict = Field(sa_column=Column(JSON, nullable=False), default_factory=dict)
    error: Optional[str] = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(default_factory=utcnow, sa_column=Column(UTCDateTime, nullable=False))
