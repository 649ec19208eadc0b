# podpublisher/models/scheduled_post.py
from sqlmodel import SQLModel, Field, Column
from typing import Optional
import uuid
from datetime import datetime, timezone
from sqlalchemy import DateTime, String, JSON, Text
from sqlalchemy.types import TypeDecorator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Timezone-aware UTC; naive values are taken to be UTC already."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def iso_z(value: datetime) -> str:
    """ISO-8601 UTC with milliseconds and a Z suffix, the format kept in meta."""
    return as_utc(value).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class UTCDateTime(TypeDecorator):
    """
    Timestamp column that always binds and loads aware UTC datetimes.
    SQLite drops the offset on storage, so it is restored on the way out.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return as_utc(value)

    def process_result_value(self, value, dialect):
        return as_utc(value)


class PostStatus:
    SCHEDULED = "Scheduled"
    PUBLISHED = "Published"
    FAILED = "Failed"
    NEEDS_MANUAL_SEND = "NeedsManualSend"


class ScheduledPost(SQLModel, table=True):
    __tablename__ = "scheduled_posts"

    id: Optional[uuid.UUID] = Field(default_factory=uuid.uuid4, primary_key=True)
    user_id: uuid.UUID = Field(index=True)
    platform: str = Field(sa_column=Column(String, index=True, nullable=False))
    provider: Optional[str] = Field(default=None)  # email sub-provider only
    title: Optional[str] = Field(default=None)
    content: str = Field(sa_column=Column(Text, nullable=False))
    scheduled_at: datetime = Field(sa_column=Column(UTCDateTime, index=True, nullable=False))
    status: str = Field(default=PostStatus.SCHEDULED, index=True)
    external_id: Optional[str] = Field(default=None)
    external_url: Optional[str] = Field(default=None)
    last_error: Optional[str] = Field(default=None, sa_column=Column(Text))
    manual_action_url: Optional[str] = Field(default=None)
    meta: dict = Field(sa_column=Column(JSON, nullable=False), default_factory=dict)
    published_at: Optional[datetime] = Field(default=None, sa_column=Column(UTCDateTime))
    claimed_at: Optional[datetime] = Field(default=None, sa_column=Column(UTCDateTime))  # dispatch lease
    created_at: datetime = Field(default_factory=utcnow, sa_column=Column(UTCDateTime, nullable=False))
    updated_at: datetime = Field(default_factory=utcnow, sa_column=Column(UTCDateTime, nullable=False))

    @property
    def dispatch_key(self) -> str:
        """Adapter lookup key: the email provider for email posts, else the platform."""
        if self.platform == "email":
            return self.provider or ""
        return self.platform
