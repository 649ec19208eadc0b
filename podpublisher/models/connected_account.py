# podpublisher/models/connected_account.py
from sqlmodel import SQLModel, Field, Column
from typing import Optional, List
from datetime import datetime
import uuid
from sqlalchemy import String, JSON, UniqueConstraint

from podpublisher.models.scheduled_post import UTCDateTime, utcnow


class AccountStatus:
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    ERROR = "error"


class ConnectedAccount(SQLModel, table=True):
    __tablename__ = "connected_accounts"
    __table_args__ = (UniqueConstraint("user_id", "provider", name="uq_connected_accounts_user_provider"),)

    id: Optional[uuid.UUID] = Field(default_factory=uuid.uuid4, primary_key=True)
    user_id: uuid.UUID = Field(index=True)
    provider: str = Field(sa_column=Column(String, index=True, nullable=False))
    provider_user_id: Optional[str] = Field(default=None)
    access_token_enc: Optional[str] = None
    refresh_token_enc: Optional[str] = None
    expires_at: Optional[datetime] = Field(default=None, sa_column=Column(UTCDateTime))  # None: never expires
    status: str = Field(default=AccountStatus.CONNECTED, index=True)
    scopes: List[str] = Field(sa_column=Column(JSON, nullable=False), default_factory=list)
    profile: dict = Field(sa_column=Column(JSON, nullable=False), default_factory=dict)
    provider_meta: dict = Field(sa_column=Column(JSON, nullable=False), default_factory=dict)
    last_sync_at: Optional[datetime] = Field(default=None, sa_column=Column(UTCDateTime))
    created_at: datetime = Field(default_factory=utcnow, sa_column=Column(UTCDateTime, nullable=False))
    updated_at: datetime = Field(default_factory=utcnow, sa_column=Column(UTCDateTime, nullable=False))
