# podpublisher/schemas/scheduled_post_schema.py
from datetime import datetime
from typing import Annotated, Any, Dict, List, Literal, Optional, Union
import uuid

from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator
from pydantic.alias_generators import to_camel


class _EmailPayload(BaseModel):
    # stored in ScheduledPost.meta under the camelCase keys the adapters read
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_meta(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, exclude={"provider"})


class MailchimpPayload(_EmailPayload):
    provider: Literal["mailchimp"]
    audience_id: str = Field(min_length=1)
    subscriber_email: EmailStr
    tags: List[str] = Field(min_length=1)
    merge_fields: Dict[str, Any] = Field(default_factory=dict)


class KitPayload(_EmailPayload):
    provider: Literal["kit"]
    tag_ids: List[int] = Field(default_factory=list)
    html: Optional[str] = None
    public: bool = False


class SendGridPayload(_EmailPayload):
    provider: Literal["sendgrid"]
    subscriber_email: Optional[EmailStr] = None
    list_ids: List[str] = Field(default_factory=list)
    from_email: Optional[EmailStr] = None
    from_name: Optional[str] = None
    template_id: Optional[str] = None
    sender_id: Optional[int] = None
    suppression_group_id: Optional[int] = None
    html: Optional[str] = None
    merge_fields: Dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _needs_audience(self):
        if not self.subscriber_email and not self.list_ids:
            raise ValueError("SendGrid needs a subscriberEmail or at least one listId")
        return self


class GmailPayload(_EmailPayload):
    provider: Literal["gmail"]
    subscriber_email: EmailStr


EmailPayload = Annotated[
    Union[MailchimpPayload, KitPayload, SendGridPayload, GmailPayload],
    Field(discriminator="provider"),
]


class ScheduledPostCreate(BaseModel):
    platform: Literal["linkedin", "twitter", "medium", "facebook", "email"]
    title: Optional[str] = None
    content: str = Field(min_length=1)
    scheduled_at: datetime
    email: Optional[EmailPayload] = None
    meta: Dict[str, Any] = Field(default_factory=dict)  # social options: link, destinationId, tags...

    @model_validator(mode="after")
    def _email_payload_matches_platform(self):
        if self.platform == "email" and self.email is None:
            raise ValueError("email posts need an email payload")
        if self.platform != "email" and self.email is not None:
            raise ValueError("email payload is only valid for platform=email")
        return self


class ScheduledPostRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    user_id: uuid.UUID
    platform: str
    provider: Optional[str]
    title: Optional[str]
    content: str
    scheduled_at: datetime
    status: str
    external_id: Optional[str]
    external_url: Optional[str]
    last_error: Optional[str]
    manual_action_url: Optional[str]
    meta: Dict[str, Any]
    published_at: Optional[datetime]
    created_at: datetime


class DispatchResponse(BaseModel):
    ok: bool = True
    processed: int
    failed: int
    manual: int
    retried: int
    skipped: bool = False
