# podpublisher/schemas/integration_schema.py
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel


class ApiKeyConnect(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    api_key: str = Field(min_length=1)


class AuthUrlResponse(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    auth_url: str


class IntegrationStatus(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    provider: str
    connected: bool
    token_expired: bool = False
    expires_at: Optional[datetime] = None
    account_name: Optional[str] = None
    status: Optional[str] = None


class DestinationsResponse(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    provider: str
    destinations: Dict[str, List[Dict[str, Any]]]
    selected: Dict[str, Any] = Field(default_factory=dict)


class FacebookPageSelect(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    page_id: str = Field(min_length=1)


class SendGridSenderSelect(BaseModel):
    email: EmailStr
    name: Optional[str] = None
