# podpublisher/security/schemas.py
from pydantic import BaseModel
from typing import Optional
import uuid


class CurrentUser(BaseModel):
    id: uuid.UUID
    email: Optional[str] = None
    role: Optional[str] = None
