import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class TermsAcceptRequest(BaseModel):
    full_name: str = Field(min_length=1, max_length=200)
    signature_data: Optional[str] = None  # data:image/...;base64,...
    company_stamp_data: Optional[str] = None
    terms_version: Optional[str] = None


class TermsStatus(BaseModel):
    version: str
    accepted: bool


class TermsAcceptanceResponse(BaseModel):
    id: uuid.UUID
    user_id: uuid.UUID
    company_id: Optional[uuid.UUID] = None
    company_name: str
    company_type: str
    full_name: str
    terms_version: str
    ip_address: Optional[str] = None
    accepted_at: datetime

    class Config:
        from_attributes = True
