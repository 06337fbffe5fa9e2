import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class FileObjectResponse(BaseModel):
    id: uuid.UUID
    key: str
    provider: str
    original_name: Optional[str] = None
    size_bytes: Optional[int] = None
    content_type: Optional[str] = None
    category: Optional[str] = None
    company_id: Optional[uuid.UUID] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
