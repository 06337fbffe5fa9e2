import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, EmailStr, Field


class SignUpRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=8, max_length=100)
    full_name: str = Field(min_length=1, max_length=200)
    phone: Optional[str] = None
    role: str = "generator"
    company_id: Optional[uuid.UUID] = None


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class RefreshRequest(BaseModel):
    refresh_token: str


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"


class ProfileResponse(BaseModel):
    id: uuid.UUID
    user_id: uuid.UUID
    email: Optional[str] = None
    full_name: Optional[str] = None
    phone: Optional[str] = None
    role: str
    company_id: Optional[uuid.UUID] = None
    is_active: bool
    terms_accepted: bool = False
    activated_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ActivationRequest(BaseModel):
    activate: bool


class AssignmentRequest(BaseModel):
    role: Optional[str] = None
    company_id: Optional[uuid.UUID] = None


class PasswordResetRequest(BaseModel):
    new_password: str
