import uuid
from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, EmailStr, Field


class CompanyType(str, Enum):
    generator = "generator"
    transporter = "transporter"
    recycler = "recycler"


class CompanyReviewStatus(str, Enum):
    approved = "approved"
    rejected = "rejected"
    under_review = "under_review"


class CompanyBase(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    type: CompanyType
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    fax: Optional[str] = None
    address: Optional[str] = None
    contact_person: Optional[str] = None
    # legal identifiers
    commercial_reg_no: Optional[str] = None
    tax_id: Optional[str] = None
    license_no: Optional[str] = None
    environmental_approval_no: Optional[str] = None
    operating_license_no: Optional[str] = None
    facility_reg_no: Optional[str] = None
    registered_activity: Optional[str] = None
    location_address: Optional[str] = None
    location_latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    location_longitude: Optional[float] = Field(default=None, ge=-180, le=180)


class CompanyCreate(CompanyBase):
    pass


class CompanyUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    fax: Optional[str] = None
    address: Optional[str] = None
    contact_person: Optional[str] = None
    commercial_reg_no: Optional[str] = None
    tax_id: Optional[str] = None
    license_no: Optional[str] = None
    environmental_approval_no: Optional[str] = None
    operating_license_no: Optional[str] = None
    facility_reg_no: Optional[str] = None
    registered_activity: Optional[str] = None
    location_address: Optional[str] = None
    location_latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    location_longitude: Optional[float] = Field(default=None, ge=-180, le=180)
    is_active: Optional[bool] = None


class CompanyRegistration(CompanyBase):
    email: EmailStr
    phone: str
    password: str


class CompanyReview(BaseModel):
    status: CompanyReviewStatus
    notes: Optional[str] = None


class CompanyImport(BaseModel):
    companies: List[dict]


class CompanyResponse(CompanyBase):
    id: uuid.UUID
    email: Optional[str] = None
    status: str
    is_active: bool
    review_notes: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
