import uuid
from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator


class ApprovalType(str, Enum):
    generator = "generator"
    recycler = "recycler"


class ShipmentCreate(BaseModel):
    generator_company_id: uuid.UUID
    transporter_company_id: uuid.UUID
    recycler_company_id: uuid.UUID
    waste_type_id: uuid.UUID
    quantity: float = Field(gt=0)
    unit: str = "kg"
    driver_id: Optional[uuid.UUID] = None
    manual_driver_name: Optional[str] = None
    manual_vehicle_number: Optional[str] = None
    waste_description: Optional[str] = None
    packaging: Optional[str] = None
    disposal_method: Optional[str] = None
    pickup_location: Optional[str] = None
    delivery_location: Optional[str] = None
    pickup_date: Optional[datetime] = None
    delivery_date: Optional[datetime] = None

    @field_validator("manual_driver_name", "manual_vehicle_number")
    @classmethod
    def strip_blank(cls, v):
        if v is not None and not v.strip():
            return None
        return v


class ShipmentUpdate(BaseModel):
    waste_type_id: Optional[uuid.UUID] = None
    quantity: Optional[float] = Field(default=None, gt=0)
    unit: Optional[str] = None
    driver_id: Optional[uuid.UUID] = None
    manual_driver_name: Optional[str] = None
    manual_vehicle_number: Optional[str] = None
    waste_description: Optional[str] = None
    packaging: Optional[str] = None
    disposal_method: Optional[str] = None
    pickup_location: Optional[str] = None
    delivery_location: Optional[str] = None
    pickup_date: Optional[datetime] = None
    delivery_date: Optional[datetime] = None


class StatusUpdate(BaseModel):
    new_status: str
    notes: Optional[str] = Field(default=None, max_length=1000)


class ApprovalRequest(BaseModel):
    approval_type: ApprovalType
    is_approved: bool
    reason: Optional[str] = Field(default=None, max_length=1000)


class ReportRequest(BaseModel):
    report_text: str = Field(min_length=1, max_length=20000)


class MessageCreate(BaseModel):
    content: str = Field(min_length=1, max_length=4000)


class ShipmentSummary(BaseModel):
    id: str
    shipment_number: str
    status: str
    quantity: float
    unit: str
    created_at: Optional[str] = None
    pickup_date: Optional[str] = None
    generator_company_id: str
    transporter_company_id: str
    recycler_company_id: str
    generator_company_name: Optional[str] = None
    transporter_company_name: Optional[str] = None
    recycler_company_name: Optional[str] = None
    waste_type_name: Optional[str] = None
    driver_id: Optional[str] = None
    driver_name: Optional[str] = None
    overall_approval_status: Optional[str] = None


class WasteTypeBase(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    description: Optional[str] = None
    category: Optional[str] = None
    hazard_level: str = "low"


class WasteTypeUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = None
    category: Optional[str] = None
    hazard_level: Optional[str] = None


class WasteTypeResponse(WasteTypeBase):
    id: uuid.UUID
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class NotificationResponse(BaseModel):
    id: uuid.UUID
    shipment_id: uuid.UUID
    recipient_company_id: uuid.UUID
    notification_type: str
    title: str
    message: str
    is_read: bool
    read_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
