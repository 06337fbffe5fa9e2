import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, EmailStr, Field


class DriverBase(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    national_id: Optional[str] = None
    license_number: Optional[str] = None
    license_type: Optional[str] = None
    vehicle_plate: Optional[str] = None
    vehicle_type: Optional[str] = None


class DriverCreate(DriverBase):
    transport_company_id: Optional[uuid.UUID] = None
    user_id: Optional[uuid.UUID] = None


class DriverUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    national_id: Optional[str] = None
    license_number: Optional[str] = None
    license_type: Optional[str] = None
    vehicle_plate: Optional[str] = None
    vehicle_type: Optional[str] = None
    transport_company_id: Optional[uuid.UUID] = None
    user_id: Optional[uuid.UUID] = None
    tracking_enabled: Optional[bool] = None


class DriverResponse(DriverBase):
    id: uuid.UUID
    transport_company_id: Optional[uuid.UUID] = None
    user_id: Optional[uuid.UUID] = None
    current_latitude: Optional[float] = None
    current_longitude: Optional[float] = None
    is_online: bool = False
    tracking_enabled: bool = True
    last_ping: Optional[datetime] = None

    class Config:
        from_attributes = True


class LocationUpdate(BaseModel):
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    speed: Optional[float] = None
    heading: Optional[float] = None
    accuracy: Optional[float] = None
    shipment_id: Optional[uuid.UUID] = None


class LocationPoint(BaseModel):
    latitude: float
    longitude: float
    speed: Optional[float] = None
    heading: Optional[float] = None
    shipment_id: Optional[uuid.UUID] = None
    recorded_at: datetime

    class Config:
        from_attributes = True
