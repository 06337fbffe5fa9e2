import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    String,
    DateTime,
    Boolean,
    ForeignKey,
    Float,
    JSON,
    BigInteger,
    Text,
    Index,
    Uuid,
)
from sqlalchemy.orm import relationship, Mapped, mapped_column

from ..db import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def uuid_pk() -> Mapped[uuid.UUID]:
    return mapped_column(Uuid, primary_key=True, default=uuid.uuid4)


class User(Base):
    """Authenticated identity. Role and company linkage live on the profile."""
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = uuid_pk()
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    last_login_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    profile = relationship("Profile", back_populates="user", uselist=False, cascade="all, delete-orphan")


class Company(Base):
    __tablename__ = "companies"

    id: Mapped[uuid.UUID] = uuid_pk()
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    type: Mapped[str] = mapped_column(String(20), nullable=False, index=True)  # generator|transporter|recycler
    status: Mapped[str] = mapped_column(String(20), default="pending")  # pending|approved|rejected|under_review
    is_active: Mapped[bool] = mapped_column(Boolean, default=False)
    email: Mapped[Optional[str]] = mapped_column(String(255))
    phone: Mapped[Optional[str]] = mapped_column(String(50))
    fax: Mapped[Optional[str]] = mapped_column(String(50))
    address: Mapped[Optional[str]] = mapped_column(String(500))
    contact_person: Mapped[Optional[str]] = mapped_column(String(200))
    # Legal / registration identifiers
    commercial_reg_no: Mapped[Optional[str]] = mapped_column(String(100))
    tax_id: Mapped[Optional[str]] = mapped_column(String(100))
    license_no: Mapped[Optional[str]] = mapped_column(String(100))
    environmental_approval_no: Mapped[Optional[str]] = mapped_column(String(100))
    operating_license_no: Mapped[Optional[str]] = mapped_column(String(100))
    facility_reg_no: Mapped[Optional[str]] = mapped_column(String(100))
    registered_activity: Mapped[Optional[str]] = mapped_column(String(500))
    # Location
    location_address: Mapped[Optional[str]] = mapped_column(String(500))
    location_latitude: Mapped[Optional[float]] = mapped_column(Float)
    location_longitude: Mapped[Optional[float]] = mapped_column(Float)
    review_notes: Mapped[Optional[str]] = mapped_column(Text)
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    reviewed_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, ForeignKey("users.id", ondelete="SET NULL"))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)


class Profile(Base):
    __tablename__ = "profiles"

    id: Mapped[uuid.UUID] = uuid_pk()
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False, index=True)
    full_name: Mapped[Optional[str]] = mapped_column(String(200))
    email: Mapped[Optional[str]] = mapped_column(String(255))
    phone: Mapped[Optional[str]] = mapped_column(String(50))
    role: Mapped[str] = mapped_column(String(20), nullable=False)  # admin|generator|transporter|recycler|driver
    company_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, ForeignKey("companies.id", ondelete="SET NULL"), index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=False)
    activated_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    activated_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid)
    terms_accepted: Mapped[bool] = mapped_column(Boolean, default=False)
    terms_accepted_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    user = relationship("User", back_populates="profile")
    company = relationship("Company")


class Driver(Base):
    __tablename__ = "drivers"

    id: Mapped[uuid.UUID] = uuid_pk()
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(255))
    phone: Mapped[Optional[str]] = mapped_column(String(50))
    national_id: Mapped[Optional[str]] = mapped_column(String(50))
    license_number: Mapped[Optional[str]] = mapped_column(String(100))
    license_type: Mapped[Optional[str]] = mapped_column(String(50))
    vehicle_plate: Mapped[Optional[str]] = mapped_column(String(50))
    vehicle_type: Mapped[Optional[str]] = mapped_column(String(50))
    transport_company_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, ForeignKey("companies.id", ondelete="SET NULL"), index=True)
    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), index=True)
    # Last known position
    current_latitude: Mapped[Optional[float]] = mapped_column(Float)
    current_longitude: Mapped[Optional[float]] = mapped_column(Float)
    is_online: Mapped[bool] = mapped_column(Boolean, default=False)
    tracking_enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    last_ping: Mapped[Optional[datetime]] = mapped_column(DateTime, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    transport_company = relationship("Company")


class DriverLocation(Base):
    """GPS history point"""
    __tablename__ = "driver_locations"

    id: Mapped[uuid.UUID] = uuid_pk()
    driver_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("drivers.id", ondelete="CASCADE"), nullable=False)
    shipment_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, ForeignKey("shipments.id", ondelete="SET NULL"))
    latitude: Mapped[float] = mapped_column(Float, nullable=False)
    longitude: Mapped[float] = mapped_column(Float, nullable=False)
    speed: Mapped[Optional[float]] = mapped_column(Float)
    heading: Mapped[Optional[float]] = mapped_column(Float)
    accuracy: Mapped[Optional[float]] = mapped_column(Float)
    recorded_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    __table_args__ = (
        Index('idx_driver_locations_driver_time', 'driver_id', 'recorded_at'),
    )


class WasteType(Base):
    __tablename__ = "waste_types"

    id: Mapped[uuid.UUID] = uuid_pk()
    name: Mapped[str] = mapped_column(String(200), unique=True, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(String(1000))
    category: Mapped[Optional[str]] = mapped_column(String(100))
    hazard_level: Mapped[str] = mapped_column(String(10), default="low")  # low|medium|high
    created_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, ForeignKey("users.id", ondelete="SET NULL"))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class Shipment(Base):
    __tablename__ = "shipments"

    id: Mapped[uuid.UUID] = uuid_pk()
    shipment_number: Mapped[str] = mapped_column(String(50), unique=True, nullable=False, index=True)
    generator_company_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("companies.id"), nullable=False, index=True)
    transporter_company_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("companies.id"), nullable=False, index=True)
    recycler_company_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("companies.id"), nullable=False, index=True)
    waste_type_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("waste_types.id"), nullable=False)
    # Driver: registered (driver_id) or manual (name + plate)
    driver_entry_type: Mapped[Optional[str]] = mapped_column(String(20))  # registered|manual
    driver_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, ForeignKey("drivers.id", ondelete="SET NULL"), index=True)
    manual_driver_name: Mapped[Optional[str]] = mapped_column(String(200))
    manual_vehicle_number: Mapped[Optional[str]] = mapped_column(String(50))
    quantity: Mapped[float] = mapped_column(Float, nullable=False)
    unit: Mapped[str] = mapped_column(String(20), default="kg")
    waste_description: Mapped[Optional[str]] = mapped_column(String(1000))
    packaging: Mapped[Optional[str]] = mapped_column(String(200))
    disposal_method: Mapped[Optional[str]] = mapped_column(String(200))
    pickup_location: Mapped[Optional[str]] = mapped_column(String(500))
    delivery_location: Mapped[Optional[str]] = mapped_column(String(500))
    pickup_date: Mapped[Optional[datetime]] = mapped_column(DateTime)
    delivery_date: Mapped[Optional[datetime]] = mapped_column(DateTime)
    status: Mapped[str] = mapped_column(String(20), default="pending", index=True)
    status_history: Mapped[Optional[list]] = mapped_column(JSON, default=list)
    # Stage timestamps
    departure_time: Mapped[Optional[datetime]] = mapped_column(DateTime)
    arrival_time: Mapped[Optional[datetime]] = mapped_column(DateTime)
    sorting_start_time: Mapped[Optional[datetime]] = mapped_column(DateTime)
    sorting_end_time: Mapped[Optional[datetime]] = mapped_column(DateTime)
    recycling_start_time: Mapped[Optional[datetime]] = mapped_column(DateTime)
    recycling_end_time: Mapped[Optional[datetime]] = mapped_column(DateTime)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    # Per-party approvals
    generator_approval_status: Mapped[str] = mapped_column(String(20), default="pending")  # pending|approved|rejected
    generator_approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    generator_approved_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid)
    generator_rejection_reason: Mapped[Optional[str]] = mapped_column(Text)
    recycler_approval_status: Mapped[str] = mapped_column(String(20), default="pending")
    recycler_approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    recycler_approved_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid)
    recycler_rejection_reason: Mapped[Optional[str]] = mapped_column(Text)
    overall_approval_status: Mapped[str] = mapped_column(String(20), default="pending")
    auto_approval_deadline: Mapped[Optional[datetime]] = mapped_column(DateTime, index=True)
    # Report
    shipment_report: Mapped[Optional[str]] = mapped_column(Text)
    report_created_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    report_created_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid)
    created_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, ForeignKey("users.id", ondelete="SET NULL"))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    generator_company = relationship("Company", foreign_keys=[generator_company_id])
    transporter_company = relationship("Company", foreign_keys=[transporter_company_id])
    recycler_company = relationship("Company", foreign_keys=[recycler_company_id])
    waste_type = relationship("WasteType")
    driver = relationship("Driver")


class ShipmentNotification(Base):
    """Queued message for a company about one shipment"""
    __tablename__ = "shipment_notifications"

    id: Mapped[uuid.UUID] = uuid_pk()
    shipment_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("shipments.id", ondelete="CASCADE"), nullable=False, index=True)
    recipient_company_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("companies.id", ondelete="CASCADE"), nullable=False)
    notification_type: Mapped[str] = mapped_column(String(50), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    is_read: Mapped[bool] = mapped_column(Boolean, default=False)
    read_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    __table_args__ = (
        Index('idx_shipment_notifications_recipient_read', 'recipient_company_id', 'is_read'),
    )


class ShipmentMessage(Base):
    """Chat line posted on a shipment by one of its parties"""
    __tablename__ = "shipment_messages"

    id: Mapped[uuid.UUID] = uuid_pk()
    shipment_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("shipments.id", ondelete="CASCADE"), nullable=False, index=True)
    sender_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, ForeignKey("users.id", ondelete="SET NULL"))
    sender_company_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, ForeignKey("companies.id", ondelete="SET NULL"))
    sender_name: Mapped[Optional[str]] = mapped_column(String(255))
    content: Mapped[str] = mapped_column(String(4000), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)


class TermsAcceptance(Base):
    __tablename__ = "terms_acceptance"

    id: Mapped[uuid.UUID] = uuid_pk()
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    company_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, ForeignKey("companies.id", ondelete="SET NULL"))
    company_name: Mapped[str] = mapped_column(String(200), nullable=False)
    company_type: Mapped[str] = mapped_column(String(20), nullable=False)
    full_name: Mapped[str] = mapped_column(String(200), nullable=False)
    terms_version: Mapped[str] = mapped_column(String(20), nullable=False)
    terms_content: Mapped[str] = mapped_column(Text, nullable=False)
    signature_data: Mapped[Optional[str]] = mapped_column(Text)  # data URL (image)
    company_stamp_data: Mapped[Optional[str]] = mapped_column(Text)  # data URL (image)
    ip_address: Mapped[Optional[str]] = mapped_column(String(50))
    user_agent: Mapped[Optional[str]] = mapped_column(String(500))
    accepted_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class AuthLog(Base):
    __tablename__ = "auth_logs"

    id: Mapped[uuid.UUID] = uuid_pk()
    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), index=True)
    email: Mapped[Optional[str]] = mapped_column(String(255))
    action: Mapped[str] = mapped_column(String(50), nullable=False)  # sign_in|sign_in_failed|sign_out|sign_up
    ip_address: Mapped[Optional[str]] = mapped_column(String(50))
    user_agent: Mapped[Optional[str]] = mapped_column(String(500))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)


class SystemLog(Base):
    """Append-only activity log"""
    __tablename__ = "system_logs"

    id: Mapped[uuid.UUID] = uuid_pk()
    action_type: Mapped[str] = mapped_column(String(50), nullable=False)  # CREATE|UPDATE|DELETE|STATUS|APPROVE|REJECT|ACTIVATE|...
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)  # shipment|company|profile|driver|...
    entity_id: Mapped[Optional[str]] = mapped_column(String(64), index=True)
    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), index=True)
    actor_role: Mapped[Optional[str]] = mapped_column(String(20))
    details: Mapped[Optional[dict]] = mapped_column(JSON)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False, index=True)
    integrity_hash: Mapped[Optional[str]] = mapped_column(String(64))  # SHA256 over canonical JSON

    __table_args__ = (
        Index('idx_system_logs_entity', 'entity_type', 'entity_id'),
    )


class FileObject(Base):
    __tablename__ = "file_objects"

    id: Mapped[uuid.UUID] = uuid_pk()
    provider: Mapped[str] = mapped_column(String(50), nullable=False)
    container: Mapped[str] = mapped_column(String(255), nullable=False)
    key: Mapped[str] = mapped_column(String(1024), nullable=False, index=True)
    original_name: Mapped[Optional[str]] = mapped_column(String(255))
    size_bytes: Mapped[Optional[int]] = mapped_column(BigInteger)
    content_type: Mapped[Optional[str]] = mapped_column(String(255))
    checksum_sha256: Mapped[Optional[str]] = mapped_column(String(128))
    company_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, ForeignKey("companies.id", ondelete="CASCADE"), index=True)
    category: Mapped[Optional[str]] = mapped_column(String(50))  # legal|signature|stamp|other
    created_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, ForeignKey("users.id", ondelete="SET NULL"))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
