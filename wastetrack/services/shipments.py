"""
Shipment lifecycle: creation, role-scoped queries, status workflow,
per-party approvals, processing report and auto-approval.
"""
import random
import time
import uuid
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Tuple

import structlog
from sqlalchemy import or_
from sqlalchemy.orm import Session, joinedload

from ..config import settings
from ..models.models import Company, Driver, Profile, Shipment, WasteType, utcnow
from .audit import compute_diff, log_system_activity
from .companies import companies_for_selection, partition_by_type
from .change_feed import EVENT_INSERT, EVENT_UPDATE, publish_delete, publish_row, row_snapshot
from .errors import Conflict, NotFound, PermissionDenied, ValidationFailed
from .drivers import driver_for_profile, drivers_for_selection
from .notifications import local_time_label, notify_shipment_parties
from .workflow import (
    STATUS_TIMESTAMP_FIELDS,
    CompanyType,
    Role,
    ShipmentStatus,
    allowed_actions,
    resolve_transition,
)

logger = structlog.get_logger(__name__)

APPROVAL_TYPES = ("generator", "recycler")

PARTY_COLUMNS = {
    CompanyType.generator.value: "generator_company_id",
    CompanyType.transporter.value: "transporter_company_id",
    CompanyType.recycler.value: "recycler_company_id",
}

EDITABLE_FIELDS = (
    "waste_type_id", "quantity", "unit", "waste_description", "packaging", "disposal_method",
    "pickup_location", "delivery_location", "pickup_date", "delivery_date",
    "driver_id", "manual_driver_name", "manual_vehicle_number",
)
DRIVER_FIELDS = ("driver_id", "manual_driver_name", "manual_vehicle_number")


def generate_shipment_number() -> str:
    """``SH`` + epoch milliseconds + 3 random digits."""
    return f"SH{int(time.time() * 1000)}{random.randint(0, 999):03d}"


def overall_approval(generator_status: str, recycler_status: str) -> str:
    if generator_status == "rejected" or recycler_status == "rejected":
        return "rejected"
    if generator_status == "approved" and recycler_status == "approved":
        return "approved"
    return "pending"


def _is_admin(profile: Profile) -> bool:
    return profile.role == Role.admin.value


def is_party(shipment: Shipment, company_id: Optional[uuid.UUID]) -> bool:
    return company_id is not None and company_id in (
        shipment.generator_company_id,
        shipment.transporter_company_id,
        shipment.recycler_company_id,
    )


def can_view(db: Session, shipment: Shipment, profile: Profile) -> bool:
    if _is_admin(profile):
        return True
    if is_party(shipment, profile.company_id):
        return True
    if profile.role == Role.driver.value and shipment.driver_id is not None:
        driver = driver_for_profile(db, profile)
        return driver is not None and driver.id == shipment.driver_id
    return False


def get_shipment(db: Session, shipment_id: uuid.UUID, profile: Optional[Profile] = None) -> Shipment:
    shipment = db.query(Shipment).filter(Shipment.id == shipment_id).first()
    if not shipment:
        raise NotFound("Shipment not found")
    if profile is not None and not can_view(db, shipment, profile):
        raise PermissionDenied("Not allowed to access this shipment")
    return shipment


def _load_company(db: Session, company_id, expected_type: str) -> Company:
    company = db.query(Company).filter(Company.id == company_id).first()
    if not company:
        raise ValidationFailed(f"{expected_type.capitalize()} company not found")
    if company.type != expected_type:
        raise ValidationFailed(f"Company '{company.name}' is not a {expected_type}")
    return company


def _load_waste_type(db: Session, waste_type_id) -> WasteType:
    waste_type = db.query(WasteType).filter(WasteType.id == waste_type_id).first() if waste_type_id else None
    if not waste_type:
        raise ValidationFailed("Waste type not found")
    return waste_type


def _resolve_driver(db: Session, driver_id, manual_name: Optional[str],
                    transporter_id: uuid.UUID) -> Tuple[Optional[str], Optional[uuid.UUID], Optional[str]]:
    """
    Driver assignment as ``(entry_type, driver_id, manual_driver_name)``.

    A registered driver must work for the shipment's transporter (or for no
    company yet); otherwise a typed-in name makes a manual entry.
    """
    manual_name = (manual_name or "").strip() or None
    if driver_id:
        driver = db.query(Driver).filter(Driver.id == driver_id).first()
        if not driver:
            raise ValidationFailed("Driver not found")
        if driver.transport_company_id not in (None, transporter_id):
            raise ValidationFailed("Driver belongs to another transporter")
        return "registered", driver.id, None
    if manual_name:
        return "manual", None, manual_name
    return None, None, None


def create_shipment(db: Session, data: dict, actor: Profile) -> Shipment:
    """
    Create a shipment in status ``pending``.

    The three company references must point at companies of the matching type.
    A company user may only create shipments its own company takes part in.
    """
    quantity = data.get("quantity")
    if quantity is None or float(quantity) <= 0:
        raise ValidationFailed("Quantity must be greater than zero")
    generator = _load_company(db, data.get("generator_company_id"), CompanyType.generator.value)
    transporter = _load_company(db, data.get("transporter_company_id"), CompanyType.transporter.value)
    recycler = _load_company(db, data.get("recycler_company_id"), CompanyType.recycler.value)
    if not _is_admin(actor) and actor.company_id not in (generator.id, transporter.id, recycler.id):
        raise PermissionDenied("Your company must take part in the shipment")
    waste_type = _load_waste_type(db, data.get("waste_type_id"))
    entry_type, driver_id, manual_name = _resolve_driver(
        db, data.get("driver_id"), data.get("manual_driver_name"), transporter.id
    )

    now = utcnow()
    shipment = Shipment(
        shipment_number=generate_shipment_number(),
        generator_company_id=generator.id,
        transporter_company_id=transporter.id,
        recycler_company_id=recycler.id,
        waste_type_id=waste_type.id,
        driver_entry_type=entry_type,
        driver_id=driver_id,
        manual_driver_name=manual_name,
        manual_vehicle_number=data.get("manual_vehicle_number") if entry_type == "manual" else None,
        quantity=float(quantity),
        unit=data.get("unit") or "kg",
        waste_description=data.get("waste_description"),
        packaging=data.get("packaging"),
        disposal_method=data.get("disposal_method"),
        pickup_location=data.get("pickup_location") or generator.location_address or generator.address,
        delivery_location=data.get("delivery_location") or recycler.location_address or recycler.address,
        pickup_date=data.get("pickup_date"),
        delivery_date=data.get("delivery_date"),
        status=ShipmentStatus.pending.value,
        status_history=[_history_entry(ShipmentStatus.pending.value, actor, now, "Shipment created")],
        auto_approval_deadline=now + timedelta(hours=settings.auto_approval_hours),
        created_by=actor.user_id,
        created_at=now,
    )
    db.add(shipment)
    db.commit()
    db.refresh(shipment)
    logger.info("shipment_created", shipment_id=str(shipment.id), number=shipment.shipment_number)
    log_system_activity(db, "CREATE", "shipment", shipment.id,
                        {"shipment_number": shipment.shipment_number, "quantity": shipment.quantity},
                        user_id=actor.user_id, actor_role=actor.role)
    publish_row(EVENT_INSERT, shipment)
    notify_shipment_parties(
        db, shipment, "shipment_created",
        f"New shipment {shipment.shipment_number}",
        f"Shipment {shipment.shipment_number} of {shipment.quantity:g} {shipment.unit} {waste_type.name} was created.",
    )
    return shipment


def update_shipment(db: Session, shipment: Shipment, changes: dict, actor: Profile) -> Shipment:
    """
    Edit cargo and driver details. Parties and status are not editable here.

    Sending ``driver_id`` or ``manual_driver_name`` replaces the whole driver
    assignment; clearing both leaves the shipment without a driver.
    """
    if not (_is_admin(actor) or is_party(shipment, actor.company_id)):
        raise PermissionDenied("Not allowed to edit this shipment")
    if shipment.status == ShipmentStatus.completed.value:
        raise Conflict("Completed shipments can no longer be edited")
    if "quantity" in changes and (changes["quantity"] is None or float(changes["quantity"]) <= 0):
        raise ValidationFailed("Quantity must be greater than zero")
    if "waste_type_id" in changes:
        _load_waste_type(db, changes["waste_type_id"])
    driver_change = "driver_id" in changes or "manual_driver_name" in changes
    if driver_change:
        entry_type, driver_id, manual_name = _resolve_driver(
            db, changes.get("driver_id"), changes.get("manual_driver_name"), shipment.transporter_company_id
        )

    before = row_snapshot(shipment)
    for key in EDITABLE_FIELDS:
        if key in changes and key not in DRIVER_FIELDS:
            setattr(shipment, key, changes[key])
    if driver_change:
        shipment.driver_entry_type = entry_type
        shipment.driver_id = driver_id
        shipment.manual_driver_name = manual_name
        shipment.manual_vehicle_number = (
            changes.get("manual_vehicle_number", shipment.manual_vehicle_number) if entry_type == "manual" else None
        )
    elif "manual_vehicle_number" in changes and shipment.driver_entry_type == "manual":
        shipment.manual_vehicle_number = changes["manual_vehicle_number"]
    db.commit()
    db.refresh(shipment)
    log_system_activity(db, "UPDATE", "shipment", shipment.id, compute_diff(before, row_snapshot(shipment)),
                        user_id=actor.user_id, actor_role=actor.role)
    publish_row(EVENT_UPDATE, shipment, old=before)
    return shipment


def delete_shipment(db: Session, shipment: Shipment, actor: Profile) -> None:
    if not _is_admin(actor):
        raise PermissionDenied("Only administrators can delete shipments")
    before = row_snapshot(shipment)
    db.delete(shipment)
    db.commit()
    log_system_activity(db, "DELETE", "shipment", before["id"], {"shipment_number": before["shipment_number"]},
                        user_id=actor.user_id, actor_role=actor.role)
    publish_delete(Shipment.__tablename__, before)


def shipment_summary(shipment: Shipment) -> Dict:
    """Flat row shape shared by the company and driver list queries."""
    return {
        "id": str(shipment.id),
        "shipment_number": shipment.shipment_number,
        "status": shipment.status,
        "quantity": shipment.quantity,
        "unit": shipment.unit,
        "created_at": shipment.created_at.isoformat() if shipment.created_at else None,
        "pickup_date": shipment.pickup_date.isoformat() if shipment.pickup_date else None,
        "generator_company_id": str(shipment.generator_company_id),
        "transporter_company_id": str(shipment.transporter_company_id),
        "recycler_company_id": str(shipment.recycler_company_id),
        "generator_company_name": shipment.generator_company.name if shipment.generator_company else None,
        "transporter_company_name": shipment.transporter_company.name if shipment.transporter_company else None,
        "recycler_company_name": shipment.recycler_company.name if shipment.recycler_company else None,
        "waste_type_name": shipment.waste_type.name if shipment.waste_type else None,
        "driver_id": str(shipment.driver_id) if shipment.driver_id else None,
        "driver_name": shipment.driver.name if shipment.driver else shipment.manual_driver_name,
        "overall_approval_status": shipment.overall_approval_status,
    }


def _with_relations(query):
    return query.options(
        joinedload(Shipment.generator_company),
        joinedload(Shipment.transporter_company),
        joinedload(Shipment.recycler_company),
        joinedload(Shipment.waste_type),
        joinedload(Shipment.driver),
    )


def _naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def get_company_shipments(db: Session, profile: Profile, company_type: Optional[str] = None,
                          status: Optional[str] = None, shipment_number: Optional[str] = None,
                          waste_type_id: Optional[uuid.UUID] = None, date_from: Optional[datetime] = None,
                          date_to: Optional[datetime] = None) -> List[Dict]:
    """
    Shipments in which the caller's company plays ``company_type``.

    Administrators see every shipment; ``company_type`` then narrows nothing.
    ``shipment_number`` matches any part of the number; ``date_from`` and
    ``date_to`` bound the creation time, both ends inclusive.
    """
    query = _with_relations(db.query(Shipment))
    if not _is_admin(profile):
        if profile.company_id is None:
            raise PermissionDenied("No company linked to this account")
        company = profile.company
        company_type = company_type or (company.type if company else None)
        if company_type not in PARTY_COLUMNS:
            raise ValidationFailed("company_type must be generator, transporter or recycler")
        if company is not None and company.type != company_type:
            raise PermissionDenied(f"Your company is not a {company_type}")
        query = query.filter(getattr(Shipment, PARTY_COLUMNS[company_type]) == profile.company_id)
    if status:
        query = query.filter(Shipment.status == status)
    if shipment_number:
        query = query.filter(Shipment.shipment_number.ilike(f"%{shipment_number.strip()}%"))
    if waste_type_id:
        query = query.filter(Shipment.waste_type_id == waste_type_id)
    if date_from:
        query = query.filter(Shipment.created_at >= _naive_utc(date_from))
    if date_to:
        query = query.filter(Shipment.created_at <= _naive_utc(date_to))
    rows = query.order_by(Shipment.created_at.desc()).all()
    return [shipment_summary(s) for s in rows]


def get_driver_shipments(db: Session, profile: Profile) -> List[Dict]:
    driver = driver_for_profile(db, profile)
    if driver is None:
        return []
    rows = (
        _with_relations(db.query(Shipment))
        .filter(Shipment.driver_id == driver.id)
        .order_by(Shipment.created_at.desc())
        .all()
    )
    return [shipment_summary(s) for s in rows]


def _history_entry(status: str, actor: Profile, at, notes: Optional[str]) -> dict:
    return {
        "status": status,
        "timestamp": at.isoformat(),
        "updated_by": str(actor.user_id) if actor.user_id else None,
        "updated_by_email": actor.email,
        "notes": notes,
    }


def _check_acting_party(db: Session, shipment: Shipment, actor: Profile, action: str) -> None:
    """The acting role must be played by the caller for this very shipment."""
    role = actor.role
    if role == Role.admin.value:
        return
    if role == Role.driver.value:
        driver = driver_for_profile(db, actor)
        if driver is None or driver.id != shipment.driver_id:
            raise PermissionDenied("Only the assigned driver can update this shipment")
        return
    column = PARTY_COLUMNS.get(role)
    if column is None or getattr(shipment, column) != actor.company_id:
        raise PermissionDenied(f"Your company is not the {role} of this shipment")


def update_shipment_status(db: Session, shipment_id: uuid.UUID, new_status: str, actor: Profile,
                           notes: Optional[str] = None) -> Shipment:
    """
    Move a shipment to ``new_status``.

    The transition table decides legality; the caller must also be the party
    that plays its role on this shipment. Stamps the stage timestamp and
    appends a status history entry.
    """
    shipment = get_shipment(db, shipment_id)
    action = resolve_transition(shipment.status, new_status, actor.role)
    _check_acting_party(db, shipment, actor, action)

    before = row_snapshot(shipment)
    previous = shipment.status
    now = utcnow()
    shipment.status = new_status
    stamp = STATUS_TIMESTAMP_FIELDS.get(new_status)
    if stamp:
        setattr(shipment, stamp, now)
    if new_status == ShipmentStatus.completed.value:
        shipment.recycling_end_time = shipment.recycling_end_time or now
    # JSON columns only persist on reassignment
    shipment.status_history = list(shipment.status_history or []) + [_history_entry(new_status, actor, now, notes)]
    db.commit()
    db.refresh(shipment)

    logger.info(
        "shipment_status_updated",
        shipment_id=str(shipment.id),
        previous=previous,
        status=new_status,
        action=action,
        role=actor.role,
    )
    log_system_activity(db, "STATUS", "shipment", shipment.id,
                        {"from": previous, "to": new_status, "action": action, "notes": notes},
                        user_id=actor.user_id, actor_role=actor.role)
    publish_row(EVENT_UPDATE, shipment, old=before)
    notify_shipment_parties(
        db, shipment, "status_changed",
        f"Shipment {shipment.shipment_number}: {new_status}",
        f"Status changed from {previous} to {new_status} at {local_time_label(now)}."
        + (f" Notes: {notes}" if notes else ""),
    )
    return shipment


def approve_shipment(db: Session, shipment_id: uuid.UUID, approval_type: str, is_approved: bool,
                     actor: Profile, reason: Optional[str] = None) -> Shipment:
    """Record the generator's or recycler's decision on a shipment."""
    if approval_type not in APPROVAL_TYPES:
        raise ValidationFailed("approval_type must be generator or recycler")
    shipment = get_shipment(db, shipment_id)
    party_column = PARTY_COLUMNS[approval_type]
    if not _is_admin(actor) and getattr(shipment, party_column) != actor.company_id:
        raise PermissionDenied(f"Your company is not the {approval_type} of this shipment")
    if not is_approved and not (reason or "").strip():
        raise ValidationFailed("A rejection reason is required")
    current = getattr(shipment, f"{approval_type}_approval_status")
    if current != "pending":
        raise Conflict(f"The {approval_type} has already {current} this shipment")

    before = row_snapshot(shipment)
    decision = "approved" if is_approved else "rejected"
    setattr(shipment, f"{approval_type}_approval_status", decision)
    setattr(shipment, f"{approval_type}_approved_at", utcnow())
    setattr(shipment, f"{approval_type}_approved_by", actor.user_id)
    setattr(shipment, f"{approval_type}_rejection_reason", None if is_approved else reason.strip())
    shipment.overall_approval_status = overall_approval(
        shipment.generator_approval_status, shipment.recycler_approval_status
    )
    db.commit()
    db.refresh(shipment)

    log_system_activity(db, "APPROVE" if is_approved else "REJECT", "shipment", shipment.id,
                        {"approval_type": approval_type, "reason": reason},
                        user_id=actor.user_id, actor_role=actor.role)
    publish_row(EVENT_UPDATE, shipment, old=before)
    notify_shipment_parties(
        db, shipment, "approval",
        f"Shipment {shipment.shipment_number} {decision} by {approval_type}",
        f"The {approval_type} {decision} shipment {shipment.shipment_number}."
        + ("" if is_approved else f" Reason: {reason.strip()}"),
    )
    return shipment


def add_shipment_report(db: Session, shipment_id: uuid.UUID, report_text: str, actor: Profile) -> Shipment:
    """Attach or replace the processing report. Transporter, recycler or admin."""
    text = (report_text or "").strip()
    if not text:
        raise ValidationFailed("Report text is required")
    shipment = get_shipment(db, shipment_id)
    if not _is_admin(actor) and actor.company_id not in (
        shipment.transporter_company_id, shipment.recycler_company_id
    ):
        raise PermissionDenied("Only the transporter or recycler can report on this shipment")
    before = row_snapshot(shipment)
    shipment.shipment_report = text
    shipment.report_created_at = utcnow()
    shipment.report_created_by = actor.user_id
    db.commit()
    db.refresh(shipment)
    log_system_activity(db, "REPORT", "shipment", shipment.id, {"length": len(text)},
                        user_id=actor.user_id, actor_role=actor.role)
    publish_row(EVENT_UPDATE, shipment, old=before)
    notify_shipment_parties(
        db, shipment, "report_added",
        f"Report added to {shipment.shipment_number}",
        text[:500],
    )
    return shipment


def auto_approve_expired_shipments(db: Session) -> int:
    """Approve every still-pending party decision whose deadline has passed."""
    now = utcnow()
    expired = (
        db.query(Shipment)
        .filter(
            Shipment.auto_approval_deadline.isnot(None),
            Shipment.auto_approval_deadline <= now,
            or_(Shipment.generator_approval_status == "pending", Shipment.recycler_approval_status == "pending"),
        )
        .all()
    )
    for shipment in expired:
        before = row_snapshot(shipment)
        for approval_type in APPROVAL_TYPES:
            if getattr(shipment, f"{approval_type}_approval_status") == "pending":
                setattr(shipment, f"{approval_type}_approval_status", "approved")
                setattr(shipment, f"{approval_type}_approved_at", now)
        shipment.overall_approval_status = overall_approval(
            shipment.generator_approval_status, shipment.recycler_approval_status
        )
        db.commit()
        db.refresh(shipment)
        publish_row(EVENT_UPDATE, shipment, old=before)
        notify_shipment_parties(
            db, shipment, "auto_approved",
            f"Shipment {shipment.shipment_number} auto-approved",
            "The approval deadline passed without a decision.",
        )
    if expired:
        log_system_activity(db, "AUTO_APPROVE", "shipment", None, {"count": len(expired)})
    logger.info("shipments_auto_approved", count=len(expired))
    return len(expired)


def shipment_detail(shipment: Shipment, role: Optional[str] = None) -> Dict:
    """Full record plus the actions ``role`` may take on it."""
    data = row_snapshot(shipment)
    data.update({
        "generator_company_name": shipment.generator_company.name if shipment.generator_company else None,
        "transporter_company_name": shipment.transporter_company.name if shipment.transporter_company else None,
        "recycler_company_name": shipment.recycler_company.name if shipment.recycler_company else None,
        "waste_type_name": shipment.waste_type.name if shipment.waste_type else None,
        "driver_name": shipment.driver.name if shipment.driver else shipment.manual_driver_name,
    })
    if role is not None:
        data["allowed_actions"] = sorted(allowed_actions(shipment.status, role))
    return data


def form_options(db: Session) -> Dict[str, list]:
    """Everything the create-shipment form needs, companies split by type."""
    partitioned = partition_by_type(companies_for_selection(db))
    waste_types = db.query(WasteType).order_by(WasteType.name.asc()).all()
    return {
        "generators": partitioned[CompanyType.generator.value],
        "transporters": partitioned[CompanyType.transporter.value],
        "recyclers": partitioned[CompanyType.recycler.value],
        "waste_types": [{"id": str(w.id), "name": w.name, "hazard_level": w.hazard_level} for w in waste_types],
        "drivers": drivers_for_selection(db),
    }
