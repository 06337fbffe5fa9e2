"""
Drivers: registration under a transport company and live GPS position.
"""
import uuid
from datetime import timedelta
from typing import Dict, List, Optional

import structlog
from sqlalchemy.orm import Session, joinedload

from ..config import settings
from ..models.models import Company, Driver, DriverLocation, Profile, Shipment, utcnow
from .audit import log_system_activity
from .change_feed import EVENT_INSERT, EVENT_UPDATE, publish_delete, publish_row, row_snapshot
from .errors import Conflict, NotFound, PermissionDenied, ValidationFailed
from .workflow import CompanyType, Role, ShipmentStatus

logger = structlog.get_logger(__name__)

DRIVER_FIELDS = (
    "name", "email", "phone", "national_id", "license_number", "license_type",
    "vehicle_plate", "vehicle_type", "transport_company_id", "user_id", "tracking_enabled",
)


def get_driver(db: Session, driver_id: uuid.UUID) -> Driver:
    driver = db.query(Driver).filter(Driver.id == driver_id).first()
    if not driver:
        raise NotFound("Driver not found")
    return driver


def _check_manager(driver_company_id: Optional[uuid.UUID], actor: Profile) -> None:
    if actor.role == Role.admin.value:
        return
    if actor.role != Role.transporter.value or actor.company_id != driver_company_id:
        raise PermissionDenied("Only the driver's transport company can manage this driver")


def driver_for_profile(db: Session, profile: Profile) -> Optional[Driver]:
    """Driver record linked to a driver login, if any."""
    return db.query(Driver).filter(Driver.user_id == profile.user_id).first()


def list_drivers(db: Session, actor: Profile) -> List[Driver]:
    query = db.query(Driver).options(joinedload(Driver.transport_company))
    if actor.role != Role.admin.value:
        if actor.company_id is None:
            return []
        query = query.filter(Driver.transport_company_id == actor.company_id)
    return query.order_by(Driver.name.asc()).all()


def create_driver(db: Session, data: dict, actor: Profile) -> Driver:
    if not (data.get("name") or "").strip():
        raise ValidationFailed("Driver name is required")
    company_id = data.get("transport_company_id")
    if actor.role == Role.transporter.value and company_id is None:
        company_id = actor.company_id
    _check_manager(company_id, actor)
    if company_id is not None:
        company = db.query(Company).filter(Company.id == company_id).first()
        if not company or company.type != CompanyType.transporter.value:
            raise ValidationFailed("Drivers must belong to a transporter company")
    driver = Driver(**{k: data[k] for k in DRIVER_FIELDS if k in data})
    driver.name = data["name"].strip()
    driver.transport_company_id = company_id
    db.add(driver)
    db.commit()
    db.refresh(driver)
    log_system_activity(db, "CREATE", "driver", driver.id, {"name": driver.name},
                        user_id=actor.user_id, actor_role=actor.role)
    publish_row(EVENT_INSERT, driver)
    return driver


def update_driver(db: Session, driver: Driver, changes: dict, actor: Profile) -> Driver:
    _check_manager(driver.transport_company_id, actor)
    if "transport_company_id" in changes and actor.role != Role.admin.value:
        raise PermissionDenied("Only administrators can move a driver to another company")
    before = row_snapshot(driver)
    for key in DRIVER_FIELDS:
        if key in changes:
            setattr(driver, key, changes[key])
    db.commit()
    db.refresh(driver)
    log_system_activity(db, "UPDATE", "driver", driver.id, {"fields": sorted(changes.keys())},
                        user_id=actor.user_id, actor_role=actor.role)
    publish_row(EVENT_UPDATE, driver, old=before)
    return driver


def delete_driver(db: Session, driver: Driver, actor: Profile) -> None:
    """
    Remove a driver record. A driver still on an unfinished shipment cannot be
    removed; completed shipments keep the driver's name and plate as a manual entry.
    """
    _check_manager(driver.transport_company_id, actor)
    assigned = db.query(Shipment).filter(Shipment.driver_id == driver.id).all()
    open_numbers = [s.shipment_number for s in assigned if s.status != ShipmentStatus.completed.value]
    if open_numbers:
        raise Conflict(f"Driver is still assigned to {', '.join(sorted(open_numbers))}")
    before = row_snapshot(driver)
    detached = []
    for shipment in assigned:
        detached.append((shipment, row_snapshot(shipment)))
        shipment.driver_id = None
        shipment.driver_entry_type = "manual"
        shipment.manual_driver_name = driver.name
        shipment.manual_vehicle_number = driver.vehicle_plate
    db.query(DriverLocation).filter(DriverLocation.driver_id == driver.id).delete(synchronize_session=False)
    db.delete(driver)
    db.commit()
    log_system_activity(db, "DELETE", "driver", before["id"], {"name": before["name"], "detached": len(detached)},
                        user_id=actor.user_id, actor_role=actor.role)
    for shipment, old in detached:
        publish_row(EVENT_UPDATE, shipment, old=old)
    publish_delete(Driver.__tablename__, before)


def update_driver_location(
    db: Session,
    driver_id: uuid.UUID,
    latitude: float,
    longitude: float,
    actor: Profile,
    speed: Optional[float] = None,
    heading: Optional[float] = None,
    accuracy: Optional[float] = None,
    shipment_id: Optional[uuid.UUID] = None,
) -> Driver:
    """Store the driver's current position and append a history point."""
    if not (-90 <= latitude <= 90) or not (-180 <= longitude <= 180):
        raise ValidationFailed("Coordinates out of range")
    driver = get_driver(db, driver_id)
    if actor.role != Role.admin.value and driver.user_id != actor.user_id:
        raise PermissionDenied("Drivers can only report their own location")
    if not driver.tracking_enabled:
        raise ValidationFailed("Tracking is disabled for this driver")
    if shipment_id is not None:
        shipment = db.query(Shipment).filter(Shipment.id == shipment_id).first()
        if not shipment or shipment.driver_id != driver.id:
            raise ValidationFailed("Shipment is not assigned to this driver")

    before = row_snapshot(driver)
    now = utcnow()
    driver.current_latitude = latitude
    driver.current_longitude = longitude
    driver.is_online = True
    driver.last_ping = now
    db.add(DriverLocation(
        driver_id=driver.id,
        shipment_id=shipment_id,
        latitude=latitude,
        longitude=longitude,
        speed=speed,
        heading=heading,
        accuracy=accuracy,
        recorded_at=now,
    ))
    db.commit()
    db.refresh(driver)
    logger.debug("driver_location_updated", driver_id=str(driver.id), lat=latitude, lng=longitude)
    publish_row(EVENT_UPDATE, driver, old=before)
    return driver


def location_history(db: Session, driver_id: uuid.UUID, limit: int = 200) -> List[DriverLocation]:
    return (
        db.query(DriverLocation)
        .filter(DriverLocation.driver_id == driver_id)
        .order_by(DriverLocation.recorded_at.desc())
        .limit(limit)
        .all()
    )


def _active_since():
    return utcnow() - timedelta(minutes=settings.driver_active_window_min)


def get_active_drivers(db: Session, actor: Profile) -> List[Dict]:
    """Drivers that pinged within the active window, with their in-transit shipment if any."""
    query = (
        db.query(Driver)
        .options(joinedload(Driver.transport_company))
        .filter(Driver.last_ping.isnot(None), Driver.last_ping >= _active_since())
    )
    if actor.role != Role.admin.value:
        query = query.filter(Driver.transport_company_id == actor.company_id)
    result = []
    for driver in query.order_by(Driver.last_ping.desc()).all():
        current = (
            db.query(Shipment)
            .filter(Shipment.driver_id == driver.id, Shipment.status == ShipmentStatus.in_transit.value)
            .order_by(Shipment.departure_time.desc())
            .first()
        )
        result.append({
            "driver_id": str(driver.id),
            "driver_name": driver.name,
            "vehicle_plate": driver.vehicle_plate,
            "transport_company_id": str(driver.transport_company_id) if driver.transport_company_id else None,
            "company_name": driver.transport_company.name if driver.transport_company else None,
            "latitude": driver.current_latitude,
            "longitude": driver.current_longitude,
            "last_ping": driver.last_ping.isoformat() if driver.last_ping else None,
            "shipment_id": str(current.id) if current else None,
            "shipment_number": current.shipment_number if current else None,
        })
    return result


def drivers_for_selection(db: Session, transport_company_id: Optional[uuid.UUID] = None) -> List[Dict]:
    query = db.query(Driver)
    if transport_company_id is not None:
        query = query.filter(Driver.transport_company_id == transport_company_id)
    return [
        {
            "id": str(d.id),
            "name": d.name,
            "vehicle_plate": d.vehicle_plate,
            "transport_company_id": str(d.transport_company_id) if d.transport_company_id else None,
        }
        for d in query.order_by(Driver.name.asc()).all()
    ]
