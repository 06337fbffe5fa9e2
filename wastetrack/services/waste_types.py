from typing import List, Optional

from sqlalchemy.orm import Session

from ..models.models import Profile, Shipment, WasteType
from .audit import log_system_activity
from .errors import Conflict, NotFound, ValidationFailed

HAZARD_LEVELS = ("low", "medium", "high")

DEFAULT_WASTE_TYPES = [
    {"name": "Plastic", "category": "recyclable", "hazard_level": "low"},
    {"name": "Paper and cardboard", "category": "recyclable", "hazard_level": "low"},
    {"name": "Metal", "category": "recyclable", "hazard_level": "low"},
    {"name": "Glass", "category": "recyclable", "hazard_level": "low"},
    {"name": "Organic", "category": "organic", "hazard_level": "low"},
    {"name": "Electronic waste", "category": "special", "hazard_level": "medium"},
    {"name": "Medical waste", "category": "hazardous", "hazard_level": "high"},
    {"name": "Chemical waste", "category": "hazardous", "hazard_level": "high"},
]


def list_waste_types(db: Session) -> List[WasteType]:
    return db.query(WasteType).order_by(WasteType.name.asc()).all()


def _validate(data: dict) -> None:
    if "name" in data and not (data.get("name") or "").strip():
        raise ValidationFailed("Waste type name is required")
    if data.get("hazard_level") is not None and data["hazard_level"] not in HAZARD_LEVELS:
        raise ValidationFailed("hazard_level must be low, medium or high")


def create_waste_type(db: Session, data: dict, actor: Optional[Profile] = None) -> WasteType:
    _validate({"name": data.get("name"), **data})
    name = data["name"].strip()
    if db.query(WasteType).filter(WasteType.name == name).first():
        raise Conflict(f"Waste type '{name}' already exists")
    wt = WasteType(
        name=name,
        description=data.get("description"),
        category=data.get("category"),
        hazard_level=data.get("hazard_level") or "low",
        created_by=actor.user_id if actor else None,
    )
    db.add(wt)
    db.commit()
    db.refresh(wt)
    if actor is not None:
        log_system_activity(db, "CREATE", "waste_type", wt.id, {"name": wt.name},
                            user_id=actor.user_id, actor_role=actor.role)
    return wt


def update_waste_type(db: Session, wt_id, changes: dict, actor: Profile) -> WasteType:
    _validate(changes)
    wt = db.query(WasteType).filter(WasteType.id == wt_id).first()
    if not wt:
        raise NotFound("Waste type not found")
    for key in ("name", "description", "category", "hazard_level"):
        if key in changes and changes[key] is not None:
            setattr(wt, key, changes[key].strip() if key == "name" else changes[key])
    db.commit()
    db.refresh(wt)
    log_system_activity(db, "UPDATE", "waste_type", wt.id, {"fields": sorted(changes.keys())},
                        user_id=actor.user_id, actor_role=actor.role)
    return wt


def delete_waste_type(db: Session, wt_id, actor: Profile) -> None:
    wt = db.query(WasteType).filter(WasteType.id == wt_id).first()
    if not wt:
        raise NotFound("Waste type not found")
    if db.query(Shipment).filter(Shipment.waste_type_id == wt.id).first():
        raise Conflict("Waste type is used by shipments")
    name = wt.name
    db.delete(wt)
    db.commit()
    log_system_activity(db, "DELETE", "waste_type", wt_id, {"name": name},
                        user_id=actor.user_id, actor_role=actor.role)


def seed_waste_types(db: Session) -> int:
    """Insert the default catalogue entries that are missing. Returns how many were added."""
    existing = {name for (name,) in db.query(WasteType.name).all()}
    added = 0
    for item in DEFAULT_WASTE_TYPES:
        if item["name"] in existing:
            continue
        db.add(WasteType(**item))
        added += 1
    if added:
        db.commit()
    return added
