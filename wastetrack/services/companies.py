"""
Company registration, review and the read models used by forms and admin stats.
"""
import re
import uuid
from typing import Dict, Iterable, List, Optional, Sequence

import structlog
from email_validator import EmailNotValidError, validate_email
from pydantic import ValidationError
from sqlalchemy import case, func
from sqlalchemy.orm import Session

from ..models.models import Company, Profile, Shipment, User, utcnow
from ..auth.security import get_password_hash
from ..schemas.companies import CompanyCreate
from .audit import log_system_activity
from .change_feed import EVENT_INSERT, EVENT_UPDATE, publish_row, row_snapshot
from .errors import Conflict, NotFound, ValidationFailed
from .passwords import password_problem
from .workflow import CompanyType, ShipmentStatus

logger = structlog.get_logger(__name__)

COMPANY_TYPES = tuple(t.value for t in CompanyType)
COMPANY_STATUSES = ("pending", "approved", "rejected", "under_review")
ACTIVE_SHIPMENT_STATUSES = (
    ShipmentStatus.in_transit.value,
    ShipmentStatus.delivered.value,
    ShipmentStatus.sorting.value,
    ShipmentStatus.sorted.value,
    ShipmentStatus.recycling.value,
)

_PHONE_RE = re.compile(r"^(\+?[1-9]\d{7,14}|0\d{7,14})$")

COMPANY_FIELDS = (
    "name", "type", "email", "phone", "fax", "address", "contact_person",
    "commercial_reg_no", "tax_id", "license_no", "environmental_approval_no",
    "operating_license_no", "facility_reg_no", "registered_activity",
    "location_address", "location_latitude", "location_longitude",
)


def companies_by_type(companies: Iterable, company_type: str) -> list:
    """Companies whose ``type`` equals ``company_type``; nothing else leaks through.

    Accepts ORM rows or dicts.
    """
    def _type(c):
        return c.get("type") if isinstance(c, dict) else getattr(c, "type", None)
    return [c for c in companies if _type(c) == company_type]


def partition_by_type(companies: Sequence) -> Dict[str, list]:
    return {t: companies_by_type(companies, t) for t in COMPANY_TYPES}


def normalize_phone(phone: str) -> str:
    return re.sub(r"[\s\-\(\)]", "", phone or "")


def validate_contact(email: Optional[str], phone: Optional[str]) -> None:
    if email is not None:
        try:
            validate_email(email, check_deliverability=False)
        except EmailNotValidError as e:
            raise ValidationFailed(f"Invalid email address: {e}")
    if phone is not None and not _PHONE_RE.match(normalize_phone(phone)):
        raise ValidationFailed("Invalid phone number")


def get_company(db: Session, company_id: uuid.UUID) -> Company:
    company = db.query(Company).filter(Company.id == company_id).first()
    if not company:
        raise NotFound("Company not found")
    return company


def list_companies(db: Session, company_type: Optional[str] = None, status: Optional[str] = None,
                   q: Optional[str] = None, include_inactive: bool = True) -> List[Company]:
    query = db.query(Company)
    if company_type:
        query = query.filter(Company.type == company_type)
    if status:
        query = query.filter(Company.status == status)
    if not include_inactive:
        query = query.filter(Company.is_active.is_(True))
    if q:
        like = f"%{q}%"
        query = query.filter(Company.name.ilike(like) | Company.email.ilike(like))
    return query.order_by(Company.name.asc()).all()


def create_company(db: Session, data: dict, actor: Optional[Profile] = None,
                   status: str = "approved") -> Company:
    """Admin-side creation (manual form or import): the company starts approved and active."""
    if data.get("type") not in COMPANY_TYPES:
        raise ValidationFailed("Company type must be generator, transporter or recycler")
    name = (data.get("name") or "").strip()
    if not name or len(name) > 200:
        raise ValidationFailed("Invalid company name")
    validate_contact(data.get("email"), data.get("phone"))
    company = Company(**{k: data.get(k) for k in COMPANY_FIELDS if k in data})
    company.name = name
    company.status = status
    company.is_active = status == "approved"
    db.add(company)
    db.commit()
    db.refresh(company)
    log_system_activity(db, "CREATE", "company", company.id, {"name": company.name, "type": company.type},
                        user_id=actor.user_id if actor else None, actor_role=actor.role if actor else None)
    publish_row(EVENT_INSERT, company)
    return company


def _row_problem(exc: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(p) for p in err['loc']) or 'row'}: {err['msg']}" for err in exc.errors()
    )


def import_companies(db: Session, rows: List[dict], actor: Profile) -> Dict[str, list]:
    """
    Create many companies. Each row is checked against the same rules as the
    create form; rows that fail are reported with their index, not raised.
    """
    created, failed = [], []
    for index, row in enumerate(rows):
        name = row.get("name") if isinstance(row, dict) else None
        try:
            data = CompanyCreate.model_validate(row).model_dump(mode="json", exclude_unset=True)
        except ValidationError as e:
            failed.append({"index": index, "name": name, "error": _row_problem(e)})
            continue
        try:
            created.append(create_company(db, data, actor=actor))
        except ValidationFailed as e:
            failed.append({"index": index, "name": name, "error": e.detail})
    logger.info("companies_imported", created=len(created), failed=len(failed))
    return {"created": created, "failed": failed}


def update_company(db: Session, company: Company, changes: dict, actor: Profile) -> Company:
    if "type" in changes and changes["type"] not in COMPANY_TYPES:
        raise ValidationFailed("Company type must be generator, transporter or recycler")
    validate_contact(changes.get("email"), changes.get("phone"))
    before = row_snapshot(company)
    for key in COMPANY_FIELDS:
        if key in changes:
            setattr(company, key, changes[key])
    if "is_active" in changes:
        company.is_active = bool(changes["is_active"])
    db.commit()
    db.refresh(company)
    log_system_activity(db, "UPDATE", "company", company.id, {"fields": sorted(changes.keys())},
                        user_id=actor.user_id, actor_role=actor.role)
    publish_row(EVENT_UPDATE, company, old=before)
    return company


def register_company(db: Session, data: dict) -> Company:
    """Public self-registration: company + login account, both waiting for admin review."""
    for required in ("name", "type", "email", "phone", "password"):
        if not data.get(required):
            raise ValidationFailed("Missing required field: " + required)
    if data["type"] not in COMPANY_TYPES:
        raise ValidationFailed("Company type must be generator, transporter or recycler")
    name = data["name"].strip()
    if not name or len(name) > 200:
        raise ValidationFailed("Invalid company name")
    validate_contact(data["email"], data["phone"])
    problem = password_problem(data["password"])
    if problem:
        raise ValidationFailed(problem)
    email = data["email"].strip().lower()
    if db.query(User).filter(User.email == email).first():
        raise Conflict("This email is already registered")

    company = Company(**{k: data.get(k) for k in COMPANY_FIELDS if k in data})
    company.name = name
    company.email = email
    company.status = "pending"
    company.is_active = False
    db.add(company)
    db.flush()

    user = User(email=email, password_hash=get_password_hash(data["password"]))
    db.add(user)
    db.flush()
    profile = Profile(
        user_id=user.id,
        full_name=data.get("contact_person") or name,
        email=email,
        phone=data.get("phone"),
        role=company.type,
        company_id=company.id,
        is_active=False,
    )
    db.add(profile)
    db.commit()
    db.refresh(company)
    db.refresh(profile)
    logger.info("company_registered", company_id=str(company.id), type=company.type)
    log_system_activity(db, "REGISTER", "company", company.id, {"name": company.name, "type": company.type},
                        user_id=user.id, actor_role=company.type)
    publish_row(EVENT_INSERT, company)
    publish_row(EVENT_INSERT, profile)
    return company


def review_company(db: Session, company: Company, status: str, actor: Profile,
                   notes: Optional[str] = None) -> Company:
    """Admin review. Only this action changes a company's status."""
    if status not in COMPANY_STATUSES or status == "pending":
        raise ValidationFailed("Review status must be approved, rejected or under_review")
    before = row_snapshot(company)
    company.status = status
    company.is_active = status == "approved"
    company.review_notes = notes
    company.reviewed_at = utcnow()
    company.reviewed_by = actor.user_id
    db.commit()
    db.refresh(company)
    log_system_activity(db, status.upper(), "company", company.id, {"notes": notes},
                        user_id=actor.user_id, actor_role=actor.role)
    publish_row(EVENT_UPDATE, company, old=before)
    return company


def set_company_active(db: Session, company: Company, active: bool, actor: Profile) -> Company:
    """Soft (de)activation; the company row and its history are kept."""
    return update_company(db, company, {"is_active": active}, actor)


def companies_for_selection(db: Session) -> List[dict]:
    rows = (
        db.query(Company)
        .filter(Company.is_active.is_(True), Company.status == "approved")
        .order_by(Company.name.asc())
        .all()
    )
    return [
        {"id": str(c.id), "name": c.name, "type": c.type, "location_address": c.location_address or c.address}
        for c in rows
    ]


def companies_stats(db: Session) -> List[dict]:
    """Per-company shipment totals, counted on the column matching the company's role."""
    column_for = {
        "generator": Shipment.generator_company_id,
        "transporter": Shipment.transporter_company_id,
        "recycler": Shipment.recycler_company_id,
    }
    completed_status = ShipmentStatus.completed.value
    totals: Dict[tuple, tuple] = {}
    for company_type, column in column_for.items():
        rows = (
            db.query(
                column,
                func.count(Shipment.id),
                func.sum(case((Shipment.status.in_(ACTIVE_SHIPMENT_STATUSES), 1), else_=0)),
                func.sum(case((Shipment.status == completed_status, 1), else_=0)),
                func.sum(case((Shipment.status == completed_status, Shipment.quantity), else_=0.0)),
            )
            .group_by(column)
            .all()
        )
        for company_id, total, active, completed, processed in rows:
            totals[(company_type, company_id)] = (total, active or 0, completed or 0, processed or 0)

    result = []
    for c in db.query(Company).filter(Company.type.in_(list(column_for))).order_by(Company.name.asc()).all():
        total, active, completed, processed = totals.get((c.type, c.id), (0, 0, 0, 0))
        result.append({
            "company_id": str(c.id),
            "company_name": c.name,
            "company_type": c.type,
            "total_shipments": int(total),
            "active_shipments": int(active),
            "completed_shipments": int(completed),
            "total_waste_processed": float(processed),
        })
    return result
