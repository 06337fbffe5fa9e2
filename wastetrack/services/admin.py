"""
Administrator operations on accounts, plus the admin dashboard statistics.
"""
import uuid
from datetime import timedelta
from typing import Dict, List, Optional

import structlog
from sqlalchemy.orm import Session, joinedload

from ..config import settings
from ..models.models import Company, Driver, Profile, Shipment, User, utcnow
from ..auth.security import get_password_hash
from .audit import log_auth_event, log_system_activity
from .change_feed import EVENT_UPDATE, publish_row, row_snapshot
from .errors import NotFound, PermissionDenied, ValidationFailed
from .passwords import password_problem
from .workflow import ALL_ROLES, Role, ShipmentStatus

logger = structlog.get_logger(__name__)


def _require_admin(actor: Profile) -> None:
    if actor.role != Role.admin.value:
        raise PermissionDenied("Administrator access required")


def get_profile(db: Session, user_id: uuid.UUID) -> Profile:
    profile = db.query(Profile).filter(Profile.user_id == user_id).first()
    if not profile:
        raise NotFound("User not found")
    return profile


def activate_user(db: Session, target_user_id: uuid.UUID, activate: bool, actor: Profile) -> Profile:
    """Flip ``profiles.is_active``; inactive users cannot sign in."""
    _require_admin(actor)
    profile = get_profile(db, target_user_id)
    if profile.user_id == actor.user_id and not activate:
        raise ValidationFailed("You cannot deactivate your own account")
    before = row_snapshot(profile)
    profile.is_active = bool(activate)
    if activate:
        profile.activated_at = utcnow()
        profile.activated_by = actor.user_id
    db.commit()
    db.refresh(profile)
    logger.info("user_activation_changed", user_id=str(profile.user_id), active=profile.is_active)
    log_system_activity(db, "ACTIVATE" if activate else "DEACTIVATE", "profile", profile.user_id,
                        {"email": profile.email}, user_id=actor.user_id, actor_role=actor.role)
    publish_row(EVENT_UPDATE, profile, old=before)
    return profile


def list_users(db: Session, pending_only: bool = False, role: Optional[str] = None) -> List[Profile]:
    query = db.query(Profile).options(joinedload(Profile.company))
    if pending_only:
        query = query.filter(Profile.is_active.is_(False))
    if role:
        query = query.filter(Profile.role == role)
    return query.order_by(Profile.created_at.desc()).all()


def assign_user(db: Session, target_user_id: uuid.UUID, actor: Profile, role: Optional[str] = None,
                company_id: Optional[uuid.UUID] = None) -> Profile:
    """Change a user's role and/or linked company. Company users must match their company's type."""
    _require_admin(actor)
    profile = get_profile(db, target_user_id)
    new_role = role or profile.role
    if new_role not in ALL_ROLES:
        raise ValidationFailed(f"Unknown role '{new_role}'")
    new_company_id = company_id if company_id is not None else profile.company_id
    if new_company_id is not None and new_role in ("generator", "transporter", "recycler"):
        company = db.query(Company).filter(Company.id == new_company_id).first()
        if not company:
            raise NotFound("Company not found")
        if company.type != new_role:
            raise ValidationFailed(f"A {new_role} user cannot belong to a {company.type} company")
    before = row_snapshot(profile)
    profile.role = new_role
    profile.company_id = new_company_id
    db.commit()
    db.refresh(profile)
    log_system_activity(db, "ASSIGN", "profile", profile.user_id,
                        {"role": new_role, "company_id": str(new_company_id) if new_company_id else None},
                        user_id=actor.user_id, actor_role=actor.role)
    publish_row(EVENT_UPDATE, profile, old=before)
    return profile


def reset_password(db: Session, target_user_id: uuid.UUID, new_password: str, actor: Profile) -> User:
    _require_admin(actor)
    problem = password_problem(new_password)
    if problem:
        raise ValidationFailed(problem)
    user = db.query(User).filter(User.id == target_user_id).first()
    if not user:
        raise NotFound("User not found")
    user.password_hash = get_password_hash(new_password)
    db.commit()
    log_auth_event(db, "password_reset", user.email, user_id=user.id)
    log_system_activity(db, "PASSWORD_RESET", "profile", user.id, None,
                        user_id=actor.user_id, actor_role=actor.role)
    return user


def get_dashboard_stats(db: Session) -> Dict:
    """Counts shown on the admin dashboard tiles."""
    active_since = utcnow() - timedelta(minutes=settings.driver_active_window_min)
    by_status = {s.value: 0 for s in ShipmentStatus}
    for (status,) in db.query(Shipment.status).all():
        by_status[status] = by_status.get(status, 0) + 1
    companies = db.query(Company).all()
    return {
        "total_shipments": sum(by_status.values()),
        "shipments_by_status": by_status,
        "active_shipments": sum(
            v for k, v in by_status.items()
            if k not in (ShipmentStatus.pending.value, ShipmentStatus.completed.value)
        ),
        "total_companies": len(companies),
        "companies_by_type": {
            t: len([c for c in companies if c.type == t]) for t in ("generator", "transporter", "recycler")
        },
        "pending_companies": len([c for c in companies if c.status == "pending"]),
        "total_drivers": db.query(Driver).count(),
        "active_drivers": db.query(Driver).filter(Driver.last_ping >= active_since).count(),
        "pending_users": db.query(Profile).filter(Profile.is_active.is_(False)).count(),
    }
