import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth.security import require_roles
from ..db import get_db
from ..models.models import Profile
from ..schemas.auth import ActivationRequest, AssignmentRequest, PasswordResetRequest, ProfileResponse
from ..services import admin as svc
from ..services.audit import get_auth_logs, get_system_logs, verify_integrity
from ..services.shipments import auto_approve_expired_shipments

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/users", response_model=List[ProfileResponse])
def list_users(pending_only: bool = False, role: Optional[str] = None, db: Session = Depends(get_db),
               _: Profile = Depends(require_roles("admin"))):
    return svc.list_users(db, pending_only=pending_only, role=role)


@router.get("/users/pending", response_model=List[ProfileResponse])
def pending_users(db: Session = Depends(get_db), _: Profile = Depends(require_roles("admin"))):
    return svc.list_users(db, pending_only=True)


@router.post("/users/{user_id}/activation", response_model=ProfileResponse)
def activation(user_id: uuid.UUID, payload: ActivationRequest, db: Session = Depends(get_db),
               admin: Profile = Depends(require_roles("admin"))):
    return svc.activate_user(db, user_id, payload.activate, actor=admin)


@router.post("/users/{user_id}/assignment", response_model=ProfileResponse)
def assignment(user_id: uuid.UUID, payload: AssignmentRequest, db: Session = Depends(get_db),
               admin: Profile = Depends(require_roles("admin"))):
    return svc.assign_user(db, user_id, admin, role=payload.role, company_id=payload.company_id)


@router.post("/users/{user_id}/password", status_code=204)
def reset_password(user_id: uuid.UUID, payload: PasswordResetRequest, db: Session = Depends(get_db),
                   admin: Profile = Depends(require_roles("admin"))):
    svc.reset_password(db, user_id, payload.new_password, actor=admin)


@router.get("/stats")
def dashboard_stats(db: Session = Depends(get_db), _: Profile = Depends(require_roles("admin"))):
    return svc.get_dashboard_stats(db)


@router.get("/auth-logs")
def auth_logs(action: Optional[str] = None, limit: int = 100, offset: int = 0, db: Session = Depends(get_db),
              _: Profile = Depends(require_roles("admin"))):
    return [
        {
            "id": str(e.id),
            "user_id": str(e.user_id) if e.user_id else None,
            "email": e.email,
            "action": e.action,
            "ip_address": e.ip_address,
            "user_agent": e.user_agent,
            "created_at": e.created_at.isoformat(),
        }
        for e in get_auth_logs(db, action=action, limit=min(limit, 500), offset=offset)
    ]


@router.get("/system-logs")
def system_logs(entity_type: Optional[str] = None, entity_id: Optional[str] = None, limit: int = 100,
                offset: int = 0, db: Session = Depends(get_db), _: Profile = Depends(require_roles("admin"))):
    return [
        {
            "id": str(e.id),
            "action_type": e.action_type,
            "entity_type": e.entity_type,
            "entity_id": e.entity_id,
            "user_id": str(e.user_id) if e.user_id else None,
            "actor_role": e.actor_role,
            "details": e.details,
            "created_at": e.created_at.isoformat(),
            "integrity_ok": verify_integrity(e),
        }
        for e in get_system_logs(db, entity_type=entity_type, entity_id=entity_id, limit=min(limit, 500), offset=offset)
    ]


@router.post("/shipments/auto-approve")
def auto_approve(db: Session = Depends(get_db), _: Profile = Depends(require_roles("admin"))):
    return {"approved": auto_approve_expired_shipments(db)}
