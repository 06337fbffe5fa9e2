import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth.security import is_admin, require_company
from ..db import get_db
from ..models.models import Profile
from ..schemas.shipments import NotificationResponse
from ..services import notifications as svc

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("", response_model=List[NotificationResponse])
def list_notifications(
    limit: Optional[int] = 50,
    unread_only: Optional[bool] = False,
    db: Session = Depends(get_db),
    profile: Profile = Depends(require_company),
):
    """Notifications addressed to the caller's company, newest first."""
    return svc.list_notifications(db, profile.company_id, unread_only=bool(unread_only), limit=min(limit or 50, 200))


@router.get("/unread-count")
def unread_count(db: Session = Depends(get_db), profile: Profile = Depends(require_company)):
    return {"count": svc.unread_count(db, profile.company_id)}


@router.post("/read-all")
def mark_all_read(db: Session = Depends(get_db), profile: Profile = Depends(require_company)):
    return {"updated": svc.mark_all_read(db, profile.company_id)}


@router.post("/{notification_id}/read", response_model=NotificationResponse)
def mark_read(notification_id: uuid.UUID, db: Session = Depends(get_db),
              profile: Profile = Depends(require_company)):
    return svc.mark_read(db, notification_id, None if is_admin(profile) else profile.company_id)
