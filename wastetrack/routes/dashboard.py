from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth.security import get_current_profile
from ..db import get_db
from ..models.models import Profile
from ..services.admin import get_dashboard_stats
from ..services.shipments import get_company_shipments, get_driver_shipments
from ..services.workflow import DASHBOARD_FOR_ROLE, UNKNOWN_ROLE_VIEW, Role, allowed_actions

router = APIRouter(prefix="/dashboard", tags=["dashboard"])


@router.get("")
def dashboard(db: Session = Depends(get_db), profile: Profile = Depends(get_current_profile)):
    """
    Role-routed landing data: which view the caller gets, the shipments it lists
    and, per shipment, the actions that view should enable.
    """
    role = profile.role
    view = DASHBOARD_FOR_ROLE.get(role, UNKNOWN_ROLE_VIEW)
    result = {"role": role, "view": view, "company_id": str(profile.company_id) if profile.company_id else None}
    if view == UNKNOWN_ROLE_VIEW:
        result["shipments"] = []
        return result
    if role == Role.driver.value:
        shipments = get_driver_shipments(db, profile)
    elif role == Role.admin.value:
        shipments = get_company_shipments(db, profile)
        result["stats"] = get_dashboard_stats(db)
    elif profile.company_id is None:
        shipments = []
    else:
        shipments = get_company_shipments(db, profile, company_type=role)
    for s in shipments:
        s["allowed_actions"] = sorted(allowed_actions(s["status"], role))
    result["shipments"] = shipments
    return result
