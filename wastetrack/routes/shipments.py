import uuid
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..auth.security import get_current_profile, require_roles
from ..db import get_db
from ..models.models import Profile
from ..schemas.shipments import (
    ApprovalRequest,
    MessageCreate,
    ReportRequest,
    ShipmentCreate,
    ShipmentSummary,
    ShipmentUpdate,
    StatusUpdate,
)
from ..services import messages
from ..services import shipments as svc

router = APIRouter(prefix="/shipments", tags=["shipments"])


@router.get("/form-options")
def form_options(db: Session = Depends(get_db), _: Profile = Depends(get_current_profile)):
    return svc.form_options(db)


@router.get("/company", response_model=List[ShipmentSummary])
def company_shipments(
    company_type: Optional[str] = None,
    status: Optional[str] = None,
    shipment_number: Optional[str] = None,
    waste_type_id: Optional[uuid.UUID] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    db: Session = Depends(get_db),
    profile: Profile = Depends(get_current_profile),
):
    return svc.get_company_shipments(
        db, profile, company_type=company_type, status=status, shipment_number=shipment_number,
        waste_type_id=waste_type_id, date_from=date_from, date_to=date_to,
    )


@router.get("/driver", response_model=List[ShipmentSummary])
def driver_shipments(db: Session = Depends(get_db), profile: Profile = Depends(require_roles("driver"))):
    return svc.get_driver_shipments(db, profile)


@router.post("", status_code=201)
def create_shipment(
    payload: ShipmentCreate,
    db: Session = Depends(get_db),
    profile: Profile = Depends(require_roles("admin", "generator", "transporter", "recycler")),
):
    shipment = svc.create_shipment(db, payload.model_dump(), actor=profile)
    return svc.shipment_detail(shipment, profile.role)


@router.get("/{shipment_id}")
def get_shipment(shipment_id: uuid.UUID, db: Session = Depends(get_db),
                 profile: Profile = Depends(get_current_profile)):
    shipment = svc.get_shipment(db, shipment_id, profile)
    return svc.shipment_detail(shipment, profile.role)


@router.patch("/{shipment_id}")
def update_shipment(shipment_id: uuid.UUID, payload: ShipmentUpdate, db: Session = Depends(get_db),
                    profile: Profile = Depends(get_current_profile)):
    shipment = svc.get_shipment(db, shipment_id, profile)
    shipment = svc.update_shipment(db, shipment, payload.model_dump(exclude_unset=True), actor=profile)
    return svc.shipment_detail(shipment, profile.role)


@router.delete("/{shipment_id}", status_code=204)
def delete_shipment(shipment_id: uuid.UUID, db: Session = Depends(get_db),
                    admin: Profile = Depends(require_roles("admin"))):
    svc.delete_shipment(db, svc.get_shipment(db, shipment_id), actor=admin)


@router.post("/{shipment_id}/status")
def update_status(shipment_id: uuid.UUID, payload: StatusUpdate, db: Session = Depends(get_db),
                  profile: Profile = Depends(get_current_profile)):
    shipment = svc.update_shipment_status(db, shipment_id, payload.new_status, profile, notes=payload.notes)
    return svc.shipment_detail(shipment, profile.role)


@router.post("/{shipment_id}/approval")
def approve(shipment_id: uuid.UUID, payload: ApprovalRequest, db: Session = Depends(get_db),
            profile: Profile = Depends(require_roles("admin", "generator", "recycler"))):
    shipment = svc.approve_shipment(
        db, shipment_id, payload.approval_type.value, payload.is_approved, profile, reason=payload.reason
    )
    return svc.shipment_detail(shipment, profile.role)


@router.post("/{shipment_id}/report")
def add_report(shipment_id: uuid.UUID, payload: ReportRequest, db: Session = Depends(get_db),
               profile: Profile = Depends(require_roles("admin", "transporter", "recycler"))):
    shipment = svc.add_shipment_report(db, shipment_id, payload.report_text, profile)
    return svc.shipment_detail(shipment, profile.role)


@router.get("/{shipment_id}/messages")
def list_messages(
    shipment_id: uuid.UUID,
    before: Optional[datetime] = Query(None),
    after: Optional[datetime] = Query(None),
    limit: int = 50,
    db: Session = Depends(get_db),
    profile: Profile = Depends(get_current_profile),
):
    return messages.list_messages(db, shipment_id, profile, before=before, after=after, limit=limit)


@router.post("/{shipment_id}/messages", status_code=201)
def post_message(shipment_id: uuid.UUID, payload: MessageCreate, db: Session = Depends(get_db),
                 profile: Profile = Depends(get_current_profile)):
    return messages.post_message(db, shipment_id, payload.content, profile)
