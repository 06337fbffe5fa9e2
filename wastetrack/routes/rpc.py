"""
Named remote procedures.

``POST /rpc/{name}`` with a JSON object of keyword arguments. Every procedure
here is also reachable through its REST route; the registry exists for
clients that address the backend by procedure name. Arguments are checked
against the procedure's params model before it runs, with the same field
rules as the REST bodies.
"""
import uuid
from datetime import datetime
from typing import Any, Callable, Dict, Optional, Type

from fastapi import APIRouter, Body, Depends, HTTPException
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, ValidationError
from sqlalchemy.orm import Session

from ..auth.security import get_current_profile
from ..db import get_db
from ..models.models import Profile
from ..schemas.auth import ActivationRequest
from ..schemas.drivers import LocationUpdate
from ..schemas.shipments import ApprovalRequest, ReportRequest, StatusUpdate
from ..services import admin, companies, drivers, shipments, terms
from ..services.change_feed import row_snapshot
from ..services.errors import PermissionDenied

router = APIRouter(prefix="/rpc", tags=["rpc"])

Procedure = Callable[..., Any]
REGISTRY: Dict[str, Procedure] = {}


class NoParams(BaseModel):
    class Config:
        extra = "forbid"


class CompanyShipmentsParams(NoParams):
    company_type: Optional[str] = None
    status: Optional[str] = None
    shipment_number: Optional[str] = None
    waste_type_id: Optional[uuid.UUID] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None


class DriverSelectionParams(NoParams):
    transport_company_id: Optional[uuid.UUID] = None


class ShipmentStatusParams(StatusUpdate, NoParams):
    shipment_id: uuid.UUID


class ShipmentApprovalParams(ApprovalRequest, NoParams):
    shipment_id: uuid.UUID


class ShipmentReportParams(ReportRequest, NoParams):
    shipment_id: uuid.UUID


class ActivationParams(ActivationRequest, NoParams):
    target_user_id: uuid.UUID


class DriverLocationParams(LocationUpdate, NoParams):
    driver_id: uuid.UUID


class TermsParams(NoParams):
    version: Optional[str] = None


def procedure(name: str, roles: Optional[tuple] = None, params: Type[BaseModel] = NoParams):
    def _register(fn: Procedure) -> Procedure:
        fn.roles = roles
        fn.params = params
        REGISTRY[name] = fn
        return fn
    return _register


def _describe(name: str, exc: ValidationError) -> str:
    problems = []
    for err in exc.errors():
        field = ".".join(str(part) for part in err["loc"]) or "arguments"
        problems.append(f"{field}: {err['msg']}")
    return f"Invalid arguments for {name}: " + "; ".join(problems)


@procedure("get_company_shipments", params=CompanyShipmentsParams)
def _get_company_shipments(db: Session, profile: Profile, args: CompanyShipmentsParams):
    return shipments.get_company_shipments(db, profile, **args.model_dump())


@procedure("get_driver_shipments", roles=("driver",))
def _get_driver_shipments(db: Session, profile: Profile, args: NoParams):
    return shipments.get_driver_shipments(db, profile)


@procedure("get_active_drivers", roles=("admin", "transporter"))
def _get_active_drivers(db: Session, profile: Profile, args: NoParams):
    return drivers.get_active_drivers(db, profile)


@procedure("get_companies_for_selection")
def _get_companies_for_selection(db: Session, profile: Profile, args: NoParams):
    return companies.companies_for_selection(db)


@procedure("get_drivers_for_selection", params=DriverSelectionParams)
def _get_drivers_for_selection(db: Session, profile: Profile, args: DriverSelectionParams):
    return drivers.drivers_for_selection(db, args.transport_company_id)


@procedure("update_shipment_status", params=ShipmentStatusParams)
def _update_shipment_status(db: Session, profile: Profile, args: ShipmentStatusParams):
    s = shipments.update_shipment_status(db, args.shipment_id, args.new_status, profile, notes=args.notes)
    return shipments.shipment_detail(s, profile.role)


@procedure("approve_shipment", roles=("admin", "generator", "recycler"), params=ShipmentApprovalParams)
def _approve_shipment(db: Session, profile: Profile, args: ShipmentApprovalParams):
    s = shipments.approve_shipment(db, args.shipment_id, args.approval_type.value, args.is_approved,
                                   profile, reason=args.reason)
    return shipments.shipment_detail(s, profile.role)


@procedure("add_shipment_report", roles=("admin", "transporter", "recycler"), params=ShipmentReportParams)
def _add_shipment_report(db: Session, profile: Profile, args: ShipmentReportParams):
    s = shipments.add_shipment_report(db, args.shipment_id, args.report_text, profile)
    return shipments.shipment_detail(s, profile.role)


@procedure("activate_user", roles=("admin",), params=ActivationParams)
def _activate_user(db: Session, profile: Profile, args: ActivationParams):
    return row_snapshot(admin.activate_user(db, args.target_user_id, args.activate, profile))


@procedure("get_companies_stats", roles=("admin",))
def _get_companies_stats(db: Session, profile: Profile, args: NoParams):
    return companies.companies_stats(db)


@procedure("get_dashboard_stats", roles=("admin",))
def _get_dashboard_stats(db: Session, profile: Profile, args: NoParams):
    return admin.get_dashboard_stats(db)


@procedure("update_driver_location", params=DriverLocationParams)
def _update_driver_location(db: Session, profile: Profile, args: DriverLocationParams):
    d = drivers.update_driver_location(
        db, args.driver_id, args.latitude, args.longitude, profile,
        speed=args.speed, heading=args.heading, accuracy=args.accuracy, shipment_id=args.shipment_id,
    )
    return row_snapshot(d)


@procedure("has_accepted_terms", params=TermsParams)
def _has_accepted_terms(db: Session, profile: Profile, args: TermsParams):
    return terms.has_accepted_terms(db, profile.user_id, args.version)


@procedure("auto_approve_expired_shipments", roles=("admin",))
def _auto_approve_expired_shipments(db: Session, profile: Profile, args: NoParams):
    return {"approved": shipments.auto_approve_expired_shipments(db)}


@router.get("")
def list_procedures():
    return sorted(REGISTRY.keys())


@router.post("/{name}")
def call(name: str, params: Optional[Dict[str, Any]] = Body(None), db: Session = Depends(get_db),
         profile: Profile = Depends(get_current_profile)):
    fn = REGISTRY.get(name)
    if fn is None:
        raise HTTPException(status_code=404, detail=f"Unknown procedure '{name}'")
    if fn.roles is not None and profile.role not in fn.roles:
        raise PermissionDenied("Forbidden")
    try:
        args = fn.params.model_validate(params or {})
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=_describe(name, e))
    return jsonable_encoder(fn(db, profile, args))
