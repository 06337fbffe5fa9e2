import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..auth.security import get_current_profile, is_admin, require_roles
from ..db import get_db
from ..models.models import Profile
from ..schemas.drivers import DriverCreate, DriverResponse, DriverUpdate, LocationPoint, LocationUpdate
from ..services import drivers as svc

router = APIRouter(prefix="/drivers", tags=["drivers"])


@router.get("/active")
def active_drivers(db: Session = Depends(get_db),
                   profile: Profile = Depends(require_roles("admin", "transporter"))):
    return svc.get_active_drivers(db, profile)


@router.get("/selection")
def selection(transport_company_id: Optional[uuid.UUID] = None, db: Session = Depends(get_db),
              _: Profile = Depends(get_current_profile)):
    return svc.drivers_for_selection(db, transport_company_id)


@router.get("/me", response_model=DriverResponse)
def my_driver_record(db: Session = Depends(get_db), profile: Profile = Depends(require_roles("driver"))):
    driver = svc.driver_for_profile(db, profile)
    if driver is None:
        raise HTTPException(status_code=404, detail="No driver record linked to this account")
    return driver


@router.get("", response_model=List[DriverResponse])
def list_drivers(db: Session = Depends(get_db),
                 profile: Profile = Depends(require_roles("admin", "transporter"))):
    return svc.list_drivers(db, profile)


@router.post("", response_model=DriverResponse, status_code=201)
def create_driver(payload: DriverCreate, db: Session = Depends(get_db),
                  profile: Profile = Depends(require_roles("admin", "transporter"))):
    return svc.create_driver(db, payload.model_dump(exclude_unset=True), actor=profile)


@router.get("/{driver_id}", response_model=DriverResponse)
def get_driver(driver_id: uuid.UUID, db: Session = Depends(get_db),
               profile: Profile = Depends(get_current_profile)):
    driver = svc.get_driver(db, driver_id)
    if not is_admin(profile) and profile.company_id != driver.transport_company_id and driver.user_id != profile.user_id:
        raise HTTPException(status_code=403, detail="Forbidden")
    return driver


@router.patch("/{driver_id}", response_model=DriverResponse)
def update_driver(driver_id: uuid.UUID, payload: DriverUpdate, db: Session = Depends(get_db),
                  profile: Profile = Depends(require_roles("admin", "transporter"))):
    driver = svc.get_driver(db, driver_id)
    return svc.update_driver(db, driver, payload.model_dump(exclude_unset=True), actor=profile)


@router.delete("/{driver_id}", status_code=204)
def delete_driver(driver_id: uuid.UUID, db: Session = Depends(get_db),
                  profile: Profile = Depends(require_roles("admin", "transporter"))):
    svc.delete_driver(db, svc.get_driver(db, driver_id), actor=profile)


@router.post("/{driver_id}/location", response_model=DriverResponse)
def update_location(driver_id: uuid.UUID, payload: LocationUpdate, db: Session = Depends(get_db),
                    profile: Profile = Depends(get_current_profile)):
    return svc.update_driver_location(
        db,
        driver_id,
        payload.latitude,
        payload.longitude,
        actor=profile,
        speed=payload.speed,
        heading=payload.heading,
        accuracy=payload.accuracy,
        shipment_id=payload.shipment_id,
    )


@router.get("/{driver_id}/locations", response_model=List[LocationPoint])
def location_history(driver_id: uuid.UUID, limit: int = 200, db: Session = Depends(get_db),
                     profile: Profile = Depends(require_roles("admin", "transporter"))):
    driver = svc.get_driver(db, driver_id)
    if not is_admin(profile) and profile.company_id != driver.transport_company_id:
        raise HTTPException(status_code=403, detail="Forbidden")
    return svc.location_history(db, driver_id, limit=min(limit, 1000))
