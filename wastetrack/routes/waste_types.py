import uuid
from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth.security import get_current_profile, require_roles
from ..db import get_db
from ..models.models import Profile
from ..schemas.shipments import WasteTypeBase, WasteTypeResponse, WasteTypeUpdate
from ..services import waste_types as svc

router = APIRouter(prefix="/waste-types", tags=["waste-types"])


@router.get("", response_model=List[WasteTypeResponse])
def list_waste_types(db: Session = Depends(get_db), _: Profile = Depends(get_current_profile)):
    return svc.list_waste_types(db)


@router.post("", response_model=WasteTypeResponse, status_code=201)
def create_waste_type(payload: WasteTypeBase, db: Session = Depends(get_db),
                      admin: Profile = Depends(require_roles("admin"))):
    return svc.create_waste_type(db, payload.model_dump(), actor=admin)


@router.patch("/{waste_type_id}", response_model=WasteTypeResponse)
def update_waste_type(waste_type_id: uuid.UUID, payload: WasteTypeUpdate, db: Session = Depends(get_db),
                      admin: Profile = Depends(require_roles("admin"))):
    return svc.update_waste_type(db, waste_type_id, payload.model_dump(exclude_unset=True), actor=admin)


@router.delete("/{waste_type_id}", status_code=204)
def delete_waste_type(waste_type_id: uuid.UUID, db: Session = Depends(get_db),
                      admin: Profile = Depends(require_roles("admin"))):
    svc.delete_waste_type(db, waste_type_id, actor=admin)
