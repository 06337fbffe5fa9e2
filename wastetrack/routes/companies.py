import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..auth.security import get_current_profile, is_admin, require_roles
from ..db import get_db
from ..models.models import Profile
from ..schemas.companies import (
    CompanyCreate,
    CompanyImport,
    CompanyRegistration,
    CompanyResponse,
    CompanyReview,
    CompanyUpdate,
)
from ..services import companies as svc

router = APIRouter(prefix="/companies", tags=["companies"])


@router.post("/register", response_model=CompanyResponse, status_code=201)
def register(payload: CompanyRegistration, db: Session = Depends(get_db)):
    """Public self-registration. Company and account wait for admin review."""
    return svc.register_company(db, payload.model_dump(mode="json"))


@router.get("/selection")
def selection(db: Session = Depends(get_db), _: Profile = Depends(get_current_profile)):
    return svc.companies_for_selection(db)


@router.get("/stats")
def stats(db: Session = Depends(get_db), _: Profile = Depends(require_roles("admin"))):
    return svc.companies_stats(db)


@router.get("", response_model=List[CompanyResponse])
def list_companies(
    type: Optional[str] = None,
    status: Optional[str] = None,
    q: Optional[str] = None,
    db: Session = Depends(get_db),
    profile: Profile = Depends(get_current_profile),
):
    if is_admin(profile):
        return svc.list_companies(db, company_type=type, status=status, q=q)
    return svc.list_companies(db, company_type=type, status="approved", q=q, include_inactive=False)


@router.post("", response_model=CompanyResponse, status_code=201)
def create_company(payload: CompanyCreate, db: Session = Depends(get_db),
                   admin: Profile = Depends(require_roles("admin"))):
    return svc.create_company(db, payload.model_dump(mode="json"), actor=admin)


@router.post("/import")
def import_companies(payload: CompanyImport, db: Session = Depends(get_db),
                     admin: Profile = Depends(require_roles("admin"))):
    result = svc.import_companies(db, payload.companies, actor=admin)
    return {
        "created": [CompanyResponse.model_validate(c).model_dump(mode="json") for c in result["created"]],
        "failed": result["failed"],
    }


@router.get("/{company_id}", response_model=CompanyResponse)
def get_company(company_id: uuid.UUID, db: Session = Depends(get_db),
                profile: Profile = Depends(get_current_profile)):
    company = svc.get_company(db, company_id)
    if not is_admin(profile) and profile.company_id != company.id and not company.is_active:
        raise HTTPException(status_code=404, detail="Company not found")
    return company


@router.patch("/{company_id}", response_model=CompanyResponse)
def update_company(company_id: uuid.UUID, payload: CompanyUpdate, db: Session = Depends(get_db),
                   profile: Profile = Depends(get_current_profile)):
    company = svc.get_company(db, company_id)
    changes = payload.model_dump(mode="json", exclude_unset=True)
    if not is_admin(profile):
        if profile.company_id != company.id:
            raise HTTPException(status_code=403, detail="Forbidden")
        if "is_active" in changes:
            raise HTTPException(status_code=403, detail="Only administrators can (de)activate companies")
    return svc.update_company(db, company, changes, actor=profile)


@router.post("/{company_id}/review", response_model=CompanyResponse)
def review(company_id: uuid.UUID, payload: CompanyReview, db: Session = Depends(get_db),
           admin: Profile = Depends(require_roles("admin"))):
    company = svc.get_company(db, company_id)
    return svc.review_company(db, company, payload.status.value, actor=admin, notes=payload.notes)


@router.delete("/{company_id}", response_model=CompanyResponse)
def deactivate(company_id: uuid.UUID, db: Session = Depends(get_db),
               admin: Profile = Depends(require_roles("admin"))):
    """Companies are never hard-deleted; shipments keep referencing them."""
    company = svc.get_company(db, company_id)
    return svc.set_company_active(db, company, False, actor=admin)
