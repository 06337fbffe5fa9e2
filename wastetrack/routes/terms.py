from typing import List, Optional
import uuid

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from ..auth.security import get_current_profile, require_roles
from ..config import settings
from ..db import get_db
from ..models.models import Profile
from ..schemas.terms import TermsAcceptRequest, TermsAcceptanceResponse, TermsStatus
from ..services import terms as svc

router = APIRouter(prefix="/terms", tags=["terms"])


@router.get("")
def current_terms():
    return {"version": settings.terms_version, "content": svc.TERMS_CONTENT}


@router.get("/status", response_model=TermsStatus)
def terms_status(version: Optional[str] = None, db: Session = Depends(get_db),
                 profile: Profile = Depends(get_current_profile)):
    version = version or settings.terms_version
    return TermsStatus(version=version, accepted=svc.has_accepted_terms(db, profile.user_id, version))


@router.post("/accept", response_model=TermsAcceptanceResponse, status_code=201)
def accept(payload: TermsAcceptRequest, request: Request, db: Session = Depends(get_db),
           profile: Profile = Depends(get_current_profile)):
    return svc.accept_terms(
        db,
        profile,
        payload.full_name,
        signature_data=payload.signature_data,
        company_stamp_data=payload.company_stamp_data,
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
        version=payload.terms_version,
    )


@router.get("/acceptances", response_model=List[TermsAcceptanceResponse])
def acceptances(company_id: Optional[uuid.UUID] = None, db: Session = Depends(get_db),
                _: Profile = Depends(require_roles("admin"))):
    return svc.list_acceptances(db, company_id=company_id)
