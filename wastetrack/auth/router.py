import uuid
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from ..db import get_db
from ..models.models import Profile, User, utcnow
from ..schemas.auth import (
    LoginRequest,
    ProfileResponse,
    RefreshRequest,
    SignUpRequest,
    TokenResponse,
)
from ..services.audit import log_auth_event
from ..services.change_feed import EVENT_INSERT, publish_row
from ..services.passwords import password_problem
from ..services.workflow import Role
from .security import (
    create_access_token,
    create_refresh_token,
    decode_token,
    get_current_profile,
    get_current_user,
    get_password_hash,
    verify_password,
)

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])

SELF_SERVICE_ROLES = {Role.generator.value, Role.transporter.value, Role.recycler.value, Role.driver.value}


def _client_info(request: Request):
    ip = request.client.host if request.client else None
    return ip, request.headers.get("user-agent")


@router.post("/sign-up", response_model=ProfileResponse, status_code=201)
def sign_up(req: SignUpRequest, request: Request, db: Session = Depends(get_db)):
    """Create an account. The profile stays inactive until an administrator activates it."""
    if req.role not in SELF_SERVICE_ROLES:
        raise HTTPException(status_code=400, detail="Invalid role")
    problem = password_problem(req.password)
    if problem:
        raise HTTPException(status_code=400, detail=problem)
    email = req.email.lower()
    if db.query(User).filter(User.email == email).first():
        raise HTTPException(status_code=409, detail="This email is already registered")
    user = User(email=email, password_hash=get_password_hash(req.password))
    db.add(user)
    db.flush()
    profile = Profile(
        user_id=user.id,
        email=email,
        full_name=req.full_name.strip(),
        phone=req.phone,
        role=req.role,
        company_id=req.company_id,
        is_active=False,
    )
    db.add(profile)
    db.commit()
    db.refresh(profile)
    ip, ua = _client_info(request)
    log_auth_event(db, "sign_up", email, user_id=user.id, ip_address=ip, user_agent=ua)
    publish_row(EVENT_INSERT, profile)
    return profile


@router.post("/sign-in", response_model=TokenResponse)
def sign_in(req: LoginRequest, request: Request, db: Session = Depends(get_db)):
    ip, ua = _client_info(request)
    email = req.email.lower()
    user = db.query(User).filter(User.email == email).first()
    if not user or not verify_password(req.password, user.password_hash):
        log_auth_event(db, "sign_in_failed", email, ip_address=ip, user_agent=ua)
        raise HTTPException(status_code=401, detail="Invalid credentials")
    profile = user.profile
    if profile is None or not profile.is_active:
        log_auth_event(db, "sign_in_failed", email, user_id=user.id, ip_address=ip, user_agent=ua)
        raise HTTPException(status_code=403, detail="Account is pending activation by an administrator")
    access = create_access_token(str(user.id), role=profile.role)
    refresh = create_refresh_token(str(user.id))
    user.last_login_at = utcnow()
    db.commit()
    log_auth_event(db, "sign_in", email, user_id=user.id, ip_address=ip, user_agent=ua)
    logger.info("sign_in", user_id=str(user.id), role=profile.role)
    return TokenResponse(access_token=access, refresh_token=refresh)


@router.post("/sign-out", status_code=204)
def sign_out(request: Request, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    ip, ua = _client_info(request)
    log_auth_event(db, "sign_out", user.email, user_id=user.id, ip_address=ip, user_agent=ua)


@router.post("/refresh", response_model=TokenResponse)
def refresh(req: RefreshRequest, db: Session = Depends(get_db)):
    payload = decode_token(req.refresh_token)
    if payload.get("type") != "refresh":
        raise HTTPException(status_code=400, detail="Invalid refresh token")
    user_id = payload["sub"]
    user: Optional[User] = db.query(User).filter(User.id == _uuid_or_400(user_id)).first()
    if user is None or user.profile is None or not user.profile.is_active:
        raise HTTPException(status_code=401, detail="User not active")
    access = create_access_token(user_id, role=user.profile.role)
    return TokenResponse(access_token=access, refresh_token=create_refresh_token(user_id))


@router.get("/me", response_model=ProfileResponse)
def me(profile: Profile = Depends(get_current_profile)):
    return profile


def _uuid_or_400(value: str):
    try:
        return uuid.UUID(str(value))
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid refresh token")
