"""
Terms and conditions acceptance, with signature and company stamp images.
"""
import base64
import binascii
import io
import re
from typing import List, Optional, Tuple

import structlog
from PIL import Image, UnidentifiedImageError
from sqlalchemy.orm import Session

from ..config import settings
from ..models.models import Profile, TermsAcceptance, utcnow
from .audit import log_system_activity
from .change_feed import EVENT_UPDATE, publish_row, row_snapshot
from .errors import Conflict, ValidationFailed

logger = structlog.get_logger(__name__)

TERMS_CONTENT = (
    "The company undertakes to hand over, transport and process waste only through licensed parties, "
    "to declare the true type and quantity of every shipment, and to keep shipment records accurate "
    "and available for inspection by the competent environmental authorities."
)

ALLOWED_IMAGE_FORMATS = {"PNG", "JPEG", "WEBP", "GIF"}

_DATA_URL_RE = re.compile(r"^data:(image/[a-zA-Z0-9.+-]+);base64,(.+)$", re.DOTALL)


def decode_image_data_url(data_url: str, label: str = "image") -> Tuple[str, bytes]:
    """Decode a ``data:image/...;base64,`` URL and check the payload really is an image."""
    match = _DATA_URL_RE.match(data_url or "")
    if not match:
        raise ValidationFailed(f"{label} must be an image data URL")
    mime, payload = match.groups()
    try:
        raw = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError):
        raise ValidationFailed(f"{label} is not valid base64")
    if not raw or len(raw) > settings.max_upload_bytes:
        raise ValidationFailed(f"{label} is empty or too large")
    try:
        with Image.open(io.BytesIO(raw)) as img:
            img.verify()
            fmt = img.format
    except (UnidentifiedImageError, OSError, SyntaxError):
        raise ValidationFailed(f"{label} is not a readable image")
    if fmt not in ALLOWED_IMAGE_FORMATS:
        raise ValidationFailed(f"{label} format {fmt} is not supported")
    return mime, raw


def has_accepted_terms(db: Session, user_id, version: Optional[str] = None) -> bool:
    version = version or settings.terms_version
    return (
        db.query(TermsAcceptance)
        .filter(TermsAcceptance.user_id == user_id, TermsAcceptance.terms_version == version)
        .first()
        is not None
    )


def accept_terms(
    db: Session,
    profile: Profile,
    full_name: str,
    signature_data: Optional[str] = None,
    company_stamp_data: Optional[str] = None,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
    version: Optional[str] = None,
) -> TermsAcceptance:
    """
    Record the caller's acceptance of the current terms version.

    Args:
        db: Database session
        profile: Accepting user's profile
        full_name: Name typed by the signer
        signature_data: Signature image as a data URL
        company_stamp_data: Company stamp image as a data URL
        ip_address: Client address
        user_agent: Client user agent
        version: Terms version (defaults to TERMS_VERSION)

    Returns:
        TermsAcceptance object
    """
    version = version or settings.terms_version
    if not (full_name or "").strip():
        raise ValidationFailed("Full name is required")
    if has_accepted_terms(db, profile.user_id, version):
        raise Conflict(f"Terms version {version} already accepted")
    if signature_data:
        decode_image_data_url(signature_data, "Signature")
    if company_stamp_data:
        decode_image_data_url(company_stamp_data, "Company stamp")

    company = profile.company
    now = utcnow()
    acceptance = TermsAcceptance(
        user_id=profile.user_id,
        company_id=company.id if company else None,
        company_name=company.name if company else (profile.full_name or profile.email or ""),
        company_type=company.type if company else profile.role,
        full_name=full_name.strip(),
        terms_version=version,
        terms_content=TERMS_CONTENT,
        signature_data=signature_data,
        company_stamp_data=company_stamp_data,
        ip_address=ip_address,
        user_agent=(user_agent or "")[:500] or None,
        accepted_at=now,
    )
    db.add(acceptance)
    before = row_snapshot(profile)
    profile.terms_accepted = True
    profile.terms_accepted_at = now
    db.commit()
    db.refresh(acceptance)
    db.refresh(profile)
    logger.info("terms_accepted", user_id=str(profile.user_id), version=version)
    log_system_activity(db, "ACCEPT_TERMS", "terms", acceptance.id, {"version": version},
                        user_id=profile.user_id, actor_role=profile.role)
    publish_row(EVENT_UPDATE, profile, old=before)
    return acceptance


def list_acceptances(db: Session, company_id=None, limit: int = 100) -> List[TermsAcceptance]:
    query = db.query(TermsAcceptance)
    if company_id is not None:
        query = query.filter(TermsAcceptance.company_id == company_id)
    return query.order_by(TermsAcceptance.accepted_at.desc()).limit(limit).all()
