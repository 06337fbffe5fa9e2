"""
Startup seeding: default waste types and the initial administrator.
"""
from typing import Optional

import structlog
from sqlalchemy.orm import Session

from .auth.security import get_password_hash
from .config import settings
from .models.models import Profile, User, utcnow
from .services.waste_types import seed_waste_types

logger = structlog.get_logger(__name__)


def ensure_admin(db: Session, email: Optional[str] = None, password: Optional[str] = None) -> Optional[User]:
    """Create an active admin account if ``email`` has no account yet."""
    email = (email or settings.admin_email or "").strip().lower()
    password = password or settings.admin_password
    if not email or not password:
        return None
    user = db.query(User).filter(User.email == email).first()
    if user is not None:
        return user
    user = User(email=email, password_hash=get_password_hash(password))
    db.add(user)
    db.flush()
    db.add(Profile(
        user_id=user.id,
        email=email,
        full_name="Administrator",
        role="admin",
        is_active=True,
        activated_at=utcnow(),
    ))
    db.commit()
    logger.info("admin_seeded", email=email)
    return user


def seed_defaults(db: Session) -> None:
    added = seed_waste_types(db)
    if added:
        logger.info("waste_types_seeded", count=added)
    ensure_admin(db)
