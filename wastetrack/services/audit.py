"""
Audit trail: auth events and append-only system activity with integrity hashing.
"""
import hashlib
import json
import uuid
from typing import Optional, Dict, Any

import structlog
from sqlalchemy.orm import Session

from ..models.models import AuthLog, SystemLog, utcnow
from ..config import settings
from .change_feed import EVENT_INSERT, publish_row

logger = structlog.get_logger(__name__)

AUTH_ACTIONS = {"sign_in", "sign_in_failed", "sign_out", "sign_up", "password_reset"}


def log_auth_event(
    db: Session,
    action: str,
    email: Optional[str],
    user_id: Optional[uuid.UUID] = None,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> AuthLog:
    """
    Record an authentication event.

    Args:
        db: Database session
        action: sign_in|sign_in_failed|sign_out|sign_up|password_reset
        email: Email used in the attempt
        user_id: Authenticated user, if known
        ip_address: Client address
        user_agent: Client user agent

    Returns:
        Created AuthLog object
    """
    if action not in AUTH_ACTIONS:
        raise ValueError(f"Unknown auth action '{action}'")
    entry = AuthLog(
        action=action,
        email=email,
        user_id=user_id,
        ip_address=ip_address,
        user_agent=(user_agent or "")[:500] or None,
    )
    db.add(entry)
    db.commit()
    db.refresh(entry)
    logger.info("auth_event", action=action, email=email)
    publish_row(EVENT_INSERT, entry)
    return entry


def _integrity_hash(entry: Dict[str, Any], secret: str) -> str:
    canonical = {k: v for k, v in entry.items() if v is not None}
    canonical_json = json.dumps(canonical, sort_keys=True, default=str)
    return hashlib.sha256(f"{canonical_json}:{secret}".encode()).hexdigest()


def log_system_activity(
    db: Session,
    action_type: str,
    entity_type: str,
    entity_id: Optional[Any] = None,
    details: Optional[Dict] = None,
    user_id: Optional[uuid.UUID] = None,
    actor_role: Optional[str] = None,
    integrity_secret: Optional[str] = None,
) -> SystemLog:
    """
    Create an append-only system log entry.

    Args:
        db: Database session
        action_type: CREATE|UPDATE|DELETE|STATUS|APPROVE|REJECT|ACTIVATE|...
        entity_type: shipment|company|profile|driver|waste_type|terms|file
        entity_id: Entity ID
        details: Free-form context (before/after diff, notes)
        user_id: Acting user
        actor_role: Role of the actor
        integrity_secret: Secret for the integrity hash (defaults to JWT_SECRET)

    Returns:
        Created SystemLog object
    """
    created_at = utcnow()
    secret = integrity_secret if integrity_secret is not None else settings.jwt_secret
    entity_id_str = str(entity_id) if entity_id is not None else None

    integrity_hash = None
    if secret:
        integrity_hash = _integrity_hash(
            {
                "action_type": action_type,
                "entity_type": entity_type,
                "entity_id": entity_id_str,
                "user_id": str(user_id) if user_id else None,
                "actor_role": actor_role,
                "created_at": created_at.isoformat(),
                "details": details,
            },
            secret,
        )

    entry = SystemLog(
        action_type=action_type,
        entity_type=entity_type,
        entity_id=entity_id_str,
        user_id=user_id,
        actor_role=actor_role,
        details=details,
        created_at=created_at,
        integrity_hash=integrity_hash,
    )
    db.add(entry)
    db.commit()
    db.refresh(entry)
    return entry


def verify_integrity(entry: SystemLog, integrity_secret: Optional[str] = None) -> bool:
    secret = integrity_secret if integrity_secret is not None else settings.jwt_secret
    if not entry.integrity_hash or not secret:
        return False
    expected = _integrity_hash(
        {
            "action_type": entry.action_type,
            "entity_type": entry.entity_type,
            "entity_id": entry.entity_id,
            "user_id": str(entry.user_id) if entry.user_id else None,
            "actor_role": entry.actor_role,
            "created_at": entry.created_at.isoformat(),
            "details": entry.details,
        },
        secret,
    )
    return expected == entry.integrity_hash


def get_system_logs(
    db: Session,
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    limit: int = 100,
    offset: int = 0
) -> list:
    query = db.query(SystemLog)

    if entity_type:
        query = query.filter(SystemLog.entity_type == entity_type)

    if entity_id:
        query = query.filter(SystemLog.entity_id == entity_id)

    query = query.order_by(SystemLog.created_at.desc())
    return query.limit(limit).offset(offset).all()


def get_auth_logs(db: Session, action: Optional[str] = None, limit: int = 100, offset: int = 0) -> list:
    query = db.query(AuthLog)
    if action:
        query = query.filter(AuthLog.action == action)
    return query.order_by(AuthLog.created_at.desc()).limit(limit).offset(offset).all()


def compute_diff(before: Dict, after: Dict) -> Dict:
    """
    Compute a diff between two dictionaries.

    Returns:
        Dict with before/after values for changed fields
    """
    diff = {}
    all_keys = set(before.keys()) | set(after.keys())

    for key in all_keys:
        before_val = before.get(key)
        after_val = after.get(key)

        if before_val != after_val:
            diff[key] = {
                "before": before_val,
                "after": after_val,
            }

    return diff
