"""
Shipment notifications for the companies involved in a shipment.
Each event fans out one row per distinct party company.
"""
import uuid
from datetime import datetime
from typing import List, Optional

import pytz
import structlog
from sqlalchemy.orm import Session

from ..config import settings
from ..models.models import Shipment, ShipmentNotification, utcnow
from .change_feed import EVENT_INSERT, EVENT_UPDATE, publish_row, row_snapshot
from .errors import NotFound

logger = structlog.get_logger(__name__)

NOTIFICATION_TYPES = ("shipment_created", "status_changed", "approval", "report_added", "auto_approved")


def local_time_label(value: Optional[datetime], timezone_str: Optional[str] = None) -> str:
    """Format a naive UTC timestamp in the deployment's timezone for message text."""
    if value is None:
        return ""
    tz = pytz.timezone(timezone_str or settings.tz_default)
    return pytz.utc.localize(value).astimezone(tz).strftime("%Y-%m-%d %H:%M")


def shipment_parties(shipment: Shipment) -> List[uuid.UUID]:
    seen = []
    for company_id in (
        shipment.generator_company_id,
        shipment.transporter_company_id,
        shipment.recycler_company_id,
    ):
        if company_id is not None and company_id not in seen:
            seen.append(company_id)
    return seen


def create_shipment_notification(
    db: Session,
    shipment_id: uuid.UUID,
    recipient_company_id: uuid.UUID,
    notification_type: str,
    title: str,
    message: str,
    commit: bool = True,
) -> ShipmentNotification:
    """
    Create a notification for one company.

    Args:
        db: Database session
        shipment_id: Shipment the notification is about
        recipient_company_id: Company that receives it
        notification_type: One of NOTIFICATION_TYPES
        title: Short title
        message: Body text
        commit: Commit and publish immediately

    Returns:
        ShipmentNotification object
    """
    if notification_type not in NOTIFICATION_TYPES:
        raise ValueError(f"Unknown notification type '{notification_type}'")
    notif = ShipmentNotification(
        shipment_id=shipment_id,
        recipient_company_id=recipient_company_id,
        notification_type=notification_type,
        title=title[:255],
        message=message,
    )
    db.add(notif)
    if commit:
        db.commit()
        db.refresh(notif)
        publish_row(EVENT_INSERT, notif)
    return notif


def notify_shipment_parties(
    db: Session,
    shipment: Shipment,
    notification_type: str,
    title: str,
    message: str,
) -> List[ShipmentNotification]:
    created = [
        create_shipment_notification(db, shipment.id, company_id, notification_type, title, message, commit=False)
        for company_id in shipment_parties(shipment)
    ]
    db.commit()
    for notif in created:
        db.refresh(notif)
        publish_row(EVENT_INSERT, notif)
    logger.info(
        "shipment_notifications_sent",
        shipment_id=str(shipment.id),
        type=notification_type,
        recipients=len(created),
    )
    return created


def list_notifications(
    db: Session,
    company_id: uuid.UUID,
    unread_only: bool = False,
    limit: int = 50,
) -> List[ShipmentNotification]:
    query = db.query(ShipmentNotification).filter(ShipmentNotification.recipient_company_id == company_id)
    if unread_only:
        query = query.filter(ShipmentNotification.is_read.is_(False))
    return query.order_by(ShipmentNotification.created_at.desc()).limit(limit).all()


def unread_count(db: Session, company_id: uuid.UUID) -> int:
    return (
        db.query(ShipmentNotification)
        .filter(
            ShipmentNotification.recipient_company_id == company_id,
            ShipmentNotification.is_read.is_(False),
        )
        .count()
    )


def mark_read(db: Session, notification_id: uuid.UUID, company_id: Optional[uuid.UUID]) -> ShipmentNotification:
    """Mark one notification read. ``company_id`` None means an admin acting on any company."""
    query = db.query(ShipmentNotification).filter(ShipmentNotification.id == notification_id)
    if company_id is not None:
        query = query.filter(ShipmentNotification.recipient_company_id == company_id)
    notif = query.first()
    if not notif:
        raise NotFound("Notification not found")
    if notif.is_read:
        return notif
    before = row_snapshot(notif)
    notif.is_read = True
    notif.read_at = utcnow()
    db.commit()
    db.refresh(notif)
    publish_row(EVENT_UPDATE, notif, old=before)
    return notif


def mark_all_read(db: Session, company_id: uuid.UUID) -> int:
    pending = (
        db.query(ShipmentNotification)
        .filter(
            ShipmentNotification.recipient_company_id == company_id,
            ShipmentNotification.is_read.is_(False),
        )
        .all()
    )
    if not pending:
        return 0
    now = utcnow()
    befores = [row_snapshot(n) for n in pending]
    for notif in pending:
        notif.is_read = True
        notif.read_at = now
    db.commit()
    for notif, before in zip(pending, befores):
        db.refresh(notif)
        publish_row(EVENT_UPDATE, notif, old=before)
    return len(pending)
