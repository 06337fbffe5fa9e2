"""
Per-shipment chat. Anyone who can see a shipment (its party companies, the
assigned driver, administrators) can read and post on it; each new message is
pushed on the change feed with the shipment's parties attached so feed
subscribers can scope it.
"""
import uuid
from datetime import datetime
from typing import Dict, List, Optional

import structlog
from sqlalchemy.orm import Session

from ..models.models import Profile, Shipment, ShipmentMessage
from .change_feed import EVENT_INSERT, Change, feed
from .errors import ValidationFailed
from .shipments import get_shipment

logger = structlog.get_logger(__name__)

MAX_MESSAGE_LENGTH = 4000


def message_payload(message: ShipmentMessage, shipment: Shipment) -> Dict:
    return {
        "id": str(message.id),
        "shipment_id": str(message.shipment_id),
        "sender_id": str(message.sender_id) if message.sender_id else None,
        "sender_company_id": str(message.sender_company_id) if message.sender_company_id else None,
        "sender_name": message.sender_name,
        "content": message.content,
        "created_at": message.created_at.isoformat(),
        "generator_company_id": str(shipment.generator_company_id),
        "transporter_company_id": str(shipment.transporter_company_id),
        "recycler_company_id": str(shipment.recycler_company_id),
        "driver_id": str(shipment.driver_id) if shipment.driver_id else None,
    }


def list_messages(db: Session, shipment_id: uuid.UUID, profile: Profile, before: Optional[datetime] = None,
                  after: Optional[datetime] = None, limit: int = 50) -> List[Dict]:
    shipment = get_shipment(db, shipment_id, profile)
    query = db.query(ShipmentMessage).filter(ShipmentMessage.shipment_id == shipment.id)
    if before is not None:
        query = query.filter(ShipmentMessage.created_at < before)
    if after is not None:
        query = query.filter(ShipmentMessage.created_at > after)
    rows = query.order_by(ShipmentMessage.created_at.asc()).limit(max(1, min(200, limit))).all()
    return [message_payload(m, shipment) for m in rows]


def post_message(db: Session, shipment_id: uuid.UUID, content: str, profile: Profile) -> Dict:
    shipment = get_shipment(db, shipment_id, profile)
    content = (content or "").strip()
    if not content:
        raise ValidationFailed("Empty message")
    if len(content) > MAX_MESSAGE_LENGTH:
        raise ValidationFailed(f"Message is longer than {MAX_MESSAGE_LENGTH} characters")

    message = ShipmentMessage(
        shipment_id=shipment.id,
        sender_id=profile.user_id,
        sender_company_id=profile.company_id,
        sender_name=profile.full_name or profile.email,
        content=content,
    )
    db.add(message)
    db.commit()
    db.refresh(message)
    payload = message_payload(message, shipment)
    logger.info("shipment_message_posted", shipment_id=str(shipment.id), sender=str(profile.user_id))
    feed.publish(Change(table=ShipmentMessage.__tablename__, event=EVENT_INSERT, new=payload))
    return payload
