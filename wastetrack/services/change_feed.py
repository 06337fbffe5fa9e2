"""
Row change feed: services publish committed changes, subscribers react.
"""
import threading
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Callable, Dict, List, Optional

import structlog
from sqlalchemy import inspect as sa_inspect

logger = structlog.get_logger(__name__)

EVENT_INSERT = "INSERT"
EVENT_UPDATE = "UPDATE"
EVENT_DELETE = "DELETE"
EVENTS = (EVENT_INSERT, EVENT_UPDATE, EVENT_DELETE)

FEED_TABLES = (
    "shipments",
    "shipment_notifications",
    "shipment_messages",
    "companies",
    "drivers",
    "profiles",
    "auth_logs",
)


@dataclass(frozen=True)
class Change:
    table: str
    event: str  # INSERT|UPDATE|DELETE
    new: Dict[str, Any] = field(default_factory=dict)
    old: Dict[str, Any] = field(default_factory=dict)

    @property
    def row(self) -> Dict[str, Any]:
        return self.new if self.event != EVENT_DELETE else self.old

    def to_dict(self) -> dict:
        return {"table": self.table, "event": self.event, "new": self.new, "old": self.old}


def parse_filter(expr: Optional[str]) -> Optional[Dict[str, str]]:
    """Parse ``column=eq.value`` into ``{column: value}``."""
    if not expr:
        return None
    column, sep, rest = expr.partition("=")
    if not sep or not rest.startswith("eq.") or not column:
        raise ValueError(f"Unsupported filter '{expr}', expected column=eq.value")
    return {column.strip(): rest[3:]}


def row_matches(row_filter: Optional[Dict[str, str]], row: Dict[str, Any]) -> bool:
    if not row_filter:
        return True
    for column, expected in row_filter.items():
        if str(row.get(column)) != str(expected):
            return False
    return True


def _matches(row_filter: Optional[Dict[str, str]], change: Change) -> bool:
    """Either side of the change may match, so a row moving out of a filter still reaches it."""
    if not row_filter:
        return True
    return any(row_matches(row_filter, side) for side in (change.new, change.old) if side)


def _linked(table: str, row: Dict[str, Any], company_id: Optional[str], user_id: Optional[str],
            driver_id: Optional[str]) -> bool:
    if table in ("shipments", "shipment_messages"):
        parties = {row.get("generator_company_id"), row.get("transporter_company_id"), row.get("recycler_company_id")}
        return (company_id is not None and company_id in parties) or (
            driver_id is not None and row.get("driver_id") == str(driver_id)
        )
    if table == "shipment_notifications":
        return company_id is not None and row.get("recipient_company_id") == company_id
    if table == "companies":
        return company_id is not None and row.get("id") == company_id
    if table == "drivers":
        return (company_id is not None and row.get("transport_company_id") == company_id) or (
            user_id is not None and row.get("user_id") == user_id
        )
    if table == "profiles":
        return user_id is not None and row.get("user_id") == user_id
    return False


def visible_to(change: Change, company_id: Optional[str], user_id: Optional[str],
               driver_id: Optional[str] = None, admin: bool = False) -> bool:
    """
    Whether a non-admin viewer is linked to the changed row through its company, login or driver record.

    An update is visible when the viewer is linked to the row before or after it.
    """
    if admin:
        return True
    company_id = str(company_id) if company_id else None
    user_id = str(user_id) if user_id else None
    return any(_linked(change.table, side, company_id, user_id, driver_id) for side in (change.new, change.old) if side)


Handler = Callable[[Change], None]


class Subscription:
    """Handle for one registered handler. ``unsubscribe`` is idempotent."""

    def __init__(self, feed: "ChangeFeed", channel: str, table: str, event: str,
                 row_filter: Optional[Dict[str, str]], handler: Handler) -> None:
        self.id = str(uuid.uuid4())
        self.channel = channel
        self.table = table
        self.event = event
        self.row_filter = row_filter
        self.handler = handler
        self._feed = feed
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def wants(self, change: Change) -> bool:
        if change.table != self.table:
            return False
        if self.event != "*" and self.event != change.event:
            return False
        return _matches(self.row_filter, change)

    def unsubscribe(self) -> bool:
        """Remove the handler from the feed. Returns False if it was already removed."""
        if not self._active:
            return False
        self._active = False
        self._feed._remove(self)
        return True


class ChangeFeed:
    """In-process row-change hub.

    Services publish a ``Change`` after each commit; subscribers get it
    synchronously on the publishing thread. Websocket clients attach through
    a handler that hands changes to their event loop.
    """

    def __init__(self) -> None:
        # channel name -> subscriptions
        self._channels: Dict[str, List[Subscription]] = {}
        self._lock = threading.Lock()

    def subscribe(self, channel: str, table: str, handler: Handler, event: str = "*",
                  row_filter: Optional[Dict[str, str]] = None) -> Subscription:
        if table not in FEED_TABLES:
            raise ValueError(f"Table '{table}' is not published on the change feed")
        if event != "*" and event not in EVENTS:
            raise ValueError(f"Unknown event '{event}'")
        sub = Subscription(self, channel, table, event, row_filter, handler)
        with self._lock:
            self._channels.setdefault(channel, []).append(sub)
        logger.debug("change_feed_subscribed", channel=channel, table=table, filter=row_filter)
        return sub

    def _remove(self, sub: Subscription) -> None:
        with self._lock:
            subs = self._channels.get(sub.channel)
            if subs is not None:
                try:
                    subs.remove(sub)
                except ValueError:
                    pass
                if not subs:
                    self._channels.pop(sub.channel, None)
        logger.debug("change_feed_unsubscribed", channel=sub.channel, table=sub.table)

    def remove_channel(self, channel: str) -> int:
        with self._lock:
            subs = list(self._channels.get(channel, []))
        for sub in subs:
            sub.unsubscribe()
        return len(subs)

    def channels(self) -> List[str]:
        with self._lock:
            return list(self._channels.keys())

    def subscription_count(self, channel: Optional[str] = None) -> int:
        with self._lock:
            if channel is not None:
                return len(self._channels.get(channel, []))
            return sum(len(s) for s in self._channels.values())

    def publish(self, change: Change) -> int:
        """Deliver ``change`` to every matching subscriber; returns how many handlers ran."""
        with self._lock:
            targets = [s for subs in self._channels.values() for s in subs if s.wants(change)]
        delivered = 0
        for sub in targets:
            if not sub.active:
                continue
            try:
                sub.handler(change)
                delivered += 1
            except Exception as e:
                # one failing subscriber must not starve the others
                logger.warning("change_handler_failed", channel=sub.channel, table=change.table, error=str(e))
        return delivered

    def clear(self) -> None:
        with self._lock:
            subs = [s for group in self._channels.values() for s in group]
        for sub in subs:
            sub.unsubscribe()


# Global singleton feed
feed = ChangeFeed()


def _jsonable(value: Any) -> Any:
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def row_snapshot(obj: Any) -> Dict[str, Any]:
    """Column values of an ORM row, JSON-ready."""
    mapper = sa_inspect(obj).mapper
    return {attr.key: _jsonable(getattr(obj, attr.key)) for attr in mapper.column_attrs}


def publish_row(event: str, obj: Any, old: Optional[Dict[str, Any]] = None) -> int:
    """Publish a committed insert or update of an ORM row on the global feed."""
    return feed.publish(Change(table=obj.__tablename__, event=event, new=row_snapshot(obj), old=old or {}))


def publish_delete(table: str, old: Dict[str, Any]) -> int:
    """Publish a committed delete; ``old`` must be snapshotted before the row was deleted."""
    return feed.publish(Change(table=table, event=EVENT_DELETE, new={}, old=old))
