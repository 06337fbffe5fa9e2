"""
Role dashboards.

``route_dashboard(role)`` picks the view class for a role and never fails: an
unrecognised role gets ``UnknownRoleView``. Each view loads its rows through
the API client and keeps them current from the change feed.

Changes are reconciled before anything is refetched:

* UPDATE of a row the view holds: merge the changed columns in place, or
  drop the row when it moved out of the view's filter
* DELETE of a row the view holds: drop it
* a change already reflected in the held row: ignore it
* INSERT, or an UPDATE of a row the view does not hold: refetch

With ``defer=True`` changes are queued and only handled on ``drain()``, which
is how a view sitting behind a websocket or a UI loop consumes them.
"""
import uuid
from typing import Any, Dict, List, Optional, Tuple, Type

import structlog

from ..services.change_feed import EVENT_DELETE, EVENT_INSERT, EVENT_UPDATE, Change, parse_filter, row_matches
from ..services.workflow import DASHBOARD_FOR_ROLE, UNKNOWN_ROLE_VIEW, allowed_actions
from .api import RemoteCallError, WasteTrackClient

logger = structlog.get_logger(__name__)

APPLIED = "applied"
IGNORED = "ignored"
REFRESHED = "refreshed"


class DashboardView:
    """Base view: subscription lifecycle and change reconciliation."""

    name = "DashboardView"

    def __init__(self, client: WasteTrackClient, feed, profile: Optional[dict] = None, defer: bool = False):
        self.client = client
        self.feed = feed
        self.profile = dict(profile or client.profile or {})
        self.role: Optional[str] = self.profile.get("role")
        self.company_id: Optional[str] = _str_or_none(self.profile.get("company_id"))
        self.defer = defer

        self.shipments: List[dict] = []
        self.notifications: List[dict] = []
        self.stats: Optional[dict] = None
        self.error: Optional[str] = None

        self.mounted = False
        self.channel: Optional[str] = None
        self.subscriptions: list = []
        # table -> row filter the view subscribed with
        self.scopes: Dict[str, Optional[Dict[str, str]]] = {}
        self.pending: List[Change] = []

        self.refresh_count = 0
        self.applied_locally = 0
        self.teardown_count = 0

    # ---- lifecycle ------------------------------------------------------

    def subscription_specs(self) -> List[Tuple[str, Optional[str]]]:
        """(table, filter) pairs this view listens to."""
        return []

    def mount(self) -> "DashboardView":
        if self.mounted:
            return self
        self.mounted = True
        self._subscribe()
        self.refresh()
        return self

    def unmount(self) -> bool:
        """Tear down every subscription. Only the first call does anything."""
        if not self.mounted:
            return False
        self.mounted = False
        self._teardown()
        self.pending.clear()
        return True

    def set_company(self, company_id: Optional[str]) -> bool:
        """Re-scope the view to another company; subscriptions follow."""
        company_id = _str_or_none(company_id)
        if company_id == self.company_id:
            return False
        self.company_id = company_id
        if self.mounted:
            self._teardown()
            self._subscribe()
            self.refresh()
        return True

    def _subscribe(self) -> None:
        self.channel = f"{self.name}:{self.company_id or '-'}:{uuid.uuid4().hex[:8]}"
        for table, expr in self.subscription_specs():
            row_filter = parse_filter(expr)
            self.scopes[table] = row_filter
            self.subscriptions.append(
                self.feed.subscribe(self.channel, table, self._on_change, row_filter=row_filter)
            )
        logger.debug("dashboard_subscribed", view=self.name, channel=self.channel, count=len(self.subscriptions))

    def _teardown(self) -> None:
        for sub in self.subscriptions:
            sub.unsubscribe()
        self.subscriptions = []
        self.scopes = {}
        self.teardown_count += 1
        logger.debug("dashboard_unsubscribed", view=self.name, channel=self.channel)

    # ---- data -----------------------------------------------------------

    def load(self) -> None:
        """Fetch the view's rows. Overridden per role."""

    def refresh(self) -> bool:
        self.refresh_count += 1
        try:
            self.load()
        except RemoteCallError as e:
            self.error = e.detail
            logger.warning("dashboard_refresh_failed", view=self.name, detail=e.detail, status=e.status_code)
            return False
        self.error = None
        return True

    def actions_for(self, shipment: dict) -> List[str]:
        return sorted(allowed_actions(shipment.get("status", ""), self.role or ""))

    def _decorate(self, shipments: List[dict]) -> List[dict]:
        for s in shipments:
            s["allowed_actions"] = self.actions_for(s)
        return shipments

    # ---- change handling ------------------------------------------------

    def _on_change(self, change: Change) -> None:
        if not self.mounted:
            return
        if self.defer:
            self.pending.append(change)
        else:
            self.handle_change(change)

    def drain(self) -> int:
        """Handle queued changes; returns how many were handled."""
        queued, self.pending = self.pending, []
        for change in queued:
            self.handle_change(change)
        return len(queued)

    def handle_change(self, change: Change) -> str:
        if change.table == "shipments":
            outcome = self._reconcile(self.shipments, change, decorate=True)
        elif change.table == "shipment_notifications":
            outcome = self._reconcile(self.notifications, change, insert_locally=True)
        else:
            outcome = None
        if outcome is None:
            self.refresh()
            outcome = REFRESHED
        elif outcome == APPLIED:
            self.applied_locally += 1
        logger.debug("dashboard_change", view=self.name, table=change.table, change_event=change.event, outcome=outcome)
        return outcome

    def _reconcile(self, rows: List[dict], change: Change, decorate: bool = False,
                   insert_locally: bool = False) -> Optional[str]:
        """Apply ``change`` to ``rows`` in place; None means the rows must be refetched."""
        row_id = _str_or_none(change.row.get("id"))
        index = _index_of(rows, row_id)
        if change.event == EVENT_DELETE:
            if index is None:
                return IGNORED
            rows.pop(index)
            return APPLIED
        if change.event == EVENT_UPDATE:
            in_scope = row_matches(self.scopes.get(change.table), change.new)
            if index is None:
                return None if in_scope else IGNORED
            if not in_scope:
                rows.pop(index)
                return APPLIED
            held = rows[index]
            changed = {k: v for k, v in change.new.items() if k in held and held[k] != v}
            if not changed:
                return IGNORED
            held.update(changed)
            if decorate:
                held["allowed_actions"] = self.actions_for(held)
            return APPLIED
        if change.event == EVENT_INSERT:
            if index is not None:
                return IGNORED
            if insert_locally:
                rows.insert(0, dict(change.new))
                return APPLIED
            return None
        return None

    def shipment_numbers(self) -> List[str]:
        return [s["shipment_number"] for s in self.shipments]


class AdminDashboard(DashboardView):
    name = "AdminDashboard"

    def subscription_specs(self):
        return [("shipments", None), ("companies", None), ("profiles", None)]

    def load(self) -> None:
        self.shipments = self._decorate(self.client.get_company_shipments())
        self.stats = self.client.get_dashboard_stats()


class CompanyDashboard(DashboardView):
    """Shipments in which the viewer's company plays ``company_type``, plus its notifications."""

    company_type = ""

    def subscription_specs(self):
        if not self.company_id:
            return []
        return [
            ("shipments", f"{self.company_type}_company_id=eq.{self.company_id}"),
            ("shipment_notifications", f"recipient_company_id=eq.{self.company_id}"),
        ]

    def load(self) -> None:
        if not self.company_id:
            self.shipments = []
            self.notifications = []
            return
        self.shipments = self._decorate(self.client.get_company_shipments(self.company_type))
        self.notifications = self.client.get_notifications()


class GeneratorDashboard(CompanyDashboard):
    name = "GeneratorDashboard"
    company_type = "generator"


class RecyclerDashboard(CompanyDashboard):
    name = "RecyclerDashboard"
    company_type = "recycler"


class TransporterDashboard(CompanyDashboard):
    name = "TransporterDashboard"
    company_type = "transporter"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.active_drivers: List[dict] = []

    def subscription_specs(self):
        specs = super().subscription_specs()
        if self.company_id:
            specs.append(("drivers", f"transport_company_id=eq.{self.company_id}"))
        return specs

    def load(self) -> None:
        super().load()
        self.active_drivers = self.client.get_active_drivers() if self.company_id else []


class DriverDashboard(DashboardView):
    """Shipments assigned to the signed-in driver.

    Until a driver record is linked to the login the view watches ``drivers``
    for its user id, and switches to its shipments once the record shows up.
    """

    name = "DriverDashboard"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.driver: Optional[dict] = None

    def mount(self) -> "DashboardView":
        if not self.mounted:
            self._resolve_driver()
        return super().mount()

    def _resolve_driver(self) -> bool:
        try:
            self.driver = self.client.get_my_driver()
        except RemoteCallError as e:
            if e.status_code != 404:
                raise
            self.driver = None
        return self.driver is not None

    def subscription_specs(self):
        if self.driver:
            return [("shipments", f"driver_id=eq.{self.driver['id']}")]
        user_id = self.profile.get("user_id")
        return [("drivers", f"user_id=eq.{user_id}")] if user_id else []

    def load(self) -> None:
        if self.driver is None and self._resolve_driver() and self.mounted:
            self._teardown()
            self._subscribe()
        self.shipments = self._decorate(self.client.get_driver_shipments()) if self.driver else []


class UnknownRoleView(DashboardView):
    """Shown for a role with no dashboard: no rows, no subscriptions."""

    name = UNKNOWN_ROLE_VIEW


VIEWS: Dict[str, Type[DashboardView]] = {
    view.name: view
    for view in (AdminDashboard, GeneratorDashboard, TransporterDashboard, RecyclerDashboard, DriverDashboard,
                 UnknownRoleView)
}


def route_dashboard(role: Any) -> Type[DashboardView]:
    """View class for ``role``; unknown or missing roles get ``UnknownRoleView``."""
    name = DASHBOARD_FOR_ROLE.get(role if isinstance(role, str) else "", UNKNOWN_ROLE_VIEW)
    return VIEWS[name]


def create_view(client: WasteTrackClient, feed, profile: Optional[dict] = None, defer: bool = False) -> DashboardView:
    profile = profile or client.profile or {}
    return route_dashboard(profile.get("role"))(client, feed, profile=profile, defer=defer)


def _str_or_none(value: Any) -> Optional[str]:
    return str(value) if value is not None else None


def _index_of(rows: List[dict], row_id: Optional[str]) -> Optional[int]:
    if row_id is None:
        return None
    for i, row in enumerate(rows):
        if str(row.get("id")) == row_id:
            return i
    return None
