import copy

import pytest

from wastetrack.client.api import RemoteCallError
from wastetrack.client.dashboards import (
    APPLIED,
    IGNORED,
    REFRESHED,
    AdminDashboard,
    DriverDashboard,
    GeneratorDashboard,
    RecyclerDashboard,
    TransporterDashboard,
    UnknownRoleView,
    create_view,
    route_dashboard,
)
from wastetrack.services.change_feed import Change, ChangeFeed


class FakeClient:
    """Stands in for WasteTrackClient; serves canned rows and counts fetches."""

    def __init__(self, profile, rows=None, driver=None):
        self.profile = profile
        self.rows = rows or []
        self.driver = driver
        self.fetches = 0

    def _rows(self):
        self.fetches += 1
        return copy.deepcopy(self.rows)

    def get_company_shipments(self, company_type=None):
        return self._rows()

    def get_driver_shipments(self):
        return self._rows()

    def get_dashboard_stats(self):
        return {"total_shipments": len(self.rows)}

    def get_notifications(self, unread_only=False):
        return []

    def get_active_drivers(self):
        return []

    def get_my_driver(self):
        if self.driver is None:
            raise RemoteCallError("No driver record linked to this account", 404, "get_my_driver")
        return self.driver


PROFILES = {
    "admin": {"user_id": "u-admin", "role": "admin", "company_id": None},
    "generator": {"user_id": "u-gen", "role": "generator", "company_id": "A"},
    "transporter": {"user_id": "u-tr", "role": "transporter", "company_id": "B"},
    "recycler": {"user_id": "u-rec", "role": "recycler", "company_id": "C"},
    "driver": {"user_id": "u-drv", "role": "driver", "company_id": None},
    "auditor": {"user_id": "u-aud", "role": "auditor", "company_id": None},
}


def row(id="s1", status="pending", **extra):
    data = {"id": id, "shipment_number": f"SH-{id}", "status": status, "quantity": 50.0,
            "generator_company_id": "A", "transporter_company_id": "B", "recycler_company_id": "C",
            "driver_id": "d1"}
    data.update(extra)
    return data


class TestRouting:
    @pytest.mark.parametrize("role,view", [
        ("admin", AdminDashboard),
        ("generator", GeneratorDashboard),
        ("transporter", TransporterDashboard),
        ("recycler", RecyclerDashboard),
        ("driver", DriverDashboard),
    ])
    def test_known_roles(self, role, view):
        assert route_dashboard(role) is view

    @pytest.mark.parametrize("role", ["auditor", "", None, 42, ["admin"]])
    def test_unknown_roles_fall_back(self, role):
        assert route_dashboard(role) is UnknownRoleView

    def test_unknown_role_view_is_inert(self):
        feed = ChangeFeed()
        view = create_view(FakeClient(PROFILES["auditor"]), feed).mount()
        assert isinstance(view, UnknownRoleView)
        assert view.shipments == []
        assert feed.subscription_count() == 0


class TestUnmount:
    @pytest.mark.parametrize("role", sorted(PROFILES))
    def test_tears_down_exactly_once(self, role):
        feed = ChangeFeed()
        client = FakeClient(PROFILES[role], rows=[row()], driver={"id": "d1"})
        view = create_view(client, feed).mount()
        if role != "auditor":
            assert feed.subscription_count(view.channel) > 0

        assert view.unmount() is True
        assert feed.subscription_count() == 0
        assert view.unmount() is False
        assert view.teardown_count == 1

    def test_no_handling_after_unmount(self):
        feed = ChangeFeed()
        client = FakeClient(PROFILES["generator"])
        view = create_view(client, feed).mount()
        view.unmount()
        assert feed.publish(Change("shipments", "INSERT", new=row("s9"))) == 0
        assert view.refresh_count == 1


class TestReconciliation:
    def mounted(self, role="generator", rows=None, defer=False):
        feed = ChangeFeed()
        client = FakeClient(PROFILES[role], rows=rows if rows is not None else [row()], driver={"id": "d1"})
        return feed, client, create_view(client, feed, defer=defer).mount()

    def test_update_of_held_row_is_merged_locally(self):
        feed, client, view = self.mounted("transporter")
        outcome = view.handle_change(Change("shipments", "UPDATE", new=row(status="in_transit", updated_at="x")))
        assert outcome == APPLIED
        assert view.shipments[0]["status"] == "in_transit"
        assert "updated_at" not in view.shipments[0]
        assert view.shipments[0]["allowed_actions"] == ["end_delivery", "manual_status_change"]
        assert client.fetches == 1

    def test_already_reflected_change_is_ignored(self):
        feed, client, view = self.mounted()
        assert view.handle_change(Change("shipments", "UPDATE", new=row())) == IGNORED
        assert view.applied_locally == 0

    def test_insert_triggers_refetch(self):
        feed, client, view = self.mounted()
        client.rows.append(row("s2"))
        assert view.handle_change(Change("shipments", "INSERT", new=row("s2"))) == REFRESHED
        assert view.shipment_numbers() == ["SH-s1", "SH-s2"]
        assert view.refresh_count == 2

    def test_update_of_unknown_row_triggers_refetch(self):
        feed, client, view = self.mounted(rows=[])
        assert view.handle_change(Change("shipments", "UPDATE", new=row("s7"))) == REFRESHED

    def test_delete_drops_row(self):
        feed, client, view = self.mounted()
        assert view.handle_change(Change("shipments", "DELETE", old=row())) == APPLIED
        assert view.shipments == []
        assert view.handle_change(Change("shipments", "DELETE", old=row())) == IGNORED

    def test_feed_routes_only_matching_company(self):
        feed, client, view = self.mounted()
        feed.publish(Change("shipments", "UPDATE", new=row(status="in_transit", generator_company_id="Z")))
        assert view.shipments[0]["status"] == "pending"
        feed.publish(Change("shipments", "UPDATE", new=row(status="in_transit")))
        assert view.shipments[0]["status"] == "in_transit"

    def test_notification_insert_is_applied_locally(self):
        feed, client, view = self.mounted()
        feed.publish(Change("shipment_notifications", "INSERT",
                            new={"id": "n1", "recipient_company_id": "A", "is_read": False}))
        assert [n["id"] for n in view.notifications] == ["n1"]
        assert view.refresh_count == 1

    def test_deferred_changes_wait_for_drain(self):
        feed, client, view = self.mounted(defer=True)
        feed.publish(Change("shipments", "UPDATE", new=row(status="in_transit")))
        assert view.shipments[0]["status"] == "pending"
        assert view.drain() == 1
        assert view.shipments[0]["status"] == "in_transit"
        assert view.drain() == 0

    def test_recycler_actions_follow_status(self):
        feed, client, view = self.mounted("recycler", rows=[row(status="delivered")])
        assert view.shipments[0]["allowed_actions"] == ["start_sorting"]
        view.handle_change(Change("shipments", "UPDATE", new=row(status="sorting")))
        assert view.shipments[0]["allowed_actions"] == ["end_sorting"]


    def test_row_moved_out_of_scope_is_dropped(self):
        feed, client, view = self.mounted("driver")
        feed.publish(Change("shipments", "UPDATE", new=row(driver_id="d2"), old=row()))
        assert view.shipments == []
        assert view.refresh_count == 1
        assert view.applied_locally == 1

    def test_out_of_scope_update_of_unknown_row_is_ignored(self):
        feed, client, view = self.mounted("transporter", rows=[])
        change = Change("shipments", "UPDATE", new=row(transporter_company_id="B2"), old=row())
        assert view.handle_change(change) == IGNORED
        assert view.refresh_count == 1

    def test_admin_keeps_reassigned_rows(self):
        feed, client, view = self.mounted("admin")
        feed.publish(Change("shipments", "UPDATE", new=row(driver_id="d2"), old=row()))
        assert view.shipments[0]["driver_id"] == "d2"


class TestScopeChanges:
    def test_set_company_resubscribes(self):
        feed = ChangeFeed()
        view = create_view(FakeClient(PROFILES["generator"], rows=[row()]), feed).mount()
        old_channel = view.channel

        assert view.set_company("A") is False
        assert view.set_company("Z") is True
        assert feed.subscription_count(old_channel) == 0
        assert feed.subscription_count(view.channel) == 2
        assert "Z" in view.channel
        assert view.teardown_count == 1
        assert view.refresh_count == 2

    def test_driver_without_record_switches_once_linked(self):
        feed = ChangeFeed()
        client = FakeClient(PROFILES["driver"], rows=[row()])
        view = create_view(client, feed).mount()
        assert view.driver is None
        assert view.shipments == []
        assert [s.table for s in view.subscriptions] == ["drivers"]

        client.driver = {"id": "d1"}
        feed.publish(Change("drivers", "INSERT", new={"id": "d1", "user_id": "u-drv"}))
        assert [s.table for s in view.subscriptions] == ["shipments"]
        assert view.shipment_numbers() == ["SH-s1"]
        assert view.shipments[0]["allowed_actions"] == ["start_delivery"]

    def test_driver_lookup_errors_propagate(self):
        class Broken(FakeClient):
            def get_my_driver(self):
                raise RemoteCallError("boom", 500, "get_my_driver")

        with pytest.raises(RemoteCallError):
            create_view(Broken(PROFILES["driver"]), ChangeFeed()).mount()
