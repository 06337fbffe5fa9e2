"""
The Python client against the real app: session handling, error surfacing and
dashboards kept current by the change feed.
"""
from dataclasses import replace

import pytest

from conftest import PASSWORD, make_user, shipment_payload
from wastetrack.auth.security import create_access_token
from wastetrack.client.api import RemoteCallError, SessionExpiredError, WasteTrackClient
from wastetrack.client.dashboards import create_view
from wastetrack.client.session import SessionState, SessionStatus
from wastetrack.models.models import Driver
from wastetrack.services.change_feed import feed


def signed_in(client, email):
    api = WasteTrackClient(http=client)
    api.sign_in(email, PASSWORD)
    return api


class TestSession:
    def test_sign_in_loads_profile(self, client, world):
        api = signed_in(client, "gen@nile.io")
        assert api.state.status is SessionStatus.authenticated
        assert api.state.role == "generator"
        assert api.state.company_id == str(world["generator"].id)

    def test_wrong_password(self, client, world):
        api = WasteTrackClient(http=client)
        with pytest.raises(RemoteCallError) as e:
            api.sign_in("gen@nile.io", "Wr0ng!Secret")
        assert e.value.status_code == 401
        assert e.value.detail == "Invalid credentials"
        assert api.state.status is SessionStatus.anonymous
        assert api.state.error == "Invalid credentials"

    def test_inactive_account_cannot_sign_in(self, client, db, world):
        make_user(db, "new@nile.io", "generator", world["generator"], active=False)
        api = WasteTrackClient(http=client)
        with pytest.raises(RemoteCallError) as e:
            api.sign_in("new@nile.io", PASSWORD)
        assert e.value.status_code == 403

    def test_calls_need_a_session(self, client):
        api = WasteTrackClient(http=client)
        with pytest.raises(SessionExpiredError):
            api.get_company_shipments()

    def test_expired_token_moves_session_to_expired(self, client, world):
        profile = world["profiles"]["generator"]
        api = WasteTrackClient(http=client)
        api.state = SessionState(
            status=SessionStatus.authenticated,
            profile={"role": "generator", "company_id": str(profile.company_id)},
            access_token=create_access_token(str(profile.user_id), role="generator", ttl_seconds=-60),
        )
        with pytest.raises(SessionExpiredError) as e:
            api.get_company_shipments()
        assert e.value.detail == "Session expired"
        assert api.state.status is SessionStatus.expired
        # nothing else goes out until the user signs in again
        with pytest.raises(SessionExpiredError):
            api.get_company_shipments()

    def test_sign_out(self, client, world):
        api = signed_in(client, "gen@nile.io")
        api.sign_out()
        assert api.state.status is SessionStatus.anonymous

    def test_refresh(self, client, world):
        api = signed_in(client, "gen@nile.io")
        first = api.state.access_token
        api.refresh_session()
        assert api.state.is_active
        assert api.state.access_token != first

    def test_refresh_recovers_an_expired_session(self, client, world):
        api = signed_in(client, "gen@nile.io")
        profile = world["profiles"]["generator"]
        api.state = replace(
            api.state,
            access_token=create_access_token(str(profile.user_id), role="generator", ttl_seconds=-60),
        )
        with pytest.raises(SessionExpiredError):
            api.get_company_shipments()
        assert api.state.status is SessionStatus.expired
        assert api.state.refresh_token is not None

        api.refresh_session()
        assert api.state.status is SessionStatus.authenticated
        assert api.get_company_shipments() == []

    def test_second_sign_in_switches_identity(self, client, world):
        api = signed_in(client, "gen@nile.io")
        api.sign_in("ops@delta.io", PASSWORD)
        assert api.state.role == "transporter"
        assert api.state.company_id == str(world["transporter"].id)
        assert api.reload_profile()["email"] == "ops@delta.io"

    def test_failed_switch_leaves_no_identity(self, client, world):
        api = signed_in(client, "gen@nile.io")
        with pytest.raises(RemoteCallError):
            api.sign_in("ops@delta.io", "Wr0ng!Secret")
        assert api.state.status is SessionStatus.anonymous
        with pytest.raises(SessionExpiredError):
            api.get_company_shipments()


class TestRemoteErrors:
    def test_backend_detail_is_surfaced_unchanged(self, client, world):
        creator = signed_in(client, "gen@nile.io")
        shipment = creator.create_shipment(**shipment_payload(world))

        outsider = signed_in(client, "gen@other.io")
        with pytest.raises(RemoteCallError) as e:
            outsider.get_shipment(shipment["id"])
        assert e.value.status_code == 403
        assert e.value.detail == "Not allowed to access this shipment"

    def test_illegal_transition_is_a_conflict(self, client, world):
        generator = signed_in(client, "gen@nile.io")
        shipment = generator.create_shipment(**shipment_payload(world))
        recycler = signed_in(client, "plant@greenloop.io")
        with pytest.raises(RemoteCallError) as e:
            recycler.update_shipment_status(shipment["id"], "sorting")
        assert e.value.status_code == 409

    def test_rpc(self, client, world):
        api = signed_in(client, "ops@delta.io")
        names = {c["name"] for c in api.rpc("get_companies_for_selection")}
        assert {"Nile Plastics", "Delta Haulage", "Green Loop Recycling"} <= names


class TestDashboardsEndToEnd:
    def mount(self, client, email):
        api = signed_in(client, email)
        return create_view(api, feed, defer=True).mount()

    def test_new_shipment_reaches_exactly_the_parties(self, client, world):
        views = {
            "A": self.mount(client, "gen@nile.io"),
            "B": self.mount(client, "ops@delta.io"),
            "C": self.mount(client, "plant@greenloop.io"),
            "D": self.mount(client, "gen@other.io"),
            "admin": self.mount(client, "admin@wastetrack.io"),
        }
        for view in views.values():
            assert view.shipments == []

        creator = signed_in(client, "gen@nile.io")
        created = creator.create_shipment(**shipment_payload(world, quantity=50))
        number = created["shipment_number"]
        assert created["status"] == "pending"

        for view in views.values():
            view.drain()

        for key in ("A", "B", "C", "admin"):
            assert views[key].shipment_numbers() == [number]
            shown = views[key].shipments[0]
            assert shown["quantity"] == 50
            assert shown["status"] == "pending"
        assert views["D"].shipments == []
        assert views["D"].refresh_count == 1

        # parties got their notification pushed without a refetch
        for key in ("A", "B", "C"):
            assert [n["shipment_id"] for n in views[key].notifications] == [created["id"]]
        assert views["B"].shipments[0]["allowed_actions"] == ["manual_status_change", "start_delivery"]

        for view in views.values():
            assert view.unmount() is True
        assert feed.subscription_count() == 0

    def test_status_update_is_merged_without_refetch(self, client, world):
        generator_view = self.mount(client, "gen@nile.io")
        transporter_view = self.mount(client, "ops@delta.io")
        driver_view = self.mount(client, "driver@delta.io")

        created = signed_in(client, "gen@nile.io").create_shipment(**shipment_payload(world))
        for view in (generator_view, transporter_view, driver_view):
            view.drain()
        assert driver_view.shipment_numbers() == [created["shipment_number"]]
        assert driver_view.shipments[0]["allowed_actions"] == ["start_delivery"]
        refreshes = transporter_view.refresh_count

        driver = signed_in(client, "driver@delta.io")
        driver.update_shipment_status(created["id"], "in_transit")
        for view in (generator_view, transporter_view, driver_view):
            view.drain()

        assert transporter_view.refresh_count == refreshes
        assert transporter_view.shipments[0]["status"] == "in_transit"
        assert transporter_view.shipments[0]["allowed_actions"] == ["end_delivery", "manual_status_change"]
        assert driver_view.shipments[0]["allowed_actions"] == ["end_delivery"]
        assert generator_view.shipments[0]["status"] == "in_transit"
        assert generator_view.applied_locally >= 1

    def test_reassigned_shipment_leaves_the_previous_drivers_view(self, client, db, world):
        spare = Driver(name="Spare Driver", transport_company_id=world["transporter"].id)
        db.add(spare)
        db.commit()
        created = signed_in(client, "gen@nile.io").create_shipment(**shipment_payload(world))
        driver_view = self.mount(client, "driver@delta.io")
        transporter_view = self.mount(client, "ops@delta.io")
        assert driver_view.shipment_numbers() == [created["shipment_number"]]
        refreshes = driver_view.refresh_count

        signed_in(client, "ops@delta.io").update_shipment(created["id"], driver_id=str(spare.id))
        driver_view.drain()
        transporter_view.drain()

        assert driver_view.shipments == []
        assert driver_view.refresh_count == refreshes
        assert transporter_view.shipments[0]["driver_id"] == str(spare.id)
        assert signed_in(client, "driver@delta.io").get_driver_shipments() == []
