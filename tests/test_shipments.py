from datetime import timedelta

from conftest import auth, make_company, make_user, shipment_payload, token_for
from wastetrack.models.models import Driver, Shipment, ShipmentNotification, WasteType, utcnow
from wastetrack.services.shipments import auto_approve_expired_shipments, generate_shipment_number, overall_approval


def create(client, world, role="generator", **overrides):
    res = client.post("/shipments", json=shipment_payload(world, **overrides), headers=auth(world["tokens"][role]))
    assert res.status_code == 201, res.text
    return res.json()


def set_status(client, world, shipment_id, status, role):
    return client.post(f"/shipments/{shipment_id}/status", json={"new_status": status},
                       headers=auth(world["tokens"][role]))


class TestCreate:
    def test_quantity_50_round_trip(self, client, world):
        created = create(client, world, quantity=50)
        assert created["status"] == "pending"
        assert created["shipment_number"].startswith("SH")

        for role in ("generator", "transporter"):
            res = client.get("/shipments/company", params={"company_type": role},
                             headers=auth(world["tokens"][role]))
            assert res.status_code == 200
            rows = res.json()
            assert len(rows) == 1
            assert rows[0]["shipment_number"] == created["shipment_number"]
            assert rows[0]["quantity"] == 50
            assert rows[0]["status"] == "pending"

        res = client.get("/shipments/company", headers=auth(world["tokens"]["other"]))
        assert res.json() == []

    def test_party_types_are_enforced(self, client, world):
        res = client.post(
            "/shipments",
            json=shipment_payload(world, recycler_company_id=str(world["other"].id)),
            headers=auth(world["tokens"]["generator"]),
        )
        assert res.status_code == 400
        assert "is not a recycler" in res.json()["detail"]

    def test_creator_must_be_a_party(self, client, world):
        res = client.post("/shipments", json=shipment_payload(world), headers=auth(world["tokens"]["other"]))
        assert res.status_code == 403

    def test_quantity_must_be_positive(self, client, world):
        res = client.post("/shipments", json=shipment_payload(world, quantity=0),
                          headers=auth(world["tokens"]["generator"]))
        assert res.status_code == 422

    def test_driver_of_another_transporter_is_refused(self, client, db, world):
        rival = make_company(db, "Rival Haulage", "transporter")
        world["driver"].transport_company_id = rival.id
        db.commit()
        res = client.post("/shipments", json=shipment_payload(world), headers=auth(world["tokens"]["generator"]))
        assert res.status_code == 400

    def test_manual_driver(self, client, world):
        created = create(client, world, driver_id=None, manual_driver_name="Hassan", manual_vehicle_number="XYZ 9")
        assert created["driver_entry_type"] == "manual"
        assert created["driver_name"] == "Hassan"
        assert created["driver_id"] is None

    def test_parties_are_notified(self, client, db, world):
        created = create(client, world)
        rows = db.query(ShipmentNotification).filter(
            ShipmentNotification.shipment_id == Shipment.id, Shipment.shipment_number == created["shipment_number"]
        ).all()
        assert {n.recipient_company_id for n in rows} == {
            world["generator"].id, world["transporter"].id, world["recycler"].id
        }

        res = client.get("/notifications/unread-count", headers=auth(world["tokens"]["recycler"]))
        assert res.json() == {"count": 1}

    def test_shipment_number_format(self):
        number = generate_shipment_number()
        assert number.startswith("SH")
        assert number[2:].isdigit()
        assert len(number) == 18


class TestEdit:
    def patch(self, client, world, sid, role="generator", **body):
        return client.patch(f"/shipments/{sid}", json=body, headers=auth(world["tokens"][role]))

    def test_party_edits_cargo(self, client, world):
        sid = create(client, world)["id"]
        res = self.patch(client, world, sid, role="transporter", quantity=75, packaging="Bales")
        assert res.status_code == 200, res.text
        assert res.json()["quantity"] == 75
        assert res.json()["packaging"] == "Bales"
        assert res.json()["driver_entry_type"] == "registered"

    def test_outsider_cannot_edit(self, client, world):
        sid = create(client, world)["id"]
        assert self.patch(client, world, sid, role="other", quantity=75).status_code == 403

    def test_driver_of_another_transporter_is_refused(self, client, db, world):
        sid = create(client, world)["id"]
        rival = make_company(db, "Rival Haulage", "transporter")
        stranger = Driver(name="Stranger", transport_company_id=rival.id)
        db.add(stranger)
        db.commit()
        res = self.patch(client, world, sid, driver_id=str(stranger.id))
        assert res.status_code == 400
        assert res.json()["detail"] == "Driver belongs to another transporter"
        assert client.get(f"/shipments/{sid}", headers=auth(world["tokens"]["generator"])).json()["driver_id"] == \
            str(world["driver"].id)

    def test_unknown_driver_and_waste_type(self, client, world):
        sid = create(client, world)["id"]
        missing = "00000000-0000-0000-0000-000000000000"
        assert self.patch(client, world, sid, driver_id=missing).json()["detail"] == "Driver not found"
        assert self.patch(client, world, sid, waste_type_id=missing).json()["detail"] == "Waste type not found"

    def test_clearing_the_driver_resets_entry_type(self, client, world):
        sid = create(client, world)["id"]
        res = self.patch(client, world, sid, driver_id=None)
        assert res.status_code == 200, res.text
        body = res.json()
        assert body["driver_id"] is None
        assert body["driver_entry_type"] is None
        assert body["driver_name"] is None

    def test_switch_to_manual_driver(self, client, world):
        sid = create(client, world)["id"]
        body = self.patch(client, world, sid, driver_id=None, manual_driver_name="Hassan",
                          manual_vehicle_number="XYZ 9").json()
        assert body["driver_entry_type"] == "manual"
        assert body["driver_name"] == "Hassan"
        assert body["manual_vehicle_number"] == "XYZ 9"

        # the registered driver no longer sees it
        rows = client.get("/shipments/driver", headers=auth(world["tokens"]["driver"])).json()
        assert rows == []

    def test_completed_is_frozen(self, client, db, world):
        sid = create(client, world)["id"]
        db.query(Shipment).filter(Shipment.shipment_number.isnot(None)).update({"status": "completed"})
        db.commit()
        assert self.patch(client, world, sid, quantity=10).status_code == 409


class TestStatus:
    def test_full_chain(self, client, world):
        sid = create(client, world)["id"]
        steps = [
            ("in_transit", "driver"),
            ("delivered", "driver"),
            ("sorting", "recycler"),
            ("sorted", "recycler"),
            ("recycling", "recycler"),
            ("completed", "recycler"),
        ]
        for status, role in steps:
            res = set_status(client, world, sid, status, role)
            assert res.status_code == 200, res.text
            assert res.json()["status"] == status

        body = client.get(f"/shipments/{sid}", headers=auth(world["tokens"]["admin"])).json()
        assert [h["status"] for h in body["status_history"]] == ["pending"] + [s for s, _ in steps]
        for field in ("departure_time", "arrival_time", "sorting_start_time", "sorting_end_time",
                      "recycling_start_time", "completed_at"):
            assert body[field] is not None

    def test_completed_is_terminal(self, client, world):
        sid = create(client, world)["id"]
        for status in ("in_transit", "delivered", "sorting", "sorted", "recycling", "completed"):
            assert set_status(client, world, sid, status, "admin").status_code == 200
        res = set_status(client, world, sid, "pending", "transporter")
        assert res.status_code == 409

    def test_only_assigned_driver(self, client, db, world):
        sid = create(client, world, driver_id=None)["id"]
        res = set_status(client, world, sid, "in_transit", "driver")
        assert res.status_code == 403
        assert res.json()["detail"] == "Only the assigned driver can update this shipment"

    def test_recycler_of_another_shipment_is_refused(self, client, db, world):
        sid = create(client, world)["id"]
        set_status(client, world, sid, "in_transit", "driver")
        set_status(client, world, sid, "delivered", "driver")

        stranger = make_user(db, "plant@elsewhere.io", "recycler", make_company(db, "Elsewhere", "recycler"))
        res = client.post(f"/shipments/{sid}/status", json={"new_status": "sorting"}, headers=auth(token_for(stranger)))
        assert res.status_code == 403

    def test_transporter_manual_change(self, client, world):
        sid = create(client, world)["id"]
        res = set_status(client, world, sid, "delivered", "transporter")
        assert res.status_code == 200
        assert res.json()["allowed_actions"] == ["manual_status_change"]

    def test_allowed_actions_in_detail(self, client, world):
        sid = create(client, world)["id"]
        body = client.get(f"/shipments/{sid}", headers=auth(world["tokens"]["driver"])).json()
        assert body["allowed_actions"] == ["start_delivery"]


class TestApproval:
    def approve(self, client, world, sid, approval_type, is_approved, reason=None, role=None):
        return client.post(
            f"/shipments/{sid}/approval",
            json={"approval_type": approval_type, "is_approved": is_approved, "reason": reason},
            headers=auth(world["tokens"][role or approval_type]),
        )

    def test_both_parties_approve(self, client, world):
        sid = create(client, world)["id"]
        res = self.approve(client, world, sid, "generator", True)
        assert res.json()["overall_approval_status"] == "pending"
        res = self.approve(client, world, sid, "recycler", True)
        assert res.json()["overall_approval_status"] == "approved"

    def test_rejection_needs_reason(self, client, world):
        sid = create(client, world)["id"]
        assert self.approve(client, world, sid, "recycler", False).status_code == 400
        res = self.approve(client, world, sid, "recycler", False, reason="Contaminated load")
        assert res.status_code == 200
        assert res.json()["overall_approval_status"] == "rejected"
        assert res.json()["recycler_rejection_reason"] == "Contaminated load"

    def test_second_decision_conflicts(self, client, world):
        sid = create(client, world)["id"]
        self.approve(client, world, sid, "generator", True)
        assert self.approve(client, world, sid, "generator", True).status_code == 409

    def test_wrong_party(self, client, world):
        sid = create(client, world)["id"]
        res = self.approve(client, world, sid, "generator", True, role="other")
        assert res.status_code == 403
        res = self.approve(client, world, sid, "recycler", True, role="transporter")
        assert res.status_code == 403

    def test_overall_rules(self):
        assert overall_approval("approved", "approved") == "approved"
        assert overall_approval("approved", "pending") == "pending"
        assert overall_approval("rejected", "approved") == "rejected"
        assert overall_approval("pending", "rejected") == "rejected"

    def test_auto_approve_after_deadline(self, client, db, world):
        sid = create(client, world)["id"]
        self.approve(client, world, sid, "generator", True)
        shipment = db.query(Shipment).filter(Shipment.shipment_number.isnot(None)).one()
        shipment.auto_approval_deadline = utcnow() - timedelta(minutes=1)
        db.commit()

        assert auto_approve_expired_shipments(db) == 1
        db.expire_all()
        shipment = db.query(Shipment).one()
        assert shipment.recycler_approval_status == "approved"
        assert shipment.overall_approval_status == "approved"
        assert auto_approve_expired_shipments(db) == 0


class TestReport:
    def test_recycler_reports(self, client, world):
        sid = create(client, world)["id"]
        res = client.post(f"/shipments/{sid}/report", json={"report_text": "Sorted 48 kg PET"},
                          headers=auth(world["tokens"]["recycler"]))
        assert res.status_code == 200
        assert res.json()["shipment_report"] == "Sorted 48 kg PET"

    def test_generator_cannot_report(self, client, world):
        sid = create(client, world)["id"]
        res = client.post(f"/shipments/{sid}/report", json={"report_text": "x"},
                          headers=auth(world["tokens"]["generator"]))
        assert res.status_code == 403


def test_form_options_partition_companies(client, world):
    res = client.get("/shipments/form-options", headers=auth(world["tokens"]["generator"]))
    body = res.json()
    assert {c["name"] for c in body["generators"]} == {"Nile Plastics", "Other Generator"}
    assert [c["name"] for c in body["transporters"]] == ["Delta Haulage"]
    assert [c["name"] for c in body["recyclers"]] == ["Green Loop Recycling"]
    assert [w["name"] for w in body["waste_types"]] == ["Plastic"]
    assert [d["name"] for d in body["drivers"]] == ["Omar Driver"]


def test_admin_deletes(client, world):
    sid = create(client, world)["id"]
    assert client.delete(f"/shipments/{sid}", headers=auth(world["tokens"]["generator"])).status_code == 403
    assert client.delete(f"/shipments/{sid}", headers=auth(world["tokens"]["admin"])).status_code == 204
    assert client.get(f"/shipments/{sid}", headers=auth(world["tokens"]["admin"])).status_code == 404


class TestSearch:
    def listing(self, client, world, **params):
        res = client.get("/shipments/company", params=params, headers=auth(world["tokens"]["generator"]))
        assert res.status_code == 200, res.text
        return [r["shipment_number"] for r in res.json()]

    def test_number_fragment(self, client, world):
        first = create(client, world)["shipment_number"]
        create(client, world)
        assert self.listing(client, world, shipment_number=first.lower()) == [first]
        assert self.listing(client, world, shipment_number=first[2:]) == [first]
        assert self.listing(client, world, shipment_number="NOPE") == []

    def test_waste_type(self, client, db, world):
        glass = WasteType(name="Glass", hazard_level="low")
        db.add(glass)
        db.commit()
        plastic = create(client, world)["shipment_number"]
        create(client, world, waste_type_id=str(glass.id))
        assert self.listing(client, world, waste_type_id=str(world["waste_type"].id)) == [plastic]

    def test_date_range(self, client, db, world):
        old = create(client, world)["shipment_number"]
        recent = create(client, world)["shipment_number"]
        db.query(Shipment).filter(Shipment.shipment_number == old).update(
            {"created_at": utcnow() - timedelta(days=10)}
        )
        db.commit()
        since = (utcnow() - timedelta(days=1)).isoformat()
        until = (utcnow() - timedelta(days=5)).isoformat()
        assert self.listing(client, world, date_from=since) == [recent]
        assert self.listing(client, world, date_to=until) == [old]
        assert sorted(self.listing(client, world)) == sorted([old, recent])

    def test_filters_through_procedure(self, client, world):
        number = create(client, world)["shipment_number"]
        res = client.post("/rpc/get_company_shipments", json={"shipment_number": number},
                          headers=auth(world["tokens"]["generator"]))
        assert [r["shipment_number"] for r in res.json()] == [number]
