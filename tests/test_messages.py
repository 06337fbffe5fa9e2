from conftest import auth, shipment_payload
from wastetrack.services.change_feed import feed


def create(client, world):
    res = client.post("/shipments", json=shipment_payload(world), headers=auth(world["tokens"]["generator"]))
    assert res.status_code == 201, res.text
    return res.json()["id"]


def post(client, world, sid, role, content):
    return client.post(f"/shipments/{sid}/messages", json={"content": content}, headers=auth(world["tokens"][role]))


def test_parties_talk_on_a_shipment(client, world):
    sid = create(client, world)
    res = post(client, world, sid, "generator", "  Pallets are wrapped and ready  ")
    assert res.status_code == 201, res.text
    assert res.json()["content"] == "Pallets are wrapped and ready"
    assert res.json()["sender_company_id"] == str(world["generator"].id)
    assert post(client, world, sid, "driver", "On my way").status_code == 201
    assert post(client, world, sid, "recycler", "Gate 3 please").status_code == 201

    for role in ("transporter", "admin"):
        rows = client.get(f"/shipments/{sid}/messages", headers=auth(world["tokens"][role])).json()
        assert [m["content"] for m in rows] == ["Pallets are wrapped and ready", "On my way", "Gate 3 please"]
    assert rows[1]["sender_name"] == "driver"


def test_outsiders_cannot_read_or_post(client, world):
    sid = create(client, world)
    assert post(client, world, sid, "other", "hello?").status_code == 403
    assert client.get(f"/shipments/{sid}/messages", headers=auth(world["tokens"]["other"])).status_code == 403


def test_blank_message_is_refused(client, world):
    sid = create(client, world)
    assert post(client, world, sid, "generator", "").status_code == 422
    res = post(client, world, sid, "generator", "   ")
    assert res.status_code == 400
    assert res.json()["detail"] == "Empty message"


def test_unknown_shipment(client, world):
    res = post(client, world, "00000000-0000-0000-0000-000000000000", "admin", "hi")
    assert res.status_code == 404


def test_new_message_is_published_to_parties(client, world):
    sid = create(client, world)
    seen_transporter, seen_other = [], []
    feed.subscribe("t", "shipment_messages", seen_transporter.append,
                   row_filter={"transporter_company_id": str(world["transporter"].id)})
    feed.subscribe("o", "shipment_messages", seen_other.append,
                   row_filter={"generator_company_id": str(world["other"].id)})

    post(client, world, sid, "generator", "Ready at dock 2")
    assert [c.new["content"] for c in seen_transporter] == ["Ready at dock 2"]
    assert seen_transporter[0].new["shipment_id"] == sid
    assert seen_other == []
