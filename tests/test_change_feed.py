import pytest

from wastetrack.services.change_feed import Change, ChangeFeed, parse_filter, visible_to


def shipment_change(event="INSERT", **row):
    base = {"id": "s1", "generator_company_id": "A", "transporter_company_id": "B",
            "recycler_company_id": "C", "driver_id": None, "status": "pending"}
    base.update(row)
    if event == "DELETE":
        return Change("shipments", event, new={}, old=base)
    return Change("shipments", event, new=base)


class TestParseFilter:
    def test_eq(self):
        assert parse_filter("recipient_company_id=eq.abc") == {"recipient_company_id": "abc"}

    def test_empty(self):
        assert parse_filter(None) is None
        assert parse_filter("") is None

    @pytest.mark.parametrize("expr", ["status", "status=neq.pending", "=eq.x"])
    def test_unsupported(self, expr):
        with pytest.raises(ValueError):
            parse_filter(expr)


class TestChangeFeed:
    def test_filtered_delivery(self):
        feed = ChangeFeed()
        seen_a, seen_other = [], []
        feed.subscribe("a", "shipments", seen_a.append, row_filter={"generator_company_id": "A"})
        feed.subscribe("other", "shipments", seen_other.append, row_filter={"generator_company_id": "Z"})

        assert feed.publish(shipment_change()) == 1
        assert len(seen_a) == 1
        assert seen_other == []

    def test_event_filter(self):
        feed = ChangeFeed()
        seen = []
        feed.subscribe("a", "shipments", seen.append, event="DELETE")
        feed.publish(shipment_change("UPDATE"))
        feed.publish(shipment_change("DELETE"))
        assert [c.event for c in seen] == ["DELETE"]

    def test_delete_filters_on_old_row(self):
        feed = ChangeFeed()
        seen = []
        feed.subscribe("a", "shipments", seen.append, row_filter={"recycler_company_id": "C"})
        feed.publish(shipment_change("DELETE"))
        assert len(seen) == 1

    def test_failing_handler_does_not_starve_others(self):
        feed = ChangeFeed()
        seen = []

        def boom(change):
            raise RuntimeError("handler bug")

        feed.subscribe("a", "shipments", boom)
        feed.subscribe("b", "shipments", seen.append)
        assert feed.publish(shipment_change()) == 1
        assert len(seen) == 1

    def test_unsubscribe_is_idempotent(self):
        feed = ChangeFeed()
        sub = feed.subscribe("a", "shipments", lambda c: None)
        assert feed.subscription_count("a") == 1
        assert sub.unsubscribe() is True
        assert sub.unsubscribe() is False
        assert feed.subscription_count("a") == 0
        assert "a" not in feed.channels()

    def test_remove_channel(self):
        feed = ChangeFeed()
        feed.subscribe("a", "shipments", lambda c: None)
        feed.subscribe("a", "drivers", lambda c: None)
        assert feed.remove_channel("a") == 2
        assert feed.subscription_count() == 0

    def test_unknown_table_or_event(self):
        feed = ChangeFeed()
        with pytest.raises(ValueError):
            feed.subscribe("a", "users", lambda c: None)
        with pytest.raises(ValueError):
            feed.subscribe("a", "shipments", lambda c: None, event="UPSERT")


class TestVisibility:
    def test_party_companies_see_shipment(self):
        change = shipment_change()
        for company in ("A", "B", "C"):
            assert visible_to(change, company, "u")
        assert not visible_to(change, "D", "u")

    def test_assigned_driver_sees_shipment(self):
        change = shipment_change(driver_id="d1")
        assert visible_to(change, None, "u", driver_id="d1")
        assert not visible_to(change, None, "u", driver_id="d2")

    def test_notifications_only_for_recipient(self):
        change = Change("shipment_notifications", "INSERT", new={"id": "n1", "recipient_company_id": "A"})
        assert visible_to(change, "A", "u")
        assert not visible_to(change, "B", "u")

    def test_auth_logs_admin_only(self):
        change = Change("auth_logs", "INSERT", new={"id": "l1", "user_id": "u"})
        assert not visible_to(change, "A", "u")
        assert visible_to(change, None, None, admin=True)

    def test_update_seen_by_the_company_it_left(self):
        change = Change("shipments", "UPDATE",
                        new=shipment_change(transporter_company_id="B2").new,
                        old=shipment_change().new)
        assert visible_to(change, "B", "u")
        assert visible_to(change, "B2", "u")


class TestRowLeavingFilter:
    def test_reassigned_row_reaches_the_previous_filter(self):
        feed = ChangeFeed()
        old_driver, new_driver = [], []
        feed.subscribe("d1", "shipments", old_driver.append, row_filter={"driver_id": "d1"})
        feed.subscribe("d2", "shipments", new_driver.append, row_filter={"driver_id": "d2"})

        change = Change("shipments", "UPDATE", new=shipment_change(driver_id="d2").new,
                        old=shipment_change(driver_id="d1").new)
        assert feed.publish(change) == 2
        assert len(old_driver) == 1
        assert len(new_driver) == 1

    def test_unrelated_row_still_filtered_out(self):
        feed = ChangeFeed()
        seen = []
        feed.subscribe("d9", "shipments", seen.append, row_filter={"driver_id": "d9"})
        feed.publish(Change("shipments", "UPDATE", new=shipment_change(driver_id="d2").new,
                            old=shipment_change(driver_id="d1").new))
        assert seen == []


def test_shipment_messages_follow_shipment_parties():
    change = Change("shipment_messages", "INSERT", new={
        "id": "m1", "shipment_id": "s1", "content": "hi", "generator_company_id": "A",
        "transporter_company_id": "B", "recycler_company_id": "C", "driver_id": "d1",
    })
    assert visible_to(change, "B", "u")
    assert visible_to(change, None, "u", driver_id="d1")
    assert not visible_to(change, "D", "u")
